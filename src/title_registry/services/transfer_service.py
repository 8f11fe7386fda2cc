"""Transfer Coordinator — verification, listing, sale capture and escrow.

Every operation follows the same order: guard the transition with the
PropertyStateMachine, perform the chain action through the gateway, then
advance the ledger with an optimistic status update. If the chain action
succeeded but the ledger update does not, a ConsistencyError carrying the
transaction hash is raised; reconcile_status repairs the ledger later. Losing
the optimistic update to a concurrent request that already made the same
move is an InvalidStateTransitionError instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, NoReturn

from sqlalchemy.exc import SQLAlchemyError

from title_registry.domain.enums import EventType, PropertyStatus
from title_registry.domain.exceptions import (
    AccountNotFoundError,
    AuthorizationError,
    ConsistencyError,
    InvalidStateTransitionError,
    PropertyNotFoundError,
    ValidationError,
)
from title_registry.domain.payload import normalize_wallet_address
from title_registry.domain.state_machine import PropertyStateMachine
from title_registry.infrastructure.chain.gateway import ether_to_wei
from title_registry.infrastructure.database.orm_models import SaleEventRecord
from title_registry.infrastructure.database.repositories import (
    AccountRepository,
    EventRepository,
    PropertyLedger,
    SaleEventRepository,
)
from title_registry.logging_config import get_logger

if TYPE_CHECKING:
    from typing import Any

    from sqlalchemy.ext.asyncio import AsyncSession

    from title_registry.infrastructure.chain.gateway import ChainGateway
    from title_registry.infrastructure.database.orm_models import PropertyRecord

logger = get_logger(__name__)

WEI_PER_ETHER = Decimal(10**18)


@dataclass(frozen=True)
class EscrowSummary:
    """Pending proceeds for the service seller address."""

    seller_address: str
    pending_wei: int
    recorded_sales: list[SaleEventRecord]

    @property
    def pending_ether(self) -> Decimal:
        return Decimal(self.pending_wei) / WEI_PER_ETHER


@dataclass(frozen=True)
class WithdrawalResult:
    tx_hash: str
    amount_wei: int

    @property
    def amount_ether(self) -> Decimal:
        return Decimal(self.amount_wei) / WEI_PER_ETHER


class TransferCoordinator:
    """Moves a recorded title through verification, listing and sale."""

    def __init__(self, session: AsyncSession, gateway: ChainGateway) -> None:
        self._session = session
        self._gateway = gateway
        self._ledger = PropertyLedger(session)
        self._accounts = AccountRepository(session)
        self._events = EventRepository(session)
        self._sales = SaleEventRepository(session)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def verify_property(self, property_id: str, actor: str = "SYSTEM") -> PropertyRecord:
        """Set the on-chain verified flag, then mark the record verified."""
        record = await self._get_property_or_raise(property_id)
        self._fire_transition(record, "verify")

        tx = await self._gateway.set_verified_flag(record.asset_id, True)

        return await self._advance(
            record,
            expected=PropertyStatus.PENDING,
            new_status=PropertyStatus.VERIFIED,
            event_type=EventType.PROPERTY_VERIFIED,
            actor=actor,
            tx_hash=tx.tx_hash,
            metadata={"tx_hash": tx.tx_hash},
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_for_sale(
        self,
        property_id: str,
        price: Decimal | str | int,
        caller_wallet: str,
    ) -> PropertyRecord:
        """Approve the marketplace and list the asset. Owner only."""
        record = await self._get_property_or_raise(property_id)
        await self._require_owner(record, caller_wallet)
        self._fire_transition(record, "list_for_sale")

        price_ether = _parse_price(price)
        approve_tx = await self._gateway.approve_for_sale(record.asset_id)
        list_tx = await self._gateway.list_for_sale(record.asset_id, price_ether)

        return await self._advance(
            record,
            expected=PropertyStatus.VERIFIED,
            new_status=PropertyStatus.LISTED_FOR_SALE,
            event_type=EventType.PROPERTY_LISTED,
            actor=caller_wallet.strip().lower(),
            tx_hash=list_tx.tx_hash,
            metadata={
                "approve_tx_hash": approve_tx.tx_hash,
                "list_tx_hash": list_tx.tx_hash,
                "price": str(price_ether),
            },
            listed_at=datetime.now(UTC),
            list_price=price_ether,
        )

    # ------------------------------------------------------------------
    # Sale
    # ------------------------------------------------------------------

    async def confirm_sale(
        self,
        property_id: str,
        buyer_wallet: str,
        transaction_hash: str,
        price: Decimal | str | int | None = None,
    ) -> PropertyRecord:
        """Record a completed marketplace purchase and hand the title to the buyer."""
        buyer_address = normalize_wallet_address(buyer_wallet, field="buyer_wallet_address")
        if not transaction_hash or not transaction_hash.strip():
            raise ValidationError("transaction_hash is required", field="transaction_hash")
        tx_hash = transaction_hash.strip().lower()

        buyer = await self._accounts.get_by_wallet(buyer_address)
        if buyer is None:
            raise AccountNotFoundError(buyer_address)

        record = await self._get_property_or_raise(property_id)
        self._fire_transition(record, "confirm_sale")

        sale = await self._gateway.get_sale_event(tx_hash)
        if sale.asset_id != record.asset_id:
            raise ValidationError(
                f"Transaction {tx_hash} sold asset {sale.asset_id}, not {record.asset_id}",
                field="transaction_hash",
            )
        if sale.buyer != buyer_address:
            raise ValidationError(
                f"Transaction {tx_hash} was made by {sale.buyer}, not {buyer_address}",
                field="buyer_wallet_address",
            )
        if price is not None and ether_to_wei(_parse_price(price)) != sale.price_wei:
            raise ValidationError(
                f"Sale price {sale.price_ether} does not match {price}",
                field="price",
            )

        try:
            updated = await self._ledger.transition(
                record.property_id,
                expected=PropertyStatus.LISTED_FOR_SALE,
                new_status=PropertyStatus.SOLD,
                owner_ref=buyer.id,
                sale_transaction_hash=tx_hash,
                sale_price=sale.price_ether,
                listed_at=None,
                sold_at=datetime.now(UTC),
            )
            await self._sales.record(
                SaleEventRecord(
                    transaction_hash=tx_hash,
                    asset_id=sale.asset_id,
                    property_id=record.property_id,
                    buyer=sale.buyer,
                    seller=sale.seller,
                    price_wei=str(sale.price_wei),
                    block_number=sale.block_number,
                )
            )
            await self._events.record(
                property_id=record.property_id,
                event_type=EventType.PROPERTY_SOLD,
                old_status=PropertyStatus.LISTED_FOR_SALE,
                new_status=PropertyStatus.SOLD,
                actor=buyer_address,
                metadata={
                    "tx_hash": tx_hash,
                    "seller": sale.seller,
                    "price_wei": str(sale.price_wei),
                },
            )
            await self._session.commit()
        except (SQLAlchemyError, InvalidStateTransitionError) as err:
            await self._session.rollback()
            if _lost_race(err, PropertyStatus.SOLD):
                logger.info("transfer.lost_race", property_id=property_id, tx_hash=tx_hash)
                raise
            self._raise_consistency(property_id, tx_hash, err)

        logger.info(
            "transfer.sale_confirmed",
            property_id=property_id,
            buyer=buyer_address,
            tx_hash=tx_hash,
            price_wei=str(sale.price_wei),
        )
        return updated

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    async def get_escrow_balance(self) -> EscrowSummary:
        seller = self._gateway.service_address
        pending = await self._gateway.get_escrow_balance(seller)
        return EscrowSummary(
            seller_address=seller,
            pending_wei=pending,
            recorded_sales=await self._sales.get_by_seller(seller),
        )

    async def withdraw(self) -> WithdrawalResult:
        """Withdraw pending proceeds to the service seller address."""
        pending = await self._gateway.get_escrow_balance(self._gateway.service_address)
        if pending <= 0:
            raise ValidationError("No proceeds to withdraw", field="balance")

        tx = await self._gateway.withdraw_escrow()
        logger.info("escrow.withdrawn", tx_hash=tx.tx_hash, amount_wei=str(pending))
        return WithdrawalResult(tx_hash=tx.tx_hash, amount_wei=pending)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile_status(self, property_id: str) -> PropertyRecord:
        """Advance a ledger status that lags behind the chain.

        Only forward moves are made: pending -> verified when the verified
        flag is set, verified -> listed_for_sale when an active listing exists.
        Sales need the buyer's transaction and go through confirm_sale.
        """
        record = await self._get_property_or_raise(property_id)
        start_status = record.status

        if record.status == PropertyStatus.PENDING and await self._gateway.is_verified(
            record.asset_id
        ):
            record = await self._advance(
                record,
                expected=PropertyStatus.PENDING,
                new_status=PropertyStatus.VERIFIED,
                event_type=EventType.STATUS_RECONCILED,
                actor="SYSTEM",
                tx_hash=None,
                metadata={"source": "isVerified"},
            )

        if record.status == PropertyStatus.VERIFIED:
            listing = await self._gateway.get_listing(record.asset_id)
            if listing.active:
                price = Decimal(listing.price_wei) / WEI_PER_ETHER
                record = await self._advance(
                    record,
                    expected=PropertyStatus.VERIFIED,
                    new_status=PropertyStatus.LISTED_FOR_SALE,
                    event_type=EventType.STATUS_RECONCILED,
                    actor="SYSTEM",
                    tx_hash=None,
                    metadata={"source": "listings", "price_wei": str(listing.price_wei)},
                    listed_at=datetime.now(UTC),
                    list_price=price,
                )

        logger.info(
            "transfer.status_reconciled",
            property_id=property_id,
            from_status=start_status,
            to_status=record.status,
        )
        return record

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _advance(
        self,
        record: PropertyRecord,
        expected: PropertyStatus,
        new_status: PropertyStatus,
        event_type: EventType,
        actor: str,
        tx_hash: str | None,
        metadata: dict,
        **values: Any,
    ) -> PropertyRecord:
        """Apply a post-chain ledger transition and its audit event atomically."""
        property_id = record.property_id
        try:
            updated = await self._ledger.transition(property_id, expected, new_status, **values)
            await self._events.record(
                property_id=property_id,
                event_type=event_type,
                old_status=expected,
                new_status=new_status,
                actor=actor,
                metadata=metadata,
            )
            await self._session.commit()
        except (SQLAlchemyError, InvalidStateTransitionError) as err:
            await self._session.rollback()
            if tx_hash is None or _lost_race(err, new_status):
                raise
            self._raise_consistency(property_id, tx_hash, err)

        logger.info(
            "transfer.status_changed",
            property_id=property_id,
            old_status=expected.value,
            new_status=new_status.value,
            tx_hash=tx_hash,
        )
        return updated

    @staticmethod
    def _raise_consistency(property_id: str, tx_hash: str, err: Exception) -> NoReturn:
        logger.error(
            "transfer.ledger_write_failed",
            property_id=property_id,
            tx_hash=tx_hash,
            error=str(err),
        )
        raise ConsistencyError(
            f"Chain transaction {tx_hash} succeeded but the ledger update for "
            f"{property_id} failed; run status reconciliation",
            tx_hash=tx_hash,
            property_id=property_id,
        ) from err

    async def _require_owner(self, record: PropertyRecord, caller_wallet: str) -> None:
        caller = normalize_wallet_address(caller_wallet, field="caller_wallet_address")
        owner = await self._accounts.get_by_id(record.owner_ref) if record.owner_ref else None
        if owner is None or owner.wallet_address != caller:
            logger.warning(
                "transfer.not_owner",
                property_id=record.property_id,
                caller=caller,
            )
            raise AuthorizationError(f"{caller} is not the owner of {record.property_id}")

    async def _get_property_or_raise(self, property_id: str) -> PropertyRecord:
        record = await self._ledger.get(property_id)
        if record is None:
            raise PropertyNotFoundError(property_id)
        return record

    @staticmethod
    def _fire_transition(record: PropertyRecord, event_name: str) -> None:
        """Validate and fire a state machine transition.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        from statemachine.exceptions import TransitionNotAllowed

        sm = PropertyStateMachine(current_status=record.status)
        event_method = getattr(sm, event_name, None)
        if event_method is None:
            raise InvalidStateTransitionError(record.status, event_name)
        try:
            event_method()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(record.status, event_name) from err


def _parse_price(price: Decimal | str | int) -> Decimal:
    try:
        value = Decimal(str(price).strip())
    except (InvalidOperation, ValueError) as err:
        raise ValidationError("price must be a number", field="price") from err
    if not value.is_finite() or value <= 0:
        raise ValidationError("price must be greater than zero", field="price")
    # Whole wei only
    ether_to_wei(value)
    return value


def _lost_race(err: Exception, new_status: PropertyStatus) -> bool:
    """True if a concurrent request already moved the record to `new_status` or past it."""
    if not isinstance(err, InvalidStateTransitionError):
        return False
    order = list(PropertyStatus)
    return (
        err.current_state in order and order.index(err.current_state) >= order.index(new_status)
    )
