"""Tests for the TransferCoordinator: verify, list, sell, escrow, reconcile.

These tests verify that:
    1. Every chain action is guarded by the property state machine first.
    2. Only the resolved owner can list.
    3. A captured sale hands the title to the buyer without touching the
       original signer address.
    4. Chain-first status changes that miss the ledger can be reconciled.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.exc import SQLAlchemyError

from title_registry.domain.chain_protocol import ChainEvent
from title_registry.domain.enums import EventType, PropertyStatus
from title_registry.domain.exceptions import (
    AccountNotFoundError,
    AuthorizationError,
    ConsistencyError,
    EventMissingError,
    InvalidStateTransitionError,
    PropertyNotFoundError,
    ValidationError,
)
from title_registry.infrastructure.chain.gateway import ether_to_wei
from title_registry.infrastructure.database.repositories import (
    EventRepository,
    PropertyLedger,
    SaleEventRepository,
)

PRICE = Decimal("1.5")


@pytest_asyncio.fixture
async def verified_property(transfers, registered_property):
    return await transfers.verify_property(registered_property.property_id, actor="VERIFIER-01")


@pytest_asyncio.fixture
async def listed_property(transfers, verified_property, owner_wallet):
    return await transfers.list_for_sale(verified_property.property_id, PRICE, owner_wallet)


@pytest.fixture
def purchase(backend, buyer_account):
    """Buy a listed asset from the buyer's own wallet; return the tx hash."""

    def _purchase(asset_id: int, price: Decimal = PRICE, wallet: str | None = None) -> str:
        return backend.purchase(asset_id, wallet or buyer_account.wallet_address, ether_to_wei(price))

    return _purchase


def _functions(backend) -> list[str]:
    return [fn for _, fn, _ in backend.sent]


class TestVerify:
    @pytest.mark.asyncio
    async def test_pending_to_verified(
        self, transfers, verified_property, gateway, db_session
    ) -> None:
        assert verified_property.status == PropertyStatus.VERIFIED
        assert await gateway.is_verified(verified_property.asset_id)

        events = await EventRepository(db_session).get_by_property(verified_property.property_id)
        assert events[-1].event_type == EventType.PROPERTY_VERIFIED
        assert events[-1].actor == "VERIFIER-01"
        assert events[-1].metadata_json["tx_hash"].startswith("0x")

    @pytest.mark.asyncio
    async def test_verify_twice_never_reaches_chain(
        self, transfers, verified_property, backend
    ) -> None:
        sent = len(backend.sent)
        with pytest.raises(InvalidStateTransitionError):
            await transfers.verify_property(verified_property.property_id)
        assert len(backend.sent) == sent

    @pytest.mark.asyncio
    async def test_unknown_property(self, transfers) -> None:
        with pytest.raises(PropertyNotFoundError):
            await transfers.verify_property("NOPE")


class TestList:
    @pytest.mark.asyncio
    async def test_verified_to_listed(self, listed_property, gateway, backend) -> None:
        assert listed_property.status == PropertyStatus.LISTED_FOR_SALE
        assert listed_property.list_price == PRICE
        assert listed_property.listed_at is not None
        assert _functions(backend)[-2:] == ["approve", "listProperty"]

        listing = await gateway.get_listing(listed_property.asset_id)
        assert listing.active
        assert listing.price_wei == ether_to_wei(PRICE)

    @pytest.mark.asyncio
    async def test_pending_cannot_be_listed(
        self, transfers, registered_property, owner_wallet, backend
    ) -> None:
        with pytest.raises(InvalidStateTransitionError):
            await transfers.list_for_sale(registered_property.property_id, PRICE, owner_wallet)
        assert _functions(backend) == ["mintProperty"]

    @pytest.mark.asyncio
    async def test_only_owner_can_list(self, transfers, verified_property, buyer_account) -> None:
        with pytest.raises(AuthorizationError):
            await transfers.list_for_sale(
                verified_property.property_id, PRICE, buyer_account.wallet_address
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", ["0", "-1", "abc"])
    async def test_price_must_be_positive(
        self, transfers, verified_property, owner_wallet, price
    ) -> None:
        with pytest.raises(ValidationError):
            await transfers.list_for_sale(verified_property.property_id, price, owner_wallet)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", ["0.0000000000000000001", "1.0000000000000000005"])
    async def test_price_finer_than_a_wei_never_reaches_chain(
        self, transfers, verified_property, owner_wallet, backend, price
    ) -> None:
        sent = len(backend.sent)
        with pytest.raises(ValidationError, match="whole number of wei"):
            await transfers.list_for_sale(verified_property.property_id, price, owner_wallet)
        assert len(backend.sent) == sent


class TestConfirmSale:
    @pytest.mark.asyncio
    async def test_listed_to_sold(
        self, transfers, listed_property, buyer_account, purchase, owner_wallet, db_session
    ) -> None:
        tx_hash = purchase(listed_property.asset_id)

        record = await transfers.confirm_sale(
            listed_property.property_id, buyer_account.wallet_address, tx_hash, price=PRICE
        )

        assert record.status == PropertyStatus.SOLD
        assert record.owner_ref == buyer_account.id
        assert record.sale_transaction_hash == tx_hash
        assert record.sale_price == PRICE
        assert record.sold_at is not None
        assert record.listed_at is None
        # The consent signer stays on record
        assert record.owner_wallet_address == owner_wallet.lower()

        sale = await SaleEventRepository(db_session).get(tx_hash)
        assert sale.buyer == buyer_account.wallet_address
        assert sale.price_wei == str(ether_to_wei(PRICE))

        events = await EventRepository(db_session).get_by_property(record.property_id)
        assert [e.event_type for e in events] == [
            EventType.PROPERTY_REGISTERED,
            EventType.PROPERTY_VERIFIED,
            EventType.PROPERTY_LISTED,
            EventType.PROPERTY_SOLD,
        ]

    @pytest.mark.asyncio
    async def test_sold_cannot_be_listed_again(
        self, transfers, listed_property, buyer_account, purchase, owner_wallet
    ) -> None:
        tx_hash = purchase(listed_property.asset_id)
        await transfers.confirm_sale(
            listed_property.property_id, buyer_account.wallet_address, tx_hash
        )
        # Sold is final; nobody can list it again
        with pytest.raises(InvalidStateTransitionError):
            await transfers.list_for_sale(
                listed_property.property_id, PRICE, buyer_account.wallet_address
            )

    @pytest.mark.asyncio
    async def test_buyer_needs_account(self, transfers, listed_property, backend) -> None:
        stranger = "0x" + "d" * 40
        tx_hash = backend.purchase(listed_property.asset_id, stranger, ether_to_wei(PRICE))
        with pytest.raises(AccountNotFoundError):
            await transfers.confirm_sale(listed_property.property_id, stranger, tx_hash)

    @pytest.mark.asyncio
    async def test_buyer_must_match_event(
        self, transfers, listed_property, buyer_account, purchase, db_session
    ) -> None:
        from title_registry.services.account_service import AccountService

        other = await AccountService(db_session).register("Other", "0x" + "e" * 40)
        tx_hash = purchase(listed_property.asset_id, wallet=other.wallet_address)

        with pytest.raises(ValidationError) as exc_info:
            await transfers.confirm_sale(
                listed_property.property_id, buyer_account.wallet_address, tx_hash
            )
        assert exc_info.value.field == "buyer_wallet_address"

    @pytest.mark.asyncio
    async def test_price_must_match_event(
        self, transfers, listed_property, buyer_account, purchase
    ) -> None:
        tx_hash = purchase(listed_property.asset_id)
        with pytest.raises(ValidationError) as exc_info:
            await transfers.confirm_sale(
                listed_property.property_id,
                buyer_account.wallet_address,
                tx_hash,
                price=Decimal("2"),
            )
        assert exc_info.value.field == "price"

    @pytest.mark.asyncio
    async def test_price_finer_than_a_wei_is_rejected(
        self, transfers, listed_property, buyer_account, purchase, db_session
    ) -> None:
        tx_hash = purchase(listed_property.asset_id)
        # Truncated to whole wei this would equal the listing price
        with pytest.raises(ValidationError, match="whole number of wei"):
            await transfers.confirm_sale(
                listed_property.property_id,
                buyer_account.wallet_address,
                tx_hash,
                price="1.5000000000000000005",
            )
        record = await PropertyLedger(db_session).get(listed_property.property_id)
        assert record.status == PropertyStatus.LISTED_FOR_SALE

    @pytest.mark.asyncio
    async def test_transaction_without_sale_event(
        self, transfers, listed_property, buyer_account, backend
    ) -> None:
        tx_hash = backend.record_foreign_transaction([ChainEvent(name="Transfer")])
        with pytest.raises(EventMissingError):
            await transfers.confirm_sale(
                listed_property.property_id, buyer_account.wallet_address, tx_hash
            )

    @pytest.mark.asyncio
    async def test_verified_property_cannot_be_sold(
        self, transfers, verified_property, buyer_account
    ) -> None:
        with pytest.raises(InvalidStateTransitionError):
            await transfers.confirm_sale(
                verified_property.property_id, buyer_account.wallet_address, "0x" + "1" * 64
            )


class TestEscrow:
    @pytest.mark.asyncio
    async def test_balance_and_withdraw(
        self, transfers, listed_property, buyer_account, purchase
    ) -> None:
        tx_hash = purchase(listed_property.asset_id)
        await transfers.confirm_sale(
            listed_property.property_id, buyer_account.wallet_address, tx_hash
        )

        summary = await transfers.get_escrow_balance()
        assert summary.pending_wei == ether_to_wei(PRICE)
        assert summary.pending_ether == PRICE
        assert [s.transaction_hash for s in summary.recorded_sales] == [tx_hash]

        result = await transfers.withdraw()
        assert result.amount_ether == PRICE
        assert (await transfers.get_escrow_balance()).pending_wei == 0

    @pytest.mark.asyncio
    async def test_nothing_to_withdraw(self, transfers, backend) -> None:
        with pytest.raises(ValidationError):
            await transfers.withdraw()
        assert backend.sent == []


class TestReconcileStatus:
    @pytest.mark.asyncio
    async def test_catches_up_verified_and_listed(
        self, transfers, registered_property, gateway, db_session
    ) -> None:
        asset_id = registered_property.asset_id
        await gateway.set_verified_flag(asset_id)
        await gateway.approve_for_sale(asset_id)
        await gateway.list_for_sale(asset_id, PRICE)

        record = await transfers.reconcile_status(registered_property.property_id)

        assert record.status == PropertyStatus.LISTED_FOR_SALE
        assert record.list_price == PRICE
        events = await EventRepository(db_session).get_by_property(record.property_id)
        assert [e.event_type for e in events][1:] == [
            EventType.STATUS_RECONCILED,
            EventType.STATUS_RECONCILED,
        ]

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, transfers, registered_property, db_session) -> None:
        record = await transfers.reconcile_status(registered_property.property_id)
        assert record.status == PropertyStatus.PENDING
        events = await EventRepository(db_session).get_by_property(record.property_id)
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_ledger_failure_after_chain_success(
        self, transfers, registered_property, monkeypatch
    ) -> None:
        async def broken_transition(*args, **kwargs):
            raise SQLAlchemyError("connection lost")

        monkeypatch.setattr(transfers._ledger, "transition", broken_transition)
        with pytest.raises(ConsistencyError) as exc_info:
            await transfers.verify_property(registered_property.property_id)
        assert exc_info.value.tx_hash is not None
        assert exc_info.value.property_id == registered_property.property_id

        monkeypatch.undo()
        record = await transfers.reconcile_status(registered_property.property_id)
        assert record.status == PropertyStatus.VERIFIED


class TestConcurrentTransitions:
    """Another request makes the same move between our chain call and our ledger write."""

    @pytest.mark.asyncio
    async def test_lost_verify_race_is_a_conflict(
        self, transfers, registered_property, gateway, db_session, monkeypatch
    ) -> None:
        property_id = registered_property.property_id
        set_verified_flag = gateway.set_verified_flag

        async def verified_elsewhere_first(asset_id, verified=True):
            tx = await set_verified_flag(asset_id, verified)
            await PropertyLedger(db_session).transition(
                property_id, PropertyStatus.PENDING, PropertyStatus.VERIFIED
            )
            await db_session.commit()
            return tx

        monkeypatch.setattr(gateway, "set_verified_flag", verified_elsewhere_first)
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await transfers.verify_property(property_id)

        assert exc_info.value.current_state == PropertyStatus.VERIFIED
        record = await PropertyLedger(db_session).get(property_id)
        assert record.status == PropertyStatus.VERIFIED

    @pytest.mark.asyncio
    async def test_lost_sale_race_is_a_conflict(
        self, transfers, listed_property, buyer_account, purchase, gateway, db_session,
        monkeypatch,
    ) -> None:
        property_id = listed_property.property_id
        tx_hash = purchase(listed_property.asset_id)
        get_sale_event = gateway.get_sale_event

        async def sold_elsewhere_first(transaction_hash):
            sale = await get_sale_event(transaction_hash)
            await PropertyLedger(db_session).transition(
                property_id,
                PropertyStatus.LISTED_FOR_SALE,
                PropertyStatus.SOLD,
                sale_transaction_hash=transaction_hash,
            )
            await db_session.commit()
            return sale

        monkeypatch.setattr(gateway, "get_sale_event", sold_elsewhere_first)
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await transfers.confirm_sale(property_id, buyer_account.wallet_address, tx_hash)

        assert exc_info.value.current_state == PropertyStatus.SOLD
        assert await SaleEventRepository(db_session).get(tx_hash) is None

    @pytest.mark.asyncio
    async def test_ledger_failure_is_still_inconsistent(
        self, transfers, registered_property, monkeypatch
    ) -> None:
        async def rewound_transition(property_id, expected, new_status, **values):
            raise InvalidStateTransitionError("missing", new_status.value)

        monkeypatch.setattr(transfers._ledger, "transition", rewound_transition)
        with pytest.raises(ConsistencyError):
            await transfers.verify_property(registered_property.property_id)

    @pytest.mark.asyncio
    async def test_row_gone_after_update_is_not_found(
        self, registered_property, db_session, monkeypatch
    ) -> None:
        ledger = PropertyLedger(db_session)

        async def deleted_meanwhile(property_id):
            return None

        monkeypatch.setattr(ledger, "get", deleted_meanwhile)
        with pytest.raises(PropertyNotFoundError):
            await ledger.transition(
                registered_property.property_id, PropertyStatus.PENDING, PropertyStatus.VERIFIED
            )
