"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

PropertyLedger is the authoritative off-chain projection of each title.
Its uniqueness constraints (property_id, asset_id, mint tx hash) are the
only idempotency gate, and status changes go through an optimistic
check-then-update so two competing operations cannot both win.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import exc as sa_exc
from sqlalchemy import func, select, update

from title_registry.domain.exceptions import (
    DuplicateAccountError,
    DuplicatePropertyError,
    InvalidStateTransitionError,
    PropertyNotFoundError,
)
from title_registry.infrastructure.database.orm_models import (
    Account,
    PropertyEvent,
    PropertyRecord,
    RegistrationDraft,
    SaleEventRecord,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from title_registry.domain.enums import EventType, PropertyStatus, RegistrationStatus


class PropertyLedger:
    """Data access for property records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, record: PropertyRecord) -> PropertyRecord:
        """Insert a new record. The unique indexes decide concurrent races.

        Raises:
            DuplicatePropertyError: property_id, asset_id or mint tx already present.
        """
        self._session.add(record)
        try:
            await self._session.flush()
        except sa_exc.IntegrityError as err:
            raise DuplicatePropertyError(record.property_id) from err
        return record

    async def get(self, property_id: str) -> PropertyRecord | None:
        """Fetch a record by business key, bypassing stale identity-map state."""
        result = await self._session.execute(
            select(PropertyRecord)
            .where(PropertyRecord.property_id == property_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_asset_id(self, asset_id: int) -> PropertyRecord | None:
        result = await self._session.execute(
            select(PropertyRecord).where(PropertyRecord.asset_id == asset_id)
        )
        return result.scalar_one_or_none()

    async def get_by_mint_tx(self, tx_hash: str) -> PropertyRecord | None:
        result = await self._session.execute(
            select(PropertyRecord).where(PropertyRecord.mint_transaction_hash == tx_hash)
        )
        return result.scalar_one_or_none()

    async def exists(self, property_id: str) -> bool:
        result = await self._session.execute(
            select(func.count())
            .select_from(PropertyRecord)
            .where(PropertyRecord.property_id == property_id)
        )
        return bool(result.scalar_one())

    async def get_by_status(self, status: PropertyStatus) -> list[PropertyRecord]:
        result = await self._session.execute(
            select(PropertyRecord)
            .where(PropertyRecord.status == status.value)
            .order_by(PropertyRecord.created_at.desc())
        )
        return list(result.scalars().all())

    async def transition(
        self,
        property_id: str,
        expected: PropertyStatus,
        new_status: PropertyStatus,
        **values: Any,
    ) -> PropertyRecord:
        """Advance status only if it still equals `expected`.

        Call AFTER state machine validation. Extra column values are written
        in the same statement.

        Raises:
            InvalidStateTransitionError: the row's status moved underneath us.
        """
        result = await self._session.execute(
            update(PropertyRecord)
            .where(
                PropertyRecord.property_id == property_id,
                PropertyRecord.status == expected.value,
            )
            .values(status=new_status.value, updated_at=datetime.now(UTC), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await self.get(property_id)
            raise InvalidStateTransitionError(
                current.status if current else "missing",
                new_status.value,
            )

        record = await self.get(property_id)
        if record is None:
            raise PropertyNotFoundError(property_id)
        return record


class RegistrationDraftRepository:
    """Data access for registration drafts."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, draft: RegistrationDraft) -> RegistrationDraft:
        self._session.add(draft)
        await self._session.flush()
        return draft

    async def get(self, payload_hash: str) -> RegistrationDraft | None:
        result = await self._session.execute(
            select(RegistrationDraft)
            .where(RegistrationDraft.payload_hash == payload_hash)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_mint_tx(self, tx_hash: str) -> RegistrationDraft | None:
        result = await self._session.execute(
            select(RegistrationDraft).where(RegistrationDraft.mint_transaction_hash == tx_hash)
        )
        return result.scalar_one_or_none()

    async def get_in_status(
        self,
        property_id: str,
        status: RegistrationStatus,
    ) -> list[RegistrationDraft]:
        result = await self._session.execute(
            select(RegistrationDraft)
            .where(
                RegistrationDraft.property_id == property_id,
                RegistrationDraft.status == status.value,
            )
            .order_by(RegistrationDraft.updated_at.desc())
        )
        return list(result.scalars().all())

    async def update_status(
        self,
        draft: RegistrationDraft,
        new_status: RegistrationStatus,
        failure_reason: str | None = None,
    ) -> RegistrationDraft:
        """Update the status of a draft (call AFTER state machine validation)."""
        draft.status = new_status.value
        draft.failure_reason = failure_reason
        draft.updated_at = datetime.now(UTC)
        await self._session.flush()
        return draft


class AccountRepository:
    """Data access for local accounts."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, account: Account) -> Account:
        self._session.add(account)
        try:
            await self._session.flush()
        except sa_exc.IntegrityError as err:
            raise DuplicateAccountError(account.wallet_address) from err
        return account

    async def get_by_wallet(self, wallet_address: str) -> Account | None:
        """Fetch an account by wallet (case-insensitive; stored lowercase)."""
        result = await self._session.execute(
            select(Account).where(Account.wallet_address == wallet_address.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, account_id: Any) -> Account | None:
        return await self._session.get(Account, account_id)


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        property_id: str,
        event_type: EventType,
        old_status: PropertyStatus | None,
        new_status: PropertyStatus,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> PropertyEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = PropertyEvent(
            property_id=property_id,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_property(self, property_id: str) -> list[PropertyEvent]:
        """Fetch all events for a property in chronological order."""
        result = await self._session.execute(
            select(PropertyEvent)
            .where(PropertyEvent.property_id == property_id)
            .order_by(PropertyEvent.created_at.asc())
        )
        return list(result.scalars().all())


class SaleEventRepository:
    """Data access for captured marketplace sales."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(self, sale: SaleEventRecord) -> SaleEventRecord:
        self._session.add(sale)
        await self._session.flush()
        return sale

    async def get(self, tx_hash: str) -> SaleEventRecord | None:
        return await self._session.get(SaleEventRecord, tx_hash)

    async def get_by_seller(self, seller: str) -> list[SaleEventRecord]:
        result = await self._session.execute(
            select(SaleEventRecord)
            .where(SaleEventRecord.seller == seller.lower())
            .order_by(SaleEventRecord.captured_at.asc())
        )
        return list(result.scalars().all())
