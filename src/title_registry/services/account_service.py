"""Account Service — local accounts that owners and buyers are matched to."""

from __future__ import annotations

from typing import TYPE_CHECKING

from title_registry.domain.enums import AccountRole
from title_registry.domain.exceptions import AccountNotFoundError, ValidationError
from title_registry.domain.payload import normalize_wallet_address
from title_registry.infrastructure.database.orm_models import Account
from title_registry.infrastructure.database.repositories import AccountRepository
from title_registry.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class AccountService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repo = AccountRepository(session)

    async def register(
        self,
        name: str,
        wallet_address: str,
        role: AccountRole | str = AccountRole.BUYER,
        email: str | None = None,
    ) -> Account:
        """Create an account bound to a wallet address (stored lowercase)."""
        if not name or not name.strip():
            raise ValidationError("name is required", field="name")
        try:
            role = AccountRole(role)
        except ValueError as err:
            raise ValidationError(f"Unknown role: {role}", field="role") from err

        account = await self._repo.create(
            Account(
                name=name.strip(),
                email=email.strip().lower() if email else None,
                wallet_address=normalize_wallet_address(wallet_address, field="wallet_address"),
                role=role.value,
            )
        )
        await self._session.commit()
        logger.info("account.registered", account_id=str(account.id), role=role.value)
        return account

    async def get_by_wallet(self, wallet_address: str) -> Account:
        wallet = normalize_wallet_address(wallet_address, field="wallet_address")
        account = await self._repo.get_by_wallet(wallet)
        if account is None:
            raise AccountNotFoundError(wallet)
        return account
