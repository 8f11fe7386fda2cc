"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the chain gateway, the document store and the coordinators built on them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends

from title_registry.config import Settings, get_settings
from title_registry.infrastructure.chain import get_chain_gateway
from title_registry.infrastructure.database.engine import get_async_session
from title_registry.infrastructure.document_store import get_document_store
from title_registry.services.account_service import AccountService
from title_registry.services.property_service import PropertyService
from title_registry.services.registration_service import RegistrationCoordinator
from title_registry.services.transfer_service import TransferCoordinator

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession

    from title_registry.domain.document_protocol import DocumentStore
    from title_registry.infrastructure.chain.gateway import ChainGateway


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_gateway() -> ChainGateway:
    """Provide the chain gateway singleton."""
    return get_chain_gateway()


def get_store() -> DocumentStore:
    """Provide the configured document store."""
    return get_document_store()


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


async def get_registration_coordinator(
    session: AsyncSession = Depends(get_db_session),
    gateway: ChainGateway = Depends(get_gateway),
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> RegistrationCoordinator:
    return RegistrationCoordinator(session, gateway, store, settings=settings)


async def get_transfer_coordinator(
    session: AsyncSession = Depends(get_db_session),
    gateway: ChainGateway = Depends(get_gateway),
) -> TransferCoordinator:
    return TransferCoordinator(session, gateway)


async def get_property_service(
    session: AsyncSession = Depends(get_db_session),
    gateway: ChainGateway = Depends(get_gateway),
    store: DocumentStore = Depends(get_store),
) -> PropertyService:
    return PropertyService(session, gateway, store)


async def get_account_service(
    session: AsyncSession = Depends(get_db_session),
) -> AccountService:
    return AccountService(session)
