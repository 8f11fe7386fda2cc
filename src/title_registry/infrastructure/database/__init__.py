"""Database infrastructure — engine, ORM models, and repositories."""

from title_registry.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
)
from title_registry.infrastructure.database.orm_models import (
    Account,
    Base,
    PropertyEvent,
    PropertyRecord,
    RegistrationDraft,
    SaleEventRecord,
)
from title_registry.infrastructure.database.repositories import (
    AccountRepository,
    EventRepository,
    PropertyLedger,
    RegistrationDraftRepository,
    SaleEventRepository,
)

__all__ = [
    "Account",
    "Base",
    "PropertyEvent",
    "PropertyRecord",
    "RegistrationDraft",
    "SaleEventRecord",
    "AccountRepository",
    "EventRepository",
    "PropertyLedger",
    "RegistrationDraftRepository",
    "SaleEventRepository",
    "get_async_session",
    "init_db",
    "close_db",
]
