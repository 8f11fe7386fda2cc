"""Pydantic API schemas."""

from title_registry.schemas.property import (
    AccountResponse,
    ConfirmSaleRequest,
    CreateAccountRequest,
    DocumentCheckResponse,
    EscrowBalanceResponse,
    HealthResponse,
    ListPropertyRequest,
    PrepareRegistrationResponse,
    PropertyEventResponse,
    PropertyResponse,
    PropertyStatusResponse,
    ReconcileRegistrationRequest,
    RegistrationDraftResponse,
    SaleEventResponse,
    VerifyPropertyRequest,
    WithdrawalResponse,
)

__all__ = [
    "AccountResponse",
    "ConfirmSaleRequest",
    "CreateAccountRequest",
    "DocumentCheckResponse",
    "EscrowBalanceResponse",
    "HealthResponse",
    "ListPropertyRequest",
    "PrepareRegistrationResponse",
    "PropertyEventResponse",
    "PropertyResponse",
    "PropertyStatusResponse",
    "ReconcileRegistrationRequest",
    "RegistrationDraftResponse",
    "SaleEventResponse",
    "VerifyPropertyRequest",
    "WithdrawalResponse",
]
