"""Application services — use case orchestration."""

from title_registry.services.account_service import AccountService
from title_registry.services.property_service import PropertyService
from title_registry.services.registration_service import RegistrationCoordinator
from title_registry.services.transfer_service import TransferCoordinator

__all__ = [
    "AccountService",
    "PropertyService",
    "RegistrationCoordinator",
    "TransferCoordinator",
]
