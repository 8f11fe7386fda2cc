"""Shared test fixtures for the title registry test suite.

Provides:
    - An in-memory SQLite database session per test
    - The simulated chain behind a zero-backoff gateway
    - An in-memory document store
    - Owner wallet keys and a signing helper (what a wallet's personal_sign does)
    - Registration input factories
"""

from __future__ import annotations

from collections.abc import Callable

import pytest
import pytest_asyncio
from eth_keys import keys
from eth_utils import keccak
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from title_registry.config import Settings
from title_registry.domain.document_protocol import DocumentUpload
from title_registry.domain.enums import DocumentKind
from title_registry.domain.signatures import personal_message_hash
from title_registry.infrastructure.chain.gateway import ChainGateway, RetryPolicy
from title_registry.infrastructure.chain.simulated import SimulatedChainBackend
from title_registry.infrastructure.database.orm_models import Base
from title_registry.infrastructure.document_store import InMemoryDocumentStore
from title_registry.services.account_service import AccountService
from title_registry.services.registration_service import RegistrationCoordinator
from title_registry.services.transfer_service import TransferCoordinator

BUYER_WALLET = "0x" + "b" * 40


# ---------------------------------------------------------------------------
# Infrastructure Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        chain_simulate=True,
        document_store_simulate=True,
        document_max_bytes=1024,
    )


@pytest_asyncio.fixture
async def db_session():
    """Yield a session on a fresh in-memory database."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def backend() -> SimulatedChainBackend:
    return SimulatedChainBackend()


@pytest.fixture
def retry_policy() -> RetryPolicy:
    """Three attempts, no sleeping between them."""
    return RetryPolicy(max_attempts=3, backoff_multiplier=0, backoff_min=0, backoff_max=0)


@pytest.fixture
def gateway(backend: SimulatedChainBackend, retry_policy: RetryPolicy) -> ChainGateway:
    return ChainGateway(backend, retry_policy=retry_policy, confirmation_timeout=1.0)


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


# ---------------------------------------------------------------------------
# Wallet Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def owner_key() -> keys.PrivateKey:
    return keys.PrivateKey(keccak(b"tests/owner"))


@pytest.fixture
def other_key() -> keys.PrivateKey:
    return keys.PrivateKey(keccak(b"tests/someone-else"))


@pytest.fixture
def owner_wallet(owner_key: keys.PrivateKey) -> str:
    """Owner address in checksum form, as a wallet would report it."""
    return owner_key.public_key.to_checksum_address()


@pytest.fixture
def sign() -> Callable[[keys.PrivateKey, str], str]:
    """Return a function producing a 65-byte personal_sign signature over a payload hash."""

    def _sign(private_key: keys.PrivateKey, payload_hash: str) -> str:
        signature = private_key.sign_msg_hash(personal_message_hash(payload_hash))
        return "0x" + signature.to_bytes().hex()

    return _sign


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def registration_fields(owner_wallet: str) -> dict:
    """Return valid raw registration input."""
    return {
        "property_id": "KA-BLR-001",
        "survey_number": "SY-45/2A",
        "property_address": "14 Lake View Road, Bengaluru",
        "area": "1200.50",
        "owner_name": "Ravi Kumar",
        "owner_wallet_address": owner_wallet,
        "description": "Residential plot",
    }


@pytest.fixture
def pdf_documents() -> list[DocumentUpload]:
    """Both required documents as small PDFs."""
    return [
        DocumentUpload(
            kind=DocumentKind.MOTHER_DEED,
            filename="mother_deed.pdf",
            content_type="application/pdf",
            content=b"%PDF-1.4 mother deed",
        ),
        DocumentUpload(
            kind=DocumentKind.ENCUMBRANCE_CERTIFICATE,
            filename="encumbrance.pdf",
            content_type="application/pdf",
            content=b"%PDF-1.4 encumbrance certificate",
        ),
    ]


# ---------------------------------------------------------------------------
# Service Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def coordinator(
    db_session: AsyncSession,
    gateway: ChainGateway,
    document_store: InMemoryDocumentStore,
    settings: Settings,
) -> RegistrationCoordinator:
    return RegistrationCoordinator(db_session, gateway, document_store, settings=settings)


@pytest.fixture
def transfers(db_session: AsyncSession, gateway: ChainGateway) -> TransferCoordinator:
    return TransferCoordinator(db_session, gateway)


@pytest_asyncio.fixture
async def owner_account(db_session: AsyncSession, owner_wallet: str):
    return await AccountService(db_session).register("Ravi Kumar", owner_wallet, role="seller")


@pytest_asyncio.fixture
async def buyer_account(db_session: AsyncSession):
    return await AccountService(db_session).register("Asha Rao", BUYER_WALLET, role="buyer")


@pytest_asyncio.fixture
async def registered_property(
    coordinator: RegistrationCoordinator,
    owner_account,
    owner_key: keys.PrivateKey,
    owner_wallet: str,
    registration_fields: dict,
    pdf_documents: list[DocumentUpload],
    sign,
):
    """A title taken through prepare + execute, now pending."""
    prepared = await coordinator.prepare_registration(
        registration_fields, pdf_documents, verifier_ref="VERIFIER-01"
    )
    return await coordinator.execute_registration(
        registration_fields,
        signature=sign(owner_key, prepared.payload_hash),
        signer_address=owner_wallet,
        payload_hash=prepared.payload_hash,
    )
