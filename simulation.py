#!/usr/bin/env python3
"""Property Title Registry — End-to-End Simulation.

Runs the registry against the in-process chain and document store with an
OwnerBot (holds the wallet key that signs consent) and a BuyerBot:

    Scenario 1: Happy Path
        - Owner prepares, signs and executes a registration -> pending
        - Verifier verifies, owner lists for 1.5 ether -> listed_for_sale
        - Buyer purchases on chain, sale is confirmed -> sold
        - Service withdraws the escrowed proceeds

    Scenario 2: Tampered Payload
        - Owner signs a payload, the area is altered before execute
        - Integrity check fails, nothing is minted, the draft is FAILED
        - Owner prepares again with the correct area and succeeds

    Scenario 3: Confirmation Timeout and Resume
        - The mint is broadcast but the chain stops confirming
        - Execute times out, the draft stays chain_submitted with its tx hash
        - Confirmations resume and the registration is finished from the hash

Usage:
    # Option A: Against the configured database (DATABASE_URL):
    uv run python simulation.py

    # Option B: SQLite in-memory (no database server needed):
    uv run python simulation.py --sqlite

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 3
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from eth_keys import keys
from eth_utils import keccak

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from title_registry.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False):
    """Initialize database engine and create tables."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
        from sqlalchemy.pool import StaticPool

        from title_registry.infrastructure.database.orm_models import Base

        _sqlite_engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            echo=False,
        )
        _sqlite_session_factory = async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from title_registry.infrastructure.database.engine import init_db
        await init_db()


async def get_session():
    """Get a fresh database session."""
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory()

    from title_registry.infrastructure.database.engine import _get_session_factory
    factory = _get_session_factory()
    return factory()


async def shutdown_database():
    """Close database connections."""
    global _sqlite_engine, _sqlite_session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from title_registry.infrastructure.database.engine import close_db
        await close_db()


# ---------------------------------------------------------------------------
# Shared chain + document store for all scenarios
# ---------------------------------------------------------------------------
@dataclass
class Registry:
    """The simulated chain, gateway and document store the bots talk to."""

    backend: Any = None
    gateway: Any = None
    store: Any = None

    def __post_init__(self) -> None:
        from title_registry.infrastructure.chain import ChainGateway, RetryPolicy
        from title_registry.infrastructure.chain.simulated import SimulatedChainBackend
        from title_registry.infrastructure.document_store import InMemoryDocumentStore

        self.backend = SimulatedChainBackend()
        self.gateway = ChainGateway(
            self.backend,
            retry_policy=RetryPolicy(max_attempts=3, backoff_min=0, backoff_multiplier=0),
            confirmation_timeout=2.0,
        )
        self.store = InMemoryDocumentStore()

    def registrations(self, session: Any):
        from title_registry.services.registration_service import RegistrationCoordinator

        return RegistrationCoordinator(session, self.gateway, self.store)

    def transfers(self, session: Any):
        from title_registry.services.transfer_service import TransferCoordinator

        return TransferCoordinator(session, self.gateway)


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class OwnerBot:
    """Simulated property owner holding the wallet key that signs consent."""

    name: str
    seed: str
    private_key: Any = field(init=False)

    def __post_init__(self) -> None:
        self.private_key = keys.PrivateKey(keccak(self.seed.encode()))

    @property
    def wallet(self) -> str:
        return self.private_key.public_key.to_checksum_address()

    async def open_account(self, session: Any) -> None:
        from title_registry.services.account_service import AccountService

        await AccountService(session).register(self.name, self.wallet, role="seller")
        logger.info("🟠 OWNER: Account opened", wallet=self.wallet)

    def sign(self, payload_hash: str) -> str:
        """personal_sign over the 32-byte payload hash, as a wallet would."""
        from title_registry.domain.signatures import personal_message_hash

        signature = self.private_key.sign_msg_hash(personal_message_hash(payload_hash))
        return "0x" + signature.to_bytes().hex()

    def fields(self, property_id: str, area: str = "1200.50") -> dict:
        return {
            "property_id": property_id,
            "survey_number": f"SY-{property_id[-3:]}/2A",
            "property_address": "14 Lake View Road, Bengaluru",
            "area": area,
            "owner_name": self.name,
            "owner_wallet_address": self.wallet,
            "description": "Residential plot with boundary wall",
        }

    @staticmethod
    def documents(property_id: str) -> list:
        from title_registry.domain.document_protocol import DocumentUpload
        from title_registry.domain.enums import DocumentKind

        return [
            DocumentUpload(
                kind=kind,
                filename=f"{kind}.pdf",
                content_type="application/pdf",
                content=f"%PDF-1.4 {kind} for {property_id}".encode(),
            )
            for kind in DocumentKind
        ]

    async def register(
        self,
        registry: Registry,
        session: Any,
        property_id: str,
        execute_fields: dict | None = None,
    ) -> Any:
        """Prepare, sign and execute. `execute_fields` overrides what is sent on execute."""
        coordinator = registry.registrations(session)
        fields = self.fields(property_id)
        prepared = await coordinator.prepare_registration(
            fields, self.documents(property_id), verifier_ref="VERIFIER-01"
        )
        logger.info(
            "🟠 OWNER: Payload prepared",
            property_id=property_id,
            payload_hash=prepared.payload_hash[:18] + "...",
        )
        signature = self.sign(prepared.payload_hash)
        return await coordinator.execute_registration(
            execute_fields or fields,
            signature=signature,
            signer_address=self.wallet,
            payload_hash=prepared.payload_hash,
        )


@dataclass
class BuyerBot:
    """Simulated buyer that pays the marketplace from its own wallet."""

    name: str = "Asha Rao"
    wallet: str = "0x" + "b" * 40

    async def open_account(self, session: Any) -> None:
        from title_registry.services.account_service import AccountService

        await AccountService(session).register(self.name, self.wallet, role="buyer")
        logger.info("🔵 BUYER: Account opened", wallet=self.wallet)

    def buy(self, registry: Registry, asset_id: int, price_ether: Decimal) -> str:
        from title_registry.infrastructure.chain.gateway import ether_to_wei

        tx_hash = registry.backend.purchase(asset_id, self.wallet, ether_to_wei(price_ether))
        logger.info("🔵 BUYER: Purchased on chain", asset_id=asset_id, tx_hash=tx_hash[:18] + "...")
        return tx_hash


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_record(record: Any) -> None:
    print(f"  Property: {record.property_id} (asset {record.asset_id})")
    print(f"  Status:   {record.status}")
    print(f"  Mint TX:  {record.mint_transaction_hash[:20]}...")
    if record.sale_transaction_hash:
        print(f"  Sale TX:  {record.sale_transaction_hash[:20]}... at {record.sale_price} ether")


async def print_audit_trail(session: Any, property_id: str) -> None:
    """Print the full audit trail for a property."""
    from title_registry.services.property_service import PropertyService

    events = await PropertyService(session).get_events(property_id)
    print("\n  📜 Audit Trail:")
    for i, evt in enumerate(events, 1):
        old = evt.old_status or "—"
        print(f"    {i}. [{evt.event_type}] {old} → {evt.new_status} (by {evt.actor})")
    print()


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path(registry: Registry) -> None:
    """Register, verify, list, sell and withdraw."""
    banner("SCENARIO 1: Happy Path — Register, Verify, List, Sell")

    owner = OwnerBot(name="Ravi Kumar", seed="owner-1")
    buyer = BuyerBot()
    price = Decimal("1.5")

    session = await get_session()
    async with session:
        section("Step 1: Accounts")
        await owner.open_account(session)
        await buyer.open_account(session)

        section("Step 2: Owner registers the title")
        record = await owner.register(registry, session, "KA-BLR-001")
        print_record(record)

        transfers = registry.transfers(session)

        section("Step 3: Verifier verifies")
        record = await transfers.verify_property(record.property_id, actor="VERIFIER-01")
        print_record(record)

        section("Step 4: Owner lists for sale")
        record = await transfers.list_for_sale(record.property_id, price, owner.wallet)
        print_record(record)

        section("Step 5: Buyer purchases and the sale is confirmed")
        tx_hash = buyer.buy(registry, record.asset_id, price)
        record = await transfers.confirm_sale(record.property_id, buyer.wallet, tx_hash, price)
        print_record(record)

        section("Step 6: Service withdraws escrowed proceeds")
        summary = await transfers.get_escrow_balance()
        print(f"  Pending: {summary.pending_ether} ether from {len(summary.recorded_sales)} sale(s)")
        result = await transfers.withdraw()
        print(f"  ✅ Withdrew {result.amount_ether} ether in {result.tx_hash[:20]}...")

        await print_audit_trail(session, record.property_id)


# ===========================================================================
# Scenario 2: Tampered Payload
# ===========================================================================
async def scenario_2_tampered_payload(registry: Registry) -> None:
    """An altered area between prepare and execute is caught before minting."""
    banner("SCENARIO 2: Tampered Payload — Integrity Check")

    from title_registry.domain.exceptions import PayloadIntegrityError

    owner = OwnerBot(name="Meera Iyer", seed="owner-2")

    session = await get_session()
    async with session:
        await owner.open_account(session)
        sent_before = len(registry.backend.sent)

        section("Step 1: Area changed from 1200.50 to 2400 after signing")
        tampered = owner.fields("KA-BLR-002", area="2400")
        try:
            await owner.register(registry, session, "KA-BLR-002", execute_fields=tampered)
        except PayloadIntegrityError as exc:
            print(f"  ❌ Rejected: {exc.message}")
        minted = len(registry.backend.sent) - sent_before
        print(f"  🛡️  Transactions sent to chain: {minted}")

        section("Step 2: Owner prepares again with the true inputs")
        record = await owner.register(registry, session, "KA-BLR-002")
        print_record(record)
        await print_audit_trail(session, record.property_id)


# ===========================================================================
# Scenario 3: Confirmation Timeout and Resume
# ===========================================================================
async def scenario_3_timeout_and_resume(registry: Registry) -> None:
    """A mint that confirms late is finished from its tx hash."""
    banner("SCENARIO 3: Confirmation Timeout — Resume From TX Hash")

    from title_registry.domain.exceptions import ConfirmationTimeoutError

    owner = OwnerBot(name="Farhan Sheikh", seed="owner-3")

    session = await get_session()
    async with session:
        await owner.open_account(session)
        coordinator = registry.registrations(session)

        section("Step 1: Chain stops confirming, execute times out")
        registry.backend.hold_confirmations()
        try:
            await owner.register(registry, session, "KA-BLR-003")
        except ConfirmationTimeoutError as exc:
            print(f"  ⏳ {exc.message}")

        drafts = await _drafts_for(session, "KA-BLR-003")
        draft = drafts[0]
        print(f"  Draft status: {draft.status}, tx {draft.mint_transaction_hash[:20]}...")

        section("Step 2: Confirmations resume, registration is finished")
        registry.backend.release_confirmations()
        record = await coordinator.resume_registration(draft.payload_hash)
        print_record(record)

        section("Step 3: Reconciling the same mint again is a no-op")
        again = await coordinator.reconcile_registration(record.mint_transaction_hash)
        print(f"  ✅ Same record returned: {again.property_id} ({again.status})")
        await print_audit_trail(session, record.property_id)


async def _drafts_for(session: Any, property_id: str) -> list:
    from title_registry.domain.enums import RegistrationStatus
    from title_registry.infrastructure.database.repositories import RegistrationDraftRepository

    return await RegistrationDraftRepository(session).get_in_status(
        property_id, RegistrationStatus.CHAIN_SUBMITTED
    )


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_tampered_payload,
    3: scenario_3_timeout_and_resume,
}


async def run(scenario: int = 0, use_sqlite: bool = False) -> None:
    """Run one scenario, or all of them when `scenario` is 0."""
    if scenario and scenario not in SCENARIOS:
        print(f"Unknown scenario {scenario}. Available: 1, 2, 3")
        return

    await init_database(use_sqlite=use_sqlite)
    registry = Registry()

    try:
        print("\n" + "🏠" * 35)
        print("  PROPERTY TITLE REGISTRY — SIMULATION")
        db_type = "SQLite (in-memory)" if use_sqlite else "configured DATABASE_URL"
        print(f"  Database: {db_type}")
        print("  Chain: in-process simulation")
        print("🏠" * 35 + "\n")

        selected = [SCENARIOS[scenario]] if scenario else list(SCENARIOS.values())
        for fn in selected:
            await fn(registry)

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")

    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Property Title Registry Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of the configured database.",
    )
    args = parser.parse_args()

    asyncio.run(run(scenario=args.scenario, use_sqlite=args.sqlite))
