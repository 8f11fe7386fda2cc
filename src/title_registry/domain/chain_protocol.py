"""Chain Backend Protocol.

Defines the interface the ChainGateway drives and the value objects it
returns. A backend only knows how to submit, wait and read; retry policy,
error classification and event parsing live in the gateway.

The domain layer has ZERO imports from web3 or any node client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from title_registry.domain.enums import ChainContract


@dataclass(frozen=True)
class ChainEvent:
    """A decoded contract event.

    Attributes:
        name: Event name as declared in the contract ABI (e.g. "TitleMinted").
        args: Decoded arguments keyed by ABI parameter name.
        contract: Contract that emitted it.
    """

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    contract: str | None = None


@dataclass(frozen=True)
class TxReceipt:
    """Normalized transaction receipt."""

    tx_hash: str
    succeeded: bool
    block_number: int | None = None
    events: tuple[ChainEvent, ...] = ()

    def find_event(self, name: str) -> ChainEvent | None:
        return next((e for e in self.events if e.name == name), None)


@dataclass(frozen=True)
class SignedTransaction:
    """A transaction signed with a fixed nonce, ready to (re)broadcast.

    The hash is known before anything leaves the process, and rebroadcasting
    the same raw bytes can never produce a second transaction.
    """

    tx_hash: str
    raw_transaction: bytes
    nonce: int
    function: str


@dataclass(frozen=True)
class TxResult:
    """Outcome of a confirmed write operation."""

    tx_hash: str
    block_number: int | None = None


@dataclass(frozen=True)
class MintParams:
    """Arguments of the mint call, in contract order."""

    owner: str
    survey_number: str
    property_id: str
    property_address: str
    area: str
    owner_name: str
    description: str
    document_hashes: tuple[str, ...]

    def as_args(self) -> list:
        return [
            self.owner,
            self.survey_number,
            self.property_id,
            self.property_address,
            self.area,
            self.owner_name,
            self.description,
            list(self.document_hashes),
        ]


@dataclass(frozen=True)
class MintResult:
    """A confirmed mint: the newly assigned asset id and its transaction."""

    tx_hash: str
    asset_id: int
    owner: str
    property_id: str
    block_number: int | None = None


@dataclass(frozen=True)
class SaleEvent:
    """A marketplace sale captured from a PropertySold event."""

    asset_id: int
    buyer: str
    seller: str
    price_wei: int
    tx_hash: str
    block_number: int | None = None

    @property
    def price_ether(self) -> Decimal:
        return Decimal(self.price_wei) / Decimal(10**18)


@dataclass(frozen=True)
class Listing:
    """Current marketplace listing for an asset."""

    asset_id: int
    seller: str
    price_wei: int
    active: bool


@runtime_checkable
class ChainBackend(Protocol):
    """Protocol that chain backends must satisfy.

    Concrete implementations:
        - infrastructure/chain/web3_backend.py  (JSON-RPC node via web3.py)
        - infrastructure/chain/simulated.py     (in-process chain for dev/tests)

    Backends raise ChainTransientError / ChainRejectedError for failures
    they can classify, builtin OSError for network failures, and
    TimeoutError when a receipt does not arrive within `timeout`.
    """

    @property
    def service_address(self) -> str: ...

    @property
    def marketplace_address(self) -> str: ...

    async def sign_transaction(
        self,
        contract: ChainContract,
        function: str,
        args: Sequence[Any],
    ) -> SignedTransaction:
        """Build and sign a call from the service key, allocating its nonce."""
        ...

    async def broadcast(self, signed: SignedTransaction) -> str:
        """Send a signed transaction. Returns its hash.

        Sending the same transaction again after it was accepted must return
        the hash rather than fail.
        """
        ...

    async def is_known(self, tx_hash: str) -> bool:
        """True if the node has seen the transaction, pending or mined."""
        ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        """Block until the transaction is included, or raise TimeoutError."""
        ...

    async def get_receipt(self, tx_hash: str) -> TxReceipt | None:
        """Return the receipt if the transaction is included, else None."""
        ...

    async def call(self, contract: ChainContract, function: str, args: Sequence[Any]) -> Any:
        """Run a read-only contract call."""
        ...

    async def block_number(self) -> int: ...

    async def close(self) -> None: ...
