"""In-process chain for development, dry runs and tests.

Mirrors the PropertyTitle and Marketplace contracts closely enough to drive
every gateway operation: minting assigns sequential token ids and emits
TitleMinted, purchases emit PropertySold and credit the seller's pending
withdrawals. Reverts surface as ChainRejectedError at submission time, the
way a node rejects a call that fails gas estimation.

Fault injection hooks let tests reproduce node outages, lost broadcast
responses, confirmation timeouts and receipts without the expected event.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from eth_keys import keys
from eth_utils import keccak

from title_registry.domain.chain_protocol import ChainEvent, SignedTransaction, TxReceipt
from title_registry.domain.enums import ChainContract
from title_registry.domain.exceptions import ChainRejectedError
from title_registry.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = get_logger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


def simulated_service_address() -> str:
    """Deterministic service wallet used when no private key is configured."""
    key = keys.PrivateKey(keccak(b"title-registry/simulated-service"))
    return key.public_key.to_checksum_address().lower()


@dataclass
class _Fault:
    error: BaseException
    remaining: int
    function: str | None = None

    def matches(self, function: str) -> bool:
        return self.remaining > 0 and (self.function is None or self.function == function)


@dataclass
class _Listing:
    seller: str
    price: int
    active: bool = True


@dataclass
class _ChainState:
    owners: dict[int, str] = field(default_factory=dict)
    property_ids: dict[str, int] = field(default_factory=dict)
    verified: dict[int, bool] = field(default_factory=dict)
    approvals: dict[int, str] = field(default_factory=dict)
    listings: dict[int, _Listing] = field(default_factory=dict)
    pending_withdrawals: dict[str, int] = field(default_factory=dict)
    withdrawn: dict[str, int] = field(default_factory=dict)


class SimulatedChainBackend:
    """ChainBackend backed by dictionaries.

    Usage:
        backend = SimulatedChainBackend()
        backend.fail_next(ChainTransientError("header not found"), times=2)
        gateway = ChainGateway(backend)
    """

    def __init__(
        self,
        service_address: str | None = None,
        marketplace_address: str = "0x" + "0" * 39 + "2",
    ) -> None:
        self._service_address = (service_address or simulated_service_address()).lower()
        self._marketplace_address = marketplace_address.lower()
        self._state = _ChainState()
        self._receipts: dict[str, TxReceipt] = {}
        self._held: set[str] = set()
        self._faults: list[_Fault] = []
        self._dropped: list[_Fault] = []
        self._signed: dict[str, tuple[ChainContract, str, list]] = {}
        self._hold_confirmations = False
        self._omit_events: set[str] = set()
        self._next_token_id = 1
        self._block = 0
        self._nonce = 0
        self.sent: list[tuple[str, str, list]] = []

    @property
    def service_address(self) -> str:
        return self._service_address

    @property
    def marketplace_address(self) -> str:
        return self._marketplace_address

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def fail_next(
        self,
        error: BaseException,
        times: int = 1,
        function: str | None = None,
    ) -> None:
        """Raise `error` from the next `times` broadcasts (of `function`, if given).

        The failing broadcast is never mined.
        """
        self._faults.append(_Fault(error=error, remaining=times, function=function))

    def drop_responses(
        self,
        times: int = 1,
        function: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        """Mine the next `times` broadcasts, then lose the node's answer.

        Reproduces a send that landed on chain while the caller saw a
        timeout or a dropped connection.
        """
        self._dropped.append(
            _Fault(
                error=error or TimeoutError("node response lost"),
                remaining=times,
                function=function,
            )
        )

    def hold_confirmations(self, hold: bool = True) -> None:
        """While held, new transactions are accepted but never confirm."""
        self._hold_confirmations = hold

    def release_confirmations(self) -> None:
        self._hold_confirmations = False
        self._held.clear()

    def omit_events(self, function: str) -> None:
        """Strip all events from future receipts of `function`."""
        self._omit_events.add(function)

    # ------------------------------------------------------------------
    # ChainBackend
    # ------------------------------------------------------------------

    async def sign_transaction(
        self,
        contract: ChainContract,
        function: str,
        args: Sequence[Any],
    ) -> SignedTransaction:
        if getattr(self, f"_tx_{function}", None) is None:
            raise ChainRejectedError(f"unknown function {contract}.{function}")
        self._nonce += 1
        raw = f"{contract}:{function}:{self._nonce}:{list(args)!r}".encode()
        tx_hash = "0x" + keccak(raw).hex()
        self._signed[tx_hash] = (contract, function, list(args))
        return SignedTransaction(
            tx_hash=tx_hash,
            raw_transaction=raw,
            nonce=self._nonce,
            function=function,
        )

    async def broadcast(self, signed: SignedTransaction) -> str:
        if signed.tx_hash in self._receipts:
            logger.debug("chain.simulated_already_known", tx_hash=signed.tx_hash)
            return signed.tx_hash

        contract, function, args = self._signed[signed.tx_hash]
        self._raise_injected_fault(self._faults, function)

        handler = getattr(self, f"_tx_{function}")
        events = handler(self._service_address, *args)
        if function in self._omit_events:
            events = []

        self.sent.append((str(contract), function, args))
        self._mine(contract, events, tx_hash=signed.tx_hash)
        self._raise_injected_fault(self._dropped, function)
        return signed.tx_hash

    async def is_known(self, tx_hash: str) -> bool:
        return tx_hash in self._receipts

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        if tx_hash in self._held:
            raise TimeoutError(f"receipt for {tx_hash} not available after {timeout}s")
        receipt = self._receipts.get(tx_hash)
        if receipt is None:
            raise TimeoutError(f"unknown transaction {tx_hash}")
        return receipt

    async def get_receipt(self, tx_hash: str) -> TxReceipt | None:
        if tx_hash in self._held:
            return None
        return self._receipts.get(tx_hash)

    async def call(self, contract: ChainContract, function: str, args: Sequence[Any]) -> Any:
        handler = getattr(self, f"_view_{function}", None)
        if handler is None:
            raise ChainRejectedError(f"unknown view {contract}.{function}")
        return handler(*args)

    async def block_number(self) -> int:
        return self._block

    async def close(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Buyer side (outside the service key)
    # ------------------------------------------------------------------

    def purchase(self, asset_id: int, buyer: str, value_wei: int) -> str:
        """Execute buyProperty from a buyer's wallet and return the tx hash."""
        listing = self._state.listings.get(asset_id)
        if listing is None or not listing.active:
            raise ChainRejectedError("property is not listed")
        if value_wei != listing.price:
            raise ChainRejectedError("incorrect payment amount")

        buyer = buyer.lower()
        listing.active = False
        self._state.owners[asset_id] = buyer
        self._state.approvals.pop(asset_id, None)
        self._state.pending_withdrawals[listing.seller] = (
            self._state.pending_withdrawals.get(listing.seller, 0) + listing.price
        )
        event = ChainEvent(
            name="PropertySold",
            args={
                "tokenId": asset_id,
                "buyer": buyer,
                "seller": listing.seller,
                "price": listing.price,
            },
            contract=ChainContract.MARKETPLACE.value,
        )
        return self._mine(ChainContract.MARKETPLACE, [event])

    def record_foreign_transaction(self, events: Sequence[ChainEvent] = ()) -> str:
        """Mine an arbitrary transaction, e.g. one that emitted unrelated events."""
        return self._mine(ChainContract.MARKETPLACE, list(events))

    # ------------------------------------------------------------------
    # Contract behaviour
    # ------------------------------------------------------------------

    def _tx_mintProperty(  # noqa: N802
        self,
        sender: str,
        owner: str,
        survey_number: str,
        property_id: str,
        property_address: str,
        area: str,
        owner_name: str,
        description: str,
        document_hashes: list[str],
    ) -> list[ChainEvent]:
        if owner.lower() == ZERO_ADDRESS:
            raise ChainRejectedError("mint to the zero address")
        if property_id in self._state.property_ids:
            raise ChainRejectedError("property already minted")
        if not document_hashes:
            raise ChainRejectedError("document hashes required")

        token_id = self._next_token_id
        self._next_token_id += 1
        self._state.owners[token_id] = owner.lower()
        self._state.property_ids[property_id] = token_id
        return [
            ChainEvent(
                name="TitleMinted",
                args={"tokenId": token_id, "owner": owner.lower(), "propertyId": property_id},
                contract=ChainContract.PROPERTY_TITLE.value,
            )
        ]

    def _tx_setVerified(self, sender: str, token_id: int, verified: bool) -> list[ChainEvent]:  # noqa: N802
        self._require_token(token_id)
        self._state.verified[token_id] = bool(verified)
        return []

    def _tx_approve(self, sender: str, to: str, token_id: int) -> list[ChainEvent]:
        self._require_token(token_id)
        self._state.approvals[token_id] = to.lower()
        return []

    def _tx_listProperty(self, sender: str, token_id: int, price: int) -> list[ChainEvent]:  # noqa: N802
        self._require_token(token_id)
        if self._state.approvals.get(token_id) != self._marketplace_address:
            raise ChainRejectedError("marketplace not approved")
        if price <= 0:
            raise ChainRejectedError("price must be greater than zero")
        listing = self._state.listings.get(token_id)
        if listing is not None and listing.active:
            raise ChainRejectedError("already listed")
        self._state.listings[token_id] = _Listing(seller=sender, price=price)
        return []

    def _tx_withdrawProceeds(self, sender: str) -> list[ChainEvent]:  # noqa: N802
        amount = self._state.pending_withdrawals.get(sender, 0)
        if amount <= 0:
            raise ChainRejectedError("no proceeds to withdraw")
        self._state.pending_withdrawals[sender] = 0
        self._state.withdrawn[sender] = self._state.withdrawn.get(sender, 0) + amount
        return []

    def _view_isVerified(self, token_id: int) -> bool:  # noqa: N802
        self._require_token(token_id)
        return self._state.verified.get(token_id, False)

    def _view_ownerOf(self, token_id: int) -> str:  # noqa: N802
        return self._require_token(token_id)

    def _view_listings(self, token_id: int) -> tuple[str, int, bool]:
        listing = self._state.listings.get(token_id)
        if listing is None:
            return (ZERO_ADDRESS, 0, False)
        return (listing.seller, listing.price, listing.active)

    def _view_pendingWithdrawals(self, account: str) -> int:  # noqa: N802
        return self._state.pending_withdrawals.get(account.lower(), 0)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _raise_injected_fault(self, faults: list[_Fault], function: str) -> None:
        for fault in faults:
            if fault.matches(function):
                fault.remaining -= 1
                logger.debug("chain.simulated_fault", function=function, error=str(fault.error))
                raise fault.error

    def _require_token(self, token_id: int) -> str:
        owner = self._state.owners.get(int(token_id))
        if owner is None:
            raise ChainRejectedError("nonexistent token")
        return owner

    def _mine(
        self,
        contract: ChainContract,
        events: list[ChainEvent],
        tx_hash: str | None = None,
    ) -> str:
        self._block += 1
        if tx_hash is None:
            self._nonce += 1
            tx_hash = "0x" + keccak(f"{contract}:{self._nonce}".encode()).hex()
        self._receipts[tx_hash] = TxReceipt(
            tx_hash=tx_hash,
            succeeded=True,
            block_number=self._block,
            events=tuple(events),
        )
        if self._hold_confirmations:
            self._held.add(tx_hash)
        return tx_hash
