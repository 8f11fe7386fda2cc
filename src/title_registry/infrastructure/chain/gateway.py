"""Chain Gateway: the only component that talks to the contracts.

Every write follows the same three steps:

    1. submit   — sign once from the service key with a fixed nonce, then
                  broadcast that same raw transaction, retried with
                  exponential backoff on ChainTransientError only;
    2. confirm  — wait for the receipt, bounded by the confirmation timeout
                  and never retried (the submission is never cancelled);
    3. parse    — read the expected event out of the receipt, or raise a
                  typed failure.

A rebroadcast of an already accepted transaction is answered with its hash
and never mints twice. When the outcome of a broadcast is unknown (dropped
connection, timeout), the failure carries the transaction hash so the
caller can resume from it.

Retry decisions live in exactly one place: RetryPolicy. Callers never wrap
gateway calls in their own retry loops.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, localcontext
from typing import TYPE_CHECKING, Any

from eth_utils import to_wei
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from title_registry.domain.chain_protocol import (
    Listing,
    MintParams,
    MintResult,
    SaleEvent,
    SignedTransaction,
    TxReceipt,
    TxResult,
)
from title_registry.domain.enums import ChainContract
from title_registry.domain.exceptions import (
    ChainError,
    ChainRejectedError,
    ChainTransientError,
    ConfirmationTimeoutError,
    EventMissingError,
    ValidationError,
)
from title_registry.infrastructure.chain.abi import (
    MINT_FUNCTION,
    PROPERTY_SOLD_EVENT,
    TITLE_MINTED_EVENT,
)
from title_registry.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from tenacity import RetryCallState

    from title_registry.config import Settings
    from title_registry.domain.chain_protocol import ChainBackend

logger = get_logger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "chain.retrying",
        attempt=retry_state.attempt_number,
        next_wait=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
    )


@dataclass(frozen=True)
class RetryPolicy:
    """How the gateway retries a submission.

    Attributes:
        max_attempts: Total attempts including the first.
        backoff_multiplier: Exponential backoff base in seconds.
        backoff_min: Lower bound of a single wait.
        backoff_max: Upper bound of a single wait.
        retryable: Exception classes that trigger another attempt.
    """

    max_attempts: int = 4
    backoff_multiplier: float = 0.5
    backoff_min: float = 0.5
    backoff_max: float = 8.0
    retryable: tuple[type[BaseException], ...] = (ChainTransientError,)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.chain_max_attempts,
            backoff_multiplier=settings.chain_backoff_multiplier,
            backoff_min=settings.chain_backoff_min_seconds,
            backoff_max=settings.chain_backoff_max_seconds,
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.backoff_multiplier,
                min=self.backoff_min,
                max=self.backoff_max,
            ),
            retry=retry_if_exception_type(self.retryable),
            before_sleep=_log_retry,
            reraise=True,
        )


class ChainGateway:
    """Submits contract calls and turns receipts into domain results."""

    def __init__(
        self,
        backend: ChainBackend,
        retry_policy: RetryPolicy | None = None,
        confirmation_timeout: float = 120.0,
    ) -> None:
        self._backend = backend
        self._retry_policy = retry_policy or RetryPolicy()
        self._confirmation_timeout = confirmation_timeout

    @property
    def backend(self) -> ChainBackend:
        return self._backend

    @property
    def service_address(self) -> str:
        return self._backend.service_address.lower()

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def mint_asset(
        self,
        params: MintParams,
        on_submitted: Callable[[str], Awaitable[None]] | None = None,
    ) -> MintResult:
        """Mint a title and return the asset id from the TitleMinted event.

        `on_submitted` runs once the transaction is signed and before its
        first broadcast, so the caller holds the hash whatever the node
        reports afterwards.
        """
        tx_hash = await self._submit(
            ChainContract.PROPERTY_TITLE,
            MINT_FUNCTION,
            params.as_args(),
            on_submitted=on_submitted,
        )

        receipt = await self._confirm(tx_hash)
        result = self._parse_mint(receipt)
        logger.info(
            "chain.asset_minted",
            tx_hash=tx_hash,
            asset_id=result.asset_id,
            property_id=params.property_id,
        )
        return result

    async def set_verified_flag(self, asset_id: int, verified: bool = True) -> TxResult:
        return await self._write(
            ChainContract.PROPERTY_TITLE, "setVerified", [asset_id, verified]
        )

    async def approve_for_sale(self, asset_id: int) -> TxResult:
        """Approve the marketplace contract to transfer the asset."""
        return await self._write(
            ChainContract.PROPERTY_TITLE,
            "approve",
            [self._backend.marketplace_address, asset_id],
        )

    async def list_for_sale(self, asset_id: int, price_ether: Decimal) -> TxResult:
        price_wei = ether_to_wei(price_ether)
        return await self._write(ChainContract.MARKETPLACE, "listProperty", [asset_id, price_wei])

    async def withdraw_escrow(self) -> TxResult:
        return await self._write(ChainContract.MARKETPLACE, "withdrawProceeds", [])

    # ------------------------------------------------------------------
    # Receipt replay
    # ------------------------------------------------------------------

    async def get_sale_event(self, tx_hash: str) -> SaleEvent:
        """Capture the PropertySold event of a buyer's purchase transaction."""
        receipt = await self._confirm(tx_hash)
        event = receipt.find_event(PROPERTY_SOLD_EVENT)
        if event is None:
            raise EventMissingError(PROPERTY_SOLD_EVENT, tx_hash)
        return SaleEvent(
            asset_id=int(event.args["tokenId"]),
            buyer=str(event.args["buyer"]).lower(),
            seller=str(event.args["seller"]).lower(),
            price_wei=int(event.args["price"]),
            tx_hash=tx_hash,
            block_number=receipt.block_number,
        )

    async def get_mint_result(self, tx_hash: str, timeout: float | None = None) -> MintResult:
        """Wait for (or re-read) a mint receipt and parse its TitleMinted event."""
        return self._parse_mint(await self._confirm(tx_hash, timeout))

    async def wait_for_transaction(self, tx_hash: str, timeout: float | None = None) -> TxReceipt:
        return await self._confirm(tx_hash, timeout)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_escrow_balance(self, address: str | None = None) -> int:
        """Pending marketplace proceeds in wei (defaults to the service address)."""
        owner = address or self._backend.service_address
        return int(await self._read(ChainContract.MARKETPLACE, "pendingWithdrawals", [owner]))

    async def is_verified(self, asset_id: int) -> bool:
        return bool(await self._read(ChainContract.PROPERTY_TITLE, "isVerified", [asset_id]))

    async def get_owner(self, asset_id: int) -> str:
        return str(await self._read(ChainContract.PROPERTY_TITLE, "ownerOf", [asset_id])).lower()

    async def get_listing(self, asset_id: int) -> Listing:
        seller, price, active = await self._read(ChainContract.MARKETPLACE, "listings", [asset_id])
        return Listing(
            asset_id=asset_id,
            seller=str(seller).lower(),
            price_wei=int(price),
            active=bool(active),
        )

    async def is_transaction_known(self, tx_hash: str) -> bool:
        """True if the node has seen `tx_hash`, pending or mined."""

        async def lookup() -> bool:
            return await self._backend.is_known(tx_hash)

        return bool(await self._with_retry(lookup))

    async def ping(self) -> int:
        """Return the current block number. Raises on connectivity failure."""
        return await self._with_retry(self._backend.block_number)

    async def close(self) -> None:
        await self._backend.close()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _write(
        self,
        contract: ChainContract,
        function: str,
        args: Sequence[Any],
    ) -> TxResult:
        tx_hash = await self._submit(contract, function, args)
        receipt = await self._confirm(tx_hash)
        logger.info(
            "chain.transaction_confirmed",
            contract=contract.value,
            function=function,
            tx_hash=tx_hash,
            block_number=receipt.block_number,
        )
        return TxResult(tx_hash=tx_hash, block_number=receipt.block_number)

    async def _submit(
        self,
        contract: ChainContract,
        function: str,
        args: Sequence[Any],
        on_submitted: Callable[[str], Awaitable[None]] | None = None,
    ) -> str:
        async def sign() -> SignedTransaction:
            return await self._backend.sign_transaction(contract, function, args)

        signed: SignedTransaction = await self._with_retry(sign)
        if on_submitted is not None:
            await on_submitted(signed.tx_hash)

        ambiguous = False

        async def broadcast() -> str:
            nonlocal ambiguous
            try:
                return await self._backend.broadcast(signed)
            except OSError:
                # The node may have accepted it before the connection dropped
                ambiguous = True
                raise

        try:
            tx_hash = await self._with_retry(broadcast)
        except ChainRejectedError:
            raise
        except ChainError as err:
            if ambiguous and err.tx_hash is None:
                err.tx_hash = signed.tx_hash
            logger.warning(
                "chain.broadcast_failed",
                contract=contract.value,
                function=function,
                tx_hash=signed.tx_hash,
                ambiguous=ambiguous,
                error=err.message,
            )
            raise

        logger.info(
            "chain.transaction_submitted",
            contract=contract.value,
            function=function,
            tx_hash=tx_hash,
            nonce=signed.nonce,
        )
        return tx_hash

    async def _confirm(self, tx_hash: str, timeout: float | None = None) -> TxReceipt:
        timeout = self._confirmation_timeout if timeout is None else timeout
        try:
            receipt = await self._backend.wait_for_receipt(tx_hash, timeout)
        except TimeoutError as err:
            logger.warning("chain.confirmation_timeout", tx_hash=tx_hash, timeout=timeout)
            raise ConfirmationTimeoutError(tx_hash, timeout) from err
        except ChainError as err:
            if err.tx_hash is None:
                err.tx_hash = tx_hash
            raise
        except OSError as err:
            raise ChainTransientError(f"Lost connection while confirming: {err}", tx_hash) from err

        if not receipt.succeeded:
            raise ChainRejectedError("transaction reverted", tx_hash=tx_hash)
        return receipt

    async def _read(self, contract: ChainContract, function: str, args: Sequence[Any]) -> Any:
        async def call() -> Any:
            return await self._backend.call(contract, function, args)

        return await self._with_retry(call)

    async def _with_retry(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        async for attempt in self._retry_policy.retrying():
            with attempt:
                result = await _classified(operation)
        return result

    @staticmethod
    def _parse_mint(receipt: TxReceipt) -> MintResult:
        event = receipt.find_event(TITLE_MINTED_EVENT)
        if event is None:
            raise EventMissingError(TITLE_MINTED_EVENT, receipt.tx_hash)
        return MintResult(
            tx_hash=receipt.tx_hash,
            asset_id=int(event.args["tokenId"]),
            owner=str(event.args["owner"]).lower(),
            property_id=str(event.args["propertyId"]),
            block_number=receipt.block_number,
        )


async def _classified(operation: Callable[[], Awaitable[Any]]) -> Any:
    """Run a backend call, mapping raw failures onto the chain error taxonomy."""
    try:
        return await operation()
    except ChainError:
        raise
    except OSError as err:
        raise ChainTransientError(f"Chain node unreachable: {err}") from err
    except Exception as err:
        raise ChainError(f"Unexpected chain failure: {err}") from err


def ether_to_wei(amount: Decimal | int | str) -> int:
    """Convert an ether amount to wei.

    Rejects non-positive amounts and amounts finer than one wei; nothing is
    rounded away.
    """
    try:
        value = Decimal(str(amount).strip())
    except ArithmeticError as err:
        raise ValidationError(f"invalid price: {amount}", field="price") from err
    if not value.is_finite() or value <= 0:
        raise ValidationError("price must be greater than zero", field="price")
    with localcontext() as ctx:
        ctx.prec = len(value.as_tuple().digits) + 40
        wei = value.scaleb(18)
        if wei != wei.to_integral_value():
            raise ValidationError("price must be a whole number of wei", field="price")
    return int(to_wei(value, "ether"))
