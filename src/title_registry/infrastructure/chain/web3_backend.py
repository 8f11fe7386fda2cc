"""ChainBackend over JSON-RPC using web3.py.

All writes are signed locally with the service private key and broadcast as
raw transactions; the node never holds the key. A signed transaction keeps
its nonce, so a rebroadcast after a lost response is the same transaction.
Failures are classified here when web3 gives enough information (reverts,
validation errors, known transient RPC messages); everything else is left
for the gateway to map.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from web3 import AsyncWeb3
from web3.exceptions import (
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3RPCError,
    Web3ValidationError,
)
from web3.logs import DISCARD

from title_registry.domain.chain_protocol import ChainEvent, SignedTransaction, TxReceipt
from title_registry.domain.enums import ChainContract
from title_registry.domain.exceptions import ChainRejectedError, ChainTransientError
from title_registry.infrastructure.chain.abi import (
    MARKETPLACE_ABI,
    PROPERTY_SOLD_EVENT,
    PROPERTY_TITLE_ABI,
    TITLE_MINTED_EVENT,
)
from title_registry.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = get_logger(__name__)

# RPC error fragments that mean "try again", not "this call is wrong"
_TRANSIENT_MARKERS = (
    "replacement transaction underpriced",
    "transaction underpriced",
    "timeout",
    "header not found",
)

# Answers to a rebroadcast of a transaction the node already holds
_ALREADY_KNOWN_MARKERS = ("already known", "known transaction")


def _classify_rpc_error(err: Exception) -> Exception:
    message = str(err)
    lowered = message.lower()
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return ChainTransientError(message)
    return ChainRejectedError(message)


class Web3ChainBackend:
    """Talks to a node through AsyncWeb3 with a locally held signing key."""

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        chain_id: int,
        property_title_address: str,
        marketplace_address: str,
        poll_latency: float = 0.5,
    ) -> None:
        if not private_key:
            raise ValueError("chain_service_private_key is required when not simulating")

        self._w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._account = self._w3.eth.account.from_key(private_key)
        self._chain_id = chain_id
        self._poll_latency = poll_latency
        self._marketplace_address = AsyncWeb3.to_checksum_address(marketplace_address)
        self._abis = {
            ChainContract.PROPERTY_TITLE: PROPERTY_TITLE_ABI,
            ChainContract.MARKETPLACE: MARKETPLACE_ABI,
        }
        self._contracts = {
            ChainContract.PROPERTY_TITLE: self._w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(property_title_address),
                abi=PROPERTY_TITLE_ABI,
            ),
            ChainContract.MARKETPLACE: self._w3.eth.contract(
                address=self._marketplace_address,
                abi=MARKETPLACE_ABI,
            ),
        }
        logger.info(
            "chain.web3_backend_ready",
            rpc_url=rpc_url,
            chain_id=chain_id,
            service_address=self._account.address,
        )

    @property
    def service_address(self) -> str:
        return self._account.address

    @property
    def marketplace_address(self) -> str:
        return self._marketplace_address

    async def sign_transaction(
        self,
        contract: ChainContract,
        function: str,
        args: Sequence[Any],
    ) -> SignedTransaction:
        fn = self._function(contract, function, args)
        try:
            nonce = await self._w3.eth.get_transaction_count(self._account.address, "pending")
            tx = await fn.build_transaction(
                {
                    "from": self._account.address,
                    "nonce": nonce,
                    "chainId": self._chain_id,
                }
            )
        except ContractLogicError as err:
            raise ChainRejectedError(err.message or str(err)) from err
        except Web3ValidationError as err:
            raise ChainRejectedError(f"invalid arguments: {err}") from err
        except Web3RPCError as err:
            raise _classify_rpc_error(err) from err

        signed = self._account.sign_transaction(tx)
        return SignedTransaction(
            tx_hash=AsyncWeb3.to_hex(signed.hash),
            raw_transaction=bytes(signed.raw_transaction),
            nonce=nonce,
            function=function,
        )

    async def broadcast(self, signed: SignedTransaction) -> str:
        try:
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except Web3RPCError as err:
            lowered = str(err).lower()
            if any(marker in lowered for marker in _ALREADY_KNOWN_MARKERS):
                return signed.tx_hash
            if "nonce too low" in lowered:
                # Either our earlier broadcast was mined, or the nonce went elsewhere
                if await self.is_known(signed.tx_hash):
                    return signed.tx_hash
                raise ChainRejectedError(
                    f"nonce {signed.nonce} was used by another transaction"
                ) from err
            raise _classify_rpc_error(err) from err
        return AsyncWeb3.to_hex(tx_hash)

    async def is_known(self, tx_hash: str) -> bool:
        try:
            await self._w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return False
        return True

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=timeout,
                poll_latency=self._poll_latency,
            )
        except TimeExhausted as err:
            raise TimeoutError(str(err)) from err
        return self._to_receipt(tx_hash, receipt)

    async def get_receipt(self, tx_hash: str) -> TxReceipt | None:
        try:
            receipt = await self._w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return self._to_receipt(tx_hash, receipt)

    async def call(self, contract: ChainContract, function: str, args: Sequence[Any]) -> Any:
        fn = self._function(contract, function, args)
        try:
            return await fn.call()
        except ContractLogicError as err:
            raise ChainRejectedError(err.message or str(err)) from err
        except Web3RPCError as err:
            raise _classify_rpc_error(err) from err

    async def block_number(self) -> int:
        return await self._w3.eth.block_number

    async def close(self) -> None:
        await self._w3.provider.disconnect()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _function(self, contract: ChainContract, function: str, args: Sequence[Any]) -> Any:
        """Bind a contract function, checksumming every address-typed argument."""
        entry = next(
            (
                item
                for item in self._abis[contract]
                if item["type"] == "function" and item["name"] == function
            ),
            None,
        )
        if entry is None:
            raise ChainRejectedError(f"unknown function {contract}.{function}")

        bound = [
            AsyncWeb3.to_checksum_address(value) if spec["type"] == "address" else value
            for spec, value in zip(entry["inputs"], args, strict=True)
        ]
        return getattr(self._contracts[contract].functions, function)(*bound)

    def _to_receipt(self, tx_hash: str, receipt: Any) -> TxReceipt:
        events: list[ChainEvent] = []
        decoders = (
            (ChainContract.PROPERTY_TITLE, TITLE_MINTED_EVENT),
            (ChainContract.MARKETPLACE, PROPERTY_SOLD_EVENT),
        )
        for contract, event_name in decoders:
            event = getattr(self._contracts[contract].events, event_name)()
            for decoded in event.process_receipt(receipt, errors=DISCARD):
                events.append(
                    ChainEvent(
                        name=decoded["event"],
                        args=dict(decoded["args"]),
                        contract=contract.value,
                    )
                )

        return TxReceipt(
            tx_hash=tx_hash,
            succeeded=receipt["status"] == 1,
            block_number=receipt.get("blockNumber"),
            events=tuple(events),
        )
