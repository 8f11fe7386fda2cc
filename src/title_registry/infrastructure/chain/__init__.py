"""Chain access: gateway singleton, retry policy and backends.

Usage:
    from title_registry.infrastructure.chain import get_chain_gateway

    gateway = get_chain_gateway()
    result = await gateway.mint_asset(params)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from title_registry.config import get_settings
from title_registry.infrastructure.chain.gateway import ChainGateway, RetryPolicy
from title_registry.infrastructure.chain.simulated import SimulatedChainBackend
from title_registry.logging_config import get_logger

if TYPE_CHECKING:
    from title_registry.config import Settings
    from title_registry.domain.chain_protocol import ChainBackend

logger = get_logger(__name__)

_gateway: ChainGateway | None = None


def build_backend(settings: Settings) -> ChainBackend:
    """Create the configured backend (simulated unless chain_simulate is off)."""
    if settings.chain_simulate:
        return SimulatedChainBackend(marketplace_address=settings.marketplace_address)

    from title_registry.infrastructure.chain.web3_backend import Web3ChainBackend

    return Web3ChainBackend(
        rpc_url=settings.chain_rpc_url,
        private_key=settings.chain_service_private_key,
        chain_id=settings.chain_id,
        property_title_address=settings.property_title_address,
        marketplace_address=settings.marketplace_address,
        poll_latency=settings.chain_poll_latency_seconds,
    )


async def init_chain_gateway() -> ChainGateway:
    """Initialize the gateway singleton. Called during app startup."""
    global _gateway
    settings = get_settings()
    _gateway = ChainGateway(
        backend=build_backend(settings),
        retry_policy=RetryPolicy.from_settings(settings),
        confirmation_timeout=settings.chain_confirmation_timeout_seconds,
    )
    logger.info(
        "chain.gateway_initialized",
        simulated=settings.chain_simulate,
        service_address=_gateway.service_address,
    )
    return _gateway


def get_chain_gateway() -> ChainGateway:
    """Return the gateway singleton. Must call init_chain_gateway() first."""
    if _gateway is None:
        raise RuntimeError("Chain gateway not initialized. Call init_chain_gateway() first.")
    return _gateway


async def close_chain_gateway() -> None:
    """Release backend connections. Called during app shutdown."""
    global _gateway
    if _gateway is not None:
        await _gateway.close()
        logger.info("chain.gateway_closed")
        _gateway = None


__all__ = [
    "ChainGateway",
    "RetryPolicy",
    "SimulatedChainBackend",
    "build_backend",
    "close_chain_gateway",
    "get_chain_gateway",
    "init_chain_gateway",
]
