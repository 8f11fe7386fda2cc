"""Marketplace escrow REST API routes.

Sale proceeds are held by the marketplace contract under the service
seller address until withdrawn.

Routes:
    GET    /api/v1/escrow/balance   — Pending proceeds and recorded sales
    POST   /api/v1/escrow/withdraw  — Withdraw pending proceeds
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from title_registry.api.deps import get_transfer_coordinator
from title_registry.logging_config import get_logger
from title_registry.schemas.property import (
    EscrowBalanceResponse,
    SaleEventResponse,
    WithdrawalResponse,
)
from title_registry.services.transfer_service import TransferCoordinator

router = APIRouter(prefix="/api/v1/escrow", tags=["Escrow"])
logger = get_logger(__name__)


@router.get(
    "/balance",
    response_model=EscrowBalanceResponse,
    summary="Get pending marketplace proceeds",
)
async def get_escrow_balance(
    coordinator: TransferCoordinator = Depends(get_transfer_coordinator),
) -> EscrowBalanceResponse:
    summary = await coordinator.get_escrow_balance()
    return EscrowBalanceResponse(
        seller_address=summary.seller_address,
        pending_wei=str(summary.pending_wei),
        pending_ether=summary.pending_ether,
        recorded_sales=[SaleEventResponse.model_validate(s) for s in summary.recorded_sales],
    )


@router.post(
    "/withdraw",
    response_model=WithdrawalResponse,
    summary="Withdraw pending proceeds",
)
async def withdraw_proceeds(
    coordinator: TransferCoordinator = Depends(get_transfer_coordinator),
) -> WithdrawalResponse:
    """Fails with 400 when nothing is pending."""
    result = await coordinator.withdraw()
    return WithdrawalResponse(
        tx_hash=result.tx_hash,
        amount_wei=str(result.amount_wei),
        amount_ether=result.amount_ether,
    )
