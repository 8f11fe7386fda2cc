"""Account REST API routes.

Accounts bind a display name and role to a wallet address. A buyer must
have an account before a purchase can be recorded against it.

Routes:
    POST   /api/v1/accounts                  — Register an account
    GET    /api/v1/accounts/{wallet_address} — Look up an account by wallet
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from title_registry.api.deps import get_account_service
from title_registry.logging_config import get_logger
from title_registry.schemas.property import AccountResponse, CreateAccountRequest
from title_registry.services.account_service import AccountService

router = APIRouter(prefix="/api/v1/accounts", tags=["Accounts"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=AccountResponse,
    status_code=201,
    summary="Register an account",
)
async def create_account(
    request: CreateAccountRequest,
    svc: AccountService = Depends(get_account_service),
) -> AccountResponse:
    account = await svc.register(
        name=request.name,
        wallet_address=request.wallet_address,
        role=request.role,
        email=request.email,
    )
    return AccountResponse.model_validate(account)


@router.get(
    "/{wallet_address}",
    response_model=AccountResponse,
    summary="Get account by wallet address",
)
async def get_account(
    wallet_address: str,
    svc: AccountService = Depends(get_account_service),
) -> AccountResponse:
    account = await svc.get_by_wallet(wallet_address)
    return AccountResponse.model_validate(account)
