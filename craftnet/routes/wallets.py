"""Wallet routes: balance and ledger history for the caller."""

from decimal import Decimal

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from ..auth import CurrentIdentity
from ..database import Database
from ..logging_config import get_logger
from ..models import WalletTransaction
from ..rate_limit import limiter
from ..wallet import WalletLedger

logger = get_logger("craftnet.routes.wallets")
router = APIRouter(prefix="/wallets", tags=["wallets"])


class WalletResponse(BaseModel):
    user_id: str
    balance_ngn: Decimal


class TransactionListResponse(BaseModel):
    transactions: list[WalletTransaction]
    limit: int
    offset: int


@router.get("/me", response_model=WalletResponse)
@limiter.limit("60/minute")
async def get_my_wallet(request: Request, auth: CurrentIdentity, db: Database):
    """Return the caller's wallet, creating an empty one on first access."""
    wallet = await WalletLedger.get_wallet(db, auth.user_id)
    return WalletResponse(user_id=wallet.user_id, balance_ngn=wallet.balance_ngn)


@router.get("/me/transactions", response_model=TransactionListResponse)
@limiter.limit("60/minute")
async def list_my_transactions(
    request: Request,
    auth: CurrentIdentity,
    db: Database,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    transactions = await WalletLedger.list_transactions(db, auth.user_id, limit=limit, offset=offset)
    return TransactionListResponse(transactions=transactions, limit=limit, offset=offset)
