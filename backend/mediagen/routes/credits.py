from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from mediagen.auth import get_current_user
from mediagen.database import get_db
from mediagen.models import User
from mediagen.schemas import CreditResponse, CreditTransactionList
from mediagen.services import ledger

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("", response_model=CreditResponse)
def get_credits(current_user: User = Depends(get_current_user)):
    """获取当前积分余额"""
    return CreditResponse(credits=current_user.credits)


@router.get("/transactions", response_model=CreditTransactionList)
def get_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """积分流水，最新的在前"""
    transactions = ledger.list_transactions(db, current_user.id, skip=(page - 1) * limit, limit=limit)
    return CreditTransactionList(transactions=transactions, page=page, limit=limit)
