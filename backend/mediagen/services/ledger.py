"""
积分账本服务
所有余额变动都以流水形式记录，users.credits 只是流水的汇总值

调用方负责提交事务：这里的函数只 flush，
让余额变动、流水写入与调用方的其他写操作处于同一个事务中
"""
import logging
from typing import List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from mediagen.models import CreditTransaction, TransactionType, User

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """账本操作异常"""
    pass


def _check_amount(amount: int) -> None:
    if not isinstance(amount, int) or amount <= 0:
        raise LedgerError(f"Invalid credit amount: {amount}")


def _current_balance(db: Session, user_id: int) -> int:
    return db.query(User.credits).filter(User.id == user_id).scalar()


def _append(
    db: Session,
    user_id: int,
    tx_type: TransactionType,
    amount: int,
    description: str,
    task_id: Optional[str] = None,
    task_type: Optional[str] = None,
    order_id: Optional[str] = None,
) -> CreditTransaction:
    entry = CreditTransaction(
        user_id=user_id,
        type=tx_type.value,
        amount=amount,
        balance_after=_current_balance(db, user_id),
        description=description,
        task_id=task_id,
        task_type=task_type,
        order_id=order_id,
    )
    db.add(entry)
    db.flush()
    return entry


def deduct(
    db: Session,
    user_id: int,
    amount: int,
    description: str,
    task_id: Optional[str] = None,
    task_type: Optional[str] = None,
) -> bool:
    """
    扣除积分

    余额检查与扣减是同一条条件 UPDATE 语句，数据库行锁保证同一用户的并发扣费串行化。
    余额不足时返回 False，不产生任何写入。
    """
    _check_amount(amount)
    updated = (
        db.query(User)
        .filter(User.id == user_id, User.credits >= amount)
        .update({User.credits: User.credits - amount}, synchronize_session="fetch")
    )
    if updated != 1:
        logger.info(f"Deduct of {amount} credits refused for user {user_id}")
        return False

    _append(db, user_id, TransactionType.DEBIT, amount, description, task_id=task_id, task_type=task_type)
    logger.info(f"Deducted {amount} credits from user {user_id} (task {task_id})")
    return True


def refund(
    db: Session,
    user_id: int,
    amount: int,
    description: str,
    task_id: Optional[str] = None,
    task_type: Optional[str] = None,
) -> CreditTransaction:
    """退还积分，不做上限检查"""
    _check_amount(amount)
    _increment(db, user_id, amount)
    entry = _append(db, user_id, TransactionType.CREDIT, amount, description, task_id=task_id, task_type=task_type)
    logger.info(f"Refunded {amount} credits to user {user_id} (task {task_id})")
    return entry


def credit(
    db: Session,
    user_id: int,
    amount: int,
    description: str,
    order_id: Optional[str] = None,
) -> CreditTransaction:
    """充值或赠送积分"""
    _check_amount(amount)
    _increment(db, user_id, amount)
    entry = _append(db, user_id, TransactionType.CREDIT, amount, description, order_id=order_id)
    logger.info(f"Credited {amount} credits to user {user_id} (order {order_id})")
    return entry


def _increment(db: Session, user_id: int, amount: int) -> None:
    updated = (
        db.query(User)
        .filter(User.id == user_id)
        .update({User.credits: User.credits + amount}, synchronize_session="fetch")
    )
    if updated != 1:
        raise LedgerError(f"User {user_id} not found")


def replay_balance(db: Session, user_id: int) -> int:
    """按创建顺序重放流水得到的余额"""
    balance = 0
    entries = (
        db.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.id)
        .all()
    )
    for entry in entries:
        if entry.type == TransactionType.CREDIT.value:
            balance += entry.amount
        else:
            balance -= entry.amount
    return balance


def ledger_balance(db: Session, user_id: int) -> int:
    """sum(credit) - sum(debit)"""
    signed = case(
        (CreditTransaction.type == TransactionType.CREDIT.value, CreditTransaction.amount),
        else_=-CreditTransaction.amount,
    )
    total = db.query(func.coalesce(func.sum(signed), 0)).filter(
        CreditTransaction.user_id == user_id
    ).scalar()
    return int(total)


def verify_user_balance(db: Session, user_id: int) -> bool:
    """检查 users.credits 与流水是否一致"""
    stored = _current_balance(db, user_id)
    replayed = replay_balance(db, user_id)
    if stored != replayed or replayed != ledger_balance(db, user_id):
        logger.error(f"Ledger mismatch for user {user_id}: stored={stored}, replayed={replayed}")
        return False
    return True


def list_transactions(db: Session, user_id: int, skip: int = 0, limit: int = 20) -> List[CreditTransaction]:
    return (
        db.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )
