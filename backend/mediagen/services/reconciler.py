"""
订单与支付对账
支付网关会重复投递回调，直到收到成功应答；对账必须幂等
"""
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from mediagen.models import CreditPackage, Order, OrderStatus, User, generate_id
from mediagen.services import ledger

logger = logging.getLogger(__name__)


class OrderNotFoundError(Exception):
    pass


class ReconcileResult(str, Enum):
    SETTLED = "settled"            # 本次完成入账
    ALREADY_PAID = "already_paid"  # 重复回调，无操作
    IGNORED = "ignored"            # 非成功状态的通知


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def generate_order_no() -> str:
    """订单号：DN + 日期 + 8 位随机大写字母数字"""
    rand = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(8))
    return f"DN{datetime.now():%Y%m%d}{rand}"


def create_order(
    db: Session,
    user: User,
    package: CreditPackage,
    payment_method: str,
    expire_minutes: int = 30,
) -> Order:
    order = Order(
        id=generate_id("order"),
        order_no=generate_order_no(),
        user_id=user.id,
        package_id=package.id,
        credits=package.credits,
        amount=package.price,
        status=OrderStatus.PENDING.value,
        payment_method=payment_method,
        expire_at=utcnow() + timedelta(minutes=expire_minutes),
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.order_no} created for user {user.id}: {package.id}, {package.price}")
    return order


def expire_if_due(db: Session, order: Order) -> Order:
    """过期未支付的订单标记为 expired"""
    if (
        order.status == OrderStatus.PENDING.value
        and order.expire_at is not None
        and _as_naive_utc(order.expire_at) < utcnow()
    ):
        order.status = OrderStatus.EXPIRED.value
        db.commit()
        db.refresh(order)
        logger.info(f"Order {order.order_no} expired")
    return order


def reconcile(
    db: Session,
    order_no: str,
    transaction_id: Optional[str],
    settled: bool = True,
) -> ReconcileResult:
    """
    处理支付成功通知

    订单状态更新与积分入账在同一事务中完成；
    状态更新是带 status != paid 条件的 UPDATE，并发重复回调只有一个能生效。
    已过期的订单收到成功通知仍然入账（款项已收到）。
    """
    order = db.query(Order).filter(Order.order_no == order_no).first()
    if order is None:
        raise OrderNotFoundError(order_no)

    if order.status == OrderStatus.PAID.value:
        logger.info(f"Order {order_no} already paid, duplicate notification ignored")
        return ReconcileResult.ALREADY_PAID

    if not settled:
        logger.info(f"Order {order_no} notification is not a settlement, ignored")
        return ReconcileResult.IGNORED

    try:
        updated = (
            db.query(Order)
            .filter(Order.id == order.id, Order.status != OrderStatus.PAID.value)
            .update(
                {
                    Order.status: OrderStatus.PAID.value,
                    Order.transaction_id: transaction_id,
                    Order.paid_at: utcnow(),
                },
                synchronize_session="fetch",
            )
        )
        if updated != 1:
            db.rollback()
            logger.info(f"Order {order_no} settled concurrently, skip")
            return ReconcileResult.ALREADY_PAID

        ledger.credit(
            db,
            order.user_id,
            order.credits,
            f"购买积分: {order.credits} 积分",
            order_id=order.id,
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Reconcile of order {order_no} failed", exc_info=True)
        raise

    logger.info(f"Order {order_no} paid ({transaction_id}), credited {order.credits} to user {order.user_id}")
    return ReconcileResult.SETTLED


DEFAULT_PACKAGES = [
    {"id": "pkg_free", "name": "免费体验", "credits": 20, "price": 0, "original_price": None,
     "popular": False, "sort_order": 0},
    {"id": "pkg_starter", "name": "入门套餐", "credits": 100, "price": 49, "original_price": 69,
     "popular": False, "sort_order": 1},
    {"id": "pkg_pro", "name": "专业套餐", "credits": 500, "price": 199, "original_price": 299,
     "popular": True, "sort_order": 2},
]


def seed_credit_packages(db: Session) -> int:
    """写入默认积分套餐（已存在的跳过）"""
    created = 0
    for data in DEFAULT_PACKAGES:
        if db.query(CreditPackage).filter(CreditPackage.id == data["id"]).first():
            continue
        db.add(CreditPackage(**data))
        created += 1
    if created:
        db.commit()
        logger.info(f"Seeded {created} credit packages")
    return created
