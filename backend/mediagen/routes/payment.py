"""
支付路由
积分套餐、订单和支付网关回调
"""
import logging
from functools import lru_cache

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from mediagen.auth import get_current_user
from mediagen.config import get_settings
from mediagen.database import get_db
from mediagen.errors import order_not_found_error, package_not_found_error, validation_error_error
from mediagen.models import CreditPackage, Order, User
from mediagen.schemas import CreditPackageResponse, OrderCreate, OrderResponse
from mediagen.services.payment_gateway import AlipayGateway, PaymentVerificationError, WechatPayGateway
from mediagen.services.reconciler import (
    OrderNotFoundError,
    create_order,
    expire_if_due,
    reconcile,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["payment"])


@lru_cache()
def get_wechat_gateway() -> WechatPayGateway:
    return WechatPayGateway(get_settings().WECHAT_PAY_NOTIFY_SECRET)


@lru_cache()
def get_alipay_gateway() -> AlipayGateway:
    return AlipayGateway(get_settings().ALIPAY_NOTIFY_SECRET)


@router.get("/packages", response_model=list[CreditPackageResponse])
def list_packages(db: Session = Depends(get_db)):
    """获取在售积分套餐"""
    return (
        db.query(CreditPackage)
        .filter(CreditPackage.is_active.is_(True))
        .order_by(CreditPackage.sort_order)
        .all()
    )


@router.post("/create", response_model=OrderResponse)
def create_payment_order(
    request: OrderCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    创建充值订单

    - 免费套餐不能下单
    - 订单在 ORDER_EXPIRE_MINUTES 分钟后过期
    """
    package = db.query(CreditPackage).filter(
        CreditPackage.id == request.package_id,
        CreditPackage.is_active.is_(True)
    ).first()
    if not package:
        raise package_not_found_error(request.package_id)
    if package.price <= 0:
        raise validation_error_error("免费套餐无需购买")

    return create_order(
        db,
        current_user,
        package,
        request.payment_method,
        expire_minutes=get_settings().ORDER_EXPIRE_MINUTES,
    )


@router.get("/query", response_model=OrderResponse)
def query_order(
    order_no: str = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """查询订单状态，超时未支付的订单会被标记为过期"""
    order = db.query(Order).filter(
        Order.order_no == order_no,
        Order.user_id == current_user.id
    ).first()
    if not order:
        raise order_not_found_error(order_no)
    return expire_if_due(db, order)


@router.get("/orders", response_model=list[OrderResponse])
def list_orders(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """订单列表，最新的在前"""
    return (
        db.query(Order)
        .filter(Order.user_id == current_user.id)
        .order_by(Order.created_at.desc())
        .limit(limit)
        .all()
    )


def _wechat_fail(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": "FAIL", "message": message})


@router.post("/wechat/notify")
async def wechat_notify(
    request: Request,
    db: Session = Depends(get_db),
    gateway: WechatPayGateway = Depends(get_wechat_gateway),
):
    """
    微信支付回调

    - 返回非 2xx 时微信会重新投递
    - 重复回调直接返回成功
    """
    body = await request.body()
    try:
        gateway.verify(request.headers, body)
        notification = gateway.parse(body)
    except PaymentVerificationError as e:
        logger.warning(f"WeChat Pay notification rejected: {e}")
        return _wechat_fail(status.HTTP_400_BAD_REQUEST, str(e))

    try:
        await run_in_threadpool(
            reconcile, db, notification.order_no, notification.transaction_id, notification.settled
        )
    except OrderNotFoundError:
        logger.warning(f"WeChat Pay notification for unknown order {notification.order_no}")
        return _wechat_fail(status.HTTP_404_NOT_FOUND, "Order not found")
    except Exception as e:
        logger.error(f"WeChat Pay notification processing failed: {e}", exc_info=True)
        return _wechat_fail(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error")

    return {"code": "SUCCESS", "message": "OK"}


@router.post("/alipay/notify")
async def alipay_notify(
    request: Request,
    db: Session = Depends(get_db),
    gateway: AlipayGateway = Depends(get_alipay_gateway),
):
    """支付宝异步通知，应答纯文本 success / fail"""
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}
    try:
        gateway.verify(params)
        notification = gateway.parse(params)
    except PaymentVerificationError as e:
        logger.warning(f"Alipay notification rejected: {e}")
        return PlainTextResponse("fail", status_code=status.HTTP_400_BAD_REQUEST)

    try:
        await run_in_threadpool(
            reconcile, db, notification.order_no, notification.transaction_id, notification.settled
        )
    except OrderNotFoundError:
        logger.warning(f"Alipay notification for unknown order {notification.order_no}")
        return PlainTextResponse("fail", status_code=status.HTTP_404_NOT_FOUND)
    except Exception as e:
        logger.error(f"Alipay notification processing failed: {e}", exc_info=True)
        return PlainTextResponse("fail", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return PlainTextResponse("success")
