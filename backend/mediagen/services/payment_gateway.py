"""
支付回调解析与验签
微信支付：JSON 回调，签名放在 Wechatpay-* 请求头
支付宝：表单回调，签名为 sign 参数
"""
import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping

logger = logging.getLogger(__name__)


class PaymentVerificationError(Exception):
    """回调验签失败或报文格式错误"""
    pass


@dataclass
class PaymentNotification:
    order_no: str
    transaction_id: str
    settled: bool
    raw: Dict = field(default_factory=dict)


def sign_message(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def _check_signature(secret: str, message: str, signature: str) -> None:
    if not secret:
        raise PaymentVerificationError("notify secret is not configured")
    expected = sign_message(secret, message).encode("ascii")
    if not signature or not hmac.compare_digest(expected, signature.encode("utf-8")):
        raise PaymentVerificationError("invalid signature")


class WechatPayGateway:
    name = "wechat"

    def __init__(self, secret: str):
        self.secret = secret

    def verify(self, headers: Mapping[str, str], body: bytes) -> None:
        timestamp = headers.get("wechatpay-timestamp", "")
        nonce = headers.get("wechatpay-nonce", "")
        signature = headers.get("wechatpay-signature", "")
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PaymentVerificationError(f"body is not valid UTF-8: {e}") from e
        message = f"{timestamp}\n{nonce}\n{text}\n"
        _check_signature(self.secret, message, signature)

    def parse(self, body: bytes) -> PaymentNotification:
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise PaymentVerificationError(f"invalid JSON body: {e}") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("resource") or {}, dict):
            raise PaymentVerificationError("unexpected notification body")
        resource = payload.get("resource") or {}
        order_no = resource.get("out_trade_no")
        if not order_no:
            raise PaymentVerificationError("missing out_trade_no")
        settled = (
            payload.get("event_type") == "TRANSACTION.SUCCESS"
            and resource.get("trade_state") == "SUCCESS"
        )
        return PaymentNotification(
            order_no=order_no,
            transaction_id=resource.get("transaction_id") or "",
            settled=settled,
            raw=payload,
        )


class AlipayGateway:
    name = "alipay"
    SETTLED_STATES = ("TRADE_SUCCESS", "TRADE_FINISHED")

    def __init__(self, secret: str):
        self.secret = secret

    @staticmethod
    def canonical_string(params: Mapping[str, str]) -> str:
        """按参数名排序拼接，排除 sign、sign_type 和空值"""
        return "&".join(
            f"{key}={params[key]}"
            for key in sorted(params)
            if key not in ("sign", "sign_type") and params[key] not in (None, "")
        )

    def verify(self, params: Mapping[str, str]) -> None:
        _check_signature(self.secret, self.canonical_string(params), params.get("sign", ""))

    def parse(self, params: Mapping[str, str]) -> PaymentNotification:
        order_no = params.get("out_trade_no")
        if not order_no:
            raise PaymentVerificationError("missing out_trade_no")
        return PaymentNotification(
            order_no=order_no,
            transaction_id=params.get("trade_no") or "",
            settled=params.get("trade_status") in self.SETTLED_STATES,
            raw=dict(params),
        )
