"""
支付与对账测试
"""
import asyncio
import json
from datetime import timedelta

import pytest

from mediagen.models import CreditPackage, CreditTransaction, Order, User
from mediagen.routes import payment as payment_routes
from mediagen.services import ledger
from mediagen.services.payment_gateway import (
    AlipayGateway, PaymentVerificationError, WechatPayGateway, sign_message,
)
from mediagen.services.reconciler import (
    OrderNotFoundError,
    ReconcileResult,
    create_order,
    expire_if_due,
    generate_order_no,
    reconcile,
    seed_credit_packages,
    utcnow,
)

WECHAT_SECRET = "test-wechat-secret"
ALIPAY_SECRET = "test-alipay-secret"


@pytest.fixture
def packages(db_session):
    seed_credit_packages(db_session)
    return {p.id: p for p in db_session.query(CreditPackage).all()}


@pytest.fixture
def order(db_session, test_user, packages):
    return create_order(db_session, test_user, packages["pkg_starter"], "wechat")


def wechat_notification(order_no, event="TRANSACTION.SUCCESS", state="SUCCESS", transaction_id="wx-001"):
    body = json.dumps({
        "event_type": event,
        "resource": {"out_trade_no": order_no, "transaction_id": transaction_id, "trade_state": state},
    })
    headers = {
        "Wechatpay-Timestamp": "1718000000",
        "Wechatpay-Nonce": "nonce123",
        "Wechatpay-Signature": sign_message(WECHAT_SECRET, f"1718000000\nnonce123\n{body}\n"),
        "Content-Type": "application/json",
    }
    return body, headers


def alipay_notification(order_no, status="TRADE_SUCCESS"):
    params = {
        "out_trade_no": order_no,
        "trade_no": "ali-001",
        "trade_status": status,
        "total_amount": "49.00",
    }
    params["sign"] = sign_message(ALIPAY_SECRET, AlipayGateway.canonical_string(params))
    params["sign_type"] = "RSA2"
    return params


class TestReconciler:
    """对账幂等"""

    def test_order_no_format(self):
        order_no = generate_order_no()
        assert order_no.startswith("DN")
        assert len(order_no) == 18

    def test_seed_is_idempotent(self, db_session, packages):
        assert len(packages) == 3
        assert seed_credit_packages(db_session) == 0

    def test_create_order(self, order):
        assert order.status == "pending"
        assert order.credits == 100
        assert float(order.amount) == 49.0
        assert order.expire_at is not None

    def test_settle_credits_once(self, db_session, test_user, order):
        assert reconcile(db_session, order.order_no, "wx-001") == ReconcileResult.SETTLED
        assert reconcile(db_session, order.order_no, "wx-001") == ReconcileResult.ALREADY_PAID

        db_session.expire_all()
        assert db_session.get(User, test_user.id).credits == 110
        paid = db_session.query(Order).filter(Order.order_no == order.order_no).one()
        assert paid.status == "paid"
        assert paid.transaction_id == "wx-001"
        assert paid.paid_at is not None
        assert db_session.query(CreditTransaction).filter(CreditTransaction.order_id == order.id).count() == 1
        assert ledger.verify_user_balance(db_session, test_user.id)

    def test_non_settlement_ignored(self, db_session, test_user, order):
        assert reconcile(db_session, order.order_no, "wx-001", settled=False) == ReconcileResult.IGNORED
        db_session.expire_all()
        assert db_session.query(Order).filter(Order.id == order.id).one().status == "pending"

    def test_unknown_order(self, db_session):
        with pytest.raises(OrderNotFoundError):
            reconcile(db_session, "DN20990101XXXXXXXX", "wx-001")

    def test_expired_order_still_settles(self, db_session, order):
        """过期后收到的成功通知仍然入账"""
        order.expire_at = utcnow() - timedelta(minutes=1)
        db_session.commit()
        assert expire_if_due(db_session, order).status == "expired"

        assert reconcile(db_session, order.order_no, "wx-002") == ReconcileResult.SETTLED

    def test_expire_if_due_ignores_fresh_order(self, db_session, order):
        assert expire_if_due(db_session, order).status == "pending"


class TestGateways:

    def test_wechat_verify_and_parse(self):
        body, headers = wechat_notification("DN1")
        gateway = WechatPayGateway(WECHAT_SECRET)
        lowered = {k.lower(): v for k, v in headers.items()}

        gateway.verify(lowered, body.encode())
        notification = gateway.parse(body.encode())
        assert notification.order_no == "DN1"
        assert notification.settled

    def test_wechat_bad_signature(self):
        body, headers = wechat_notification("DN1")
        lowered = {k.lower(): v for k, v in headers.items()}
        with pytest.raises(PaymentVerificationError):
            WechatPayGateway("other-secret").verify(lowered, body.encode())

    def test_wechat_missing_secret(self):
        body, headers = wechat_notification("DN1")
        with pytest.raises(PaymentVerificationError, match="not configured"):
            WechatPayGateway("").verify({k.lower(): v for k, v in headers.items()}, body.encode())

    def test_wechat_closed_trade_not_settled(self):
        body, _ = wechat_notification("DN1", event="TRANSACTION.CLOSED", state="CLOSED")
        assert WechatPayGateway(WECHAT_SECRET).parse(body.encode()).settled is False

    def test_wechat_non_ascii_signature(self):
        body, headers = wechat_notification("DN1")
        lowered = {k.lower(): v for k, v in headers.items()}
        lowered["wechatpay-signature"] = "签名"
        with pytest.raises(PaymentVerificationError):
            WechatPayGateway(WECHAT_SECRET).verify(lowered, body.encode())

    def test_wechat_invalid_utf8_body(self):
        _, headers = wechat_notification("DN1")
        with pytest.raises(PaymentVerificationError, match="UTF-8"):
            WechatPayGateway(WECHAT_SECRET).verify({k.lower(): v for k, v in headers.items()}, b"\xff\xfe{}")

    def test_wechat_non_object_body(self):
        with pytest.raises(PaymentVerificationError):
            WechatPayGateway(WECHAT_SECRET).parse(b"[1, 2]")

    def test_alipay_canonical_string(self):
        params = {"b": "2", "a": "1", "sign": "x", "sign_type": "RSA2", "empty": ""}
        assert AlipayGateway.canonical_string(params) == "a=1&b=2"

    def test_alipay_tampered_amount(self):
        params = alipay_notification("DN1")
        params["total_amount"] = "0.01"
        with pytest.raises(PaymentVerificationError):
            AlipayGateway(ALIPAY_SECRET).verify(params)


class TestPaymentAPI:
    """支付接口"""

    def test_list_packages(self, client):
        response = client.get("/api/payment/packages")
        assert response.status_code == 200
        ids = [p["id"] for p in response.json()]
        assert ids == ["pkg_free", "pkg_starter", "pkg_pro"]

    def test_create_order(self, client, auth_headers):
        response = client.post("/api/payment/create", headers=auth_headers,
                               json={"package_id": "pkg_pro", "payment_method": "alipay"})
        assert response.status_code == 200
        data = response.json()
        assert data["credits"] == 500
        assert data["amount"] == 199.0
        assert data["status"] == "pending"

    def test_free_package_rejected(self, client, auth_headers):
        response = client.post("/api/payment/create", headers=auth_headers, json={"package_id": "pkg_free"})
        assert response.status_code == 400

    def test_unknown_package(self, client, auth_headers):
        response = client.post("/api/payment/create", headers=auth_headers, json={"package_id": "pkg_gold"})
        assert response.status_code == 404
        assert response.json()["error_code"] == "PACKAGE_NOT_FOUND"

    def _create(self, client, auth_headers, method="wechat"):
        response = client.post("/api/payment/create", headers=auth_headers,
                               json={"package_id": "pkg_starter", "payment_method": method})
        return response.json()["order_no"]

    def test_wechat_duplicate_notification_credits_once(self, client, auth_headers):
        order_no = self._create(client, auth_headers)
        body, headers = wechat_notification(order_no)

        for _ in range(3):
            response = client.post("/api/payment/wechat/notify", content=body, headers=headers)
            assert response.status_code == 200
            assert response.json() == {"code": "SUCCESS", "message": "OK"}

        assert client.get("/api/credits", headers=auth_headers).json()["credits"] == 110
        order = client.get("/api/payment/query", headers=auth_headers, params={"order_no": order_no}).json()
        assert order["status"] == "paid"
        assert order["transaction_id"] == "wx-001"

    def test_wechat_bad_signature_rejected(self, client, auth_headers):
        order_no = self._create(client, auth_headers)
        body, headers = wechat_notification(order_no)
        headers["Wechatpay-Signature"] = "forged"

        response = client.post("/api/payment/wechat/notify", content=body, headers=headers)

        assert response.status_code == 400
        assert response.json()["code"] == "FAIL"
        assert client.get("/api/credits", headers=auth_headers).json()["credits"] == 10

    def test_wechat_invalid_utf8_body_rejected(self, client):
        _, headers = wechat_notification("DN1")
        response = client.post("/api/payment/wechat/notify", content=b"\xff\xfe{}", headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "FAIL"

    def test_reconcile_runs_off_event_loop(self, client, auth_headers, monkeypatch):
        """对账是同步数据库操作，在线程池中执行"""
        order_no = self._create(client, auth_headers)
        loop_states = []

        def recording_reconcile(*args, **kwargs):
            try:
                asyncio.get_running_loop()
                loop_states.append("event-loop")
            except RuntimeError:
                loop_states.append("worker")
            return reconcile(*args, **kwargs)

        monkeypatch.setattr(payment_routes, "reconcile", recording_reconcile)
        body, headers = wechat_notification(order_no)
        client.post("/api/payment/wechat/notify", content=body, headers=headers)
        client.post("/api/payment/alipay/notify", data=alipay_notification(order_no))

        assert loop_states == ["worker", "worker"]

    def test_wechat_unknown_order(self, client):
        body, headers = wechat_notification("DN20990101NOTEXIST")
        response = client.post("/api/payment/wechat/notify", content=body, headers=headers)
        assert response.status_code == 404

    def test_alipay_notify(self, client, auth_headers):
        order_no = self._create(client, auth_headers, method="alipay")
        params = alipay_notification(order_no)

        first = client.post("/api/payment/alipay/notify", data=params)
        second = client.post("/api/payment/alipay/notify", data=params)

        assert first.text == "success"
        assert second.text == "success"
        assert client.get("/api/credits", headers=auth_headers).json()["credits"] == 110

    def test_alipay_bad_signature(self, client, auth_headers):
        order_no = self._create(client, auth_headers, method="alipay")
        params = alipay_notification(order_no)
        params["sign"] = "forged"

        response = client.post("/api/payment/alipay/notify", data=params)

        assert response.status_code == 400
        assert response.text == "fail"

    def test_orders_list(self, client, auth_headers):
        self._create(client, auth_headers)
        self._create(client, auth_headers)
        response = client.get("/api/payment/orders", headers=auth_headers)
        assert len(response.json()) == 2

    def test_query_other_users_order(self, client, auth_headers):
        response = client.get("/api/payment/query", headers=auth_headers, params={"order_no": "DN000"})
        assert response.status_code == 404
