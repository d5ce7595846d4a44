"""
测试公共配置
使用内存 SQLite，生成服务和下载全部通过 httpx.MockTransport 模拟
"""
import os
import tempfile

# 必须在导入应用模块之前设置
os.environ["SQLALCHEMY_DATABASE_URL"] = "sqlite://"
os.environ["STORAGE_DIR"] = tempfile.mkdtemp(prefix="mediagen-test-")
os.environ["RECOVER_ON_STARTUP"] = "false"
os.environ["WECHAT_PAY_NOTIFY_SECRET"] = "test-wechat-secret"
os.environ["ALIPAY_NOTIFY_SECRET"] = "test-alipay-secret"
os.environ["APP_ENV_FILE"] = os.path.join(os.environ["STORAGE_DIR"], "missing.env")

import httpx
import pytest
from fastapi.testclient import TestClient

from mediagen.auth import create_access_token, get_password_hash
from mediagen.database import Base, SessionLocal, engine
from mediagen.main import app
from mediagen.models import User
from mediagen.services import ledger
from mediagen.services.admission import AdmissionController
from mediagen.services.asset_ingestor import AssetIngestor
from mediagen.services.orchestrator import TaskOrchestrator, get_orchestrator
from mediagen.services.providers.client import ProviderClient
from mediagen.services.providers.registry import build_adapters
from mediagen.services.refund_policy import RefundClassifier
from mediagen.services.storage import LocalStorage, get_storage

POLICY_KEYWORDS = ["content policy", "safety", "violat", "违规", "敏感"]


class FakeProvider:
    """按路径返回预设响应的生成服务网关"""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method: str, path: str, *responses):
        self.routes[(method, path)] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        responses = self.routes.get(key)
        if not responses:
            return httpx.Response(404, json={"message": f"no route {key}"})
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        # 同一响应可能返回多次，每次复制一份
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class RecordingDispatcher:
    """记录入队请求，由测试手动执行"""

    def __init__(self):
        self.items = []

    def __call__(self, task_type, task_id, user_id, resume=False):
        self.items.append((task_type, task_id, user_id, resume))


@pytest.fixture(scope="function")
def db_session():
    """创建测试数据库表"""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "storage"), base_url="http://testserver")


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def downloads():
    """结果文件下载服务"""
    return FakeProvider()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def orchestrator(provider, downloads, storage, dispatcher):
    client = ProviderClient(
        api_key="test-key",
        base_url="https://api.302.ai",
        enabled=True,
        transport=provider.transport(),
    )
    ingestor = AssetIngestor(
        storage,
        max_attempts=3,
        transport=downloads.transport(),
        sleep=lambda seconds: None,
    )
    return TaskOrchestrator(
        adapters=build_adapters(client, storage=storage),
        session_factory=SessionLocal,
        admission=AdmissionController(3),
        classifier=RefundClassifier(POLICY_KEYWORDS),
        ingestor=ingestor,
        dispatcher=dispatcher,
        is_active=lambda task_id: False,
        poll_interval=0,
        stale_minutes=30,
        sleep=lambda seconds: None,
        should_stop=lambda: False,
    )


@pytest.fixture(scope="function")
def client(db_session, orchestrator, storage):
    """创建测试客户端"""
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def make_user(db, email="test@example.com", credits=10):
    """创建用户并通过账本发放初始积分"""
    user = User(email=email, hashed_password=get_password_hash("testpassword123"), credits=0)
    db.add(user)
    db.flush()
    if credits:
        ledger.credit(db, user.id, credits, "测试初始积分")
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def test_user(db_session):
    """创建测试用户（10 积分）"""
    return make_user(db_session)


@pytest.fixture
def auth_headers(test_user):
    """生成带认证的请求头"""
    token = create_access_token(data={"sub": str(test_user.id)})
    return {"Authorization": f"Bearer {token}"}
