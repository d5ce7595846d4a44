"""
生成服务适配器接口

每个生成服务实现 submit / poll_status 两个操作和各自的计费函数，
编排器只依赖这里定义的接口，不关心具体的请求/响应格式
"""
import base64
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel

from mediagen.services.providers.client import ProviderClient

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


class PollStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class GeneratedOutput:
    """生成产物：远程 URL、内联 base64 或文本"""
    url: Optional[str] = None
    base64_data: Optional[str] = None
    mime_type: Optional[str] = None
    text: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        return self.base64_data is not None

    def decode(self) -> bytes:
        return base64.b64decode(self.base64_data)

    @classmethod
    def from_data_url(cls, data_url: str) -> "GeneratedOutput":
        match = _DATA_URL_RE.match(data_url.strip())
        if not match:
            raise ValueError("Not a base64 data URL")
        return cls(base64_data=match.group("data"), mime_type=match.group("mime"))


@dataclass
class SubmitResult:
    """
    提交结果，三选一：
    - outputs: 同步返回的产物
    - external_task_id: 异步任务句柄
    - error: 服务方明确返回的失败信息
    """
    outputs: List[GeneratedOutput] = field(default_factory=list)
    external_task_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PollResult:
    status: PollStatus
    outputs: List[GeneratedOutput] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (PollStatus.COMPLETED, PollStatus.FAILED)


class GenerationAdapter:
    """生成服务适配器基类"""

    task_type: str = ""
    task_model: Type = None
    request_model: Type[BaseModel] = None
    # 产物类型：video / image；None 表示文本结果，不转存
    asset_type: Optional[str] = "video"
    max_poll_attempts: int = 120
    poll_interval: Optional[float] = None

    def __init__(self, client: ProviderClient, storage=None):
        self.client = client
        self.storage = storage

    @property
    def source_tag(self) -> str:
        return self.task_type

    def validate(self, payload: Dict[str, Any]) -> BaseModel:
        """校验请求参数，失败时抛出 pydantic.ValidationError"""
        return self.request_model.model_validate(payload)

    def calculate_cost(self, params: BaseModel) -> int:
        raise NotImplementedError

    def build_task(self, params: BaseModel, **common) -> Any:
        """根据请求参数构造任务记录，请求字段与任务表列同名"""
        return self.task_model(**common, **params.model_dump())

    def describe(self, params: BaseModel) -> str:
        """扣费流水描述"""
        return self.task_type

    def submit(self, task) -> SubmitResult:
        raise NotImplementedError

    def poll_status(self, handle: str) -> PollResult:
        raise NotImplementedError(f"{self.task_type} does not support polling")

    def timeout_minutes(self, interval: float) -> int:
        return max(1, round(self.max_poll_attempts * interval / 60))


def truncate(text: Optional[str], length: int) -> str:
    return (text or "")[:length]
