"""
Pydantic 模型定义
用于 API 请求和响应验证
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Dict, List, Optional
from datetime import datetime


# ============ 用户相关 Schema ============

class UserCreate(BaseModel):
    """用户注册请求"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)


class UserResponse(BaseModel):
    """用户信息响应"""
    id: int
    email: str
    credits: int
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============ Token 相关 Schema ============

class Token(BaseModel):
    """Token 响应"""
    access_token: str
    token_type: str = "bearer"


# ============ 任务相关 Schema ============

class TaskCreatedResponse(BaseModel):
    """任务提交响应（后台执行，需轮询状态）"""
    id: str
    task_type: str
    status: str
    credits_cost: int
    created_at: Optional[datetime] = None


class TaskResponse(BaseModel):
    """任务详情"""
    id: str
    task_type: str
    status: str
    credits_cost: int
    external_task_id: Optional[str] = None
    result_urls: Optional[List[str]] = None
    result_text: Optional[str] = None
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None
    params: Dict = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TaskListResponse(BaseModel):
    """任务分页列表"""
    tasks: List[TaskResponse]
    total: int
    page: int
    limit: int


class AllTasksResponse(BaseModel):
    """所有类型任务合并列表"""
    tasks: List[TaskResponse]
    counts: Dict[str, int]
    total: int


class BatchDeleteRequest(BaseModel):
    task_ids: List[str] = Field(..., min_length=1, max_length=100)


class BatchDeleteResponse(BaseModel):
    deleted_count: int


class TaskStatsResponse(BaseModel):
    """准入与队列统计"""
    active: int
    max_concurrent: int
    by_type: Dict[str, int]
    queue: Dict[str, int]


# ============ 积分相关 Schema ============

class CreditResponse(BaseModel):
    """积分响应"""
    credits: int


class CreditTransactionResponse(BaseModel):
    """积分流水"""
    id: int
    type: str  # debit / credit
    amount: int
    balance_after: int
    description: Optional[str] = None
    task_id: Optional[str] = None
    task_type: Optional[str] = None
    order_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreditTransactionList(BaseModel):
    transactions: List[CreditTransactionResponse]
    page: int
    limit: int


# ============ 素材相关 Schema ============

class AssetResponse(BaseModel):
    """素材"""
    id: str
    type: str
    source: str
    filename: Optional[str] = None
    url: str
    file_size: Optional[int] = None
    mime_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    task_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AssetListResponse(BaseModel):
    assets: List[AssetResponse]
    total: int


# ============ 支付相关 Schema ============

class CreditPackageResponse(BaseModel):
    id: str
    name: str
    credits: int
    price: float
    original_price: Optional[float] = None
    popular: bool = False

    class Config:
        from_attributes = True


class OrderCreate(BaseModel):
    """创建订单请求"""
    package_id: str
    payment_method: str = Field("wechat", pattern="^(wechat|alipay)$")


class OrderResponse(BaseModel):
    order_no: str
    package_id: str
    credits: int
    amount: float
    status: str
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    expire_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# ============ 通用响应 Schema ============

class APIResponse(BaseModel):
    """通用 API 响应"""
    success: bool
    message: str
    data: Optional[dict] = None


# ============ 提示词润色 Schema ============

class PolishPromptRequest(BaseModel):
    prompt: str = Field(..., max_length=2000)
    image_url: Optional[str] = None


class PolishPromptResponse(BaseModel):
    success: bool = True
    polished_prompt: str
