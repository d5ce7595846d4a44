import secrets
import string
import time

from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, Numeric, String, Text,
)
from sqlalchemy.orm import declared_attr
from sqlalchemy.sql import func
from enum import Enum as PyEnum
from mediagen.database import Base


_ALPHABET = string.ascii_lowercase + string.digits


def generate_id(prefix: str) -> str:
    """生成带前缀的记录 ID，如 sora2_1718000000000_k3j9x0a1b"""
    rand = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{rand}"


class TaskStatus(str, PyEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (TaskStatus.PENDING.value, TaskStatus.PROCESSING.value)
TERMINAL_STATUSES = (TaskStatus.COMPLETED.value, TaskStatus.FAILED.value)


class TransactionType(str, PyEnum):
    DEBIT = "debit"
    CREDIT = "credit"


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    credits = Column(Integer, default=0, nullable=False)  # 只能通过积分账本修改
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CreditTransaction(Base):
    """积分流水，只追加不修改"""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(10), nullable=False)
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    description = Column(String(255), nullable=True)
    task_id = Column(String(64), nullable=True, index=True)
    task_type = Column(String(32), nullable=True)
    order_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class GenerationTaskMixin:
    """各类生成任务的公共字段"""

    id = Column(String(64), primary_key=True)

    @declared_attr
    def user_id(cls):
        return Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    status = Column(String(20), default=TaskStatus.PENDING.value, nullable=False, index=True)
    credits_cost = Column(Integer, nullable=False, default=0)
    external_task_id = Column(String(255), nullable=True)
    result_urls = Column(JSON, nullable=True)
    result_text = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Sora2Task(GenerationTaskMixin, Base):
    __tablename__ = "sora2_tasks"

    prompt = Column(Text, nullable=False)
    product_image = Column(Text, nullable=True)
    orientation = Column(String(20), default="portrait")
    duration = Column(String(10), default="10s")
    quality = Column(String(10), default="sd")


class VideoTask(GenerationTaskMixin, Base):
    """多图生视频（长视频，分档计费）"""
    __tablename__ = "video_tasks"

    product_images = Column(JSON, nullable=False)
    prompt = Column(Text, nullable=False)
    orientation = Column(String(20), default="portrait")
    duration = Column(Integer, default=5)
    mode = Column(String(10), default="std")


class NanoBananaTask(GenerationTaskMixin, Base):
    __tablename__ = "nano_banana_tasks"

    prompt = Column(Text, nullable=False)
    product_images = Column(JSON, nullable=True)
    quantity = Column(Integer, default=1)


class RunwayTask(GenerationTaskMixin, Base):
    __tablename__ = "runway_tasks"

    source_video_url = Column(Text, nullable=False)
    text_prompt = Column(Text, nullable=True)
    structure_transformation = Column(Float, default=0.5)


class ReversePromptTask(GenerationTaskMixin, Base):
    __tablename__ = "reverse_prompt_tasks"

    mode = Column(String(10), nullable=False)
    source_url = Column(Text, nullable=False)


TASK_MODELS = (Sora2Task, VideoTask, NanoBananaTask, RunwayTask, ReversePromptTask)


class Asset(Base):
    __tablename__ = "assets"

    id = Column(String(64), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(10), nullable=False)  # image / video
    source = Column(String(32), nullable=False)  # 来源：生成服务名或 upload
    filename = Column(String(255), nullable=True)
    url = Column(Text, nullable=False)
    file_path = Column(String(512), nullable=True)
    file_size = Column(Integer, default=0)
    mime_type = Column(String(100), nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    task_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CreditPackage(Base):
    __tablename__ = "credit_packages"

    id = Column(String(32), primary_key=True)
    name = Column(String(100), nullable=False)
    credits = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    original_price = Column(Numeric(10, 2), nullable=True)
    popular = Column(Boolean, default=False)
    sort_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    order_no = Column(String(32), unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    package_id = Column(String(32), ForeignKey("credit_packages.id"), nullable=False)
    credits = Column(Integer, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), default=OrderStatus.PENDING.value, nullable=False)
    payment_method = Column(String(20), default="wechat")
    transaction_id = Column(String(128), nullable=True)
    expire_at = Column(DateTime(timezone=True), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
