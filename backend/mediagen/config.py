from pydantic_settings import BaseSettings
from functools import lru_cache
import os


class Settings(BaseSettings):
    # Database
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = "password"
    DB_NAME: str = "mediagen"
    # 显式指定时优先使用（测试用 sqlite）
    SQLALCHEMY_DATABASE_URL: str = ""

    # JWT
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    FRONTEND_URL: str = "http://localhost:3000"

    # Backend Server - 用于构建完整的文件 URL
    BACKEND_HOST: str = "localhost"
    BACKEND_PORT: int = 8001
    PUBLIC_BASE_URL: str = ""

    # 积分
    SIGNUP_BONUS_CREDITS: int = 20

    # 生成服务网关（302.ai 兼容）
    PROVIDER_API_KEY: str = ""
    PROVIDER_BASE_URL: str = "https://api.302.ai"
    PROVIDER_ENABLED: bool = False
    PROVIDER_TIMEOUT_SECONDS: int = 120

    # 任务编排
    MAX_CONCURRENT_TASKS: int = 10
    TASK_WORKERS: int = 8
    POLL_INTERVAL_SECONDS: float = 5
    STALE_TASK_MINUTES: int = 30
    MAINTENANCE_INTERVAL_SECONDS: int = 300
    RECOVER_ON_STARTUP: bool = True

    # 内容违规关键词，命中则失败不退款（大小写不敏感的子串匹配）
    CONTENT_POLICY_KEYWORDS: list = [
        "content policy",
        "safety",
        "inappropriate",
        "violat",
        "prohibited",
        "policy violation",
        "moderation",
        "copyright",
        "违规",
        "敏感",
        "审核未通过",
        "版权",
        "违禁",
    ]

    # 结果转存
    INGEST_MAX_ATTEMPTS: int = 3
    INGEST_TIMEOUT_SECONDS: int = 120

    # 存储：local 或 s3（兼容 OBS/MinIO）
    STORAGE_BACKEND: str = "local"
    STORAGE_DIR: str = "storage"
    S3_BUCKET: str = ""
    S3_REGION: str = "us-east-1"
    S3_ENDPOINT_URL: str = ""
    S3_ACCESS_KEY_ID: str = ""
    S3_SECRET_ACCESS_KEY: str = ""
    S3_PUBLIC_BASE_URL: str = ""

    # 上传
    UPLOAD_MAX_MB: int = 50
    UPLOAD_ALLOWED_TYPES: list = [
        "image/jpeg", "image/png", "image/gif", "image/webp",
        "video/mp4", "video/quicktime",
    ]

    # 支付
    ORDER_EXPIRE_MINUTES: int = 30
    WECHAT_PAY_NOTIFY_SECRET: str = ""
    ALIPAY_NOTIFY_SECRET: str = ""

    class Config:
        # 优先从环境变量读取，然后从 backend/.env 读取
        env_file = os.environ.get("APP_ENV_FILE", os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"))
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def DATABASE_URL(self) -> str:
        if self.SQLALCHEMY_DATABASE_URL:
            return self.SQLALCHEMY_DATABASE_URL
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def public_base_url(self) -> str:
        if self.PUBLIC_BASE_URL:
            return self.PUBLIC_BASE_URL.rstrip("/")
        return f"http://{self.BACKEND_HOST}:{self.BACKEND_PORT}"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
