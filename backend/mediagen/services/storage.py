"""
对象存储服务
统一的 put/get/delete 接口，支持本地文件系统和 S3 兼容存储（OBS / MinIO / AWS）
"""
import logging
import os
import secrets
import string
import time
from datetime import datetime
from functools import lru_cache
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from mediagen.config import get_settings

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
}

LOCAL_URL_PREFIX = "/files"


class StorageError(Exception):
    """存储读写异常"""
    pass


def extension_for_content_type(content_type: Optional[str], default: str = "bin") -> str:
    if not content_type:
        return default
    content_type = content_type.split(";")[0].strip().lower()
    if content_type in CONTENT_TYPE_EXTENSIONS:
        return CONTENT_TYPE_EXTENSIONS[content_type]
    # video/x-webm、video/mov 之类的变体
    for marker, ext in (("webm", "webm"), ("mov", "mov"), ("quicktime", "mov"), ("mp4", "mp4"),
                        ("png", "png"), ("jpeg", "jpg"), ("jpg", "jpg"), ("webp", "webp"), ("gif", "gif")):
        if marker in content_type:
            return ext
    return default


def generate_file_path(user_id: int, filename: str, kind: str = "uploads") -> str:
    """
    生成存储路径：{kind}/{user_id}/{YYYY}/{MM}/{DD}/{timestamp}-{rand}.{ext}

    按用户和日期分桶，随机后缀保证同一目录内唯一
    """
    now = datetime.now()
    ext = os.path.splitext(filename)[1].lstrip(".").lower() or "bin"
    rand = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(6))
    return f"{kind}/{user_id}/{now:%Y/%m/%d}/{int(time.time() * 1000)}-{rand}.{ext}"


class ObjectStorage:
    """存储接口"""

    def put(self, path: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    def get(self, path: str) -> bytes:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError


class LocalStorage(ObjectStorage):
    """本地文件存储，由 FastAPI StaticFiles 挂载在 /files 下"""

    def __init__(self, root_dir: str, base_url: str = ""):
        self.root_dir = os.path.abspath(root_dir)
        self.base_url = base_url.rstrip("/")
        os.makedirs(self.root_dir, exist_ok=True)

    def _full_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.root_dir, path))
        if not full.startswith(self.root_dir + os.sep):
            raise StorageError(f"Invalid storage path: {path}")
        return full

    def put(self, path: str, data: bytes, content_type: str) -> str:
        full = self._full_path(path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            with open(full, "wb") as f:
                f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e
        return f"{self.base_url}{LOCAL_URL_PREFIX}/{path}"

    def get(self, path: str) -> bytes:
        try:
            with open(self._full_path(path), "rb") as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def delete(self, path: str) -> None:
        full = self._full_path(path)
        if os.path.exists(full):
            try:
                os.remove(full)
            except OSError as e:
                raise StorageError(f"Failed to delete {path}: {e}") from e


class S3Storage(ObjectStorage):
    """S3 兼容对象存储"""

    def __init__(
        self,
        bucket: str,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        endpoint_url: Optional[str] = None,
        public_base_url: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url or None
        self.public_base_url = (public_base_url or "").rstrip("/")
        self._s3 = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=self.endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{path}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{path}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{path}"

    def put(self, path: str, data: bytes, content_type: str) -> str:
        try:
            self._s3.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to upload {path}: {e}") from e
        return self.public_url(path)

    def get(self, path: str) -> bytes:
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to download {path}: {e}") from e

    def delete(self, path: str) -> None:
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=path)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e


@lru_cache()
def get_storage() -> ObjectStorage:
    settings = get_settings()
    if settings.STORAGE_BACKEND == "s3":
        logger.info(f"Using S3 storage bucket {settings.S3_BUCKET}")
        return S3Storage(
            bucket=settings.S3_BUCKET,
            region=settings.S3_REGION,
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            endpoint_url=settings.S3_ENDPOINT_URL,
            public_base_url=settings.S3_PUBLIC_BASE_URL,
        )
    return LocalStorage(settings.STORAGE_DIR, base_url=settings.public_base_url)
