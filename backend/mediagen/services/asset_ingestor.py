"""
生成结果转存服务
把生成服务返回的远程文件（或内联 base64）下载后上传到自有存储
"""
import binascii
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import httpx

from mediagen.services.providers.base import GeneratedOutput
from mediagen.services.storage import (
    ObjectStorage, StorageError, extension_for_content_type, generate_file_path,
)

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPES = {
    "video": "video/mp4",
    "image": "image/png",
}


@dataclass
class StoredObject:
    url: str
    file_path: str
    file_size: int
    mime_type: str


class IngestError(Exception):
    """单次转存失败"""
    pass


class AssetIngestor:

    def __init__(
        self,
        storage: ObjectStorage,
        max_attempts: int = 3,
        timeout_seconds: float = 120,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.storage = storage
        self.max_attempts = max_attempts
        self._sleep = sleep
        # 每次下载各自超时，避免一次卡住拖垮全部重试
        self._http = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
            follow_redirects=True,
        )

    def _fetch(self, output: GeneratedOutput, kind: str) -> Tuple[bytes, str]:
        default_mime = DEFAULT_MIME_TYPES.get(kind, "application/octet-stream")
        if output.is_inline:
            return output.decode(), output.mime_type or default_mime

        try:
            response = self._http.get(output.url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise IngestError(f"download failed: {e}") from e
        if response.is_error:
            raise IngestError(f"download failed with status {response.status_code}")

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type or content_type == "application/octet-stream":
            content_type = default_mime
        return response.content, content_type

    def persist(
        self,
        output: GeneratedOutput,
        owner_id: int,
        kind: str,
        task_id: Optional[str] = None,
    ) -> Optional[StoredObject]:
        """
        转存单个产物

        Args:
            output: 生成产物
            owner_id: 所属用户
            kind: video / image
            task_id: 仅用于日志

        Returns:
            StoredObject，全部重试失败时返回 None（由调用方决定降级方式）
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                data, content_type = self._fetch(output, kind)
                ext = extension_for_content_type(content_type, default="mp4" if kind == "video" else "png")
                path = generate_file_path(owner_id, f"output.{ext}", f"{kind}s")
                url = self.storage.put(path, data, content_type)
                logger.info(f"Task {task_id}: stored {kind} at {path} ({len(data)} bytes, attempt {attempt})")
                return StoredObject(url=url, file_path=path, file_size=len(data), mime_type=content_type)
            except (binascii.Error, ValueError) as e:
                logger.error(f"Task {task_id}: invalid inline {kind} data: {e}")
                return None
            except (IngestError, StorageError) as e:
                logger.warning(
                    f"Task {task_id}: persist {kind} attempt {attempt}/{self.max_attempts} failed: {e}"
                )
                if attempt < self.max_attempts:
                    self._sleep(2 ** attempt)

        logger.error(f"Task {task_id}: giving up storing {kind} after {self.max_attempts} attempts")
        return None

    def close(self):
        self._http.close()
