"""
生成服务网关 HTTP 客户端（302.ai 兼容接口）
"""
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """生成服务调用异常"""

    def __init__(self, message: str, status_code: Optional[int] = None, transient: bool = False):
        self.message = message
        self.status_code = status_code
        self.transient = transient
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """网络层错误和 5xx 可重试"""
        return self.transient or (self.status_code is not None and self.status_code >= 500)


def _error_message(response: httpx.Response) -> str:
    message = f"API error: {response.status_code}"
    try:
        data = response.json()
    except ValueError:
        return response.text or message
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        return data.get("message") or (error if isinstance(error, str) else None) or message
    return message


class ProviderClient:

    def __init__(
        self,
        api_key: str,
        base_url: str,
        enabled: bool = True,
        timeout: float = 120,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.enabled = enabled
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=30.0),
            transport=transport,
            follow_redirects=True,
        )

    def _ensure_ready(self):
        if not self.enabled:
            raise ProviderError("302.AI API is not enabled")
        if not self.api_key:
            raise ProviderError("302.AI API key is not configured")

    @property
    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        self._ensure_ready()
        headers = {**self._auth_headers, **kwargs.pop("headers", {})}
        try:
            response = self._http.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(f"Request timed out: {e}", transient=True) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ProviderError(str(e) or e.__class__.__name__, transient=True) from e

        if response.is_error:
            message = _error_message(response)
            logger.warning(f"{method} {path} failed with {response.status_code}: {message}")
            raise ProviderError(message, status_code=response.status_code)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON response: {response.text[:200]}") from e

    def post_json(self, path: str, body: Dict[str, Any]) -> Any:
        return self._json(self._send("POST", path, json=body, headers={"Accept": "application/json"}))

    def get_json(self, path: str) -> Any:
        return self._json(self._send("GET", path))

    def post_multipart(self, path: str, files: Dict[str, Tuple], data: Dict[str, str]) -> Any:
        return self._json(self._send("POST", path, files=files, data=data))

    def download(self, url: str) -> Tuple[bytes, str]:
        """下载外部资源（不带网关认证头）"""
        try:
            response = self._http.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ProviderError(f"Failed to download {url}: {e}", transient=True) from e
        if response.is_error:
            raise ProviderError(f"Failed to download {url}: {response.status_code}", status_code=response.status_code)
        return response.content, response.headers.get("content-type", "application/octet-stream")

    def close(self):
        self._http.close()


def extract_chat_text(result: Any) -> str:
    """取出 chat/completions 响应中第一条回复的文本"""
    if not isinstance(result, dict) or not result.get("choices"):
        return ""
    content = (result["choices"][0].get("message") or {}).get("content")
    if isinstance(content, list):
        content = "".join(
            item.get("text", "") for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        )
    return content.strip() if isinstance(content, str) else ""
