"""
Nano Banana 图片生成（同步返回，支持多张）
"""
import re
from typing import Any, List

from pydantic import BaseModel, Field

from mediagen.models import NanoBananaTask
from mediagen.services.providers.base import (
    GeneratedOutput, GenerationAdapter, SubmitResult, truncate,
)

DEFAULT_MODEL = "gemini-3-pro-image-preview"
CREDITS_PER_IMAGE = 2

_MARKDOWN_URL_RE = re.compile(r"!\[.*?\]\((https?://[^)]+)\)")
_DATA_URL_RE = re.compile(r"data:image/[^;]+;base64,[A-Za-z0-9+/=]+")
_PLAIN_URL_RE = re.compile(
    r"https?://[^\s\"')\]<>]+\.(?:png|jpg|jpeg|gif|webp)(?:\?[^\s\"')\]<>]*)?", re.IGNORECASE
)


class NanoBananaRequest(BaseModel):
    """图片生成请求"""
    prompt: str = Field(..., min_length=1, max_length=4000)
    product_images: List[str] = Field(default_factory=list, max_length=4)
    quantity: int = Field(1, ge=1, le=4)


def extract_images(message_content: Any) -> List[GeneratedOutput]:
    """从模型回复中提取图片：markdown 链接、data URL、普通图片链接或结构化内容"""
    outputs: List[GeneratedOutput] = []
    seen = set()

    def add_url(url: str):
        if url not in seen:
            seen.add(url)
            outputs.append(GeneratedOutput(url=url))

    def add_data_url(data_url: str):
        if data_url not in seen:
            seen.add(data_url)
            outputs.append(GeneratedOutput.from_data_url(data_url))

    if isinstance(message_content, str):
        for url in _MARKDOWN_URL_RE.findall(message_content):
            add_url(url)
        for data_url in _DATA_URL_RE.findall(message_content):
            add_data_url(data_url)
        for url in _PLAIN_URL_RE.findall(message_content):
            add_url(url)
    elif isinstance(message_content, list):
        for item in message_content:
            if not isinstance(item, dict):
                continue
            source = item.get("source") or {}
            if item.get("type") == "image" and source.get("data"):
                key = source["data"][:64]
                if key not in seen:
                    seen.add(key)
                    outputs.append(GeneratedOutput(
                        base64_data=source["data"],
                        mime_type=source.get("media_type") or "image/png",
                    ))
            elif item.get("type") == "image_url" and (item.get("image_url") or {}).get("url"):
                url = item["image_url"]["url"]
                if url.startswith("data:"):
                    add_data_url(url)
                else:
                    add_url(url)
    return outputs


class NanoBananaAdapter(GenerationAdapter):
    task_type = "nano-banana"
    task_model = NanoBananaTask
    request_model = NanoBananaRequest
    asset_type = "image"

    def calculate_cost(self, params: NanoBananaRequest) -> int:
        return CREDITS_PER_IMAGE * params.quantity

    def describe(self, params: NanoBananaRequest) -> str:
        return f"Nano Banana 图片生成 x{params.quantity}: {truncate(params.prompt, 50)}"

    def submit(self, task: NanoBananaTask) -> SubmitResult:
        content = [{"type": "text", "text": task.prompt}]
        for url in task.product_images or []:
            content.append({"type": "image_url", "image_url": {"url": url}})

        body = {
            "model": DEFAULT_MODEL,
            "stream": False,
            "n": task.quantity,
            "messages": [{"role": "user", "content": content}],
        }
        result = self.client.post_json("/v1/chat/completions", body)

        outputs: List[GeneratedOutput] = []
        for choice in result.get("choices") or []:
            outputs.extend(extract_images((choice.get("message") or {}).get("content")))
        if not outputs:
            return SubmitResult(error="No images generated")
        return SubmitResult(outputs=outputs)
