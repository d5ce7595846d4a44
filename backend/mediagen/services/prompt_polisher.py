"""
提示词润色服务
把用户的简短描述扩展成完整的视频生成提示词，可附带产品参考图
"""
import base64
import logging
from functools import lru_cache
from typing import Optional

from mediagen.services.prompt_template import get_prompt_manager
from mediagen.services.providers.client import ProviderClient, ProviderError, extract_chat_text
from mediagen.services.providers.registry import get_provider_client

logger = logging.getLogger(__name__)

VISION_MODEL = "gpt-4o"
TEXT_MODEL = "gpt-4o-mini"


class PromptPolisher:

    def __init__(self, client: ProviderClient):
        self.client = client

    def _image_data_url(self, image_url: str) -> Optional[str]:
        """下载参考图转为 data URL，失败返回 None"""
        try:
            data, content_type = self.client.download(image_url)
        except ProviderError as e:
            logger.warning(f"Reference image download failed, polishing text only: {e.message}")
            return None
        content_type = content_type.split(";")[0].strip() or "image/jpeg"
        if not content_type.startswith("image/"):
            content_type = "image/jpeg"
        return f"data:{content_type};base64,{base64.b64encode(data).decode()}"

    def polish(self, prompt: str, image_url: Optional[str] = None) -> str:
        """
        润色提示词

        有参考图时走视觉模型；参考图下载失败则退回纯文本润色。

        Raises:
            ProviderError: 网关调用失败或没有返回内容
        """
        templates = get_prompt_manager()
        image = self._image_data_url(image_url) if image_url else None

        if image:
            body = {
                "model": VISION_MODEL,
                "stream": False,
                "messages": [{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": templates.render("polish_with_image", prompt=prompt)},
                        {"type": "image_url", "image_url": {"url": image}},
                    ],
                }],
            }
        else:
            body = {
                "model": TEXT_MODEL,
                "stream": False,
                "messages": [
                    {"role": "system", "content": templates.render("polish_text")},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0.7,
                "max_tokens": 500,
            }

        polished = extract_chat_text(self.client.post_json("/v1/chat/completions", body))
        if not polished:
            raise ProviderError("No response from AI")
        logger.info(f"Polished prompt with {body['model']} ({len(prompt)} -> {len(polished)} chars)")
        return polished


@lru_cache()
def get_prompt_polisher() -> PromptPolisher:
    return PromptPolisher(get_provider_client())
