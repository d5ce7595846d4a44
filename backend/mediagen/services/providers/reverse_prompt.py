"""
提示词反推：分析视频/图片，生成可复用的中英文提示词
"""
from typing import Literal

from pydantic import BaseModel, Field

from mediagen.models import ReversePromptTask
from mediagen.services.prompt_template import get_prompt_manager
from mediagen.services.providers.base import GeneratedOutput, GenerationAdapter, SubmitResult
from mediagen.services.providers.client import extract_chat_text

DEFAULT_MODEL = "gemini-3-pro-preview"
CREDITS_COST = 2


class ReversePromptRequest(BaseModel):
    mode: Literal["video", "image"]
    source_url: str = Field(..., min_length=1)


class ReversePromptAdapter(GenerationAdapter):
    task_type = "reverse-prompt"
    task_model = ReversePromptTask
    request_model = ReversePromptRequest
    asset_type = None

    @property
    def source_tag(self) -> str:
        return "gemini3-reverse"

    def calculate_cost(self, params: ReversePromptRequest) -> int:
        return CREDITS_COST

    def describe(self, params: ReversePromptRequest) -> str:
        return "视频提示词反推" if params.mode == "video" else "图片提示词反推"

    def submit(self, task: ReversePromptTask) -> SubmitResult:
        instruction = get_prompt_manager().render(
            f"reverse_{task.mode}", target="视频" if task.mode == "video" else "图像"
        )
        media_key = "video_url" if task.mode == "video" else "image_url"
        content = [
            {"type": "text", "text": instruction},
            {"type": media_key, media_key: {"url": task.source_url}},
        ]
        body = {
            "model": DEFAULT_MODEL,
            "stream": False,
            "messages": [{"role": "user", "content": content}],
        }
        result = self.client.post_json("/v1/chat/completions", body)

        prompt = extract_chat_text(result)
        if not prompt:
            return SubmitResult(error="No prompt generated")
        return SubmitResult(outputs=[GeneratedOutput(text=prompt)])
