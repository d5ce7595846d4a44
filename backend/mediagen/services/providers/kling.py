"""
Kling 多图生视频（长视频，按画质和时长分档计费）
"""
from typing import List, Literal

from pydantic import BaseModel, Field

from mediagen.models import VideoTask
from mediagen.services.providers.base import (
    GeneratedOutput, GenerationAdapter, PollResult, PollStatus, SubmitResult, truncate,
)

MODEL_NAME = "kling-v1-6"

# (mode, duration) -> credits
PRICING = {
    ("std", 5): 3,
    ("std", 10): 6,
    ("pro", 5): 5,
    ("pro", 10): 10,
}

ASPECT_RATIOS = {
    "landscape": "16:9",
    "portrait": "9:16",
    "square": "1:1",
}

STATUS_MAP = {
    "succeed": PollStatus.COMPLETED,
    "success": PollStatus.COMPLETED,
    "completed": PollStatus.COMPLETED,
    "failed": PollStatus.FAILED,
    "error": PollStatus.FAILED,
    "processing": PollStatus.PROCESSING,
    "submitted": PollStatus.PENDING,
    "pending": PollStatus.PENDING,
    "queued": PollStatus.PENDING,
}


class KlingRequest(BaseModel):
    """多图生视频请求，最多 4 张图"""
    product_images: List[str] = Field(..., min_length=1, max_length=4)
    prompt: str = Field("", max_length=2500)
    orientation: Literal["portrait", "landscape", "square"] = "portrait"
    duration: Literal[5, 10] = 5
    mode: Literal["std", "pro"] = "std"


class KlingAdapter(GenerationAdapter):
    task_type = "video"
    task_model = VideoTask
    request_model = KlingRequest
    asset_type = "video"
    max_poll_attempts = 180

    @property
    def source_tag(self) -> str:
        return "kling"

    def calculate_cost(self, params: KlingRequest) -> int:
        return PRICING[(params.mode, params.duration)]

    def describe(self, params: KlingRequest) -> str:
        return f"多图生视频 ({params.mode} {params.duration}s): {truncate(params.prompt, 50) or '无提示词'}"

    def submit(self, task: VideoTask) -> SubmitResult:
        body = {
            "model_name": MODEL_NAME,
            "image_list": [{"image": url} for url in task.product_images],
            "mode": task.mode,
            "prompt": task.prompt or "",
            "aspect_ratio": ASPECT_RATIOS.get(task.orientation, "9:16"),
            "duration": task.duration,
        }
        result = self.client.post_json("/klingai/v1/videos/multi-image2video", body)
        data = result.get("data") or {}

        task_info = data.get("task") if isinstance(data.get("task"), dict) else {}
        if result.get("status") == 200 and task_info.get("id"):
            return SubmitResult(external_task_id=task_info["id"])
        if data.get("task_id"):
            return SubmitResult(external_task_id=data["task_id"])
        return SubmitResult(error=result.get("message") or "Unknown response format")

    def poll_status(self, handle: str) -> PollResult:
        result = self.client.get_json(f"/klingai/v1/videos/multi-image2video/{handle}")
        data = result.get("data")
        if not data:
            return PollResult(status=PollStatus.FAILED, error="Invalid response format")

        status = STATUS_MAP.get((data.get("task_status") or "").lower(), PollStatus.PENDING)
        videos = (data.get("task_result") or {}).get("videos") or []
        outputs = []
        if videos:
            video_url = videos[0].get("url") or videos[0].get("video_url_download")
            if video_url:
                outputs.append(GeneratedOutput(url=video_url))
        return PollResult(status=status, outputs=outputs, error=data.get("task_status_msg") or None)
