"""
Sora2 短视频生成
提交后可能直接返回成品，否则返回任务 ID 轮询
"""
import io
import logging
from typing import Literal, Optional

from PIL import Image, ImageOps
from pydantic import BaseModel, Field, field_validator

from mediagen.models import Sora2Task
from mediagen.services.providers.base import (
    GeneratedOutput, GenerationAdapter, PollResult, PollStatus, SubmitResult, truncate,
)
from mediagen.services.providers.client import ProviderError
from mediagen.services.storage import StorageError, generate_file_path

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sora-2"

SORA2_SIZES = {
    "landscape": (1280, 720),
    "portrait": (720, 1280),
}

STATUS_MAP = {
    "completed": PollStatus.COMPLETED,
    "success": PollStatus.COMPLETED,
    "failed": PollStatus.FAILED,
    "error": PollStatus.FAILED,
    "processing": PollStatus.PROCESSING,
    "running": PollStatus.PROCESSING,
    "in_progress": PollStatus.PROCESSING,
    "queued": PollStatus.PENDING,
    "pending": PollStatus.PENDING,
}


class Sora2Request(BaseModel):
    """Sora2 生成请求"""
    prompt: str = Field(..., min_length=1, max_length=4000)
    product_image: Optional[str] = None
    orientation: Literal["portrait", "landscape"] = "portrait"
    duration: Literal["10s", "15s", "20s"] = "10s"
    quality: Literal["sd", "hd"] = "sd"

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prompt is required")
        return v.strip()


def fit_image(data: bytes, size: tuple) -> bytes:
    """居中裁剪并缩放到目标尺寸，输出 PNG"""
    with Image.open(io.BytesIO(data)) as image:
        if image.size == size:
            return data
        if image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGB")
        fitted = ImageOps.fit(image, size, method=Image.LANCZOS, centering=(0.5, 0.5))
        buffer = io.BytesIO()
        fitted.save(buffer, format="PNG")
        return buffer.getvalue()


class Sora2Adapter(GenerationAdapter):
    task_type = "sora2"
    task_model = Sora2Task
    request_model = Sora2Request
    asset_type = "video"
    max_poll_attempts = 120

    def calculate_cost(self, params: Sora2Request) -> int:
        cost = 50 if params.quality == "hd" else 5
        if params.duration == "15s":
            cost = int(cost * 1.5 + 0.5)
        elif params.duration == "20s":
            cost = cost * 2
        return cost

    def describe(self, params: Sora2Request) -> str:
        return f"Sora2 视频生成: {truncate(params.prompt, 50)}"

    def _prepare_reference(self, task: Sora2Task) -> str:
        """把参考图处理成目标画幅，失败时沿用原图地址"""
        if self.storage is None:
            return task.product_image
        try:
            data, _ = self.client.download(task.product_image)
            resized = fit_image(data, SORA2_SIZES[task.orientation])
            path = generate_file_path(task.user_id, "reference.png", "references")
            return self.storage.put(path, resized, "image/png")
        except (ProviderError, StorageError, OSError) as e:
            logger.warning(f"Task {task.id}: reference image resize failed, using original: {e}")
            return task.product_image

    def submit(self, task: Sora2Task) -> SubmitResult:
        width, height = SORA2_SIZES[task.orientation]
        body = {
            "model": DEFAULT_MODEL,
            "prompt": task.prompt,
            "orientation": task.orientation,
            "size": f"{width}x{height}",
            "duration": int(task.duration.rstrip("s")),
        }
        if task.product_image:
            body["images"] = [self._prepare_reference(task)]

        result = self.client.post_json("/sora/v2/video", body)

        if result.get("code") == 200 and isinstance(result.get("data"), dict):
            data = result["data"]
            if data.get("status") == "completed" and data.get("outputs"):
                return SubmitResult(outputs=[GeneratedOutput(url=data["outputs"][0])])
            if data.get("id"):
                return SubmitResult(external_task_id=data["id"])

        data = result.get("data") or result
        video_url = data.get("video_url") or data.get("videoUrl") or data.get("video")
        if video_url:
            return SubmitResult(outputs=[GeneratedOutput(url=video_url)])
        handle = data.get("task_id") or data.get("taskId") or data.get("id")
        if handle:
            return SubmitResult(external_task_id=handle)
        return SubmitResult(error=result.get("message") or "Unknown response format")

    def poll_status(self, handle: str) -> PollResult:
        query_id = handle.split(":")[1] if ":" in handle else handle
        result = self.client.get_json(f"/sora/v2/video/{query_id}")
        data = result.get("data") or result

        status = STATUS_MAP.get((data.get("status") or "").lower(), PollStatus.PENDING)
        outputs = data.get("outputs")
        if isinstance(outputs, list) and outputs:
            video_url = outputs[0]
        else:
            video_url = data.get("video_url") or data.get("videoUrl") or data.get("video")

        error = data.get("error")
        if not error and result.get("message") not in (None, "success"):
            error = result.get("message")
        return PollResult(
            status=status,
            outputs=[GeneratedOutput(url=video_url)] if video_url else [],
            error=error,
        )
