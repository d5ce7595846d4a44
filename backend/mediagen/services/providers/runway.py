"""
Runway 视频风格转换（视频生视频）
"""
import logging
from typing import Optional

from pydantic import BaseModel, Field

from mediagen.models import RunwayTask
from mediagen.services.providers.base import (
    GeneratedOutput, GenerationAdapter, PollResult, PollStatus, SubmitResult, truncate,
)

logger = logging.getLogger(__name__)

CREDITS_COST = 5

STATUS_MAP = {
    "SUCCEEDED": PollStatus.COMPLETED,
    "FAILED": PollStatus.FAILED,
    "ERROR": PollStatus.FAILED,
    "RUNNING": PollStatus.PROCESSING,
    "PROCESSING": PollStatus.PROCESSING,
    "THROTTLED": PollStatus.PENDING,
    "PENDING": PollStatus.PENDING,
    "QUEUED": PollStatus.PENDING,
}


class RunwayRequest(BaseModel):
    """视频生视频请求，提示词仅支持英文"""
    source_video_url: str = Field(..., min_length=1)
    text_prompt: Optional[str] = Field(None, max_length=1000)
    structure_transformation: float = Field(0.5, ge=0.1, le=0.9)


class RunwayAdapter(GenerationAdapter):
    task_type = "runway"
    task_model = RunwayTask
    request_model = RunwayRequest
    asset_type = "video"
    max_poll_attempts = 180

    def calculate_cost(self, params: RunwayRequest) -> int:
        return CREDITS_COST

    def describe(self, params: RunwayRequest) -> str:
        return f"视频生视频: {truncate(params.text_prompt, 50) or '无提示词'}"

    def submit(self, task: RunwayTask) -> SubmitResult:
        video, content_type = self.client.download(task.source_video_url)
        logger.info(f"Task {task.id}: source video downloaded, size {len(video) / 1024 / 1024:.2f} MB")

        data = {"structure_transformation": str(task.structure_transformation or 0.5)}
        if task.text_prompt:
            data["text_prompt"] = task.text_prompt
        files = {"video_prompt": ("video.mp4", video, content_type or "video/mp4")}

        result = self.client.post_multipart("/runway/submit", files=files, data=data)
        task_info = result.get("task") or {}
        if task_info.get("id"):
            return SubmitResult(external_task_id=task_info["id"])
        return SubmitResult(error=result.get("message") or "Unknown response format")

    def poll_status(self, handle: str) -> PollResult:
        result = self.client.get_json(f"/runway/task/{handle}/fetch")
        task_info = result.get("task")
        if not task_info:
            return PollResult(status=PollStatus.FAILED, error="Invalid response format")

        status = STATUS_MAP.get((task_info.get("status") or "").upper(), PollStatus.PENDING)
        outputs = []
        artifacts = task_info.get("artifacts") or []
        if artifacts and artifacts[0].get("url"):
            outputs.append(GeneratedOutput(url=artifacts[0]["url"]))
        error = task_info.get("failure") or task_info.get("error")
        if status == PollStatus.FAILED and not error:
            error = "Video generation failed"
        return PollResult(status=status, outputs=outputs, error=error)
