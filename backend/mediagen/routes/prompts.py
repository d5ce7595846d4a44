"""
提示词工具路由
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool

from mediagen.auth import get_current_user
from mediagen.errors import internal_error_error, network_error_error, validation_error_error
from mediagen.models import User
from mediagen.schemas import PolishPromptRequest, PolishPromptResponse
from mediagen.services.prompt_polisher import PromptPolisher, get_prompt_polisher
from mediagen.services.providers.client import ProviderError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["prompts"])


@router.post("/polish-prompt", response_model=PolishPromptResponse)
async def polish_prompt(
    request: PolishPromptRequest,
    current_user: User = Depends(get_current_user),
    polisher: PromptPolisher = Depends(get_prompt_polisher),
):
    """润色提示词（不扣积分）"""
    prompt = request.prompt.strip()
    if not prompt:
        raise validation_error_error("提示词不能为空")

    try:
        polished = await run_in_threadpool(polisher.polish, prompt, request.image_url or None)
    except ProviderError as e:
        logger.warning(f"Polish prompt failed for user {current_user.id}: {e.message}")
        if e.retryable:
            raise network_error_error("提示词润色服务暂时不可用")
        raise internal_error_error(f"提示词润色失败: {e.message}")

    return PolishPromptResponse(polished_prompt=polished)
