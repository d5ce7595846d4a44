from functools import lru_cache
from typing import Dict

from mediagen.config import get_settings
from mediagen.services.providers.base import GenerationAdapter
from mediagen.services.providers.client import ProviderClient
from mediagen.services.providers.kling import KlingAdapter
from mediagen.services.providers.nano_banana import NanoBananaAdapter
from mediagen.services.providers.reverse_prompt import ReversePromptAdapter
from mediagen.services.providers.runway import RunwayAdapter
from mediagen.services.providers.sora2 import Sora2Adapter

ADAPTER_CLASSES = (
    Sora2Adapter,
    KlingAdapter,
    NanoBananaAdapter,
    RunwayAdapter,
    ReversePromptAdapter,
)


def build_adapters(client: ProviderClient, storage=None) -> Dict[str, GenerationAdapter]:
    """任务类型 -> 适配器"""
    return {cls.task_type: cls(client, storage=storage) for cls in ADAPTER_CLASSES}


@lru_cache()
def get_provider_client() -> ProviderClient:
    settings = get_settings()
    return ProviderClient(
        api_key=settings.PROVIDER_API_KEY,
        base_url=settings.PROVIDER_BASE_URL,
        enabled=settings.PROVIDER_ENABLED,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
