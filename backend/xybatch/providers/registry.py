"""Provider lookup by name."""
from __future__ import annotations

from xybatch.config import Settings
from xybatch.providers.base import ProviderAdapter
from xybatch.providers.comfy_stack import ComfyStackAdapter
from xybatch.providers.doubao_seedream import DoubaoSeedreamAdapter
from xybatch.providers.nano_banana import NanoBananaAdapter
from xybatch.providers.qwen_image import QwenImageAdapter


class UnknownProviderError(Exception):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unsupported provider: {name}")


def normalize_provider_name(name: str) -> str:
    """``doubao-seedream`` and ``doubao_seedream`` name the same provider."""
    return name.strip().lower().replace("-", "_")


class ProviderRegistry:
    def __init__(self, adapters: list[ProviderAdapter] | None = None):
        self._adapters: dict[str, ProviderAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[normalize_provider_name(adapter.name)] = adapter

    def get(self, name: str) -> ProviderAdapter:
        try:
            return self._adapters[normalize_provider_name(name)]
        except KeyError:
            raise UnknownProviderError(name) from None

    def __contains__(self, name: str) -> bool:
        return normalize_provider_name(name) in self._adapters

    def names(self) -> list[str]:
        return sorted(self._adapters)


def build_default_registry(settings: Settings) -> ProviderRegistry:
    return ProviderRegistry([
        ComfyStackAdapter(
            api_key=settings.INFINI_AI_API_KEY,
            poll_interval=settings.COMFY_POLL_INTERVAL_SECONDS,
            max_polls=settings.COMFY_MAX_POLLS,
        ),
        DoubaoSeedreamAdapter(api_key=settings.ARK_API_KEY),
        QwenImageAdapter(api_key=settings.DASHSCOPE_API_KEY),
        NanoBananaAdapter(
            api_key=settings.PPINFRA_API_KEY,
            poll_interval=settings.NANO_BANANA_POLL_INTERVAL_SECONDS,
            max_polls=settings.NANO_BANANA_MAX_POLLS,
        ),
    ])
