"""LLM Provider 集成层。

该包下的模块负责：
- 定义 ProviderAdapter 与传输协议 (base)。
- 维护支持的 Provider 集合 (registry)。
- 提供基于 httpx 的异步传输实现 (transport)。
"""

from typing import Optional

from agent_chat.config.settings import settings
from agent_chat.providers.base import ChatTransport, ProviderAdapter, TransportResponse
from agent_chat.providers.registry import PROVIDER_REGISTRY, get_provider_adapter
from agent_chat.providers.transport import HttpxTransport


def create_adapter(name: Optional[str] = None, cfg=None) -> ProviderAdapter:
    """根据名称创建 ProviderAdapter，默认取配置中的 provider，并应用 base_url 覆盖。"""

    cfg = cfg or settings
    provider_name = (name or getattr(cfg, "default_provider", "deepseek")).lower()
    adapter = get_provider_adapter(provider_name)
    override = getattr(cfg, f"{adapter.name}_base_url", None)
    if override:
        adapter = adapter.with_base_url(override)
    return adapter


def create_transport(cfg=None) -> HttpxTransport:
    cfg = cfg or settings
    return HttpxTransport(timeout=getattr(cfg, "http_timeout", 90.0))


__all__ = [
    "ChatTransport",
    "HttpxTransport",
    "PROVIDER_REGISTRY",
    "ProviderAdapter",
    "TransportResponse",
    "create_adapter",
    "create_transport",
    "get_provider_adapter",
]
