"""Provider 注册表。

支持的 Provider 是一个固定的有限集合，每个条目给出 base_url、默认模型
以及是否流式。上层只通过 AgentConfig.provider_kind 选择条目。"""

from typing import Mapping

from agent_chat.providers.base import ProviderAdapter


# DeepSeek 官方接口：非流式，一次性返回完整 JSON
DEEPSEEK_ADAPTER = ProviderAdapter(
    name="deepseek",
    base_url="https://api.deepseek.com/v1",
    default_model="deepseek-chat",
    stream_default=False,
)

# 硅基流动：总是以流式方式请求
SILICONFLOW_ADAPTER = ProviderAdapter(
    name="siliconflow",
    base_url="https://api.siliconflow.cn/v1",
    default_model="deepseek-ai/DeepSeek-R1",
    stream_default=True,
)


PROVIDER_REGISTRY: Mapping[str, ProviderAdapter] = {
    "deepseek": DEEPSEEK_ADAPTER,
    "siliconflow": SILICONFLOW_ADAPTER,
}


def get_provider_adapter(name: str) -> ProviderAdapter:
    """根据名称获取 ProviderAdapter，名称不区分大小写。"""

    key = (name or "").strip().lower()
    for k, adapter in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return adapter
    raise KeyError(f"Unknown provider: {name!r}")
