"""请求构造。

把智能体配置与会话历史组装成 ChatRequest，逐字段独立回退：

| 字段 | 使用配置值的条件 | 否则 |
|---|---|---|
| model | 非空 | Provider 默认模型 |
| temperature | > 0 | 0.7 |
| max_tokens | > 0 | 2000 |
| top_p | > 0 | 1.0 |
| system_prompt | 非空 | 默认助手人设提示词 |

本模块是纯函数，不修改 SessionStore。
"""

from typing import Optional, Sequence

from agent_chat.domain.models import AgentConfig, ChatRequest, Message
from agent_chat.prompts import load_system_prompt
from agent_chat.providers.base import ProviderAdapter


DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2000
DEFAULT_TOP_P = 1.0


def resolve_max_tokens(config: AgentConfig) -> int:
    return config.max_tokens if config.max_tokens > 0 else DEFAULT_MAX_TOKENS


def resolve_system_prompt(config: AgentConfig, locale: str = "zh") -> str:
    if config.system_prompt:
        return config.system_prompt
    return load_system_prompt(locale)


def build_request(
    config: AgentConfig,
    history: Sequence[Message],
    adapter: ProviderAdapter,
    locale: Optional[str] = None,
) -> ChatRequest:
    """根据配置和历史构造一次请求。

    history 应已包含本轮刚追加的用户消息；system 消息只在这里注入，
    不会写回历史。
    """

    messages = [Message(role="system", content=resolve_system_prompt(config, locale or "zh"))]
    messages.extend(history)
    return ChatRequest(
        model=config.model or adapter.default_model,
        messages=messages,
        temperature=config.temperature if config.temperature > 0 else DEFAULT_TEMPERATURE,
        max_tokens=resolve_max_tokens(config),
        top_p=config.top_p if config.top_p > 0 else DEFAULT_TOP_P,
        stream=adapter.stream_default,
    )
