"""Provider 抽象。

所有已支持的厂商都使用 OpenAI 兼容的 /chat/completions 接口，
请求/响应 schema 一致，区别只在于：

- base_url 与默认模型；
- 是否总是请求流式响应（决定响应体按哪种形态解析）。

因此 Provider 不再是一份份复制的 Client 类，而是一个 ProviderAdapter 值，
ChatEngine 以它为参数完成整个调用流程。接入新厂商只需在 registry 中
增加一个 ProviderAdapter。
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Protocol

from agent_chat.conversation.normalizer import normalize


@dataclass(frozen=True)
class ProviderAdapter:
    """单个 Provider 的配置与行为。

    - name: Provider 名称，同时也是 AgentConfig.provider_kind 的取值。
    - base_url: API 基础URL（不含末尾的 /）。
    - default_model: AgentConfig.model 为空时使用的模型。
    - stream_default: 是否总是请求流式响应（不可由用户配置）。
    """

    name: str
    base_url: str
    default_model: str
    stream_default: bool = False

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def build_headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def parse_response(self, raw_body: str) -> str:
        return normalize(raw_body, self.stream_default)

    def with_base_url(self, base_url: str) -> "ProviderAdapter":
        return replace(self, base_url=base_url.strip().rstrip("/"))


@dataclass
class TransportResponse:
    """传输层返回的原始 HTTP 响应。"""

    status_code: int
    text: str

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class ChatTransport(Protocol):
    """外部 HTTP 传输能力。

    实现者只负责把 JSON POST 出去并返回状态码与响应体文本；
    网络错误应包装为 TransportError 抛出。
    """

    async def post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> TransportResponse:
        ...
