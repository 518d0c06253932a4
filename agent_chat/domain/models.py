"""统一的对话与结果数据模型。

本模块定义了各组件之间共享的标准数据结构：

- AgentConfig: 智能体配置快照（provider、模型、采样参数、api_key）。
- Message: 一条对话消息（system/user/assistant），创建后不可变。
- ChatRequest: 发给 Provider 的完整请求，已完成配置回退。
- ChatOutcome: 一次对话调用的最终结果（成功文本或失败原因）。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union


# 消息角色（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant"]

# 智能体标识：由外部配置持久层分配，这里只要求可哈希的 int/str
AgentId = Union[int, str]


@dataclass(frozen=True)
class Message:
    """一条对话消息。历史中只保存 user/assistant，system 在请求时注入。"""

    role: Role
    content: str

    def to_payload(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class AgentConfig:
    """智能体配置快照。

    - model/system_prompt 为空，temperature/max_tokens/top_p 不大于 0 时，
      由 RequestBuilder 回退到默认值。
    - provider_kind 决定使用哪个适配器（base_url、默认模型、是否流式）。
    - api_key 必填，仅用于构造 Authorization 头，不会写入日志。
    """

    id: AgentId
    api_key: str
    provider_kind: str = "deepseek"
    model: str = ""
    temperature: float = 0.0
    max_tokens: int = 0
    top_p: float = 0.0
    system_prompt: str = ""
    name: str = ""

    def __repr__(self) -> str:
        # api_key 不出现在 repr 中
        return (
            f"AgentConfig(id={self.id!r}, name={self.name!r}, "
            f"provider_kind={self.provider_kind!r}, model={self.model!r})"
        )


@dataclass
class ChatRequest:
    """一次完整的聊天请求（每次调用重新构造，发送后丢弃）。"""

    model: str
    messages: List[Message]
    temperature: float
    max_tokens: int
    top_p: float
    stream: bool = False

    def to_payload(self) -> Dict[str, Any]:
        """转换为 /chat/completions 的请求 JSON。"""

        return {
            "model": self.model,
            "messages": [m.to_payload() for m in self.messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
            "stream": self.stream,
        }


class TurnState(str, Enum):
    """单次对话调用的状态机。"""

    IDLE = "idle"
    BUILDING = "building"
    SENT = "sent"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ChatOutcome:
    """一次对话调用的最终结果，text 与 error 有且只有一个。

    - state: 终态（SUCCEEDED 或 FAILED）。
    - text: 成功时的助手回复。
    - error: 失败时的异常对象，可用 describe_error 转成提示文本。
    """

    state: TurnState
    text: Optional[str] = None
    error: Optional[BaseException] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.state is TurnState.SUCCEEDED
