"""Agent Chat 顶层包。

该包在 UI 与多个聊天补全 Provider 之间调度对话：
按智能体隔离并裁剪会话历史、带配置回退地构造请求、
异步发送并把流式/非流式响应归一化为一段回复文本。
"""

from agent_chat.agents.chat_engine import ChatCallback, ChatEngine
from agent_chat.domain.models import AgentConfig, ChatOutcome, Message, TurnState

__all__ = ["AgentConfig", "ChatCallback", "ChatEngine", "ChatOutcome", "Message", "TurnState"]
