"""对外 API 服务模块。

提供简化的函数接口供 UI 层调用，内部共享一个 ChatEngine 单例。
"""

import asyncio
from typing import Iterable, List, Optional

from agent_chat.agents.chat_engine import ChatCallback, ChatEngine
from agent_chat.config.settings import settings
from agent_chat.conversation.session_store import SessionStore
from agent_chat.domain.conversation import HistoryEntry
from agent_chat.domain.models import AgentConfig, AgentId, ChatOutcome, Message
from agent_chat.infrastructure.storage.json_store import JsonHistoryArchive


_engine: Optional[ChatEngine] = None


def get_default_engine() -> ChatEngine:
    """获取默认的 ChatEngine 实例（单例）。"""
    global _engine
    if _engine is None:
        archive = JsonHistoryArchive(root=settings.storage_root) if settings.persist_history else None
        _engine = ChatEngine(store=SessionStore(), archive=archive)
    return _engine


def set_default_engine(engine: Optional[ChatEngine]) -> None:
    """替换默认实例（传 None 则下次访问时重新创建）。"""
    global _engine
    _engine = engine


def chat(user_message: str, agent_config: Optional[AgentConfig], callback: ChatCallback) -> "asyncio.Task[ChatOutcome]":
    """发送聊天消息（使用智能体配置），结果通过 callback 异步回调。

    必须在运行中的事件循环里调用；同步调用方可以用
    asyncio.run(chat_async(...))。

    Args:
        user_message: 用户输入
        agent_config: 智能体配置（包含 model/temperature 等参数）
        callback: 回调对象，on_response / on_failure 恰好触发一个

    Returns:
        承载本次调用的 asyncio.Task

    Raises:
        RuntimeError: 当前线程没有运行中的事件循环，此时不会触发回调
    """
    return get_default_engine().chat(user_message, agent_config, callback)


async def chat_async(user_message: str, agent_config: Optional[AgentConfig]) -> str:
    """发送聊天消息并等待回复文本。

    Raises:
        各种 domain.exceptions 中定义的异常
    """
    return await get_default_engine().chat_async(user_message, agent_config)


def get_history(agent_id: AgentId) -> List[Message]:
    """获取指定智能体的对话历史（快照）。"""
    return get_default_engine().get_history(agent_id)


async def clear_history(agent_id: AgentId) -> None:
    """清空指定智能体的对话历史。"""
    await get_default_engine().clear_history(agent_id)


async def truncate_from(agent_id: AgentId, index: int) -> None:
    """删除指定位置及之后的所有历史消息。"""
    await get_default_engine().truncate_from(agent_id, index)


async def rebuild_history(agent_id: AgentId, messages: Iterable[HistoryEntry]) -> None:
    """用 UI 保存的 (is_user, content) 列表重建对话历史。"""
    await get_default_engine().rebuild_history(agent_id, messages)


async def restore_history(agent_id: AgentId) -> List[Message]:
    """从持久化存储恢复对话历史。"""
    return await get_default_engine().restore_history(agent_id)
