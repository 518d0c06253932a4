"""按智能体隔离的会话历史存储。

SessionStore 独占所有会话历史：

- 每个 agent_id 对应一个有序的 Message 列表，首次访问时惰性创建；
- 历史中只保存 user/assistant 消息，system 提示词在请求时注入；
- 对外只返回快照（拷贝），其他组件不会持有内部列表的引用。

并发约束：
- 一把 threading.Lock 保护映射表和所有列表，单个操作在多线程下原子；
- 每个 agent_id 另有一把 asyncio.Lock（turn_lock），由 ChatEngine 在整轮
  对话期间持有，保证同一智能体的“追加用户消息 → 裁剪 → 追加回复”不会
  与另一轮交错；asyncio.Lock 绑定事件循环，所以按事件循环分别保存。
"""

import asyncio
import threading
import weakref
from typing import Dict, Iterable, List

from agent_chat.domain.conversation import HistoryEntry, messages_from_entries
from agent_chat.domain.models import AgentId, Message


# 粗略估算：每轮对话（用户 + 助手）约 50 个 token
TOKENS_PER_ROUND = 50


def check_agent_id(agent_id: AgentId) -> None:
    if isinstance(agent_id, bool) or not isinstance(agent_id, (int, str)):
        raise TypeError(f"agent_id must be int or str, got {type(agent_id).__name__}")


class SessionStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._histories: Dict[AgentId, List[Message]] = {}
        self._turn_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[AgentId, asyncio.Lock]]" = (
            weakref.WeakKeyDictionary()
        )

    def _history(self, agent_id: AgentId) -> List[Message]:
        # 调用方需已持有 self._lock
        check_agent_id(agent_id)
        history = self._histories.get(agent_id)
        if history is None:
            history = self._histories[agent_id] = []
        return history

    def get_history(self, agent_id: AgentId) -> List[Message]:
        """返回历史快照；首次访问时创建空历史。"""

        with self._lock:
            return list(self._history(agent_id))

    def agent_ids(self) -> List[AgentId]:
        with self._lock:
            return list(self._histories)

    def append_user(self, agent_id: AgentId, text: str) -> Message:
        return self._append(agent_id, Message(role="user", content=text))

    def append_assistant(self, agent_id: AgentId, text: str) -> Message:
        return self._append(agent_id, Message(role="assistant", content=text))

    def _append(self, agent_id: AgentId, message: Message) -> Message:
        with self._lock:
            self._history(agent_id).append(message)
        return message

    def trim(self, agent_id: AgentId, max_tokens: int) -> int:
        """按 token 预算裁剪历史，返回被移除的消息数。

        max_rounds = floor(max_tokens / 50)；当历史长度超过 max_rounds * 2 时，
        从最早的一轮开始成对移除（用户消息及其对应回复）。若最前面是一条
        没有回复的用户消息（失败轮次），则单独移除。
        """

        max_rounds = max(0, max_tokens // TOKENS_PER_ROUND)
        limit = max_rounds * 2
        removed = 0
        with self._lock:
            history = self._history(agent_id)
            while len(history) > limit:
                first = history.pop(0)
                removed += 1
                if first.role == "user" and history and history[0].role == "assistant":
                    history.pop(0)
                    removed += 1
        return removed

    def clear(self, agent_id: AgentId) -> None:
        """原地清空历史，映射条目保留。"""

        with self._lock:
            self._history(agent_id).clear()

    def truncate_from(self, agent_id: AgentId, index: int) -> None:
        """删除位置 >= index 的所有消息；越界时不做任何事。"""

        check_agent_id(agent_id)
        with self._lock:
            history = self._histories.get(agent_id)
            if history is None or index < 0 or index >= len(history):
                return
            del history[index:]

    def rebuild(self, agent_id: AgentId, entries: Iterable[HistoryEntry]) -> None:
        """用外部提供的 (is_user, content) 列表整体替换历史。"""

        messages = messages_from_entries(entries)
        with self._lock:
            check_agent_id(agent_id)
            self._histories[agent_id] = messages

    def discard_last(self, agent_id: AgentId, message: Message) -> bool:
        """仅当 message 仍是最后一条时移除它，返回是否移除。"""

        with self._lock:
            history = self._history(agent_id)
            if history and history[-1] is message:
                history.pop()
                return True
        return False

    def turn_lock(self, agent_id: AgentId) -> asyncio.Lock:
        """返回该智能体在当前事件循环中的对话串行锁，必须在协程内调用。"""

        loop = asyncio.get_running_loop()
        with self._lock:
            check_agent_id(agent_id)
            locks = self._turn_locks.get(loop)
            if locks is None:
                locks = self._turn_locks[loop] = {}
            lock = locks.get(agent_id)
            if lock is None:
                lock = locks[agent_id] = asyncio.Lock()
            return lock
