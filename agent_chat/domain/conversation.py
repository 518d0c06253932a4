from typing import Iterable, List, Protocol, Tuple

from .models import AgentId, Message


# UI 侧保存的一条聊天记录：(是否用户消息, 内容)
HistoryEntry = Tuple[bool, str]


def messages_from_entries(entries: Iterable[HistoryEntry]) -> List[Message]:
    return [Message(role="user" if is_user else "assistant", content=content) for is_user, content in entries]


def entries_from_messages(messages: Iterable[Message]) -> List[HistoryEntry]:
    return [(m.role == "user", m.content) for m in messages]


class HistoryArchive(Protocol):
    def save(self, agent_id: AgentId, entries: List[HistoryEntry]) -> None:
        ...

    def load(self, agent_id: AgentId) -> List[HistoryEntry]:
        ...
