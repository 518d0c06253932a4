import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List
from uuid import uuid4

from agent_chat.config.settings import settings
from agent_chat.domain.conversation import HistoryArchive, HistoryEntry
from agent_chat.domain.exceptions import BusinessError
from agent_chat.domain.models import AgentId


class JsonHistoryArchive(HistoryArchive):
    """把每个智能体的聊天记录保存为 {root}/histories/<前缀>-<id 编码>.json。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._hist_root = self._root / "histories"
        self._hist_root.mkdir(parents=True, exist_ok=True)

    def save(self, agent_id: AgentId, entries: List[HistoryEntry]) -> None:
        path = self._path(agent_id)
        tmp_path = self._hist_root / f"{path.stem}.{uuid4().hex}.json.tmp"
        obj = {
            "agent_id": agent_id,
            "updated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "messages": [{"is_user": bool(is_user), "content": content} for is_user, content in entries],
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def load(self, agent_id: AgentId) -> List[HistoryEntry]:
        path = self._path(agent_id)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return [(bool(m["is_user"]), m.get("content") or "") for m in data.get("messages") or []]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))

    def _path(self, agent_id: AgentId) -> Path:
        # int 与 str 形式的同名 id 分开保存；id 按 UTF-8 十六进制编码，不同 id 不会撞名
        prefix = "i" if isinstance(agent_id, int) else "s"
        return self._hist_root / f"{prefix}-{str(agent_id).encode('utf-8').hex()}.json"
