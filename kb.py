# ~/hall-info-bot/kb.py
import os, json, random, string, logging, threading
from datetime import datetime, timezone
from typing import List, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

log = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_id(length: int = 9) -> str:
    """Short pseudo-random base-36 id; unique enough for a single local store."""
    return "".join(random.choice(_ID_ALPHABET) for _ in range(length))


def _now() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeItem(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_id)
    kind: Literal["file", "url"] = Field(alias="type")
    name: str
    content: str
    source: str
    added_at: datetime = Field(default_factory=_now, alias="addedAt")


def format_size(text: str) -> str:
    chars = len(text or "")
    if chars < 1000:
        return f"{chars} chars"
    return f"{chars / 1000:.1f}k chars"


class KnowledgeStore:
    """Ordered, newest-first collection of knowledge items backed by one JSON file.

    Every mutation rewrites the whole file under a lock, so concurrent requests
    in one process never lose an item. Nothing guards against two processes
    writing the same path; the last write wins.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self._items: List[KnowledgeItem] = self.load()

    def load(self) -> List[KnowledgeItem]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            raw = data.get("knowledge", []) if isinstance(data, dict) else data
            if not isinstance(raw, list):
                raise ValueError("knowledge collection is not a list")
            return [KnowledgeItem.model_validate(it) for it in raw]
        except (OSError, ValueError, ValidationError) as e:
            # corrupt or incompatible store loads as empty
            log.warning("[kb] could not read %s, starting empty: %s", self.path, e)
            return []

    def save(self) -> None:
        with self._lock:
            self._write()

    def _write(self) -> None:
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        data: Dict[str, Any] = {
            "knowledge": [it.model_dump(mode="json", by_alias=True) for it in self._items]
        }
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)

    def list(self) -> List[KnowledgeItem]:
        with self._lock:
            return list(self._items)

    def add(self, item: KnowledgeItem) -> None:
        with self._lock:
            self._items = [item] + self._items
            self._write()
        log.info("[kb] added %s (%s, %s)", item.id, item.kind, item.name)

    def remove(self, item_id: str) -> None:
        with self._lock:
            before = len(self._items)
            self._items = [it for it in self._items if it.id != item_id]
            if len(self._items) == before:
                return
            self._write()
        log.info("[kb] removed %s", item_id)

    def __len__(self) -> int:
        return len(self._items)
