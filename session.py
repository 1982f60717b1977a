# ~/hall-info-bot/session.py
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

import gateway
from kb import KnowledgeItem, new_id
from persona import WELCOME_MESSAGE

log = logging.getLogger(__name__)

IDLE = "idle"
AWAITING_REPLY = "awaiting-reply"

ReplyFn = Callable[[Sequence["Message"], List[KnowledgeItem]], str]


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChatSession:
    """Append-only transcript with a single in-flight reply.

    Phases: idle -> awaiting-reply -> idle. A submit that arrives while a reply
    is pending is refused and leaves the transcript untouched.
    """

    def __init__(self):
        self._messages: List[Message] = [Message(role="assistant", content=WELCOME_MESSAGE)]
        self._phase = IDLE
        self._lock = threading.Lock()

    @property
    def phase(self) -> str:
        return self._phase

    @property
    def awaiting_reply(self) -> bool:
        return self._phase == AWAITING_REPLY

    def transcript(self) -> List[Message]:
        return list(self._messages)

    def submit(self, text: str, knowledge: List[KnowledgeItem],
               reply_fn: Optional[ReplyFn] = None) -> Optional[Message]:
        if not (text or "").strip():
            return None
        with self._lock:
            if self._phase == AWAITING_REPLY:
                return None
            self._phase = AWAITING_REPLY
            self._messages.append(Message(role="user", content=text))
            pending = list(self._messages)

        reply_fn = reply_fn or gateway.generate
        try:
            try:
                content = reply_fn(pending, knowledge)
                if not isinstance(content, str):
                    raise TypeError(f"reply must be str, got {type(content).__name__}")
            except Exception:
                # errors are shown as bot replies, never as a separate channel
                log.exception("[chat] reply failed")
                content = gateway.CONNECTION_ERROR
            if not content.strip():
                content = gateway.EMPTY_REPLY
            bot = Message(role="assistant", content=content)
            with self._lock:
                self._messages.append(bot)
        finally:
            with self._lock:
                self._phase = IDLE
        return bot
