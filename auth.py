# ~/hall-info-bot/auth.py
import logging
import threading
from collections import OrderedDict
from typing import Literal, Optional

from fastapi import Header, HTTPException
from pydantic import BaseModel

import config
from session import ChatSession

log = logging.getLogger(__name__)

DEFAULT_SESSION = "default"


class AuthState(BaseModel):
    role: Literal["admin", "user"] = "user"
    is_authenticated: bool = True


class SessionContext:
    """Per-browser state: who is signed in and the chat transcript."""

    def __init__(self, session_id: str):
        self.id = session_id
        self.auth = AuthState()
        self.chat = ChatSession()

    @property
    def is_admin(self) -> bool:
        return self.auth.role == "admin"

    def reset(self) -> None:
        self.auth = AuthState()


class SessionRegistry:
    """Get-or-create by session id, capped at max_sessions.

    The least recently used session is evicted when the cap is reached.
    """

    def __init__(self, max_sessions: int = config.MAX_SESSIONS):
        self.max_sessions = max(1, max_sessions)
        self._sessions: "OrderedDict[str, SessionContext]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, session_id: Optional[str]) -> SessionContext:
        sid = (session_id or "").strip() or DEFAULT_SESSION
        with self._lock:
            ctx = self._sessions.get(sid)
            if ctx is not None:
                self._sessions.move_to_end(sid)
                return ctx
            while len(self._sessions) >= self.max_sessions:
                old, _ = self._sessions.popitem(last=False)
                log.info("[auth] evicted idle session %s", old)
            ctx = self._sessions[sid] = SessionContext(sid)
            return ctx

    def __len__(self) -> int:
        return len(self._sessions)


sessions = SessionRegistry()


def login(ctx: SessionContext, username: str, password: str) -> bool:
    # fixed credential pair, not a security boundary
    if (username or "") == config.ADMIN_USERNAME and (password or "") == config.ADMIN_PASSWORD:
        ctx.auth = AuthState(role="admin", is_authenticated=True)
        return True
    return False


def logout(ctx: SessionContext) -> None:
    ctx.reset()


def current_session(x_session_id: str = Header(DEFAULT_SESSION, alias="X-Session-Id")) -> SessionContext:
    return sessions.get(x_session_id)


def require_admin(x_session_id: str = Header(DEFAULT_SESSION, alias="X-Session-Id")) -> SessionContext:
    ctx = sessions.get(x_session_id)
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return ctx
