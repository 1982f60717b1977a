# ~/hall-info-bot/gateway.py
"""
Model gateway: one OpenAI Responses call per chat turn.

generate() never raises. Every failure is mapped to one of the fixed Markdown
outcome strings below, and the chat session shows that text as the bot reply.
"""
import logging
import threading
from typing import Any, Dict, List, Optional, Protocol, Sequence

from openai import OpenAI

import config
from kb import KnowledgeItem
from persona import build_system_instruction

log = logging.getLogger(__name__)

CONFIG_ERROR = (
    "### ⚠️ CONFIGURATION ERROR\n"
    "I am unable to access the AI engine. The administrator needs to configure the **API Key** "
    "in the Admin Dashboard (select/initialize a key) to enable service."
)
AUTH_ERROR = (
    "### ❌ AUTHENTICATION ERROR\n"
    "The session API Key is invalid, revoked, or expired. Please ask the administrator "
    "to re-configure the key in the Admin Dashboard."
)
CONNECTION_ERROR = (
    "### 🛰️ CONNECTION ERROR\n"
    "A technical issue occurred while reaching the AI server. Check your logs for details and try again later."
)
EMPTY_REPLY = "Synchronizing with records... please try again."

AUTH_MARKERS = ("not found", "API key not valid", "Invalid API key", "Incorrect API key")


class KeyProvider(Protocol):
    """Host-platform key source.

    A host may implement any subset of these; callers probe each one with
    getattr before calling it and fall back to the environment key.
    """

    def get_selected_api_key(self) -> Optional[str]: ...

    def get_api_key(self) -> Optional[str]: ...

    def has_selected_api_key(self) -> bool: ...

    def select_key(self, key: Optional[str]) -> None: ...


class RuntimeKeyProvider:
    """Admin-selected key held in process memory only; never written to disk."""

    def __init__(self):
        self._key: Optional[str] = None
        self._lock = threading.Lock()

    def select_key(self, key: Optional[str]) -> None:
        with self._lock:
            self._key = (key or "").strip() or None

    def clear(self) -> None:
        self.select_key(None)

    def get_selected_api_key(self) -> Optional[str]:
        with self._lock:
            return self._key

    def has_selected_api_key(self) -> bool:
        return self.get_selected_api_key() is not None


def _probe(provider: Any, name: str):
    fn = getattr(provider, name, None)
    return fn if callable(fn) else None


def resolve_api_key(provider: Optional[KeyProvider] = None) -> Optional[str]:
    api_key = config.env_api_key()
    if provider is None:
        return api_key
    try:
        fn = _probe(provider, "get_selected_api_key")
        if fn:
            key = fn()
            if key:
                return key
        fn = _probe(provider, "get_api_key")
        if fn:
            key = fn()
            if key:
                return key
        fn = _probe(provider, "has_selected_api_key")
        if fn and fn() and api_key:
            return api_key
    except Exception as e:
        log.warning("[gateway] key provider failed, using environment key: %s", e)
    return api_key


def _usable(key: Optional[str]) -> bool:
    return bool(key) and key != "undefined"


def _make_client(api_key: str) -> OpenAI:
    # new client per call so a freshly selected key is always used
    return OpenAI(api_key=api_key)


def is_auth_failure(err: Exception) -> bool:
    status = getattr(err, "status_code", None) or getattr(err, "status", None) or getattr(err, "code", None)
    if status in (401, 403):
        return True
    msg = str(err) or ""
    return any(m in msg for m in AUTH_MARKERS)


def _output_text(resp: Any) -> str:
    text = getattr(resp, "output_text", None)
    if text:
        return text
    text = ""
    out = getattr(resp, "output", None) or []
    for part in out:
        if isinstance(part, dict):
            c = part.get("content")
            if isinstance(c, str):
                text += c
    return text


def generate(transcript: Sequence[Any], knowledge: List[KnowledgeItem],
             provider: Optional[KeyProvider] = None) -> str:
    api_key = resolve_api_key(provider)
    if not _usable(api_key):
        log.error("[gateway] API key missing or not initialized")
        return CONFIG_ERROR

    # stateless per turn: only the latest message is sent as the query
    last = transcript[-1].content if transcript else ""
    sys_prompt = build_system_instruction(knowledge)

    try:
        client = _make_client(api_key)
        resp = client.responses.create(
            model=config.MODEL,
            input=[
                {"role": "system", "content": sys_prompt},
                {"role": "user", "content": last},
            ],
            temperature=config.TEMPERATURE,
        )
        text = (_output_text(resp) or "").strip()
        return text or EMPTY_REPLY
    except Exception as e:
        log.error("[gateway] generation failed: %s", e)
        if is_auth_failure(e):
            return AUTH_ERROR
        return CONNECTION_ERROR


def validate_api_key(provider: Optional[KeyProvider] = None) -> Dict[str, Any]:
    key = resolve_api_key(provider)
    if not _usable(key):
        return {"ok": False, "message": "No API key configured"}
    try:
        client = _make_client(key)
        test = client.responses.create(
            model=config.MODEL,
            input="Ping",
            temperature=0.0,
            max_output_tokens=16,
        )
        if _output_text(test):
            return {"ok": True, "message": None}
        return {"ok": False, "message": "Unexpected response from API"}
    except Exception as e:
        msg = str(e) or "Unknown error"
        if is_auth_failure(e):
            return {"ok": False, "message": "Authentication failed: invalid or expired API key"}
        return {"ok": False, "message": f"Connection error: {msg}"}
