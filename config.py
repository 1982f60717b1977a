# ~/hall-info-bot/config.py
import os
from typing import Optional
from dotenv import load_dotenv

# Load .env, but allow it to override anything inherited from the shell
load_dotenv(override=True)

MODEL = os.getenv("MODEL", "gpt-4o-mini")
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.1"))

KB_PATH = os.getenv("KB_PATH") or os.path.join(os.getcwd(), "kb", "hall_knowledge.json")

# Content-extraction proxy: GET <proxy>/<target-url> returns the page as plain text
EXTRACT_PROXY_URL = os.getenv("EXTRACT_PROXY_URL", "https://r.jina.ai").rstrip("/")
FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "30"))
USER_AGENT = os.getenv("USER_AGENT", "hall-info-bot/1.0")

# Sample admin pair; not a security boundary
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "123")

# When false the admin card reports that key management is unavailable
ALLOW_KEY_SELECTION = os.getenv("ALLOW_KEY_SELECTION", "true").strip().lower() in ("1", "true", "yes", "on")

STATUS_DISMISS_MS = int(os.getenv("STATUS_DISMISS_MS", "3000"))

# in-memory chat sessions kept before the least recently used is evicted
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "1000"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def env_api_key() -> Optional[str]:
    """Read the environment key on every call so a rotated key is picked up."""
    raw = (os.getenv("OPENAI_API_KEY") or os.getenv("API_KEY") or "").strip()
    # quotes around the value are a common mistake in .env
    if (raw.startswith('"') and raw.endswith('"')) or (raw.startswith("'") and raw.endswith("'")):
        raw = raw[1:-1].strip()
    return raw or None
