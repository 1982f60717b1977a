# ~/hall-info-bot/ingest.py
import logging
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

import httpx

import config
from kb import KnowledgeItem, KnowledgeStore, new_id

log = logging.getLogger(__name__)

LOCAL_UPLOAD = "Local Upload"
MANUAL_ENTRY = "Manual Entry"
ACCEPT_TYPES = ".txt,.md,.json"  # file-picker hint only


class IngestError(Exception):
    """User-visible ingestion failure; the message is shown in the status banner."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _status(message: str) -> Dict[str, str]:
    return {"type": "success", "message": message}


IngestResult = Tuple[KnowledgeItem, Dict[str, str]]


def normalize_url(raw: str) -> str:
    clean = (raw or "").strip()
    return clean if clean.startswith("http") else f"https://{clean}"


def hostname_for(final_url: str, fallback: str) -> str:
    try:
        host = urlsplit(final_url).hostname
    except ValueError:
        host = None
    return host or fallback


def ingest_file(store: KnowledgeStore, filename: str, data: bytes) -> IngestResult:
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else str(data)
    item = KnowledgeItem(
        id=new_id(),
        kind="file",
        name=filename or "upload.txt",
        content=text,
        source=LOCAL_UPLOAD,
    )
    store.add(item)
    return item, _status("File indexed successfully.")


async def _fetch_text(url: str, client: Optional[httpx.AsyncClient] = None) -> str:
    fetch_url = f"{config.EXTRACT_PROXY_URL}/{url}"
    if client is None:
        headers = {"User-Agent": config.USER_AGENT}
        async with httpx.AsyncClient(follow_redirects=True, timeout=config.FETCH_TIMEOUT, headers=headers) as c:
            r = await c.get(fetch_url)
    else:
        r = await client.get(fetch_url)
    if not r.is_success:
        raise httpx.HTTPStatusError(f"extract failed: {r.status_code}", request=r.request, response=r)
    return r.text


async def ingest_url(store: KnowledgeStore, raw_url: str,
                     client: Optional[httpx.AsyncClient] = None) -> IngestResult:
    clean = (raw_url or "").strip()
    if not clean:
        raise IngestError("Please enter a URL.")
    final_url = normalize_url(clean)
    try:
        text = await _fetch_text(final_url, client=client)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        log.error("[ingest] url %s failed: %s", final_url, e)
        raise IngestError("Could not index website. Please check the URL.", status_code=502) from e

    item = KnowledgeItem(
        id=new_id(),
        kind="url",
        name=hostname_for(final_url, clean),
        content=text,
        source=final_url,
    )
    store.add(item)
    return item, _status('Website "words" extracted successfully.')


def ingest_manual(store: KnowledgeStore, title: str, body: str) -> IngestResult:
    title = (title or "").strip()
    body = (body or "").strip()
    if not title or not body:
        raise IngestError("Title and content are required.")
    item = KnowledgeItem(
        id=new_id(),
        kind="file",
        name=title,
        content=body,
        source=MANUAL_ENTRY,
    )
    store.add(item)
    return item, _status("Record saved to knowledge base.")
