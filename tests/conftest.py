# FILE: tests/conftest.py
"""
Shared fixtures: a throwaway knowledge store, a scrubbed API-key environment,
and a stand-in for the OpenAI client.
"""
import sys
from pathlib import Path
from types import SimpleNamespace

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

from kb import KnowledgeStore


@pytest.fixture
def kb_path(tmp_path):
    return str(tmp_path / "kb" / "hall_knowledge.json")


@pytest.fixture
def store(kb_path):
    return KnowledgeStore(kb_path)


@pytest.fixture
def no_env_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)


@pytest.fixture
def env_key(monkeypatch):
    monkeypatch.delenv("API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env-test")
    return "sk-env-test"


class FakeResponses:
    def __init__(self, owner):
        self.owner = owner

    def create(self, **kwargs):
        self.owner.calls.append(kwargs)
        if self.owner.error is not None:
            raise self.owner.error
        return SimpleNamespace(output_text=self.owner.text)


class FakeOpenAI:
    """Records every client construction and every responses.create call."""

    def __init__(self, text="### Answer\nok", error=None):
        self.text = text
        self.error = error
        self.keys = []
        self.calls = []

    def __call__(self, api_key=None, **kwargs):
        self.keys.append(api_key)
        return SimpleNamespace(responses=FakeResponses(self))


@pytest.fixture
def fake_openai(monkeypatch):
    import gateway

    fake = FakeOpenAI()
    monkeypatch.setattr(gateway, "OpenAI", fake)
    return fake
