# FILE: tests/test_gateway.py
"""
Tests for gateway.py
Key resolution, outcome classification, and the verification ping.
"""
import httpx
import openai
import pytest

import config
import gateway
from kb import KnowledgeItem
from session import Message

_REQ = httpx.Request("POST", "https://api.openai.com/v1/responses")


def _status_error(cls, code, message):
    return cls(message, response=httpx.Response(code, request=_REQ), body=None)


def _turn(text):
    return [Message(role="assistant", content="welcome"), Message(role="user", content=text)]


CANTEEN = KnowledgeItem(kind="file", name="Canteen Hours", content="Canteen opens 7am-10pm", source="Manual Entry")


class SelectedOnly:
    def get_selected_api_key(self):
        return "sk-selected"


class ApiKeyOnly:
    def get_api_key(self):
        return "sk-platform"


class FlagOnly:
    def __init__(self, flag):
        self.flag = flag

    def has_selected_api_key(self):
        return self.flag


class Broken:
    def get_selected_api_key(self):
        raise RuntimeError("platform bridge unavailable")


class TestResolveApiKey:

    def test_env_key(self, env_key):
        assert gateway.resolve_api_key() == env_key

    def test_api_key_fallback_var(self, no_env_key, monkeypatch):
        monkeypatch.setenv("API_KEY", "sk-generic")
        assert gateway.resolve_api_key() == "sk-generic"

    def test_no_key(self, no_env_key):
        assert gateway.resolve_api_key() is None
        assert gateway.resolve_api_key(object()) is None

    def test_selected_key_overrides_env(self, env_key):
        assert gateway.resolve_api_key(SelectedOnly()) == "sk-selected"

    def test_platform_key(self, no_env_key):
        assert gateway.resolve_api_key(ApiKeyOnly()) == "sk-platform"

    def test_flag_without_env_key(self, no_env_key):
        assert gateway.resolve_api_key(FlagOnly(True)) is None

    def test_flag_with_env_key(self, env_key):
        assert gateway.resolve_api_key(FlagOnly(True)) == env_key
        assert gateway.resolve_api_key(FlagOnly(False)) == env_key

    def test_provider_without_methods_falls_back(self, env_key):
        assert gateway.resolve_api_key(object()) == env_key

    def test_provider_error_falls_back(self, env_key):
        assert gateway.resolve_api_key(Broken()) == env_key

    def test_runtime_provider(self, no_env_key):
        provider = gateway.RuntimeKeyProvider()
        assert not provider.has_selected_api_key()
        provider.select_key("  sk-runtime  ")
        assert provider.has_selected_api_key()
        assert gateway.resolve_api_key(provider) == "sk-runtime"
        provider.clear()
        assert gateway.resolve_api_key(provider) is None

    def test_protocol_names_the_probed_methods(self):
        probed = ["get_selected_api_key", "get_api_key", "has_selected_api_key", "select_key"]
        assert all(callable(getattr(gateway.KeyProvider, name, None)) for name in probed)
        runtime = gateway.RuntimeKeyProvider()
        assert all(callable(getattr(runtime, name, None))
                   for name in ["get_selected_api_key", "has_selected_api_key", "select_key"])


class TestGenerate:

    def test_configuration_error_without_network(self, no_env_key, fake_openai):
        assert gateway.generate(_turn("hi"), [CANTEEN]) == gateway.CONFIG_ERROR
        assert fake_openai.keys == []
        assert fake_openai.calls == []

    def test_literal_undefined_key(self, monkeypatch, fake_openai):
        monkeypatch.setenv("OPENAI_API_KEY", "undefined")
        assert gateway.generate(_turn("hi"), []) == gateway.CONFIG_ERROR
        assert fake_openai.calls == []

    def test_sends_latest_message_and_context(self, env_key, fake_openai):
        fake_openai.text = "### Canteen\n**7am-10pm**"
        transcript = _turn("first question") + [
            Message(role="assistant", content="answer"),
            Message(role="user", content="What are the canteen hours?"),
        ]
        reply = gateway.generate(transcript, [CANTEEN])

        assert reply == "### Canteen\n**7am-10pm**"
        call = fake_openai.calls[0]
        assert call["model"] == config.MODEL
        assert call["temperature"] == pytest.approx(0.1)
        system, user = call["input"]
        assert system["role"] == "system"
        assert "[SOURCE: Canteen Hours]\nCanteen opens 7am-10pm" in system["content"]
        assert user == {"role": "user", "content": "What are the canteen hours?"}

    def test_fresh_client_per_call(self, env_key, fake_openai):
        provider = gateway.RuntimeKeyProvider()
        gateway.generate(_turn("a"), [], provider=provider)
        provider.select_key("sk-rotated")
        gateway.generate(_turn("b"), [], provider=provider)
        assert fake_openai.keys == [env_key, "sk-rotated"]

    def test_empty_payload(self, env_key, fake_openai):
        fake_openai.text = "   "
        assert gateway.generate(_turn("hi"), []) == gateway.EMPTY_REPLY

    @pytest.mark.parametrize("error", [
        _status_error(openai.AuthenticationError, 401, "Incorrect API key provided"),
        _status_error(openai.PermissionDeniedError, 403, "forbidden"),
        RuntimeError("API key not valid. Please pass a valid API key."),
        RuntimeError("model not found"),
    ])
    def test_authentication_error(self, env_key, fake_openai, error):
        fake_openai.error = error
        assert gateway.generate(_turn("hi"), []) == gateway.AUTH_ERROR

    @pytest.mark.parametrize("error", [
        _status_error(openai.RateLimitError, 429, "slow down"),
        _status_error(openai.InternalServerError, 500, "boom"),
        openai.APIConnectionError(request=_REQ),
        ValueError("malformed"),
    ])
    def test_connection_error(self, env_key, fake_openai, error):
        fake_openai.error = error
        assert gateway.generate(_turn("hi"), []) == gateway.CONNECTION_ERROR

    def test_outcome_texts_are_markdown(self):
        assert gateway.CONFIG_ERROR.startswith("### ")
        assert gateway.AUTH_ERROR.startswith("### ")
        assert gateway.CONNECTION_ERROR.startswith("### ")


class TestValidateApiKey:

    def test_no_key(self, no_env_key, fake_openai):
        assert gateway.validate_api_key() == {"ok": False, "message": "No API key configured"}
        assert fake_openai.calls == []

    def test_ok(self, env_key, fake_openai):
        fake_openai.text = "Pong"
        assert gateway.validate_api_key()["ok"] is True
        call = fake_openai.calls[0]
        assert call["input"] == "Ping"
        assert call["max_output_tokens"] == 16
        assert call["temperature"] == 0.0

    def test_empty_response(self, env_key, fake_openai):
        fake_openai.text = ""
        assert gateway.validate_api_key() == {"ok": False, "message": "Unexpected response from API"}

    def test_auth_failure(self, env_key, fake_openai):
        fake_openai.error = _status_error(openai.AuthenticationError, 401, "Incorrect API key provided")
        res = gateway.validate_api_key()
        assert res == {"ok": False, "message": "Authentication failed: invalid or expired API key"}

    def test_connection_failure(self, env_key, fake_openai):
        fake_openai.error = RuntimeError("timed out")
        res = gateway.validate_api_key()
        assert res["ok"] is False
        assert res["message"] == "Connection error: timed out"
