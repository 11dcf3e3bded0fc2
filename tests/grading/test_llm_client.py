"""Tests for the LLM client (no real API calls)."""

from unittest.mock import MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError, APITimeoutError

from assessment.config.app_config import AppConfig
from assessment.llm.client import (
    LLMClient,
    LLMConfig,
    LLMConnectionError,
    LLMError,
    LLMResponseError,
    LLMTimeoutError,
    Message,
)


def _completion(content: str) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.model = "test-model"
    response.usage = MagicMock(prompt_tokens=10, completion_tokens=20, total_tokens=30)
    return response


@pytest.fixture
def mock_openai_client():
    """Patch the OpenAI SDK class used by LLMClient."""
    with patch("assessment.llm.client.OpenAI") as mock_class:
        instance = MagicMock()
        mock_class.return_value = instance
        yield mock_class, instance


class TestLLMConfig:
    """Tests for LLMConfig."""

    def test_defaults(self):
        """Defaults point at a local LM Studio server."""
        config = LLMConfig()
        assert config.provider == "lmstudio"
        assert config.base_url == "http://localhost:1234/v1"
        assert config.timeout == 30

    def test_timeout_comes_from_grading_section(self):
        """The model timeout is the grading AI timeout."""
        app_config = AppConfig()
        app_config.grading.ai_timeout_seconds = 12

        assert LLMConfig.from_app_config(app_config).timeout == 12

    def test_openai_key_from_env(self, monkeypatch):
        """Hosted providers read their key from the environment."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        app_config = AppConfig()
        app_config.llm.provider = "openai"
        app_config.llm.base_url = None

        config = LLMConfig.from_app_config(app_config)

        assert config.api_key == "sk-test"
        assert config.base_url == "https://api.openai.com/v1"


class TestLLMClientMocked:
    """Tests for LLMClient using mocks."""

    def test_sdk_retries_disabled(self, mock_openai_client):
        """Each request is attempted once with the configured timeout."""
        mock_class, _ = mock_openai_client
        LLMClient(LLMConfig(timeout=7))

        kwargs = mock_class.call_args.kwargs
        assert kwargs["max_retries"] == 0
        assert kwargs["timeout"] == 7

    def test_provider_and_model_overrides(self, mock_openai_client, monkeypatch):
        """Overrides switch the endpoint, key and model of the configured client."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        mock_class, _ = mock_openai_client

        client = LLMClient(LLMConfig(), provider="openai", model="gpt-test")

        assert client.config.provider == "openai"
        assert client.config.model == "gpt-test"
        assert mock_class.call_args.kwargs["base_url"] == "https://api.openai.com/v1"
        assert mock_class.call_args.kwargs["api_key"] == "sk-test"

    def test_chat_returns_response(self, mock_openai_client):
        """Chat returns content and token usage."""
        _, instance = mock_openai_client
        instance.chat.completions.create.return_value = _completion("Hello")

        response = LLMClient(LLMConfig()).chat([Message(role="user", content="Hi")])

        assert response.content == "Hello"
        assert response.total_tokens == 30

    def test_timeout_mapped(self, mock_openai_client):
        """SDK timeouts become LLMTimeoutError."""
        _, instance = mock_openai_client
        request = httpx.Request("POST", "http://localhost:1234/v1/chat/completions")
        instance.chat.completions.create.side_effect = APITimeoutError(request=request)

        with pytest.raises(LLMTimeoutError):
            LLMClient(LLMConfig()).chat([Message(role="user", content="Hi")])

    def test_connection_error_mapped(self, mock_openai_client):
        """Connection failures become LLMConnectionError."""
        _, instance = mock_openai_client
        request = httpx.Request("POST", "http://localhost:1234/v1/chat/completions")
        instance.chat.completions.create.side_effect = APIConnectionError(request=request)

        with pytest.raises(LLMConnectionError):
            LLMClient(LLMConfig()).chat([Message(role="user", content="Hi")])

    def test_other_errors_mapped(self, mock_openai_client):
        """Any other SDK failure becomes LLMError."""
        _, instance = mock_openai_client
        instance.chat.completions.create.side_effect = RuntimeError("boom")

        with pytest.raises(LLMError):
            LLMClient(LLMConfig()).chat([Message(role="user", content="Hi")])

    def test_empty_choices(self, mock_openai_client):
        """An empty completion is a response error."""
        _, instance = mock_openai_client
        response = _completion("")
        response.choices = []
        instance.chat.completions.create.return_value = response

        with pytest.raises(LLMResponseError):
            LLMClient(LLMConfig()).chat([Message(role="user", content="Hi")])

    def test_simple_json_parses_fenced_block(self, mock_openai_client):
        """JSON inside a markdown fence after a think block is recovered."""
        _, instance = mock_openai_client
        instance.chat.completions.create.return_value = _completion(
            '<think>hmm</think>```json\n{"score": 70, "reasoning": "ok"}\n```'
        )

        result = LLMClient(LLMConfig()).simple_json("sys", "user", max_retries=0)

        assert result == {"score": 70, "reasoning": "ok"}

    def test_simple_json_without_retry_raises(self, mock_openai_client):
        """With no retries, unparseable output raises after one call."""
        _, instance = mock_openai_client
        instance.chat.completions.create.return_value = _completion("not json at all")

        with pytest.raises(LLMResponseError):
            LLMClient(LLMConfig()).simple_json("sys", "user", max_retries=0)
        assert instance.chat.completions.create.call_count == 1

    def test_simple_json_repair_retry(self, mock_openai_client):
        """One repair attempt is made when retries are allowed."""
        _, instance = mock_openai_client
        instance.chat.completions.create.side_effect = [
            _completion("not json"),
            _completion('{"score": 50, "reasoning": "fixed"}'),
        ]

        result = LLMClient(LLMConfig()).simple_json("sys", "user", max_retries=1)

        assert result["score"] == 50
        assert instance.chat.completions.create.call_count == 2

    def test_json_mode_only_for_supporting_providers(self, mock_openai_client):
        """LM Studio requests are sent without response_format."""
        _, instance = mock_openai_client
        instance.chat.completions.create.return_value = _completion("{}")

        LLMClient(LLMConfig()).chat([Message(role="user", content="Hi")], json_mode=True)

        assert "response_format" not in instance.chat.completions.create.call_args.kwargs

    def test_is_available(self, mock_openai_client):
        """Availability reflects whether the models endpoint answers."""
        _, instance = mock_openai_client
        client = LLMClient(LLMConfig())
        assert client.is_available()

        instance.models.list.side_effect = RuntimeError("down")
        assert not client.is_available()
