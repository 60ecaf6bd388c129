"""Tests for LLMClient provider abstraction."""

import pytest
from unittest.mock import MagicMock
from rekky.common.llm_client import LLMClient, GROQ_BASE_URL


class TestLLMClientInit:
    def test_missing_groq_key_logs_info(self, caplog):
        import logging
        with caplog.at_level(logging.INFO, logger="rekky.common.llm_client"):
            client = LLMClient(provider="groq")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_openai_key_logs_info(self, caplog):
        import logging
        with caplog.at_level(logging.INFO, logger="rekky.common.llm_client"):
            client = LLMClient(provider="openai")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_anthropic_key_logs_info(self, caplog):
        import logging
        with caplog.at_level(logging.INFO, logger="rekky.common.llm_client"):
            client = LLMClient(provider="anthropic")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_unsupported_provider_logs_warning(self, caplog):
        import logging
        with caplog.at_level(logging.WARNING, logger="rekky.common.llm_client"):
            client = LLMClient(provider="unsupported_xyz")
        assert not client.is_available
        assert "Unsupported" in caplog.text

    def test_groq_uses_openai_compatible_endpoint(self):
        client = LLMClient(provider="groq", model="llama-3.3-70b-versatile", groq_api_key="gsk-test")
        assert client.is_available
        assert str(client._client.base_url).rstrip("/") == GROQ_BASE_URL

    def test_from_config_picks_provider_model(self):
        from rekky.common.config import LLMConfig
        cfg = LLMConfig(provider="openai", openai_api_key="sk-test", openai_model="gpt-4o")
        client = LLMClient.from_config(cfg)
        assert client.provider == "openai"
        assert client.model == "gpt-4o"
        assert client.is_available


class TestLLMClientGenerate:
    def test_generate_raises_when_unavailable(self):
        client = LLMClient(provider="groq")
        with pytest.raises(RuntimeError, match="not available"):
            client.generate("test")

    def test_generate_chat_completion(self):
        client = LLMClient(provider="groq", model="llama-3.3-70b-versatile", groq_api_key="gsk-test")
        fake = MagicMock()
        fake.chat.completions.create.return_value.choices = [
            MagicMock(message=MagicMock(content="  Try Blue Tokai.  "))
        ]
        client._client = fake

        result = client.generate("q", system="be grounded", max_tokens=700, temperature=0.2, timeout=5)

        assert result == "Try Blue Tokai."
        kwargs = fake.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "be grounded"}
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 700
        assert kwargs["timeout"] == 5

    def test_generate_anthropic_messages(self):
        client = LLMClient(provider="anthropic", model="claude-sonnet-4-20250514", anthropic_api_key="sk-ant")
        fake = MagicMock()
        fake.messages.create.return_value.content = [MagicMock(text="Summary text")]
        client._client = fake

        assert client.generate("q", system="sys") == "Summary text"
        kwargs = fake.messages.create.call_args.kwargs
        assert kwargs["system"] == "sys"

    def test_generate_propagates_errors(self):
        client = LLMClient(provider="openai", model="gpt-4o-mini", openai_api_key="sk-test")
        fake = MagicMock()
        fake.chat.completions.create.side_effect = TimeoutError("slow")
        client._client = fake
        with pytest.raises(TimeoutError):
            client.generate("q")
