"""
Provider-agnostic LLM client for Rekky summaries.

Supports Groq, OpenAI and Anthropic with a shared text-generation interface.
Groq exposes an OpenAI-compatible API, so it reuses the ``openai`` client
with a custom ``base_url``.
"""

from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger("rekky.common.llm_client")

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


class LLMClient:
    """Unified text generation client across LLM providers."""

    def __init__(
        self,
        provider: str = "groq",
        model: str = "",
        groq_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
    ) -> None:
        self.provider = (provider or "groq").lower()
        self.model = model
        self._client = None

        if self.provider in ("groq", "openai"):
            api_key = groq_api_key if self.provider == "groq" else openai_api_key
            if not api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                from openai import OpenAI

                if self.provider == "groq":
                    self._client = OpenAI(api_key=api_key, base_url=GROQ_BASE_URL)
                else:
                    self._client = OpenAI(api_key=api_key)
            except Exception as e:
                logger.warning("Failed to initialize %s client: %s", self.provider, e)
            return

        if self.provider == "anthropic":
            if not anthropic_api_key:
                logger.info("%s API key not provided, LLM client unavailable", self.provider)
                return
            try:
                import anthropic

                self._client = anthropic.Anthropic(api_key=anthropic_api_key)
            except Exception as e:
                logger.warning("Failed to initialize Anthropic client: %s", e)
            return

        logger.warning("Unsupported LLM provider: %s", self.provider)

    @classmethod
    def from_config(cls, llm_config) -> "LLMClient":
        """Build a client for the configured provider and its model."""
        provider = (llm_config.provider or "groq").lower()
        model = {
            "groq": llm_config.groq_model,
            "openai": llm_config.openai_model,
            "anthropic": llm_config.anthropic_model,
        }.get(provider, "")
        return cls(
            provider=provider,
            model=model,
            groq_api_key=llm_config.groq_api_key,
            openai_api_key=llm_config.openai_api_key,
            anthropic_api_key=llm_config.anthropic_api_key,
        )

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        temperature: float = 0.2,
        timeout: float = 30.0,
    ) -> str:
        if not self.is_available:
            raise RuntimeError("LLM client is not available")

        if self.provider == "anthropic":
            kwargs = {}
            if system:
                kwargs["system"] = system
            response = self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout,
                **kwargs,
            )
            return response.content[0].text.strip()

        if self.provider in ("groq", "openai"):
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            response = self._client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=messages,
                timeout=timeout,
            )
            return (response.choices[0].message.content or "").strip()

        raise RuntimeError(f"Unsupported LLM provider: {self.provider}")
