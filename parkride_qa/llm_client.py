"""
LLM client with support for OpenAI-compatible APIs and mock mode.
"""

import json
import os
from abc import ABC, abstractmethod
from typing import Any

from .errors import ConfigurationError, UpstreamError
from .schemas import KnowledgeRecord
from .utils import get_logger

logger = get_logger("llm")

RUN_MODES = ("auto", "real", "mock")


def resolve_mode() -> str:
    """
    Resolve the run mode from QA_MODE and OPENAI_API_KEY.

    auto: real when an API key is set, mock otherwise
    real: API key required, ConfigurationError without it
    mock: deterministic outputs, no network
    """
    mode = os.getenv("QA_MODE", "auto").strip().lower()
    if mode not in RUN_MODES:
        raise ConfigurationError(f"QA_MODE must be one of {', '.join(RUN_MODES)}, got '{mode}'")

    has_key = bool(os.getenv("OPENAI_API_KEY"))
    if mode == "real" and not has_key:
        raise ConfigurationError("OPENAI_API_KEY is required when QA_MODE=real")
    if mode == "auto":
        return "real" if has_key else "mock"
    return mode


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def complete(self, prompt: str, system_prompt: str = "") -> str:
        """Generate a completion for the given prompt."""
        pass

    @abstractmethod
    def complete_json(self, prompt: str, system_prompt: str = "") -> Any:
        """Generate a JSON completion for the given prompt."""
        pass

    @property
    @abstractmethod
    def is_mock(self) -> bool:
        """Whether this is a mock provider."""
        pass


class OpenAICompatibleProvider(LLMProvider):
    """Provider for OpenAI-compatible APIs."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        temperature: float = 0.0
    ):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self.model = model or os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
        self.temperature = temperature

        if not self.api_key:
            raise ConfigurationError("OpenAI API key is required")

        # Import here to avoid dependency issues in mock mode
        from openai import OpenAI

        client_kwargs = {"api_key": self.api_key}
        if self.base_url:
            client_kwargs["base_url"] = self.base_url

        self.client = OpenAI(**client_kwargs)

    @property
    def is_mock(self) -> bool:
        return False

    def _create(self, prompt: str, system_prompt: str, **kwargs) -> str:
        from openai import OpenAIError

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                **kwargs
            )
        except OpenAIError as e:
            logger.error(f"Chat completion failed: {type(e).__name__}: {e}")
            raise UpstreamError(f"Chat completion failed: {e}") from e
        return response.choices[0].message.content or ""

    def complete(self, prompt: str, system_prompt: str = "") -> str:
        return self._create(prompt, system_prompt)

    def complete_json(self, prompt: str, system_prompt: str = "") -> Any:
        content = self._create(prompt, system_prompt)
        return json.loads(strip_code_fence(content))


def strip_code_fence(content: str) -> str:
    """Remove a ```json ... ``` fence some models wrap JSON in."""
    content = content.strip()
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else ""
        if content.rstrip().endswith("```"):
            content = content.rstrip()[:-3]
    return content.strip()


class MockProvider(LLMProvider):
    """Deterministic mock provider for demos without API key."""

    @property
    def is_mock(self) -> bool:
        return True

    def complete(self, prompt: str, system_prompt: str = "") -> str:
        return "Mock response generated."

    def complete_json(self, prompt: str, system_prompt: str = "") -> Any:
        return []

    def mock_answer(self, query: str, records: list[KnowledgeRecord]) -> str:
        """Build an answer from the supplied records without calling a model."""
        lines = ["お問い合わせいただきありがとうございます。"]
        if records:
            for record in records[:2]:
                for line in record.answer.splitlines():
                    if line.strip():
                        lines.append(f"- {line.strip()}")
        else:
            lines.append("申し訳ありませんが、その情報は提供できません。")
        lines.append("その他ご不明な点がございましたら、お気軽にお問い合わせください。")
        return "\n".join(lines)

    def mock_related_questions(self, query: str, records: list[KnowledgeRecord]) -> list[str]:
        """Suggest the questions of the supplied records, excluding the query."""
        return [r.question for r in records if r.question != query][:3]


def get_llm_client() -> LLMProvider:
    """
    Factory function to get the appropriate LLM client.
    Returns MockProvider when running in mock mode.
    """
    mode = resolve_mode()

    if mode == "mock":
        logger.info("Running in mock mode with deterministic outputs.")
        return MockProvider()

    try:
        return OpenAICompatibleProvider()
    except ConfigurationError:
        raise
    except Exception as e:
        if os.getenv("QA_MODE", "auto").strip().lower() == "real":
            raise ConfigurationError(f"Failed to initialize OpenAI client: {e}") from e
        logger.warning(f"Failed to initialize OpenAI client: {e}. Falling back to mock mode.")
        return MockProvider()
