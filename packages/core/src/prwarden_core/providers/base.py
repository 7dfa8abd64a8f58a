"""Base completion provider implementing the Template Method pattern.

All providers share the same call algorithm:
    complete() → _call_with_retry() → _call_api()   ← only this differs per provider

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response

Completions are best-effort: complete() returns None once every retry has
failed, and each caller decides what None means for its own decision.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

# Shared defaults; subclasses may override them as class attributes.
_MAX_RETRIES = 3
_MAX_TOKENS = 1024


class BaseProvider(ABC):
    MODEL: str = ""
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS
    TEMPERATURE: float = 0.1

    def __init__(self, model: str | None = None):
        self.model = model or self.MODEL

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def complete(self, prompt: str, max_tokens: int | None = None, temperature: float | None = None) -> str | None:
        """Return the model's text reply to ``prompt``, or None after the last failure."""
        return self._call_with_retry(
            prompt,
            max_tokens if max_tokens is not None else self.MAX_TOKENS,
            temperature if temperature is not None else self.TEMPERATURE,
        )

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, prompt: str, max_tokens: int, temperature: float) -> str:
        """Make a single API call and return the raw text response.

        It should raise on failure — _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, prompt: str, max_tokens: int, temperature: float) -> str | None:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._call_api(prompt, max_tokens, temperature)
            except Exception as e:
                if attempt == self.MAX_RETRIES - 1:
                    logger.error(
                        "%s API failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.MAX_RETRIES,
                        e,
                    )
                    return None
                delay = 2**attempt
                logger.warning(
                    "%s API error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)


def parse_json_reply(raw: str | None):
    """Parse a model reply that should be JSON, or return None.

    Models often wrap JSON in a ```json fence; only that outer fence is
    stripped, never backticks inside string values.
    """
    if not raw:
        return None
    cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
    cleaned = re.sub(r"\s*```$", "", cleaned.strip())
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        # Fall back to the outermost {...} when the model added prose around it.
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if 0 <= start < end:
            try:
                return json.loads(cleaned[start : end + 1])
            except json.JSONDecodeError:
                pass
        logger.warning("Failed to parse reply as JSON: %s", raw[:200])
        return None


def get_provider(config: dict) -> BaseProvider:
    """Instantiate the completion provider named by ``config["model"]``."""
    if config["model"] == "anthropic":
        from prwarden_core.providers.anthropic import AnthropicProvider

        return AnthropicProvider(api_key=config["anthropic_api_key"], model=config.get("llm_model"))
    if config["model"] == "openai":
        from prwarden_core.providers.openai import OpenAIProvider

        return OpenAIProvider(
            api_key=config["openai_api_key"],
            model=config.get("llm_model"),
            base_url=config.get("llm_base_url"),
        )
    raise ValueError(f"Unsupported model provider: {config['model']}")
