"""Tokenizer capability — pluggable token counting for live and batch use.

The serializer never tokenizes by itself.  It receives a :class:`Tokenizer`
at construction and only ever calls :meth:`Tokenizer.count_tokens` and
:meth:`Tokenizer.truncate_to_max_tokens`, so the runtime character
approximation and the exact subword backend drive the same algorithm.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

from .errors import TokenizerUnavailableError

logger = logging.getLogger(__name__)


class Tokenizer(ABC):
    """Abstract token counter."""

    @abstractmethod
    def name(self) -> str:
        """Return a short backend description (used in metadata)."""

    @abstractmethod
    def count_tokens(self, text: str) -> int:
        """Count the tokens in *text*."""

    @abstractmethod
    def truncate_to_max_tokens(self, text: str, max_tokens: int) -> str:
        """Return a prefix of *text* holding at most *max_tokens* tokens.

        Must not fail: a non-positive budget yields ``""``.
        """


# ---------------------------------------------------------------------------
# Character approximation (runtime)
# ---------------------------------------------------------------------------


class CharApproxTokenizer(Tokenizer):
    """Roughly ``chars_per_token`` characters per token."""

    def __init__(self, chars_per_token: int = 4) -> None:
        if chars_per_token <= 0:
            msg = "chars_per_token must be positive"
            raise ValueError(msg)
        self._chars_per_token = chars_per_token

    def name(self) -> str:
        return f"approx:{self._chars_per_token}"

    def count_tokens(self, text: str) -> int:
        return len(text) // self._chars_per_token

    def truncate_to_max_tokens(self, text: str, max_tokens: int) -> str:
        if max_tokens <= 0:
            return ""
        return text[: max_tokens * self._chars_per_token]


# ---------------------------------------------------------------------------
# Hugging Face tokenizer (preprocessing)
# ---------------------------------------------------------------------------


class HuggingFaceTokenizer(Tokenizer):
    """Exact subword counts from a ``transformers`` tokenizer.

    Requires: pip install 'crowd-pilot-serializer[hf]'
    """

    def __init__(self, model_name: str, tokenizer: Any | None = None) -> None:
        self._model_name = model_name
        self._tokenizer = tokenizer if tokenizer is not None else self._load(model_name)

    @staticmethod
    def _load(model_name: str) -> Any:
        try:
            from transformers import AutoTokenizer
        except ImportError as e:
            raise TokenizerUnavailableError(
                "transformers is required for exact token counts. "
                "Install with: pip install 'crowd-pilot-serializer[hf]'"
            ) from e

        logger.info("Loading tokenizer %s", model_name)
        try:
            return AutoTokenizer.from_pretrained(model_name)
        except Exception as e:  # noqa: BLE001
            raise TokenizerUnavailableError(f"Cannot load tokenizer '{model_name}': {e}") from e

    def name(self) -> str:
        return f"hf:{self._model_name}"

    def count_tokens(self, text: str) -> int:
        try:
            return len(self._tokenizer.encode(text, add_special_tokens=False))
        except Exception as e:  # noqa: BLE001
            raise TokenizerUnavailableError(f"Tokenizer '{self._model_name}' failed to encode: {e}") from e

    def truncate_to_max_tokens(self, text: str, max_tokens: int) -> str:
        if max_tokens <= 0 or not text:
            return ""
        try:
            ids = self._tokenizer.encode(text, add_special_tokens=False)
            if len(ids) <= max_tokens:
                return text
            return self._tokenizer.decode(ids[:max_tokens])
        except Exception as e:  # noqa: BLE001
            raise TokenizerUnavailableError(f"Tokenizer '{self._model_name}' failed to truncate: {e}") from e


# ---------------------------------------------------------------------------
# Thread-safe wrapper
# ---------------------------------------------------------------------------


class LockedTokenizer(Tokenizer):
    """Serializes access to a backend shared by several batch workers."""

    def __init__(self, inner: Tokenizer) -> None:
        self._inner = inner
        self._lock = threading.Lock()

    def name(self) -> str:
        return self._inner.name()

    def count_tokens(self, text: str) -> int:
        with self._lock:
            return self._inner.count_tokens(text)

    def truncate_to_max_tokens(self, text: str, max_tokens: int) -> str:
        with self._lock:
            return self._inner.truncate_to_max_tokens(text, max_tokens)


def create_tokenizer(selector: str) -> Tokenizer:
    """Build a tokenizer from a CLI value: ``approx`` / ``approx:N`` or a model name."""
    value = selector.strip()
    if value == "approx":
        return CharApproxTokenizer()
    if value.startswith("approx:"):
        try:
            return CharApproxTokenizer(int(value.split(":", 1)[1]))
        except ValueError as e:
            msg = f"Invalid approximate tokenizer selector '{selector}'"
            raise ValueError(msg) from e
    return HuggingFaceTokenizer(value)
