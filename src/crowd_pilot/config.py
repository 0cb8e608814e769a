"""Serializer configuration, fixed at manager construction."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any

VIEWPORT_RADIUS = 10
COALESCE_RADIUS = 5
MAX_TOKENS_PER_MESSAGE = 2048
MAX_TOKENS_PER_TERMINAL_OUTPUT = 256
MAX_TOKENS_PER_CONVERSATION = 8192
MIN_CONVERSATION_MESSAGES = 5
VAL_RATIO = 0.1

_ENV_PREFIX = "CROWD_PILOT_"


@dataclass(frozen=True)
class SerializerConfig:
    """Budgets and radii shared by live and batch serialization.

    ``max_tokens_per_conversation=None`` keeps the whole session in a single
    chunk, which is what the live extension wants.  Batch preprocessing sets
    it (see :meth:`for_batch`).
    """

    viewport_radius: int = VIEWPORT_RADIUS
    coalesce_radius: int = COALESCE_RADIUS
    max_tokens_per_message: int = MAX_TOKENS_PER_MESSAGE
    max_tokens_per_terminal_output: int = MAX_TOKENS_PER_TERMINAL_OUTPUT
    max_tokens_per_conversation: int | None = None
    min_conversation_messages: int = MIN_CONVERSATION_MESSAGES
    val_ratio: float = VAL_RATIO
    emit_file_open: bool = True
    capture_file_before_edit: bool = False

    def __post_init__(self) -> None:
        for name in ("viewport_radius", "coalesce_radius", "min_conversation_messages"):
            if getattr(self, name) < 0:
                msg = f"{name} must be non-negative"
                raise ValueError(msg)
        for name in ("max_tokens_per_message", "max_tokens_per_terminal_output"):
            if getattr(self, name) <= 0:
                msg = f"{name} must be positive"
                raise ValueError(msg)
        if self.max_tokens_per_conversation is not None and self.max_tokens_per_conversation <= 0:
            msg = "max_tokens_per_conversation must be positive"
            raise ValueError(msg)
        if not 0.0 <= self.val_ratio <= 1.0:
            msg = "val_ratio must be within [0, 1]"
            raise ValueError(msg)

    @classmethod
    def for_batch(cls, **overrides: Any) -> SerializerConfig:
        """Preprocessing defaults: conversations chunked at 8192 tokens."""
        overrides.setdefault("max_tokens_per_conversation", MAX_TOKENS_PER_CONVERSATION)
        return cls(**overrides)

    @classmethod
    def from_env(cls, base: SerializerConfig | None = None) -> SerializerConfig:
        """Override *base* with ``CROWD_PILOT_<FIELD>`` environment variables.

        Example: ``CROWD_PILOT_VIEWPORT_RADIUS=20``.  An empty
        ``CROWD_PILOT_MAX_TOKENS_PER_CONVERSATION`` disables chunking.
        """
        config = base or cls()
        overrides: dict[str, Any] = {}
        for f in fields(cls):
            raw = os.environ.get(f"{_ENV_PREFIX}{f.name.upper()}")
            if raw is None:
                continue
            overrides[f.name] = _coerce(f.name, raw.strip(), getattr(config, f.name))
        return replace(config, **overrides) if overrides else config

    def as_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce(name: str, raw: str, current: Any) -> Any:
    if name == "max_tokens_per_conversation":
        return int(raw) if raw else None
    if isinstance(current, bool):
        lowered = raw.lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        msg = f"Invalid boolean for {_ENV_PREFIX}{name.upper()}: '{raw}'"
        raise ValueError(msg)
    if isinstance(current, float):
        return float(raw)
    return int(raw)
