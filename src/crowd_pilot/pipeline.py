"""Batch preprocessing — recorded sessions to training/validation JSONL.

Every session gets its own :class:`ConversationStateManager`; sessions run on
a thread pool and their results are collected on the calling thread, which is
the only writer.  A session that fails is logged and left out; the others are
unaffected.
"""

from __future__ import annotations

import hashlib
import logging
import math
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from .config import SerializerConfig
from .conversation.chunker import drop_short_chunks
from .conversation.manager import ConversationStateManager
from .conversation.message import ConversationChunk
from .serializer import CHAT_ROLE_MAP, NEMO_ROLE_MAP, has_both_sides, serialize, serialize_nemo
from .session_log import discover_session_logs, iter_session_events, session_id_for
from .telemetry import trace_batch, trace_session
from .tokenizer import LockedTokenizer, Tokenizer

logger = logging.getLogger(__name__)

TRAIN_FILENAME = "training.jsonl"
VAL_FILENAME = "validation.jsonl"
METADATA_FILENAME = "metadata.json"

OutputFormat = Literal["chat", "nemo"]

# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class SessionResult(BaseModel):
    """Chunks kept for one session after filtering."""

    session_id: str
    source_path: str
    chunks: list[ConversationChunk] = Field(default_factory=list)
    dropped_chunks: int = 0


class SessionFailure(BaseModel):
    source_path: str
    error: str


class BatchResult(BaseModel):
    sessions: list[SessionResult] = Field(default_factory=list)
    failures: list[SessionFailure] = Field(default_factory=list)

    @property
    def total_files(self) -> int:
        return len(self.sessions) + len(self.failures)


class OutputCounts(BaseModel):
    total_sessions: int = 0
    failed_sessions: int = 0
    total_conversations: int = 0
    train_conversations: int = 0
    val_conversations: int = 0
    train_sessions: int = 0
    val_sessions: int = 0


class OutputStats(BaseModel):
    total_messages: int = 0
    total_tokens: int = 0
    avg_messages_per_conversation: float = 0.0
    avg_tokens_per_conversation: float = 0.0


class OutputMetadata(BaseModel):
    """Content of ``metadata.json``."""

    config: dict[str, Any] = Field(default_factory=dict)
    counts: OutputCounts = Field(default_factory=OutputCounts)
    stats: OutputStats = Field(default_factory=OutputStats)
    files: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


def process_session(
    path: str | Path,
    tokenizer: Tokenizer,
    config: SerializerConfig | None = None,
    session_id: str | None = None,
) -> SessionResult:
    """Replay one session log and return its kept chunks.

    Chunks shorter than ``min_conversation_messages`` or without both a
    user-side and an assistant-side message are dropped.
    """
    config = config or SerializerConfig.for_batch()
    sid = session_id or session_id_for(path)
    with trace_session(sid) as span:
        manager = ConversationStateManager(tokenizer, config, session_id=sid)
        manager.ingest_all(iter_session_events(path))
        chunks = manager.finalize_for_model()
        kept = [c for c in drop_short_chunks(chunks, config.min_conversation_messages) if has_both_sides(c)]
        span.set_attribute("session.chunks", len(kept))
        span.set_attribute("session.dropped_chunks", len(chunks) - len(kept))
    return SessionResult(
        session_id=sid,
        source_path=str(path),
        chunks=kept,
        dropped_chunks=len(chunks) - len(kept),
    )


def process_all_sessions(
    root: str | Path,
    tokenizer: Tokenizer,
    config: SerializerConfig | None = None,
    max_workers: int | None = None,
    *,
    lock_tokenizer: bool = False,
) -> BatchResult:
    """Process every session log under *root* on a bounded thread pool.

    Workers share *tokenizer*.  Plain ``encode``/``decode`` calls on a fast
    ``transformers`` tokenizer are safe to run concurrently, so no lock is
    taken unless *lock_tokenizer* asks for one (for backends that keep
    per-call state).

    Raises ``FileNotFoundError`` when *root* holds no session logs.
    """
    config = config or SerializerConfig.for_batch()
    files = discover_session_logs(root)
    if not files:
        msg = f"No CSV session logs found under {root}"
        raise FileNotFoundError(msg)

    workers = max_workers or 1
    if lock_tokenizer and workers > 1:
        tokenizer = LockedTokenizer(tokenizer)

    result = BatchResult()
    total = len(files)
    with trace_batch(str(root), workers) as span:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(process_session, path, tokenizer, config, session_id_for(path, root)): path
                for path in files
            }
            for done, future in enumerate(as_completed(futures), start=1):
                path = futures[future]
                try:
                    result.sessions.append(future.result())
                except Exception as e:  # noqa: BLE001
                    logger.warning("Failed to process session %s", path, exc_info=True)
                    result.failures.append(SessionFailure(source_path=str(path), error=str(e)))
                if done % 100 == 0 or done == total:
                    logger.info("Processed %d/%d sessions", done, total)
        span.set_attribute("batch.sessions", len(result.sessions))
        span.set_attribute("batch.failures", len(result.failures))

    if result.failures:
        logger.warning("%d of %d sessions failed to process", len(result.failures), total)
    result.sessions.sort(key=lambda s: s.session_id)
    return result


# ---------------------------------------------------------------------------
# Train/validation split
# ---------------------------------------------------------------------------


def _split_key(session: SessionResult) -> tuple[str, str]:
    return hashlib.sha256(session.session_id.encode()).hexdigest(), session.session_id


def split_sessions(
    sessions: Sequence[SessionResult],
    val_ratio: float,
) -> tuple[list[SessionResult], list[SessionResult]]:
    """Deterministic session-level split; a session never spans both sides.

    Sessions are ordered by the SHA-256 of their id and the last
    ``round(n * val_ratio)`` go to validation.
    """
    if not 0.0 <= val_ratio <= 1.0:
        msg = "val_ratio must be within [0, 1]"
        raise ValueError(msg)
    ordered = sorted(sessions, key=_split_key)
    val_count = math.floor(len(ordered) * val_ratio + 0.5)
    train_count = len(ordered) - val_count
    return ordered[:train_count], ordered[train_count:]


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def render_record(chunk: ConversationChunk, output_format: OutputFormat, system_prompt: str) -> str:
    """One JSONL line for *chunk*."""
    if output_format == "nemo":
        return serialize_nemo(chunk, NEMO_ROLE_MAP, system_prompt).to_json()
    if output_format == "chat":
        return serialize(chunk, CHAT_ROLE_MAP, system_prompt).model_dump_json()
    msg = f"Unknown output format: {output_format}"
    raise ValueError(msg)


def write_jsonl_output(
    sessions: Sequence[SessionResult],
    output_dir: str | Path,
    *,
    val_ratio: float,
    system_prompt: str,
    output_format: OutputFormat = "chat",
    config: dict[str, Any] | None = None,
    failed_sessions: int = 0,
) -> OutputMetadata:
    """Write ``training.jsonl``, ``validation.jsonl`` and ``metadata.json``."""
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    train, val = split_sessions(sessions, val_ratio)

    counts = OutputCounts(
        total_sessions=len(sessions),
        failed_sessions=failed_sessions,
        train_sessions=len(train),
        val_sessions=len(val),
    )
    stats = OutputStats()
    paths = {"train_path": out / TRAIN_FILENAME, "val_path": out / VAL_FILENAME}

    for split, path in ((train, paths["train_path"]), (val, paths["val_path"])):
        written = 0
        with open(path, "w", encoding="utf-8") as fh:
            for session in split:
                for chunk in session.chunks:
                    fh.write(render_record(chunk, output_format, system_prompt) + "\n")
                    stats.total_messages += len(chunk)
                    stats.total_tokens += chunk.token_count
                    written += 1
        if split is train:
            counts.train_conversations = written
        else:
            counts.val_conversations = written

    counts.total_conversations = counts.train_conversations + counts.val_conversations
    if counts.total_conversations:
        stats.avg_messages_per_conversation = stats.total_messages / counts.total_conversations
        stats.avg_tokens_per_conversation = stats.total_tokens / counts.total_conversations

    metadata = OutputMetadata(
        config={**(config or {}), "val_ratio": val_ratio, "format": output_format},
        counts=counts,
        stats=stats,
        files={name: str(p) for name, p in paths.items()},
    )
    (out / METADATA_FILENAME).write_text(metadata.model_dump_json(indent=2), encoding="utf-8")
    logger.info(
        "Wrote %d training and %d validation conversations to %s",
        counts.train_conversations, counts.val_conversations, out,
    )
    return metadata
