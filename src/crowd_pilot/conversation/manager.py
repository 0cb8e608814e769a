"""Conversation state manager — turns IDE events into conversation messages.

One manager serializes one session.  Live use calls the ``handle_*`` methods
from editor callbacks and reads :meth:`ConversationStateManager.finalize_for_model`;
batch use replays a recorded session through :meth:`ConversationStateManager.ingest`.
Calls must be serialized by the caller; overlapping calls fail with
:class:`~crowd_pilot.errors.InvalidStateError` instead of corrupting state.
"""

from __future__ import annotations

import contextlib
import logging
import re
import threading
import uuid
from collections.abc import Iterable, Iterator

from ..config import SerializerConfig
from ..errors import InvalidStateError, MalformedEventError
from ..events import Event, EventKind
from ..telemetry import record_event, trace_finalize
from ..text import clean_text, fenced_block, normalize_terminal_output, stdout_block
from ..tokenizer import Tokenizer
from .chunker import ConversationChunker
from .coalescing import CoalescingEngine, file_open_message
from .message import Conversation, ConversationChunk, Message, Role, SourceSpan
from .state import FileState, SessionPhase, SessionStateStore
from .viewport import Snippet, extract

logger = logging.getLogger(__name__)

_BRANCH_RE = re.compile(r"to '([^']+)'")
_UNSAFE_BRANCH_CHARS_RE = re.compile(r"[^A-Za-z0-9._/\\-]")
_TRUNCATION_MARKER = "\n... [truncated]"


class ConversationStateManager:
    """Accumulates messages for one session and finalizes them into chunks."""

    def __init__(
        self,
        tokenizer: Tokenizer,
        config: SerializerConfig | None = None,
        session_id: str | None = None,
    ) -> None:
        self._tokenizer = tokenizer
        self._config = config or SerializerConfig()
        self._store = SessionStateStore(session_id or uuid.uuid4().hex[:12])
        self._engine = CoalescingEngine(self._config, self._append)
        self._chunker = ConversationChunker(tokenizer)
        self._terminal_buffer: list[str] = []
        self._lock = threading.Lock()
        self._finalized: list[ConversationChunk] | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._store.state.session_id

    @property
    def config(self) -> SerializerConfig:
        return self._config

    @property
    def phase(self) -> SessionPhase:
        return self._store.state.phase

    @property
    def conversation(self) -> Conversation:
        return Conversation(self.session_id, self._store.state.messages)

    def get_messages(self) -> list[Message]:
        """Messages accumulated so far, without flushing pending edits."""
        return list(self._store.state.messages)

    def get_file_content(self, path: str) -> str:
        fs = self._store.peek(path)
        return fs.content if fs is not None else ""

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, event: Event) -> None:
        """Dispatch a recorded event to the matching handler by its ``kind``."""
        kind = getattr(event, "kind", None)
        if kind == EventKind.TAB:
            self.handle_tab_event(event.path, event.contents, seq=event.seq)
        elif kind == EventKind.CONTENT:
            if event.offset is not None:
                self.handle_offset_content_event(
                    event.path, event.offset, event.length, event.text, seq=event.seq
                )
            else:
                self.handle_content_event(
                    event.path, event.line, event.col, event.text, length=event.length, seq=event.seq
                )
        elif kind == EventKind.SELECTION:
            if event.offset is not None:
                self.handle_offset_selection_event(event.path, event.offset, seq=event.seq)
            else:
                self.handle_selection_event(event.path, event.line, event.col, seq=event.seq)
        elif kind == EventKind.TERMINAL_COMMAND:
            self.handle_terminal_event(event.command, event.output, seq=event.seq)
        elif kind == EventKind.TERMINAL_OUTPUT:
            self.handle_terminal_output_event(event.output, seq=event.seq)
        elif kind == EventKind.TERMINAL_FOCUS:
            self.handle_terminal_focus_event(seq=event.seq)
        elif kind == EventKind.GIT_CHECKOUT:
            self.handle_git_checkout_event(event.branch_info, seq=event.seq)
        else:
            msg = f"Unsupported event type: {type(event).__name__}"
            raise MalformedEventError(msg)

    def ingest_all(self, events: Iterable[Event]) -> None:
        for event in events:
            self.ingest(event)

    def handle_tab_event(self, path: str, contents: str | None = None, *, seq: int | None = None) -> None:
        """The user switched to *path*; *contents* refreshes the buffer when given."""
        with self._mutation(seq):
            self._flush_all()
            fs = self._store.activate(path)
            if contents is not None:
                fs.set_contents(contents)
                if self._config.emit_file_open:
                    self._append(file_open_message(fs))
                    fs.contents_shown = True
                return
            snippet = extract(fs, self._config.viewport_radius)
            fs.viewport = snippet.viewport
            if self._config.emit_file_open and not snippet.is_empty:
                self._append_viewport(fs, snippet)

    def handle_content_event(
        self,
        path: str,
        line: int,
        col: int,
        text: str,
        *,
        length: int = 0,
        seq: int | None = None,
    ) -> None:
        """Insert *text* at (*line*, *col*), replacing *length* characters."""
        with self._mutation(seq) as current:
            self._content(path, line, col, text, length, current)

    def handle_offset_content_event(
        self,
        path: str,
        offset: int,
        length: int,
        text: str,
        *,
        seq: int | None = None,
    ) -> None:
        """Same as :meth:`handle_content_event`, positioned by character offset."""
        with self._mutation(seq) as current:
            line, col = self._store.file(path).position_of(offset)
            self._content(path, line, col, text, length, current)

    def handle_selection_event(self, path: str, line: int, col: int = 0, *, seq: int | None = None) -> None:
        """Move the cursor; emits a viewport when it leaves the last one shown."""
        with self._mutation(seq):
            self._selection(path, line, col)

    def handle_offset_selection_event(self, path: str, offset: int, *, seq: int | None = None) -> None:
        with self._mutation(seq):
            line, col = self._store.file(path).position_of(offset)
            self._selection(path, line, col)

    def handle_terminal_event(self, command: str, output: str = "", *, seq: int | None = None) -> None:
        """A command ran in the terminal; *output* is truncated to the terminal cap."""
        with self._mutation(seq):
            self._flush_all()
            self._append(
                Message(role=Role.TERMINAL_COMMAND, content=fenced_block("bash", clean_text(command)))
            )
            if output:
                self._terminal_buffer.append(output)
                self._flush_terminal_buffer()

    def handle_terminal_output_event(self, output: str, *, seq: int | None = None) -> None:
        """Buffer streamed output; it becomes one message at the next event."""
        with self._mutation(seq):
            self._flush_pending_edits()
            self._terminal_buffer.append(output)

    def handle_terminal_focus_event(self, *, seq: int | None = None) -> None:
        with self._mutation(seq):
            self._flush_all()

    def handle_git_checkout_event(self, branch_info: str, *, seq: int | None = None) -> None:
        """Render a VS Code checkout notification as ``git checkout <branch>``."""
        with self._mutation(seq):
            self._flush_all()
            cleaned = clean_text(branch_info)
            match = _BRANCH_RE.search(cleaned)
            if match is None:
                logger.warning("Could not extract branch name from git checkout message: %s", cleaned)
                return
            branch = match.group(1).strip()
            if _UNSAFE_BRANCH_CHARS_RE.search(branch):
                branch = "'" + branch.replace("'", "'\"'\"'") + "'"
            self._append(
                Message(role=Role.GIT_CHECKOUT, content=fenced_block("bash", f"git checkout {branch}"))
            )

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def finalize_for_model(self) -> list[ConversationChunk]:
        """Flush everything, chunk the conversation and stop accepting events.

        Repeated calls return the cached chunks.
        """
        if self._finalized is not None:
            return list(self._finalized)
        if not self._lock.acquire(blocking=False):
            msg = "Concurrent call while finalizing; callers must serialize access"
            raise InvalidStateError(msg)
        try:
            with trace_finalize(self.session_id) as span:
                self._flush_all()
                chunks = self._chunker.chunk(
                    self.session_id,
                    self._store.state.messages,
                    self._config.max_tokens_per_conversation,
                )
                self._store.state.transition(SessionPhase.FINALIZED)
                self._finalized = chunks
                for chunk in chunks:
                    record_event(
                        "serializer/chunk",
                        {"chunk.index": chunk.index, "chunk.messages": len(chunk), "chunk.tokens": chunk.token_count},
                    )
                span.set_attribute("conversation.messages", len(self._store.state.messages))
                span.set_attribute("conversation.chunks", len(chunks))
        finally:
            self._lock.release()
        logger.debug(
            "Session %s finalized: %d messages in %d chunk(s)",
            self.session_id, len(self._store.state.messages), len(chunks),
        )
        return list(chunks)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _mutation(self, seq: int | None) -> Iterator[int]:
        state = self._store.state
        if state.phase == SessionPhase.FINALIZED:
            msg = f"Session {state.session_id} is finalized; no further events accepted"
            raise InvalidStateError(msg)
        if not self._lock.acquire(blocking=False):
            msg = "Concurrent mutation of a conversation manager; callers must serialize access"
            raise InvalidStateError(msg)
        try:
            if seq is None:
                seq = (state.last_seq or 0) + 1
            elif state.last_seq is not None and seq <= state.last_seq:
                msg = f"Non-monotonic event sequence: {seq} after {state.last_seq}"
                raise MalformedEventError(msg)
            state.last_seq = seq
            state.transition(SessionPhase.ACCUMULATING)
            yield seq
        finally:
            self._lock.release()

    def _content(self, path: str, line: int, col: int, text: str, length: int, seq: int) -> None:
        self._flush_terminal_buffer()
        self._flush_other_files(path)
        fs = self._store.activate(path)
        self._engine.apply_edit(fs, line, col, text, seq, length)

    def _selection(self, path: str, line: int, col: int) -> None:
        self._flush_other_files(path)
        fs = self._store.activate(path)
        if fs.pending is not None:
            # Pending edits own the viewport until they flush
            return
        self._flush_terminal_buffer()
        fs.cursor = fs.clamp(line, col)
        if fs.viewport is not None and fs.viewport.contains(fs.cursor[0]):
            return
        snippet = extract(fs, self._config.viewport_radius)
        fs.viewport = snippet.viewport
        if not snippet.is_empty:
            self._append_viewport(fs, snippet)

    def _flush_other_files(self, path: str) -> None:
        for fs in self._store.pending_files():
            if fs.path != path:
                self._engine.flush(fs)

    def _flush_pending_edits(self) -> None:
        for fs in self._store.pending_files():
            self._engine.flush(fs)

    def _flush_all(self) -> None:
        self._flush_pending_edits()
        self._flush_terminal_buffer()

    def _flush_terminal_buffer(self) -> None:
        if not self._terminal_buffer:
            return
        output = clean_text(normalize_terminal_output("".join(self._terminal_buffer)))
        self._terminal_buffer.clear()
        if not output.strip():
            return
        self._append(self._terminal_output_message(output))

    def _terminal_output_message(self, output: str) -> Message:
        cap = self._config.max_tokens_per_terminal_output
        overhead = self._tokenizer.count_tokens(stdout_block(""))
        if self._tokenizer.count_tokens(output) + overhead > cap:
            marker_tokens = self._tokenizer.count_tokens(_TRUNCATION_MARKER)
            body, _ = self._fit(output, cap - overhead - marker_tokens)
            output = body + _TRUNCATION_MARKER
        content, tokens = self._fit(stdout_block(output), cap)
        return Message(role=Role.TERMINAL_OUTPUT, content=content).with_known_count(tokens)

    def _append_viewport(self, fs: FileState, snippet: Snippet) -> None:
        if self._config.capture_file_before_edit and not fs.contents_shown:
            self._append(file_open_message(fs))
            fs.contents_shown = True
        assert snippet.viewport is not None
        first, last = snippet.viewport.display_range
        command = f"cat -n {fs.path} | sed -n '{first},{last}p'"
        self._append(
            Message(
                role=Role.VIEWPORT,
                content=fenced_block("bash", command),
                output=stdout_block(snippet.text),
                source=SourceSpan(path=fs.path, start_line=snippet.viewport.start, end_line=snippet.viewport.end),
            )
        )

    def _append(self, message: Message) -> Message:
        """Store *message*, truncated to the per-message cap."""
        stored = self._fit_message(message, self._config.max_tokens_per_message)
        self._store.state.messages.append(stored)
        return stored

    def _fit_message(self, message: Message, cap: int) -> Message:
        if message.token_count(self._tokenizer) <= cap:
            return message
        content, used = self._fit(message.content, cap)
        budget = cap - used
        while True:
            output = None
            if message.output and budget > 0:
                output = self._fit(message.output, budget)[0] or None
            fitted = Message(role=message.role, content=content, output=output, source=message.source)
            # Both parts together may count more than their sum
            if output is None or fitted.token_count(self._tokenizer) <= cap:
                return fitted
            budget -= 1

    def _fit(self, text: str, max_tokens: int) -> tuple[str, int]:
        """Truncate *text* until it counts at most *max_tokens* tokens."""
        tokens = self._tokenizer.count_tokens(text)
        budget = max_tokens
        while tokens > max_tokens:
            if budget <= 0:
                return "", 0
            text = self._tokenizer.truncate_to_max_tokens(text, budget)
            tokens = self._tokenizer.count_tokens(text)
            # Re-encoding a decoded prefix may overshoot; shrink and retry
            budget -= max(tokens - max_tokens, 1)
        return text, tokens
