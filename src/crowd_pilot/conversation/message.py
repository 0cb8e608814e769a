"""Message, Conversation and ConversationChunk value types."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, PrivateAttr

from ..tokenizer import Tokenizer


class Role(StrEnum):
    """Internal message roles; mapped to an output vocabulary by the serializer."""

    FILE_OPEN = "file_open"
    VIEWPORT = "viewport"
    EDIT = "edit"
    TERMINAL_COMMAND = "terminal_command"
    TERMINAL_OUTPUT = "terminal_output"
    GIT_CHECKOUT = "git_checkout"


class SourceSpan(BaseModel):
    """Where a message came from: a file region and/or a range of event seqs."""

    model_config = ConfigDict(frozen=True)

    path: str | None = None
    start_line: int | None = None
    end_line: int | None = None
    first_seq: int | None = None
    last_seq: int | None = None


class Message(BaseModel):
    """A single immutable conversation message.

    *content* is what the actor typed or ran.  File listings, viewports and
    edits also carry *output*, the ``<stdout>`` block the IDE showed in return;
    it is serialized as a separate observation turn.

    The token count covers both parts.  It is computed on first request and
    memoized; this is safe because neither the text nor the owning manager's
    tokenizer changes.
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    output: str | None = None
    source: SourceSpan | None = None

    _token_count: int | None = PrivateAttr(default=None)

    @property
    def text(self) -> str:
        return self.content + (self.output or "")

    def turns(self) -> list[tuple[Role, str]]:
        """Split into an action turn and, when there is output, an observation turn."""
        turns = [(self.role, self.content)]
        if self.output:
            turns.append((Role.TERMINAL_OUTPUT, self.output))
        return turns

    def token_count(self, tokenizer: Tokenizer) -> int:
        if self._token_count is None:
            self._token_count = tokenizer.count_tokens(self.text)
        return self._token_count

    @property
    def is_counted(self) -> bool:
        return self._token_count is not None

    def with_known_count(self, tokens: int) -> Message:
        """Seed the memo with a count already obtained from the same tokenizer."""
        self._token_count = tokens
        return self

    # Equality ignores the memo.
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Message):
            return NotImplemented
        return (self.role, self.content, self.output, self.source) == (
            other.role, other.content, other.output, other.source
        )

    def __hash__(self) -> int:
        return hash((self.role, self.content, self.output, self.source))


class Conversation:
    """Ordered messages of one session, in arrival order."""

    def __init__(self, session_id: str, messages: Sequence[Message] = ()) -> None:
        self.session_id = session_id
        self._messages: tuple[Message, ...] = tuple(messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    def token_count(self, tokenizer: Tokenizer) -> int:
        return sum(m.token_count(tokenizer) for m in self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Conversation):
            return NotImplemented
        return self.session_id == other.session_id and self._messages == other._messages

    def __repr__(self) -> str:
        return f"Conversation(session_id={self.session_id!r}, messages={len(self._messages)})"


class ConversationChunk(BaseModel):
    """A token-bounded contiguous slice of a conversation."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    index: int
    messages: tuple[Message, ...]
    token_count: int

    @property
    def chunk_id(self) -> str:
        return f"{self.session_id}-{self.index:04d}"

    def __len__(self) -> int:
        return len(self.messages)
