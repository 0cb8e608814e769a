"""Mutable per-session state: file buffers, pending edit windows and the lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from ..errors import InvalidStateError
from .message import Message
from .viewport import Viewport


class SessionPhase(StrEnum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FINALIZED = "finalized"


_TRANSITIONS: dict[SessionPhase, list[SessionPhase]] = {
    SessionPhase.IDLE: [SessionPhase.ACCUMULATING, SessionPhase.FINALIZED],
    SessionPhase.ACCUMULATING: [SessionPhase.ACCUMULATING, SessionPhase.FINALIZED],
    SessionPhase.FINALIZED: [],
}


@dataclass(frozen=True)
class EditMark:
    """One coalesced edit, kept with its position for reconstruction."""

    line: int
    col: int
    text: str
    seq: int
    length: int = 0


@dataclass
class PendingWindow:
    """Edits not yet flushed into a message, plus the buffer they started from."""

    start_line: int
    end_line: int
    before: list[str]
    edits: list[EditMark] = field(default_factory=list)
    last_seq: int = -1

    @property
    def accumulated_text(self) -> str:
        return "".join(mark.text for mark in self.edits)

    def distance(self, line: int) -> int:
        """Lines between *line* and the nearest bound; 0 when inside."""
        if line < self.start_line:
            return self.start_line - line
        if line > self.end_line:
            return line - self.end_line
        return 0

    def extend(self, start: int, end: int, mark: EditMark) -> None:
        self.start_line = min(self.start_line, start)
        self.end_line = max(self.end_line, end)
        self.edits.append(mark)
        self.last_seq = mark.seq


@dataclass
class FileState:
    """Buffer, cursor and pending edits of one file."""

    path: str
    lines: list[str] = field(default_factory=lambda: [""])
    cursor: tuple[int, int] = (0, 0)
    pending: PendingWindow | None = None
    viewport: Viewport | None = None
    contents_shown: bool = False

    @property
    def content(self) -> str:
        return "\n".join(self.lines)

    def set_contents(self, text: str) -> None:
        self.lines = text.split("\n")
        self.cursor = self.clamp(*self.cursor)

    def clamp(self, line: int, col: int) -> tuple[int, int]:
        """Clamp a position into the buffer; editor and buffer may drift apart."""
        line = min(max(line, 0), len(self.lines) - 1)
        col = min(max(col, 0), len(self.lines[line]))
        return line, col

    def position_of(self, offset: int) -> tuple[int, int]:
        """Line/column of a character *offset*, clamped to the buffer."""
        content = self.content
        return self.position_at(min(max(offset, 0), len(content)), content)

    def offset_of(self, line: int, col: int) -> int:
        line, col = self.clamp(line, col)
        return sum(len(text) + 1 for text in self.lines[:line]) + col

    def apply_change(self, line: int, col: int, length: int, text: str) -> None:
        """Replace *length* characters at (*line*, *col*) with *text*.

        The cursor ends up right after the inserted text.
        """
        content = self.content
        start = self.offset_of(line, col)
        stop = min(start + max(length, 0), len(content))
        updated = content[:start] + text + content[stop:]
        self.lines = updated.split("\n")
        self.cursor = self.position_at(start + len(text), updated)

    @staticmethod
    def position_at(offset: int, content: str) -> tuple[int, int]:
        head = content[:offset]
        return head.count("\n"), offset - (head.rfind("\n") + 1)


@dataclass
class SessionState:
    """Everything one manager owns for one session."""

    session_id: str
    active_path: str | None = None
    files: dict[str, FileState] = field(default_factory=dict)
    messages: list[Message] = field(default_factory=list)
    phase: SessionPhase = SessionPhase.IDLE
    last_seq: int | None = None

    def can_transition(self, target: SessionPhase) -> bool:
        return target in _TRANSITIONS.get(self.phase, [])

    def transition(self, target: SessionPhase) -> None:
        if not self.can_transition(target):
            msg = f"Invalid transition: {self.phase} -> {target}"
            raise InvalidStateError(msg)
        self.phase = target


class SessionStateStore:
    """Path-keyed FileStates, created lazily and kept for the whole session."""

    def __init__(self, session_id: str) -> None:
        self.state = SessionState(session_id=session_id)

    def file(self, path: str) -> FileState:
        fs = self.state.files.get(path)
        if fs is None:
            fs = FileState(path=path)
            self.state.files[path] = fs
        return fs

    def peek(self, path: str) -> FileState | None:
        return self.state.files.get(path)

    @property
    def active(self) -> FileState | None:
        path = self.state.active_path
        return self.state.files.get(path) if path is not None else None

    def activate(self, path: str) -> FileState:
        fs = self.file(path)
        self.state.active_path = path
        return fs

    def pending_files(self) -> list[FileState]:
        return [fs for fs in self.state.files.values() if fs.pending is not None]
