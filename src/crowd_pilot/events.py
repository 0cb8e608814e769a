"""IDE interaction events."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class EventKind(StrEnum):
    """Discriminator shared by every event variant."""

    TAB = "tab"
    CONTENT = "content"
    SELECTION = "selection"
    TERMINAL_COMMAND = "terminal_command"
    TERMINAL_OUTPUT = "terminal_output"
    TERMINAL_FOCUS = "terminal_focus"
    GIT_CHECKOUT = "git_branch_checkout"


@dataclass(frozen=True)
class TabSwitch:
    """The user switched to *path*; *contents* is set when a snapshot was captured."""

    path: str
    contents: str | None = None
    seq: int | None = None

    kind = EventKind.TAB


@dataclass(frozen=True)
class ContentEdit:
    """Replace *length* characters at (*line*, *col*) of *path* with *text*.

    Lines and columns are 0-based.  Recorded sessions carry a character
    *offset* instead; when it is set, ``line``/``col`` are ignored and the
    position is resolved against the buffer at the time the edit is applied.
    """

    path: str
    line: int
    col: int
    text: str
    seq: int | None = None
    length: int = 0
    offset: int | None = None

    kind = EventKind.CONTENT


@dataclass(frozen=True)
class Selection:
    """The cursor moved to (*line*, *col*) in *path* (or to *offset*)."""

    path: str
    line: int = 0
    col: int = 0
    seq: int | None = None
    offset: int | None = None

    kind = EventKind.SELECTION


@dataclass(frozen=True)
class TerminalCommand:
    """A command executed in the integrated terminal, with optional output."""

    command: str
    output: str = ""
    seq: int | None = None

    kind = EventKind.TERMINAL_COMMAND


@dataclass(frozen=True)
class TerminalOutput:
    """A streamed chunk of terminal output, buffered until the next event."""

    output: str
    seq: int | None = None

    kind = EventKind.TERMINAL_OUTPUT


@dataclass(frozen=True)
class TerminalFocus:
    """Focus moved to the terminal panel."""

    seq: int | None = None

    kind = EventKind.TERMINAL_FOCUS


@dataclass(frozen=True)
class GitCheckout:
    """VS Code git checkout notification, e.g. ``Switched to 'main'``."""

    branch_info: str
    seq: int | None = None

    kind = EventKind.GIT_CHECKOUT


Event = TabSwitch | ContentEdit | Selection | TerminalCommand | TerminalOutput | TerminalFocus | GitCheckout
