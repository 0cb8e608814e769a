"""Session-log reader — turns recorded IDE CSV sessions into events.

Each CSV holds one session with the header
``Sequence,Time,File,RangeOffset,RangeLength,Text,Language,Type``.
Newlines inside ``Text`` are stored escaped (``\\n``) by the recorder.
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterator
from pathlib import Path

from .errors import MalformedEventError
from .events import (
    ContentEdit,
    Event,
    EventKind,
    GitCheckout,
    Selection,
    TabSwitch,
    TerminalCommand,
    TerminalFocus,
    TerminalOutput,
)
from .text import unescape_newlines

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("Sequence", "File", "RangeOffset", "RangeLength", "Text", "Type")
SELECTION_TYPES = frozenset({"selection_command", "selection_mouse", "selection_keyboard"})


def discover_session_logs(root: str | Path) -> list[Path]:
    """All ``*.csv`` files under *root*, sorted for a stable processing order."""
    return sorted(p for p in Path(root).rglob("*.csv") if p.is_file())


def session_id_for(path: str | Path, root: str | Path | None = None) -> str:
    """Session id derived from the log path (relative to *root* when given)."""
    p = Path(path)
    if root is not None:
        try:
            p = p.relative_to(root)
        except ValueError:
            pass
    return p.with_suffix("").as_posix()


def read_session_events(path: str | Path) -> list[Event]:
    return list(iter_session_events(path))


def iter_session_events(path: str | Path) -> Iterator[Event]:
    """Yield the events of one session log in file order.

    Raises :class:`MalformedEventError` for missing columns, unparsable
    numbers, positional rows without an offset and non-increasing sequence
    numbers.  Rows of unknown type are logged and skipped.
    """
    source = str(path)
    with open(path, encoding="utf-8", newline="") as fh:
        reader = csv.DictReader(fh)
        missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            msg = f"Missing required column(s): {', '.join(missing)}"
            raise MalformedEventError(msg, source=source)

        last_seq: int | None = None
        for row in reader:
            line_no = reader.line_num
            seq = _parse_int(row, "Sequence", source, line_no)
            if seq is None:
                msg = "Missing Sequence"
                raise MalformedEventError(msg, source=source, row=line_no)
            if last_seq is not None and seq <= last_seq:
                msg = f"Non-monotonic Sequence {seq} after {last_seq}"
                raise MalformedEventError(msg, source=source, row=line_no)
            last_seq = seq

            event = _row_to_event(row, seq, source, line_no)
            if event is not None:
                yield event


def _row_to_event(row: dict[str, str | None], seq: int, source: str, line_no: int) -> Event | None:
    kind = (row.get("Type") or "").strip()
    path = row.get("File") or ""
    raw_text = row.get("Text")
    text = unescape_newlines(raw_text) if raw_text else None

    if kind == EventKind.TAB:
        return TabSwitch(path=path, contents=text, seq=seq)

    if kind == EventKind.CONTENT:
        offset = _require_int(row, "RangeOffset", source, line_no)
        length = _require_int(row, "RangeLength", source, line_no)
        return ContentEdit(path=path, line=0, col=0, text=text or "", seq=seq, length=length, offset=offset)

    if kind in SELECTION_TYPES:
        offset = _require_int(row, "RangeOffset", source, line_no)
        return Selection(path=path, seq=seq, offset=offset)

    if kind == EventKind.TERMINAL_COMMAND:
        if text is None:
            logger.warning("terminal_command row without Text in %s (row %d)", source, line_no)
        return TerminalCommand(command=text or "", seq=seq)

    if kind == EventKind.TERMINAL_OUTPUT:
        if text is None:
            logger.warning("terminal_output row without Text in %s (row %d)", source, line_no)
        return TerminalOutput(output=text or "", seq=seq)

    if kind == EventKind.TERMINAL_FOCUS:
        return TerminalFocus(seq=seq)

    if kind == EventKind.GIT_CHECKOUT:
        if text is None:
            logger.warning("git_branch_checkout row without Text in %s (row %d)", source, line_no)
        return GitCheckout(branch_info=text or "", seq=seq)

    logger.warning("Unknown event type '%s' in %s (row %d); skipped", kind, source, line_no)
    return None


def _parse_int(row: dict[str, str | None], column: str, source: str, line_no: int) -> int | None:
    raw = (row.get(column) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as e:
        msg = f"Invalid {column} value '{raw}'"
        raise MalformedEventError(msg, source=source, row=line_no) from e


def _require_int(row: dict[str, str | None], column: str, source: str, line_no: int) -> int:
    value = _parse_int(row, column, source, line_no)
    if value is None:
        msg = f"{row.get('Type')} row missing {column}"
        raise MalformedEventError(msg, source=source, row=line_no)
    return value
