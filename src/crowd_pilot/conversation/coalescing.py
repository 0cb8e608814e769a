"""Coalescing engine — merges nearby edits into one logical edit message."""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..config import SerializerConfig
from ..diff import compute_changed_block, sed_command
from ..errors import MalformedEventError
from ..text import clean_text, fenced_block, line_numbered_output, stdout_block
from .message import Message, Role, SourceSpan
from .state import EditMark, FileState, PendingWindow
from .viewport import extract

logger = logging.getLogger(__name__)


def _diff_lines(lines: list[str]) -> list[str]:
    # A trailing newline is not a line of its own
    if lines and lines[-1] == "":
        return lines[:-1]
    return lines


def _same_text(before: list[str], after: list[str]) -> bool:
    # Trailing newlines alone do not count as an edit
    return "\n".join(before).rstrip("\n") == "\n".join(after).rstrip("\n")


def file_open_message(fs: FileState, lines: list[str] | None = None) -> Message:
    """``cat -n`` listing of the whole buffer (or of *lines*)."""
    listing = line_numbered_output(fs.lines if lines is None else lines)
    return Message(
        role=Role.FILE_OPEN,
        content=fenced_block("bash", clean_text(f"cat -n {fs.path}")),
        output=stdout_block(listing),
        source=SourceSpan(path=fs.path),
    )


class CoalescingEngine:
    """Owns the pending-window rules for every file of a session.

    Messages produced by a flush are handed to *emit* in order; the flushed
    edit message, as stored by *emit*, is also returned.
    """

    def __init__(self, config: SerializerConfig, emit: Callable[[Message], Message]) -> None:
        self._config = config
        self._emit = emit

    def apply_edit(
        self,
        fs: FileState,
        line: int,
        col: int,
        text: str,
        seq: int,
        length: int = 0,
    ) -> Message | None:
        """Add an edit to *fs*'s pending window, flushing first if it is too far away.

        Returns the message of the flushed window, if one was flushed.
        """
        window = fs.pending
        if window is not None and seq <= window.last_seq:
            msg = f"Edit seq {seq} is not after {window.last_seq} in pending window of {fs.path}"
            raise MalformedEventError(msg)

        start = fs.offset_of(line, col)
        deleted = fs.content[start : start + max(length, 0)]
        end_line = line + max(text.count("\n"), deleted.count("\n"))

        flushed: Message | None = None
        if window is not None and window.distance(line) > self._config.coalesce_radius:
            flushed = self.flush(fs)

        if fs.pending is None:
            fs.pending = PendingWindow(start_line=line, end_line=line, before=list(fs.lines))
        fs.pending.extend(line, end_line, EditMark(line=line, col=col, text=text, seq=seq, length=length))
        fs.apply_change(line, col, length, text)
        return flushed

    def flush(self, fs: FileState) -> Message | None:
        """Turn *fs*'s pending window into a message and clear it; no-op without one."""
        window = fs.pending
        if window is None:
            return None
        fs.pending = None

        before = _diff_lines(window.before)
        block = None
        if not _same_text(window.before, fs.lines):
            block = compute_changed_block(before, _diff_lines(fs.lines))
        if block is None:
            logger.debug("Edits to %s cancelled out; nothing to flush", fs.path)
            return None

        if self._config.capture_file_before_edit and not fs.contents_shown:
            self._emit(file_open_message(fs, window.before))
            fs.contents_shown = True

        center = max((block.start_after + block.end_after) // 2 - 1, 0)
        snippet = extract(fs, self._config.viewport_radius, center=center)
        fs.viewport = snippet.viewport

        command = sed_command(block, fs.path, len(before))
        if snippet.viewport is not None:
            first, last = snippet.viewport.display_range
            command = f"{command} && cat -n {fs.path} | sed -n '{first},{last}p'"
        message = Message(
            role=Role.EDIT,
            content=fenced_block("bash", clean_text(command)),
            output=stdout_block(snippet.text),
            source=SourceSpan(
                path=fs.path,
                start_line=window.start_line,
                end_line=window.end_line,
                first_seq=window.edits[0].seq if window.edits else None,
                last_seq=window.last_seq,
            ),
        )
        logger.debug(
            "Flushed %d edit(s) to %s lines %d-%d",
            len(window.edits), fs.path, window.start_line, window.end_line,
        )
        return self._emit(message)
