"""Text helpers shared by the message renderers."""

from __future__ import annotations

import re

# ANSI escape sequences emitted by interactive terminals
_ANSI_CSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
_ANSI_OSC_TERMINATED_RE = re.compile(r"\x1b\][\s\S]*?(?:\x07|\x1b\\)")
_ANSI_OSC_LINE_FALLBACK_RE = re.compile(r"\x1b\][^\n]*$")


def clean_text(text: str) -> str:
    """Normalize line endings to ``\\n`` and strip trailing whitespace."""
    return text.replace("\r\n", "\n").replace("\r", "\n").rstrip()


def unescape_newlines(text: str) -> str:
    """Turn literal ``\\n``/``\\r`` sequences written by the recorder into real ones."""
    return text.replace("\\n", "\n").replace("\\r", "\r")


def fenced_block(language: str | None, content: str) -> str:
    """Wrap *content* in a markdown code fence tagged with *language*."""
    lang = (language or "").lower()
    return f"```{lang}\n{content}\n```\n"


def stdout_block(content: str) -> str:
    return f"<stdout>\n{content}\n</stdout>"


def apply_backspaces(text: str) -> str:
    """Apply ``\\x08`` characters by deleting the preceding character."""
    out: list[str] = []
    for ch in text:
        if ch == "\x08":
            if out:
                out.pop()
        else:
            out.append(ch)
    return "".join(out)


def normalize_terminal_output(raw: str) -> str:
    """Strip ANSI sequences and resolve carriage returns the way a terminal would."""
    if not raw:
        return raw

    s = apply_backspaces(raw)
    s = _ANSI_OSC_TERMINATED_RE.sub("", s)
    # Unterminated OSC sequences run to the end of their line
    s = "\n".join(_ANSI_OSC_LINE_FALLBACK_RE.sub("", line) for line in s.split("\n"))

    resolved: list[str] = []
    for segment in s.split("\n"):
        parts = segment.split("\r")
        kept = next((p for p in reversed(parts) if p), parts[-1])
        resolved.append(kept)
    s = "\n".join(resolved)

    s = _ANSI_CSI_RE.sub("", s)
    return s.replace("\x07", "")


def line_numbered_output(
    lines: list[str],
    start: int | None = None,
    end: int | None = None,
) -> str:
    """Render *lines* like ``cat -n``.

    *start* and *end* are 0-based inclusive indices, clamped to the buffer.
    Display numbers are 1-based, right-aligned to six columns, tab-separated.
    """
    total = buffer_line_count(lines)
    if total == 0:
        return ""
    first = 0 if start is None else min(max(start, 0), total - 1)
    last = total - 1 if end is None else min(max(end, 0), total - 1)
    return "\n".join(f"{idx + 1:6d}\t{lines[idx]}" for idx in range(first, last + 1))


def buffer_line_count(lines: list[str]) -> int:
    """Number of displayable lines; an empty buffer has none."""
    if not lines or lines == [""]:
        return 0
    return len(lines)


def escape_single_quotes_for_sed(text: str) -> str:
    """Escape backslashes and single quotes for a single-quoted sed script."""
    return text.replace("\\", "\\\\").replace("'", "'\"'\"'")
