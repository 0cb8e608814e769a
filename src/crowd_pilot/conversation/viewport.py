"""Clipped line windows around a cursor."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from ..text import buffer_line_count, line_numbered_output

if TYPE_CHECKING:
    from .state import FileState


@dataclass(frozen=True)
class Viewport:
    """Inclusive 0-based line range."""

    start: int
    end: int

    def contains(self, line: int) -> bool:
        return self.start <= line <= self.end

    @property
    def display_range(self) -> tuple[int, int]:
        """1-based bounds, as used by ``sed -n 'a,bp'``."""
        return self.start + 1, self.end + 1


@dataclass(frozen=True)
class Snippet:
    """Rendered viewport text annotated with absolute line numbers."""

    path: str
    viewport: Viewport | None
    text: str

    @property
    def is_empty(self) -> bool:
        return self.viewport is None


def compute_viewport(line_count: int, center: int, radius: int) -> Viewport | None:
    """Return ``[center - radius, center + radius]`` clipped to ``[0, line_count - 1]``.

    The center itself is clamped first, so a cursor past the end of the
    buffer still yields a valid window.  ``None`` for an empty buffer.
    """
    if line_count <= 0:
        return None
    center = min(max(center, 0), line_count - 1)
    return Viewport(start=max(center - radius, 0), end=min(center + radius, line_count - 1))


def extract(file_state: FileState, radius: int, center: int | None = None) -> Snippet:
    """Snippet of *file_state*'s buffer around its cursor (or *center*)."""
    line = file_state.cursor[0] if center is None else center
    viewport = compute_viewport(buffer_line_count(file_state.lines), line, radius)
    if viewport is None:
        return Snippet(path=file_state.path, viewport=None, text="")
    text = line_numbered_output(file_state.lines, viewport.start, viewport.end)
    return Snippet(path=file_state.path, viewport=viewport, text=text)
