"""Line-level changed-block detection between two buffer versions."""

from __future__ import annotations

import difflib
from dataclasses import dataclass

from .text import escape_single_quotes_for_sed


@dataclass(frozen=True)
class ChangedBlock:
    """The single region spanning every difference between two versions.

    Line numbers are 1-based and inclusive.  A pure insertion has
    ``end_before < start_before``.
    """

    start_before: int
    end_before: int
    start_after: int
    end_after: int
    replacement_lines: list[str]

    @property
    def is_insertion(self) -> bool:
        return self.end_before < self.start_before

    @property
    def is_deletion(self) -> bool:
        return not self.is_insertion and not self.replacement_lines


def compute_changed_block(before: list[str], after: list[str]) -> ChangedBlock | None:
    """Return the block covering all edits from *before* to *after*, or ``None`` if equal."""
    matcher = difflib.SequenceMatcher(a=before, b=after, autojunk=False)
    changes = [op for op in matcher.get_opcodes() if op[0] != "equal"]
    if not changes:
        return None

    _, i1, _, j1, _ = changes[0]
    _, _, i2, _, j2 = changes[-1]
    return ChangedBlock(
        start_before=i1 + 1,
        end_before=i2,
        start_after=j1 + 1,
        end_after=j2,
        replacement_lines=list(after[j1:j2]),
    )


def sed_command(block: ChangedBlock, path: str, before_line_count: int) -> str:
    """Render *block* as the ``sed -i`` command that reproduces it on *path*."""
    payload = "\n".join(escape_single_quotes_for_sed(line) for line in block.replacement_lines)
    if block.is_insertion:
        if block.start_before <= max(before_line_count, 1):
            return f"sed -i '{block.start_before}i\\\n{payload}' {path}"
        return f"sed -i '$a\\\n{payload}' {path}"
    if block.is_deletion:
        return f"sed -i '{block.start_before},{block.end_before}d' {path}"
    return f"sed -i '{block.start_before},{block.end_before}c\\\n{payload}' {path}"

