"""Tests for the coalescing engine."""

import pytest

from crowd_pilot.config import SerializerConfig
from crowd_pilot.conversation.coalescing import CoalescingEngine, file_open_message
from crowd_pilot.conversation.message import Role
from crowd_pilot.conversation.state import FileState
from crowd_pilot.errors import MalformedEventError


def _make_engine(**overrides):
    emitted = []

    def emit(message):
        emitted.append(message)
        return message

    return CoalescingEngine(SerializerConfig(**overrides), emit), emitted


def _make_file(n_lines=12):
    fs = FileState(path="a.py")
    fs.set_contents("\n".join(f"line{i}" for i in range(n_lines)))
    return fs


def test_nearby_edits_coalesce_into_one_message():
    engine, emitted = _make_engine(coalesce_radius=1, viewport_radius=2)
    fs = _make_file()
    assert engine.apply_edit(fs, 5, 0, "x", seq=1) is None
    assert engine.apply_edit(fs, 6, 0, "y", seq=2) is None
    assert emitted == []
    assert (fs.pending.start_line, fs.pending.end_line) == (5, 6)


def test_far_edit_flushes_previous_window():
    engine, emitted = _make_engine(coalesce_radius=1, viewport_radius=2)
    fs = _make_file()
    engine.apply_edit(fs, 5, 0, "x", seq=1)
    engine.apply_edit(fs, 6, 0, "y", seq=2)
    flushed = engine.apply_edit(fs, 8, 0, "z", seq=3)

    assert flushed is not None
    assert emitted == [flushed]
    assert flushed.role == Role.EDIT
    assert "sed -i '6,7c\\\nxline5\nyline6' a.py && cat -n a.py | sed -n '4,8p'" in flushed.content
    assert "     6\txline5" in flushed.output
    assert flushed.source.first_seq == 1
    assert flushed.source.last_seq == 2
    assert (fs.pending.start_line, fs.pending.end_line) == (8, 8)

    second = engine.flush(fs)
    assert second is not None
    assert "sed -i '9,9c\\\nzline8' a.py && cat -n a.py | sed -n '7,11p'" in second.content
    assert len(emitted) == 2


def test_flush_is_idempotent():
    engine, emitted = _make_engine()
    fs = _make_file()
    engine.apply_edit(fs, 0, 0, "x", seq=1)
    assert engine.flush(fs) is not None
    assert engine.flush(fs) is None
    assert len(emitted) == 1


def test_cancelled_edits_produce_nothing():
    engine, emitted = _make_engine()
    fs = _make_file()
    engine.apply_edit(fs, 2, 0, "tmp", seq=1)
    engine.apply_edit(fs, 2, 0, "", seq=2, length=3)
    assert engine.flush(fs) is None
    assert emitted == []
    assert fs.pending is None


def test_deletion_renders_delete_command():
    engine, _ = _make_engine()
    fs = FileState(path="f.txt")
    fs.set_contents("a\nb\nc")
    engine.apply_edit(fs, 1, 0, "", seq=1, length=2)
    message = engine.flush(fs)
    assert fs.content == "a\nc"
    assert message.content.startswith("```bash\nsed -i '2,2d' f.txt && cat -n f.txt")


def test_append_at_end_of_file():
    engine, _ = _make_engine()
    fs = FileState(path="f.txt")
    fs.set_contents("a")
    engine.apply_edit(fs, 0, 1, "\nb", seq=1)
    message = engine.flush(fs)
    assert "sed -i '$a\\\nb' f.txt" in message.content


def test_multiline_insert_extends_window():
    engine, _ = _make_engine(coalesce_radius=0)
    fs = _make_file()
    engine.apply_edit(fs, 2, 0, "a\nb\nc\n", seq=1)
    assert (fs.pending.start_line, fs.pending.end_line) == (2, 5)
    assert engine.apply_edit(fs, 5, 0, "d", seq=2) is None


def test_out_of_order_seq_rejected():
    engine, _ = _make_engine()
    fs = _make_file()
    engine.apply_edit(fs, 0, 0, "x", seq=5)
    with pytest.raises(MalformedEventError, match="not after 5"):
        engine.apply_edit(fs, 0, 1, "y", seq=5)


def test_capture_file_before_first_edit():
    engine, emitted = _make_engine(capture_file_before_edit=True)
    fs = FileState(path="f.txt")
    fs.set_contents("a\nb")
    engine.apply_edit(fs, 0, 0, "X", seq=1)
    engine.flush(fs)
    assert [m.role for m in emitted] == [Role.FILE_OPEN, Role.EDIT]
    assert "     1\ta\n     2\tb" in emitted[0].output
    assert fs.contents_shown

    engine.apply_edit(fs, 1, 0, "Y", seq=2)
    engine.flush(fs)
    assert [m.role for m in emitted] == [Role.FILE_OPEN, Role.EDIT, Role.EDIT]


def test_file_open_message_lists_whole_buffer():
    fs = FileState(path="a.py")
    fs.set_contents("x = 1\ny = 2")
    message = file_open_message(fs)
    assert message.role == Role.FILE_OPEN
    assert message.content == "```bash\ncat -n a.py\n```\n"
    assert message.output == "<stdout>\n     1\tx = 1\n     2\ty = 2\n</stdout>"


def test_trailing_newline_only_edit_is_cancelled():
    engine, emitted = _make_engine()
    fs = FileState(path="a.py")
    fs.set_contents("a\n")
    engine.apply_edit(fs, 1, 0, "\n", seq=1)
    assert fs.content == "a\n\n"
    assert engine.flush(fs) is None
    assert emitted == []


def test_edit_keeps_command_and_listing_apart():
    engine, _ = _make_engine()
    fs = _make_file(3)
    engine.apply_edit(fs, 0, 0, "z", seq=1)
    message = engine.flush(fs)
    assert "<stdout>" not in message.content
    assert message.output.startswith("<stdout>\n     1\tzline0")
    assert message.turns() == [(Role.EDIT, message.content), (Role.TERMINAL_OUTPUT, message.output)]
