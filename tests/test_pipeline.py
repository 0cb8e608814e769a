"""Tests for the batch preprocessing pipeline."""

import csv
import json

import pytest

from crowd_pilot.config import SerializerConfig
from crowd_pilot.conversation.message import ConversationChunk, Message, Role
from crowd_pilot.errors import TokenizerUnavailableError
from crowd_pilot.pipeline import (
    SessionResult,
    process_all_sessions,
    process_session,
    split_sessions,
    write_jsonl_output,
)
from crowd_pilot.tokenizer import CharApproxTokenizer

HEADER = ["Sequence", "Time", "File", "RangeOffset", "RangeLength", "Text", "Language", "Type"]

# Six messages: file_open, edit, command, output, command, output
SESSION_ROWS = [
    [1, "t", "/p/a.py", 0, 0, "line1\\nline2", "python", "tab"],
    [2, "t", "/p/a.py", 0, 0, "x", "python", "content"],
    [3, "t", "", "", "", "ls", "", "terminal_command"],
    [4, "t", "", "", "", "a.py", "", "terminal_output"],
    [5, "t", "", "", "", "pwd", "", "terminal_command"],
    [6, "t", "", "", "", "/p", "", "terminal_output"],
]


def _write_csv(path, rows, header=HEADER):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(header)
        writer.writerows(rows)
    return path


def _make_session_result(session_id, n_chunks=1):
    chunks = [
        ConversationChunk(
            session_id=session_id,
            index=i,
            messages=(Message(role=Role.TERMINAL_OUTPUT, content="v"), Message(role=Role.EDIT, content="e")),
            token_count=2,
        )
        for i in range(n_chunks)
    ]
    return SessionResult(session_id=session_id, source_path=f"{session_id}.csv", chunks=chunks)


def test_process_session_keeps_full_chunk(tmp_path):
    path = _write_csv(tmp_path / "s.csv", SESSION_ROWS)
    result = process_session(path, CharApproxTokenizer(), SerializerConfig.for_batch(), session_id="s")
    assert result.session_id == "s"
    assert len(result.chunks) == 1
    roles = [m.role for m in result.chunks[0].messages]
    assert roles == [
        Role.FILE_OPEN,
        Role.EDIT,
        Role.TERMINAL_COMMAND,
        Role.TERMINAL_OUTPUT,
        Role.TERMINAL_COMMAND,
        Role.TERMINAL_OUTPUT,
    ]


def test_process_session_drops_short_chunks(tmp_path):
    path = _write_csv(tmp_path / "s.csv", SESSION_ROWS[:2])
    result = process_session(path, CharApproxTokenizer(), SerializerConfig.for_batch())
    assert result.chunks == []
    assert result.dropped_chunks == 1


def test_process_session_drops_one_sided_chunks(tmp_path):
    rows = [[i, "t", "", "", "", f"echo {i}", "", "terminal_command"] for i in range(1, 8)]
    path = _write_csv(tmp_path / "s.csv", rows)
    result = process_session(path, CharApproxTokenizer(), SerializerConfig.for_batch())
    assert result.chunks == []


def test_process_all_sessions_isolates_failures(tmp_path):
    root = tmp_path / "logs"
    for name in ("u1/a.csv", "u1/b.csv", "u2/c.csv"):
        _write_csv(root / name, SESSION_ROWS)
    _write_csv(root / "u2/broken.csv", [[1, "a.py", "tab"]], header=["Sequence", "File", "Type"])

    batch = process_all_sessions(root, CharApproxTokenizer(), SerializerConfig.for_batch(), max_workers=4)

    assert [s.session_id for s in batch.sessions] == ["u1/a", "u1/b", "u2/c"]
    assert len(batch.failures) == 1
    assert batch.failures[0].source_path.endswith("broken.csv")
    assert "Missing required column" in batch.failures[0].error
    assert batch.total_files == 4


class _FailingTokenizer(CharApproxTokenizer):
    """Fails on any text mentioning ``secret``."""

    def count_tokens(self, text):
        if "secret" in text:
            msg = "backend rejected input"
            raise TokenizerUnavailableError(msg)
        return super().count_tokens(text)


def test_tokenizer_failure_is_isolated_to_its_session(tmp_path):
    root = tmp_path / "logs"
    _write_csv(root / "a.csv", SESSION_ROWS)
    _write_csv(root / "b.csv", [*SESSION_ROWS[:2], [3, "t", "", "", "", "cat secret", "", "terminal_command"]])
    _write_csv(root / "c.csv", SESSION_ROWS)

    batch = process_all_sessions(root, _FailingTokenizer(), SerializerConfig.for_batch(), max_workers=3)

    assert [s.session_id for s in batch.sessions] == ["a", "c"]
    assert all(len(s.chunks) == 1 for s in batch.sessions)
    assert len(batch.failures) == 1
    assert batch.failures[0].source_path.endswith("b.csv")
    assert "backend rejected input" in batch.failures[0].error


def test_locked_tokenizer_gives_same_results(tmp_path):
    root = tmp_path / "logs"
    for name in ("a.csv", "b.csv"):
        _write_csv(root / name, SESSION_ROWS)
    config = SerializerConfig.for_batch()

    locked = process_all_sessions(root, CharApproxTokenizer(), config, max_workers=2, lock_tokenizer=True)
    unlocked = process_all_sessions(root, CharApproxTokenizer(), config, max_workers=2)

    assert locked.sessions == unlocked.sessions
    assert locked.failures == []


def test_process_all_sessions_without_logs(tmp_path):
    with pytest.raises(FileNotFoundError, match="No CSV session logs"):
        process_all_sessions(tmp_path, CharApproxTokenizer())


def test_split_never_shares_a_session():
    sessions = [_make_session_result(f"s{i}", n_chunks=3) for i in range(10)]
    train, val = split_sessions(sessions, 0.2)
    assert len(train) == 8
    assert len(val) == 2
    assert not {s.session_id for s in train} & {s.session_id for s in val}


def test_split_is_deterministic():
    sessions = [_make_session_result(f"s{i}") for i in range(20)]
    first = split_sessions(sessions, 0.25)
    second = split_sessions(list(reversed(sessions)), 0.25)
    assert [s.session_id for s in first[1]] == [s.session_id for s in second[1]]


def test_split_edge_ratios():
    sessions = [_make_session_result(f"s{i}") for i in range(3)]
    assert len(split_sessions(sessions, 0.0)[1]) == 0
    assert len(split_sessions(sessions, 1.0)[0]) == 0
    assert len(split_sessions(sessions, 0.5)[1]) == 2
    with pytest.raises(ValueError, match="val_ratio"):
        split_sessions(sessions, 2.0)


def test_write_chat_output(tmp_path):
    sessions = [_make_session_result(f"s{i}", n_chunks=2) for i in range(5)]
    metadata = write_jsonl_output(sessions, tmp_path, val_ratio=0.2, system_prompt="sys")

    train_lines = (tmp_path / "training.jsonl").read_text().splitlines()
    val_lines = (tmp_path / "validation.jsonl").read_text().splitlines()
    assert len(train_lines) == 8
    assert len(val_lines) == 2

    record = json.loads(train_lines[0])
    assert [m["role"] for m in record["messages"]] == ["system", "user", "assistant"]
    assert record["messages"][0]["content"] == "sys"

    train_ids = {json.loads(line)["id"].rsplit("-", 1)[0] for line in train_lines}
    val_ids = {json.loads(line)["id"].rsplit("-", 1)[0] for line in val_lines}
    assert not train_ids & val_ids

    saved = json.loads((tmp_path / "metadata.json").read_text())
    assert saved["counts"]["total_sessions"] == 5
    assert saved["counts"]["train_conversations"] == 8
    assert saved["counts"]["val_conversations"] == 2
    assert saved["stats"]["total_messages"] == 20
    assert saved["stats"]["avg_tokens_per_conversation"] == 2.0
    assert saved["files"]["train_path"].endswith("training.jsonl")
    assert metadata.counts.total_conversations == 10


def test_write_nemo_output(tmp_path):
    write_jsonl_output(
        [_make_session_result("s0")], tmp_path, val_ratio=0.0, system_prompt="sys", output_format="nemo"
    )
    record = json.loads((tmp_path / "training.jsonl").read_text().splitlines()[0])
    assert record["mask"] == "User"
    assert record["system"] == "sys"
    assert record["conversations"][0] == {"from": "User", "value": "v"}


def test_write_empty_output(tmp_path):
    metadata = write_jsonl_output([], tmp_path, val_ratio=0.1, system_prompt="sys")
    assert (tmp_path / "training.jsonl").read_text() == ""
    assert metadata.stats.avg_messages_per_conversation == 0.0
