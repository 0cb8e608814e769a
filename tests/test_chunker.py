"""Tests for the token budget chunker."""

from crowd_pilot.conversation.chunker import ConversationChunker, drop_short_chunks
from crowd_pilot.conversation.message import Message, Role
from crowd_pilot.tokenizer import CharApproxTokenizer


class _CountingTokenizer(CharApproxTokenizer):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def count_tokens(self, text):
        self.calls += 1
        return super().count_tokens(text)


def _msg(tokens, role=Role.EDIT):
    return Message(role=role, content="a" * (tokens * 4))


def test_greedy_packing_respects_budget():
    chunker = ConversationChunker(CharApproxTokenizer())
    messages = [_msg(100) for _ in range(5)]
    chunks = chunker.chunk("s1", messages, 250)
    assert [len(c) for c in chunks] == [2, 2, 1]
    assert [c.token_count for c in chunks] == [200, 200, 100]
    assert all(c.token_count <= 250 for c in chunks)


def test_chunks_preserve_order_and_ids():
    chunker = ConversationChunker(CharApproxTokenizer())
    messages = [Message(role=Role.EDIT, content=f"{i:08d}") for i in range(6)]
    chunks = chunker.chunk("s1", messages, 4)
    flattened = [m for c in chunks for m in c.messages]
    assert flattened == messages
    assert [c.chunk_id for c in chunks] == ["s1-0000", "s1-0001", "s1-0002"]


def test_oversized_message_becomes_singleton():
    chunker = ConversationChunker(CharApproxTokenizer())
    messages = [_msg(100), _msg(300), _msg(100)]
    chunks = chunker.chunk("s1", messages, 250)
    assert [len(c) for c in chunks] == [1, 1, 1]
    assert chunks[1].token_count == 300


def test_message_exactly_at_budget_is_singleton():
    chunker = ConversationChunker(CharApproxTokenizer())
    chunks = chunker.chunk("s1", [_msg(10), _msg(250), _msg(10)], 250)
    assert [len(c) for c in chunks] == [1, 1, 1]


def test_unbounded_budget_keeps_one_chunk():
    chunker = ConversationChunker(CharApproxTokenizer())
    chunks = chunker.chunk("s1", [_msg(5000) for _ in range(3)], None)
    assert len(chunks) == 1
    assert chunks[0].token_count == 15000


def test_empty_conversation_has_no_chunks():
    chunker = ConversationChunker(CharApproxTokenizer())
    assert chunker.chunk("s1", [], 100) == []


def test_min_messages_filter_drops_short_chunks():
    chunker = ConversationChunker(CharApproxTokenizer())
    messages = [_msg(100) for _ in range(5)]
    chunks = chunker.chunk("s1", messages, 250, min_conversation_messages=2)
    assert [len(c) for c in chunks] == [2, 2]
    assert [c.index for c in chunks] == [0, 1]


def test_drop_short_chunks_keeps_indices():
    chunker = ConversationChunker(CharApproxTokenizer())
    chunks = chunker.chunk("s1", [_msg(100), _msg(300), _msg(50), _msg(50)], 250)
    kept = drop_short_chunks(chunks, 2)
    assert [c.index for c in kept] == [2]


def test_each_message_counted_once():
    tokenizer = _CountingTokenizer()
    chunker = ConversationChunker(tokenizer)
    messages = [_msg(10) for _ in range(4)]
    chunker.chunk("s1", messages, 25)
    chunker.chunk("s1", messages, 25)
    assert tokenizer.calls == 4
