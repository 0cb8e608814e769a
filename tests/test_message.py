"""Tests for message value types."""

import pytest
from pydantic import ValidationError

from crowd_pilot.conversation.message import Conversation, ConversationChunk, Message, Role, SourceSpan
from crowd_pilot.tokenizer import CharApproxTokenizer


def test_message_is_immutable():
    message = Message(role=Role.EDIT, content="x")
    with pytest.raises(ValidationError):
        message.content = "y"


def test_token_count_is_memoized():
    tokenizer = CharApproxTokenizer()
    message = Message(role=Role.EDIT, content="abcdefgh")
    assert not message.is_counted
    assert message.token_count(tokenizer) == 2
    assert message.is_counted


def test_equality_ignores_memo():
    a = Message(role=Role.VIEWPORT, content="abcd", source=SourceSpan(path="a.py"))
    b = Message(role=Role.VIEWPORT, content="abcd", source=SourceSpan(path="a.py"))
    a.token_count(CharApproxTokenizer())
    assert a == b
    assert hash(a) == hash(b)


def test_conversation_counts_tokens():
    messages = [Message(role=Role.EDIT, content="a" * 8), Message(role=Role.EDIT, content="b" * 4)]
    conversation = Conversation("s1", messages)
    assert len(conversation) == 2
    assert list(conversation) == messages
    assert conversation.token_count(CharApproxTokenizer()) == 3
    assert conversation == Conversation("s1", list(messages))


def test_chunk_id_is_zero_padded():
    chunk = ConversationChunk(session_id="s1", index=12, messages=(), token_count=0)
    assert chunk.chunk_id == "s1-0012"
    assert len(chunk) == 0
