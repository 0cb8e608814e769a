"""Greedy token-budget chunking of a conversation."""

from __future__ import annotations

from collections.abc import Sequence

from ..tokenizer import Tokenizer
from .message import ConversationChunk, Message


class ConversationChunker:
    """Greedy left-to-right packing of messages under a token budget.

    Messages must already be truncated to the per-message cap.  Each message
    is counted at most once (the count is memoized on the message).
    """

    def __init__(self, tokenizer: Tokenizer) -> None:
        self._tokenizer = tokenizer

    def chunk(
        self,
        session_id: str,
        messages: Sequence[Message],
        max_tokens_per_conversation: int | None,
        min_conversation_messages: int | None = None,
    ) -> list[ConversationChunk]:
        """Split *messages* into chunks of at most *max_tokens_per_conversation* tokens.

        A message that meets the budget on its own becomes a singleton chunk.
        ``None`` as the budget keeps everything in one chunk.  When
        *min_conversation_messages* is given, shorter chunks are dropped.
        """
        groups: list[tuple[list[Message], int]] = []
        current: list[Message] = []
        total = 0

        for message in messages:
            tokens = message.token_count(self._tokenizer)
            budget = max_tokens_per_conversation
            if budget is not None and tokens >= budget:
                if current:
                    groups.append((current, total))
                groups.append(([message], tokens))
                current, total = [], 0
                continue
            if budget is not None and current and total + tokens > budget:
                groups.append((current, total))
                current, total = [], 0
            current.append(message)
            total += tokens

        if current:
            groups.append((current, total))

        chunks = [
            ConversationChunk(session_id=session_id, index=i, messages=tuple(group), token_count=tokens)
            for i, (group, tokens) in enumerate(groups)
        ]
        if min_conversation_messages is not None:
            chunks = drop_short_chunks(chunks, min_conversation_messages)
        return chunks


def drop_short_chunks(chunks: Sequence[ConversationChunk], min_messages: int) -> list[ConversationChunk]:
    """Keep chunks with at least *min_messages* messages, preserving their ids."""
    return [c for c in chunks if len(c.messages) >= min_messages]
