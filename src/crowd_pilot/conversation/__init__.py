"""Conversation core --- incremental serialization of IDE events into chunks."""

from .chunker import ConversationChunker, drop_short_chunks
from .coalescing import CoalescingEngine, file_open_message
from .manager import ConversationStateManager
from .message import Conversation, ConversationChunk, Message, Role, SourceSpan
from .state import EditMark, FileState, PendingWindow, SessionPhase, SessionState, SessionStateStore
from .viewport import Snippet, Viewport, compute_viewport, extract

__all__ = [
    "CoalescingEngine",
    "Conversation",
    "ConversationChunk",
    "ConversationChunker",
    "ConversationStateManager",
    "EditMark",
    "FileState",
    "Message",
    "PendingWindow",
    "Role",
    "SessionPhase",
    "SessionState",
    "SessionStateStore",
    "Snippet",
    "SourceSpan",
    "Viewport",
    "compute_viewport",
    "drop_short_chunks",
    "extract",
    "file_open_message",
]
