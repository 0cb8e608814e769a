"""crowd-pilot serializer --- IDE telemetry to token-budgeted conversations."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import SerializerConfig
from .conversation import (
    Conversation,
    ConversationChunk,
    ConversationChunker,
    ConversationStateManager,
    Message,
    Role,
    SessionPhase,
    SourceSpan,
)
from .errors import InvalidStateError, MalformedEventError, SerializerError, TokenizerUnavailableError
from .events import (
    ContentEdit,
    Event,
    EventKind,
    GitCheckout,
    Selection,
    TabSwitch,
    TerminalCommand,
    TerminalFocus,
    TerminalOutput,
)
from .serializer import (
    CHAT_ROLE_MAP,
    NEMO_ROLE_MAP,
    ChatRecord,
    NemoRecord,
    default_system_prompt,
    serialize,
    serialize_nemo,
)
from .telemetry import SerializerTracer, TelemetryConfig, trace_batch, trace_finalize, trace_session
from .tokenizer import (
    CharApproxTokenizer,
    HuggingFaceTokenizer,
    LockedTokenizer,
    Tokenizer,
    create_tokenizer,
)

__all__ = [
    "CHAT_ROLE_MAP",
    "CharApproxTokenizer",
    "ChatRecord",
    "ContentEdit",
    "Conversation",
    "ConversationChunk",
    "ConversationChunker",
    "ConversationStateManager",
    "Event",
    "EventKind",
    "GitCheckout",
    "HuggingFaceTokenizer",
    "InvalidStateError",
    "LockedTokenizer",
    "MalformedEventError",
    "Message",
    "NEMO_ROLE_MAP",
    "NemoRecord",
    "Role",
    "Selection",
    "SerializerConfig",
    "SerializerError",
    "SerializerTracer",
    "SessionPhase",
    "SourceSpan",
    "TabSwitch",
    "TelemetryConfig",
    "TerminalCommand",
    "TerminalFocus",
    "TerminalOutput",
    "Tokenizer",
    "TokenizerUnavailableError",
    "create_tokenizer",
    "default_system_prompt",
    "serialize",
    "serialize_nemo",
    "trace_batch",
    "trace_finalize",
    "trace_session",
]
