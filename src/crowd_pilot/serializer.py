"""Record serializer — maps internal roles onto a training/prompting vocabulary.

Two output shapes are supported:

- chat: ``{"id", "messages": [{"role", "content"}]}`` with lower-case roles,
  the shape chat-completion APIs accept;
- NeMo SFT: ``{"mask", "system", "conversations": [{"from", "value"}]}``.

Every command (edits, terminal commands, checkouts and the ``cat -n`` that
opens a file or scrolls a viewport) is an *action* a model learns to produce,
so it maps to the assistant side.  Everything the IDE shows back in
``<stdout>`` is an observation and maps to the user side under the
``terminal_output`` role.  A message with output therefore becomes two turns.
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field

from .config import VIEWPORT_RADIUS
from .conversation.message import ConversationChunk, Role

CHAT_ROLE_MAP: dict[Role, str] = {
    Role.FILE_OPEN: "assistant",
    Role.VIEWPORT: "assistant",
    Role.EDIT: "assistant",
    Role.TERMINAL_COMMAND: "assistant",
    Role.GIT_CHECKOUT: "assistant",
    Role.TERMINAL_OUTPUT: "user",
}

NEMO_ROLE_MAP: dict[Role, str] = {role: name.capitalize() for role, name in CHAT_ROLE_MAP.items()}

_SYSTEM_PROMPT_TEMPLATE = """\
You are a helpful assistant that can interact multiple times with a computer shell to solve programming tasks.
Your response must contain exactly ONE bash code block with ONE command (or commands connected with && or ||).
File contents are shown with `cat -n`; around the cursor you see at most {radius} lines above and below.

Format your response as shown in <format_example>.

<format_example>
```bash
your_command_here
```
</format_example>

Failure to follow these rules will cause your response to be rejected."""


def default_system_prompt(viewport_radius: int = VIEWPORT_RADIUS) -> str:
    """System prompt shared by the live extension and preprocessing."""
    return _SYSTEM_PROMPT_TEMPLATE.format(radius=viewport_radius)


# ---------------------------------------------------------------------------
# Chat records
# ---------------------------------------------------------------------------


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatRecord(BaseModel):
    """One chunk in chat-completion shape."""

    id: str
    messages: list[ChatMessage] = Field(default_factory=list)


def serialize(
    chunk: ConversationChunk,
    role_map: Mapping[Role, str] = CHAT_ROLE_MAP,
    system_prompt: str | None = None,
) -> ChatRecord:
    """Render *chunk* as a chat record; *system_prompt* becomes a leading ``system`` message.

    Raises ``KeyError`` when a message role is missing from *role_map*.
    """
    messages: list[ChatMessage] = []
    if system_prompt is not None:
        messages.append(ChatMessage(role="system", content=system_prompt))
    for message in chunk.messages:
        for role, text in message.turns():
            messages.append(ChatMessage(role=role_map[role], content=text))
    return ChatRecord(id=chunk.chunk_id, messages=messages)


# ---------------------------------------------------------------------------
# NeMo SFT records
# ---------------------------------------------------------------------------


class NemoTurn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    speaker: str = Field(alias="from")
    value: str


class NemoRecord(BaseModel):
    """One chunk in NeMo SFT shape; loss is masked on the ``User`` turns."""

    mask: str = "User"
    system: str = ""
    conversations: list[NemoTurn] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def serialize_nemo(
    chunk: ConversationChunk,
    role_map: Mapping[Role, str] = NEMO_ROLE_MAP,
    system_prompt: str = "",
) -> NemoRecord:
    """Render *chunk* as a NeMo SFT record.

    Raises ``KeyError`` when a message role is missing from *role_map*.
    """
    turns = [NemoTurn(speaker=role_map[role], value=text) for m in chunk.messages for role, text in m.turns()]
    return NemoRecord(system=system_prompt, conversations=turns)


def has_both_sides(chunk: ConversationChunk, role_map: Mapping[Role, str] = CHAT_ROLE_MAP) -> bool:
    """True when *chunk* holds at least one user and one assistant turn."""
    sides = {role_map[role].lower() for m in chunk.messages for role, _ in m.turns()}
    return {"user", "assistant"} <= sides
