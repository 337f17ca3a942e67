"""
Translation between conversation state and the text buffer shown in $EDITOR.

Two buffer layouts exist:

- conversation mode renders every turn under a ``=== role ... ===`` header,
  oldest first, and ends with an empty ``=== user (new) ===`` region. Whatever
  the user writes below that last marker becomes the next message.
- listing mode renders one line per conversation prefixed with ``nothing``.
  Changing that token to ``load`` selects the conversation.

Nothing here touches the network, the store or the editor process.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Union

from tllm.conversation import Conversation, ConversationSummary, Message, Role, format_timestamp
from tllm.exceptions import AmbiguousSelection

NEW_TURN_MARKER = "=== user (new) ==="
DEFAULT_COMMAND = "nothing"
LOAD_COMMAND = "load"

NEW_TURN_RE = re.compile(r"^=== user \(new\) ===[ \t]*$", re.MULTILINE)

LISTING_HEADER = f"""\
# Change "{DEFAULT_COMMAND}" to "{LOAD_COMMAND}" on the conversation you want to open,
# then save and quit. Lines starting with # are ignored.
"""


class EditMode(str, Enum):
    CONVERSATION = "conversation"
    LISTING = "listing"


@dataclass(frozen=True)
class NextMessage:
    content: str


@dataclass(frozen=True)
class ConversationSelection:
    conversation_id: int


@dataclass(frozen=True)
class NoOp:
    pass


EditResult = Union[NextMessage, ConversationSelection, NoOp]


def format_turn_header(message: Message) -> str:
    parts = [message.role.value]
    if message.role == Role.ASSISTANT and message.provider:
        parts.append(f"({message.provider})")
    if message.truncated:
        parts.append("[truncated]")
    if message.role != Role.SYSTEM:
        parts.append(format_timestamp(message.created_at))
    return "=== " + " ".join(parts) + " ==="


def format_conversation(conversation: Optional[Conversation]) -> str:
    blocks = []
    if conversation is not None:
        for message in conversation.messages:
            blocks.append(f"{format_turn_header(message)}\n{message.content.rstrip()}\n")
    blocks.append(f"{NEW_TURN_MARKER}\n")
    return "\n".join(blocks) + "\n"


def format_listing(summaries: Sequence[ConversationSummary]) -> str:
    lines = [LISTING_HEADER]
    for summary in summaries:
        title = summary.title or "(untitled)"
        lines.append(
            f"{DEFAULT_COMMAND} {summary.id} {format_timestamp(summary.updated_at)} {title}"
        )
    return "\n".join(lines) + "\n"


def format_for_edit(subject, mode: Optional[EditMode] = None) -> str:
    """Render a Conversation (or None for a fresh one) or a listing as an editable buffer."""
    if mode is None:
        mode = EditMode.LISTING if isinstance(subject, (list, tuple)) else EditMode.CONVERSATION
    if mode == EditMode.LISTING:
        return format_listing(subject)
    return format_conversation(subject)


def parse_conversation_buffer(text: str) -> EditResult:
    matches = list(NEW_TURN_RE.finditer(text))
    if not matches:
        return NoOp()
    content = text[matches[-1].end() :].strip()
    if not content:
        return NoOp()
    return NextMessage(content)


def selected_ids(text: str) -> List[int]:
    ids = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        tokens = line.split(None, 2)
        if len(tokens) < 2 or tokens[0].lower() != LOAD_COMMAND:
            continue
        try:
            ids.append(int(tokens[1]))
        except ValueError:
            continue
    return ids


def parse_listing_buffer(text: str) -> EditResult:
    ids = selected_ids(text)
    if not ids:
        return NoOp()
    if len(ids) > 1:
        raise AmbiguousSelection(ids)
    return ConversationSelection(ids[0])


def parse_edited(text: str, mode: EditMode) -> EditResult:
    """
    Interpret an edited buffer.

    Returns NextMessage, ConversationSelection or NoOp. Raises
    AmbiguousSelection when more than one listing line was changed to ``load``.
    """
    if EditMode(mode) == EditMode.LISTING:
        return parse_listing_buffer(text)
    return parse_conversation_buffer(text)
