import asyncio
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from tllm.bridge import (
    EditMode,
    NextMessage,
    NoOp,
    format_for_edit,
    format_turn_header,
    parse_edited,
)
from tllm.client import ProviderClient, Reply
from tllm.conversation import Conversation, Message, Role
from tllm.editor import pipe_editor
from tllm.exceptions import AmbiguousSelection, ProviderError, TransportError
from tllm.providers import DEFAULT_MAX_RETRIES, Provider, ProviderConfig

logger = logging.getLogger(__name__)

NAME_PROMPT = """
you will receive as input a conversation.
respond _only_ with a name for the conversation.
respond with no more than 5 words.
use no punctuation or formatting
"""


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_REPLY = "awaiting_reply"
    STREAMING = "streaming"
    EDITING = "editing"


@dataclass
class Session:
    """Process-scoped record of the active conversation and provider. Never persisted."""

    provider: Provider
    conversation: Optional[Conversation] = None
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    continue_after_reply: bool = False
    state: SessionState = SessionState.IDLE


def clean_title(text):
    title = re.sub(r"[^\w\s-]", "", text or "").strip().lower()
    title = "_".join(title.split()[:5])
    return title[:255]


class SessionController:
    """
    Drives one active conversation through the session states.

    IDLE -> AWAITING_REPLY -> (STREAMING ->) IDLE for every message sent, and
    IDLE -> EDITING -> IDLE around every editor round trip. Errors abort the
    current transition and leave the session IDLE.
    """

    def __init__(
        self,
        store,
        io,
        session: Session,
        client_factory=ProviderClient,
        editor=None,
        stream=False,
        max_retries=DEFAULT_MAX_RETRIES,
        generate_name=False,
    ):
        self.store = store
        self.io = io
        self.session = session
        self.client_factory = client_factory
        self.editor = editor
        self.stream = stream
        self.max_retries = max_retries
        self.generate_name = generate_name

    @property
    def state(self):
        return self.session.state

    @property
    def conversation(self):
        return self.session.conversation

    def require_idle(self, action):
        if self.session.state != SessionState.IDLE:
            raise RuntimeError(f"Cannot {action} while {self.session.state.value}")

    @staticmethod
    def resolve_message(arg):
        """A readable file path is replaced by the file's content."""
        if not arg:
            return arg
        try:
            path = Path(arg)
            if path.is_file():
                return path.read_text(encoding="utf-8")
        except (OSError, ValueError, UnicodeDecodeError):
            pass
        return arg

    def resolve_config(self):
        return ProviderConfig.resolve(
            self.session.provider, model=self.session.model, max_retries=self.max_retries
        )

    def _ensure_conversation(self) -> Conversation:
        if self.session.conversation is None:
            conversation_id = self.store.create(self.session.system_prompt)
            self.session.conversation = self.store.get(conversation_id)
        return self.session.conversation

    def _append(self, conversation, message):
        stored = self.store.append(conversation.id, message)
        conversation.messages.append(stored)
        conversation.updated_at = stored.created_at
        return stored

    def _record_reply(self, conversation, reply: Reply):
        return self._append(
            conversation,
            Message(
                Role.ASSISTANT, reply.text, provider=reply.provider, truncated=reply.truncated
            ),
        )

    async def send_message(self, text) -> Optional[Reply]:
        """Send ``text`` as the next user turn and persist the reply.

        Returns the Reply, or None when the user interrupted the request.
        """
        self.require_idle("send a message")
        if not text or not text.strip():
            raise ValueError("Cannot send an empty message")

        # Credentials are checked before the store is touched
        client = self.client_factory(self.resolve_config())
        conversation = self._ensure_conversation()
        self._append(conversation, Message(Role.USER, text))

        self.session.state = SessionState.AWAITING_REPLY
        try:
            if self.stream:
                reply = await self._stream_reply(client, conversation)
            else:
                reply = await self._complete_reply(client, conversation)
        except (KeyboardInterrupt, asyncio.CancelledError) as err:
            self.io.reset_streaming_response()
            self.io.tool_warning("Interrupted, reply discarded.")
            logger.info("request interrupted, nothing appended")
            if isinstance(err, asyncio.CancelledError):
                raise
            return None
        finally:
            self.session.state = SessionState.IDLE

        if self.generate_name and not conversation.title:
            await self.generate_title(client)
        return reply

    async def _complete_reply(self, client, conversation):
        reply = await client.send(conversation.messages)
        self._record_reply(conversation, reply)
        self.io.assistant_output(reply.text)
        return reply

    async def _stream_reply(self, client, conversation):
        stream = client.send_streaming(conversation.messages)
        self.session.state = SessionState.STREAMING
        try:
            async for fragment in stream:
                self.io.stream_output(fragment)
        except TransportError as err:
            if err.reply is None:
                raise
            self._record_reply(conversation, err.reply)
            self.io.mark_incomplete()
            raise
        except BaseException:
            await stream.aclose()
            raise

        self.io.stream_output("", final=True)
        self._record_reply(conversation, stream.reply)
        return stream.reply

    def load(self, conversation_id) -> Conversation:
        self.require_idle("load a conversation")
        self.session.conversation = self.store.get(conversation_id)
        return self.session.conversation

    def load_last(self) -> Optional[Conversation]:
        self.require_idle("load a conversation")
        conversation = self.store.latest()
        if conversation is None:
            self.io.tool_output("No saved conversations.")
            return None
        self.session.conversation = conversation
        return conversation

    def _edit(self, buffer, suffix):
        self.session.state = SessionState.EDITING
        try:
            return pipe_editor(buffer, suffix=suffix, editor=self.editor)
        finally:
            self.session.state = SessionState.IDLE

    async def select_from_list(self) -> Optional[Conversation]:
        """Let the user pick a conversation in the editor and make it active."""
        self.require_idle("select a conversation")
        summaries = self.store.list_recent()
        if not summaries:
            self.io.tool_output("No saved conversations.")
            return None

        buffer = format_for_edit(summaries, EditMode.LISTING)
        while True:
            buffer = self._edit(buffer, suffix="txt")
            try:
                result = parse_edited(buffer, EditMode.LISTING)
                break
            except AmbiguousSelection as err:
                self.io.tool_error(str(err))
                if not await self.io.confirm_ask("Edit the selection again?"):
                    return None

        if isinstance(result, NoOp):
            return None
        return self.load(result.conversation_id)

    def compose_in_editor(self, initial="") -> str:
        """Open the active conversation in the editor and return the new message, or ""."""
        self.require_idle("open the editor")
        buffer = format_for_edit(self.session.conversation, EditMode.CONVERSATION)
        if initial:
            buffer += initial.rstrip() + "\n"
        result = parse_edited(self._edit(buffer, suffix="md"), EditMode.CONVERSATION)
        if isinstance(result, NextMessage):
            return result.content
        return ""

    async def continue_loop(self):
        """Keep asking for the next message in the editor until it comes back empty."""
        while self.session.continue_after_reply:
            message = self.compose_in_editor()
            if not message:
                return
            if await self.send_message(message) is None:
                return

    async def generate_title(self, client=None):
        conversation = self.session.conversation
        if conversation is None or not conversation.turns:
            return None
        client = client or self.client_factory(self.resolve_config())
        text = "\n\n".join(f"{m.role.value}: {m.content}" for m in conversation.turns)
        history = [Message(Role.SYSTEM, NAME_PROMPT), Message(Role.USER, text)]
        self.io.tool_output("Generating name...")
        try:
            reply = await client.send(history)
        except ProviderError as err:
            logger.warning(
                "failed to generate a name for conversation %s: %s", conversation.id, err
            )
            self.io.tool_warning(f"Failed to generate name: {err}")
            return None
        title = clean_title(reply.text)
        if title:
            self.store.set_title(conversation.id, title)
            conversation.title = title
        return title

    def show_conversation(self):
        conversation = self.session.conversation
        if conversation is None:
            self.io.tool_output("No active conversation.")
            return
        if conversation.title:
            self.io.tool_output(conversation.title, bold=True)
        for message in conversation.messages:
            self.io.role_output(message.role.value, message.content, format_turn_header(message))

    def export(self, path) -> int:
        """Write every stored conversation to ``path`` as a JSON array."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        count = 0
        with open(path, "w", encoding="utf-8") as f:
            f.write("[")
            for conversation in self.store.export_all():
                if count:
                    f.write(",")
                f.write("\n")
                f.write(json.dumps(conversation.to_export(), indent=2, ensure_ascii=False))
                count += 1
            f.write("\n]\n")
        logger.info("exported %d conversations to %s", count, path)
        return count
