"""InputOutput - terminal output sink and confirmation prompts."""

import logging
import os

from prompt_toolkit import PromptSession
from rich.console import Console
from rich.markdown import Markdown
from rich.text import Text

logger = logging.getLogger(__name__)

INCOMPLETE_NOTICE = "[reply incomplete]"


class InputOutput:
    """Renders tool messages and assistant replies to the terminal.

    Replies arrive either as one complete unit (``assistant_output``) or as an
    ordered series of fragments (``stream_output``) which are written as soon
    as they arrive, never reordered and never retracted.
    """

    def __init__(
        self,
        pretty=True,
        yes=None,
        output=None,
        tool_output_color=None,
        tool_error_color="red",
        tool_warning_color="#FFA500",
        assistant_output_color="blue",
        encoding="utf-8",
    ):
        if os.environ.get("NO_COLOR"):
            pretty = False
        self.pretty = pretty
        self.yes = yes
        self.encoding = encoding

        self.tool_output_color = tool_output_color if pretty else None
        self.tool_error_color = tool_error_color if pretty else None
        self.tool_warning_color = tool_warning_color if pretty else None
        self.assistant_output_color = assistant_output_color if pretty else None

        self.console = Console(file=output, no_color=not pretty, highlight=False)

        # LLM response streaming state
        self._streaming_response = False

    def _print(self, message, color=None, bold=False):
        style = color or ""
        if bold:
            style = f"bold {style}".strip()
        self.console.print(Text(str(message)), style=style or None)

    def tool_output(self, *messages, bold=False):
        text = " ".join(str(m) for m in messages)
        logger.debug("output: %s", text)
        self._print(text, self.tool_output_color, bold=bold)

    def tool_warning(self, message=""):
        logger.warning(message)
        self._print(message, self.tool_warning_color)

    def tool_error(self, message=""):
        logger.error(message)
        self._print(message, self.tool_error_color)

    def assistant_output(self, message, pretty=None):
        if not message:
            self.tool_warning("Empty response received from LLM. Check your provider account?")
            return
        if pretty is None:
            pretty = self.pretty
        if pretty:
            self.console.print(Markdown(message, style=self.assistant_output_color or "none"))
        else:
            self.console.print(Text(message))

    def stream_output(self, text, final=False):
        """Write one reply fragment as it arrives.

        Args:
            text: Fragment to write
            final: Whether this closes the reply
        """
        if text:
            self._streaming_response = True
            self.console.print(
                Text(text, style=self.assistant_output_color or ""), end="", soft_wrap=True
            )
            self.console.file.flush()

        if final and self._streaming_response:
            self._streaming_response = False
            self.console.print()

    def mark_incomplete(self):
        """Annotate a partially streamed reply without retracting it."""
        if self._streaming_response:
            self.console.print()
            self._streaming_response = False
        self._print(INCOMPLETE_NOTICE, self.tool_warning_color)

    def reset_streaming_response(self):
        """Reset streaming state between responses."""
        if self._streaming_response:
            self._streaming_response = False
            self.console.print()

    def role_output(self, role, text, header=None):
        """Print one stored turn, used when showing a whole conversation."""
        self._print(header or role, self.tool_output_color, bold=True)
        if role == "assistant":
            self.assistant_output(text)
        else:
            self.console.print(Text(text))
        self.console.print()

    async def confirm_ask(self, question, default="y"):
        if self.yes is not None:
            return bool(self.yes)

        suffix = " (Y)es/(N)o" + f" [{'Yes' if default == 'y' else 'No'}]: "
        session = PromptSession()
        try:
            res = await session.prompt_async(question + suffix)
        except (EOFError, KeyboardInterrupt):
            return False
        res = res.strip().lower() or default
        return res.startswith("y")
