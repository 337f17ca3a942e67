import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from tllm.conversation import Message, Role
from tllm.exceptions import LiteLLMExceptions, TransportError
from tllm.llm import litellm
from tllm.providers import ProviderConfig, get_adapter

logger = logging.getLogger(__name__)

RETRY_TIMEOUT = 60
INITIAL_RETRY_DELAY = 0.125


@dataclass
class Reply:
    text: str
    stop_reason: Optional[str] = None
    provider: str = ""
    model: str = ""
    truncated: bool = False


def check_history(history: List[Message]):
    if not any(m.role != Role.SYSTEM for m in history):
        raise ValueError("history must contain at least one non-system message")


class ProviderClient:
    """Sends a conversation history to one provider and maps the answer back.

    ``send`` returns a complete Reply. ``send_streaming`` returns a ReplyStream
    that yields text fragments in the order the network delivers them.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.adapter = get_adapter(config.provider)
        self.litellm_ex = LiteLLMExceptions()

    @property
    def provider_name(self):
        return self.config.provider.value

    def request_kwargs(self, history, stream):
        kwargs = dict(model=self.adapter.model_name(self.config), stream=stream)
        kwargs.update(self.adapter.completion_kwargs(self.config))
        kwargs["messages"] = self.adapter.format_messages(history)
        return kwargs

    def translate(self, ex):
        return self.litellm_ex.translate(ex, provider=self.provider_name)

    def should_retry(self, err, attempt):
        return err.retry and attempt < self.config.max_retries

    def retry_delay(self, err, attempt):
        delay = min(INITIAL_RETRY_DELAY * (2**attempt), RETRY_TIMEOUT)
        hint = getattr(err, "retry_after", None)
        if hint:
            delay = min(max(delay, hint), RETRY_TIMEOUT)
        return delay

    async def backoff(self, err, attempt):
        delay = self.retry_delay(err, attempt)
        logger.warning(
            "%s request failed (%s), retrying in %.1f seconds", self.provider_name, err, delay
        )
        await asyncio.sleep(delay)

    async def send(self, history: List[Message]) -> Reply:
        check_history(history)
        kwargs = self.request_kwargs(history, stream=False)
        logger.debug("sending %d messages to %s", len(kwargs["messages"]), kwargs["model"])

        attempt = 0
        while True:
            try:
                response = await litellm.acompletion(**kwargs)
                break
            except self.litellm_ex.exceptions_tuple() as ex:
                err = self.translate(ex)
                if not self.should_retry(err, attempt):
                    raise err from ex
                await self.backoff(err, attempt)
                attempt += 1

        return Reply(
            text=self.adapter.reply_text(response),
            stop_reason=self.adapter.stop_reason(response),
            provider=self.provider_name,
            model=kwargs["model"],
        )

    def send_streaming(self, history: List[Message]) -> "ReplyStream":
        check_history(history)
        return ReplyStream(self, history)


class ReplyStream:
    """Lazy, single-use sequence of reply fragments.

    Iterate it with ``async for``. When the iteration finishes, ``reply`` holds
    the summary. Any failure after the first fragment raises
    TransportError with ``reply`` set to the truncated summary. Failures
    before the first fragment are retried like ``ProviderClient.send``.
    """

    def __init__(self, client: ProviderClient, history: List[Message]):
        self.client = client
        self.history = history
        self.reply: Optional[Reply] = None
        self.fragments: List[str] = []
        self._pump_gen = None

    def __aiter__(self):
        if self._pump_gen is not None:
            raise RuntimeError("a ReplyStream can only be iterated once")
        self._pump_gen = self._pump()
        return self._pump_gen

    async def aclose(self):
        if self._pump_gen is not None:
            await self._pump_gen.aclose()

    async def _pump(self):
        client = self.client
        adapter = client.adapter
        kwargs = client.request_kwargs(self.history, stream=True)
        logger.debug("streaming %d messages from %s", len(kwargs["messages"]), kwargs["model"])

        stop_reason = None
        attempt = 0
        while True:
            try:
                response = await litellm.acompletion(**kwargs)
                async for chunk in response:
                    stop_reason = adapter.stop_reason(chunk) or stop_reason
                    text = adapter.fragment_text(chunk)
                    if text:
                        self.fragments.append(text)
                        yield text
                break
            except Exception as ex:
                known = isinstance(ex, client.litellm_ex.exceptions_tuple())
                if not known and not self.fragments:
                    raise
                err = client.translate(ex)
                if not self.fragments:
                    if not client.should_retry(err, attempt):
                        raise err from ex
                    await client.backoff(err, attempt)
                    attempt += 1
                    continue

                # Output already reached the user, so the reply is cut, not retried
                truncated = self._summary(kwargs["model"], stop_reason, truncated=True)
                logger.warning(
                    "stream from %s interrupted after %d fragments: %s",
                    client.provider_name,
                    len(self.fragments),
                    err,
                )
                raise TransportError(
                    str(err),
                    provider=client.provider_name,
                    description=err.description,
                    reply=truncated,
                ) from ex

        self.reply = self._summary(kwargs["model"], stop_reason)

    def _summary(self, model, stop_reason, truncated=False):
        return Reply(
            text="".join(self.fragments),
            stop_reason=stop_reason,
            provider=self.client.provider_name,
            model=model,
            truncated=truncated,
        )
