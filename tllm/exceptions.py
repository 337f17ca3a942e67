from dataclasses import dataclass
from typing import Optional


class TllmError(Exception):
    """Base class for every error tllm reports to the user."""


class MissingCredential(TllmError):
    def __init__(self, provider, env_var):
        self.provider = provider
        self.env_var = env_var
        super().__init__(f"{env_var} environment variable not set (required for {provider})")


class ProviderError(TllmError):
    """An error raised while talking to a provider."""

    retry = False

    def __init__(self, message, provider=None, description=None):
        self.provider = provider
        self.description = description
        super().__init__(message)


class TransportError(ProviderError):
    """Network failure or timeout.

    When the failure cut a stream short, ``reply`` holds the truncated Reply
    built from the fragments that were already delivered.
    """

    retry = True

    def __init__(self, message, provider=None, description=None, reply=None):
        super().__init__(message, provider=provider, description=description)
        self.reply = reply


class ProviderRejected(ProviderError):
    """The provider refused the request (bad request, bad model, auth)."""


class RateLimited(ProviderError):
    retry = True

    def __init__(self, message, provider=None, description=None, retry_after=None):
        super().__init__(message, provider=provider, description=description)
        self.retry_after = retry_after


class NotFound(TllmError):
    def __init__(self, conversation_id):
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")


class AmbiguousSelection(TllmError):
    def __init__(self, conversation_ids):
        self.conversation_ids = list(conversation_ids)
        ids = ", ".join(str(i) for i in self.conversation_ids)
        super().__init__(f"More than one conversation marked with 'load': {ids}")


class EditorLaunchFailure(TllmError):
    pass


@dataclass
class ExInfo:
    name: str
    kind: Optional[type]
    description: Optional[str]


EXCEPTIONS = [
    ExInfo("APIConnectionError", TransportError, None),
    ExInfo("APIError", TransportError, None),
    ExInfo("APIResponseValidationError", TransportError, None),
    ExInfo(
        "AuthenticationError",
        ProviderRejected,
        "The API provider is not able to authenticate you. Check your API key.",
    ),
    ExInfo("BadRequestError", ProviderRejected, None),
    ExInfo(
        "ContentPolicyViolationError",
        ProviderRejected,
        "The API provider has refused the request due to a safety policy about the content.",
    ),
    ExInfo(
        "ContextWindowExceededError",
        ProviderRejected,
        "The conversation is too long for the model's context window.",
    ),
    ExInfo(
        "InternalServerError",
        TransportError,
        "The API provider's servers are down or overloaded.",
    ),
    ExInfo("NotFoundError", ProviderRejected, "The model was not found. Check the model name."),
    ExInfo("PermissionDeniedError", ProviderRejected, None),
    ExInfo(
        "RateLimitError",
        RateLimited,
        "The API provider has rate limited you. Try again later or check your quotas.",
    ),
    ExInfo(
        "ServiceUnavailableError",
        TransportError,
        "The API provider's servers are down or overloaded.",
    ),
    ExInfo("UnprocessableEntityError", ProviderRejected, None),
    ExInfo("UnsupportedParamsError", ProviderRejected, None),
    ExInfo(
        "Timeout",
        TransportError,
        "The API provider timed out without returning a response. They may be down or overloaded.",
    ),
]

# Raised below litellm (sockets, asyncio timeouts) and always treated as transport failures.
NETWORK_ERRORS = (ConnectionError, TimeoutError, OSError)


def retry_after(err):
    """Return the provider's retry hint in seconds, if it sent one."""
    headers = getattr(err, "litellm_response_headers", None)
    if headers is None:
        response = getattr(err, "response", None)
        headers = getattr(response, "headers", None)
    if not headers:
        return None
    try:
        value = headers.get("retry-after")
    except AttributeError:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class LiteLLMExceptions:
    """Maps litellm's exception classes onto tllm's provider error taxonomy."""

    def __init__(self):
        self.exceptions = dict()
        self._load()

    def _load(self):
        from tllm.llm import litellm

        for info in EXCEPTIONS:
            ex = getattr(litellm, info.name, None)
            if isinstance(ex, type):
                self.exceptions[ex] = info

    def exceptions_tuple(self):
        return tuple(self.exceptions) + NETWORK_ERRORS

    def get_ex_info(self, ex):
        # Walk the MRO so subclasses (ContextWindowExceededError < BadRequestError)
        # pick their own entry before their parent's.
        for cls in type(ex).__mro__:
            info = self.exceptions.get(cls)
            if info:
                return info
        if isinstance(ex, NETWORK_ERRORS):
            return ExInfo(type(ex).__name__, TransportError, None)
        return ExInfo(None, None, None)

    def translate(self, ex, provider=None):
        """Build the tllm ProviderError matching a litellm (or network) exception."""
        info = self.get_ex_info(ex)
        kind = info.kind or TransportError
        message = str(ex) or type(ex).__name__
        if kind is RateLimited:
            return RateLimited(
                message,
                provider=provider,
                description=info.description,
                retry_after=retry_after(ex),
            )
        return kind(message, provider=provider, description=info.description)
