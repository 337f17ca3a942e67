"""Provider selection, credentials and per-provider request/response mapping.

Every provider tllm talks to is listed in ``Provider`` and has exactly one
adapter in ``ADAPTERS``. The adapters are the only place that knows how a
provider names its models, which request parameters it insists on and how its
messages must be shaped. The rest of tllm only sees ``Message`` and ``Reply``.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from tllm.conversation import Message, Role
from tllm.exceptions import MissingCredential

REQUEST_TIMEOUT = 600
DEFAULT_MAX_RETRIES = 3


class Provider(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"
    GROQ = "groq"

    def __str__(self):
        return self.value


@dataclass
class ProviderConfig:
    provider: Provider
    api_key: str
    model: str
    api_base: Optional[str] = None
    max_tokens: Optional[int] = None
    timeout: float = REQUEST_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES

    @classmethod
    def resolve(cls, provider, model=None, **kwargs):
        """Build a config from the environment, failing before any network traffic."""
        provider = Provider(provider)
        adapter = get_adapter(provider)
        api_key = os.environ.get(adapter.env_var)
        if not api_key:
            raise MissingCredential(provider.value, adapter.env_var)
        return cls(
            provider=provider,
            api_key=api_key,
            model=model or adapter.default_model,
            **kwargs,
        )

    def __repr__(self):
        # Keep the key out of logs
        return (
            f"ProviderConfig(provider={self.provider.value}, model={self.model},"
            f" api_base={self.api_base}, max_tokens={self.max_tokens})"
        )


def merge_consecutive_roles(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Join adjacent messages that share a role so user/assistant turns alternate."""
    merged = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"] and msg["role"] != Role.SYSTEM.value:
            merged[-1] = dict(merged[-1], content=merged[-1]["content"] + "\n\n" + msg["content"])
        else:
            merged.append(dict(msg))
    return merged


class ProviderAdapter:
    name: Provider = None
    env_var: str = None
    default_model: str = None
    litellm_prefix: str = None
    alternating_roles = False

    def model_name(self, config: ProviderConfig) -> str:
        if config.model.startswith(f"{self.litellm_prefix}/"):
            return config.model
        return f"{self.litellm_prefix}/{config.model}"

    def format_messages(self, history: List[Message]) -> List[Dict[str, Any]]:
        messages = [m.to_dict() for m in history]
        if self.alternating_roles:
            messages = merge_consecutive_roles(messages)
        return messages

    def completion_kwargs(self, config: ProviderConfig) -> Dict[str, Any]:
        kwargs = dict(api_key=config.api_key, timeout=config.timeout)
        if config.api_base:
            kwargs["api_base"] = config.api_base
        if config.max_tokens:
            kwargs["max_tokens"] = config.max_tokens
        return kwargs

    def reply_text(self, response) -> str:
        choices = getattr(response, "choices", None)
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        return getattr(message, "content", None) or ""

    def fragment_text(self, chunk) -> str:
        choices = getattr(chunk, "choices", None)
        if not choices:
            return ""
        delta = getattr(choices[0], "delta", None)
        content = getattr(delta, "content", None)
        return content if isinstance(content, str) else ""

    def stop_reason(self, response_or_chunk) -> Optional[str]:
        choices = getattr(response_or_chunk, "choices", None)
        if not choices:
            return None
        reason = getattr(choices[0], "finish_reason", None)
        return reason if isinstance(reason, str) else None


class OpenAIAdapter(ProviderAdapter):
    name = Provider.OPENAI
    env_var = "OPENAI_API_KEY"
    default_model = "gpt-4o-mini"
    litellm_prefix = "openai"


class GroqAdapter(ProviderAdapter):
    name = Provider.GROQ
    env_var = "GROQ_API_KEY"
    default_model = "llama-3.3-70b-versatile"
    litellm_prefix = "groq"


class AnthropicAdapter(ProviderAdapter):
    name = Provider.ANTHROPIC
    env_var = "ANTHROPIC_API_KEY"
    default_model = "claude-sonnet-4-20250514"
    litellm_prefix = "anthropic"
    alternating_roles = True
    default_max_tokens = 4096

    def completion_kwargs(self, config):
        kwargs = super().completion_kwargs(config)
        # The messages API rejects requests without max_tokens
        kwargs.setdefault("max_tokens", self.default_max_tokens)
        return kwargs


class GeminiAdapter(ProviderAdapter):
    name = Provider.GEMINI
    env_var = "GEMINI_API_KEY"
    default_model = "gemini-2.5-flash"
    litellm_prefix = "gemini"
    alternating_roles = True


ADAPTERS = {
    Provider.ANTHROPIC: AnthropicAdapter(),
    Provider.OPENAI: OpenAIAdapter(),
    Provider.GEMINI: GeminiAdapter(),
    Provider.GROQ: GroqAdapter(),
}


def get_adapter(provider) -> ProviderAdapter:
    return ADAPTERS[Provider(provider)]
