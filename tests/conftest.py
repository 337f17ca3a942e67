from unittest.mock import AsyncMock, MagicMock

import pytest

from tllm.conversation import Message, Role
from tllm.store import ConversationStore

API_KEY_VARS = ["ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GEMINI_API_KEY", "GROQ_API_KEY"]


# Mock Streaming Fixtures
@pytest.fixture
def mock_delta_class():
    """
    Factory fixture for MockDelta class.

    Returns a class that can be instantiated to create mock delta objects
    for streaming responses.

    Example:
        def test_something(mock_delta_class):
            MockDelta = mock_delta_class
            delta = MockDelta(content="test content")
    """

    class MockDelta:
        def __init__(self, content=None):
            if content is not None:
                self.content = content

    return MockDelta


@pytest.fixture
def mock_streaming_chunk_class(mock_delta_class):
    """
    Factory fixture for MockStreamingChunk class.

    Depends on mock_delta_class fixture.

    Example:
        def test_something(mock_streaming_chunk_class):
            MockStreamingChunk = mock_streaming_chunk_class
            chunk = MockStreamingChunk(content="test", finish_reason="stop")
    """

    class MockStreamingChunk:
        def __init__(self, content=None, finish_reason=None):
            self.choices = [MagicMock()]
            self.choices[0].delta = mock_delta_class(content)
            self.choices[0].finish_reason = finish_reason

    return MockStreamingChunk


@pytest.fixture
def make_stream(mock_streaming_chunk_class):
    """
    Factory for async chunk streams like the ones litellm.acompletion(stream=True) returns.

    If ``error`` is given it is raised after the fragments instead of the
    closing finish_reason chunk.
    """

    def factory(fragments, error=None, finish_reason="stop"):
        async def stream():
            for text in fragments:
                yield mock_streaming_chunk_class(content=text)
            if error is not None:
                raise error
            yield mock_streaming_chunk_class(finish_reason=finish_reason)

        return stream()

    return factory


@pytest.fixture
def make_completion():
    """Factory for objects shaped like a non-streaming litellm completion."""

    class MockCompletion:
        def __init__(self, content, finish_reason="stop"):
            self.choices = [MagicMock()]
            self.choices[0].message.content = content
            self.choices[0].finish_reason = finish_reason

    return MockCompletion


# Environment Fixtures
@pytest.fixture
def api_keys(monkeypatch):
    """Set a dummy key for every provider."""
    for var in API_KEY_VARS:
        monkeypatch.setenv(var, f"test-{var.lower()}")


@pytest.fixture
def no_api_keys(monkeypatch):
    for var in API_KEY_VARS:
        monkeypatch.delenv(var, raising=False)


# Store Fixtures
@pytest.fixture
def store(tmp_path):
    store = ConversationStore(tmp_path / "tllm.sqlite")
    yield store
    store.close()


@pytest.fixture
def mock_io():
    io = MagicMock()
    io.confirm_ask = AsyncMock(return_value=False)
    return io


@pytest.fixture
def history():
    return [
        Message(Role.SYSTEM, "You are terse."),
        Message(Role.USER, "hello"),
    ]
