"""LLM and embedding client tests."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    BadRequestError,
    BudgetExceededError,
    ContextWindowExceededError,
    InternalServerError,
    NotFoundError,
    RateLimitError,
    ServiceUnavailableError,
)

from notewise.llm import (
    EmbeddingClient,
    EmbeddingSession,
    LLMAuthenticationError,
    LLMClient,
    LLMConnectionError,
    LLMError,
    LLMQuotaExceededError,
    LLMRateLimitError,
)
from notewise.llm.client import model_string, translate_error


def completion(text: str):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def stream_of(*pieces: str):
    async def chunks():
        for piece in pieces:
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=piece))])

    return chunks()


def rate_limit(message: str) -> RateLimitError:
    return RateLimitError(message=message, llm_provider="openai", model="gpt-4o-mini")


async def collect_stream(client: LLMClient) -> list[str]:
    return [piece async for piece in client.generate_stream("Hello?")]


# =============================================================================
# Error translation and model strings
# =============================================================================


def test_model_string_per_provider():
    assert model_string("openai", "gpt-4o-mini") == "gpt-4o-mini"
    assert model_string("ollama", "llama3.2") == "ollama/llama3.2"
    assert model_string("google", "gemini-1.5-flash") == "gemini/gemini-1.5-flash"
    assert model_string("anthropic", "claude-3-5-haiku-latest") == "anthropic/claude-3-5-haiku-latest"
    assert model_string("ollama", "ollama/nomic-embed-text") == "ollama/nomic-embed-text"


def test_quota_errors_are_told_apart_from_rate_limits():
    assert type(translate_error(rate_limit("You exceeded your current quota"))) is LLMQuotaExceededError
    assert type(translate_error(rate_limit("Too many requests"))) is LLMRateLimitError


def test_auth_and_connection_errors():
    auth = AuthenticationError(message="bad key", llm_provider="openai", model="gpt-4o-mini")
    connection = APIConnectionError(message="refused", llm_provider="ollama", model="llama3.2")

    assert isinstance(translate_error(auth), LLMAuthenticationError)
    assert isinstance(translate_error(connection), LLMConnectionError)
    assert type(translate_error(RuntimeError("odd"))) is LLMError


@pytest.mark.parametrize(
    "error",
    [
        ServiceUnavailableError(message="503", llm_provider="openai", model="gpt-4o-mini"),
        InternalServerError(message="500", llm_provider="openai", model="gpt-4o-mini"),
    ],
)
def test_server_side_failures_count_as_unavailable(error):
    assert isinstance(translate_error(error), LLMConnectionError)


@pytest.mark.parametrize(
    "error",
    [
        NotFoundError(message="model not found", model="gpt-x", llm_provider="openai"),
        BadRequestError(message="bad input", model="gpt-4o-mini", llm_provider="openai"),
        ContextWindowExceededError(message="too long", model="gpt-4o-mini", llm_provider="openai"),
        BudgetExceededError(current_cost=2.0, max_budget=1.0),
    ],
)
async def test_every_provider_failure_becomes_an_llm_error(error):
    client = LLMClient("openai", "gpt-4o-mini")

    with patch("notewise.llm.client.acompletion", AsyncMock(side_effect=error)):
        with pytest.raises(LLMError):
            await client.generate("Hello?")

    with patch("notewise.llm.client.acompletion", AsyncMock(side_effect=error)):
        with pytest.raises(LLMError):
            await collect_stream(client)


# =============================================================================
# Completion client
# =============================================================================


async def test_generate_sends_messages_and_logs(tmp_path):
    log_path = tmp_path / "logs" / "queries.jsonl"
    client = LLMClient("ollama", "llama3.2", endpoint="http://localhost:11434", log_path=log_path)

    with patch("notewise.llm.client.acompletion", AsyncMock(return_value=completion("Hi there"))) as mock:
        answer = await client.generate("Hello?", system_prompt="Be brief.", temperature=0.2, max_tokens=300)

    assert answer == "Hi there"
    kwargs = mock.await_args.kwargs
    assert kwargs["model"] == "ollama/llama3.2"
    assert kwargs["api_base"] == "http://localhost:11434"
    assert [m["role"] for m in kwargs["messages"]] == ["system", "user"]
    entry = json.loads(log_path.read_text().strip())
    assert entry["response"] == "Hi there"
    assert entry["error"] is None


async def test_generate_translates_provider_errors():
    client = LLMClient("openai", "gpt-4o-mini")

    with patch("notewise.llm.client.acompletion", AsyncMock(side_effect=rate_limit("insufficient_quota"))):
        with pytest.raises(LLMQuotaExceededError):
            await client.generate("Hello?")


async def test_generate_stream_yields_increments():
    client = LLMClient("openai", "gpt-4o-mini")

    with patch("notewise.llm.client.acompletion", AsyncMock(return_value=stream_of("Hel", None, "lo"))) as mock:
        pieces = [piece async for piece in client.generate_stream("Hello?")]

    assert pieces == ["Hel", "lo"]
    assert mock.await_args.kwargs["stream"] is True


# =============================================================================
# Embeddings
# =============================================================================


def embedding_response(count: int):
    return SimpleNamespace(data=[{"embedding": [float(i), 1.0]} for i in range(count)])


async def test_embedding_client_batches_in_order():
    client = EmbeddingClient("openai", "text-embedding-3-small", batch_size=2)

    async def respond(**kwargs):
        return embedding_response(len(kwargs["input"]))

    with patch("notewise.llm.embeddings.aembedding", AsyncMock(side_effect=respond)) as mock:
        vectors = await client.embed(["a", "b", "c"])

    assert len(vectors) == 3
    assert mock.await_count == 2
    assert client.model_id == "text-embedding-3-small"


async def test_embedding_count_mismatch_is_an_error():
    client = EmbeddingClient("openai", "text-embedding-3-small")

    with patch("notewise.llm.embeddings.aembedding", AsyncMock(return_value=embedding_response(1))):
        with pytest.raises(LLMError):
            await client.embed(["a", "b"])


async def test_session_disables_after_first_failure():
    client = EmbeddingClient("openai", "text-embedding-3-small")
    session = EmbeddingSession(client)

    with patch("notewise.llm.embeddings.aembedding", AsyncMock(side_effect=rate_limit("slow down"))) as mock:
        first = await session.embed(["a", "b"])
        second = await session.embed_query("c")

    assert first == [[], []]
    assert second == []
    assert mock.await_count == 1
    assert not session.available
    assert "Rate limit" in session.disabled_reason


async def test_session_without_client():
    session = EmbeddingSession()

    assert not session.available
    assert session.model_id is None
    assert await session.embed(["a"]) == [[]]


async def test_session_disables_on_unavailable_service():
    session = EmbeddingSession(EmbeddingClient("openai", "text-embedding-3-small"))
    outage = ServiceUnavailableError(message="503", llm_provider="openai", model="text-embedding-3-small")

    with patch("notewise.llm.embeddings.aembedding", AsyncMock(side_effect=outage)):
        vectors = await session.embed(["a"])

    assert vectors == [[]]
    assert not session.available
