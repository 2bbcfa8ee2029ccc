"""Chat service tests."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from litellm.exceptions import BadRequestError

from notewise.indexing.chunking import Chunk
from notewise.llm import LLMClient, LLMError, LLMQuotaExceededError, LLMRateLimitError
from notewise.qa import AssembledContext, ChatRequest, ChatService, ContextAssembler, ScoredChunk
from notewise.qa.service import ERROR_MESSAGE, QUOTA_MESSAGE, build_prompt, canned_increments


def make_llm(provider: str, answer: str = "An answer.", error: Exception | None = None, tokens=None):
    llm = MagicMock()
    llm.provider = provider
    llm.generate = AsyncMock(return_value=answer, side_effect=error)

    async def stream(**kwargs):
        if error is not None:
            raise error
        for token in tokens or ["An ", "answer."]:
            yield token

    llm.generate_stream = MagicMock(side_effect=stream)
    return llm


def make_retriever(chunks: list[ScoredChunk] | None = None):
    retriever = MagicMock()
    retriever.retrieve = AsyncMock(return_value=chunks or [])
    return retriever


def scored(content: str = "Ship the roadmap in May.") -> ScoredChunk:
    chunk = Chunk(id="1_chunk_0", note_id=1, index=0, content=content, heading="Goals")
    return ScoredChunk(chunk=chunk, note_title="Roadmap", similarity=0.8)


def service(temp_db, llm, fallback=None, chunks=None) -> ChatService:
    return ChatService(
        temp_db,
        llm,
        embeddings=MagicMock(),
        fallback_llm=fallback,
        retriever=make_retriever(chunks),
        assembler=ContextAssembler(separator_tokens=20),
    )


async def collect(generator) -> list[str]:
    return [piece async for piece in generator]


# =============================================================================
# Prompt helpers
# =============================================================================


def test_prompt_without_context_says_so():
    prompt = build_prompt("What is due?", AssembledContext())

    assert prompt.startswith("No relevant context was found in your notes")
    assert prompt.endswith("Question: What is due?")


def test_prompt_with_context_includes_sections():
    context = ContextAssembler(separator_tokens=20).assemble([scored()], budget=1000)

    prompt = build_prompt("What is due?", context)

    assert "--- Roadmap > Goals ---" in prompt
    assert prompt.endswith("Question: What is due?")


def test_canned_increments_rebuild_the_message():
    pieces = canned_increments(QUOTA_MESSAGE)

    assert "".join(pieces) == QUOTA_MESSAGE
    assert all(len(piece.split()) <= 3 for piece in pieces)


# =============================================================================
# Answers
# =============================================================================


async def test_answer_with_citations(temp_db):
    llm = make_llm("openai")

    response = await service(temp_db, llm, chunks=[scored()]).answer("alice", ChatRequest(question="What is due?"))

    assert response.answer == "An answer."
    assert response.provider == "openai"
    assert response.context_used
    assert not response.degraded
    assert [c.chunk_id for c in response.citations] == ["1_chunk_0"]
    kwargs = llm.generate.await_args.kwargs
    assert "--- Roadmap > Goals ---" in kwargs["prompt"]


async def test_budgets_follow_max_tokens(temp_db):
    llm = make_llm("openai")

    await service(temp_db, llm).answer("alice", ChatRequest(question="Q?", max_tokens=1000))

    assert llm.generate.await_args.kwargs["max_tokens"] == 300


async def test_answer_without_context(temp_db):
    llm = make_llm("openai")

    response = await service(temp_db, llm).answer("alice", ChatRequest(question="Anything?"))

    assert not response.context_used
    assert response.citations == []
    assert llm.generate.await_args.kwargs["prompt"].startswith("No relevant context")


async def test_quota_switches_to_fallback_for_good(temp_db):
    primary = make_llm("openai", error=LLMQuotaExceededError("insufficient_quota"))
    fallback = make_llm("anthropic", answer="Fallback answer.")
    chat = service(temp_db, primary, fallback=fallback)

    first = await chat.answer("alice", ChatRequest(question="Q?"))
    second = await chat.answer("alice", ChatRequest(question="Q again?"))

    assert first.answer == "Fallback answer."
    assert first.provider == "anthropic"
    assert second.provider == "anthropic"
    assert primary.generate.await_count == 1
    assert fallback.generate.await_count == 2
    assert chat.provider == "anthropic"


async def test_quota_without_fallback_is_degraded(temp_db):
    primary = make_llm("openai", error=LLMRateLimitError("slow down"))

    response = await service(temp_db, primary, chunks=[scored()]).answer("alice", ChatRequest(question="Q?"))

    assert response.answer == QUOTA_MESSAGE
    assert response.degraded
    assert response.provider is None
    assert len(response.citations) == 1


async def test_fallback_failure_is_degraded(temp_db):
    primary = make_llm("openai", error=LLMRateLimitError("slow down"))
    fallback = make_llm("anthropic", error=LLMError("boom"))

    response = await service(temp_db, primary, fallback=fallback).answer("alice", ChatRequest(question="Q?"))

    assert response.answer == QUOTA_MESSAGE
    assert response.degraded


async def test_other_errors_give_an_apology(temp_db):
    primary = make_llm("openai", error=LLMError("server exploded"))
    fallback = make_llm("anthropic")

    response = await service(temp_db, primary, fallback=fallback).answer("alice", ChatRequest(question="Q?"))

    assert response.answer == ERROR_MESSAGE
    fallback.generate.assert_not_awaited()


async def test_rejected_request_from_litellm_gives_an_apology(temp_db):
    rejected = BadRequestError(message="bad input", model="gpt-4o-mini", llm_provider="openai")
    chat = service(temp_db, LLMClient("openai", "gpt-4o-mini"), chunks=[scored()])

    with patch("notewise.llm.client.acompletion", AsyncMock(side_effect=rejected)):
        response = await chat.answer("alice", ChatRequest(question="Q?"))
        _, stream = await chat.stream("alice", ChatRequest(question="Q?"))
        pieces = await collect(stream)

    assert response.answer == ERROR_MESSAGE
    assert response.degraded
    assert "".join(pieces) == ERROR_MESSAGE


# =============================================================================
# Streaming
# =============================================================================


async def test_stream_yields_provider_tokens(temp_db):
    llm = make_llm("openai", tokens=["Hel", "lo"])

    context, tokens = await service(temp_db, llm, chunks=[scored()]).stream("alice", ChatRequest(question="Q?"))

    assert await collect(tokens) == ["Hel", "lo"]
    assert len(context.citations) == 1


async def test_stream_falls_back_before_first_token(temp_db):
    primary = make_llm("openai", error=LLMQuotaExceededError("insufficient_quota"))
    fallback = make_llm("anthropic", tokens=["From ", "fallback"])

    _, tokens = await service(temp_db, primary, fallback=fallback).stream("alice", ChatRequest(question="Q?"))

    assert await collect(tokens) == ["From ", "fallback"]


async def test_stream_quota_without_fallback_streams_canned_message(temp_db):
    primary = make_llm("openai", error=LLMRateLimitError("slow down"))

    _, tokens = await service(temp_db, primary).stream("alice", ChatRequest(question="Q?"))
    pieces = await collect(tokens)

    assert "".join(pieces) == QUOTA_MESSAGE
    assert pieces == canned_increments(QUOTA_MESSAGE)


async def test_stream_error_after_first_token_stops_quietly(temp_db):
    llm = make_llm("openai")

    async def cut_off(**kwargs):
        yield "Partial"
        raise LLMRateLimitError("slow down")

    llm.generate_stream = MagicMock(side_effect=cut_off)
    fallback = make_llm("anthropic")

    _, tokens = await service(temp_db, llm, fallback=fallback).stream("alice", ChatRequest(question="Q?"))

    assert await collect(tokens) == ["Partial"]
    fallback.generate_stream.assert_not_called()


def test_request_validation():
    with pytest.raises(ValueError):
        ChatRequest(question="")
    with pytest.raises(ValueError):
        ChatRequest(question="Q?", max_tokens=10)
