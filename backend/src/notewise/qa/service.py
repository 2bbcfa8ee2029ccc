"""Question answering over an owner's notes."""

import asyncio
import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Optional

from notewise.config import settings_or_defaults
from notewise.db.connection import Database
from notewise.indexing.store import IndexStore
from notewise.llm.client import LLMClient, LLMError, LLMRateLimitError
from notewise.llm.embeddings import EmbeddingSession
from notewise.qa.context import AssembledContext, ChunkRetriever, ContextAssembler
from notewise.qa.schemas import ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a helpful assistant answering questions about the user's personal notes.
Ground your answer in the provided note excerpts when they are relevant and name the notes you used.
If the notes do not cover the question, say so before answering from general knowledge."""

QUOTA_MESSAGE = (
    "The AI provider is over its usage limits right now, so I can't write an answer. "
    "The notes most related to your question are listed in the citations."
)
ERROR_MESSAGE = "Sorry, I couldn't generate an answer right now. Please try again in a moment."

# Canned messages are streamed a few words at a time, like a live answer
CANNED_WORDS_PER_INCREMENT = 3


def build_prompt(question: str, context: AssembledContext) -> str:
    """User prompt for a question and its assembled context."""
    if context.is_empty:
        return (
            "No relevant context was found in your notes for this question.\n\n"
            f"Question: {question}"
        )
    return f"Context from your notes:\n\n{context.text}Question: {question}"


def canned_increments(message: str, words_per_increment: int = CANNED_WORDS_PER_INCREMENT) -> list[str]:
    """Split a message into word groups whose concatenation is the message."""
    words = message.split(" ")
    increments = []
    for i in range(0, len(words), words_per_increment):
        piece = " ".join(words[i : i + words_per_increment])
        if i + words_per_increment < len(words):
            piece += " "
        increments.append(piece)
    return increments


@dataclass
class _Turn:
    prompt: str
    context: AssembledContext
    temperature: Optional[float]
    completion_tokens: int


class ChatService:
    """Answers questions with an LLM, grounded in the owner's most relevant chunks.

    Provider failures never surface as errors. A rate limit or exhausted
    quota moves the service to the fallback provider, once per service
    lifetime; when there is no fallback, or it fails as well, the caller
    gets a canned degraded-mode message. Any other provider error yields a
    canned apology.
    """

    def __init__(
        self,
        db: Database,
        llm: LLMClient,
        embeddings: EmbeddingSession,
        fallback_llm: Optional[LLMClient] = None,
        retriever: Optional[ChunkRetriever] = None,
        assembler: Optional[ContextAssembler] = None,
    ) -> None:
        """Initialize chat service.

        Args:
            db: Database connection.
            llm: Primary completion client.
            embeddings: Session-scoped embedding availability.
            fallback_llm: Client to switch to when the primary hits its quota.
            retriever: Chunk retriever.
            assembler: Context assembler.
        """
        self._llm = llm
        self._fallback = fallback_llm
        self._retriever = retriever or ChunkRetriever(IndexStore(db), embeddings)
        self._assembler = assembler or ContextAssembler()
        settings = settings_or_defaults()
        self._llm_config = settings.llm
        self._context_config = settings.context

    @property
    def provider(self) -> str:
        """Provider currently answering questions."""
        return self._llm.provider

    async def _prepare(self, owner_id: str, request: ChatRequest) -> _Turn:
        max_tokens = request.max_tokens or self._llm_config.max_tokens
        context_budget = int(max_tokens * self._context_config.context_ratio)
        completion_tokens = int(max_tokens * self._llm_config.completion_ratio)

        chunks = await self._retriever.retrieve(owner_id, request.question)
        context = self._assembler.assemble(chunks, budget=context_budget)
        logger.info(
            f"Chat context for {owner_id}: {len(context.citations)} of {len(chunks)} chunks, "
            f"{context.token_count}/{context_budget} tokens"
        )
        return _Turn(
            prompt=build_prompt(request.question, context),
            context=context,
            temperature=request.temperature,
            completion_tokens=completion_tokens,
        )

    def _switch_to_fallback(self, error: LLMRateLimitError) -> bool:
        """Make the fallback provider the active one. False if there is none left."""
        if self._fallback is None:
            logger.warning(f"Provider {self._llm.provider} is rate limited and no fallback is configured: {error}")
            return False
        logger.warning(
            f"Provider {self._llm.provider} is rate limited, switching to {self._fallback.provider}: {error}"
        )
        self._llm, self._fallback = self._fallback, None
        return True

    async def _complete(self, turn: _Turn) -> str:
        return await self._llm.generate(
            prompt=turn.prompt,
            system_prompt=SYSTEM_PROMPT,
            temperature=turn.temperature,
            max_tokens=turn.completion_tokens,
        )

    async def answer(self, owner_id: str, request: ChatRequest) -> ChatResponse:
        """Answer a question in one completion call.

        Args:
            owner_id: Owner whose notes ground the answer.
            request: The question and optional overrides.

        Returns:
            The answer with citations. degraded is set when the answer is canned.
        """
        turn = await self._prepare(owner_id, request)

        def respond(answer: str, degraded: bool = False) -> ChatResponse:
            return ChatResponse(
                answer=answer,
                citations=turn.context.citations,
                context_used=not turn.context.is_empty,
                degraded=degraded,
                provider=None if degraded else self._llm.provider,
            )

        try:
            return respond(await self._complete(turn))
        except LLMRateLimitError as e:
            if not self._switch_to_fallback(e):
                return respond(QUOTA_MESSAGE, degraded=True)
        except LLMError as e:
            logger.error(f"Chat completion failed: {e}")
            return respond(ERROR_MESSAGE, degraded=True)

        try:
            return respond(await self._complete(turn))
        except LLMError as e:
            logger.error(f"Fallback provider {self._llm.provider} failed: {e}")
            return respond(QUOTA_MESSAGE, degraded=True)

    async def _stream_from_provider(self, turn: _Turn) -> AsyncGenerator[str, None]:
        async for token in self._llm.generate_stream(
            prompt=turn.prompt,
            system_prompt=SYSTEM_PROMPT,
            temperature=turn.temperature,
            max_tokens=turn.completion_tokens,
        ):
            yield token

    @staticmethod
    async def _stream_canned(message: str) -> AsyncGenerator[str, None]:
        for piece in canned_increments(message):
            yield piece
            await asyncio.sleep(0)

    async def stream(
        self, owner_id: str, request: ChatRequest
    ) -> tuple[AssembledContext, AsyncGenerator[str, None]]:
        """Prepare a streamed answer.

        Context is assembled up front so callers can send citations before or
        after the text.

        Returns:
            The assembled context and an async generator of text increments.
            Stopping iteration early cancels the provider stream.
        """
        turn = await self._prepare(owner_id, request)
        return turn.context, self._stream_turn(turn)

    async def _stream_turn(self, turn: _Turn) -> AsyncGenerator[str, None]:
        emitted = False
        try:
            async for token in self._stream_from_provider(turn):
                emitted = True
                yield token
            return
        except LLMRateLimitError as e:
            if emitted:
                logger.warning(f"Provider stream was cut off by a rate limit: {e}")
                return
            if not self._switch_to_fallback(e):
                async for piece in self._stream_canned(QUOTA_MESSAGE):
                    yield piece
                return
        except LLMError as e:
            logger.error(f"Chat stream failed: {e}")
            if not emitted:
                async for piece in self._stream_canned(ERROR_MESSAGE):
                    yield piece
            return

        try:
            async for token in self._stream_from_provider(turn):
                emitted = True
                yield token
        except LLMError as e:
            logger.error(f"Fallback provider {self._llm.provider} stream failed: {e}")
            if not emitted:
                async for piece in self._stream_canned(QUOTA_MESSAGE):
                    yield piece
