"""Chat request and response schemas."""

from typing import Optional

from pydantic import BaseModel, Field


class Citation(BaseModel):
    """A note passage that was placed in the prompt context."""

    note_id: int = Field(..., description="Note the passage came from")
    title: str = Field(..., description="Title of the source note")
    heading: Optional[str] = Field(None, description="Section heading of the passage, if any")
    chunk_id: str = Field(..., description="Identifier of the cited chunk")
    similarity: float = Field(0.0, ge=0.0, le=1.0, description="Relevance of the passage to the question")


class ChatRequest(BaseModel):
    """Request for the chat endpoints."""

    question: str = Field(..., min_length=1, description="The question to answer")
    max_tokens: Optional[int] = Field(
        None,
        ge=256,
        le=32768,
        description="Token ceiling for the whole turn; split between context and answer",
    )
    temperature: Optional[float] = Field(
        None,
        ge=0.0,
        le=2.0,
        description="Override the default LLM temperature",
    )


class ChatResponse(BaseModel):
    """Answer to a chat question."""

    answer: str = Field(..., description="The generated or canned answer")
    citations: list[Citation] = Field(default_factory=list, description="Passages used as context")
    context_used: bool = Field(False, description="Whether any note content was found for the question")
    degraded: bool = Field(False, description="True when the answer is a canned fallback message")
    provider: Optional[str] = Field(None, description="Provider that produced the answer")
