"""Retrieval service request/response schemas."""

from pydantic import AliasChoices, Field, field_validator

from .base import BaseSchema


class ContextChunk(BaseSchema):
    """A unit of retrieved text with its source reference."""

    id: str | None = Field(default=None, description="Originating chunk identifier")
    text: str = Field(default="", description="Raw chunk text")
    source_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("source_path", "sourcePath", "source"),
        description="Source document identifier",
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        if v is None or v == "":
            return None
        return str(v)


class RetrievalRequest(BaseSchema):
    """Body sent to a retrieval service candidate."""

    question: str
    limit: int = Field(..., ge=1)
    category_id: str


class RetrievalResponse(BaseSchema):
    """Well-formed retrieval service answer; zero chunks is still valid."""

    chunks: list[ContextChunk]


class RetrievedContext(BaseSchema):
    """Context selected for one request."""

    chunks: list[ContextChunk] = Field(default_factory=list)
    text: str = Field(default="", description="Formatted instructional context block")
    source_url: str | None = Field(default=None, description="Candidate that answered")

    @property
    def is_empty(self) -> bool:
        return not self.chunks
