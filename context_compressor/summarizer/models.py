"""Data models for segment summarization replies."""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import AliasChoices, BaseModel, Field, field_validator

from context_compressor import constants


class SummarizationError(Exception):
    """Raised when the language-generation collaborator fails."""


class SummaryPayload(BaseModel):
    """Structured reply expected from the language-generation service.

    camelCase keys are accepted too since some models echo the JSON style of
    their training data.
    """

    summary: str
    key_topics: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("key_topics", "keyTopics"),
    )
    important_decisions: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("important_decisions", "importantDecisions"),
    )
    relevance_score: float = Field(
        default=constants.DEFAULT_REPORTED_RELEVANCE,
        ge=0.0,
        le=1.0,
        validation_alias=AliasChoices("relevance_score", "relevanceScore"),
    )

    @field_validator("summary")
    @classmethod
    def _not_empty(cls, v: str) -> str:
        if not v or not str(v).strip():
            msg = "field must be non-empty"
            raise ValueError(msg)
        return str(v).strip()

    @field_validator("key_topics", "important_decisions", mode="before")
    @classmethod
    def _none_as_empty(cls, v: object) -> object:
        return [] if v is None else v

    @field_validator("relevance_score", mode="before")
    @classmethod
    def _clamp_score(cls, v: object) -> object:
        if v is None:
            return constants.DEFAULT_REPORTED_RELEVANCE
        if isinstance(v, bool):
            return v
        try:
            score = float(v)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return v
        # Quoted numbers are clamped too; NaN falls to the floor.
        return min(1.0, max(0.0, score))


@dataclass(frozen=True)
class ParsedSummary:
    """A reply that matched :class:`SummaryPayload`."""

    payload: SummaryPayload


@dataclass(frozen=True)
class ParseFailure:
    """A reply that could not be interpreted."""

    reason: str
    raw: str


ParseResult = ParsedSummary | ParseFailure
