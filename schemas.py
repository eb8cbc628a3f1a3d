"""Pydantic schemas for engine boundary payloads and helper utilities."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Mapping, Type, TypeVar

from pydantic import AfterValidator, BaseModel, Field, ValidationError, ValidationInfo, field_validator

from engines.confidence import AttemptSignal
from engines.validation import ValidationError as EngineValidationError
from engines.validation import clamp, round_int

__all__ = [
    "AttemptSignalPayload",
    "GuidedSessionSummary",
    "ConversationInsight",
    "LearningSessionSummary",
    "ExplanationEvaluation",
    "RemoteEvaluationEnvelope",
    "parse_model",
    "parse_json_safe",
    "dump_evaluation",
]


class AttemptSignalPayload(BaseModel):
    """Raw attempt telemetry as submitted by a client."""

    is_correct: bool = Field(description="Whether the submitted answer was correct.")
    time_spent: float = Field(ge=0, description="Seconds spent on the question.")
    expected_time: float = Field(default=60, ge=0, description="Expected seconds for this question.")
    hints_used: int = Field(default=0, ge=0)
    chat_interactions: int = Field(default=0, ge=0, description="Tutor chat turns during the attempt.")
    question_difficulty: float = Field(default=5, ge=1, le=10)
    skill_level: float = Field(default=5, ge=1, le=10)

    def to_signal(self) -> AttemptSignal:
        return AttemptSignal(**self.model_dump())


def _assume_utc(value: datetime) -> datetime:
    """Naive timestamps are read as UTC so they compare with engine clocks."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_assume_utc)]


class GuidedSessionSummary(BaseModel):
    """Outcome of one guided tutoring session on a topic."""

    subject: str
    topic: str
    questions_attempted: int = Field(default=0, ge=0)
    questions_correct: int = Field(default=0, ge=0)
    concepts_covered: List[str] = Field(default_factory=list)
    concepts_needing_work: List[str] = Field(
        default_factory=list,
        description="Concepts the tutor flagged for remediation during the session.",
    )
    engagement_score: float = Field(
        default=0,
        ge=0,
        le=100,
        description="Session engagement used as a rough mastery proxy.",
    )
    started_at: UtcDatetime | None = None
    completed_at: UtcDatetime | None = None

    @field_validator("questions_correct")
    @classmethod
    def _correct_not_above_attempted(cls, value: int, info: ValidationInfo) -> int:
        attempted = info.data.get("questions_attempted", 0)
        if value > attempted:
            raise ValueError("questions_correct cannot exceed questions_attempted")
        return value


class ConversationInsight(BaseModel):
    """Struggles observed in free-form tutor conversations."""

    subject: str
    topic: str
    struggled_concepts: List[str] = Field(default_factory=list)
    error_patterns: List[str] = Field(default_factory=list)
    observed_at: UtcDatetime | None = None


class LearningSessionSummary(BaseModel):
    """Completed learning session used for continuity and profile statistics."""

    subject: str
    topics: List[str] = Field(default_factory=list)
    duration_minutes: float = Field(default=0, ge=0)
    flow_score: float | None = Field(default=None, ge=0, le=100)
    started_at: UtcDatetime
    completed_at: UtcDatetime | None = None


def _clamp_score(value: float) -> int:
    return int(clamp(round_int(value), 0, 100))


class ExplanationEvaluation(BaseModel):
    """Evaluation of a learner's free-text explanation of a concept."""

    clarity: int = Field(ge=0, le=100)
    completeness: int = Field(ge=0, le=100)
    accuracy: int = Field(ge=0, le=100)
    bloom_level: int = Field(ge=1, le=6, description="Bloom level demonstrated by the explanation.")
    feedback: str = "Good effort! Keep practicing."
    jargon_terms: List[str] = Field(default_factory=list)
    misconceptions: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)
    gaps: List[str] = Field(default_factory=list)
    suggested_refinements: List[str] = Field(default_factory=list)
    source: Literal["remote", "local"] = "local"
    evaluated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def overall_score(self) -> int:
        return round_int((self.clarity + self.completeness + self.accuracy) / 3)

    @property
    def should_refine(self) -> bool:
        return min(self.clarity, self.completeness, self.accuracy) < 70


class _RemoteEvaluation(BaseModel):
    clarity: float = Field(allow_inf_nan=False)
    completeness: float = Field(allow_inf_nan=False)
    accuracy: float = Field(allow_inf_nan=False)
    bloom_level: float = Field(alias="bloomLevel", allow_inf_nan=False)
    feedback: str | None = None
    jargon_terms: List[str] | None = Field(default=None, alias="jargonTerms")
    misconceptions: List[str] | None = None
    strengths: List[str] | None = None
    gaps: List[str] | None = None
    suggested_refinements: List[str] | None = Field(default=None, alias="suggestedRefinements")

    model_config = {"populate_by_name": True, "extra": "ignore"}


class _RemoteData(BaseModel):
    evaluation: _RemoteEvaluation

    model_config = {"extra": "ignore"}


class RemoteEvaluationEnvelope(BaseModel):
    """Response body of the AI backend's explanation evaluation endpoint."""

    success: bool
    data: _RemoteData | None = None
    error: str | None = None

    model_config = {"extra": "ignore"}

    def to_evaluation(self) -> ExplanationEvaluation | None:
        if not self.success or self.data is None:
            return None
        raw = self.data.evaluation
        return ExplanationEvaluation(
            clarity=_clamp_score(raw.clarity),
            completeness=_clamp_score(raw.completeness),
            accuracy=_clamp_score(raw.accuracy),
            bloom_level=int(clamp(round_int(raw.bloom_level), 1, 6)),
            feedback=raw.feedback or "Good effort! Keep practicing.",
            jargon_terms=raw.jargon_terms or [],
            misconceptions=raw.misconceptions or [],
            strengths=raw.strengths or [],
            gaps=raw.gaps or [],
            suggested_refinements=raw.suggested_refinements or [],
            source="remote",
        )


_T = TypeVar("_T", bound=BaseModel)


def parse_model(model: Type[_T], data: Mapping[str, Any]) -> _T:
    """Validate ``data`` into ``model``, reporting failures as engine validation errors."""

    try:
        return model.model_validate(dict(data))
    except ValidationError as exc:
        raise EngineValidationError(f"Invalid {model.__name__}: {exc}") from exc


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        for idx in range(start, len(text)):
            char = text[idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except json.JSONDecodeError:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def parse_json_safe(text: str, model: Type[_T]) -> _T:
    """Parse ``text`` into ``model``, extracting the first JSON object if needed."""

    try:
        return model.model_validate_json(text)
    except ValidationError as first_error:
        try:
            snippet, _, _ = _find_first_json_object(text)
        except ValueError:
            raise first_error
        return model.model_validate_json(snippet)


def dump_evaluation(evaluation: ExplanationEvaluation) -> Dict[str, Any]:
    payload = evaluation.model_dump(mode="json")
    payload["overall_score"] = evaluation.overall_score
    payload["should_refine"] = evaluation.should_refine
    return payload
