"""Behavioural confidence estimation and SM-2 quality scoring.

Learners are never asked how sure they were. Confidence is inferred from
what they did on a single attempt: whether the answer was right, how long
it took relative to the question's expected time, how much help was
requested and how the question's difficulty compares to the learner's skill.
The resulting 1-5 confidence feeds :class:`QualityScorer`, which collapses
the attempt into the 0-5 recall quality consumed by the scheduler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Literal, Mapping, Optional

from engines.validation import (
    ValidationError,
    clamp,
    require_non_negative,
    require_range,
    round_int,
)

_LOGGER = logging.getLogger(__name__)

StudentType = Literal["struggler", "intermediate", "advanced"]
STUDENT_TYPES = ("struggler", "intermediate", "advanced")

DEFAULT_WEIGHTS: Dict[str, float] = {
    "correctness": 0.35,
    "time": 0.20,
    "hints": 0.15,
    "chat": 0.10,
    "history": 0.10,
    "difficulty": 0.10,
}


@dataclass(frozen=True)
class AttemptSignal:
    """Behavioural signals captured for one submitted answer."""

    is_correct: bool
    time_spent: float
    expected_time: float
    hints_used: int = 0
    chat_interactions: int = 0
    question_difficulty: float = 5
    skill_level: float = 5

    def __post_init__(self) -> None:
        require_non_negative("time_spent", self.time_spent)
        require_non_negative("expected_time", self.expected_time)
        require_non_negative("hints_used", self.hints_used)
        require_non_negative("chat_interactions", self.chat_interactions)
        require_range("question_difficulty", self.question_difficulty, 1, 10)
        require_range("skill_level", self.skill_level, 1, 10)

    @property
    def time_ratio(self) -> Optional[float]:
        if self.expected_time <= 0:
            return None
        return self.time_spent / self.expected_time


@dataclass(frozen=True)
class ConfidenceFactors:
    correctness: float
    time: float
    hints: float
    chat: float
    history: float
    difficulty: float

    def as_dict(self) -> Dict[str, float]:
        return {
            "correctness": self.correctness,
            "time": self.time,
            "hints": self.hints,
            "chat": self.chat,
            "history": self.history,
            "difficulty": self.difficulty,
        }


@dataclass(frozen=True)
class ConfidenceResult:
    """Outcome of a confidence estimate."""

    confidence: int
    score: float
    factors: ConfidenceFactors
    explanation: str


def coerce_student_type(value: Optional[str]) -> StudentType:
    if value is None:
        return "intermediate"
    text = str(value).strip().lower()
    if text not in STUDENT_TYPES:
        raise ValidationError(f"Unknown student type: {value!r}")
    return text  # type: ignore[return-value]


def determine_student_type(
    mastery_level: float,
    accuracy_rate: float,
    average_flow_score: float = 50,
) -> StudentType:
    """Classify a learner from mastery (0-100), accuracy (0-1) and flow (0-100)."""

    composite = mastery_level * 0.4 + accuracy_rate * 100 * 0.4 + average_flow_score * 0.2
    if composite < 40:
        return "struggler"
    if composite < 70:
        return "intermediate"
    return "advanced"


class ConfidenceEstimator:
    """Infer a 1-5 confidence score from one attempt's behaviour.

    Parameters
    ----------
    weights:
        Contribution of each sub-score to the composite. Must contain the
        six keys of :data:`DEFAULT_WEIGHTS` and sum to 1.0.
    struggler_boost:
        Multiplier applied to struggling learners' composite (capped at 1.0)
        so that small wins register as confidence.
    advanced_penalty:
        Multiplier applied for advanced learners, who should earn a 5.
    """

    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        struggler_boost: float = 1.2,
        advanced_penalty: float = 0.95,
    ) -> None:
        resolved = dict(DEFAULT_WEIGHTS if weights is None else weights)
        if set(resolved) != set(DEFAULT_WEIGHTS):
            raise ValueError(f"weights must define exactly {sorted(DEFAULT_WEIGHTS)}")
        if abs(sum(resolved.values()) - 1.0) > 1e-6:
            raise ValueError("weights must sum to 1.0")
        if struggler_boost < 1.0:
            raise ValueError("struggler_boost must be >= 1.0")
        if not 0.0 < advanced_penalty <= 1.0:
            raise ValueError("advanced_penalty must be in (0, 1]")

        self.weights = resolved
        self.struggler_boost = float(struggler_boost)
        self.advanced_penalty = float(advanced_penalty)

    # ----- public API --------------------------------------------------
    def estimate(
        self,
        signal: AttemptSignal,
        previous_accuracy: float = 0.0,
        student_type: Optional[str] = None,
    ) -> ConfidenceResult:
        require_range("previous_accuracy", previous_accuracy, 0, 1)
        kind = coerce_student_type(student_type)

        factors = ConfidenceFactors(
            correctness=1.0 if signal.is_correct else 0.2,
            time=self._time_factor(signal.time_ratio),
            hints=self._hints_factor(signal.hints_used),
            chat=self._chat_factor(signal.chat_interactions),
            history=float(previous_accuracy),
            difficulty=self._difficulty_factor(signal.skill_level - signal.question_difficulty),
        )
        values = factors.as_dict()
        score = sum(values[name] * weight for name, weight in self.weights.items())

        if kind == "struggler":
            score = min(1.0, score * self.struggler_boost)
        elif kind == "advanced":
            score = score * self.advanced_penalty

        confidence = int(clamp(round_int(score * 4 + 1), 1, 5))
        explanation = self._explain(confidence, signal.is_correct)
        _LOGGER.debug(
            "confidence=%s score=%.3f student_type=%s correct=%s",
            confidence,
            score,
            kind,
            signal.is_correct,
        )
        return ConfidenceResult(confidence, score, factors, explanation)

    # ----- helpers -----------------------------------------------------
    @staticmethod
    def _time_factor(ratio: Optional[float]) -> float:
        if ratio is None:
            return 0.5
        if ratio <= 0.5:
            return 1.0
        if ratio <= 1.0:
            return 0.8
        if ratio <= 1.5:
            return 0.5
        if ratio <= 2.0:
            return 0.3
        return 0.1

    @staticmethod
    def _hints_factor(hints: int) -> float:
        if hints <= 0:
            return 1.0
        if hints == 1:
            return 0.7
        if hints == 2:
            return 0.5
        if hints <= 4:
            return 0.3
        return 0.1

    @staticmethod
    def _chat_factor(interactions: int) -> float:
        if interactions <= 0:
            return 1.0
        if interactions <= 2:
            return 0.7
        if interactions <= 5:
            return 0.5
        return 0.3

    @staticmethod
    def _difficulty_factor(gap: float) -> float:
        if gap >= 3:
            return 1.0
        if gap >= 1:
            return 0.8
        if gap >= -1:
            return 0.6
        if gap >= -3:
            return 0.4
        return 0.2

    @staticmethod
    def _explain(confidence: int, is_correct: bool) -> str:
        if confidence >= 4:
            if is_correct:
                return "Strong performance with good speed and minimal assistance."
            return "Good effort despite the incorrect answer."
        if confidence >= 3:
            return "Solid attempt with room for improvement."
        return "This topic may need more practice."


class QualityScorer:
    """Collapse an attempt into the 0-5 recall quality used by SM-2.

    0 complete blackout, 1 recognised but not recalled, 2 remembered after
    the explanation, 3 correct with difficulty, 4 correct with hesitation,
    5 perfect recall.
    """

    def __init__(self, blackout_threshold: int = 5, recognised_threshold: int = 2) -> None:
        if recognised_threshold >= blackout_threshold:
            raise ValueError("recognised_threshold must be lower than blackout_threshold")
        self.blackout_threshold = blackout_threshold
        self.recognised_threshold = recognised_threshold

    def score(self, signal: AttemptSignal, confidence: int) -> int:
        require_range("confidence", confidence, 1, 5)
        if not signal.is_correct:
            if (
                signal.hints_used > self.blackout_threshold
                or signal.chat_interactions > self.blackout_threshold
            ):
                return 0
            if signal.hints_used > self.recognised_threshold:
                return 1
            return 2
        if confidence >= 5:
            return 5
        if confidence >= 4:
            return 4
        return 3


__all__ = [
    "StudentType",
    "STUDENT_TYPES",
    "DEFAULT_WEIGHTS",
    "AttemptSignal",
    "ConfidenceFactors",
    "ConfidenceResult",
    "ConfidenceEstimator",
    "QualityScorer",
    "coerce_student_type",
    "determine_student_type",
]
