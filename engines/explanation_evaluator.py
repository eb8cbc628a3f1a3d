"""Feynman-style explanation evaluators.

Two strategies share the :class:`engines.base.BaseEvaluator` interface:
:class:`RemoteExplanationEvaluator` asks the AI backend, and
:class:`LocalHeuristicEvaluator` scores the text offline from jargon,
key-point coverage and wording cues. :class:`FallbackExplanationEvaluator`
tries them in order so a remote outage never reaches the learner.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import requests
from pydantic import ValidationError as PydanticValidationError

import env_validation
from engines.base import BaseEvaluator
from engines.validation import ValidationError, clamp, require_range, round_int
from schemas import ExplanationEvaluation, RemoteEvaluationEnvelope, parse_json_safe

_LOGGER = logging.getLogger(__name__)

MATH_JARGON: Tuple[str, ...] = (
    "coefficient", "variable", "exponent", "polynomial", "quadratic",
    "derivative", "integral", "logarithm", "asymptote", "domain",
    "range", "function", "slope", "intercept", "parabola",
)

READING_JARGON: Tuple[str, ...] = (
    "inference", "rhetoric", "thesis", "antithesis", "synthesis",
    "connotation", "denotation", "ethos", "pathos", "logos",
)

SIMPLE_ALTERNATIVES: Dict[str, str] = {
    "coefficient": "the number in front of a letter",
    "variable": "the unknown number (like x)",
    "exponent": "the small number that tells you how many times to multiply",
    "polynomial": "an expression with multiple terms",
    "quadratic": "an equation with x² (x squared)",
    "derivative": "how fast something is changing",
    "slope": "how steep a line is",
    "intercept": "where the line crosses the axis",
    "parabola": "a U-shaped curve",
    "domain": "all the possible input values",
    "range": "all the possible output values",
    "function": "a rule that turns one number into another",
}

EXAMPLE_CUES = ("for example", "like", "such as", "imagine", "think of")
ANALOGY_CUES = ("is like", "similar to", "just as", "compare")

# Checked from the highest level down; the first hit wins.
BLOOM_CUES: Tuple[Tuple[int, Tuple[str, ...]], ...] = (
    (6, ("create", "design", "develop")),
    (5, ("best", "evaluate", "judge")),
    (4, ("compare", "contrast", "analyze")),
    (3, ("solve", "apply", "use")),
    (2, ("explain", "describe", "mean")),
)

REFINE_THRESHOLD = 70


@dataclass(frozen=True)
class JargonAnalysis:
    terms: Tuple[str, ...]
    alternatives: Tuple[str, ...]

    @property
    def count(self) -> int:
        return len(self.terms)


@dataclass(frozen=True)
class CompletenessResult:
    completeness: int
    covered: Tuple[str, ...]
    missing: Tuple[str, ...]


@dataclass(frozen=True)
class RefinementPrompts:
    prompts: Tuple[str, ...]
    focus_area: str


def _check_inputs(topic: str, explanation: str, student_level: int) -> None:
    if not str(topic).strip():
        raise ValidationError("topic must be non-empty")
    if not isinstance(explanation, str):
        raise ValidationError("explanation must be a string")
    require_range("student_level", student_level, 1, 10)


class LocalHeuristicEvaluator(BaseEvaluator):
    """Offline evaluator used when no AI backend is reachable."""

    name = "local"

    def __init__(self, jargon: Optional[Sequence[str]] = None) -> None:
        self.jargon = tuple(jargon) if jargon is not None else MATH_JARGON + READING_JARGON

    def evaluate(
        self,
        topic: str,
        explanation: str,
        student_level: int,
        key_points: Optional[list] = None,
    ) -> ExplanationEvaluation:
        _check_inputs(topic, explanation, student_level)
        points = [str(p) for p in (key_points or []) if str(p).strip()]

        jargon = self.detect_jargon(explanation)
        completeness = self.check_completeness(explanation, points)
        clarity = self.estimate_clarity(explanation, jargon.count)
        accuracy = self.estimate_accuracy(explanation, points)
        feedback, refinements = self._feedback(
            clarity, completeness.completeness, accuracy, jargon, completeness.missing
        )
        return ExplanationEvaluation(
            clarity=clarity,
            completeness=completeness.completeness,
            accuracy=accuracy,
            bloom_level=self.determine_bloom_level(explanation),
            feedback=feedback,
            jargon_terms=list(jargon.terms),
            strengths=self._strengths(clarity, completeness.completeness, accuracy),
            gaps=list(completeness.missing),
            suggested_refinements=refinements,
            source="local",
        )

    # ----- scoring -----------------------------------------------------
    def detect_jargon(self, explanation: str) -> JargonAnalysis:
        text = explanation.lower()
        found = [term for term in self.jargon if term in text]
        return JargonAnalysis(
            tuple(found), tuple(SIMPLE_ALTERNATIVES.get(term, term) for term in found)
        )

    @staticmethod
    def check_completeness(explanation: str, key_points: Sequence[str]) -> CompletenessResult:
        if not key_points:
            # word count stands in for coverage
            words = len(explanation.split())
            return CompletenessResult(min(100, words * 2), (), ())

        text = explanation.lower()
        covered: List[str] = []
        missing: List[str] = []
        for point in key_points:
            keywords = point.lower().split()
            if any(keyword in text for keyword in keywords):
                covered.append(point)
            else:
                missing.append(point)
        score = round_int(len(covered) / len(key_points) * 100)
        return CompletenessResult(score, tuple(covered), tuple(missing))

    @staticmethod
    def estimate_clarity(explanation: str, jargon_count: int) -> int:
        text = explanation.lower()
        clarity = 70 - jargon_count * 5
        sentences = [s for s in re.split(r"[.!?]+", explanation) if s.strip()]
        if len(sentences) >= 3:
            clarity += 10
        if any(cue in text for cue in EXAMPLE_CUES):
            clarity += 15
        if any(cue in text for cue in ANALOGY_CUES):
            clarity += 10
        return int(clamp(clarity, 0, 100))

    @staticmethod
    def estimate_accuracy(explanation: str, key_points: Sequence[str]) -> int:
        if not key_points:
            return 70
        text = explanation.lower()
        correct = 0
        for point in key_points:
            keywords = [word for word in point.lower().split() if len(word) > 3]
            if any(keyword in text for keyword in keywords):
                correct += 1
        return round_int(correct / len(key_points) * 100)

    @staticmethod
    def determine_bloom_level(explanation: str) -> int:
        text = explanation.lower()
        for level, cues in BLOOM_CUES:
            if any(cue in text for cue in cues):
                return level
        return 1

    # ----- feedback ----------------------------------------------------
    @staticmethod
    def _feedback(
        clarity: int,
        completeness: int,
        accuracy: int,
        jargon: JargonAnalysis,
        missing: Sequence[str],
    ) -> Tuple[str, List[str]]:
        if clarity >= 80 and completeness >= 80 and accuracy >= 80:
            feedback = "Excellent explanation! You demonstrated clear understanding of the concept."
        elif clarity >= REFINE_THRESHOLD and completeness >= REFINE_THRESHOLD:
            feedback = "Good explanation! Here are some suggestions to make it even better."
        else:
            feedback = "Nice start! Let's work on improving your explanation."

        refinements: List[str] = []
        if jargon.count > 2:
            refinements.append(f'Try explaining "{jargon.terms[0]}" in simpler terms.')
        if missing:
            refinements.append(f"Consider adding more about: {missing[0]}")
        if clarity < REFINE_THRESHOLD:
            refinements.append("Try using a real-world example or analogy.")
        if completeness < REFINE_THRESHOLD:
            refinements.append("Can you expand on why this works?")
        return feedback, refinements

    @staticmethod
    def _strengths(clarity: int, completeness: int, accuracy: int) -> List[str]:
        strengths = []
        if clarity >= 80:
            strengths.append("Clear and easy to understand")
        if completeness >= 80:
            strengths.append("Covers key concepts well")
        if accuracy >= 80:
            strengths.append("Accurate understanding")
        return strengths or ["Good effort - keep practicing!"]


class RemoteExplanationEvaluator(BaseEvaluator):
    """Delegate grading to the AI backend's ``/feynman/evaluate`` endpoint.

    Parameters
    ----------
    base_url:
        API root of the AI backend, e.g. ``http://localhost:3002/api/v1``.
    timeout:
        Seconds before the HTTP call is abandoned.
    session:
        Optional ``requests.Session`` for connection reuse.
    """

    name = "remote"

    def __init__(
        self,
        base_url: str,
        timeout: float = env_validation.DEFAULT_AI_EVALUATOR_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {base_url!r}")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = session or requests

    @classmethod
    def from_env(cls) -> "RemoteExplanationEvaluator":
        return cls(env_validation.ai_backend_url(), env_validation.ai_evaluator_timeout())

    def evaluate(
        self,
        topic: str,
        explanation: str,
        student_level: int,
        key_points: Optional[list] = None,
    ) -> Optional[ExplanationEvaluation]:
        _check_inputs(topic, explanation, student_level)
        payload = {"topic": topic, "explanation": explanation, "studentLevel": student_level}
        if key_points:
            payload["conceptContext"] = "; ".join(str(p) for p in key_points)

        url = f"{self.base_url}/feynman/evaluate"
        try:
            response = self._http.post(url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            envelope = parse_json_safe(response.text, RemoteEvaluationEnvelope)
            evaluation = envelope.to_evaluation()
        except requests.RequestException as exc:
            _LOGGER.warning("AI evaluator unavailable at %s: %s", url, exc)
            return None
        except (PydanticValidationError, ValueError, OverflowError) as exc:
            _LOGGER.warning("AI evaluator returned an unusable payload: %s", exc)
            return None

        if evaluation is None:
            _LOGGER.warning("AI evaluator reported failure: %s", envelope.error or "unknown error")
        return evaluation


class FallbackExplanationEvaluator(BaseEvaluator):
    """Try each strategy in order and return the first available result."""

    name = "fallback"

    def __init__(self, strategies: Sequence[BaseEvaluator]) -> None:
        if not strategies:
            raise ValueError("at least one evaluation strategy is required")
        self.strategies = tuple(strategies)

    def evaluate(
        self,
        topic: str,
        explanation: str,
        student_level: int,
        key_points: Optional[list] = None,
    ) -> Optional[ExplanationEvaluation]:
        for strategy in self.strategies:
            result = strategy.evaluate(topic, explanation, student_level, key_points)
            if result is not None:
                return result
            _LOGGER.info("Evaluator '%s' unavailable; trying next strategy", strategy.name)
        return None


def build_default_evaluator(enable_remote: Optional[bool] = None) -> FallbackExplanationEvaluator:
    """Remote-then-local evaluator chain configured from the environment."""

    use_remote = env_validation.ai_evaluator_enabled() if enable_remote is None else enable_remote
    strategies: List[BaseEvaluator] = []
    if use_remote:
        strategies.append(RemoteExplanationEvaluator.from_env())
    strategies.append(LocalHeuristicEvaluator())
    return FallbackExplanationEvaluator(strategies)


def refinement_prompts(evaluation: ExplanationEvaluation, iteration: int) -> RefinementPrompts:
    """Follow-up prompts for the learner's next rewrite of an explanation."""

    if iteration < 1:
        raise ValidationError("iteration must be >= 1")
    if iteration == 1:
        if evaluation.clarity < REFINE_THRESHOLD:
            return RefinementPrompts(
                (
                    "Can you explain this as if teaching a younger student?",
                    "Try using a simpler example from everyday life.",
                ),
                "clarity",
            )
        if evaluation.completeness < REFINE_THRESHOLD:
            return RefinementPrompts(("What other important aspects should we include?",), "completeness")
        return RefinementPrompts((), "")
    if iteration == 2:
        return RefinementPrompts(
            (
                "Great progress! Can you make it even simpler?",
                "Is there anything you can remove to make it clearer?",
            ),
            "",
        )
    return RefinementPrompts(("Almost there! Try summarizing the key points.",), "")


__all__ = [
    "MATH_JARGON",
    "READING_JARGON",
    "JargonAnalysis",
    "CompletenessResult",
    "RefinementPrompts",
    "LocalHeuristicEvaluator",
    "RemoteExplanationEvaluator",
    "FallbackExplanationEvaluator",
    "build_default_evaluator",
    "refinement_prompts",
]
