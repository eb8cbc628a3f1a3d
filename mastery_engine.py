"""Public entry points of the adaptive mastery engine.

Each function builds default engines when none are injected, so callers can
use the module directly or wire their own configured instances.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from functools import lru_cache
from typing import Any, Mapping, Optional, Sequence, Union

import env_validation
from bloom_levels import BloomLevel
from engines.base import BaseEvaluator
from engines.bloom_progress import BloomProgress, BloomProgressTracker
from engines.confidence import AttemptSignal, ConfidenceEstimator, ConfidenceResult, QualityScorer
from engines.explanation_evaluator import build_default_evaluator
from engines.flow_state import BehaviorSignals, DifficultyAdjustment, FlowState, FlowStateEngine
from engines.learner_profile import LearnerProfile, LearnerProfileBuilder
from engines.mastery_aggregator import MasteryAggregator, TopicMastery
from engines.mastery_record import (
    AttemptOutcome,
    AttemptProcessor,
    InMemoryRecordStore,
    TopicMasteryRecord,
)
from engines.spaced_repetition import DEFAULT_EASE_FACTOR, ScheduleResult, SpacedRepetitionScheduler
from engines.topic_selector import TopicSelection, TopicSelector
from schemas import (
    AttemptSignalPayload,
    ConversationInsight,
    ExplanationEvaluation,
    GuidedSessionSummary,
    LearningSessionSummary,
    parse_model,
)

_LOGGER = logging.getLogger(__name__)

SignalInput = Union[AttemptSignal, Mapping[str, Any]]


def _as_signal(signal: SignalInput) -> AttemptSignal:
    if isinstance(signal, AttemptSignal):
        return signal
    return parse_model(AttemptSignalPayload, signal).to_signal()


def estimate_confidence(
    signal: SignalInput,
    previous_accuracy: float = 0.0,
    student_type: Optional[str] = None,
    estimator: Optional[ConfidenceEstimator] = None,
) -> ConfidenceResult:
    return (estimator or ConfidenceEstimator()).estimate(_as_signal(signal), previous_accuracy, student_type)


def score_quality(
    signal: SignalInput,
    confidence: int,
    scorer: Optional[QualityScorer] = None,
) -> int:
    return (scorer or QualityScorer()).score(_as_signal(signal), confidence)


def classify_flow(challenge: float, skill: float, engine: Optional[FlowStateEngine] = None) -> FlowState:
    return (engine or FlowStateEngine()).classify(challenge, skill)


def adjust_for_flow(
    current_difficulty: float,
    skill: float,
    recent: BehaviorSignals,
    engine: Optional[FlowStateEngine] = None,
) -> DifficultyAdjustment:
    return (engine or FlowStateEngine()).adjust_for_flow(current_difficulty, skill, recent)


def update_bloom_progress(
    progress: BloomProgress,
    level: "BloomLevel | int",
    quality: int,
    now: Optional[datetime] = None,
    tracker: Optional[BloomProgressTracker] = None,
) -> BloomProgress:
    return (tracker or BloomProgressTracker()).update(progress, level, quality, now)


def schedule_next_review(
    quality: int,
    ease_factor: float = DEFAULT_EASE_FACTOR,
    interval: int = 0,
    repetitions: int = 0,
    flow_score: float = 50,
    bloom_level: "BloomLevel | int" = BloomLevel.REMEMBER,
    progressive_challenge: bool = False,
    now: Optional[datetime] = None,
    scheduler: Optional[SpacedRepetitionScheduler] = None,
) -> ScheduleResult:
    return (scheduler or SpacedRepetitionScheduler()).schedule(
        quality,
        ease_factor,
        interval,
        repetitions,
        flow_score,
        bloom_level,
        progressive_challenge,
        now,
    )


def aggregate_mastery(
    records: Sequence[TopicMasteryRecord] = (),
    guided_sessions: Sequence[GuidedSessionSummary] = (),
    insights: Sequence[ConversationInsight] = (),
    subject: Optional[str] = None,
    now: Optional[datetime] = None,
    aggregator: Optional[MasteryAggregator] = None,
) -> list[TopicMastery]:
    return (aggregator or MasteryAggregator()).aggregate(records, guided_sessions, insights, subject, now)


@lru_cache(maxsize=None)
def _default_selector(max_workers: int) -> TopicSelector:
    """Shared selector per worker count so the catalog and pool are built once."""

    if max_workers > 1:
        return TopicSelector(executor=ThreadPoolExecutor(max_workers=max_workers))
    return TopicSelector()


def select_topic(
    subject: str,
    records: Sequence[TopicMasteryRecord] = (),
    guided_sessions: Sequence[GuidedSessionSummary] = (),
    insights: Sequence[ConversationInsight] = (),
    learning_style: Optional[str] = None,
    now: Optional[datetime] = None,
    selector: Optional[TopicSelector] = None,
) -> TopicSelection:
    """Aggregate the learner's history for ``subject`` and pick the next topic."""

    if selector is None:
        selector = _default_selector(env_validation.selector_max_workers())
    masteries = selector.aggregator.aggregate(records, guided_sessions, insights, subject, now)
    return selector.select(subject, masteries, guided_sessions, learning_style, now)


def build_learner_profile(
    user_id: str,
    records: Sequence[TopicMasteryRecord] = (),
    sessions: Sequence[LearningSessionSummary] = (),
    current_level: int = 5,
    now: Optional[datetime] = None,
    builder: Optional[LearnerProfileBuilder] = None,
) -> LearnerProfile:
    return (builder or LearnerProfileBuilder()).build(user_id, records, sessions, current_level, now)


def record_attempt(
    record: TopicMasteryRecord,
    signal: SignalInput,
    bloom_level: "BloomLevel | int",
    student_type: Optional[str] = None,
    now: Optional[datetime] = None,
    processor: Optional[AttemptProcessor] = None,
) -> AttemptOutcome:
    """Process one answered question and return the successor record."""

    return (processor or AttemptProcessor()).process(record, _as_signal(signal), bloom_level, student_type, now)


def submit_attempt(
    store: InMemoryRecordStore,
    user_id: str,
    subject: str,
    topic: str,
    signal: SignalInput,
    bloom_level: "BloomLevel | int",
    student_type: Optional[str] = None,
    now: Optional[datetime] = None,
    processor: Optional[AttemptProcessor] = None,
) -> AttemptOutcome:
    """Read, process and compare-and-swap one attempt against ``store``.

    Raises :class:`~engines.validation.ConcurrentUpdateError` when another
    writer saved the record in between; the caller decides whether to retry.
    """

    current = store.get_or_new(user_id, subject, topic)
    outcome = record_attempt(current, signal, bloom_level, student_type, now, processor)
    store.save(outcome.record, expected_version=current.version)
    return outcome


def evaluate_explanation(
    topic: str,
    explanation: str,
    student_level: int,
    key_points: Optional[list] = None,
    evaluator: Optional[BaseEvaluator] = None,
) -> Optional[ExplanationEvaluation]:
    evaluator = evaluator or build_default_evaluator()
    result = evaluator.evaluate(topic, explanation, student_level, key_points)
    if result is None:
        _LOGGER.warning("No evaluator produced a result for topic %r", topic)
    return result


__all__ = [
    "estimate_confidence",
    "score_quality",
    "classify_flow",
    "adjust_for_flow",
    "update_bloom_progress",
    "schedule_next_review",
    "aggregate_mastery",
    "select_topic",
    "build_learner_profile",
    "record_attempt",
    "submit_attempt",
    "evaluate_explanation",
]
