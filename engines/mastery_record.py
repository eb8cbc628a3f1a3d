"""Immutable per-topic mastery records and the attempt update pipeline.

A :class:`TopicMasteryRecord` is never mutated. Every helper in this
module takes the current record plus one event and returns a new record,
which keeps algorithm logic separate from persistence. The persistence
boundary is responsible for applying the returned record atomically;
:class:`InMemoryRecordStore` shows the expected compare-and-swap contract
on the record ``version``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from bloom_levels import BloomLevel
from engines.bloom_progress import BloomProgress, BloomProgressTracker
from engines.confidence import (
    AttemptSignal,
    ConfidenceEstimator,
    ConfidenceResult,
    QualityScorer,
)
from engines.flow_state import (
    BehaviorSignals,
    DifficultyAdjustment,
    FlowState,
    FlowStateEngine,
)
from engines.spaced_repetition import (
    DEFAULT_EASE_FACTOR,
    ReviewItem,
    ScheduleResult,
    SpacedRepetitionScheduler,
)
from engines.validation import (
    ConcurrentUpdateError,
    ValidationError,
    require_range,
    round_int,
)

_LOGGER = logging.getLogger(__name__)

QUALITY_HISTORY_LIMIT = 10
FLOW_MOVING_WEIGHT = 0.3
FLOW_MINUTES_PER_UPDATE = 2

RecordKey = Tuple[str, str, str]


@dataclass(frozen=True)
class FlowMetrics:
    average_challenge: float = 5.0
    average_skill: float = 5.0
    time_in_flow: float = 0.0
    time_in_boredom: float = 0.0
    time_in_anxiety: float = 0.0
    flow_score: float = 50.0


@dataclass(frozen=True)
class AttemptEntry:
    """Audit entry appended for every answered question."""

    is_correct: bool
    time_spent: float
    hints_used: int
    chat_interactions: int
    confidence: int
    bloom_level: int
    attempted_at: datetime


@dataclass(frozen=True)
class TopicMasteryRecord:
    """Learning state of one user on one topic."""

    user_id: str
    subject: str
    topic: str
    total_attempts: int = 0
    correct_attempts: int = 0
    accuracy_rate: float = 0.0
    average_time: float = 0.0
    mastery_level: int = 0
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval: int = 0
    repetitions: int = 0
    next_review_date: Optional[datetime] = None
    last_attempt_date: Optional[datetime] = None
    bloom: BloomProgress = field(default_factory=BloomProgress)
    flow: FlowMetrics = field(default_factory=FlowMetrics)
    quality_history: Tuple[int, ...] = ()
    review_level: int = 1
    progressive_challenge: bool = False
    last_review_bloom_level: Optional[int] = None
    attempts: Tuple[AttemptEntry, ...] = ()
    version: int = 0

    @property
    def key(self) -> RecordKey:
        return (self.user_id, self.subject, self.topic)

    def to_review_item(self) -> Optional[ReviewItem]:
        if self.next_review_date is None:
            return None
        return ReviewItem(
            topic=self.topic,
            next_review=self.next_review_date,
            mastery_level=self.mastery_level,
            total_attempts=self.total_attempts,
            flow_score=self.flow.flow_score,
            bloom_level=self.review_level,
            subject=self.subject,
        )


# ----- pure record transitions ----------------------------------------


def new_record(user_id: str, subject: str, topic: str) -> TopicMasteryRecord:
    """Zero-initialised record for a (user, topic) pair seen for the first time."""

    if not str(user_id).strip() or not str(subject).strip() or not str(topic).strip():
        raise ValidationError("user_id, subject and topic must be non-empty")
    return TopicMasteryRecord(user_id=user_id, subject=subject, topic=topic)


def add_attempt(
    record: TopicMasteryRecord,
    signal: AttemptSignal,
    confidence: int,
    bloom_level: "BloomLevel | int",
    now: Optional[datetime] = None,
) -> TopicMasteryRecord:
    now = now or datetime.now(timezone.utc)
    total = record.total_attempts + 1
    correct = record.correct_attempts + (1 if signal.is_correct else 0)
    average_time = (record.average_time * record.total_attempts + signal.time_spent) / total
    entry = AttemptEntry(
        is_correct=signal.is_correct,
        time_spent=signal.time_spent,
        hints_used=signal.hints_used,
        chat_interactions=signal.chat_interactions,
        confidence=confidence,
        bloom_level=int(BloomLevel.coerce(bloom_level)),
        attempted_at=now,
    )
    return replace(
        record,
        total_attempts=total,
        correct_attempts=correct,
        accuracy_rate=correct / total,
        average_time=average_time,
        last_attempt_date=now,
        attempts=record.attempts + (entry,),
    )


def update_bloom_progress(
    record: TopicMasteryRecord,
    bloom_level: "BloomLevel | int",
    quality: int,
    now: Optional[datetime] = None,
    tracker: Optional[BloomProgressTracker] = None,
) -> TopicMasteryRecord:
    tracker = tracker or BloomProgressTracker()
    return replace(record, bloom=tracker.update(record.bloom, bloom_level, quality, now))


def update_flow_metrics(
    record: TopicMasteryRecord,
    challenge: float,
    skill: float,
    zone: str,
) -> TopicMasteryRecord:
    """Fold one challenge/skill observation into the record's flow averages."""

    require_range("challenge", challenge, 1, 10)
    require_range("skill", skill, 1, 10)
    flow = record.flow
    weight = FLOW_MOVING_WEIGHT
    updated = replace(
        flow,
        average_challenge=flow.average_challenge * (1 - weight) + challenge * weight,
        average_skill=flow.average_skill * (1 - weight) + skill * weight,
        flow_score=max(0.0, 100 - abs(challenge - skill) * 20),
    )
    if zone == "flow":
        updated = replace(updated, time_in_flow=flow.time_in_flow + FLOW_MINUTES_PER_UPDATE)
    elif zone == "boredom":
        updated = replace(updated, time_in_boredom=flow.time_in_boredom + FLOW_MINUTES_PER_UPDATE)
    elif zone == "anxiety":
        updated = replace(updated, time_in_anxiety=flow.time_in_anxiety + FLOW_MINUTES_PER_UPDATE)
    else:
        raise ValidationError(f"Unknown flow zone: {zone!r}")
    return replace(record, flow=updated)


def apply_schedule(
    record: TopicMasteryRecord,
    schedule: ScheduleResult,
    bloom_level: "BloomLevel | int",
) -> TopicMasteryRecord:
    history = (record.quality_history + (schedule.quality,))[-QUALITY_HISTORY_LIMIT:]
    return replace(
        record,
        ease_factor=schedule.ease_factor,
        interval=schedule.interval,
        repetitions=schedule.repetitions,
        next_review_date=schedule.next_review_date,
        quality_history=history,
        review_level=schedule.review_bloom_level,
        progressive_challenge=schedule.progressive_challenge,
        last_review_bloom_level=int(BloomLevel.coerce(bloom_level)),
    )


def calculate_mastery_level(record: TopicMasteryRecord) -> int:
    # accuracy 40, experience 15, retention 15, Bloom stage 30
    mastery = record.accuracy_rate * 40
    mastery += min(record.total_attempts / 10, 1) * 15
    mastery += min(record.repetitions / 5, 1) * 15
    mastery += record.bloom.current_level / 6 * 30
    return round_int(mastery)


def with_mastery_level(record: TopicMasteryRecord) -> TopicMasteryRecord:
    return replace(record, mastery_level=calculate_mastery_level(record))


# ----- attempt pipeline -------------------------------------------------


@dataclass(frozen=True)
class AttemptOutcome:
    record: TopicMasteryRecord
    confidence: ConfidenceResult
    quality: int
    skill_level: int
    flow_state: FlowState
    schedule: ScheduleResult
    difficulty_adjustment: DifficultyAdjustment
    feedback: str


class AttemptProcessor:
    """Run one answered question through every engine and build the new record.

    The order mirrors the data flow of the engine: confidence, quality,
    flow classification against the pre-attempt skill estimate, Bloom
    progress, flow metrics, scheduling and finally the mastery composite.
    """

    def __init__(
        self,
        confidence_estimator: Optional[ConfidenceEstimator] = None,
        quality_scorer: Optional[QualityScorer] = None,
        flow_engine: Optional[FlowStateEngine] = None,
        bloom_tracker: Optional[BloomProgressTracker] = None,
        scheduler: Optional[SpacedRepetitionScheduler] = None,
    ) -> None:
        self.confidence_estimator = confidence_estimator or ConfidenceEstimator()
        self.quality_scorer = quality_scorer or QualityScorer()
        self.flow_engine = flow_engine or FlowStateEngine()
        self.bloom_tracker = bloom_tracker or BloomProgressTracker()
        self.scheduler = scheduler or SpacedRepetitionScheduler()

    def process(
        self,
        record: TopicMasteryRecord,
        signal: AttemptSignal,
        bloom_level: "BloomLevel | int",
        student_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AttemptOutcome:
        level = BloomLevel.coerce(bloom_level)
        now = now or datetime.now(timezone.utc)

        confidence = self.confidence_estimator.estimate(
            signal, record.accuracy_rate, student_type
        )
        quality = self.quality_scorer.score(signal, confidence.confidence)

        skill = self.flow_engine.estimate_skill_level(
            record.mastery_level,
            record.accuracy_rate,
            record.bloom.current_level or 1,
        )
        flow_state = self.flow_engine.classify(signal.question_difficulty, skill)

        updated = add_attempt(record, signal, confidence.confidence, level, now)
        updated = update_bloom_progress(updated, level, quality, now, self.bloom_tracker)
        updated = update_flow_metrics(updated, signal.question_difficulty, skill, flow_state.zone)

        schedule = self.scheduler.schedule(
            quality,
            record.ease_factor,
            record.interval,
            record.repetitions,
            flow_state.score,
            level,
            record.progressive_challenge,
            now,
        )
        updated = apply_schedule(updated, schedule, level)
        updated = with_mastery_level(updated)
        updated = replace(updated, version=record.version + 1)

        adjustment = self.flow_engine.adjust_for_flow(
            signal.question_difficulty,
            skill,
            BehaviorSignals(
                is_correct=signal.is_correct,
                time_spent=signal.time_spent,
                average_time=signal.expected_time,
                hints_used=signal.hints_used,
                recent_accuracy=updated.accuracy_rate,
            ),
        )
        _LOGGER.info(
            "attempt recorded user=%s topic=%s quality=%s mastery %s -> %s next_review=%s",
            record.user_id,
            record.topic,
            quality,
            record.mastery_level,
            updated.mastery_level,
            schedule.next_review_date.isoformat(),
        )
        return AttemptOutcome(
            record=updated,
            confidence=confidence,
            quality=quality,
            skill_level=skill,
            flow_state=flow_state,
            schedule=schedule,
            difficulty_adjustment=adjustment,
            feedback=self._feedback(signal.is_correct, confidence.confidence),
        )

    @staticmethod
    def _feedback(is_correct: bool, confidence: int) -> str:
        if not is_correct:
            return "Not quite right, but keep going! Review the explanation and try similar problems."
        if confidence >= 4:
            return "Excellent work! You demonstrated strong understanding."
        return "Good job! Keep practicing to build more confidence."


# ----- persistence boundary --------------------------------------------


class InMemoryRecordStore:
    """Reference record store with optimistic concurrency on ``version``.

    ``save`` only succeeds when the stored record is still at the version
    the caller read; otherwise :class:`ConcurrentUpdateError` is raised and
    the caller must re-read and recompute.
    """

    def __init__(self, records: Iterable[TopicMasteryRecord] = ()) -> None:
        self._lock = threading.Lock()  # guards the compare-and-swap
        self._records: Dict[RecordKey, TopicMasteryRecord] = {}
        for record in records:
            self._records[record.key] = record

    def get(self, user_id: str, subject: str, topic: str) -> Optional[TopicMasteryRecord]:
        with self._lock:
            return self._records.get((user_id, subject, topic))

    def get_or_new(self, user_id: str, subject: str, topic: str) -> TopicMasteryRecord:
        existing = self.get(user_id, subject, topic)
        return existing if existing is not None else new_record(user_id, subject, topic)

    def save(self, record: TopicMasteryRecord, expected_version: int) -> TopicMasteryRecord:
        with self._lock:
            current = self._records.get(record.key)
            actual = current.version if current is not None else 0
            if actual != expected_version:
                raise ConcurrentUpdateError(record.key, expected_version, actual)
            self._records[record.key] = record
        return record

    def list_for_user(self, user_id: str, subject: Optional[str] = None) -> List[TopicMasteryRecord]:
        with self._lock:
            records = [r for r in self._records.values() if r.user_id == user_id]
        if subject is not None:
            wanted = subject.lower()
            records = [r for r in records if r.subject.lower() == wanted]
        return sorted(records, key=lambda r: (r.subject, r.topic))


__all__ = [
    "QUALITY_HISTORY_LIMIT",
    "FlowMetrics",
    "AttemptEntry",
    "TopicMasteryRecord",
    "new_record",
    "add_attempt",
    "update_bloom_progress",
    "update_flow_metrics",
    "apply_schedule",
    "calculate_mastery_level",
    "with_mastery_level",
    "AttemptOutcome",
    "AttemptProcessor",
    "InMemoryRecordStore",
]
