"""Unified topic mastery across practice contexts.

Learners touch a topic in several places: structured drills produce
:class:`~engines.mastery_record.TopicMasteryRecord` objects, guided tutoring
sessions produce :class:`~schemas.GuidedSessionSummary` aggregates, and chat
conversations surface :class:`~schemas.ConversationInsight` observations.
The aggregator folds all of them into one :class:`TopicMastery` per
(subject, topic) with a binary merge rule, then derives weak-area and
spaced-repetition flags from the merged values.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from functools import reduce
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from engines.mastery_record import TopicMasteryRecord
from engines.validation import round_half_up, round_int
from schemas import ConversationInsight, GuidedSessionSummary

_LOGGER = logging.getLogger(__name__)

NEVER_PRACTICED_DAYS = 999
_DAY_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class TopicContribution:
    """One source's view of a topic before merging."""

    source: str
    subject: str
    topic: str
    mastery_level: float
    accuracy_rate: Optional[float]
    attempt_count: int
    last_practiced: Optional[datetime]
    bloom_level: int
    error_patterns: Tuple[str, ...] = ()
    mastery_is_proxy: bool = False


@dataclass(frozen=True)
class TopicMastery:
    """Merged per-topic view used by topic selection and profiling."""

    subject: str
    topic: str
    mastery_level: float
    accuracy_rate: float
    attempt_count: int
    last_practiced: Optional[datetime]
    days_since_last_practice: int
    error_patterns: Tuple[str, ...]
    bloom_level: int
    sources: Tuple[str, ...]
    is_weak_area: bool
    spaced_repetition_due: bool
    optimal_interval: int
    urgency: float


@dataclass(frozen=True)
class WeakArea:
    subject: str
    topic: str
    mastery_level: float
    error_patterns: Tuple[str, ...]
    recommended_action: str
    priority: float


@dataclass(frozen=True)
class SpacedRepetitionItem:
    subject: str
    topic: str
    last_practiced: datetime
    days_since: int
    optimal_interval: int
    urgency: float


@dataclass(frozen=True)
class SubjectPerformance:
    subject: str
    overall_mastery: int
    topic_count: int
    weak_area_count: int
    due_for_review_count: int
    recent_accuracy: float
    total_attempts: int
    study_time_minutes: int


def _dedupe(values: Iterable[str]) -> Tuple[str, ...]:
    seen: set[str] = set()
    deduped: List[str] = []
    for value in values:
        text = str(value).strip()
        if not text:
            continue
        key = text.lower()
        if key in seen:
            continue
        seen.add(key)
        deduped.append(text)
    return tuple(deduped)


def _latest(first: Optional[datetime], second: Optional[datetime]) -> Optional[datetime]:
    if first is None:
        return second
    if second is None:
        return first
    return max(first, second)


def merge_contributions(existing: TopicContribution, incoming: TopicContribution) -> TopicContribution:
    """Combine two views of the same topic.

    Mastery takes the maximum, since credit earned in either context
    counts; a guided-session proxy only stands in while no measured
    mastery exists. Accuracy is the mean of the two, dates take the latest,
    attempts add up and gap lists are unioned.
    """

    if existing.mastery_is_proxy and not incoming.mastery_is_proxy:
        mastery, proxy = incoming.mastery_level, False
    elif incoming.mastery_is_proxy and not existing.mastery_is_proxy:
        mastery, proxy = existing.mastery_level, False
    else:
        mastery, proxy = max(existing.mastery_level, incoming.mastery_level), existing.mastery_is_proxy

    if existing.accuracy_rate is None:
        accuracy = incoming.accuracy_rate
    elif incoming.accuracy_rate is None:
        accuracy = existing.accuracy_rate
    else:
        accuracy = (existing.accuracy_rate + incoming.accuracy_rate) / 2

    return TopicContribution(
        source=existing.source if existing.source == incoming.source else f"{existing.source}+{incoming.source}",
        subject=existing.subject,
        topic=existing.topic,
        mastery_level=mastery,
        accuracy_rate=accuracy,
        attempt_count=existing.attempt_count + incoming.attempt_count,
        last_practiced=_latest(existing.last_practiced, incoming.last_practiced),
        bloom_level=max(existing.bloom_level, incoming.bloom_level),
        error_patterns=_dedupe(existing.error_patterns + incoming.error_patterns),
        mastery_is_proxy=proxy,
    )


class MasteryAggregator:
    """Merge mastery signals and derive remediation and review queues.

    Parameters
    ----------
    weak_mastery:
        Mastery below which a topic counts as a weak area.
    weak_accuracy:
        Accuracy below which a topic counts as a weak area.
    engagement_mastery_ratio:
        Factor converting guided-session engagement into a mastery proxy.
    """

    def __init__(
        self,
        weak_mastery: float = 50,
        weak_accuracy: float = 0.5,
        engagement_mastery_ratio: float = 0.5,
    ) -> None:
        if not 0 <= weak_mastery <= 100:
            raise ValueError("weak_mastery must be within [0, 100]")
        if not 0 <= weak_accuracy <= 1:
            raise ValueError("weak_accuracy must be within [0, 1]")
        if not 0 < engagement_mastery_ratio <= 1:
            raise ValueError("engagement_mastery_ratio must be in (0, 1]")
        self.weak_mastery = weak_mastery
        self.weak_accuracy = weak_accuracy
        self.engagement_mastery_ratio = engagement_mastery_ratio

    # ----- public API --------------------------------------------------
    def aggregate(
        self,
        records: Sequence[TopicMasteryRecord] = (),
        guided_sessions: Sequence[GuidedSessionSummary] = (),
        insights: Sequence[ConversationInsight] = (),
        subject: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[TopicMastery]:
        now = now or datetime.now(timezone.utc)
        wanted = subject.lower() if subject else None

        grouped: Dict[Tuple[str, str], List[TopicContribution]] = {}
        contributions = (
            [self._from_record(r) for r in records]
            + [self._from_guided(s) for s in guided_sessions]
            + [self._from_insight(i) for i in insights]
        )
        for contribution in contributions:
            if wanted and contribution.subject.lower() != wanted:
                continue
            key = (contribution.subject.lower(), contribution.topic.lower())
            grouped.setdefault(key, []).append(contribution)

        masteries = [
            self._finalise(reduce(merge_contributions, group), group, now)
            for group in grouped.values()
        ]
        _LOGGER.debug("aggregated %s topics from %s contributions", len(masteries), len(contributions))
        return sorted(masteries, key=lambda m: (m.subject, m.topic))

    @staticmethod
    def optimal_interval(mastery_level: float, attempt_count: int) -> int:
        """Days a topic can rest before review: grows with mastery and repetition."""

        mastery_multiplier = 1 + mastery_level / 20
        repetition_multiplier = min(3, 1 + attempt_count * 0.2)
        return max(1, round_int(1 * mastery_multiplier * repetition_multiplier))

    @staticmethod
    def find(masteries: Sequence[TopicMastery], subject: str, topic: str) -> Optional[TopicMastery]:
        subject_key, topic_key = subject.lower(), topic.lower()
        for mastery in masteries:
            if mastery.subject.lower() == subject_key and mastery.topic.lower() == topic_key:
                return mastery
        return None

    def get_weak_areas(self, masteries: Sequence[TopicMastery], limit: int = 5) -> List[WeakArea]:
        weak = [
            WeakArea(
                subject=m.subject,
                topic=m.topic,
                mastery_level=m.mastery_level,
                error_patterns=m.error_patterns,
                recommended_action=self.recommended_action(m),
                priority=self.weak_area_priority(m),
            )
            for m in masteries
            if m.is_weak_area
        ]
        weak.sort(key=lambda w: w.priority, reverse=True)
        return weak[:limit]

    @staticmethod
    def get_spaced_repetition_due(masteries: Sequence[TopicMastery], limit: int = 5) -> List[SpacedRepetitionItem]:
        due = [
            SpacedRepetitionItem(
                subject=m.subject,
                topic=m.topic,
                last_practiced=m.last_practiced,
                days_since=m.days_since_last_practice,
                optimal_interval=m.optimal_interval,
                urgency=m.urgency,
            )
            for m in masteries
            if m.spaced_repetition_due and m.last_practiced is not None
        ]
        due.sort(key=lambda item: item.urgency, reverse=True)
        return due[:limit]

    @staticmethod
    def recommended_action(mastery: TopicMastery) -> str:
        if mastery.mastery_level < 30:
            return "Start with foundational concepts and basic examples"
        if mastery.mastery_level < 50:
            return "Practice more problems to build understanding"
        if mastery.accuracy_rate < 0.5:
            return "Focus on accuracy - slow down and check your work"
        if mastery.error_patterns:
            return f"Address specific gaps: {', '.join(mastery.error_patterns[:2])}"
        return "Continue practice to maintain mastery"

    @staticmethod
    def weak_area_priority(mastery: TopicMastery) -> float:
        """Remediation priority from 1 to 10; higher is more urgent."""

        priority = 5.0
        if mastery.mastery_level < 30:
            priority += 3
        elif mastery.mastery_level < 50:
            priority += 2
        elif mastery.mastery_level < 70:
            priority += 1

        if mastery.accuracy_rate < 0.4:
            priority += 2
        elif mastery.accuracy_rate < 0.6:
            priority += 1

        priority += min(2, len(mastery.error_patterns) * 0.5)
        if mastery.spaced_repetition_due:
            priority += 1
        return min(10.0, priority)

    def subject_performance(
        self,
        masteries: Sequence[TopicMastery],
        records: Sequence[TopicMasteryRecord] = (),
        guided_sessions: Sequence[GuidedSessionSummary] = (),
    ) -> List[SubjectPerformance]:
        subjects = _dedupe(
            [m.subject for m in masteries]
            + [r.subject for r in records]
            + [s.subject for s in guided_sessions]
        )
        summaries: List[SubjectPerformance] = []
        for subject in subjects:
            key = subject.lower()
            topics = [m for m in masteries if m.subject.lower() == key]
            subject_records = [r for r in records if r.subject.lower() == key]
            subject_sessions = [s for s in guided_sessions if s.subject.lower() == key]

            total_attempts = sum(r.total_attempts for r in subject_records) + sum(
                s.questions_attempted for s in subject_sessions
            )
            total_correct = sum(r.correct_attempts for r in subject_records) + sum(
                s.questions_correct for s in subject_sessions
            )
            study_minutes = sum(
                (s.completed_at - s.started_at).total_seconds() / 60
                for s in subject_sessions
                if s.started_at is not None and s.completed_at is not None
            )
            overall = round_int(sum(t.mastery_level for t in topics) / len(topics)) if topics else 0
            summaries.append(
                SubjectPerformance(
                    subject=subject,
                    overall_mastery=overall,
                    topic_count=len(topics),
                    weak_area_count=sum(1 for t in topics if t.is_weak_area),
                    due_for_review_count=sum(1 for t in topics if t.spaced_repetition_due),
                    recent_accuracy=round_half_up(total_correct / total_attempts, 2) if total_attempts else 0.0,
                    total_attempts=total_attempts,
                    study_time_minutes=round_int(study_minutes),
                )
            )
        return [s for s in summaries if s.topic_count > 0 or s.total_attempts > 0]

    # ----- helpers -----------------------------------------------------
    @staticmethod
    def _from_record(record: TopicMasteryRecord) -> TopicContribution:
        return TopicContribution(
            source="practice",
            subject=record.subject,
            topic=record.topic,
            mastery_level=record.mastery_level,
            accuracy_rate=record.accuracy_rate,
            attempt_count=record.total_attempts,
            last_practiced=record.last_attempt_date,
            bloom_level=record.bloom.current_level or 1,
        )

    def _from_guided(self, session: GuidedSessionSummary) -> TopicContribution:
        accuracy = (
            session.questions_correct / session.questions_attempted
            if session.questions_attempted > 0
            else None
        )
        return TopicContribution(
            source="guided",
            subject=session.subject,
            topic=session.topic,
            mastery_level=session.engagement_score * self.engagement_mastery_ratio,
            accuracy_rate=accuracy,
            attempt_count=session.questions_attempted,
            last_practiced=session.started_at or session.completed_at,
            bloom_level=1,
            error_patterns=_dedupe(session.concepts_needing_work),
            mastery_is_proxy=True,
        )

    @staticmethod
    def _from_insight(insight: ConversationInsight) -> TopicContribution:
        return TopicContribution(
            source="conversation",
            subject=insight.subject,
            topic=insight.topic,
            mastery_level=0,
            accuracy_rate=None,
            attempt_count=0,
            last_practiced=None,
            bloom_level=1,
            error_patterns=_dedupe(list(insight.error_patterns) + list(insight.struggled_concepts)),
            mastery_is_proxy=True,
        )

    def _finalise(
        self,
        merged: TopicContribution,
        group: Sequence[TopicContribution],
        now: datetime,
    ) -> TopicMastery:
        accuracy = merged.accuracy_rate if merged.accuracy_rate is not None else 0.0
        if merged.last_practiced is None:
            days_since = NEVER_PRACTICED_DAYS
        else:
            days_since = max(0, math.floor((now - merged.last_practiced).total_seconds() / _DAY_SECONDS))

        interval = self.optimal_interval(merged.mastery_level, merged.attempt_count)
        due = merged.last_practiced is not None and days_since >= interval
        weak = (
            merged.mastery_level < self.weak_mastery
            or accuracy < self.weak_accuracy
            or (merged.mastery_is_proxy and bool(merged.error_patterns))
        )
        return TopicMastery(
            subject=merged.subject,
            topic=merged.topic,
            mastery_level=merged.mastery_level,
            accuracy_rate=accuracy,
            attempt_count=merged.attempt_count,
            last_practiced=merged.last_practiced,
            days_since_last_practice=days_since,
            error_patterns=merged.error_patterns,
            bloom_level=merged.bloom_level,
            sources=_dedupe(c.source for c in group),
            is_weak_area=weak,
            spaced_repetition_due=due,
            optimal_interval=interval,
            urgency=min(1.0, days_since / interval),
        )


__all__ = [
    "NEVER_PRACTICED_DAYS",
    "TopicContribution",
    "TopicMastery",
    "WeakArea",
    "SpacedRepetitionItem",
    "SubjectPerformance",
    "merge_contributions",
    "MasteryAggregator",
]
