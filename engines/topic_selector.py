"""Choose the next topic to study from a subject's catalog.

Every catalog topic is scored on four axes and the weighted total decides:

* spaced repetition (30%): is the topic due or going stale?
* Bloom progression (25%): are prerequisites met and is the learner ready
  for a higher cognitive level?
* flow (25%): does the topic's difficulty match the learner's skill?
* continuity (20%): does it continue recent sessions and respect the
  catalog sequence?
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

from bloom_levels import BloomLevel
from engines.mastery_aggregator import MasteryAggregator, SpacedRepetitionItem, TopicMastery, WeakArea
from engines.topic_catalog import TopicCatalog, TopicDefinition, default_catalog
from schemas import GuidedSessionSummary

_LOGGER = logging.getLogger(__name__)

SelectionType = Literal[
    "spaced_repetition",
    "new_topic",
    "continuation",
    "struggling_support",
    "bloom_progression",
]
DifficultyAdjustment = Literal["easier", "standard", "challenging"]

WEIGHTS: Dict[str, float] = {
    "spaced_repetition": 0.30,
    "bloom": 0.25,
    "flow": 0.25,
    "continuity": 0.20,
}
RECENT_SESSION_WINDOW = 3
DEFAULT_ENGAGEMENT = 50.0
_INTRO_FOCUS = ("introduction", "basic concepts", "examples")


def _log_json(event: str, payload: Dict[str, Any]) -> None:
    """Emit one structured log line per selection decision."""

    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    _LOGGER.info(message)


@dataclass(frozen=True)
class TopicScores:
    spaced_repetition: float
    bloom: float
    flow: float
    continuity: float
    total: float


@dataclass(frozen=True)
class TopicCandidate:
    """A catalog topic joined with the learner's mastery and its scores."""

    definition: TopicDefinition
    mastery: Optional[TopicMastery]
    scores: TopicScores
    selection_type: SelectionType
    focus_areas: Tuple[str, ...]
    bloom_level: int

    @property
    def topic(self) -> str:
        return self.definition.name

    @property
    def mastery_level(self) -> float:
        return self.mastery.mastery_level if self.mastery else 0.0


@dataclass(frozen=True)
class TutorContext:
    """Hints handed to the tutoring layer alongside the selected topic."""

    is_returning_student: bool
    days_away: int
    previous_concepts_covered: Tuple[str, ...]
    concepts_needing_work: Tuple[str, ...]
    recommended_approach: str
    difficulty_adjustment: DifficultyAdjustment


@dataclass(frozen=True)
class TopicSelection:
    topic: str
    subject: str
    reason: str
    selection_type: SelectionType
    focus_areas: Tuple[str, ...]
    bloom_level: int
    estimated_duration: int
    mastery_level: float
    scores: TopicScores
    context: TutorContext
    alternatives: Tuple[str, ...] = field(default_factory=tuple)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class _ScoringInputs:
    masteries: Dict[str, TopicMastery]
    due: Dict[str, SpacedRepetitionItem]
    weak: Dict[str, WeakArea]
    recent_topics: frozenset
    needing_work: Tuple[str, ...]


class TopicSelector:
    """Rank catalog topics for a learner and pick the best one.

    Parameters
    ----------
    catalog:
        Topic catalog; defaults to the shared bundled ``topic_catalog.json``.
    aggregator:
        Supplies weak-area and review-queue derivations over unified mastery.
    max_workers:
        When greater than one and no ``executor`` is given, topics are scored
        on a temporary thread pool of this size.
    executor:
        Optional caller-owned executor used for the scoring fan-out.
    """

    def __init__(
        self,
        catalog: Optional[TopicCatalog] = None,
        aggregator: Optional[MasteryAggregator] = None,
        max_workers: int = 1,
        executor: Optional[Executor] = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.catalog = catalog or default_catalog()
        self.aggregator = aggregator or MasteryAggregator()
        self.max_workers = max_workers
        self._executor = executor

    # ----- public API --------------------------------------------------
    def select(
        self,
        subject: str,
        masteries: Sequence[TopicMastery] = (),
        sessions: Sequence[GuidedSessionSummary] = (),
        learning_style: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TopicSelection:
        now = now or datetime.now(timezone.utc)
        subject_name = self.catalog.resolve_subject(subject)
        topics = self.catalog.topics(subject_name)

        key = subject_name.lower()
        subject_masteries = [m for m in masteries if m.subject.lower() == key]
        completed = sorted(
            (s for s in sessions if s.subject.lower() == key and s.completed_at is not None),
            key=lambda s: s.completed_at,
            reverse=True,
        )

        if not subject_masteries and not completed:
            selection = self._cold_start(subject_name, topics)
        else:
            candidates = self.rank(topics, subject_masteries, completed)
            selection = self._build_selection(
                candidates, subject_name, completed, learning_style, now
            )

        _log_json(
            "topic_selection",
            {
                "subject": selection.subject,
                "topic": selection.topic,
                "selection_type": selection.selection_type,
                "bloom_level": selection.bloom_level,
                "scores": asdict(selection.scores),
                "alternatives": list(selection.alternatives),
            },
        )
        return selection

    def rank(
        self,
        topics: Sequence[TopicDefinition],
        masteries: Sequence[TopicMastery],
        completed_sessions: Sequence[GuidedSessionSummary] = (),
    ) -> List[TopicCandidate]:
        """Score ``topics`` and return them best first.

        ``completed_sessions`` must be ordered most recent first. Ties keep
        catalog order, so the earlier topic in the sequence wins.
        """

        inputs = self._prepare(masteries, completed_sessions)
        if self._executor is not None:
            candidates = list(self._executor.map(lambda t: self._score(t, inputs), topics))
        elif self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                candidates = list(pool.map(lambda t: self._score(t, inputs), topics))
        else:
            candidates = [self._score(t, inputs) for t in topics]
        candidates.sort(key=lambda c: c.scores.total, reverse=True)
        return candidates

    # ----- component scores --------------------------------------------
    @staticmethod
    def spaced_repetition_score(
        mastery: Optional[TopicMastery],
        due_item: Optional[SpacedRepetitionItem],
    ) -> float:
        if mastery is None or mastery.last_practiced is None:
            return 40
        if due_item is not None:
            return min(100, due_item.urgency * 100 + 20)
        days = mastery.days_since_last_practice
        if days > 30:
            return 80
        if days > 14:
            return 60
        if days > 7:
            return 40
        return 20

    @staticmethod
    def bloom_score(
        mastery: Optional[TopicMastery],
        definition: TopicDefinition,
        masteries: Dict[str, TopicMastery],
    ) -> float:
        for prereq in definition.prerequisites:
            prereq_mastery = masteries.get(prereq.lower())
            if prereq_mastery is None or prereq_mastery.mastery_level < 40:
                return 20
        if mastery is None:
            return 80 if definition.priority <= 10 else 60
        current_bloom = mastery.bloom_level or BloomLevel.REMEMBER
        if mastery.mastery_level >= 70 and current_bloom < BloomLevel.APPLY:
            return 90
        if 40 <= mastery.mastery_level < 70:
            return 70
        return 50

    @staticmethod
    def flow_score(mastery: Optional[TopicMastery], weak_area: Optional[WeakArea]) -> float:
        if mastery is None:
            return 60
        level = mastery.mastery_level
        if 50 <= level <= 80:
            return 90
        if weak_area is not None and mastery.accuracy_rate < 0.4:
            return 70
        if level > 85:
            return 40
        if level < 30:
            return 60
        return 70

    @staticmethod
    def continuity_score(
        definition: TopicDefinition,
        mastery: Optional[TopicMastery],
        recent_topics: frozenset,
        needing_work: Sequence[str],
    ) -> float:
        name = definition.name.lower()
        score = 50
        if name in recent_topics:
            score += 25
        if name in {c.lower() for c in needing_work}:
            score += 30
        if mastery is None and definition.priority <= 6:
            score += 15
        if definition.priority <= 10:
            score += 10
        return min(100, score)

    @staticmethod
    def selection_type(
        scores: TopicScores,
        mastery: Optional[TopicMastery],
        weak_area: Optional[WeakArea],
    ) -> SelectionType:
        if weak_area is not None and weak_area.priority >= 7:
            return "struggling_support"
        if scores.spaced_repetition >= 80:
            return "spaced_repetition"
        if scores.continuity >= 80:
            return "continuation"
        if scores.bloom >= 85 and mastery is not None and mastery.mastery_level >= 70:
            return "bloom_progression"
        return "new_topic"

    @staticmethod
    def target_bloom_level(mastery: Optional[TopicMastery]) -> int:
        if mastery is None:
            return int(BloomLevel.REMEMBER)
        current = mastery.bloom_level or int(BloomLevel.REMEMBER)
        if mastery.mastery_level >= 70:
            return min(int(BloomLevel.CREATE), current + 1)
        return current

    @staticmethod
    def difficulty_adjustment(
        mastery_level: float,
        selection_type: SelectionType,
        engagement: float,
    ) -> DifficultyAdjustment:
        if selection_type == "struggling_support" or mastery_level < 30:
            return "easier"
        if mastery_level >= 70 and engagement >= 60:
            return "challenging"
        return "standard"

    @staticmethod
    def estimate_duration(candidate: TopicCandidate) -> int:
        """Suggested session length in minutes."""

        minutes = 15
        if candidate.mastery_level == 0:
            minutes = 20
        elif candidate.mastery_level >= 70:
            minutes = 12
        if candidate.selection_type == "struggling_support":
            minutes += 5
        return minutes

    # ----- helpers -----------------------------------------------------
    def _prepare(
        self,
        masteries: Sequence[TopicMastery],
        completed_sessions: Sequence[GuidedSessionSummary],
    ) -> _ScoringInputs:
        recent = list(completed_sessions)[:RECENT_SESSION_WINDOW]
        recent_topics = set()
        needing_work: List[str] = []
        for session in recent:
            recent_topics.add(session.topic.lower())
            recent_topics.update(c.lower() for c in session.concepts_covered)
            for concept in session.concepts_needing_work:
                if concept.lower() not in {c.lower() for c in needing_work}:
                    needing_work.append(concept)

        due = self.aggregator.get_spaced_repetition_due(masteries, limit=20)
        weak = self.aggregator.get_weak_areas(masteries, limit=10)
        return _ScoringInputs(
            masteries={m.topic.lower(): m for m in masteries},
            due={d.topic.lower(): d for d in due},
            weak={w.topic.lower(): w for w in weak},
            recent_topics=frozenset(recent_topics),
            needing_work=tuple(needing_work),
        )

    def _score(self, definition: TopicDefinition, inputs: _ScoringInputs) -> TopicCandidate:
        key = definition.name.lower()
        mastery = inputs.masteries.get(key)
        weak_area = inputs.weak.get(key)

        sr = self.spaced_repetition_score(mastery, inputs.due.get(key))
        bloom = self.bloom_score(mastery, definition, inputs.masteries)
        flow = self.flow_score(mastery, weak_area)
        continuity = self.continuity_score(definition, mastery, inputs.recent_topics, inputs.needing_work)
        total = (
            sr * WEIGHTS["spaced_repetition"]
            + bloom * WEIGHTS["bloom"]
            + flow * WEIGHTS["flow"]
            + continuity * WEIGHTS["continuity"]
        )
        scores = TopicScores(sr, bloom, flow, continuity, total)
        return TopicCandidate(
            definition=definition,
            mastery=mastery,
            scores=scores,
            selection_type=self.selection_type(scores, mastery, weak_area),
            focus_areas=self._focus_areas(definition, mastery, weak_area, inputs.needing_work),
            bloom_level=self.target_bloom_level(mastery),
        )

    @staticmethod
    def _focus_areas(
        definition: TopicDefinition,
        mastery: Optional[TopicMastery],
        weak_area: Optional[WeakArea],
        needing_work: Sequence[str],
    ) -> Tuple[str, ...]:
        if mastery is None:
            areas = list(_INTRO_FOCUS)
        elif weak_area is not None:
            areas = list(weak_area.error_patterns[:3]) or ["reinforcement", "practice problems"]
        elif mastery.mastery_level >= 70:
            areas = ["advanced applications", "problem-solving strategies", "connections to other topics"]
        else:
            areas = ["understanding", "guided practice", "common mistakes"]

        name = definition.name.lower()
        for concept in needing_work:
            if len(areas) >= 5:
                break
            if name in concept.lower() and concept.lower() not in {a.lower() for a in areas}:
                areas.append(concept)
        return tuple(areas[:5])

    def _cold_start(self, subject: str, topics: Sequence[TopicDefinition]) -> TopicSelection:
        first = next((t for t in topics if t.priority == 1), topics[0])
        _LOGGER.debug("no history for %s; starting with %s", subject, first.name)
        return TopicSelection(
            topic=first.name,
            subject=subject,
            reason=(
                f"Welcome! Let's start with {first.name} - {first.description}. "
                "This foundational topic will set you up for success."
            ),
            selection_type="new_topic",
            focus_areas=_INTRO_FOCUS,
            bloom_level=int(BloomLevel.REMEMBER),
            estimated_duration=15,
            mastery_level=0.0,
            scores=TopicScores(spaced_repetition=0, bloom=100, flow=100, continuity=100, total=100),
            context=TutorContext(
                is_returning_student=False,
                days_away=0,
                previous_concepts_covered=(),
                concepts_needing_work=(),
                recommended_approach=(
                    "Start with fundamental concepts using simple examples. "
                    "Use the Feynman technique to explain clearly. "
                    "Build confidence before introducing complexity."
                ),
                difficulty_adjustment="easier",
            ),
            alternatives=tuple(t.name for t in topics if t is not first)[:3],
        )

    def _build_selection(
        self,
        candidates: Sequence[TopicCandidate],
        subject: str,
        completed: Sequence[GuidedSessionSummary],
        learning_style: Optional[str],
        now: datetime,
    ) -> TopicSelection:
        best = candidates[0]
        last = completed[0] if completed else None
        days_away = int((now - last.completed_at).total_seconds() // 86400) if last else 0

        covered: List[str] = []
        needs_work: List[str] = []
        for session in completed:
            if session.topic.lower() != best.topic.lower():
                continue
            covered.extend(c for c in session.concepts_covered if c not in covered)
            needs_work.extend(c for c in session.concepts_needing_work if c not in needs_work)

        engagement = (
            sum(s.engagement_score for s in completed[:RECENT_SESSION_WINDOW])
            / len(completed[:RECENT_SESSION_WINDOW])
            if completed
            else DEFAULT_ENGAGEMENT
        )
        return TopicSelection(
            topic=best.topic,
            subject=subject,
            reason=self._reason(best, days_away, bool(covered)),
            selection_type=best.selection_type,
            focus_areas=best.focus_areas,
            bloom_level=best.bloom_level,
            estimated_duration=self.estimate_duration(best),
            mastery_level=best.mastery_level,
            scores=best.scores,
            context=TutorContext(
                is_returning_student=bool(covered) or best.mastery_level > 0,
                days_away=days_away,
                previous_concepts_covered=tuple(covered[:10]),
                concepts_needing_work=tuple(needs_work[:5]),
                recommended_approach=self._approach(
                    best, days_away, len(covered), len(needs_work), learning_style
                ),
                difficulty_adjustment=self.difficulty_adjustment(
                    best.mastery_level, best.selection_type, engagement
                ),
            ),
            alternatives=tuple(c.topic for c in candidates[1:4]),
        )

    @staticmethod
    def _reason(candidate: TopicCandidate, days_away: int, has_history: bool) -> str:
        topic = candidate.topic
        kind = candidate.selection_type
        if kind == "spaced_repetition":
            return f"It's time to review {topic}. Spaced repetition helps lock in your learning for the long term."
        if kind == "struggling_support":
            return f"Let's work on {topic} together. We'll take it step by step to build your confidence."
        if kind == "continuation":
            if days_away > 0:
                return f"Welcome back! Let's continue where we left off with {topic}."
            return f"Great progress! Let's keep building on {topic}."
        if kind == "bloom_progression":
            return (
                f"You've shown great understanding of {topic}. "
                "Let's take it to the next level with more challenging applications."
            )
        if has_history:
            return f"Based on your progress, {topic} is the perfect next step in your learning journey."
        return f"Let's begin with {topic} - {candidate.definition.description}."

    @staticmethod
    def _approach(
        candidate: TopicCandidate,
        days_away: int,
        covered_count: int,
        needs_work_count: int,
        learning_style: Optional[str],
    ) -> str:
        kind = candidate.selection_type
        if kind == "spaced_repetition":
            steps = [f"Start with a quick review to refresh {candidate.topic} concepts."]
            if days_away > 7:
                steps.append("Use retrieval practice before re-teaching.")
        elif kind == "struggling_support":
            steps = [
                "Use the Feynman technique: explain simply with analogies.",
                "Break down into smaller steps, celebrate small wins.",
            ]
        elif kind == "continuation":
            steps = [f"Continue from previous session, building on {covered_count} concepts covered."]
            if needs_work_count > 0:
                steps.append(f"Address {needs_work_count} concepts that need reinforcement.")
        elif kind == "bloom_progression":
            steps = [
                "Student is ready for higher-order thinking.",
                "Focus on application, analysis, and problem-solving.",
            ]
        else:
            steps = [
                "Introduce the topic with clear explanations and examples.",
                "Build understanding before moving to practice.",
            ]

        if learning_style == "visual":
            steps.append("Include graphs and visual representations.")
        elif learning_style == "procedural":
            steps.append("Provide step-by-step procedures and worked examples.")
        return " ".join(steps)


__all__ = [
    "WEIGHTS",
    "SelectionType",
    "DifficultyAdjustment",
    "TopicScores",
    "TopicCandidate",
    "TutorContext",
    "TopicSelection",
    "TopicSelector",
]
