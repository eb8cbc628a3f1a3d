"""Cross-topic learner profiling and session planning."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Literal, Optional, Sequence, Tuple

from bloom_levels import BloomLevel
from engines.confidence import StudentType, coerce_student_type, determine_student_type
from engines.flow_state import FlowStateEngine, FlowZone
from engines.mastery_record import TopicMasteryRecord
from engines.validation import clamp, require_range, round_half_up, round_int
from schemas import LearningSessionSummary

_LOGGER = logging.getLogger(__name__)

ChallengePreference = Literal["conservative", "moderate", "aggressive"]
SessionType = Literal["study", "review", "practice", "break"]

DEFAULT_FLOW_SCORE = 50
DEFAULT_SESSION_MINUTES = 30
DEFAULT_PREFERRED_BLOOM = 2
ACTIVITY_WINDOW_DAYS = 30

_CHALLENGE_BY_TYPE: Dict[str, ChallengePreference] = {
    "struggler": "conservative",
    "intermediate": "moderate",
    "advanced": "aggressive",
}


@dataclass(frozen=True)
class LearnerPreferences:
    preferred_bloom_level: int = DEFAULT_PREFERRED_BLOOM
    challenge_preference: ChallengePreference = "moderate"
    optimal_session_duration: int = DEFAULT_SESSION_MINUTES


@dataclass(frozen=True)
class SubjectProfile:
    subject: str
    mastery: int
    bloom_level: int
    flow_score: int
    strengths: Tuple[str, ...]
    weaknesses: Tuple[str, ...]


@dataclass(frozen=True)
class LearnerProfile:
    """Snapshot of a learner across every subject and topic."""

    user_id: str
    student_type: StudentType
    current_level: int
    overall_mastery: int = 0
    average_accuracy: float = 0.0
    average_flow_score: int = DEFAULT_FLOW_SCORE
    total_study_time: int = 0
    subject_profiles: Tuple[SubjectProfile, ...] = ()
    preferences: LearnerPreferences = field(default_factory=LearnerPreferences)
    streak_days: int = 0
    last_active_date: Optional[datetime] = None
    recent_session_count: int = 0


@dataclass(frozen=True)
class FlowPrediction:
    predicted_zone: FlowZone
    confidence: float
    recommended_challenge: float
    explanation: str


@dataclass(frozen=True)
class ReviewSuggestion:
    subject: str
    topic: str
    priority: int


@dataclass(frozen=True)
class LearnSuggestion:
    subject: str
    topic: str
    bloom_level: int


@dataclass(frozen=True)
class BloomTarget:
    subject: str
    level: int
    description: str


@dataclass(frozen=True)
class SessionRecommendation:
    type: SessionType
    duration: int
    focus: str


@dataclass(frozen=True)
class LearningRecommendations:
    concepts_to_review: Tuple[ReviewSuggestion, ...]
    concepts_to_learn: Tuple[LearnSuggestion, ...]
    bloom_levels_to_target: Tuple[BloomTarget, ...]
    flow_optimizations: Tuple[str, ...]
    session: SessionRecommendation


class LearnerProfileBuilder:
    """Summarise mastery records and sessions into a :class:`LearnerProfile`.

    Parameters
    ----------
    flow_engine:
        Used to predict the flow zone of a proposed challenge.
    activity_window_days:
        Sessions older than this are ignored for duration, streak and flow.
    """

    def __init__(
        self,
        flow_engine: Optional[FlowStateEngine] = None,
        activity_window_days: int = ACTIVITY_WINDOW_DAYS,
    ) -> None:
        if activity_window_days <= 0:
            raise ValueError("activity_window_days must be positive")
        self.flow_engine = flow_engine or FlowStateEngine()
        self.activity_window_days = activity_window_days

    # ----- public API --------------------------------------------------
    def build(
        self,
        user_id: str,
        records: Sequence[TopicMasteryRecord] = (),
        sessions: Sequence[LearningSessionSummary] = (),
        current_level: int = 5,
        now: Optional[datetime] = None,
    ) -> LearnerProfile:
        require_range("current_level", current_level, 1, 10)
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.activity_window_days)
        recent = [s for s in sessions if s.started_at >= cutoff]

        overall = round_int(sum(r.mastery_level for r in records) / len(records)) if records else 0
        raw_accuracy = sum(r.accuracy_rate for r in records) / len(records) if records else 0.0
        accuracy = round_half_up(raw_accuracy, 2)
        flow = self._average_flow_score(records, recent)
        student_type = determine_student_type(overall, raw_accuracy, flow)
        streak, last_active = self._streak(recent, now)

        profile = LearnerProfile(
            user_id=user_id,
            student_type=student_type,
            current_level=int(current_level),
            overall_mastery=overall,
            average_accuracy=accuracy,
            average_flow_score=flow,
            total_study_time=round_int(sum(s.duration_minutes for s in recent)),
            subject_profiles=self._subject_profiles(records),
            preferences=self._preferences(records, recent, student_type),
            streak_days=streak,
            last_active_date=last_active,
            recent_session_count=len(recent),
        )
        _LOGGER.debug(
            "profile user=%s type=%s mastery=%s accuracy=%s flow=%s",
            user_id,
            student_type,
            overall,
            accuracy,
            flow,
        )
        return profile

    @staticmethod
    def update_skill_level(
        current_level: float,
        questions_attempted: int,
        questions_correct: int,
        flow_score: float,
    ) -> int:
        """Skill level after a session: nudged by half a step, clamped to 1-10."""

        accuracy = questions_correct / questions_attempted if questions_attempted > 0 else 0
        adjustment = 0.0
        if accuracy >= 0.9 and flow_score >= 70:
            adjustment = 0.5
        elif accuracy < 0.4:
            adjustment = -0.5
        return round_int(clamp(current_level + adjustment, 1, 10))

    def predict_flow_state(
        self,
        student_type: Optional[str],
        current_skill: float,
        proposed_challenge: float,
    ) -> FlowPrediction:
        require_range("current_skill", current_skill, 1, 10)
        require_range("proposed_challenge", proposed_challenge, 1, 10)
        kind = coerce_student_type(student_type)

        if kind == "struggler":
            challenge = max(1, min(current_skill, proposed_challenge))
            explanation = "Keeping challenge at or below skill level to build confidence"
        elif kind == "intermediate":
            challenge = min(10, current_skill + 1)
            explanation = "Moderate challenge for steady growth"
        else:
            challenge = min(10, current_skill + 2)
            explanation = "Higher challenge for continued engagement"

        state = self.flow_engine.classify(challenge, current_skill)
        return FlowPrediction(
            predicted_zone=state.zone,
            confidence=round_half_up(state.score / 100, 2),
            recommended_challenge=challenge,
            explanation=explanation,
        )

    def predict_for_profile(self, profile: LearnerProfile, proposed_challenge: float) -> FlowPrediction:
        return self.predict_flow_state(profile.student_type, profile.current_level, proposed_challenge)

    def recommend(
        self,
        profile: LearnerProfile,
        records: Sequence[TopicMasteryRecord] = (),
        now: Optional[datetime] = None,
    ) -> LearningRecommendations:
        now = now or datetime.now(timezone.utc)
        due = sorted(
            (r for r in records if r.next_review_date is not None and r.next_review_date <= now),
            key=lambda r: r.next_review_date,
        )[:5]
        to_review = tuple(ReviewSuggestion(r.subject, r.topic, 100 - r.mastery_level) for r in due)

        low = sorted((r for r in records if r.mastery_level < 50), key=lambda r: r.mastery_level)[:5]
        to_learn = tuple(LearnSuggestion(r.subject, r.topic, r.bloom.next_target_level or 1) for r in low)

        targets = []
        for subject in profile.subject_profiles:
            level = BloomLevel(min(6, subject.bloom_level + 1))
            targets.append(BloomTarget(subject.subject, int(level), level.description))

        return LearningRecommendations(
            concepts_to_review=to_review,
            concepts_to_learn=to_learn,
            bloom_levels_to_target=tuple(targets),
            flow_optimizations=tuple(self.flow_optimizations(profile)),
            session=self.session_recommendation(profile, len(to_review)),
        )

    @staticmethod
    def flow_optimizations(profile: LearnerProfile) -> List[str]:
        tips: List[str] = []
        if profile.average_flow_score < 50:
            tips.append("Try breaking study sessions into shorter segments")
            tips.append("Take breaks when you feel stuck")
        if profile.student_type == "struggler":
            tips.append("Focus on mastering basics before advancing")
            tips.append("Use hints freely - they help build understanding")
        if profile.streak_days == 0:
            tips.append("Try studying a little each day - consistency helps retention")
        low_flow = next((s for s in profile.subject_profiles if s.flow_score < 40), None)
        if low_flow is not None:
            tips.append(
                f"Consider reviewing {low_flow.subject} fundamentals - they may need reinforcement"
            )
        return tips

    @staticmethod
    def session_recommendation(profile: LearnerProfile, due_review_count: int) -> SessionRecommendation:
        if due_review_count >= 3:
            return SessionRecommendation("review", 20, "Spaced repetition review of due topics")
        if profile.student_type == "struggler":
            return SessionRecommendation("study", 15, "Build understanding with easier concepts")
        if profile.average_flow_score < 40:
            return SessionRecommendation("break", 10, "Take a break before continuing")
        return SessionRecommendation("practice", 25, "Apply knowledge with practice questions")

    # ----- helpers -----------------------------------------------------
    @staticmethod
    def _average_flow_score(
        records: Sequence[TopicMasteryRecord],
        sessions: Sequence[LearningSessionSummary],
    ) -> int:
        scores = [r.flow.flow_score for r in records if r.flow.flow_score]
        scores += [s.flow_score for s in sessions if s.flow_score]
        if not scores:
            return DEFAULT_FLOW_SCORE
        return round_int(sum(scores) / len(scores))

    @staticmethod
    def _subject_profiles(records: Sequence[TopicMasteryRecord]) -> Tuple[SubjectProfile, ...]:
        grouped: Dict[str, List[TopicMasteryRecord]] = {}
        for record in records:
            grouped.setdefault(record.subject, []).append(record)

        profiles = []
        for subject, items in grouped.items():
            flows = [r.flow.flow_score for r in items if r.flow.flow_score]
            profiles.append(
                SubjectProfile(
                    subject=subject,
                    mastery=round_int(sum(r.mastery_level for r in items) / len(items)),
                    bloom_level=max(r.bloom.current_level or 1 for r in items),
                    flow_score=round_int(sum(flows) / max(1, len(flows))),
                    strengths=tuple(r.topic for r in items if r.accuracy_rate >= 0.8),
                    weaknesses=tuple(r.topic for r in items if r.accuracy_rate < 0.5),
                )
            )
        return tuple(profiles)

    @staticmethod
    def _preferences(
        records: Sequence[TopicMasteryRecord],
        sessions: Sequence[LearningSessionSummary],
        student_type: StudentType,
    ) -> LearnerPreferences:
        duration = (
            sum(s.duration_minutes for s in sessions) / len(sessions)
            if sessions
            else DEFAULT_SESSION_MINUTES
        )
        levels = [r.bloom.current_level or 1 for r in records]
        preferred = round_int(sum(levels) / len(levels)) if levels else DEFAULT_PREFERRED_BLOOM
        return LearnerPreferences(
            preferred_bloom_level=preferred,
            challenge_preference=_CHALLENGE_BY_TYPE[student_type],
            optimal_session_duration=round_int(duration),
        )

    @staticmethod
    def _streak(
        sessions: Sequence[LearningSessionSummary],
        now: datetime,
    ) -> Tuple[int, Optional[datetime]]:
        """Consecutive calendar days with a session, counting back from today."""

        if not sessions:
            return 0, None
        last_active = max(s.started_at for s in sessions)
        active_days = {s.started_at.astimezone(timezone.utc).date() for s in sessions}
        day = now.astimezone(timezone.utc).date()
        streak = 0
        while day in active_days:
            streak += 1
            day -= timedelta(days=1)
        return streak, last_active


__all__ = [
    "ChallengePreference",
    "SessionType",
    "LearnerPreferences",
    "SubjectProfile",
    "LearnerProfile",
    "FlowPrediction",
    "ReviewSuggestion",
    "LearnSuggestion",
    "BloomTarget",
    "SessionRecommendation",
    "LearningRecommendations",
    "LearnerProfileBuilder",
]
