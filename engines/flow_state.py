"""Flow-state detection and difficulty balancing.

Follows Csikszentmihalyi's channel model: when the challenge sits well
below the learner's skill they drift into boredom, well above it into
anxiety, and a close match keeps them in flow. The engine offers an
instantaneous challenge/skill classification, a behaviour-based detector
for when only attempt telemetry is available, a difficulty recommendation
built on top of both, and a micro-break recommender.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, Optional, Sequence, Tuple

from engines.validation import (
    require_non_negative,
    require_range,
    round_int,
)

_LOGGER = logging.getLogger(__name__)

FlowZone = Literal["boredom", "flow", "anxiety"]
FLOW_ZONES: Tuple[str, ...] = ("boredom", "flow", "anxiety")

BREAK_ACTIVITIES: Tuple[str, ...] = (
    "Take a short walk",
    "Do some stretches",
    "Get a drink of water",
    "Take 5 deep breaths",
    "Look at something far away to rest your eyes",
)

_ZONE_WEIGHTS = {"flow": 100, "boredom": 50, "anxiety": 20}


@dataclass(frozen=True)
class FlowState:
    zone: FlowZone
    score: float
    challenge: float
    skill: float
    recommended_action: str


@dataclass(frozen=True)
class BehaviorSignals:
    """Telemetry of the most recent attempt(s) used for behavioural detection."""

    is_correct: bool
    time_spent: float
    average_time: float
    hints_used: int = 0
    retries: int = 0
    pauses: int = 0
    recent_accuracy: float = 0.5

    def __post_init__(self) -> None:
        require_non_negative("time_spent", self.time_spent)
        require_non_negative("average_time", self.average_time)
        require_non_negative("hints_used", self.hints_used)
        require_non_negative("retries", self.retries)
        require_non_negative("pauses", self.pauses)
        require_range("recent_accuracy", self.recent_accuracy, 0, 1)


@dataclass(frozen=True)
class BehaviorDetection:
    zone: FlowZone
    confidence: float
    boredom_signals: int
    flow_signals: int
    anxiety_signals: int


@dataclass(frozen=True)
class DifficultyAdjustment:
    new_difficulty: int
    reason: str
    flow_target: Literal["flow", "slight_challenge"]
    should_provide_hint: bool
    detected_zone: FlowZone


@dataclass(frozen=True)
class BreakRecommendation:
    should_break: bool
    duration_minutes: int
    suggested_activity: str
    reason: str


@dataclass(frozen=True)
class FlowSegment:
    """A zone observation that holds until the next segment starts."""

    zone: FlowZone
    started_at: datetime


class FlowStateEngine:
    """Classify challenge/skill balance and recommend difficulty changes.

    Parameters
    ----------
    flow_band:
        Maximum challenge/skill distance still counted as flow.
    min_flow_level:
        Challenge and skill must both reach this level before a match is
        treated as flow rather than trivially easy material.
    anxiety_break_minutes:
        Minutes spent in anxiety before a micro-break is suggested.
    failure_break_streak:
        Consecutive failures that trigger a break.
    low_flow_threshold:
        Mean recent flow score below which a break is suggested.
    rng:
        Random source used to vary suggested break activities. Inject a
        seeded ``random.Random`` for reproducible output.
    """

    def __init__(
        self,
        flow_band: float = 1,
        min_flow_level: float = 3,
        anxiety_break_minutes: float = 10,
        failure_break_streak: int = 3,
        low_flow_threshold: float = 30,
        rng: Optional[random.Random] = None,
    ) -> None:
        if flow_band < 0:
            raise ValueError("flow_band must be non-negative")
        if failure_break_streak <= 0:
            raise ValueError("failure_break_streak must be positive")
        self.flow_band = flow_band
        self.min_flow_level = min_flow_level
        self.anxiety_break_minutes = anxiety_break_minutes
        self.failure_break_streak = failure_break_streak
        self.low_flow_threshold = low_flow_threshold
        self._rng = rng or random.Random()

    # ----- public API --------------------------------------------------
    def classify(self, challenge: float, skill: float) -> FlowState:
        require_range("challenge", challenge, 1, 10)
        require_range("skill", skill, 1, 10)

        distance = abs(challenge - skill)
        if (
            distance <= self.flow_band
            and challenge >= self.min_flow_level
            and skill >= self.min_flow_level
        ):
            return FlowState(
                "flow",
                100 - distance * 10,
                challenge,
                skill,
                "Maintain current level - optimal engagement",
            )
        if challenge < skill - 1:
            return FlowState(
                "boredom",
                max(0, 50 - (skill - challenge) * 10),
                challenge,
                skill,
                "Increase challenge to maintain engagement",
            )
        # near-matches below min_flow_level land here too; score by distance
        return FlowState(
            "anxiety",
            max(0, 50 - distance * 10),
            challenge,
            skill,
            "Reduce challenge or provide support",
        )

    def detect_from_behavior(self, signals: BehaviorSignals) -> BehaviorDetection:
        boredom = anxiety = flow = 0

        if signals.average_time > 0:
            ratio = signals.time_spent / signals.average_time
            if ratio < 0.5:
                boredom += 2
            elif ratio > 2:
                anxiety += 2
            else:
                flow += 1

        if signals.is_correct:
            flow += 1
        else:
            anxiety += 1

        if signals.hints_used == 0 and signals.retries == 0:
            flow += 1
        elif signals.hints_used > 3 or signals.retries > 2:
            anxiety += 2

        if signals.pauses > 3:
            anxiety += 1

        if signals.recent_accuracy > 0.9:
            boredom += 1
        elif signals.recent_accuracy < 0.4:
            anxiety += 1

        total = boredom + anxiety + flow
        zone: FlowZone
        if boredom > anxiety and boredom > flow:
            zone, count = "boredom", boredom
        elif anxiety > boredom and anxiety > flow:
            zone, count = "anxiety", anxiety
        else:
            zone, count = "flow", flow
        confidence = count / total if total else 0.0
        return BehaviorDetection(zone, confidence, boredom, flow, anxiety)

    def adjust_for_flow(
        self,
        current_difficulty: float,
        skill: float,
        recent: BehaviorSignals,
    ) -> DifficultyAdjustment:
        """Recommend the next question difficulty from recent behaviour."""

        require_range("current_difficulty", current_difficulty, 1, 10)
        require_range("skill", skill, 1, 10)
        detected = self.detect_from_behavior(recent)

        new_difficulty = float(current_difficulty)
        flow_target: Literal["flow", "slight_challenge"] = "flow"
        hint = False
        if detected.zone == "boredom":
            new_difficulty = min(10, current_difficulty + 1)
            reason = "Performance indicates material is too easy - increasing challenge"
            flow_target = "slight_challenge"
        elif detected.zone == "anxiety":
            new_difficulty = max(1, current_difficulty - 1)
            reason = "Performance indicates material is too difficult - reducing challenge"
            hint = True
        elif recent.is_correct and recent.hints_used == 0:
            new_difficulty = min(10, current_difficulty + 0.5)
            reason = "Maintaining flow with slight progression"
            flow_target = "slight_challenge"
        else:
            reason = "Optimal challenge-skill balance - maintaining level"

        if new_difficulty < skill - 2:
            new_difficulty = skill - 1
            reason = "Adjusted to stay within learning zone"

        adjustment = DifficultyAdjustment(
            new_difficulty=round_int(new_difficulty),
            reason=reason,
            flow_target=flow_target,
            should_provide_hint=hint,
            detected_zone=detected.zone,
        )
        _LOGGER.debug(
            "difficulty %.1f -> %s (%s, zone=%s)",
            current_difficulty,
            adjustment.new_difficulty,
            reason,
            detected.zone,
        )
        return adjustment

    def should_suggest_break(
        self,
        time_in_anxiety: float,
        consecutive_failures: int,
        recent_flow_scores: Sequence[float] = (),
    ) -> BreakRecommendation:
        require_non_negative("time_in_anxiety", time_in_anxiety)
        require_non_negative("consecutive_failures", consecutive_failures)

        if recent_flow_scores:
            average = sum(recent_flow_scores) / len(recent_flow_scores)
        else:
            average = 50.0

        should_break = (
            time_in_anxiety > self.anxiety_break_minutes
            or consecutive_failures >= self.failure_break_streak
            or average < self.low_flow_threshold
        )
        if not should_break:
            return BreakRecommendation(False, 0, "", "")

        duration = 5
        if time_in_anxiety > 15 or consecutive_failures >= 5:
            duration = 10

        if consecutive_failures >= self.failure_break_streak:
            reason = "Multiple incorrect answers - a break might help you reset"
        else:
            reason = "You've been working hard - a short break can boost your focus"
        return BreakRecommendation(True, duration, self._rng.choice(BREAK_ACTIVITIES), reason)

    @staticmethod
    def calculate_session_flow_score(
        segments: Sequence[FlowSegment],
        ended_at: Optional[datetime] = None,
    ) -> int:
        """Time-weighted flow score of a session (flow 100, boredom 50, anxiety 20)."""

        if not segments:
            return 50
        end = ended_at or datetime.now(timezone.utc)
        totals = {zone: 0.0 for zone in FLOW_ZONES}
        ordered = sorted(segments, key=lambda seg: seg.started_at)
        for idx, segment in enumerate(ordered):
            stop = ordered[idx + 1].started_at if idx + 1 < len(ordered) else end
            minutes = max(0.0, (stop - segment.started_at).total_seconds() / 60)
            totals[segment.zone] += minutes

        total_time = sum(totals.values())
        if total_time == 0:
            return 50
        weighted = sum(totals[zone] * _ZONE_WEIGHTS[zone] for zone in FLOW_ZONES)
        return round_int(weighted / total_time)

    @staticmethod
    def estimate_skill_level(mastery_level: float, accuracy_rate: float, bloom_level: int) -> int:
        """Project mastery, accuracy and Bloom stage onto the 1-10 skill scale."""

        require_range("mastery_level", mastery_level, 0, 100)
        require_range("accuracy_rate", accuracy_rate, 0, 1)
        require_range("bloom_level", bloom_level, 0, 6)
        skill = mastery_level / 100 * 4 + accuracy_rate * 3 + bloom_level / 6 * 3
        return max(1, min(10, round_int(skill)))


__all__ = [
    "FlowZone",
    "FLOW_ZONES",
    "BREAK_ACTIVITIES",
    "FlowState",
    "BehaviorSignals",
    "BehaviorDetection",
    "DifficultyAdjustment",
    "BreakRecommendation",
    "FlowSegment",
    "FlowStateEngine",
]
