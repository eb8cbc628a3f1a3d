"""Spaced repetition system for optimized learning retention."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional, Sequence

from bloom_levels import BloomLevel
from engines.validation import (
    require_minimum,
    require_non_negative,
    require_quality,
    require_range,
    round_half_up,
    round_int,
)

_LOGGER = logging.getLogger(__name__)

MIN_EASE_FACTOR = 1.3
DEFAULT_EASE_FACTOR = 2.5
_DAY_SECONDS = 24 * 60 * 60

ReviewStrategyName = Literal["active_recall", "feynman", "practice", "review"]


@dataclass(frozen=True)
class ReviewItem:
    topic: str
    next_review: datetime
    mastery_level: float
    total_attempts: int
    flow_score: float = 50
    bloom_level: int = 1
    subject: Optional[str] = None


@dataclass(frozen=True)
class ReviewBloomLevel:
    level: int
    progressive_challenge: bool
    reason: str


@dataclass(frozen=True)
class ScheduleResult:
    """Next review produced by :meth:`SpacedRepetitionScheduler.schedule`."""

    next_review_date: datetime
    ease_factor: float
    interval: int
    repetitions: int
    review_bloom_level: int
    progressive_challenge: bool
    quality: int
    reason: str


@dataclass(frozen=True)
class ReviewStrategy:
    strategy: ReviewStrategyName
    bloom_level: int
    description: str


class SpacedRepetitionScheduler:
    """SM-2 scheduler stretched by flow and escalated through Bloom levels.

    Parameters
    ----------
    min_ease:
        Lower bound for the ease factor.
    flow_spread:
        Maximum fraction by which the flow score may shrink (flow 0) or
        stretch (flow 100) an interval. ``0.2`` yields multipliers in
        ``[0.8, 1.2]``.
    minutes_per_review:
        Time budget assumed per item when building a daily plan.
    """

    def __init__(
        self,
        min_ease: float = MIN_EASE_FACTOR,
        flow_spread: float = 0.2,
        minutes_per_review: int = 5,
    ) -> None:
        if min_ease <= 1.0:
            raise ValueError("min_ease must be greater than 1.0")
        if not 0.0 <= flow_spread < 1.0:
            raise ValueError("flow_spread must be in [0, 1)")
        if minutes_per_review <= 0:
            raise ValueError("minutes_per_review must be positive")
        self.min_ease = min_ease
        self.flow_spread = flow_spread
        self.minutes_per_review = minutes_per_review

    # ----- scheduling --------------------------------------------------
    def schedule(
        self,
        quality: int,
        ease_factor: float = DEFAULT_EASE_FACTOR,
        interval: int = 0,
        repetitions: int = 0,
        flow_score: float = 50,
        bloom_level: "BloomLevel | int" = BloomLevel.REMEMBER,
        progressive_challenge: bool = False,
        now: Optional[datetime] = None,
    ) -> ScheduleResult:
        """Compute the next review for a topic.

        ``progressive_challenge`` describes the previous review and is
        only echoed into the log; escalation is decided afresh from
        quality, repetitions and level on every call.
        """

        quality = require_quality(quality)
        require_minimum("ease_factor", ease_factor, self.min_ease)
        require_non_negative("interval", interval)
        require_non_negative("repetitions", repetitions)
        require_range("flow_score", flow_score, 0, 100)
        level = BloomLevel.coerce(bloom_level)
        now = now or datetime.now(timezone.utc)

        ease = self.update_ease(ease_factor, quality)
        if quality < 3:
            repetitions = 0
            interval = 1
        else:
            repetitions += 1
            if repetitions == 1:
                interval = 1
            elif repetitions == 2:
                interval = 6
            else:
                interval = round_int(interval * ease)

        interval = self.adjust_interval_for_flow(interval, flow_score)
        review = self.review_bloom_level(level, repetitions, quality)
        result = ScheduleResult(
            next_review_date=now + timedelta(days=interval),
            ease_factor=round_half_up(ease, 2),
            interval=interval,
            repetitions=repetitions,
            review_bloom_level=review.level,
            progressive_challenge=review.progressive_challenge,
            quality=quality,
            reason=review.reason,
        )
        _LOGGER.debug(
            "scheduled q=%s ease=%.2f interval=%s reps=%s review_level=%s (was progressive=%s)",
            quality,
            result.ease_factor,
            interval,
            repetitions,
            review.level,
            progressive_challenge,
        )
        return result

    def update_ease(self, ease_factor: float, quality: int) -> float:
        miss = 5 - quality
        return max(self.min_ease, ease_factor + 0.1 - miss * (0.08 + miss * 0.02))

    def adjust_interval_for_flow(self, base_interval: int, flow_score: float) -> int:
        multiplier = (1 - self.flow_spread) + (flow_score / 100) * (2 * self.flow_spread)
        return max(1, round_int(base_interval * multiplier))

    @staticmethod
    def review_bloom_level(level: "BloomLevel | int", repetitions: int, quality: int) -> ReviewBloomLevel:
        original = int(BloomLevel.coerce(level))
        if quality < 4 or repetitions < 2:
            return ReviewBloomLevel(original, False, "Reinforcing current level mastery")
        if original < BloomLevel.CREATE:
            return ReviewBloomLevel(
                original + 1, True, "Strong mastery - challenging with higher Bloom level"
            )
        if repetitions >= 5 and original >= BloomLevel.APPLY:
            alternate = min(int(BloomLevel.CREATE), original + 1) if repetitions % 2 == 0 else original
            return ReviewBloomLevel(
                alternate, alternate > original, "Maintaining mastery with varied challenges"
            )
        return ReviewBloomLevel(original, False, "Continuing at current level")

    # ----- due dates ---------------------------------------------------
    @staticmethod
    def days_until_review(next_review: datetime, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return math.ceil((next_review - now).total_seconds() / _DAY_SECONDS)

    @staticmethod
    def is_due_for_review(next_review: datetime, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return next_review <= now

    def is_overdue(self, next_review: datetime, now: Optional[datetime] = None) -> bool:
        """More than a full day past the due date."""

        return self.days_until_review(next_review, now) < -1

    @staticmethod
    def review_priority(
        next_review: datetime,
        mastery_level: float,
        total_attempts: int,
        flow_score: float = 50,
        now: Optional[datetime] = None,
    ) -> float:
        """Sort key for due items; higher means more urgent."""

        now = now or datetime.now(timezone.utc)
        days_until = math.floor((next_review - now).total_seconds() / _DAY_SECONDS)
        overdue = abs(days_until) * 2 if days_until < 0 else 0
        mastery_factor = (100 - mastery_level) / 100 * 5
        attempts_factor = min(1, total_attempts / 10) * 3
        flow_factor = (100 - flow_score) / 100 * 2
        return overdue + mastery_factor + attempts_factor + flow_factor

    def get_review_strategy(
        self,
        mastery_level: float,
        current_bloom_level: int,
        repetitions: int,
        flow_score: float,
    ) -> ReviewStrategy:
        level = max(1, int(current_bloom_level))
        if mastery_level < 50:
            return ReviewStrategy("review", min(2, level), "Focus on understanding the basics")
        if mastery_level < 70 and flow_score < 50:
            return ReviewStrategy("feynman", level, "Explain the concept to solidify understanding")
        if mastery_level >= 70 and repetitions >= 2:
            return ReviewStrategy("practice", min(6, level + 1), "Apply knowledge with new challenges")
        return ReviewStrategy("active_recall", level, "Test your recall with practice questions")

    # ----- review queues -----------------------------------------------
    def get_due_reviews(
        self,
        reviews: Sequence[ReviewItem],
        current_time: Optional[datetime] = None,
    ) -> List[ReviewItem]:
        """Get list of items due for review."""
        if current_time is None:
            current_time = datetime.now(timezone.utc)

        return [item for item in reviews
                if self.is_due_for_review(item.next_review, current_time)]

    def prioritize_reviews(
        self,
        reviews: Sequence[ReviewItem],
        current_time: Optional[datetime] = None,
    ) -> List[ReviewItem]:
        """Due items ordered by descending review priority."""
        current_time = current_time or datetime.now(timezone.utc)
        due = self.get_due_reviews(reviews, current_time)
        return sorted(
            due,
            key=lambda item: self.review_priority(
                item.next_review,
                item.mastery_level,
                item.total_attempts,
                item.flow_score,
                current_time,
            ),
            reverse=True,
        )

    def suggest_daily_review_plan(
        self,
        reviews: Sequence[ReviewItem],
        available_time_minutes: int = 30,
        current_time: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Generate a daily review plan based on available time."""
        prioritized = self.prioritize_reviews(reviews, current_time)
        items_possible = min(len(prioritized), available_time_minutes // self.minutes_per_review)

        return {
            "total_due": len(prioritized),
            "recommended_reviews": items_possible,
            "estimated_time": items_possible * self.minutes_per_review,
            "items": [
                {
                    "topic": item.topic,
                    "subject": item.subject,
                    "bloom_level": item.bloom_level,
                    "mastery_level": item.mastery_level,
                }
                for item in prioritized[:items_possible]
            ],
        }


__all__ = [
    "MIN_EASE_FACTOR",
    "DEFAULT_EASE_FACTOR",
    "ReviewItem",
    "ReviewBloomLevel",
    "ScheduleResult",
    "ReviewStrategy",
    "SpacedRepetitionScheduler",
]
