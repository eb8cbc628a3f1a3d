"""Per-topic Bloom taxonomy progression tracking."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from bloom_levels import (
    BLOOM_LEVEL_COUNT,
    LEVEL_KEYWORDS,
    MASTERY_THRESHOLD,
    SCAFFOLD_STEPS,
    BloomLevel,
    ScaffoldStep,
)
from engines.validation import ValidationError, require_quality, round_int

_LOGGER = logging.getLogger(__name__)

_DIFFICULTY_FALLBACK = {
    "easy": BloomLevel.REMEMBER,
    "medium": BloomLevel.APPLY,
    "hard": BloomLevel.ANALYZE,
}


@dataclass(frozen=True)
class BloomLevelProgress:
    attempts: int = 0
    mastery: int = 0
    last_attempt: Optional[datetime] = None


def _empty_levels() -> Tuple[BloomLevelProgress, ...]:
    return tuple(BloomLevelProgress() for _ in range(BLOOM_LEVEL_COUNT))


@dataclass(frozen=True)
class BloomProgress:
    """Attempts and mastery for each Bloom level of one topic.

    ``current_level`` is 0 until some level reaches the mastery threshold
    and afterwards only ever moves up.
    """

    levels: Tuple[BloomLevelProgress, ...] = field(default_factory=_empty_levels)
    current_level: int = 0
    next_target_level: int = 1

    def __post_init__(self) -> None:
        if len(self.levels) != BLOOM_LEVEL_COUNT:
            raise ValidationError(
                f"Bloom progress needs exactly {BLOOM_LEVEL_COUNT} levels, got {len(self.levels)}"
            )
        if not 0 <= self.current_level <= BLOOM_LEVEL_COUNT:
            raise ValidationError("current_level must be within [0, 6]")

    def level(self, level: "BloomLevel | int") -> BloomLevelProgress:
        return self.levels[BloomLevel.coerce(level).slot]

    @property
    def highest_attempted(self) -> int:
        attempted = [lvl for lvl in BloomLevel if self.levels[lvl.slot].attempts > 0]
        return max(attempted) if attempted else 0


@dataclass(frozen=True)
class NextLevelTarget:
    next_level: BloomLevel
    required_mastery: int
    current_mastery: int
    is_ready: bool


class BloomProgressTracker:
    """Maintain Bloom-level mastery and the one-way level ratchet.

    Mastery at a level is an exponentially weighted average of attempt
    quality whose weight on the newest attempt grows with the number of
    attempts, so early attempts move it quickly and settled history slowly.
    """

    def __init__(self, mastery_threshold: int = MASTERY_THRESHOLD, weight_horizon: int = 10) -> None:
        if not 0 < mastery_threshold <= 100:
            raise ValueError("mastery_threshold must be in (0, 100]")
        if weight_horizon <= 0:
            raise ValueError("weight_horizon must be positive")
        self.mastery_threshold = mastery_threshold
        self.weight_horizon = weight_horizon

    # ----- public API --------------------------------------------------
    def update(
        self,
        progress: BloomProgress,
        level: "BloomLevel | int",
        quality: int,
        now: Optional[datetime] = None,
    ) -> BloomProgress:
        """Return new progress after an attempt at ``level`` scored ``quality``."""

        bloom = BloomLevel.coerce(level)
        quality = require_quality(quality)
        now = now or datetime.now(timezone.utc)

        previous = progress.levels[bloom.slot]
        attempts = previous.attempts + 1
        mastery = self.calculate_mastery(previous.mastery, attempts, quality)
        levels = list(progress.levels)
        levels[bloom.slot] = BloomLevelProgress(attempts, mastery, now)

        current_level = progress.current_level
        next_target = progress.next_target_level
        if mastery >= self.mastery_threshold and bloom > current_level:
            _LOGGER.info(
                "Bloom level advanced %s -> %s (mastery=%s)", current_level, int(bloom), mastery
            )
            current_level = int(bloom)
            next_target = int(bloom.next())

        return replace(
            progress,
            levels=tuple(levels),
            current_level=current_level,
            next_target_level=next_target,
        )

    def calculate_mastery(self, current_mastery: float, attempts: int, quality: int) -> int:
        weight = min(attempts, self.weight_horizon) / self.weight_horizon
        quality_percent = quality / 5 * 100
        return round_int(current_mastery * (1 - weight) + quality_percent * weight)

    def has_mastered(
        self,
        progress: BloomProgress,
        level: "BloomLevel | int",
        threshold: Optional[int] = None,
    ) -> bool:
        limit = self.mastery_threshold if threshold is None else threshold
        return progress.level(level).mastery >= limit

    def next_level(self, progress: BloomProgress) -> NextLevelTarget:
        """Which level to practise next, and whether the learner is ready for it."""

        if progress.current_level == 0:
            return NextLevelTarget(BloomLevel.REMEMBER, self.mastery_threshold, 0, True)

        current = BloomLevel(progress.current_level)
        current_mastery = progress.level(current).mastery
        if current_mastery >= self.mastery_threshold:
            return NextLevelTarget(current.next(), self.mastery_threshold, 0, True)
        return NextLevelTarget(current, self.mastery_threshold, current_mastery, False)

    # ----- tagging and scaffolding -------------------------------------
    @staticmethod
    def determine_bloom_level(
        question_text: str,
        explanation: str = "",
        difficulty: Optional[str] = None,
    ) -> BloomLevel:
        """Infer a question's Bloom level from its wording.

        The level with the most keyword hits wins; ties go to the lower
        level. Without any hit the difficulty label decides.
        """

        text = f"{question_text} {explanation}".lower()
        best_level: Optional[BloomLevel] = None
        best_hits = 0
        for level in BloomLevel:
            hits = sum(1 for keyword in LEVEL_KEYWORDS[level] if keyword in text)
            if hits > best_hits:
                best_level, best_hits = level, hits
        if best_level is not None:
            return best_level
        key = (difficulty or "").strip().lower()
        return _DIFFICULTY_FALLBACK.get(key, BloomLevel.APPLY)

    @staticmethod
    def scaffold(current: "BloomLevel | int", target: "BloomLevel | int") -> List[ScaffoldStep]:
        start = BloomLevel.coerce(current)
        stop = BloomLevel.coerce(target)
        return [SCAFFOLD_STEPS[level] for level in BloomLevel if start <= level <= stop]


__all__ = [
    "BloomLevelProgress",
    "BloomProgress",
    "NextLevelTarget",
    "BloomProgressTracker",
]
