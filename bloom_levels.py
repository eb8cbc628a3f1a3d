"""Bloom taxonomy levels used across the mastery engines."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Tuple

from engines.validation import ValidationError


class BloomLevel(IntEnum):
    """Closed, ordered set of cognitive levels (Remember=1 ... Create=6)."""

    REMEMBER = 1
    UNDERSTAND = 2
    APPLY = 3
    ANALYZE = 4
    EVALUATE = 5
    CREATE = 6

    @property
    def label(self) -> str:
        return self.name.lower()

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @property
    def slot(self) -> int:
        """Zero-based index into per-level arrays."""

        return self.value - 1

    def next(self) -> "BloomLevel":
        return BloomLevel(min(BloomLevel.CREATE, self.value + 1))

    @classmethod
    def coerce(cls, value: "int | str | BloomLevel") -> "BloomLevel":
        """Accept a level number, enum member or case-insensitive name."""

        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            if key.isdigit():
                return cls.coerce(int(key))
            try:
                return cls[key]
            except KeyError as exc:
                raise ValidationError(f"Unknown Bloom level: {value!r}") from exc
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"Bloom level must be an int or name, got {value!r}")
        try:
            return cls(value)
        except ValueError as exc:
            raise ValidationError(f"Bloom level must be within [1, 6], got {value}") from exc


_DESCRIPTIONS: Dict[BloomLevel, str] = {
    BloomLevel.REMEMBER: "Recall facts and basic concepts",
    BloomLevel.UNDERSTAND: "Explain ideas and concepts",
    BloomLevel.APPLY: "Use information in new situations",
    BloomLevel.ANALYZE: "Draw connections and analyze relationships",
    BloomLevel.EVALUATE: "Justify decisions and evaluate approaches",
    BloomLevel.CREATE: "Create new solutions and produce original work",
}

MASTERY_THRESHOLD = 80
BLOOM_LEVEL_COUNT = len(BloomLevel)


@dataclass(frozen=True)
class ScaffoldStep:
    """Suggested practice for one Bloom level."""

    level: BloomLevel
    activities: Tuple[str, ...]
    question_types: Tuple[str, ...]

    @property
    def label(self) -> str:
        return self.level.label

    @property
    def description(self) -> str:
        return self.level.description


SCAFFOLD_STEPS: Dict[BloomLevel, ScaffoldStep] = {
    BloomLevel.REMEMBER: ScaffoldStep(
        BloomLevel.REMEMBER,
        ("Review key definitions", "Identify correct formulas", "Match terms to definitions"),
        ("Multiple choice identification", "True/false", "Matching"),
    ),
    BloomLevel.UNDERSTAND: ScaffoldStep(
        BloomLevel.UNDERSTAND,
        ("Explain concept in own words", "Interpret examples", "Classify problem types"),
        ("Explain this concept", "What does this mean?", "Classify"),
    ),
    BloomLevel.APPLY: ScaffoldStep(
        BloomLevel.APPLY,
        ("Solve practice problems", "Apply formulas to new situations", "Use strategies to find answers"),
        ("Solve for x", "Calculate", "Find the value"),
    ),
    BloomLevel.ANALYZE: ScaffoldStep(
        BloomLevel.ANALYZE,
        ("Compare different approaches", "Identify patterns and relationships", "Break down complex problems"),
        ("Compare methods", "Identify the pattern", "What is the relationship?"),
    ),
    BloomLevel.EVALUATE: ScaffoldStep(
        BloomLevel.EVALUATE,
        ("Critique solution methods", "Judge which approach is best", "Justify your reasoning"),
        ("Which is most efficient?", "Evaluate this approach", "Justify"),
    ),
    BloomLevel.CREATE: ScaffoldStep(
        BloomLevel.CREATE,
        ("Create your own problems", "Design new solutions", "Develop original approaches"),
        ("Create a problem", "Design a solution", "Develop"),
    ),
}

# Keyword hints used to tag questions that arrive without a Bloom level.
LEVEL_KEYWORDS: Dict[BloomLevel, Tuple[str, ...]] = {
    BloomLevel.REMEMBER: ("define", "list", "identify", "recall", "name", "state", "which of the following"),
    BloomLevel.UNDERSTAND: ("explain", "describe", "summarize", "interpret", "classify", "compare"),
    BloomLevel.APPLY: ("solve", "calculate", "apply", "use", "demonstrate", "find the value"),
    BloomLevel.ANALYZE: ("analyze", "distinguish", "examine", "break down", "compare and contrast"),
    BloomLevel.EVALUATE: ("evaluate", "judge", "justify", "critique", "assess", "which method is best"),
    BloomLevel.CREATE: ("create", "design", "develop", "formulate", "construct", "propose"),
}


__all__ = [
    "BloomLevel",
    "MASTERY_THRESHOLD",
    "BLOOM_LEVEL_COUNT",
    "ScaffoldStep",
    "SCAFFOLD_STEPS",
    "LEVEL_KEYWORDS",
]
