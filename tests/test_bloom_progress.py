from datetime import datetime, timezone

import pytest

from bloom_levels import BloomLevel, SCAFFOLD_STEPS
from engines.bloom_progress import BloomLevelProgress, BloomProgress, BloomProgressTracker
from engines.validation import ValidationError

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_bloom_level_coerce_accepts_numbers_and_names():
    assert BloomLevel.coerce(3) is BloomLevel.APPLY
    assert BloomLevel.coerce("analyze") is BloomLevel.ANALYZE
    assert BloomLevel.coerce("6") is BloomLevel.CREATE
    assert BloomLevel.CREATE.next() is BloomLevel.CREATE
    assert BloomLevel.REMEMBER.slot == 0


@pytest.mark.parametrize("bad", [0, 7, "synthesis", True, 2.5])
def test_bloom_level_coerce_rejects_unknown_levels(bad):
    with pytest.raises(ValidationError):
        BloomLevel.coerce(bad)


def test_first_attempt_moves_mastery_by_attempt_weight():
    progress = BloomProgressTracker().update(BloomProgress(), BloomLevel.REMEMBER, 5, NOW)

    level = progress.level(BloomLevel.REMEMBER)
    assert level.attempts == 1
    assert level.mastery == 10
    assert level.last_attempt == NOW
    assert progress.current_level == 0
    assert progress.next_target_level == 1


def test_reaching_threshold_advances_current_level():
    tracker = BloomProgressTracker(weight_horizon=1)

    progress = tracker.update(BloomProgress(), 2, 4, NOW)

    assert progress.current_level == 2
    assert progress.next_target_level == 3
    assert tracker.has_mastered(progress, 2)


def test_current_level_never_decreases():
    tracker = BloomProgressTracker(weight_horizon=1)
    progress = tracker.update(BloomProgress(), 3, 5, NOW)

    progress = tracker.update(progress, 1, 0, NOW)
    progress = tracker.update(progress, 2, 5, NOW)
    progress = tracker.update(progress, 3, 0, NOW)

    assert progress.current_level == 3
    assert progress.level(3).mastery == 0
    assert progress.highest_attempted == 3


def test_update_does_not_mutate_input():
    original = BloomProgress()
    BloomProgressTracker().update(original, 1, 5, NOW)

    assert original.level(1).attempts == 0


def test_next_level_targets():
    tracker = BloomProgressTracker(weight_horizon=1)
    fresh = tracker.next_level(BloomProgress())
    assert fresh.next_level is BloomLevel.REMEMBER
    assert fresh.is_ready is True

    mastered = tracker.next_level(tracker.update(BloomProgress(), 2, 5, NOW))
    assert mastered.next_level is BloomLevel.APPLY
    assert mastered.is_ready is True


def test_progress_requires_six_levels():
    with pytest.raises(ValidationError):
        BloomProgress(levels=(BloomLevelProgress(),) * 5)


def test_invalid_quality_is_rejected():
    with pytest.raises(ValidationError):
        BloomProgressTracker().update(BloomProgress(), 1, 6, NOW)


@pytest.mark.parametrize(
    "question, difficulty, expected",
    [
        ("Solve for x: 2x + 3 = 7", None, BloomLevel.APPLY),
        ("Explain and describe what a slope represents", None, BloomLevel.UNDERSTAND),
        ("Design a survey and develop a sampling plan", None, BloomLevel.CREATE),
        ("Define and explain a ratio", None, BloomLevel.REMEMBER),
        ("x + 1 = 2", "hard", BloomLevel.ANALYZE),
        ("x + 1 = 2", "easy", BloomLevel.REMEMBER),
        ("x + 1 = 2", None, BloomLevel.APPLY),
    ],
)
def test_determine_bloom_level_from_wording(question, difficulty, expected):
    assert BloomProgressTracker.determine_bloom_level(question, difficulty=difficulty) is expected


def test_scaffold_lists_every_level_between_current_and_target():
    steps = BloomProgressTracker.scaffold(2, 4)

    assert [step.level for step in steps] == [
        BloomLevel.UNDERSTAND,
        BloomLevel.APPLY,
        BloomLevel.ANALYZE,
    ]
    assert steps[0] is SCAFFOLD_STEPS[BloomLevel.UNDERSTAND]
    assert steps[-1].description == "Draw connections and analyze relationships"


def test_tracker_validates_configuration():
    with pytest.raises(ValueError):
        BloomProgressTracker(mastery_threshold=0)
    with pytest.raises(ValueError):
        BloomProgressTracker(weight_horizon=0)
