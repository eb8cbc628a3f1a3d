from datetime import datetime, timedelta, timezone

import pytest

from engines.spaced_repetition import ReviewItem, SpacedRepetitionScheduler
from engines.validation import ValidationError

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def scheduler():
    return SpacedRepetitionScheduler()


def test_first_perfect_review_is_scheduled_for_tomorrow(scheduler):
    result = scheduler.schedule(5, now=NOW)

    assert result.repetitions == 1
    assert result.interval == 1
    assert result.ease_factor == pytest.approx(2.6)
    assert result.next_review_date == NOW + timedelta(days=1)
    assert result.review_bloom_level == 1
    assert result.progressive_challenge is False


def test_failed_recall_resets_regardless_of_prior_state(scheduler):
    for quality in (0, 1, 2):
        for interval, repetitions in ((0, 0), (6, 2), (40, 7)):
            result = scheduler.schedule(quality, 2.2, interval, repetitions, flow_score=100, now=NOW)
            assert result.repetitions == 0
            assert result.interval == 1


def test_ease_factor_never_drops_below_minimum(scheduler):
    for quality in range(6):
        for ease in (1.3, 1.5, 2.5, 3.0):
            result = scheduler.schedule(quality, ease, now=NOW)
            assert result.ease_factor >= 1.3


def test_successful_reviews_never_shrink_the_interval(scheduler):
    ease, interval, repetitions = 2.5, 0, 0
    intervals = []
    for _ in range(5):
        result = scheduler.schedule(4, ease, interval, repetitions, now=NOW)
        ease, interval, repetitions = result.ease_factor, result.interval, result.repetitions
        intervals.append(interval)

    assert intervals[:4] == [1, 6, 15, 38]
    assert intervals == sorted(intervals)


def test_flow_stretches_and_shrinks_intervals(scheduler):
    assert scheduler.adjust_interval_for_flow(10, 100) == 12
    assert scheduler.adjust_interval_for_flow(10, 0) == 8
    assert scheduler.adjust_interval_for_flow(10, 50) == 10
    assert scheduler.adjust_interval_for_flow(1, 0) == 1


def test_schedule_rejects_invalid_inputs(scheduler):
    with pytest.raises(ValidationError):
        scheduler.schedule(6)
    with pytest.raises(ValidationError):
        scheduler.schedule(3, ease_factor=1.2)
    with pytest.raises(ValidationError):
        scheduler.schedule(3, interval=-1)
    with pytest.raises(ValidationError):
        scheduler.schedule(3, bloom_level=9)


@pytest.mark.parametrize(
    "level, repetitions, quality, expected_level, progressive, reason",
    [
        (3, 1, 5, 3, False, "Reinforcing current level mastery"),
        (3, 4, 3, 3, False, "Reinforcing current level mastery"),
        (3, 2, 4, 4, True, "Strong mastery - challenging with higher Bloom level"),
        (6, 6, 5, 6, False, "Maintaining mastery with varied challenges"),
        (6, 3, 5, 6, False, "Continuing at current level"),
    ],
)
def test_review_bloom_level_rules(level, repetitions, quality, expected_level, progressive, reason):
    review = SpacedRepetitionScheduler.review_bloom_level(level, repetitions, quality)

    assert review.level == expected_level
    assert review.progressive_challenge is progressive
    assert review.reason == reason


def test_strong_second_review_escalates_bloom_level(scheduler):
    result = scheduler.schedule(5, 2.6, 1, 1, bloom_level=2, now=NOW)

    assert result.repetitions == 2
    assert result.interval == 6
    assert result.review_bloom_level == 3
    assert result.progressive_challenge is True


def test_due_dates(scheduler):
    assert scheduler.days_until_review(NOW + timedelta(days=1, hours=12), NOW) == 2
    assert scheduler.is_due_for_review(NOW, NOW) is True
    assert scheduler.is_due_for_review(NOW + timedelta(minutes=1), NOW) is False
    assert scheduler.is_overdue(NOW - timedelta(days=2, hours=12), NOW) is True
    assert scheduler.is_overdue(NOW - timedelta(days=1, hours=12), NOW) is False


def test_review_priority_combines_overdue_mastery_attempts_and_flow():
    priority = SpacedRepetitionScheduler.review_priority(
        NOW - timedelta(days=3), mastery_level=50, total_attempts=10, flow_score=50, now=NOW
    )

    assert priority == pytest.approx(12.5)


def _item(topic, days_ago, mastery=50, attempts=5):
    return ReviewItem(
        topic=topic,
        next_review=NOW - timedelta(days=days_ago),
        mastery_level=mastery,
        total_attempts=attempts,
        subject="Math",
    )


def test_prioritize_reviews_orders_due_items(scheduler):
    reviews = [
        _item("Rates", 1, mastery=80),
        _item("Percentages", 5, mastery=30),
        _item("Probability", -3),
    ]

    ordered = scheduler.prioritize_reviews(reviews, NOW)

    assert [item.topic for item in ordered] == ["Percentages", "Rates"]


def test_daily_plan_fits_available_time(scheduler):
    reviews = [_item("Rates", 1), _item("Percentages", 5), _item("Probability", 2)]

    plan = scheduler.suggest_daily_review_plan(reviews, available_time_minutes=10, current_time=NOW)

    assert plan["total_due"] == 3
    assert plan["recommended_reviews"] == 2
    assert plan["estimated_time"] == 10
    assert [entry["topic"] for entry in plan["items"]] == ["Percentages", "Probability"]


def test_review_strategy_selection(scheduler):
    assert scheduler.get_review_strategy(40, 4, 0, 60).strategy == "review"
    assert scheduler.get_review_strategy(40, 4, 0, 60).bloom_level == 2
    assert scheduler.get_review_strategy(60, 3, 1, 40).strategy == "feynman"
    assert scheduler.get_review_strategy(80, 3, 2, 80).bloom_level == 4
    assert scheduler.get_review_strategy(60, 3, 1, 80).strategy == "active_recall"
