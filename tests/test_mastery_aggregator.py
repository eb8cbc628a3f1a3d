from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from engines.bloom_progress import BloomProgress
from engines.mastery_aggregator import (
    NEVER_PRACTICED_DAYS,
    MasteryAggregator,
    TopicContribution,
    merge_contributions,
)
from engines.mastery_record import new_record
from schemas import ConversationInsight, GuidedSessionSummary

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(topic="Rates", subject="Math", mastery=60, accuracy=0.8, attempts=10, days_ago=10, bloom=2):
    return replace(
        new_record("alice", subject, topic),
        mastery_level=mastery,
        accuracy_rate=accuracy,
        total_attempts=attempts,
        correct_attempts=round(attempts * accuracy),
        last_attempt_date=NOW - timedelta(days=days_ago),
        bloom=BloomProgress(current_level=bloom),
    )


def _guided(topic="Rates", subject="Math", attempted=4, correct=2, engagement=90, needs=(), days_ago=2, minutes=30):
    started = NOW - timedelta(days=days_ago)
    return GuidedSessionSummary(
        subject=subject,
        topic=topic,
        questions_attempted=attempted,
        questions_correct=correct,
        concepts_needing_work=list(needs),
        engagement_score=engagement,
        started_at=started,
        completed_at=started + timedelta(minutes=minutes),
    )


def _contribution(mastery, accuracy, source="practice"):
    return TopicContribution(
        source=source,
        subject="Math",
        topic="Rates",
        mastery_level=mastery,
        accuracy_rate=accuracy,
        attempt_count=5,
        last_practiced=NOW,
        bloom_level=2,
    )


@pytest.fixture
def aggregator():
    return MasteryAggregator()


def test_optimal_interval_grows_with_mastery_and_attempts():
    assert MasteryAggregator.optimal_interval(50, 5) == 7
    assert MasteryAggregator.optimal_interval(0, 0) == 1
    assert MasteryAggregator.optimal_interval(100, 50) == 18


def test_merge_takes_max_mastery_and_mean_accuracy():
    merged = merge_contributions(_contribution(60, 0.6), _contribution(80, 0.9))

    assert merged.mastery_level == 80
    assert merged.accuracy_rate == pytest.approx(0.75)
    assert merged.attempt_count == 10


def test_guided_proxy_never_outranks_measured_mastery():
    measured = _contribution(40, 0.6)
    proxy = replace(_contribution(70, 0.5, source="guided"), mastery_is_proxy=True)

    assert merge_contributions(measured, proxy).mastery_level == 40
    assert merge_contributions(proxy, measured).mastery_level == 40
    assert merge_contributions(proxy, measured).mastery_is_proxy is False


def test_guided_only_topic_uses_engagement_as_mastery(aggregator):
    [mastery] = aggregator.aggregate(
        guided_sessions=[_guided(attempted=4, correct=1, engagement=70, needs=["slope"], days_ago=3)],
        now=NOW,
    )

    assert mastery.mastery_level == 35
    assert mastery.accuracy_rate == pytest.approx(0.25)
    assert mastery.attempt_count == 4
    assert mastery.error_patterns == ("slope",)
    assert mastery.sources == ("guided",)
    assert mastery.is_weak_area is True
    assert mastery.days_since_last_practice == 3
    assert mastery.optimal_interval == 5
    assert mastery.spaced_repetition_due is False
    assert mastery.urgency == pytest.approx(0.6)


def test_guided_session_without_questions_leaves_accuracy_at_zero(aggregator):
    [mastery] = aggregator.aggregate(guided_sessions=[_guided(attempted=0, correct=0)], now=NOW)

    assert mastery.accuracy_rate == 0.0


def test_structured_record_and_guided_session_merge(aggregator):
    [mastery] = aggregator.aggregate(
        records=[_record()],
        guided_sessions=[_guided(needs=["Unit rates", "unit rates"])],
        now=NOW,
    )

    assert mastery.mastery_level == 60
    assert mastery.accuracy_rate == pytest.approx(0.65)
    assert mastery.attempt_count == 14
    assert mastery.last_practiced == NOW - timedelta(days=2)
    assert mastery.bloom_level == 2
    assert mastery.error_patterns == ("Unit rates",)
    assert mastery.sources == ("practice", "guided")
    assert mastery.is_weak_area is False
    assert mastery.optimal_interval == 12


def test_conversation_insights_add_gaps_without_changing_scores(aggregator):
    insight = ConversationInsight(
        subject="math",
        topic="rates",
        struggled_concepts=["Distributing"],
        error_patterns=["sign errors"],
        observed_at=NOW,
    )

    [mastery] = aggregator.aggregate(records=[_record()], insights=[insight], now=NOW)

    assert mastery.error_patterns == ("sign errors", "Distributing")
    assert mastery.sources == ("practice", "conversation")
    assert mastery.mastery_level == 60
    assert mastery.accuracy_rate == pytest.approx(0.8)


def test_insight_only_topic_is_weak_but_not_due(aggregator):
    insight = ConversationInsight(subject="Math", topic="Probability", error_patterns=["independence"])

    [mastery] = aggregator.aggregate(insights=[insight], now=NOW)

    assert mastery.days_since_last_practice == NEVER_PRACTICED_DAYS
    assert mastery.is_weak_area is True
    assert mastery.spaced_repetition_due is False


def test_subject_filter_is_case_insensitive(aggregator):
    masteries = aggregator.aggregate(
        records=[_record(), _record(topic="Inference and Implicit Meaning", subject="Reading")],
        subject="reading",
        now=NOW,
    )

    assert [m.topic for m in masteries] == ["Inference and Implicit Meaning"]


def test_weak_areas_sorted_by_priority(aggregator):
    masteries = aggregator.aggregate(
        records=[
            _record(topic="Rates", mastery=45, accuracy=0.7, attempts=5, days_ago=1),
            _record(topic="Percentages", mastery=20, accuracy=0.3, attempts=5, days_ago=40),
            _record(topic="Probability", mastery=90, accuracy=0.9, attempts=5, days_ago=1),
        ],
        now=NOW,
    )

    weak = aggregator.get_weak_areas(masteries)

    assert [w.topic for w in weak] == ["Percentages", "Rates"]
    assert weak[0].priority == 10
    assert weak[0].recommended_action == "Start with foundational concepts and basic examples"
    assert weak[1].priority == 7
    assert weak[1].recommended_action == "Practice more problems to build understanding"


def test_recommended_action_mentions_first_two_gaps(aggregator):
    [mastery] = aggregator.aggregate(records=[_record(mastery=80, accuracy=0.9)], now=NOW)
    gapped = replace(mastery, error_patterns=("ratios", "units", "rounding"))
    inaccurate = replace(mastery, accuracy_rate=0.4)

    assert aggregator.recommended_action(gapped) == "Address specific gaps: ratios, units"
    assert aggregator.recommended_action(inaccurate) == "Focus on accuracy - slow down and check your work"
    assert aggregator.recommended_action(mastery) == "Continue practice to maintain mastery"


def test_spaced_repetition_queue_lists_practiced_due_topics(aggregator):
    masteries = aggregator.aggregate(
        records=[
            _record(topic="Rates", mastery=0, attempts=0, days_ago=2),
            _record(topic="Percentages", mastery=50, attempts=5, days_ago=30),
            _record(topic="Probability", mastery=90, attempts=10, days_ago=1),
        ],
        now=NOW,
    )

    due = aggregator.get_spaced_repetition_due(masteries)

    assert {item.topic for item in due} == {"Rates", "Percentages"}
    assert all(item.urgency == 1.0 for item in due)


def test_subject_performance_summary(aggregator):
    records = [_record()]
    sessions = [_guided()]
    masteries = aggregator.aggregate(records, sessions, now=NOW)

    [summary] = aggregator.subject_performance(masteries, records, sessions)

    assert summary.subject == "Math"
    assert summary.overall_mastery == 60
    assert summary.topic_count == 1
    assert summary.total_attempts == 14
    assert summary.recent_accuracy == pytest.approx(0.71)
    assert summary.study_time_minutes == 30
    assert summary.weak_area_count == 0


def test_find_looks_up_topic_case_insensitively(aggregator):
    masteries = aggregator.aggregate(records=[_record()], now=NOW)

    assert aggregator.find(masteries, "MATH", "rates") is masteries[0]
    assert aggregator.find(masteries, "Math", "Probability") is None


def test_aggregator_validates_thresholds():
    with pytest.raises(ValueError):
        MasteryAggregator(weak_mastery=120)
    with pytest.raises(ValueError):
        MasteryAggregator(engagement_mastery_ratio=0)
