import random
from datetime import datetime, timedelta, timezone

import pytest

from engines.flow_state import (
    BREAK_ACTIVITIES,
    BehaviorSignals,
    FlowSegment,
    FlowStateEngine,
)
from engines.validation import ValidationError


def _behavior(**overrides):
    payload = {
        "is_correct": True,
        "time_spent": 60,
        "average_time": 60,
        "hints_used": 0,
        "retries": 0,
        "pauses": 0,
        "recent_accuracy": 0.5,
    }
    payload.update(overrides)
    return BehaviorSignals(**payload)


@pytest.fixture
def engine():
    return FlowStateEngine(rng=random.Random(7))


def test_matched_challenge_and_skill_is_flow(engine):
    state = engine.classify(5, 5)

    assert state.zone == "flow"
    assert state.score == 100
    assert state.recommended_action == "Maintain current level - optimal engagement"


def test_easy_material_is_boredom_and_hard_material_anxiety(engine):
    bored = engine.classify(2, 8)
    anxious = engine.classify(8, 2)

    assert bored.zone == "boredom"
    assert anxious.zone == "anxiety"
    assert bored.score == anxious.score == 0


def test_classification_score_is_symmetric(engine):
    for challenge in range(1, 11):
        for skill in range(1, 11):
            forward = engine.classify(challenge, skill)
            backward = engine.classify(skill, challenge)
            assert forward.score == backward.score
            if forward.zone == "flow" or backward.zone == "flow":
                assert forward.zone == backward.zone


def test_classify_rejects_out_of_range_inputs(engine):
    with pytest.raises(ValidationError):
        engine.classify(0, 5)
    with pytest.raises(ValidationError):
        engine.classify(5, 11)


def test_detects_boredom_from_fast_accurate_answers(engine):
    detection = engine.detect_from_behavior(_behavior(time_spent=10, recent_accuracy=0.95))

    assert detection.zone == "boredom"
    assert detection.boredom_signals == 3
    assert detection.confidence == pytest.approx(3 / 5)


def test_detects_anxiety_from_slow_wrong_hinted_answers(engine):
    detection = engine.detect_from_behavior(
        _behavior(is_correct=False, time_spent=200, hints_used=5, pauses=4)
    )

    assert detection.zone == "anxiety"
    assert detection.anxiety_signals == 6


def test_adjust_for_flow_steps_up_when_in_flow(engine):
    adjustment = engine.adjust_for_flow(5, 5, _behavior())

    assert adjustment.detected_zone == "flow"
    assert adjustment.new_difficulty == 6
    assert adjustment.flow_target == "slight_challenge"
    assert adjustment.reason == "Maintaining flow with slight progression"


def test_adjust_for_flow_eases_off_and_offers_hint_under_anxiety(engine):
    adjustment = engine.adjust_for_flow(
        5, 5, _behavior(is_correct=False, time_spent=200, hints_used=5)
    )

    assert adjustment.new_difficulty == 4
    assert adjustment.should_provide_hint is True
    assert adjustment.flow_target == "flow"


def test_adjust_for_flow_keeps_difficulty_in_learning_zone(engine):
    adjustment = engine.adjust_for_flow(
        3, 8, _behavior(is_correct=False, time_spent=200, hints_used=5)
    )

    assert adjustment.new_difficulty == 7
    assert adjustment.reason == "Adjusted to stay within learning zone"


def test_break_suggested_after_long_anxiety(engine):
    recommendation = engine.should_suggest_break(12, 0)

    assert recommendation.should_break is True
    assert recommendation.duration_minutes == 5
    assert recommendation.suggested_activity in BREAK_ACTIVITIES
    assert recommendation.reason == "You've been working hard - a short break can boost your focus"


def test_break_after_failure_streak_is_longer(engine):
    recommendation = engine.should_suggest_break(0, 5)

    assert recommendation.duration_minutes == 10
    assert recommendation.reason == "Multiple incorrect answers - a break might help you reset"


def test_no_break_when_things_go_well(engine):
    recommendation = engine.should_suggest_break(2, 1, [60, 70])

    assert recommendation.should_break is False
    assert recommendation.suggested_activity == ""


def test_break_activity_is_reproducible_with_seeded_rng():
    first = FlowStateEngine(rng=random.Random(3)).should_suggest_break(0, 3)
    second = FlowStateEngine(rng=random.Random(3)).should_suggest_break(0, 3)

    assert first.suggested_activity == second.suggested_activity


def test_session_flow_score_is_time_weighted():
    start = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
    segments = [
        FlowSegment("flow", start),
        FlowSegment("boredom", start + timedelta(minutes=10)),
    ]

    score = FlowStateEngine.calculate_session_flow_score(segments, start + timedelta(minutes=20))

    assert score == 75
    assert FlowStateEngine.calculate_session_flow_score([]) == 50


def test_estimate_skill_level_projects_onto_one_to_ten():
    assert FlowStateEngine.estimate_skill_level(50, 0.5, 3) == 5
    assert FlowStateEngine.estimate_skill_level(0, 0, 0) == 1
    assert FlowStateEngine.estimate_skill_level(100, 1, 6) == 10


def test_engine_validates_configuration():
    with pytest.raises(ValueError):
        FlowStateEngine(flow_band=-1)
    with pytest.raises(ValueError):
        FlowStateEngine(failure_break_streak=0)
