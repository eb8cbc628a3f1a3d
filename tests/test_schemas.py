import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from engines.validation import ValidationError as EngineValidationError
from schemas import (
    AttemptSignalPayload,
    ExplanationEvaluation,
    GuidedSessionSummary,
    LearningSessionSummary,
    RemoteEvaluationEnvelope,
    dump_evaluation,
    parse_json_safe,
    parse_model,
)


def _sample_envelope() -> dict[str, object]:
    return {
        "success": True,
        "data": {
            "evaluation": {
                "clarity": 72.4,
                "completeness": 68,
                "accuracy": 91,
                "bloomLevel": 2,
                "strengths": ["Uses an analogy"],
                "unknownField": "ignored",
            }
        },
    }


def test_parse_json_safe_extracts_embedded_object():
    noisy_text = (
        "The model responded as follows:\n"
        "```json\n"
        f"{json.dumps(_sample_envelope())}\n"
        "```\nThanks."
    )

    envelope = parse_json_safe(noisy_text, RemoteEvaluationEnvelope)

    assert envelope.success is True
    assert envelope.data.evaluation.bloom_level == 2


def test_parse_json_safe_raises_without_json():
    with pytest.raises(ValidationError):
        parse_json_safe("no payload here", RemoteEvaluationEnvelope)


def test_envelope_converts_to_rounded_evaluation():
    evaluation = RemoteEvaluationEnvelope.model_validate(_sample_envelope()).to_evaluation()

    assert evaluation.source == "remote"
    assert evaluation.clarity == 72
    assert evaluation.strengths == ["Uses an analogy"]
    assert evaluation.feedback == "Good effort! Keep practicing."
    assert evaluation.should_refine is True


def test_failed_envelope_has_no_evaluation():
    envelope = RemoteEvaluationEnvelope(success=False, error="quota")

    assert envelope.to_evaluation() is None


def test_dump_evaluation_adds_derived_fields():
    evaluation = ExplanationEvaluation(clarity=80, completeness=90, accuracy=85, bloom_level=3)

    payload = dump_evaluation(evaluation)

    assert payload["overall_score"] == 85
    assert payload["should_refine"] is False
    assert payload["source"] == "local"
    assert isinstance(payload["evaluated_at"], str)


def test_attempt_payload_defaults_and_conversion():
    signal = parse_model(AttemptSignalPayload, {"is_correct": True, "time_spent": 42}).to_signal()

    assert signal.is_correct is True
    assert signal.time_spent == 42
    assert signal.expected_time == 60
    assert signal.hints_used == 0
    assert signal.question_difficulty == 5


@pytest.mark.parametrize(
    "payload",
    [
        {"is_correct": True, "time_spent": -1},
        {"is_correct": True, "time_spent": 10, "question_difficulty": 11},
        {"time_spent": 10},
    ],
)
def test_parse_model_reports_engine_validation_error(payload):
    with pytest.raises(EngineValidationError):
        parse_model(AttemptSignalPayload, payload)


def test_guided_session_rejects_more_correct_than_attempted():
    with pytest.raises(ValidationError):
        GuidedSessionSummary(subject="Math", topic="Rates", questions_attempted=2, questions_correct=3)


def test_learning_session_requires_start_time():
    with pytest.raises(ValidationError):
        LearningSessionSummary(subject="Math")

    session = LearningSessionSummary(
        subject="Math", duration_minutes=25, started_at=datetime(2024, 3, 1, tzinfo=timezone.utc)
    )
    assert session.flow_score is None
    assert session.topics == []


def test_naive_timestamps_default_to_utc():
    naive = GuidedSessionSummary.model_validate(
        {"subject": "Math", "topic": "Rates", "started_at": "2024-03-01T09:15:00"}
    )
    aware = LearningSessionSummary.model_validate(
        {"subject": "Math", "started_at": "2024-03-01T09:15:00+02:00"}
    )

    assert naive.started_at == datetime(2024, 3, 1, 9, 15, tzinfo=timezone.utc)
    assert naive.completed_at is None
    assert aware.started_at.utcoffset().total_seconds() == 7200


@pytest.mark.parametrize("value", ["1e400", "NaN", "-Infinity"])
def test_envelope_rejects_non_finite_scores(value):
    text = (
        '{"success": true, "data": {"evaluation": '
        f'{{"clarity": {value}, "completeness": 70, "accuracy": 80, "bloomLevel": 2}}}}}}'
    )

    with pytest.raises(ValidationError):
        RemoteEvaluationEnvelope.model_validate_json(text)
