from typing import Optional

from schemas import ExplanationEvaluation


class BaseEvaluator:
    """Strategy interface for grading a learner's explanation of a topic.

    ``evaluate`` returns ``None`` when the evaluator cannot produce a result
    (for example because a remote service is unreachable) so that callers can
    fall through to the next strategy.
    """

    name = "base"

    def evaluate(
        self,
        topic: str,
        explanation: str,
        student_level: int,
        key_points: Optional[list] = None,
    ) -> Optional[ExplanationEvaluation]:
        raise NotImplementedError
