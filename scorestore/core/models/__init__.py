"""Score store data models."""

from scorestore.core.models.score import (
    AverageEvaluationScore,
    ComparedEvaluationScoresBounds,
    EvaluationDatapointResult,
    EvaluationScore,
    EvaluationScoreBucket,
    flatten_evaluation_results,
)

__all__: list[str] = [
    "AverageEvaluationScore",
    "ComparedEvaluationScoresBounds",
    "EvaluationDatapointResult",
    "EvaluationScore",
    "EvaluationScoreBucket",
    "flatten_evaluation_results",
]
