"""Evaluation score models and the flattening of datapoint results into score rows."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from scorestore.database.errors import InvalidInputError
from scorestore.database.utils import datetime_to_nanoseconds

__all__: list[str] = [
    "EvaluationDatapointResult",
    "EvaluationScore",
    "EvaluationScoreBucket",
    "ComparedEvaluationScoresBounds",
    "AverageEvaluationScore",
    "flatten_evaluation_results",
]


class EvaluationDatapointResult(BaseModel):
    """Outcome of evaluating one datapoint, as sent by the evaluation pipeline."""

    scores: dict[str, float] = Field(default_factory=dict, description="Metric name to score value.")

    model_config = ConfigDict(extra="allow")


class EvaluationScore(BaseModel):
    """One named metric value for one datapoint result. Rows are append-only."""

    # Used to check that users only read evaluations of projects they belong to
    project_id: uuid.UUID
    group_id: str
    evaluation_id: uuid.UUID
    result_id: uuid.UUID
    # One evaluator can produce several scores
    name: str
    value: float = Field(..., allow_inf_nan=False)
    timestamp: datetime

    model_config = ConfigDict(frozen=True)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Store every timestamp in UTC; naive values are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def to_row(self) -> dict[str, Any]:
        """Insert parameters for the scores table."""
        return {
            "project_id": self.project_id,
            "group_id": self.group_id,
            "evaluation_id": self.evaluation_id,
            "result_id": self.result_id,
            "name": self.name,
            "value": self.value,
            "timestamp": datetime_to_nanoseconds(self.timestamp),
        }

    @classmethod
    def from_evaluation_datapoint_results(
        cls,
        points: Sequence[EvaluationDatapointResult],
        result_ids: Sequence[uuid.UUID],
        project_id: uuid.UUID,
        group_id: str,
        evaluation_id: uuid.UUID,
        # TODO: take the timestamp from each point once client libraries send it
        timestamp: datetime,
    ) -> list["EvaluationScore"]:
        """
        Flatten positionally paired points and result ids into score rows.

        Raises:
            InvalidInputError: If the sequences differ in length or a score is not finite
        """
        if len(points) != len(result_ids):
            raise InvalidInputError(
                f"Got {len(points)} datapoint results but {len(result_ids)} result ids"
            )
        return flatten_evaluation_results(
            zip(result_ids, points), project_id, group_id, evaluation_id, timestamp
        )


def flatten_evaluation_results(
    results: Iterable[Tuple[uuid.UUID, EvaluationDatapointResult]],
    project_id: uuid.UUID,
    group_id: str,
    evaluation_id: uuid.UUID,
    timestamp: datetime,
) -> list[EvaluationScore]:
    """Turn (result_id, point) pairs into one EvaluationScore per reported metric."""
    scores = []
    for result_id, point in results:
        for name, value in point.scores.items():
            try:
                scores.append(
                    EvaluationScore(
                        project_id=project_id,
                        group_id=group_id,
                        evaluation_id=evaluation_id,
                        result_id=result_id,
                        name=name,
                        value=value,
                        timestamp=timestamp,
                    )
                )
            except ValidationError as e:
                raise InvalidInputError(
                    f"Invalid score '{name}'={value!r} for result {result_id}: {e}"
                ) from e
    return scores


class EvaluationScoreBucket(BaseModel):
    """One histogram bucket of score values."""

    lower_bound: float
    upper_bound: float
    height: int = Field(..., ge=0)


class ComparedEvaluationScoresBounds(BaseModel):
    """Shared axis bound for comparing a metric across evaluations."""

    upper_bound: float


class AverageEvaluationScore(BaseModel):
    average_value: float | None = None
