"""
Evaluation score storage and aggregate queries.

Scores are written append-only to the scores table and read back as
aggregates: the mean of a metric, a histogram of its values, and the
upper bound across several evaluations used to give histograms of
different runs a shared axis.
"""

import logging
import math
import uuid
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from scorestore.core.models.score import (
    AverageEvaluationScore,
    ComparedEvaluationScoresBounds,
    EvaluationScore,
    EvaluationScoreBucket,
)
from scorestore.database.client import ScoreDBClient
from scorestore.database.errors import InvalidInputError, StoreWriteError
from scorestore.database.utils import render_query, validate_string_against_injection

logger = logging.getLogger(__name__)

__all__: list[str] = ["EvaluationScoresAPI"]

INSERT_SCORES_SQL = """
INSERT INTO {table} (
    project_id, group_id, evaluation_id, result_id, name, value, "timestamp"
) VALUES (
    :project_id, :group_id, :evaluation_id, :result_id, :name, :value, :timestamp
)"""

AVERAGE_SCORE_SQL = """
SELECT avg(value) AS average_value
FROM {table}
WHERE project_id = :project_id
    AND evaluation_id = :evaluation_id
    AND name = :name"""

# Intervals are generated from the bucket count alone and LEFT JOINed to the
# scores, so empty buckets still come back with height 0. The last bucket's
# upper edge is the requested bound itself and is inclusive.
SCORE_BUCKETS_SQL = """
WITH bucket_intervals AS (
    SELECT
        interval_num,
        CAST(:lower_bound AS DOUBLE PRECISION)
            + (interval_num - 1) * CAST(:step_size AS DOUBLE PRECISION) AS lower_bound,
        CASE
            WHEN interval_num = CAST(:bucket_count AS INTEGER)
                THEN CAST(:upper_bound AS DOUBLE PRECISION)
            ELSE CAST(:lower_bound AS DOUBLE PRECISION)
                + interval_num * CAST(:step_size AS DOUBLE PRECISION)
        END AS upper_bound
    FROM generate_series(1, CAST(:bucket_count AS INTEGER)) AS series(interval_num)
),
matching_scores AS (
    SELECT value
    FROM {table}
    WHERE project_id = :project_id
        AND evaluation_id = :evaluation_id
        AND name = :name
)
SELECT
    bucket_intervals.lower_bound,
    bucket_intervals.upper_bound,
    COUNT(matching_scores.value) AS height
FROM bucket_intervals
LEFT JOIN matching_scores
    ON matching_scores.value >= bucket_intervals.lower_bound
    AND (
        matching_scores.value < bucket_intervals.upper_bound
        OR (bucket_intervals.interval_num = CAST(:bucket_count AS INTEGER)
            AND matching_scores.value <= bucket_intervals.upper_bound)
    )
GROUP BY bucket_intervals.interval_num, bucket_intervals.lower_bound, bucket_intervals.upper_bound
ORDER BY bucket_intervals.interval_num"""

SCORES_BOUNDS_SQL = """
SELECT MAX(value) AS upper_bound
FROM {table}
WHERE project_id = :project_id
    AND evaluation_id IN :evaluation_ids
    AND name = :name"""


class _BoundsRow(BaseModel):
    upper_bound: Optional[float] = None


class EvaluationScoresAPI:
    """
    High-level API over the evaluation scores table.

    Every read is scoped by ``project_id``. Metric names are checked by the
    injection guard before any query is built, and all values travel as
    bound parameters.
    """

    def __init__(self, db_client: ScoreDBClient):
        """
        Initialize the API with a database client.

        Args:
            db_client: Initialized ScoreDBClient instance
        """
        self.db = db_client
        logger.info("EvaluationScoresAPI initialized")

    def _query(self, template: str) -> str:
        return render_query(template, table=self.db.scores_table)

    # ==================== Ingestion ====================

    async def insert_evaluation_scores(self, evaluation_scores: Sequence[EvaluationScore]) -> None:
        """
        Write a batch of score rows in one transaction.

        The batch is built in memory and sent as a single executemany; a
        failed write is rolled back, so only a commit failure can leave an
        unknown subset of rows behind.

        Args:
            evaluation_scores: Rows produced by the flattener

        Raises:
            StoreWriteError: With ``phase`` set to "open", "write" or "commit"
        """
        if not evaluation_scores:
            return

        query = self._query(INSERT_SCORES_SQL)
        batch_data = [score.to_row() for score in evaluation_scores]

        try:
            conn = await self.db.engine.connect()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Could not open connection for evaluation scores insert: {e}")
            raise StoreWriteError("open", f"Failed to insert evaluation scores: {e}") from e

        try:
            try:
                transaction = await conn.begin()
            except (SQLAlchemyError, OSError) as e:
                logger.error(f"Could not begin evaluation scores insert: {e}")
                raise StoreWriteError("open", f"Failed to insert evaluation scores: {e}") from e
            logger.debug(f"Writing {len(batch_data)} evaluation scores")

            try:
                await conn.execute(text(query), batch_data)
            except (SQLAlchemyError, OSError) as e:
                logger.error(f"Evaluation scores write failed, rolling back: {e}")
                try:
                    await transaction.rollback()
                except (SQLAlchemyError, OSError) as rollback_error:
                    logger.error(f"Rollback of evaluation scores insert failed: {rollback_error}")
                raise StoreWriteError("write", f"Evaluation scores write failed: {e}") from e

            try:
                await transaction.commit()
            except (SQLAlchemyError, OSError) as e:
                logger.error(f"Evaluation scores commit failed: {e}")
                raise StoreWriteError("commit", f"Evaluation scores insertion failed: {e}") from e
        finally:
            await conn.close()

        logger.info(f"Inserted {len(batch_data)} evaluation scores")

    # ==================== Aggregates ====================

    async def get_average_evaluation_score(
        self,
        project_id: uuid.UUID,
        evaluation_id: uuid.UUID,
        name: str,
    ) -> Optional[float]:
        """
        Mean of a metric over one evaluation.

        Returns:
            The average value, or None when no score matches
        """
        validate_string_against_injection(name)

        rows = await self.db.execute_query(
            self._query(AVERAGE_SCORE_SQL),
            {"project_id": project_id, "evaluation_id": evaluation_id, "name": name},
            AverageEvaluationScore,
        )
        if not rows or rows[0].average_value is None:
            logger.debug(f"No '{name}' scores for evaluation {evaluation_id}")
            return None
        return rows[0].average_value

    async def get_evaluation_score_buckets(
        self,
        project_id: uuid.UUID,
        evaluation_id: uuid.UUID,
        name: str,
        lower_bound: float,
        upper_bound: float,
        bucket_count: int,
    ) -> List[EvaluationScoreBucket]:
        """
        Histogram of a metric over one evaluation.

        The range is split into ``bucket_count`` equal buckets. Buckets are
        half-open ``[lower, upper)`` except the last one, which ends exactly
        at ``upper_bound`` and includes it.

        Args:
            project_id: Project the evaluation belongs to
            evaluation_id: Evaluation to read
            name: Metric name
            lower_bound: Lower edge of the first bucket
            upper_bound: Upper edge of the last bucket
            bucket_count: Number of buckets, at least 1

        Returns:
            Exactly ``bucket_count`` buckets ordered by lower bound

        Raises:
            InvalidInputError: On an unsafe name, a bucket count below 1, or
                bounds that are not finite or not increasing
        """
        validate_string_against_injection(name)
        if isinstance(bucket_count, bool) or not isinstance(bucket_count, int) or bucket_count < 1:
            raise InvalidInputError(f"bucket_count must be a positive integer, got {bucket_count!r}")
        if not (math.isfinite(lower_bound) and math.isfinite(upper_bound)):
            raise InvalidInputError("Histogram bounds must be finite")
        if upper_bound <= lower_bound:
            raise InvalidInputError(
                f"upper_bound ({upper_bound}) must be greater than lower_bound ({lower_bound})"
            )

        step_size = (upper_bound - lower_bound) / bucket_count

        return await self.db.execute_query(
            self._query(SCORE_BUCKETS_SQL),
            {
                "project_id": project_id,
                "evaluation_id": evaluation_id,
                "name": name,
                "lower_bound": float(lower_bound),
                "upper_bound": float(upper_bound),
                "step_size": step_size,
                "bucket_count": bucket_count,
            },
            EvaluationScoreBucket,
        )

    async def get_global_evaluation_scores_bounds(
        self,
        project_id: uuid.UUID,
        evaluation_ids: Sequence[uuid.UUID],
        name: str,
    ) -> Optional[ComparedEvaluationScoresBounds]:
        """
        Largest value of a metric across several evaluations.

        Returns:
            The shared bound, or None when no evaluation ids are given or
            no score matches
        """
        validate_string_against_injection(name)
        if not evaluation_ids:
            return None

        rows = await self.db.execute_query(
            self._query(SCORES_BOUNDS_SQL),
            {"project_id": project_id, "evaluation_ids": list(evaluation_ids), "name": name},
            _BoundsRow,
        )
        if not rows or rows[0].upper_bound is None:
            logger.debug(f"No '{name}' scores across {len(evaluation_ids)} evaluations")
            return None
        return ComparedEvaluationScoresBounds(upper_bound=rows[0].upper_bound)

    async def get_comparable_evaluation_score_buckets(
        self,
        project_id: uuid.UUID,
        evaluation_ids: Sequence[uuid.UUID],
        name: str,
        bucket_count: int,
        lower_bound: float = 0.0,
    ) -> Dict[uuid.UUID, List[EvaluationScoreBucket]]:
        """
        Histograms of one metric for several evaluations on a shared axis.

        The axis runs from ``lower_bound`` to the largest value across all
        the evaluations. If that maximum does not exceed ``lower_bound`` the
        axis is widened to ``lower_bound + 1``.

        Returns:
            Buckets per evaluation id, or an empty dict when there is no data
        """
        bounds = await self.get_global_evaluation_scores_bounds(project_id, evaluation_ids, name)
        if bounds is None:
            return {}

        upper_bound = bounds.upper_bound
        if upper_bound <= lower_bound:
            upper_bound = lower_bound + 1.0

        histograms = {}
        for evaluation_id in evaluation_ids:
            histograms[evaluation_id] = await self.get_evaluation_score_buckets(
                project_id, evaluation_id, name, lower_bound, upper_bound, bucket_count
            )
        return histograms
