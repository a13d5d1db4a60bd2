"""Async database client for the evaluation score store.

Provides the pooled engine and a query helper that turns result rows into
pydantic models, wrapping driver failures in the store's exception types.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import bindparam, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from scorestore.config import get_settings
from scorestore.database.errors import (
    DatabaseError,
    InvalidInputError,
    StoreQueryError,
    StoreWriteError,
)

# Configure logging
logger = logging.getLogger(__name__)

__all__: list[str] = [
    "get_engine",
    "dispose_engine",
    "ScoreDBClient",
    "DatabaseError",
    "InvalidInputError",
    "StoreQueryError",
    "StoreWriteError",
]

_engine: AsyncEngine | None = None

RowModel = TypeVar("RowModel", bound=BaseModel)


def normalize_dsn(dsn: str) -> str:
    """Force the asyncpg dialect and drop sslmode (TLS is set through connect_args)."""
    if dsn.startswith("postgres://"):
        dsn = dsn.replace("postgres://", "postgresql+asyncpg://", 1)
    elif dsn.startswith("postgresql://"):
        dsn = dsn.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif not dsn.startswith("postgresql+asyncpg://"):
        # If no dialect specified, add it
        if "://" in dsn:
            dsn = dsn.replace("://", "+asyncpg://", 1)

    if "?sslmode=" in dsn:
        dsn = dsn.split("?sslmode=")[0]
    elif "&sslmode=" in dsn:
        dsn = dsn.split("&sslmode=")[0]
    return dsn


def get_engine(dsn: str | None = None) -> AsyncEngine:
    """Return a cached AsyncEngine for the score store."""
    global _engine
    if _engine is None:
        settings = get_settings()
        dsn = dsn or settings.database_url
        if not dsn:
            raise ValueError(
                "No connection string provided. Set SCORESTORE_DATABASE_URL environment variable "
                "or pass connection_string parameter."
            )

        connect_args: Dict[str, Any] = {
            "command_timeout": settings.command_timeout,
            "server_settings": {
                "jit": "off",  # Recommended for analytical workloads
                "timezone": "UTC",
            },
        }
        if settings.database_ssl != "disable":
            connect_args["ssl"] = settings.database_ssl

        _engine = create_async_engine(
            normalize_dsn(dsn),
            echo=False,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            pool_recycle=3600,  # 1 hour
            pool_pre_ping=True,
            connect_args=connect_args,
        )

        logger.info("Database engine created successfully")
    return _engine


async def dispose_engine() -> None:
    """Close the cached engine's pool and forget it."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None


class ScoreDBClient:
    """
    Database client for the evaluation score store.

    Holds the engine and the configured table name; the score operations
    themselves live in ``EvaluationScoresAPI``.
    """

    def __init__(self, connection_string: str | None = None,
                 log_level: str | None = None):
        """
        Initialize the database client.

        The engine is process-wide: the first client to connect creates it,
        and later clients reuse it even when they pass a different
        connection string. Call ``dispose_engine()`` before switching
        databases.

        Args:
            connection_string: Optional database connection string.
                             Falls back to SCORESTORE_DATABASE_URL / TIMESCALE_SERVICE_URL.
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        """
        settings = get_settings()
        self.connection_string = connection_string or settings.database_url
        if not self.connection_string:
            raise ValueError(
                "No connection string provided. Set SCORESTORE_DATABASE_URL environment variable "
                "or pass connection_string parameter."
            )

        logging.basicConfig(level=getattr(logging, (log_level or settings.log_level).upper()))

        self.scores_table = settings.scores_table
        self.engine = get_engine(self.connection_string)

        logger.info(f"ScoreDBClient initialized for table '{self.scores_table}'")

    async def execute_query(
        self,
        query: str,
        params: Optional[Dict[str, Any]],
        row_model: Type[RowModel],
    ) -> List[RowModel]:
        """
        Run a read query and parse each row into ``row_model``.

        Args:
            query: SQL text with named bound parameters
            params: Bound parameter values
            row_model: Pydantic model matching the selected columns

        Returns:
            One model per result row, in result order

        Raises:
            StoreQueryError: If execution fails or a row does not match the model
        """
        statement = text(query)
        # List values feed "IN :name" clauses
        expanding = [bindparam(k, expanding=True) for k, v in (params or {}).items()
                     if isinstance(v, (list, tuple))]
        if expanding:
            statement = statement.bindparams(*expanding)

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(statement, params or {})
                return [row_model.model_validate(dict(row._mapping)) for row in result]
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Query against '{self.scores_table}' failed: {e}")
            raise StoreQueryError(f"Query execution failed: {e}") from e
        except ValidationError as e:
            logger.error(f"Could not parse {row_model.__name__} rows: {e}")
            raise StoreQueryError(f"Failed to deserialize {row_model.__name__} rows: {e}") from e

    async def close(self):
        """Close database connections."""
        await dispose_engine()
