"""Embedded DuckDB state: checkpoints and job watermarks."""

from .db_duckdb import init_database, close_database
from .checkpoint_store import CheckpointStore
from .job_store import JobMeta, JobStore

__all__ = ['init_database', 'close_database', 'CheckpointStore', 'JobMeta', 'JobStore']
