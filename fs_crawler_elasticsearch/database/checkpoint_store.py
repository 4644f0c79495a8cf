"""Durable checkpoint records, one per job."""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Optional

import duckdb
import pyarrow as pa
import pytz

from ..crawler.checkpoint import Checkpoint, CrawlerState

logger = logging.getLogger(__name__)

_CHECKPOINT_SCHEMA = pa.schema([
    ('job_name', pa.string()),
    ('scan_id', pa.string()),
    ('scan_start_time', pa.timestamp('us', tz='UTC')),
    ('scan_date', pa.timestamp('us', tz='UTC')),
    ('current_path', pa.string()),
    ('files_processed', pa.int64()),
    ('files_deleted', pa.int64()),
    ('state', pa.string()),
    ('retry_count', pa.int32()),
    ('last_error', pa.string()),
    ('updated_at', pa.timestamp('us', tz='UTC')),
])

_PATHS_SCHEMA = pa.schema([
    ('job_name', pa.string()),
    ('kind', pa.string()),
    ('position', pa.int64()),
    ('path', pa.string()),
])

PENDING = 'pending'
COMPLETED = 'completed'

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)

class CheckpointStore:
    """Reads and writes checkpoints in the crawler state database.

    A checkpoint is a row in ``checkpoints`` plus its ordered pending paths and
    its completed paths in ``checkpoint_paths``. ``write`` replaces both inside a
    single transaction, so a reader never sees half of a checkpoint.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn
        self._lock = threading.Lock()
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        cursor = self.conn.cursor()
        try:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS checkpoints (
                    job_name VARCHAR,
                    scan_id VARCHAR,
                    scan_start_time TIMESTAMP WITH TIME ZONE,
                    scan_date TIMESTAMP WITH TIME ZONE,
                    current_path VARCHAR,
                    files_processed BIGINT,
                    files_deleted BIGINT,
                    state VARCHAR,
                    retry_count INTEGER,
                    last_error VARCHAR,
                    updated_at TIMESTAMP WITH TIME ZONE
                );
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS checkpoint_paths (
                    job_name VARCHAR,
                    kind VARCHAR,
                    position BIGINT,
                    path VARCHAR
                );
            """)
        finally:
            cursor.close()

    def read(self, job_name: str) -> Optional[Checkpoint]:
        with self._lock:
            cursor = self.conn.cursor()
            try:
                row = cursor.execute("""
                    SELECT scan_id, scan_start_time, scan_date, current_path,
                           files_processed, files_deleted, state, retry_count, last_error
                    FROM checkpoints WHERE job_name = ?
                """, [job_name]).fetchone()
                if row is None:
                    return None
                paths = cursor.execute("""
                    SELECT kind, path FROM checkpoint_paths
                    WHERE job_name = ?
                    ORDER BY kind, position
                """, [job_name]).fetchall()
            finally:
                cursor.close()

        checkpoint = Checkpoint(
            scan_id=row[0],
            scan_start_time=as_utc(row[1]),
            scan_date=as_utc(row[2]),
            current_path=row[3],
            pending_paths=deque(path for kind, path in paths if kind == PENDING),
            completed_paths={path for kind, path in paths if kind == COMPLETED},
            files_processed=row[4] or 0,
            files_deleted=row[5] or 0,
            state=CrawlerState(row[6]),
            retry_count=row[7] or 0,
            last_error=row[8],
        )
        logger.debug(f"Read checkpoint for [{job_name}]: state={checkpoint.state.value}, "
                     f"pending={len(checkpoint.pending_paths)}, completed={len(checkpoint.completed_paths)}")
        return checkpoint

    def write(self, job_name: str, checkpoint: Checkpoint) -> None:
        checkpoint_table = pa.Table.from_pylist([{
            'job_name': job_name,
            'scan_id': checkpoint.scan_id,
            'scan_start_time': as_utc(checkpoint.scan_start_time),
            'scan_date': as_utc(checkpoint.scan_date),
            'current_path': checkpoint.current_path,
            'files_processed': checkpoint.files_processed,
            'files_deleted': checkpoint.files_deleted,
            'state': checkpoint.state.value,
            'retry_count': checkpoint.retry_count,
            'last_error': checkpoint.last_error,
            'updated_at': datetime.now(pytz.utc),
        }], schema=_CHECKPOINT_SCHEMA)

        path_rows = [
            {'job_name': job_name, 'kind': PENDING, 'position': i, 'path': path}
            for i, path in enumerate(checkpoint.pending_paths)
        ]
        path_rows.extend(
            {'job_name': job_name, 'kind': COMPLETED, 'position': i, 'path': path}
            for i, path in enumerate(sorted(checkpoint.completed_paths))
        )
        paths_table = pa.Table.from_pylist(path_rows, schema=_PATHS_SCHEMA)

        with self._lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute("BEGIN TRANSACTION")
                try:
                    cursor.execute("DELETE FROM checkpoints WHERE job_name = ?", [job_name])
                    cursor.execute("DELETE FROM checkpoint_paths WHERE job_name = ?", [job_name])
                    cursor.register("checkpoint_table", checkpoint_table)
                    cursor.execute("INSERT INTO checkpoints SELECT * FROM checkpoint_table")
                    if path_rows:
                        cursor.register("paths_table", paths_table)
                        cursor.execute("INSERT INTO checkpoint_paths SELECT * FROM paths_table")
                    cursor.execute("COMMIT")
                except Exception:
                    cursor.execute("ROLLBACK")
                    raise
            finally:
                cursor.close()
        logger.debug(f"Wrote checkpoint for [{job_name}]: state={checkpoint.state.value}")

    def clean(self, job_name: str) -> None:
        with self._lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute("BEGIN TRANSACTION")
                try:
                    cursor.execute("DELETE FROM checkpoints WHERE job_name = ?", [job_name])
                    cursor.execute("DELETE FROM checkpoint_paths WHERE job_name = ?", [job_name])
                    cursor.execute("COMMIT")
                except Exception:
                    cursor.execute("ROLLBACK")
                    raise
            finally:
                cursor.close()
        logger.debug(f"Removed checkpoint for [{job_name}]")
