"""Per-job watermark of the last successful scan."""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import duckdb
import pyarrow as pa

from .checkpoint_store import as_utc

logger = logging.getLogger(__name__)

_JOB_SCHEMA = pa.schema([
    ('job_name', pa.string()),
    ('last_run', pa.timestamp('us', tz='UTC')),
    ('next_check', pa.timestamp('us', tz='UTC')),
    ('files_indexed', pa.int64()),
    ('files_deleted', pa.int64()),
])

@dataclass
class JobMeta:
    last_run: Optional[datetime] = None
    next_check: Optional[datetime] = None
    files_indexed: int = 0
    files_deleted: int = 0

class JobStore:
    """Stores the reference timestamp handed from one successful run to the next."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn
        self._lock = threading.Lock()
        cursor = self.conn.cursor()
        try:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_name VARCHAR PRIMARY KEY,
                    last_run TIMESTAMP WITH TIME ZONE,
                    next_check TIMESTAMP WITH TIME ZONE,
                    files_indexed BIGINT,
                    files_deleted BIGINT
                );
            """)
        finally:
            cursor.close()

    def read(self, job_name: str) -> Optional[JobMeta]:
        with self._lock:
            cursor = self.conn.cursor()
            try:
                row = cursor.execute("""
                    SELECT last_run, next_check, files_indexed, files_deleted
                    FROM jobs WHERE job_name = ?
                """, [job_name]).fetchone()
            finally:
                cursor.close()
        if row is None:
            return None
        return JobMeta(
            last_run=as_utc(row[0]),
            next_check=as_utc(row[1]),
            files_indexed=row[2] or 0,
            files_deleted=row[3] or 0,
        )

    def write(self, job_name: str, job: JobMeta) -> None:
        table = pa.Table.from_pylist([{
            'job_name': job_name,
            'last_run': as_utc(job.last_run),
            'next_check': as_utc(job.next_check),
            'files_indexed': job.files_indexed,
            'files_deleted': job.files_deleted,
        }], schema=_JOB_SCHEMA)
        with self._lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute("BEGIN TRANSACTION")
                try:
                    cursor.register("job_table", table)
                    cursor.execute("INSERT OR REPLACE INTO jobs SELECT * FROM job_table")
                    cursor.execute("COMMIT")
                except Exception:
                    cursor.execute("ROLLBACK")
                    raise
            finally:
                cursor.close()
        logger.debug(f"Saved job [{job_name}]: last_run={job.last_run}, next_check={job.next_check}")

    def clean(self, job_name: str) -> None:
        with self._lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute("DELETE FROM jobs WHERE job_name = ?", [job_name])
            finally:
                cursor.close()
