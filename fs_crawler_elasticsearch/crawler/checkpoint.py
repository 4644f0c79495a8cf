"""Resumable scan progress."""

import copy
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, Optional, Set

import pytz


class CrawlerState(str, Enum):
    STOPPED = 'STOPPED'
    RUNNING = 'RUNNING'
    PAUSED = 'PAUSED'
    COMPLETED = 'COMPLETED'


@dataclass
class Checkpoint:
    """In-flight progress of one scan, written after every directory.

    pending_paths is a FIFO queue; a directory that has to be retried goes back
    to the front with add_path_first. completed_paths is a membership set.
    current_path is never in completed_paths.
    """
    scan_id: Optional[str] = None
    scan_start_time: Optional[datetime] = None
    # Watermark the scan compares against; None on the first run of a job
    scan_date: Optional[datetime] = None
    current_path: Optional[str] = None
    pending_paths: Deque[str] = field(default_factory=deque)
    completed_paths: Set[str] = field(default_factory=set)
    files_processed: int = 0
    files_deleted: int = 0
    state: CrawlerState = CrawlerState.STOPPED
    retry_count: int = 0
    last_error: Optional[str] = None

    @classmethod
    def new_checkpoint(cls, root_path: str, scan_date: Optional[datetime] = None) -> 'Checkpoint':
        return cls(
            scan_id=str(uuid.uuid4()),
            scan_start_time=datetime.now(pytz.utc),
            scan_date=scan_date,
            pending_paths=deque([root_path]),
            state=CrawlerState.RUNNING,
        )

    def has_pending_work(self) -> bool:
        return bool(self.pending_paths)

    def poll_next_path(self) -> Optional[str]:
        if not self.pending_paths:
            return None
        return self.pending_paths.popleft()

    def add_path(self, path: str) -> None:
        self.pending_paths.append(path)

    def add_path_first(self, path: str) -> None:
        self.pending_paths.appendleft(path)

    def mark_completed(self, path: str) -> None:
        self.completed_paths.add(path)
        if self.current_path == path:
            self.current_path = None

    def is_completed(self, path: str) -> bool:
        return path in self.completed_paths

    def increment_files_processed(self, count: int = 1) -> None:
        self.files_processed += count

    def increment_files_deleted(self, count: int = 1) -> None:
        self.files_deleted += count

    def increment_retry_count(self) -> None:
        self.retry_count += 1

    def reset_retry_count(self) -> None:
        self.retry_count = 0

    def snapshot(self) -> 'Checkpoint':
        return copy.deepcopy(self)

    def elapsed_seconds(self, now: Optional[datetime] = None) -> float:
        if self.scan_start_time is None:
            return 0.0
        now = now or datetime.now(pytz.utc)
        return max(0.0, (now - self.scan_start_time).total_seconds())

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation used by the status output."""
        return {
            'scan_id': self.scan_id,
            'scan_start_time': self.scan_start_time.isoformat() if self.scan_start_time else None,
            'scan_date': self.scan_date.isoformat() if self.scan_date else None,
            'current_path': self.current_path,
            'pending_paths': list(self.pending_paths),
            'completed_paths': sorted(self.completed_paths),
            'files_processed': self.files_processed,
            'files_deleted': self.files_deleted,
            'state': self.state.value,
            'retry_count': self.retry_count,
            'last_error': self.last_error,
        }

