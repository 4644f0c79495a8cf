"""Transient records produced while crawling."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import pytz

@dataclass
class CrawlItem:
    """One source entry, normalized across source protocols."""
    name: str
    is_file: bool
    is_directory: bool
    last_modified: Optional[datetime]
    full_path: str
    created_at: Optional[datetime] = None
    accessed_at: Optional[datetime] = None
    size_bytes: int = 0
    owner: Optional[str] = None
    group: Optional[str] = None
    permissions: Optional[int] = None
    extension: str = ''

    def __post_init__(self):
        if not self.extension and self.is_file and '.' in self.name.lstrip('.'):
            self.extension = self.name.rsplit('.', 1)[1].lower()

@dataclass
class ScanStats:
    files_indexed: int = 0
    files_deleted: int = 0

@dataclass
class ScanRun:
    """One execution of the crawler for a job."""
    reference_timestamp: Optional[datetime]
    scan_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    start_time: datetime = field(default_factory=lambda: datetime.now(pytz.utc))
    stats: ScanStats = field(default_factory=ScanStats)
