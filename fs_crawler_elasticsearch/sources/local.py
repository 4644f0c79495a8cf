import grp
import logging
import os
import pwd
import stat
from datetime import datetime
from typing import BinaryIO, List, Optional

import pytz

from ..crawler.models import CrawlItem
from ..exceptions import SourceError
from .base import CrawlSource

logger = logging.getLogger(__name__)

def _timestamp(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=pytz.utc)

def _owner(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)

def _group(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except KeyError:
        return str(gid)

class LocalSource(CrawlSource):
    """Crawls a directory tree mounted on this machine."""

    def __init__(self, follow_symlinks: bool = False, attributes_support: bool = False):
        self.follow_symlinks = follow_symlinks
        self.attributes_support = attributes_support

    def exists(self, path: str) -> bool:
        return os.path.isdir(path)

    def list(self, path: str) -> List[CrawlItem]:
        try:
            with os.scandir(path) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            raise SourceError(path, e.strerror or str(e)) from e

        items = []
        for entry in entries:
            try:
                items.append(self._to_item(entry))
            except OSError as e:
                # Entry vanished or is unreadable between listing and stat
                logger.warning(f"Cannot read attributes of {entry.path}: {e}")
        return items

    def _to_item(self, entry: os.DirEntry) -> CrawlItem:
        st = entry.stat(follow_symlinks=self.follow_symlinks)
        item = CrawlItem(
            name=entry.name,
            is_file=entry.is_file(follow_symlinks=self.follow_symlinks),
            is_directory=entry.is_dir(follow_symlinks=self.follow_symlinks),
            last_modified=_timestamp(st.st_mtime),
            created_at=_timestamp(getattr(st, 'st_birthtime', None)),
            accessed_at=_timestamp(st.st_atime),
            full_path=entry.path,
            size_bytes=st.st_size,
        )
        if self.attributes_support:
            item.owner = _owner(st.st_uid)
            item.group = _group(st.st_gid)
            item.permissions = int(oct(stat.S_IMODE(st.st_mode) & 0o777)[2:])
        return item

    def open_stream(self, item: CrawlItem) -> BinaryIO:
        try:
            return open(item.full_path, 'rb')
        except OSError as e:
            raise SourceError(item.full_path, e.strerror or str(e)) from e
