import logging
import os
import posixpath
import stat
from datetime import datetime
from typing import BinaryIO, List, Optional

import paramiko
import pytz

from ..crawler.models import CrawlItem
from ..exceptions import SourceError
from .base import CrawlSource

logger = logging.getLogger(__name__)

def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=pytz.utc)

class SshSource(CrawlSource):
    """Crawls a remote tree over SFTP.

    Authenticates with ``pem_path`` when set, else with ``password``. Hosts
    missing from the system known_hosts file are accepted with a warning.
    """

    def __init__(self, hostname: str, port: int = 22, username: Optional[str] = None,
                 password: Optional[str] = None, pem_path: Optional[str] = None, timeout: float = 30):
        self.hostname = hostname
        self.port = port
        self.username = username
        self.password = password
        self.pem_path = pem_path
        self.timeout = timeout
        self.client: Optional[paramiko.SSHClient] = None
        self.sftp: Optional[paramiko.SFTPClient] = None

    def open(self) -> None:
        self.client = paramiko.SSHClient()
        self.client.load_system_host_keys()
        self.client.set_missing_host_key_policy(paramiko.WarningPolicy())
        try:
            self.client.connect(
                self.hostname,
                port=self.port,
                username=self.username,
                password=self.password,
                key_filename=os.path.expanduser(self.pem_path) if self.pem_path else None,
                timeout=self.timeout,
            )
            self.sftp = self.client.open_sftp()
        except (paramiko.SSHException, OSError) as e:
            self.client.close()
            raise SourceError(f"ssh://{self.hostname}:{self.port}", str(e)) from e
        logger.info(f"Connected to ssh://{self.hostname}:{self.port} as {self.username}")

    def close(self) -> None:
        if self.sftp is not None:
            self.sftp.close()
            self.sftp = None
        if self.client is not None:
            self.client.close()
            self.client = None

    def exists(self, path: str) -> bool:
        try:
            return stat.S_ISDIR(self.sftp.stat(path).st_mode or 0)
        except OSError:
            return False

    def list(self, path: str) -> List[CrawlItem]:
        try:
            entries = self.sftp.listdir_attr(path)
        except (paramiko.SSHException, OSError) as e:
            raise SourceError(path, str(e)) from e

        items = []
        for attr in sorted(entries, key=lambda entry: entry.filename):
            if attr.filename in ('.', '..'):
                continue
            mode = attr.st_mode or 0
            items.append(CrawlItem(
                name=attr.filename,
                is_file=stat.S_ISREG(mode),
                is_directory=stat.S_ISDIR(mode),
                last_modified=_timestamp(attr.st_mtime),
                accessed_at=_timestamp(attr.st_atime),
                full_path=posixpath.join(path, attr.filename),
                size_bytes=attr.st_size or 0,
                owner=str(attr.st_uid) if attr.st_uid is not None else None,
                group=str(attr.st_gid) if attr.st_gid is not None else None,
                permissions=int(oct(stat.S_IMODE(mode) & 0o777)[2:]) if mode else None,
            ))
        return items

    def open_stream(self, item: CrawlItem) -> BinaryIO:
        try:
            return self.sftp.open(item.full_path, 'rb')
        except (paramiko.SSHException, OSError) as e:
            raise SourceError(item.full_path, str(e)) from e
