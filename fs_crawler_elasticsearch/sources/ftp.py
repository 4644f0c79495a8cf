import ftplib
import logging
import posixpath
import socket
from datetime import datetime
from typing import BinaryIO, List, Optional

import pytz

from ..crawler.models import CrawlItem
from ..exceptions import SourceError
from .base import CrawlSource

logger = logging.getLogger(__name__)

MLSD_FACTS = ['type', 'size', 'modify', 'create', 'unix.mode', 'unix.owner', 'unix.group']

def _parse_mlsd_time(value: Optional[str]) -> Optional[datetime]:
    # RFC 3659: YYYYMMDDHHMMSS[.sss], always UTC
    if not value:
        return None
    try:
        return pytz.utc.localize(datetime.strptime(value[:14], '%Y%m%d%H%M%S'))
    except ValueError:
        logger.debug(f"Unparseable MLSD time {value!r}")
        return None

class FtpDownload:
    """Binary stream over an FTP data connection, read as the consumer asks for it.

    Closing collects the server's transfer reply, so the control connection is
    ready for the next command even when the file was not read to the end.
    """

    def __init__(self, ftp: ftplib.FTP, conn: socket.socket, path: str):
        self._ftp = ftp
        self._conn = conn
        self._file = conn.makefile('rb')
        self.path = path

    def read(self, size: int = -1) -> bytes:
        return self._file.read(size)

    def close(self) -> None:
        if self._file is None:
            return
        self._file.close()
        self._conn.close()
        self._file = None
        try:
            self._ftp.voidresp()
        except ftplib.all_errors as e:
            # 426 when the transfer was cut short on purpose
            logger.debug(f"Transfer of {self.path} ended with: {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

class FtpSource(CrawlSource):
    """Crawls a remote tree over FTP using MLSD listings."""

    def __init__(self, hostname: str, port: int = 21, username: str = 'anonymous',
                 password: str = '', timeout: float = 30):
        self.hostname = hostname
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout
        self.ftp: Optional[ftplib.FTP] = None

    def open(self) -> None:
        self.ftp = ftplib.FTP()
        try:
            self.ftp.connect(self.hostname, self.port, timeout=self.timeout)
            self.ftp.login(self.username, self.password)
        except ftplib.all_errors as e:
            raise SourceError(f"ftp://{self.hostname}:{self.port}", str(e)) from e
        logger.info(f"Connected to ftp://{self.hostname}:{self.port} as {self.username}")

    def close(self) -> None:
        if self.ftp is None:
            return
        try:
            self.ftp.quit()
        except ftplib.all_errors:
            self.ftp.close()
        self.ftp = None

    def exists(self, path: str) -> bool:
        try:
            self.ftp.cwd(path)
            return True
        except ftplib.error_perm:
            return False

    def list(self, path: str) -> List[CrawlItem]:
        try:
            entries = list(self.ftp.mlsd(path, facts=MLSD_FACTS))
        except ftplib.all_errors as e:
            raise SourceError(path, str(e)) from e

        items = []
        for name, facts in sorted(entries, key=lambda entry: entry[0]):
            kind = facts.get('type', '').lower()
            if kind in ('cdir', 'pdir') or name in ('.', '..'):
                continue
            mode = facts.get('unix.mode')
            items.append(CrawlItem(
                name=name,
                is_file=kind == 'file',
                is_directory=kind == 'dir',
                last_modified=_parse_mlsd_time(facts.get('modify')),
                created_at=_parse_mlsd_time(facts.get('create')),
                full_path=posixpath.join(path, name),
                size_bytes=int(facts.get('size', 0) or 0),
                owner=facts.get('unix.owner'),
                group=facts.get('unix.group'),
                permissions=int(mode[-3:]) if mode else None,
            ))
        return items

    def open_stream(self, item: CrawlItem) -> BinaryIO:
        try:
            self.ftp.voidcmd('TYPE I')
            conn = self.ftp.transfercmd(f"RETR {item.full_path}")
        except ftplib.all_errors as e:
            raise SourceError(item.full_path, str(e)) from e
        return FtpDownload(self.ftp, conn, item.full_path)
