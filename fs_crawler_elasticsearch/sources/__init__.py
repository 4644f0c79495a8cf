"""Places a crawl can read from, selected by ``server.protocol``."""

from typing import Any, Dict

from ..exceptions import ConfigurationError
from .base import CrawlSource
from .ftp import FtpSource
from .local import LocalSource
from .ssh import SshSource

__all__ = ['CrawlSource', 'FtpSource', 'LocalSource', 'SshSource', 'build_source']

def build_source(config: Dict[str, Any]) -> CrawlSource:
    fs_config = config.get('fs', {})
    server = config.get('server', {})
    protocol = server.get('protocol', 'local')
    if protocol == 'local':
        return LocalSource(
            follow_symlinks=fs_config.get('follow_symlinks', False),
            attributes_support=fs_config.get('attributes_support', False),
        )
    if protocol == 'ftp':
        return FtpSource(
            hostname=server.get('hostname'),
            port=server.get('port') or 21,
            username=server.get('username') or 'anonymous',
            password=server.get('password') or '',
        )
    if protocol == 'ssh':
        return SshSource(
            hostname=server.get('hostname'),
            port=server.get('port') or 22,
            username=server.get('username'),
            password=server.get('password'),
            pem_path=server.get('pem_path'),
        )
    raise ConfigurationError(f"Unsupported protocol '{protocol}'")
