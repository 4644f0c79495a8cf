"""Crawl decisions and the engine that drives a scan."""

from .checkpoint import Checkpoint, CrawlerState
from .models import CrawlItem, ScanRun
from .path_matcher import PathMatcher, is_indexable
from .change_detector import ChangeDetector
from .signing import IdentitySigner, sign

__all__ = [
    'Checkpoint', 'CrawlerState', 'CrawlItem', 'ScanRun', 'PathMatcher',
    'is_indexable', 'ChangeDetector', 'IdentitySigner', 'sign',
]
