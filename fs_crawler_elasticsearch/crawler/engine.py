"""Drives one job: walks the source, feeds the batcher, keeps the checkpoint."""

import logging
import os
import posixpath
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set

import pytz

from ..config.config import get_index_names
from ..database.job_store import JobMeta
from ..elasticsearch.bulk_processor import BulkBatcher, BulkOperation
from ..elasticsearch.reconciler import BackendReconciler
from ..exceptions import (
    ClosedBatcherError,
    ConfigurationError,
    CrawlAbortedError,
    InvalidStateTransitionError,
    SourceError,
)
from ..extraction.extractor import ExtractionResult, TextExtractor, guess_content_type
from ..utils.durations import format_duration, parse_duration
from ..utils.size_formatter import format_size, parse_size
from ..utils.workflow_stats import WorkflowStats
from .change_detector import ChangeDetector
from .checkpoint import Checkpoint, CrawlerState
from .checksum import HashingReader
from .models import CrawlItem, ScanRun
from .path_matcher import PathMatcher
from .signing import IdentitySigner, compute_real_path_name, compute_virtual_path_name, sign

logger = logging.getLogger(__name__)

# A folder holding this file is not crawled, and what was indexed under it is removed
IGNORE_FILENAME = '.crawlerignore'

# Filesystem timestamp granularity tolerated when moving the watermark
WATERMARK_SAFETY_SECONDS = 2

PAUSE_POLL_SECONDS = 0.1

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None

class CrawlEngine:
    """Incremental crawler for one job.

    A scan drains the checkpoint's pending queue one directory at a time. For each
    directory the children are classified, changed files are extracted and queued
    for indexing, sub directories are queued for crawling, and, when enabled, the
    index's view of the directory is diffed against the listing to delete orphans.
    The checkpoint is written after every directory and on every state change.
    """

    def __init__(self, config: Dict[str, Any], source, client, checkpoint_store, job_store,
                 extractor=None, batcher: Optional[BulkBatcher] = None,
                 reconciler: Optional[BackendReconciler] = None, loop: int = 0):
        self.config = config
        self.job_name = config['name']
        self.source = source
        self.client = client
        self.checkpoint_store = checkpoint_store
        self.job_store = job_store
        self.loop = loop

        fs_config = config.get('fs', {})
        es_config = config.get('elasticsearch', {})
        server_config = config.get('server', {})

        self.root = fs_config['url'].rstrip('/') or '/'
        self.index_name, self.folder_index_name = get_index_names(config)
        self.update_rate = parse_duration(fs_config.get('update_rate', '15m'))
        self.recursive = fs_config.get('recursive', True)
        self.index_content = fs_config.get('index_content', True)
        self.index_folders = fs_config.get('index_folders', True)
        self.remove_deleted = fs_config.get('remove_deleted', True)
        self.continue_on_error = fs_config.get('continue_on_error', True)
        self.add_filesize = fs_config.get('add_filesize', True)
        self.attributes_support = fs_config.get('attributes_support', False)
        self.checksum = fs_config.get('checksum')
        self.max_retries = int(fs_config.get('max_retries', 3))
        self.retry_delay = parse_duration(fs_config.get('retry_delay_seconds') or 0)
        ignore_above = fs_config.get('ignore_above')
        self.ignore_above = parse_size(ignore_above) if ignore_above is not None else None
        self.pipeline = es_config.get('pipeline')
        self.protocol = server_config.get('protocol', 'local')
        self.hostname = server_config.get('hostname')

        self.matcher = PathMatcher(fs_config.get('includes'), fs_config.get('excludes'))
        self.detector = ChangeDetector()
        self.signer = IdentitySigner(fs_config.get('filename_as_id', False))
        self.extractor = extractor or TextExtractor(fs_config.get('indexed_chars', 100000))
        self.batcher = batcher or BulkBatcher(
            client,
            bulk_size=int(es_config.get('bulk_size', 100)),
            flush_interval=parse_duration(es_config.get('flush_interval', '5s')),
            byte_size=parse_size(es_config.get('byte_size', '10mb')),
            name=self.job_name,
        )
        self.reconciler = reconciler or BackendReconciler(
            client, self.index_name, self.folder_index_name, self.signer, is_closed=lambda: self.closed
        )

        self._closed = threading.Event()
        self._resumed = threading.Event()
        self._resumed.set()
        self._lock = threading.RLock()
        self._checkpoint: Optional[Checkpoint] = None
        self._thread: Optional[threading.Thread] = None
        self._batcher_closed = False
        self.run_number = 0
        self.fatal_error: Optional[Exception] = None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def state(self) -> CrawlerState:
        with self._lock:
            return self._checkpoint.state if self._checkpoint else CrawlerState.STOPPED

    # Control surface

    def start(self) -> threading.Thread:
        """Run scans on a dedicated thread until closed."""
        self._thread = threading.Thread(target=self.run_forever, name=f"crawler-{self.job_name}", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def pause(self) -> None:
        with self._lock:
            checkpoint = self._checkpoint
            if checkpoint is not None and checkpoint.state == CrawlerState.PAUSED:
                raise InvalidStateTransitionError("Crawler is already paused")
            if checkpoint is None or checkpoint.state != CrawlerState.RUNNING:
                raise InvalidStateTransitionError("Crawler is not running")
            checkpoint.state = CrawlerState.PAUSED
            self._resumed.clear()
            self._save_checkpoint()
        logger.info(f"Crawler [{self.job_name}] paused")

    def resume(self) -> None:
        with self._lock:
            checkpoint = self._checkpoint
            if checkpoint is None or checkpoint.state != CrawlerState.PAUSED:
                raise InvalidStateTransitionError("Crawler is not paused")
            checkpoint.state = CrawlerState.RUNNING
            self._save_checkpoint()
            self._resumed.set()
        logger.info(f"Crawler [{self.job_name}] resumed")

    def get_checkpoint(self) -> Optional[Checkpoint]:
        """Consistent copy of the in-flight checkpoint, or the stored one when idle."""
        with self._lock:
            if self._checkpoint is not None:
                return self._checkpoint.snapshot()
        return self.checkpoint_store.read(self.job_name)

    def clear_checkpoint(self) -> None:
        with self._lock:
            if self._checkpoint is not None and self._checkpoint.state == CrawlerState.RUNNING:
                raise InvalidStateTransitionError(
                    "Cannot clear checkpoint while crawler is running. Pause or stop it first."
                )
            self.checkpoint_store.clean(self.job_name)
            self._checkpoint = None
            # Wake a paused scan so it notices its checkpoint is gone
            self._resumed.set()
        logger.info(f"Checkpoint of [{self.job_name}] cleared")

    def get_status(self) -> Dict[str, Any]:
        checkpoint = self.get_checkpoint()
        status = {
            'name': self.job_name,
            'state': CrawlerState.STOPPED.value,
            'pending_operations': self.batcher.pending_count,
            'operations_sent': self.batcher.operations_sent,
            'operations_failed': self.batcher.operations_failed,
        }
        if checkpoint is not None:
            status.update(checkpoint.to_dict())
            status.update({
                'pending_directories': len(checkpoint.pending_paths),
                'completed_directories': len(checkpoint.completed_paths),
                'elapsed_seconds': checkpoint.elapsed_seconds(),
            })
        return status

    def close(self) -> None:
        """Stop scanning, then flush whatever the batcher still holds."""
        if not self.closed:
            logger.info(f"Closing crawler [{self.job_name}]")
        self._closed.set()
        self._resumed.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        if not self._batcher_closed:
            self._batcher_closed = True
            self.batcher.close()

    # Scan loop

    def run_forever(self) -> None:
        while not self.closed:
            self.run_number += 1
            try:
                self.run(self.run_number)
            except ConfigurationError as e:
                logger.error(f"Crawler [{self.job_name}] cannot run: {e}")
                self.fatal_error = e
                break
            except Exception as e:
                logger.error(f"Run #{self.run_number} of [{self.job_name}] failed: {e}", exc_info=True)

            if self.loop > 0 and self.run_number >= self.loop:
                logger.info(f"Crawler [{self.job_name}] completed {self.run_number} run(s)")
                break
            if self.closed:
                break
            logger.debug(f"Next scan of [{self.job_name}] in {format_duration(self.update_rate)}")
            if self._closed.wait(self.update_rate):
                break

    def run(self, run_number: int = 1) -> bool:
        """Perform one scan. Returns True when the whole tree was processed."""
        if self.closed:
            return False
        if not self.source.exists(self.root):
            raise ConfigurationError(f"Root directory {self.root} does not exist or is not readable")

        job = self.job_store.read(self.job_name)
        scan = ScanRun(reference_timestamp=job.last_run if job else None)
        resumed = self._load_checkpoint(scan)
        stats = WorkflowStats()

        logger.info(f"Run #{run_number}: crawling [{self.job_name}] from {self.root} "
                    f"(changes since {_iso(scan.reference_timestamp) or 'the beginning'})")

        try:
            if scan.reference_timestamp is None and not resumed and self.index_folders:
                self._add(BulkOperation.index(
                    self.folder_index_name,
                    self.signer.folder_id(self.root),
                    self._folder_document(self.root, os.path.dirname(self.root) or '/', None),
                ))
                stats.update_stats(folders=1)

            while not self.closed:
                if not self._await_running():
                    break
                with self._lock:
                    checkpoint = self._checkpoint
                    path = checkpoint.poll_next_path()
                    if path is None:
                        break
                    if checkpoint.is_completed(path):
                        logger.debug(f"Skipping {path}, already crawled in this scan")
                        continue
                    checkpoint.current_path = path
                self._process_directory(path, scan, stats)
        except Exception as e:
            self._stop(str(e))
            raise

        with self._lock:
            checkpoint = self._checkpoint
            if checkpoint is None:
                logger.info(f"Scan of [{self.job_name}] abandoned, its checkpoint was cleared")
                return False
            if self.closed or checkpoint.has_pending_work() or checkpoint.current_path:
                self._stop()
                logger.info(f"Scan of [{self.job_name}] stopped with {len(checkpoint.pending_paths)} "
                            f"directories pending")
                return False

        self.batcher.flush()
        self._refresh()
        self._save_watermark(scan)

        with self._lock:
            checkpoint.state = CrawlerState.COMPLETED
            checkpoint.current_path = None
            if checkpoint.last_error:
                logger.warning(f"Scan of [{self.job_name}] completed with errors, last one: {checkpoint.last_error}")
                self._save_checkpoint()
            else:
                self.checkpoint_store.clean(self.job_name)

        stats.log_summary(self.job_name)
        return True

    def _load_checkpoint(self, scan: ScanRun) -> bool:
        """Resume the stored checkpoint when it has work left, else start a new scan."""
        existing = self.checkpoint_store.read(self.job_name)
        resumable = (
            existing is not None
            and existing.state != CrawlerState.COMPLETED
            and (existing.has_pending_work() or existing.current_path)
        )
        with self._lock:
            if resumable:
                checkpoint = existing
                if checkpoint.current_path and not checkpoint.is_completed(checkpoint.current_path):
                    # Crashed while this directory was in flight
                    checkpoint.add_path_first(checkpoint.current_path)
                checkpoint.current_path = None
                checkpoint.state = CrawlerState.RUNNING
                scan.scan_id = checkpoint.scan_id
                scan.start_time = checkpoint.scan_start_time or scan.start_time
                scan.reference_timestamp = checkpoint.scan_date
                scan.stats.files_indexed = checkpoint.files_processed
                scan.stats.files_deleted = checkpoint.files_deleted
                logger.info(f"Resuming scan {checkpoint.scan_id} of [{self.job_name}]: "
                            f"{len(checkpoint.pending_paths)} pending, {len(checkpoint.completed_paths)} done")
            else:
                checkpoint = Checkpoint.new_checkpoint(self.root, scan_date=scan.reference_timestamp)
                checkpoint.scan_id = scan.scan_id
                checkpoint.scan_start_time = scan.start_time
            self._checkpoint = checkpoint
            self._resumed.set()
            self._save_checkpoint()
        return resumable

    def _await_running(self) -> bool:
        """Block while paused. False when the scan must not go on."""
        while not self.closed:
            with self._lock:
                if self._checkpoint is None:
                    return False
                if self._checkpoint.state == CrawlerState.RUNNING:
                    return True
            self._resumed.wait(PAUSE_POLL_SECONDS)
        return False

    def _process_directory(self, path: str, scan: ScanRun, stats: WorkflowStats) -> None:
        logger.debug(f"Indexing [{path}] content")
        try:
            children = self.source.list(path)
        except SourceError as e:
            self._listing_failed(path, e, stats)
            return

        reference = scan.reference_timestamp
        fs_files: Set[str] = set()
        fs_folders: Set[str] = set()
        ignored = any(child.name.lower() == IGNORE_FILENAME for child in children)
        if ignored:
            logger.debug(f"Found {IGNORE_FILENAME} in {path}, skipping its content")
            children = []

        for child in children:
            if self.closed or self._checkpoint is None:
                return
            real_path = compute_real_path_name(path, child.name)
            virtual_path = compute_virtual_path_name(self.root, real_path)
            if not self.matcher.is_indexable(virtual_path, child.is_directory):
                logger.debug(f"  - ignored: {virtual_path}")
                continue

            if child.is_file:
                fs_files.add(child.name)
                stats.update_stats(seen=1)
                if self.detector.is_changed(child, reference):
                    logger.debug(f"  - modified file: {virtual_path}")
                    self._index_file(path, child, real_path, virtual_path, scan, stats)
                else:
                    logger.debug(f"  - not modified: {virtual_path}")
            elif child.is_directory:
                if not self.recursive:
                    logger.debug(f"  - not recursing into: {virtual_path}")
                    continue
                if self.index_folders:
                    fs_folders.add(real_path)
                    if self.detector.is_changed(child, reference):
                        self._add(BulkOperation.index(
                            self.folder_index_name,
                            self.signer.folder_id(real_path),
                            self._folder_document(real_path, path, child),
                        ))
                        stats.update_stats(folders=1)
                with self._lock:
                    checkpoint = self._checkpoint
                    if checkpoint is None:
                        return
                    if not checkpoint.is_completed(real_path):
                        checkpoint.add_path(real_path)
            else:
                logger.debug(f"  - neither file nor directory: {virtual_path}")

        if self.remove_deleted and not self.closed:
            try:
                self._remove_orphans(path, fs_files, fs_folders, scan, stats)
            except Exception as e:
                # Deletions under this directory are picked up again by the next scan
                logger.error(f"Cannot look up indexed content of {path}, skipping deletions: {e}")
                stats.add_error(f"{path}: {e}")
                with self._lock:
                    if self._checkpoint is not None:
                        self._checkpoint.last_error = str(e)

        with self._lock:
            checkpoint = self._checkpoint
            if checkpoint is None:
                return
            checkpoint.mark_completed(path)
            checkpoint.reset_retry_count()
            self._save_checkpoint()
        stats.update_stats(dirs=1)

    def _listing_failed(self, path: str, error: SourceError, stats: WorkflowStats) -> None:
        with self._lock:
            checkpoint = self._checkpoint
            if checkpoint is None:
                return
            checkpoint.last_error = str(error)
            checkpoint.current_path = None
            retry = checkpoint.retry_count < self.max_retries
            if retry:
                checkpoint.increment_retry_count()
                checkpoint.add_path_first(path)
                logger.warning(f"Cannot list {path} (retry {checkpoint.retry_count}/{self.max_retries}): {error}")
            else:
                checkpoint.mark_completed(path)
                checkpoint.reset_retry_count()
                logger.error(f"Giving up on {path} after {self.max_retries} retries: {error}")
                stats.add_error(f"{path}: {error}")
            self._save_checkpoint()
        if retry and self.retry_delay:
            self._closed.wait(self.retry_delay)

    def _index_file(self, dirname: str, item: CrawlItem, real_path: str, virtual_path: str,
                    scan: ScanRun, stats: WorkflowStats) -> None:
        if self.ignore_above is not None and item.size_bytes > self.ignore_above:
            logger.debug(f"File {virtual_path} is {format_size(item.size_bytes)}, above "
                         f"{format_size(self.ignore_above)}. Skipping.")
            stats.update_stats(skipped=1)
            return

        result = ExtractionResult(content_type=guess_content_type(item.name))
        checksum = None
        if self.index_content or self.checksum:
            try:
                result, checksum = self._extract(item)
            except Exception as e:
                if not self.continue_on_error:
                    raise CrawlAbortedError(f"Unable to index {real_path}: {e}") from e
                logger.warning(f"Unable to extract {real_path}, indexing metadata only: {e}")
                stats.add_error(f"{real_path}: {e}")

        document = self._file_document(dirname, item, real_path, virtual_path, result, checksum)
        self._add(BulkOperation.index(
            self.index_name, self.signer.file_id(dirname, item.name), document, self.pipeline
        ))
        stats.update_stats(indexed=1, size=item.size_bytes)
        scan.stats.files_indexed += 1
        with self._lock:
            if self._checkpoint is not None:
                self._checkpoint.increment_files_processed()

    def _extract(self, item: CrawlItem):
        stream = self.source.open_stream(item)
        reader = HashingReader(stream, self.checksum) if self.checksum else stream
        try:
            if self.index_content:
                result = self.extractor.extract(reader, item.size_bytes, item.name)
            else:
                result = ExtractionResult(content_type=guess_content_type(item.name))
            checksum = None
            if self.checksum:
                reader.drain()
                checksum = reader.hexdigest()
        finally:
            reader.close()
        return result, checksum

    def _remove_orphans(self, path: str, fs_files: Set[str], fs_folders: Set[str],
                        scan: ScanRun, stats: WorkflowStats) -> None:
        logger.debug(f"Looking for removed files in [{path}]...")
        indexed = self.reconciler.list_indexed_children(path)
        files_deleted = 0
        folders_deleted = 0

        for filename in indexed.files:
            virtual_path = compute_virtual_path_name(self.root, compute_real_path_name(path, filename))
            if filename in fs_files or not self.matcher.is_indexable(virtual_path):
                continue
            logger.debug(f"Removing file [{virtual_path}] from the index")
            self._add(BulkOperation.delete(self.index_name, self.signer.file_id(path, filename)))
            files_deleted += 1

        if self.index_folders:
            for folder in indexed.folders:
                if folder in fs_folders:
                    continue
                if not self.matcher.is_indexable(compute_virtual_path_name(self.root, folder), True):
                    continue
                logger.debug(f"Removing folder [{folder}] and its content from the index")
                for operation in self.reconciler.collect_subtree_deletes(folder):
                    self._add(operation)
                    if operation.collection == self.folder_index_name:
                        folders_deleted += 1
                    else:
                        files_deleted += 1

        if files_deleted or folders_deleted:
            stats.add_deleted(files=files_deleted, folders=folders_deleted)
            scan.stats.files_deleted += files_deleted
            with self._lock:
                if self._checkpoint is not None:
                    self._checkpoint.increment_files_deleted(files_deleted)

    def _refresh(self) -> None:
        try:
            self.client.refresh()
        except Exception as e:
            logger.warning(f"Cannot refresh indices of [{self.job_name}]: {e}")

    def _add(self, operation: BulkOperation) -> None:
        try:
            self.batcher.add(operation)
        except ClosedBatcherError as e:
            logger.warning(f"Dropped while shutting down: {e}")

    # Documents

    def _url(self, real_path: str) -> str:
        if self.protocol == 'local':
            return f"file://{real_path}"
        return f"{self.protocol}://{self.hostname}{real_path}"

    def _file_document(self, dirname: str, item: CrawlItem, real_path: str, virtual_path: str,
                       result: ExtractionResult, checksum: Optional[str]) -> Dict[str, Any]:
        file_info = {
            'filename': item.name,
            'extension': item.extension,
            'content_type': result.content_type,
            'created': _iso(item.created_at),
            'last_modified': _iso(item.last_modified),
            'last_accessed': _iso(item.accessed_at),
            'indexing_date': datetime.now(pytz.utc).isoformat(),
            'url': self._url(real_path),
        }
        if self.add_filesize:
            file_info['filesize'] = item.size_bytes
        if checksum:
            file_info['checksum'] = checksum

        document = {
            'file': file_info,
            'path': {
                'root': sign(dirname),
                'virtual': virtual_path,
                'real': real_path,
            },
        }
        if result.text is not None:
            document['content'] = result.text
        if result.metadata:
            document['meta'] = result.metadata
        if self.attributes_support:
            document['attributes'] = {
                'owner': item.owner,
                'group': item.group,
                'permissions': item.permissions,
            }
        return document

    def _folder_document(self, real_path: str, parent: str, item: Optional[CrawlItem]) -> Dict[str, Any]:
        document = {
            'name': posixpath.basename(real_path.rstrip('/')) or real_path,
            'path': {
                'root': sign(parent),
                'virtual': compute_virtual_path_name(self.root, real_path),
                'real': real_path,
            },
        }
        if item is not None:
            document['file'] = {
                'created': _iso(item.created_at),
                'last_modified': _iso(item.last_modified),
                'last_accessed': _iso(item.accessed_at),
            }
        return document

    # Persistence

    def _save_checkpoint(self) -> None:
        # Caller holds _lock
        if self._checkpoint is not None:
            self.checkpoint_store.write(self.job_name, self._checkpoint)

    def _stop(self, error: Optional[str] = None) -> None:
        with self._lock:
            if self._checkpoint is None:
                return
            self._checkpoint.state = CrawlerState.STOPPED
            if error:
                self._checkpoint.last_error = error
            self._save_checkpoint()

    def _save_watermark(self, scan: ScanRun) -> None:
        """Store the start of this scan as the reference of the next one."""
        watermark = scan.start_time.replace(microsecond=0) - timedelta(seconds=WATERMARK_SAFETY_SECONDS)
        next_check = datetime.now(pytz.utc) + timedelta(seconds=self.update_rate)
        self.job_store.write(self.job_name, JobMeta(
            last_run=watermark,
            next_check=next_check,
            files_indexed=scan.stats.files_indexed,
            files_deleted=scan.stats.files_deleted,
        ))
        logger.debug(f"Watermark of [{self.job_name}] moved to {watermark.isoformat()}")
