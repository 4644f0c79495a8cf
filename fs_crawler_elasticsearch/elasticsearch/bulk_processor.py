"""Batches index/delete operations and sends them with the bulk API."""

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from ..exceptions import ClosedBatcherError
from ..utils.size_formatter import format_size

logger = logging.getLogger(__name__)

INDEX = 'index'
DELETE = 'delete'


@dataclass
class BulkOperation:
    """An index or delete request for one document."""
    action: str
    collection: str
    id: str
    document: Optional[Dict[str, Any]] = None
    pipeline: Optional[str] = None
    size_bytes: int = field(default=0, compare=False)

    def __post_init__(self):
        if self.action not in (INDEX, DELETE):
            raise ValueError(f"Unknown bulk action '{self.action}'")
        if self.action == INDEX and self.document is None:
            raise ValueError(f"Index operation for [{self.collection}/{self.id}] has no document")
        if not self.size_bytes:
            body = json.dumps(self.document, default=str) if self.document is not None else ''
            self.size_bytes = len(self.collection) + len(self.id) + len(body.encode('utf-8'))

    @classmethod
    def index(cls, collection: str, doc_id: str, document: Dict[str, Any],
              pipeline: Optional[str] = None) -> 'BulkOperation':
        return cls(INDEX, collection, doc_id, document, pipeline)

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> 'BulkOperation':
        return cls(DELETE, collection, doc_id)


@dataclass
class BulkItemResult:
    action: str
    collection: str
    id: str
    ok: bool
    status: Optional[int] = None
    error: Optional[str] = None


class BatcherState(str, Enum):
    OPEN = 'OPEN'
    CLOSING = 'CLOSING'
    DRAINED = 'DRAINED'


class BulkBatcher:
    """Accumulates operations and flushes them by count, by size, or by time.

    ``add`` is called by the crawl thread and a timer thread flushes when
    ``flush_interval`` seconds have passed since the last flush. Both detach the
    buffer under ``_lock`` and queue it on ``_ready``. Batches are then sent one at
    a time under ``_send_lock``, outside ``_lock``, in the order they were detached.

    Failed flushes are logged and counted, never raised: the next scan picks the
    affected files up again since the watermark only moves after a full run.
    """

    def __init__(self, client, bulk_size: int = 100, flush_interval: float = 5.0,
                 byte_size: int = 10 * 1024 * 1024, name: str = 'bulk'):
        self.client = client
        self.bulk_size = bulk_size
        self.flush_interval = flush_interval
        self.byte_size = byte_size
        self.name = name

        self.state = BatcherState.OPEN
        self._buffer: List[BulkOperation] = []
        self._buffer_bytes = 0
        self._ready: Deque[List[BulkOperation]] = deque()
        self._lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._last_flush = time.monotonic()
        self._stop_event = threading.Event()
        self._timer: Optional[threading.Thread] = None

        self.flush_count = 0
        self.operations_sent = 0
        self.operations_failed = 0

        if flush_interval and flush_interval > 0:
            self._timer = threading.Thread(target=self._run_timer, name=f"{name}-flush", daemon=True)
            self._timer.start()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._buffer) + sum(len(batch) for batch in self._ready)

    def add(self, operation: BulkOperation) -> None:
        with self._lock:
            if self.state != BatcherState.OPEN:
                raise ClosedBatcherError(
                    f"Batcher [{self.name}] is {self.state.value.lower()}, "
                    f"rejecting {operation.action} of [{operation.collection}/{operation.id}]"
                )
            self._buffer.append(operation)
            self._buffer_bytes += operation.size_bytes
            full = len(self._buffer) >= self.bulk_size or (
                self.byte_size and self._buffer_bytes >= self.byte_size
            )
            if full:
                self._detach()
        if full:
            self._send_ready()

    def flush(self) -> None:
        """Send everything queued so far and wait for it."""
        with self._lock:
            self._detach()
        self._send_ready()

    def close(self) -> None:
        """Reject further adds, stop the timer and send what is left."""
        with self._lock:
            if self.state != BatcherState.OPEN:
                return
            self.state = BatcherState.CLOSING
            self._detach()
        self._stop_event.set()
        if self._timer is not None and self._timer is not threading.current_thread():
            self._timer.join()
        self._send_ready()
        self.state = BatcherState.DRAINED
        logger.debug(f"Batcher [{self.name}] drained after {self.flush_count} flushes, "
                     f"{self.operations_sent} operations sent, {self.operations_failed} failed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _detach(self) -> None:
        # Caller holds _lock
        if self._buffer:
            self._ready.append(self._buffer)
            self._buffer = []
            self._buffer_bytes = 0
        self._last_flush = time.monotonic()

    def _run_timer(self) -> None:
        tick = max(0.01, min(self.flush_interval / 4, 1.0))
        while not self._stop_event.wait(tick):
            due = False
            with self._lock:
                if self._buffer and time.monotonic() - self._last_flush >= self.flush_interval:
                    self._detach()
                    due = True
            if due:
                self._send_ready()

    def _send_ready(self) -> None:
        with self._send_lock:
            while True:
                with self._lock:
                    if not self._ready:
                        return
                    batch = self._ready.popleft()
                self._send(batch)

    def _send(self, batch: List[BulkOperation]) -> None:
        self.flush_count += 1
        size = sum(op.size_bytes for op in batch)
        logger.debug(f"Flushing {len(batch)} operations ({format_size(size)}) from [{self.name}]")
        try:
            results = self.client.bulk(batch)
        except Exception as e:
            self.operations_failed += len(batch)
            logger.error(f"Bulk request of {len(batch)} operations failed: {e}")
            return

        failures = [r for r in results if not r.ok]
        self.operations_sent += len(batch) - len(failures)
        self.operations_failed += len(failures)
        for failure in failures:
            logger.warning(f"Failed to {failure.action} [{failure.collection}/{failure.id}] "
                           f"(status {failure.status}): {failure.error}")
        if failures:
            logger.info(f"Bulk flush: {len(batch) - len(failures)} succeeded, {len(failures)} failed")
