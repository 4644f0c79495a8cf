import os
import threading
import time

import pytest

from fs_crawler_elasticsearch.config.config import build_config
from fs_crawler_elasticsearch.database.checkpoint_store import CheckpointStore
from fs_crawler_elasticsearch.database.db_duckdb import close_database, init_database
from fs_crawler_elasticsearch.database.job_store import JobStore
from fs_crawler_elasticsearch.elasticsearch.bulk_processor import BulkItemResult, INDEX


def _field(document, dotted):
    value = document
    for part in dotted.split('.'):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


class FakeBackend:
    """In-memory stand-in for ElasticsearchClient."""

    def __init__(self):
        self.collections = {}
        self.bulk_calls = []
        self.fail_ids = set()
        self.refresh_count = 0
        self._lock = threading.Lock()

    def index(self, collection, doc_id, document, pipeline=None):
        with self._lock:
            self.collections.setdefault(collection, {})[doc_id] = document

    def delete(self, collection, doc_id):
        with self._lock:
            self.collections.get(collection, {}).pop(doc_id, None)

    def search(self, collection, query, source_fields=None, size=1000):
        (field, value), = query['term'].items()
        with self._lock:
            docs = list(self.collections.get(collection, {}).items())
        return [{'id': doc_id, 'source': doc} for doc_id, doc in docs if _field(doc, field) == value]

    def bulk(self, operations):
        results = []
        with self._lock:
            self.bulk_calls.append(list(operations))
            for op in operations:
                if op.id in self.fail_ids:
                    results.append(BulkItemResult(op.action, op.collection, op.id, False, 500, 'boom'))
                    continue
                if op.action == INDEX:
                    self.collections.setdefault(op.collection, {})[op.id] = op.document
                else:
                    self.collections.get(op.collection, {}).pop(op.id, None)
                results.append(BulkItemResult(op.action, op.collection, op.id, True, 200))
        return results

    def refresh(self):
        self.refresh_count += 1

    @property
    def operations(self):
        return [op for call in self.bulk_calls for op in call]

    def docs(self, collection):
        return self.collections.get(collection, {})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def root(tmp_path):
    path = tmp_path / 'root'
    path.mkdir()
    return path


@pytest.fixture
def make_config(tmp_path):
    def _make(root, fs=None, **sections):
        user_config = {
            'name': 'test_job',
            'fs': {'url': str(root), 'update_rate': '1s', **(fs or {})},
            'elasticsearch': {'index': 'docs', 'index_folder': 'folders', 'flush_interval': 0,
                              'bulk_size': 1000},
            'database': {'path': str(tmp_path / 'state.duckdb')},
            'logging': {'file': None, 'console': False},
        }
        user_config.update(sections)
        return build_config(user_config)
    return _make


@pytest.fixture
def state_db(tmp_path):
    conn = init_database(str(tmp_path / 'state.duckdb'), {})
    yield conn
    close_database(conn)


@pytest.fixture
def checkpoint_store(state_db):
    return CheckpointStore(state_db)


@pytest.fixture
def job_store(state_db):
    return JobStore(state_db)


class Tree:
    """Builds directory trees under the crawl root."""

    def __init__(self, root):
        self.root = root

    def make(self, files):
        """Create files (relative path -> text); names ending in '/' are directories."""
        for rel, content in files.items():
            path = self.root / rel
            if rel.endswith('/'):
                path.mkdir(parents=True, exist_ok=True)
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return self

    def age(self, seconds=3600):
        """Move every timestamp under the root into the past, before any watermark."""
        stamp = time.time() - seconds
        for dirpath, dirnames, filenames in os.walk(self.root):
            for name in dirnames + filenames:
                os.utime(os.path.join(dirpath, name), (stamp, stamp))
        os.utime(self.root, (stamp, stamp))
        return self

    def path(self, rel=''):
        return str(self.root / rel) if rel else str(self.root)


@pytest.fixture
def tree(root):
    return Tree(root)


def _wait_for(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for():
    return _wait_for
