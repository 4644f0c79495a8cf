import logging
import threading
import time
from unittest.mock import Mock

import pytest

from fs_crawler_elasticsearch.elasticsearch.bulk_processor import (
    BatcherState,
    BulkBatcher,
    BulkItemResult,
    BulkOperation,
)
from fs_crawler_elasticsearch.exceptions import ClosedBatcherError


def _ok(operations):
    return [BulkItemResult(op.action, op.collection, op.id, True, 200) for op in operations]

def _op(i):
    return BulkOperation.index('docs', f'id-{i}', {'n': i})

@pytest.fixture
def client():
    client = Mock()
    client.bulk.side_effect = _ok
    return client

def _sent_ids(client):
    return [op.id for call in client.bulk.call_args_list for op in call.args[0]]


class TestBulkOperation:
    def test_index_requires_document(self):
        with pytest.raises(ValueError):
            BulkOperation('index', 'docs', 'a')

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            BulkOperation('update', 'docs', 'a', {})

    def test_size_is_estimated_from_document(self):
        small = BulkOperation.index('docs', 'a', {'content': 'x'})
        large = BulkOperation.index('docs', 'a', {'content': 'x' * 1000})
        assert large.size_bytes - small.size_bytes == 999
        assert BulkOperation.delete('docs', 'a').size_bytes > 0


class TestBulkBatcher:
    def test_flushes_when_bulk_size_is_reached(self, client):
        batcher = BulkBatcher(client, bulk_size=3, flush_interval=0)
        for i in range(3):
            batcher.add(_op(i))

        assert client.bulk.call_count == 1
        assert len(client.bulk.call_args.args[0]) == 3
        assert batcher.pending_count == 0
        batcher.close()

    def test_below_bulk_size_nothing_is_sent(self, client):
        batcher = BulkBatcher(client, bulk_size=10, flush_interval=0)
        batcher.add(_op(1))
        assert client.bulk.call_count == 0
        assert batcher.pending_count == 1
        batcher.close()
        assert client.bulk.call_count == 1

    def test_flushes_when_byte_size_is_reached(self, client):
        batcher = BulkBatcher(client, bulk_size=1000, flush_interval=0, byte_size=500)
        batcher.add(BulkOperation.index('docs', 'big', {'content': 'x' * 600}))
        assert client.bulk.call_count == 1
        batcher.close()

    def test_interval_flushes_everything_exactly_once(self, client):
        batcher = BulkBatcher(client, bulk_size=100, flush_interval=0.2)
        for i in range(3):
            batcher.add(_op(i))

        deadline = time.monotonic() + 5
        while client.bulk.call_count == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        time.sleep(0.5)

        assert client.bulk.call_count == 1
        assert _sent_ids(client) == ['id-0', 'id-1', 'id-2']
        assert batcher.pending_count == 0
        batcher.close()
        assert client.bulk.call_count == 1

    def test_close_drains_and_rejects_new_operations(self, client):
        batcher = BulkBatcher(client, bulk_size=100, flush_interval=10)
        batcher.add(_op(1))
        batcher.add(_op(2))

        batcher.close()

        assert _sent_ids(client) == ['id-1', 'id-2']
        assert batcher.state == BatcherState.DRAINED
        with pytest.raises(ClosedBatcherError):
            batcher.add(_op(3))
        assert client.bulk.call_count == 1

    def test_close_is_idempotent(self, client):
        batcher = BulkBatcher(client, bulk_size=100, flush_interval=0)
        batcher.add(_op(1))
        batcher.close()
        batcher.close()
        assert client.bulk.call_count == 1

    def test_context_manager_closes(self, client):
        with BulkBatcher(client, bulk_size=100, flush_interval=0) as batcher:
            batcher.add(_op(1))
        assert batcher.state == BatcherState.DRAINED
        assert client.bulk.call_count == 1

    def test_explicit_flush(self, client):
        batcher = BulkBatcher(client, bulk_size=100, flush_interval=0)
        batcher.add(_op(1))
        batcher.flush()
        assert client.bulk.call_count == 1
        batcher.flush()
        assert client.bulk.call_count == 1
        batcher.close()

    def test_operations_keep_fifo_order_across_batches(self, client):
        batcher = BulkBatcher(client, bulk_size=2, flush_interval=0)
        for i in range(5):
            batcher.add(_op(i))
        batcher.close()
        assert _sent_ids(client) == [f'id-{i}' for i in range(5)]
        assert [len(call.args[0]) for call in client.bulk.call_args_list] == [2, 2, 1]

    def test_backend_error_is_logged_not_raised(self, client, caplog):
        client.bulk.side_effect = ConnectionError('connection refused')
        batcher = BulkBatcher(client, bulk_size=2, flush_interval=0)

        with caplog.at_level(logging.ERROR):
            batcher.add(_op(1))
            batcher.add(_op(2))

        assert batcher.operations_failed == 2
        assert 'connection refused' in caplog.text
        batcher.close()

    def test_item_failures_are_logged_per_item(self, client, caplog):
        client.bulk.side_effect = lambda ops: [
            BulkItemResult(op.action, op.collection, op.id, op.id != 'id-1', 400 if op.id == 'id-1' else 200,
                           'mapper_parsing_exception: bad date' if op.id == 'id-1' else None)
            for op in ops
        ]
        batcher = BulkBatcher(client, bulk_size=100, flush_interval=0)
        batcher.add(_op(0))
        batcher.add(_op(1))

        with caplog.at_level(logging.WARNING):
            batcher.close()

        assert batcher.operations_sent == 1
        assert batcher.operations_failed == 1
        assert '[docs/id-1]' in caplog.text
        assert 'bad date' in caplog.text

    def test_concurrent_producers_lose_nothing(self, client):
        batcher = BulkBatcher(client, bulk_size=7, flush_interval=0.01)

        def produce(prefix):
            for i in range(200):
                batcher.add(BulkOperation.delete('docs', f'{prefix}-{i}'))

        threads = [threading.Thread(target=produce, args=(p,)) for p in 'abc']
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        batcher.close()

        sent = _sent_ids(client)
        assert len(sent) == 600
        for prefix in 'abc':
            mine = [i for i in sent if i.startswith(f'{prefix}-')]
            assert mine == [f'{prefix}-{i}' for i in range(200)]
