"""Elasticsearch side of the crawler: client, bulk batching and reconciliation."""

from .bulk_processor import BulkBatcher, BulkItemResult, BulkOperation
from .elasticsearch_integration import ElasticsearchClient
from .reconciler import BackendReconciler, IndexedChildren

__all__ = [
    'BulkBatcher', 'BulkItemResult', 'BulkOperation', 'ElasticsearchClient',
    'BackendReconciler', 'IndexedChildren',
]
