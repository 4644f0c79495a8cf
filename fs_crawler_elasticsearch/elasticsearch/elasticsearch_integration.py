from elasticsearch import Elasticsearch, NotFoundError, helpers
import logging
from typing import List, Dict, Any, Optional

from .bulk_processor import BulkItemResult, BulkOperation, INDEX

logger = logging.getLogger(__name__)

# Hits fetched per scroll page when listing the children of a directory
SCROLL_SIZE = 1000

PATH_ANALYSIS = {
    "analyzer": {
        "path_analyzer": {
            "tokenizer": "path_tokenizer",
            "filter": ["lowercase"]
        }
    },
    "tokenizer": {
        "path_tokenizer": {
            "type": "path_hierarchy",
            "delimiter": "/"
        }
    }
}

PATH_PROPERTIES = {
    "properties": {
        "root": {"type": "keyword"},
        "real": {
            "type": "keyword",
            "fields": {
                "tree": {"type": "text", "analyzer": "path_analyzer"}
            }
        },
        "virtual": {
            "type": "keyword",
            "fields": {
                "tree": {"type": "text", "analyzer": "path_analyzer"}
            }
        }
    }
}

class ElasticsearchClient:
    def __init__(self, host: str, port: int, username: str, password: str, index_name: str,
                 folder_index_name: str, config: Dict[str, Any], client: Optional[Elasticsearch] = None):
        """Initialize Elasticsearch client."""
        self.host = host
        self.port = port
        self.index_name = index_name
        self.folder_index_name = folder_index_name
        self.config = config
        es_config = config.get('elasticsearch', {})
        scheme = es_config.get('scheme', 'http')
        self.client = client or Elasticsearch(
            hosts=[f'{scheme}://{host}:{port}'],
            basic_auth=(username, password) if username and password else None,
            verify_certs=False,
            request_timeout=es_config.get('request_timeout', 300),
            retry_on_timeout=True,
            max_retries=3
        )
        logger.info(f"Connected to Elasticsearch at {host}:{port}")

    @classmethod
    def from_config(cls, config: Dict[str, Any], index_name: str, folder_index_name: str) -> 'ElasticsearchClient':
        es_config = config.get('elasticsearch', {})
        return cls(
            host=es_config.get('host', 'localhost'),
            port=es_config.get('port', 9200),
            username=es_config.get('username'),
            password=es_config.get('password'),
            index_name=index_name,
            folder_index_name=folder_index_name,
            config=config,
        )

    def ensure_indices(self) -> None:
        """Create the documents and folders indices when they are missing."""
        self._ensure_index_exists(self.index_name, self._create_index_mapping())
        self._ensure_index_exists(self.folder_index_name, self._create_folder_mapping())

    def _ensure_index_exists(self, index: str, body: Dict[str, Any]) -> None:
        try:
            if not self.client.indices.exists(index=index):
                self.client.indices.create(index=index, body=body)
                logger.info(f"Created index {index}")
        except Exception as e:
            logger.error(f"Failed to ensure index {index} exists: {e}")
            raise

    def _create_index_mapping(self):
        """Create the index mapping for file documents."""
        return {
            "settings": {
                "number_of_shards": 1,
                "number_of_replicas": 0,
                "analysis": PATH_ANALYSIS
            },
            "mappings": {
                "properties": {
                    "content": {"type": "text"},
                    "meta": {"type": "object", "dynamic": True},
                    "file": {
                        "properties": {
                            "filename": {"type": "keyword", "store": True},
                            "extension": {"type": "keyword"},
                            "content_type": {"type": "keyword"},
                            "created": {"type": "date"},
                            "last_modified": {"type": "date"},
                            "last_accessed": {"type": "date"},
                            "indexing_date": {"type": "date"},
                            "filesize": {"type": "long"},
                            "url": {"type": "keyword", "index": False},
                            "checksum": {"type": "keyword"}
                        }
                    },
                    "path": PATH_PROPERTIES,
                    "attributes": {
                        "properties": {
                            "owner": {"type": "keyword"},
                            "group": {"type": "keyword"},
                            "permissions": {"type": "integer"}
                        }
                    }
                }
            }
        }

    def _create_folder_mapping(self):
        """Create the index mapping for folder documents."""
        return {
            "settings": {
                "number_of_shards": 1,
                "number_of_replicas": 0,
                "analysis": PATH_ANALYSIS
            },
            "mappings": {
                "properties": {
                    "name": {
                        "type": "text",
                        "fields": {
                            "keyword": {"type": "keyword"}
                        }
                    },
                    "path": PATH_PROPERTIES,
                    "file": {
                        "properties": {
                            "created": {"type": "date"},
                            "last_modified": {"type": "date"},
                            "last_accessed": {"type": "date"}
                        }
                    }
                }
            }
        }

    def index(self, collection: str, doc_id: str, document: Dict[str, Any], pipeline: Optional[str] = None) -> None:
        self.client.index(index=collection, id=doc_id, document=document, pipeline=pipeline)

    def delete(self, collection: str, doc_id: str) -> None:
        try:
            self.client.delete(index=collection, id=doc_id)
        except NotFoundError:
            logger.debug(f"Document [{collection}/{doc_id}] was already gone")

    def search(self, collection: str, query: Dict[str, Any], source_fields: Optional[List[str]] = None,
               size: int = SCROLL_SIZE) -> List[Dict[str, Any]]:
        """Return every hit of a query as {'id': ..., 'source': {...}}."""
        body = {"query": query}
        if source_fields is not None:
            body["_source"] = source_fields
        try:
            hits = helpers.scan(self.client, index=collection, query=body, size=size)
            return [{'id': hit['_id'], 'source': hit.get('_source', {})} for hit in hits]
        except NotFoundError:
            logger.debug(f"Index {collection} does not exist yet")
            return []

    def bulk(self, operations: List[BulkOperation]) -> List[BulkItemResult]:
        """Send operations with the bulk API and report the outcome of each one."""
        if not operations:
            return []

        bulk_data = []
        for op in operations:
            header = {"_index": op.collection, "_id": op.id}
            if op.action == INDEX:
                if op.pipeline:
                    header["pipeline"] = op.pipeline
                bulk_data.append({"index": header})
                bulk_data.append(op.document)
            else:
                bulk_data.append({"delete": header})

        response = self.client.bulk(operations=bulk_data, refresh=False)

        results = []
        for op, item in zip(operations, response.get('items', [])):
            outcome = item.get(op.action, {})
            status = outcome.get('status')
            ok = status is not None and (200 <= status < 300 or (op.action != INDEX and status == 404))
            error = outcome.get('error')
            if isinstance(error, dict):
                error = f"{error.get('type')}: {error.get('reason')}"
            results.append(BulkItemResult(op.action, op.collection, op.id, ok, status, error))
        return results

    def refresh(self) -> None:
        self.client.indices.refresh(index=[self.index_name, self.folder_index_name])

    def close(self) -> None:
        self.client.close()
