"""Incremental filesystem crawler that keeps an Elasticsearch index in sync."""

__version__ = "0.1.0"
