"""Looks up what the index already holds for a directory, to find orphans."""

import logging
from typing import Callable, List, NamedTuple

from ..crawler.signing import IdentitySigner, sign
from .bulk_processor import BulkOperation

logger = logging.getLogger(__name__)

class IndexedChildren(NamedTuple):
    # Filenames of indexed files directly under the directory
    files: List[str]
    # Real paths of indexed sub folders
    folders: List[str]

class BackendReconciler:
    """Lists the indexed children of a directory by their ``path.root`` id."""

    def __init__(self, client, index_name: str, folder_index_name: str,
                 signer: IdentitySigner, is_closed: Callable[[], bool] = lambda: False):
        self.client = client
        self.index_name = index_name
        self.folder_index_name = folder_index_name
        self.signer = signer
        self.is_closed = is_closed

    def list_indexed_files(self, directory: str) -> List[str]:
        if self.is_closed():
            return []
        hits = self.client.search(
            self.index_name,
            {"term": {"path.root": sign(directory)}},
            source_fields=["file.filename"],
        )
        return [hit['source']['file']['filename'] for hit in hits
                if hit['source'].get('file', {}).get('filename') is not None]

    def list_indexed_folders(self, directory: str) -> List[str]:
        if self.is_closed():
            return []
        hits = self.client.search(
            self.folder_index_name,
            {"term": {"path.root": sign(directory)}},
            source_fields=["path.real"],
        )
        return [hit['source']['path']['real'] for hit in hits
                if hit['source'].get('path', {}).get('real') is not None]

    def list_indexed_children(self, directory: str) -> IndexedChildren:
        """Files and folders the index believes live directly under ``directory``.

        Empty while the crawler is shutting down, so teardown never looks like
        a directory that lost all of its children.
        """
        return IndexedChildren(self.list_indexed_files(directory), self.list_indexed_folders(directory))

    def collect_subtree_deletes(self, folder: str) -> List[BulkOperation]:
        """Delete operations for an indexed folder and everything under it.

        Files come first, then each sub folder's own subtree, and the folder
        itself last, so no folder is removed before its children.
        """
        if self.is_closed():
            return []
        operations = [
            BulkOperation.delete(self.index_name, self.signer.file_id(folder, filename))
            for filename in self.list_indexed_files(folder)
        ]
        for sub_folder in self.list_indexed_folders(folder):
            operations.extend(self.collect_subtree_deletes(sub_folder))
        operations.append(BulkOperation.delete(self.folder_index_name, self.signer.folder_id(folder)))
        logger.debug(f"Removing indexed folder {folder} with {len(operations) - 1} descendants")
        return operations
