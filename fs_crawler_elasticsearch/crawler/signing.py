"""Stable document ids and path helpers."""

import hashlib
import posixpath

def sign(path: str) -> str:
    """Return the md5 hex digest of a path, used as a document id."""
    return hashlib.md5(path.encode('utf-8')).hexdigest()

def compute_real_path_name(dirname: str, filename: str) -> str:
    if not dirname:
        return filename
    if dirname.endswith('/') or dirname.endswith('\\'):
        return f"{dirname}{filename}"
    return f"{dirname}/{filename}"

def compute_virtual_path_name(root: str, real_path: str) -> str:
    """Path relative to the crawl root, always starting with "/"."""
    root = root.replace('\\', '/').rstrip('/')
    real_path = real_path.replace('\\', '/')
    if real_path.rstrip('/') == root:
        return '/'
    if root and real_path.startswith(root + '/'):
        real_path = real_path[len(root):]
    return posixpath.normpath('/' + real_path.lstrip('/'))

class IdentitySigner:
    """Maps files and folders to the ids they are indexed under."""

    def __init__(self, filename_as_id: bool = False):
        self.filename_as_id = filename_as_id

    def file_id(self, dirname: str, filename: str) -> str:
        if self.filename_as_id:
            return filename
        return sign(compute_real_path_name(dirname, filename))

    def folder_id(self, path: str) -> str:
        return sign(path)
