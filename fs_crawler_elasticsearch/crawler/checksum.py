"""Content digests computed while a file is read for extraction."""

import hashlib
from typing import BinaryIO

import xxhash

XXHASH_ALGORITHMS = ('xxh32', 'xxh64', 'xxh3_64', 'xxh3_128')

def new_digest(algorithm: str):
    """Return a fresh hash object for a hashlib or xxhash algorithm name."""
    name = algorithm.lower().replace('-', '')
    if name in XXHASH_ALGORITHMS:
        return getattr(xxhash, name)()
    try:
        return hashlib.new(name)
    except ValueError:
        raise ValueError(f"Unknown checksum algorithm '{algorithm}'") from None

class HashingReader:
    """Binary stream wrapper that feeds every byte read into a digest."""

    def __init__(self, stream: BinaryIO, algorithm: str):
        self._stream = stream
        self._digest = new_digest(algorithm)

    def read(self, size: int = -1) -> bytes:
        data = self._stream.read(size)
        if data:
            self._digest.update(data)
        return data

    def drain(self, chunk_size: int = 1024 * 1024) -> None:
        """Read what the consumer left behind so the digest covers the whole file."""
        while self.read(chunk_size):
            pass

    def hexdigest(self) -> str:
        return self._digest.hexdigest()

    def close(self) -> None:
        self._stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
