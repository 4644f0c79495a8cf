from typing import BinaryIO, List

from ..crawler.models import CrawlItem

class CrawlSource:
    """What the engine needs from a filesystem-like source.

    Implementations raise SourceError when a directory cannot be listed or a
    file cannot be opened.
    """

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def exists(self, path: str) -> bool:
        raise NotImplementedError

    def list(self, path: str) -> List[CrawlItem]:
        """Direct children of ``path``, sorted by name."""
        raise NotImplementedError

    def open_stream(self, item: CrawlItem) -> BinaryIO:
        raise NotImplementedError

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
