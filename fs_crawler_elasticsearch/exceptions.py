"""Exceptions raised by the crawler."""


class CrawlerError(Exception):
    """Base class for crawler errors."""


class ConfigurationError(CrawlerError):
    """Invalid job settings. Fatal: the crawler refuses to start."""


class SourceError(CrawlerError):
    """A directory could not be listed or a file could not be opened."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class CrawlAbortedError(CrawlerError):
    """An item failed and continue_on_error is disabled."""


class ClosedBatcherError(CrawlerError):
    """An operation was added to a batcher that is closing or closed."""


class InvalidStateTransitionError(CrawlerError):
    """A pause/resume/clear request that the current crawler state does not allow."""
