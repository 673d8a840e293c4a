"""
Exceptions raised by the crawl engine.
"""


class CrawlError(Exception):
    """Base class for crawl engine errors."""
    pass


class FetchFailure(CrawlError):
    """A page could not be retrieved. The task's subtree is abandoned."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class ExtractionFailure(CrawlError):
    """Page content could not be scanned for links."""
    pass


class SchedulerClosed(CrawlError):
    """The scheduler is shutting down and accepts no further work."""
    pass
