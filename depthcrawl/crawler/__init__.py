"""
Crawl engine: visited set, scheduler, agents and the pluggable page
collaborators they drive.
"""

from .tasks import CrawlTask, TaskState
from .errors import CrawlError, FetchFailure, ExtractionFailure, SchedulerClosed
from .visited import VisitedSet, RedisVisitedSet
from .fetcher import WebFetcher, FetchResult
from .parser import RegexLinkExtractor, SoupLinkExtractor, LinkValidator, validate_and_normalize
from .scheduler import CrawlScheduler
from .agent import CrawlAgent, PageProcessor
from .runner import CrawlRunner

__all__ = [
    'CrawlTask', 'TaskState',
    'CrawlError', 'FetchFailure', 'ExtractionFailure', 'SchedulerClosed',
    'VisitedSet', 'RedisVisitedSet',
    'WebFetcher', 'FetchResult',
    'RegexLinkExtractor', 'SoupLinkExtractor', 'LinkValidator', 'validate_and_normalize',
    'CrawlScheduler',
    'CrawlAgent', 'PageProcessor',
    'CrawlRunner'
]
