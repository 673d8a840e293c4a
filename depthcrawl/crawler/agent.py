"""
Crawl agents and the per-page crawl step.

``PageProcessor`` is what a scheduler worker runs for every task: fetch the
page, store it, pull out links, claim the unseen ones and queue children.
``CrawlAgent`` roots one traversal at a seed URL and waits for it.
"""

import asyncio
import logging
from typing import List, Optional

from .errors import ExtractionFailure, FetchFailure, SchedulerClosed
from .parser import LinkValidator
from .scheduler import CrawlScheduler
from .tasks import CrawlTask
from ..storage.page_store import PageStore
from ..utils.logger import CrawlerLogAdapter, get_crawler_logger
from ..utils.monitoring import CrawlerMonitor


class PageProcessor:
    """
    Crawl step for a single task.

    Depth convention: a task at ``depth == max_depth`` is neither fetched
    nor expanded, so children are only queued while ``depth + 1 < max_depth``.
    Links are claimed before that check, which records last-level links as
    visited without crawling them.
    """

    def __init__(self, fetcher, extractor, visited, max_depth: int,
                 submit_delay: float = 0.01,
                 page_store: Optional[PageStore] = None,
                 validator: Optional[LinkValidator] = None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.fetcher = fetcher
        self.extractor = extractor
        self.visited = visited
        self.max_depth = max_depth
        self.submit_delay = submit_delay
        self.page_store = page_store
        self.validator = validator or LinkValidator()
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

    async def __call__(self, task: CrawlTask, scheduler: CrawlScheduler):
        log = get_crawler_logger(__name__, agent_id=task.agent_id)

        if task.depth >= self.max_depth:
            log.debug(f"Not crawling {task.url}: depth {task.depth} reached the limit")
            task.mark_succeeded()
            return

        log.log_crawl_progress(task.url, task.depth)

        result = await self.fetcher.fetch(task.url)
        if not result.ok:
            failure = FetchFailure(task.url, result.error or f"HTTP {result.status_code}")
            log.warning(str(failure))
            if self.monitor:
                self.monitor.record_fetch_failure(task.url, result.error_type or "unknown")
            task.mark_failed(str(failure))
            return

        if self.monitor:
            self.monitor.record_page_fetched(task.url, len(result.content), result.fetch_time)

        await self._persist(task, result.content, log)

        links = self._extract(task, result.content, log)
        valid_links = self.validator.filter_links(links)
        task.links_found = len(valid_links)

        await self._expand(task, valid_links, scheduler, log)
        task.mark_succeeded()

    async def _persist(self, task: CrawlTask, content: str, log: CrawlerLogAdapter):
        if self.page_store is None:
            return
        try:
            stored = await self.page_store.store(task.agent_id, task.depth, task.url, content)
        except Exception as e:
            log.error(f"Error persisting {task.url}: {e}")
            return

        if stored:
            if self.monitor:
                self.monitor.record_page_stored(task.url)
        else:
            log.warning(f"Failed to store content: {task.url}")

    def _extract(self, task: CrawlTask, content: str, log: CrawlerLogAdapter) -> List[str]:
        """Extract raw links; unreadable content counts as a page with no links."""
        try:
            return self.extractor.extract_links(content)
        except ExtractionFailure as e:
            log.warning(f"Could not extract links from {task.url}: {e}")
            return []

    async def _expand(self, task: CrawlTask, links: List[str],
                      scheduler: CrawlScheduler, log: CrawlerLogAdapter):
        """Claim each link and queue children for the ones still within depth."""
        for url in links:
            claimed = await self.visited.try_claim(url)
            if self.monitor:
                self.monitor.record_claim(url, claimed)
            if not claimed:
                continue

            if task.depth + 1 >= self.max_depth:
                continue

            # Spread out submissions from one page
            if task.children_submitted and self.submit_delay:
                await asyncio.sleep(self.submit_delay)

            try:
                scheduler.submit(task.child(url))
            except SchedulerClosed:
                log.info(f"Scheduler closed, not expanding further from {task.url}")
                break
            task.children_submitted += 1

        log.debug(
            f"Expanded {task.url}: {len(links)} valid links, "
            f"{task.children_submitted} children queued"
        )


class CrawlAgent:
    """
    One traversal rooted at a seed URL.

    All agents of a run share the scheduler and the visited set, so a URL
    claimed by one agent is skipped by every other.
    """

    def __init__(self, agent_id: int, seed_url: str, scheduler: CrawlScheduler,
                 visited, max_depth: int):
        self.agent_id = agent_id
        self.seed_url = seed_url
        self.scheduler = scheduler
        self.visited = visited
        self.max_depth = max_depth
        self.root_handle: Optional[asyncio.Future] = None
        self.logger = get_crawler_logger(__name__, agent_id=agent_id)

    async def start(self) -> bool:
        """
        Claim the seed and queue the root task.

        Claims are never released. If the scheduler is already closed, the
        seed stays claimed and is not crawled by this run.

        Returns:
            True if a root task was queued, False if this agent has no work
        """
        if self.max_depth <= 0:
            self.logger.info(f"Max depth is {self.max_depth}, not crawling {self.seed_url}")
            return False

        if not await self.visited.try_claim(self.seed_url):
            self.logger.info(f"Seed {self.seed_url} already claimed by another agent")
            return False

        try:
            self.root_handle = self.scheduler.submit(CrawlTask(self.seed_url, 0, self.agent_id))
        except SchedulerClosed:
            self.logger.info(f"Scheduler closed before seed {self.seed_url} was queued")
            return False

        self.logger.info(f"Agent {self.agent_id} started at {self.seed_url}")
        return True

    async def wait(self):
        """Block until every task in this agent's subtree has finished."""
        await self.scheduler.wait_agent(self.agent_id)

    async def run(self):
        """Start the agent and wait for it. Returns the agent's task counts."""
        await self.start()
        await self.wait()
        stats = self.scheduler.agent_stats(self.agent_id)
        self.logger.info(
            f"Agent {self.agent_id} finished: {stats['succeeded']} pages crawled, "
            f"{stats['failed']} failed"
        )
        return stats
