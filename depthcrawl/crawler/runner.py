"""
Crawl runner: builds one crawl run from configuration and drives it to
completion.

The visited set, the scheduler and the agents live exactly as long as the
runner; nothing is shared between runs.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .agent import CrawlAgent, PageProcessor
from .fetcher import WebFetcher
from .parser import create_extractor, validate_and_normalize
from .scheduler import CrawlScheduler
from .visited import VisitedSet, create_redis_visited_set
from ..storage.page_store import PageStore, create_page_store
from ..utils.config import Config
from ..utils.monitoring import CrawlerMonitor, create_monitor


class CrawlRunner:
    """
    Coordinates the components of a single crawl run.

    Collaborators may be passed in; anything left as None is built from
    the configuration in ``initialize()``.
    """

    def __init__(self, config: Config, fetcher=None, extractor=None,
                 page_store: Optional[PageStore] = None, visited=None,
                 monitor: Optional[CrawlerMonitor] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.fetcher = fetcher
        self.extractor = extractor
        self.page_store = page_store
        self.visited = visited
        self.monitor = monitor

        self.scheduler: Optional[CrawlScheduler] = None
        self.agents: List[CrawlAgent] = []
        self.is_running = False
        self._owns_fetcher = fetcher is None

    async def initialize(self):
        """Initialize all crawl components."""
        crawler_config = self.config.crawler

        try:
            if self.visited is None:
                if self.config.redis.enabled:
                    self.visited = await create_redis_visited_set(
                        host=self.config.redis.host,
                        port=self.config.redis.port,
                        db=self.config.redis.db,
                        password=self.config.redis.password,
                        key=self.config.redis.visited_key
                    )
                else:
                    self.visited = VisitedSet()

            if self.fetcher is None:
                self.fetcher = WebFetcher(
                    user_agent=crawler_config.user_agent,
                    request_timeout=crawler_config.request_timeout,
                    max_connections=crawler_config.max_workers,
                    max_content_size=crawler_config.max_content_size
                )
                await self.fetcher.start()

            if self.extractor is None:
                self.extractor = create_extractor(crawler_config.extractor)

            if self.page_store is None:
                self.page_store = create_page_store(self.config.storage)
            await self.page_store.initialize()

            if self.monitor is None:
                self.monitor = create_monitor(
                    self.config.monitoring.metrics_enabled,
                    self.config.monitoring.prometheus_port
                )
                self.monitor.metrics.start_prometheus_server()

            processor = PageProcessor(
                fetcher=self.fetcher,
                extractor=self.extractor,
                visited=self.visited,
                max_depth=crawler_config.max_depth,
                submit_delay=crawler_config.submit_delay,
                page_store=self.page_store,
                monitor=self.monitor
            )
            self.scheduler = CrawlScheduler(
                processor,
                max_workers=crawler_config.max_workers,
                monitor=self.monitor
            )

            self.logger.info("Crawl runner initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize crawl runner: {e}")
            raise

    def _create_agents(self) -> List[CrawlAgent]:
        agents = []
        for agent_id, seed_url in enumerate(self.config.crawler.seed_urls, start=1):
            _, ok = validate_and_normalize(seed_url)
            if not ok:
                self.logger.warning(f"Seed {seed_url} does not look like a crawlable URL, crawling it anyway")
            agents.append(CrawlAgent(
                agent_id=agent_id,
                seed_url=seed_url,
                scheduler=self.scheduler,
                visited=self.visited,
                max_depth=self.config.crawler.max_depth
            ))
        return agents

    async def run(self) -> Dict[int, Dict[str, int]]:
        """
        Run every agent to completion, then shut the scheduler down.

        Returns:
            Task counts per agent id
        """
        if self.scheduler is None:
            await self.initialize()

        if self.is_running:
            self.logger.warning("Crawl is already running")
            return {}

        self.is_running = True
        self.scheduler.start()
        self.agents = self._create_agents()
        reporter = asyncio.create_task(self._stats_reporter())

        try:
            results = await asyncio.gather(*(agent.run() for agent in self.agents))
        finally:
            reporter.cancel()
            await asyncio.gather(reporter, return_exceptions=True)
            await self.scheduler.shutdown()
            self.is_running = False

        await self._log_final_stats()
        return {agent.agent_id: result for agent, result in zip(self.agents, results)}

    async def stop(self):
        """Stop accepting new work and let queued and in-flight tasks finish."""
        if self.scheduler:
            self.logger.info("Stopping crawl...")
            await self.scheduler.shutdown()

    async def _stats_reporter(self):
        """Periodically log crawl statistics."""
        while True:
            await asyncio.sleep(self.config.monitoring.report_interval)
            stats = self.scheduler.get_stats()
            claimed = await self.visited.size()
            self.logger.info(
                f"Crawl Progress: "
                f"Done={stats['succeeded']}, "
                f"Failed={stats['failed']}, "
                f"Queued={stats['queued']}, "
                f"Active={stats['active']}, "
                f"Claimed={claimed}, "
                f"Rate={stats['tasks_per_minute']:.1f} pages/min"
            )

    async def _log_final_stats(self):
        """Log final crawl statistics."""
        stats = self.scheduler.get_stats()

        self.logger.info("=== CRAWL COMPLETED ===")
        self.logger.info(f"Tasks succeeded: {stats['succeeded']}")
        self.logger.info(f"Tasks failed: {stats['failed']}")
        self.logger.info(f"Submissions rejected after shutdown: {stats['rejected']}")
        self.logger.info(f"URLs claimed: {await self.visited.size()}")
        self.logger.info(f"Total time: {stats['elapsed_time']:.2f} seconds")
        self.logger.info(f"Visited set stats: {self.visited.get_stats()}")
        if hasattr(self.fetcher, 'get_stats'):
            self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")
        self.logger.info(f"Storage stats: {await self.page_store.get_stats()}")

    async def close(self):
        """Shut down and release every owned resource."""
        try:
            if self.scheduler and not self.scheduler.is_closed:
                await self.scheduler.shutdown()

            if self.fetcher and self._owns_fetcher:
                await self.fetcher.close()

            if self.page_store:
                await self.page_store.close()

            if self.visited:
                await self.visited.close()

            self.logger.info("Crawl runner closed")

        except Exception as e:
            self.logger.error(f"Error during cleanup: {e}")

    def get_stats(self) -> Dict:
        stats = self.scheduler.get_stats() if self.scheduler else {}
        stats['is_running'] = self.is_running
        return stats
