"""
Command-line application for the crawler.
"""

import asyncio
import argparse
import logging
import signal
from pathlib import Path
from typing import List, Optional

import yaml

from . import __version__
from .crawler.runner import CrawlRunner
from .utils.config import Config, ConfigManager
from .utils.logger import setup_logging, log_system_info


class CrawlerApp:
    """Main application class for the crawler."""

    def __init__(self):
        self.runner: Optional[CrawlRunner] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event: Optional[asyncio.Event] = None
        self._previous_handlers = {}

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            loop.call_soon_threadsafe(self._shutdown_event.set)

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, signal_handler)

    def restore_signal_handlers(self):
        """Put back the handlers that were active before ``run()``."""
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    async def run(self, config: Config, dry_run: bool = False) -> int:
        """Run the crawler."""
        self._shutdown_event = asyncio.Event()
        try:
            setup_logging(config.logging)
            log_system_info()
            self.setup_signal_handlers()

            self.logger.info("=== CRAWLER STARTING ===")
            self.logger.info(f"Seed URLs: {config.crawler.seed_urls}")
            self.logger.info(f"Max depth: {config.crawler.max_depth}")
            self.logger.info(f"Workers: {config.crawler.max_workers}")
            self.logger.info(f"Submit delay: {config.crawler.submit_delay}s")
            self.logger.info(f"Storage type: {config.storage.type}")

            if dry_run:
                self.logger.info("DRY RUN MODE: No actual crawling will be performed")
                await self._dry_run(config)
                return 0

            self.runner = CrawlRunner(config)
            await self.runner.initialize()

            crawl_task = asyncio.create_task(self.runner.run())
            shutdown_task = asyncio.create_task(self._shutdown_event.wait())

            done, pending = await asyncio.wait(
                [crawl_task, shutdown_task],
                return_when=asyncio.FIRST_COMPLETED
            )

            if shutdown_task in done:
                # Drain what is already queued, then let the run finish
                self.logger.info("Shutdown requested, stopping crawler...")
                await self.runner.stop()
                await crawl_task
            else:
                shutdown_task.cancel()
                await asyncio.gather(shutdown_task, return_exceptions=True)
                crawl_task.result()

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            if self.runner:
                await self.runner.close()
            self.restore_signal_handlers()
            self.logger.info("=== CRAWLER FINISHED ===")

        return 0

    async def _dry_run(self, config: Config):
        """Check configuration and connections without crawling."""
        if config.redis.enabled:
            self.logger.info("Testing Redis connection...")
            try:
                import redis.asyncio as redis
                redis_client = redis.Redis(
                    host=config.redis.host,
                    port=config.redis.port,
                    db=config.redis.db,
                    password=config.redis.password
                )
                await redis_client.ping()
                await redis_client.aclose()
                self.logger.info("Redis connection successful")
            except Exception as e:
                self.logger.error(f"Redis connection failed: {e}")

        self.logger.info("Testing storage configuration...")
        try:
            from .storage.page_store import create_page_store
            page_store = create_page_store(config.storage)
            await page_store.initialize()
            await page_store.close()
            self.logger.info("Storage initialization successful")
        except Exception as e:
            self.logger.error(f"Storage initialization failed: {e}")

        self.logger.info("Testing fetcher configuration...")
        from .crawler.fetcher import WebFetcher
        async with WebFetcher(
            user_agent=config.crawler.user_agent,
            request_timeout=config.crawler.request_timeout,
            max_connections=1
        ) as fetcher:
            result = await fetcher.fetch(config.crawler.seed_urls[0])
            if result.ok:
                self.logger.info(f"Test fetch successful: {result.status_code}")
            else:
                self.logger.warning(f"Test fetch failed: {result.error}")

        self.logger.info("Dry run completed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Bounded-depth multi-agent web crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                                  # Run with config.yaml or defaults
  python main.py --config my_config.yaml         # Run with custom config
  python main.py --seed https://example.com/     # One agent per --seed
  python main.py --max-depth 2 --workers 16      # Override crawl limits
  python main.py --dry-run                       # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--seed',
        action='append',
        dest='seeds',
        metavar='URL',
        help='Seed URL; repeat for one agent per seed'
    )

    parser.add_argument(
        '--max-depth',
        type=int,
        help='Depth at which expansion stops'
    )

    parser.add_argument(
        '--workers',
        type=int,
        help='Number of concurrent crawl workers'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without actually crawling'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'depthcrawl {__version__}'
    )

    return parser


def load_app_config(config_path: str, seeds: Optional[List[str]] = None,
                    max_depth: Optional[int] = None,
                    workers: Optional[int] = None) -> Config:
    """Load the config file, or built-in defaults when it does not exist, then apply overrides."""
    manager = ConfigManager(config_path)
    if Path(config_path).exists():
        manager.load_config()
    else:
        manager.use_defaults()
    return manager.apply_overrides(seed_urls=seeds, max_depth=max_depth, max_workers=workers)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if not Path(args.config).exists() and args.config != 'config.yaml':
        print(f"Error: Configuration file '{args.config}' not found.")
        return 1

    try:
        config = load_app_config(args.config, args.seeds, args.max_depth, args.workers)
    except (ValueError, TypeError, yaml.YAMLError) as e:
        print(f"Invalid configuration: {e}")
        return 1

    app = CrawlerApp()
    try:
        return asyncio.run(app.run(config, dry_run=args.dry_run))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1
