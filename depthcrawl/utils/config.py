"""
Configuration management for the crawler.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field, replace


DEFAULT_SEED_URLS = [
    "https://en.wikipedia.org/wiki/97th_Academy_Awards",
    "https://github.com/",
    "https://codeforces.com/",
]

STORAGE_TYPES = ('file', 'none')
EXTRACTOR_TYPES = ('regex', 'soup')


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    seed_urls: List[str] = field(default_factory=lambda: list(DEFAULT_SEED_URLS))
    max_depth: int = 3
    max_workers: int = 8
    submit_delay: float = 0.01
    request_timeout: int = 10
    user_agent: str = "depthcrawl/1.0"
    max_content_size: int = 10 * 1024 * 1024
    extractor: str = "regex"


@dataclass
class StorageConfig:
    """Configuration for page persistence."""
    type: str = "file"
    directory: str = "data"


@dataclass
class RedisConfig:
    """Configuration for the optional Redis-backed visited set."""
    enabled: bool = False
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    visited_key: str = "depthcrawl:visited"


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/crawler.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    metrics_enabled: bool = False
    prometheus_port: int = 8000
    report_interval: float = 30.0


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def config_from_dict(config_data: Dict[str, Any]) -> Config:
    """Build a Config from parsed YAML. Missing sections use defaults."""
    config_data = config_data or {}
    return Config(
        crawler=CrawlerConfig(**(config_data.get('crawler') or {})),
        storage=StorageConfig(**(config_data.get('storage') or {})),
        redis=RedisConfig(**(config_data.get('redis') or {})),
        logging=LoggingConfig(**(config_data.get('logging') or {})),
        monitoring=MonitoringConfig(**(config_data.get('monitoring') or {}))
    )


def validate_config(config: Config):
    """Validate configuration values, raising ValueError on the first problem."""
    crawler = config.crawler

    if not isinstance(crawler.seed_urls, list) or not crawler.seed_urls:
        raise ValueError("seed_urls must be a non-empty list of URLs")

    if not all(isinstance(url, str) and url.strip() for url in crawler.seed_urls):
        raise ValueError("Every seed URL must be a non-empty string")

    if crawler.max_depth < 0:
        raise ValueError("max_depth must be non-negative")

    if crawler.max_workers < 1:
        raise ValueError("max_workers must be at least 1")

    if crawler.submit_delay < 0:
        raise ValueError("submit_delay must be non-negative")

    if crawler.request_timeout <= 0:
        raise ValueError("request_timeout must be positive")

    if crawler.extractor not in EXTRACTOR_TYPES:
        raise ValueError(f"extractor must be one of {', '.join(EXTRACTOR_TYPES)}")

    if config.storage.type not in STORAGE_TYPES:
        raise ValueError(f"Storage type must be one of {', '.join(STORAGE_TYPES)}")

    if config.monitoring.report_interval <= 0:
        raise ValueError("report_interval must be positive")

    logging.getLogger(__name__).debug("Configuration validation passed")


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r') as file:
            config_data = yaml.safe_load(file)

        self._config = config_from_dict(config_data)
        validate_config(self._config)
        return self._config

    def use_defaults(self) -> Config:
        """Use built-in defaults instead of a file."""
        self._config = Config()
        validate_config(self._config)
        return self._config

    def apply_overrides(self, seed_urls: Optional[List[str]] = None,
                        max_depth: Optional[int] = None,
                        max_workers: Optional[int] = None) -> Config:
        """Apply command-line overrides on top of the loaded configuration."""
        crawler = self.config.crawler
        if seed_urls:
            crawler = replace(crawler, seed_urls=list(seed_urls))
        if max_depth is not None:
            crawler = replace(crawler, max_depth=max_depth)
        if max_workers is not None:
            crawler = replace(crawler, max_workers=max_workers)

        self._config = replace(self.config, crawler=crawler)
        validate_config(self._config)
        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config

