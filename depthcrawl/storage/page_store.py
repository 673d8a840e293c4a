"""
Persistence of fetched pages.

Storage is a side-effect sink for the crawl: a failed write is logged and
counted, never raised to the caller.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..utils.config import StorageConfig


class StorageError(Exception):
    """Raised when a storage backend cannot be set up."""
    pass


class PageStore:
    """Abstract base class for page stores."""

    async def initialize(self):
        """Prepare the store for writes."""
        raise NotImplementedError

    async def store(self, agent_id: int, depth: int, url: str, content: str) -> bool:
        """Persist one page. Returns False on failure instead of raising."""
        raise NotImplementedError

    async def get_stats(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError


class NullPageStore(PageStore):
    """Discards pages; used when storage is disabled."""

    def __init__(self):
        self.stats = {'total_discarded': 0}

    async def initialize(self):
        pass

    async def store(self, agent_id: int, depth: int, url: str, content: str) -> bool:
        self.stats['total_discarded'] += 1
        return True

    async def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()

    async def close(self):
        pass


class FilePageStore(PageStore):
    """
    Writes each page to ``<directory>/bot_<agent>/depth_<depth>/<sha256>.html``
    and appends a line per page to ``<directory>/index/pages.jsonl``.
    """

    def __init__(self, data_directory: str):
        self.data_directory = Path(data_directory)
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'total_stored': 0,
            'storage_errors': 0,
            'total_size_bytes': 0
        }

    @property
    def index_file(self) -> Path:
        return self.data_directory / 'index' / 'pages.jsonl'

    async def initialize(self):
        """Create data directory structure."""
        try:
            self.data_directory.mkdir(parents=True, exist_ok=True)
            (self.data_directory / 'index').mkdir(exist_ok=True)
            self.logger.info(f"File storage initialized at {self.data_directory}")
        except OSError as e:
            raise StorageError(f"Failed to initialize file storage: {e}")

    def get_file_path(self, agent_id: int, depth: int, url: str) -> Path:
        """Generate file path for a page."""
        url_hash = hashlib.sha256(url.encode('utf-8')).hexdigest()
        return self.data_directory / f"bot_{agent_id}" / f"depth_{depth}" / f"{url_hash}.html"

    async def store(self, agent_id: int, depth: int, url: str, content: str) -> bool:
        try:
            file_path = self.get_file_path(agent_id, depth, url)
            file_path.parent.mkdir(parents=True, exist_ok=True)

            with open(file_path, 'w', encoding='utf-8') as f:
                f.write(content)

            size = file_path.stat().st_size
            self._append_index(agent_id, depth, url, file_path, size)

            self.stats['total_stored'] += 1
            self.stats['total_size_bytes'] += size

            self.logger.debug(f"Stored {url} to {file_path}")
            return True

        except OSError as e:
            self.stats['storage_errors'] += 1
            self.logger.error(f"Error storing content for {url}: {e}")
            return False

    def _append_index(self, agent_id: int, depth: int, url: str, file_path: Path, size: int):
        entry = {
            'url': url,
            'agent_id': agent_id,
            'depth': depth,
            'file_path': str(file_path.relative_to(self.data_directory)),
            'size_bytes': size,
            'stored_at': datetime.now(timezone.utc).isoformat()
        }
        with open(self.index_file, 'a', encoding='utf-8') as f:
            f.write(json.dumps(entry, ensure_ascii=False) + '\n')

    async def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()

    async def close(self):
        """Save statistics next to the stored pages."""
        try:
            stats_file = self.data_directory / 'stats.json'
            with open(stats_file, 'w') as f:
                json.dump(self.stats, f, indent=2)
        except OSError as e:
            self.logger.error(f"Error saving statistics: {e}")


def create_page_store(config: Optional[StorageConfig]) -> PageStore:
    """Build the page store selected by configuration."""
    if config is None or config.type == 'none':
        return NullPageStore()
    if config.type == 'file':
        return FilePageStore(config.directory)
    raise StorageError(f"Unknown storage type: {config.type}")
