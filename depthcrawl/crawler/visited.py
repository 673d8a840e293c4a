"""
Visited URL tracking shared by every crawl agent in a run.

A URL is claimed exactly once. ``try_claim`` is the only way to mark a URL,
so checking and marking can never be split across concurrent callers.
"""

import asyncio
import logging
from typing import FrozenSet, Optional, Set

import redis.asyncio as redis


class VisitedSet:
    """
    In-process set of claimed URLs guarded by a single asyncio lock.
    The lock is held only for the membership check and insert.
    """

    def __init__(self):
        self._claimed: Set[str] = set()
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

        self.stats = {
            'claims_granted': 0,
            'claims_rejected': 0
        }

    async def try_claim(self, url: str) -> bool:
        """
        Claim a URL for crawling.

        Returns True if the caller now owns the URL, False if it was
        already claimed. A rejected claim does not modify the set.
        """
        async with self._lock:
            if url in self._claimed:
                self.stats['claims_rejected'] += 1
                return False
            self._claimed.add(url)
            self.stats['claims_granted'] += 1

        self.logger.debug(f"Claimed URL: {url}")
        return True

    async def size(self) -> int:
        async with self._lock:
            return len(self._claimed)

    async def snapshot(self) -> FrozenSet[str]:
        """Return an immutable copy of every claimed URL."""
        async with self._lock:
            return frozenset(self._claimed)

    def __contains__(self, url: str) -> bool:
        return url in self._claimed

    def get_stats(self):
        return {**self.stats, 'total_claimed': len(self._claimed)}

    async def close(self):
        pass


class RedisVisitedSet:
    """
    Visited set backed by a Redis set.

    ``SADD`` reports how many members were newly added, which makes it an
    atomic claim on the server side. The key is scoped to a single run:
    ``reset()`` clears it when the crawl starts and ``close()`` deletes it.
    """

    def __init__(self, redis_client: redis.Redis, key: str = "depthcrawl:visited"):
        self.redis_client = redis_client
        self.key = key
        self.logger = logging.getLogger(__name__)
        self._claimed_count = 0

        self.stats = {
            'claims_granted': 0,
            'claims_rejected': 0
        }

    async def reset(self):
        """Drop any members left under this run's key."""
        try:
            await self.redis_client.delete(self.key)
            self.logger.info(f"Reset visited set at Redis key {self.key}")
        except Exception as e:
            self.logger.error(f"Error resetting visited set {self.key}: {e}")
            raise

    async def try_claim(self, url: str) -> bool:
        added = await self.redis_client.sadd(self.key, url)
        if added:
            self.stats['claims_granted'] += 1
            self._claimed_count += 1
            self.logger.debug(f"Claimed URL: {url}")
            return True

        self.stats['claims_rejected'] += 1
        return False

    async def size(self) -> int:
        return await self.redis_client.scard(self.key)

    async def snapshot(self) -> FrozenSet[str]:
        members = await self.redis_client.smembers(self.key)
        return frozenset(
            m.decode('utf-8') if isinstance(m, bytes) else m for m in members
        )

    def get_stats(self):
        return {**self.stats, 'total_claimed': self._claimed_count}

    async def close(self):
        """Delete this run's key and close the client."""
        try:
            await self.redis_client.delete(self.key)
        except Exception as e:
            self.logger.error(f"Error deleting visited set {self.key}: {e}")
        finally:
            await self.redis_client.aclose()


async def create_redis_visited_set(host: str, port: int, db: int,
                                   password: Optional[str],
                                   key: str) -> RedisVisitedSet:
    """Connect to Redis and return an empty visited set for this run."""
    client = redis.Redis(
        host=host,
        port=port,
        db=db,
        password=password,
        decode_responses=False
    )
    await client.ping()
    logging.getLogger(__name__).info("Redis connection established")

    visited = RedisVisitedSet(client, key)
    await visited.reset()
    return visited
