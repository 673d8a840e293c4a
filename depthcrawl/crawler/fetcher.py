"""
Web page fetcher built on an aiohttp client session.
"""

import asyncio
import aiohttp
import logging
import time
from typing import Optional, Dict
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError


FETCH_ERROR_TYPES = ('http', 'content_type', 'content', 'timeout', 'client', 'invalid_url')

TEXT_CONTENT_TYPES = (
    'text/html',
    'text/plain',
    'text/xml',
    'application/xml',
    'application/xhtml+xml',
)


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    content: Optional[str] = None
    headers: Optional[Dict[str, str]] = None
    error: Optional[str] = None
    # Failure category, one of FETCH_ERROR_TYPES
    error_type: Optional[str] = None
    fetch_time: float = 0.0
    content_type: Optional[str] = None
    encoding: Optional[str] = None

    @property
    def ok(self) -> bool:
        """True when the page was retrieved and has content to scan."""
        return (
            self.error is None
            and self.content is not None
            and 0 < self.status_code < 400
        )


class WebFetcher:
    """
    Fetches web pages over a shared session. No retries are performed;
    every network, timeout or HTTP error becomes a failed FetchResult.
    """

    def __init__(self, user_agent: str, request_timeout: int = 10,
                 max_connections: int = 10,
                 max_content_size: int = 10 * 1024 * 1024):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_connections = max_connections
        self.max_content_size = max_content_size

        self.logger = logging.getLogger(__name__)
        self.session: Optional[ClientSession] = None

        # Statistics
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_connections * 2,
                    limit_per_host=10,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult; check ``ok`` before using ``content``
        """
        if self.session is None:
            await self.start()

        start_time = time.time()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url) as response:
                headers = dict(response.headers)
                content_type = response.headers.get('content-type', '').lower()

                if response.status >= 400:
                    self.stats['failed_requests'] += 1
                    self.logger.warning(f"HTTP {response.status} fetching {url}")
                    return FetchResult(
                        url=url,
                        status_code=response.status,
                        headers=headers,
                        content_type=content_type,
                        error=f"HTTP {response.status}",
                        error_type='http',
                        fetch_time=time.time() - start_time
                    )

                if not self._is_text_content(content_type):
                    self.stats['failed_requests'] += 1
                    self.logger.debug(f"Skipping non-text content: {url} ({content_type})")
                    return FetchResult(
                        url=url,
                        status_code=response.status,
                        headers=headers,
                        content_type=content_type,
                        error="Non-text content type",
                        error_type='content_type',
                        fetch_time=time.time() - start_time
                    )

                content = await self._read_content_safely(response)
                if content is None:
                    self.stats['failed_requests'] += 1
                    return FetchResult(
                        url=url,
                        status_code=response.status,
                        headers=headers,
                        content_type=content_type,
                        error="Content unreadable or too large",
                        error_type='content',
                        fetch_time=time.time() - start_time
                    )

                self.stats['total_bytes_downloaded'] += len(content)
                self.stats['successful_requests'] += 1

                self.logger.debug(f"Fetched {url}: {response.status} ({len(content)} chars)")
                return FetchResult(
                    url=url,
                    status_code=response.status,
                    content=content,
                    headers=headers,
                    content_type=content_type,
                    encoding=response.charset,
                    fetch_time=time.time() - start_time
                )

        except asyncio.TimeoutError:
            error_msg = "Request timeout"
            error_type = 'timeout'
            self.logger.warning(f"Timeout fetching {url}")

        except ClientError as e:
            error_msg = f"Client error: {str(e)}"
            error_type = 'client'
            self.logger.warning(f"Client error fetching {url}: {e}")

        except ValueError as e:
            # yarl rejects some URLs the link pattern lets through
            error_msg = f"Invalid URL: {str(e)}"
            error_type = 'invalid_url'
            self.logger.warning(f"Invalid URL {url}: {e}")

        self.stats['failed_requests'] += 1
        return FetchResult(
            url=url,
            status_code=0,
            error=error_msg,
            error_type=error_type,
            fetch_time=time.time() - start_time
        )

    def _is_text_content(self, content_type: str) -> bool:
        """Check if content type is text-based."""
        return any(text_type in content_type for text_type in TEXT_CONTENT_TYPES)

    async def _read_content_safely(self, response) -> Optional[str]:
        """
        Read the response body, giving up past ``max_content_size`` bytes.

        Returns:
            Decoded text, or None if the body is too large or unreadable
        """
        try:
            content_length = response.headers.get('content-length')
            if content_length and int(content_length) > self.max_content_size:
                self.logger.warning(f"Content too large ({content_length} bytes): {response.url}")
                return None

            content_bytes = b''
            async for chunk in response.content.iter_chunked(8192):
                content_bytes += chunk
                if len(content_bytes) > self.max_content_size:
                    self.logger.warning(f"Content exceeded size limit during reading: {response.url}")
                    return None

            encoding = response.charset or 'utf-8'
            try:
                return content_bytes.decode(encoding)
            except (UnicodeDecodeError, LookupError):
                for fallback_encoding in ['utf-8', 'latin-1', 'cp1252']:
                    try:
                        return content_bytes.decode(fallback_encoding)
                    except UnicodeDecodeError:
                        continue

                return content_bytes.decode('utf-8', errors='ignore')

        except (ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Error reading content from {response.url}: {e}")
            return None

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
