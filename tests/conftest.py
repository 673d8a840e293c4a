"""Shared fixtures: an in-memory link graph standing in for the web."""

import asyncio
from typing import Dict, List, Optional

import pytest

from depthcrawl.crawler.fetcher import FetchResult
from depthcrawl.crawler.parser import RegexLinkExtractor
from depthcrawl.crawler.visited import VisitedSet


def page(*links: str) -> str:
    """Render an HTML page whose anchors point at ``links``."""
    anchors = "\n".join(f'<a href="{link}">{link}</a>' for link in links)
    return f"<html><body>{anchors}</body></html>"


class GraphFetcher:
    """
    Serves pages from a dict of url -> list of links.

    URLs in ``failing`` return a failed FetchResult; URLs missing from the
    graph return a 404. Tracks calls and peak concurrency.
    """

    def __init__(self, graph: Dict[str, List[str]], failing: Optional[set] = None,
                 latency: float = 0.0):
        self.graph = graph
        self.failing = failing or set()
        self.latency = latency
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            if url in self.failing:
                return FetchResult(url=url, status_code=0, error="Request timeout",
                                   error_type="timeout")
            if url not in self.graph:
                return FetchResult(url=url, status_code=404, error="HTTP 404", error_type="http")
            return FetchResult(url=url, status_code=200, content=page(*self.graph[url]))
        finally:
            self.in_flight -= 1


@pytest.fixture
def visited():
    return VisitedSet()


@pytest.fixture
def extractor():
    return RegexLinkExtractor()
