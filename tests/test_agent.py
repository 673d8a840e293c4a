"""End-to-end crawl behaviour of agents and the page processor over fake link graphs."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from depthcrawl.crawler.agent import CrawlAgent, PageProcessor
from depthcrawl.crawler.errors import ExtractionFailure
from depthcrawl.crawler.fetcher import FetchResult
from depthcrawl.crawler.parser import SoupLinkExtractor
from depthcrawl.crawler.scheduler import CrawlScheduler
from depthcrawl.crawler.tasks import CrawlTask, TaskState
from depthcrawl.storage.page_store import NullPageStore
from depthcrawl.utils.monitoring import create_monitor

from .conftest import GraphFetcher


A = "https://example.com/a"
B = "https://example.com/b"
C = "https://example.com/c"
D = "https://example.com/d"
E = "https://example.com/e"


def build(fetcher, visited, extractor, max_depth, max_workers=4, submit_delay=0.0, **kwargs):
    processor = PageProcessor(
        fetcher=fetcher,
        extractor=extractor,
        visited=visited,
        max_depth=max_depth,
        submit_delay=submit_delay,
        **kwargs
    )
    scheduler = CrawlScheduler(processor, max_workers=max_workers)
    scheduler.start()
    return processor, scheduler


async def crawl(scheduler, agents, timeout=5):
    await asyncio.wait_for(asyncio.gather(*(agent.run() for agent in agents)), timeout=timeout)
    await scheduler.shutdown()


class TestCrawlScenarios:

    async def test_duplicate_links_claimed_once_and_last_level_not_expanded(self, visited, extractor):
        fetcher = GraphFetcher({A: [B, B, C], B: [D], C: [], D: [E]})
        _, scheduler = build(fetcher, visited, extractor, max_depth=2)
        agent = CrawlAgent(1, A, scheduler, visited, max_depth=2)

        await crawl(scheduler, [agent])

        assert await visited.snapshot() == frozenset({A, B, C, D})
        assert sorted(fetcher.calls) == sorted([A, B, C])
        assert fetcher.calls.count(B) == 1

    async def test_two_agents_same_seed_only_one_crawls(self, visited, extractor):
        fetcher = GraphFetcher({A: [B], B: []})
        _, scheduler = build(fetcher, visited, extractor, max_depth=3)
        first = CrawlAgent(1, A, scheduler, visited, max_depth=3)
        second = CrawlAgent(2, A, scheduler, visited, max_depth=3)

        started = [await first.start(), await second.start()]
        await asyncio.wait_for(asyncio.gather(first.wait(), second.wait()), timeout=5)
        await scheduler.shutdown()

        assert started == [True, False]
        assert fetcher.calls.count(A) == 1
        assert scheduler.agent_stats(2)['submitted'] == 0
        assert scheduler.agent_stats(1)['succeeded'] == 2

    async def test_failed_fetch_abandons_only_that_subtree(self, visited, extractor):
        fetcher = GraphFetcher({A: [B, C], B: [D], C: [E], D: [], E: []}, failing={C})
        _, scheduler = build(fetcher, visited, extractor, max_depth=3)
        agent = CrawlAgent(1, A, scheduler, visited, max_depth=3)

        await crawl(scheduler, [agent])

        assert E not in await visited.snapshot()
        assert D in fetcher.calls
        assert E not in fetcher.calls
        assert scheduler.agent_stats(1) == {'submitted': 4, 'succeeded': 3, 'failed': 1}

    async def test_failure_in_one_agent_does_not_affect_another(self, visited, extractor):
        fetcher = GraphFetcher({A: [B], B: [], C: [D], D: []}, failing={A})
        _, scheduler = build(fetcher, visited, extractor, max_depth=3)
        agents = [
            CrawlAgent(1, A, scheduler, visited, max_depth=3),
            CrawlAgent(2, C, scheduler, visited, max_depth=3),
        ]

        await crawl(scheduler, agents)

        assert scheduler.agent_stats(1)['failed'] == 1
        assert scheduler.agent_stats(2) == {'submitted': 2, 'succeeded': 2, 'failed': 0}

    async def test_cyclic_graph_terminates(self, visited, extractor):
        fetcher = GraphFetcher({A: [B, C, A], B: [C, A], C: [A, B, D], D: [A, D]})
        _, scheduler = build(fetcher, visited, extractor, max_depth=10)
        agent = CrawlAgent(1, A, scheduler, visited, max_depth=10)

        await crawl(scheduler, [agent], timeout=5)

        assert sorted(fetcher.calls) == sorted([A, B, C, D])

    async def test_cross_agent_dedup_on_shared_links(self, visited, extractor):
        fetcher = GraphFetcher({A: [C], B: [C], C: [D], D: []}, latency=0.001)
        _, scheduler = build(fetcher, visited, extractor, max_depth=4)
        agents = [
            CrawlAgent(1, A, scheduler, visited, max_depth=4),
            CrawlAgent(2, B, scheduler, visited, max_depth=4),
        ]

        await crawl(scheduler, agents)

        assert fetcher.calls.count(C) == 1
        assert fetcher.calls.count(D) == 1


class TestDepthBound:

    @pytest.mark.parametrize("max_depth", [1, 2, 3, 5])
    async def test_no_task_at_or_beyond_max_depth(self, visited, extractor, max_depth):
        chain = [f"https://example.com/n{i}" for i in range(10)]
        graph = {url: [chain[i + 1]] for i, url in enumerate(chain[:-1])}
        fetcher = GraphFetcher(graph)
        processor, scheduler = build(fetcher, visited, extractor, max_depth=max_depth)

        seen_depths = []
        original_submit = scheduler.submit

        def spy(task):
            seen_depths.append(task.depth)
            return original_submit(task)

        scheduler.submit = spy
        agent = CrawlAgent(1, chain[0], scheduler, visited, max_depth=max_depth)
        await crawl(scheduler, [agent])

        assert max(seen_depths) == max_depth - 1
        assert fetcher.calls == chain[:max_depth]

    async def test_zero_max_depth_fetches_nothing(self, visited, extractor):
        fetcher = GraphFetcher({A: [B]})
        _, scheduler = build(fetcher, visited, extractor, max_depth=0)
        agent = CrawlAgent(1, A, scheduler, visited, max_depth=0)

        assert await agent.start() is False
        await agent.wait()
        await scheduler.shutdown()

        assert fetcher.calls == []
        assert await visited.size() == 0

    async def test_task_submitted_at_limit_is_not_fetched(self, visited, extractor):
        fetcher = GraphFetcher({A: [B]})
        processor = PageProcessor(fetcher, extractor, visited, max_depth=2)
        scheduler = CrawlScheduler(processor, max_workers=1)
        scheduler.start()

        task = await scheduler.submit(CrawlTask(A, depth=2, agent_id=1))
        await scheduler.shutdown()

        assert task.state == TaskState.SUCCEEDED
        assert fetcher.calls == []


class TestPageProcessor:

    async def test_concurrent_fetches_bounded_by_pool(self, visited, extractor):
        hub = "https://example.com/hub"
        leaves = [f"https://example.com/leaf{i}" for i in range(30)]
        graph = {hub: leaves, **{leaf: [] for leaf in leaves}}
        fetcher = GraphFetcher(graph, latency=0.005)
        _, scheduler = build(fetcher, visited, extractor, max_depth=3, max_workers=4)

        await crawl(scheduler, [CrawlAgent(1, hub, scheduler, visited, max_depth=3)])

        assert len(fetcher.calls) == 31
        assert fetcher.max_in_flight <= 4

    async def test_delay_between_child_submissions(self, visited, extractor):
        fetcher = GraphFetcher({A: [B, C, D]})
        processor = PageProcessor(fetcher, extractor, visited, max_depth=3, submit_delay=0.01)
        scheduler = CrawlScheduler(processor, max_workers=1)
        scheduler.submit = lambda task: asyncio.get_running_loop().create_future()

        task = CrawlTask(A, 0, 1)
        with patch('depthcrawl.crawler.agent.asyncio.sleep', new=AsyncMock()) as sleep:
            await processor(task, scheduler)

        assert task.children_submitted == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.01)

    async def test_children_record_parent(self, visited, extractor):
        fetcher = GraphFetcher({A: [B]})
        processor = PageProcessor(fetcher, extractor, visited, max_depth=3, submit_delay=0)
        submitted = []
        scheduler = CrawlScheduler(processor, max_workers=1)
        scheduler.submit = submitted.append

        await processor(CrawlTask(A, 0, 5), scheduler)

        assert len(submitted) == 1
        child = submitted[0]
        assert (child.url, child.depth, child.agent_id, child.parent_url) == (B, 1, 5, A)

    async def test_rejected_links_are_dropped(self, visited, extractor):
        fetcher = GraphFetcher({A: ["/relative", "mailto:x@example.com", B]})
        processor = PageProcessor(fetcher, extractor, visited, max_depth=3, submit_delay=0)
        submitted = []
        scheduler = CrawlScheduler(processor, max_workers=1)
        scheduler.submit = submitted.append

        task = CrawlTask(A, 0, 1)
        await processor(task, scheduler)

        assert task.links_found == 1
        assert [t.url for t in submitted] == [B]

    async def test_extraction_failure_means_no_links(self, visited):
        class BrokenExtractor:
            def extract_links(self, content):
                raise ExtractionFailure("unreadable markup")

        extractor = BrokenExtractor()
        fetcher = GraphFetcher({A: [B]})
        processor = PageProcessor(fetcher, extractor, visited, max_depth=3)
        scheduler = CrawlScheduler(processor, max_workers=1)

        task = CrawlTask(A, 0, 1)
        await processor(task, scheduler)

        assert task.state == TaskState.SUCCEEDED
        assert task.links_found == 0

    async def test_failed_fetch_marks_task_failed(self, visited, extractor):
        fetcher = GraphFetcher({}, failing={A})
        processor = PageProcessor(fetcher, extractor, visited, max_depth=3)
        scheduler = CrawlScheduler(processor, max_workers=1)

        task = CrawlTask(A, 0, 1)
        await processor(task, scheduler)

        assert task.state == TaskState.FAILED
        assert "Request timeout" in task.error

    async def test_failure_metric_labelled_by_category(self, visited, extractor):
        class UnreachableFetcher:
            async def fetch(self, url):
                return FetchResult(url=url, status_code=0,
                                   error=f"Client error: Cannot connect to host {url}:443",
                                   error_type="client")

        monitor = create_monitor()
        processor = PageProcessor(UnreachableFetcher(), extractor, visited, max_depth=3,
                                  monitor=monitor)
        scheduler = CrawlScheduler(processor, max_workers=1)

        for i in range(200):
            await processor(CrawlTask(f"https://host{i}.example.com/", 0, 1), scheduler)

        exported = monitor.metrics.export_prometheus().decode('utf-8')
        series = [line for line in exported.splitlines()
                  if line.startswith('depthcrawl_fetch_failures_total{')]
        assert series == ['depthcrawl_fetch_failures_total{error_type="client"} 200.0']

    async def test_persist_failure_is_not_fatal(self, visited, extractor):
        store = NullPageStore()
        store.store = AsyncMock(side_effect=OSError("disk full"))
        fetcher = GraphFetcher({A: [B], B: []})
        _, scheduler = build(fetcher, visited, extractor, max_depth=3, page_store=store)

        await crawl(scheduler, [CrawlAgent(1, A, scheduler, visited, max_depth=3)])

        assert sorted(fetcher.calls) == [A, B]
        assert scheduler.agent_stats(1)['failed'] == 0

    async def test_pages_are_persisted_with_agent_and_depth(self, visited, extractor):
        store = NullPageStore()
        store.store = AsyncMock(return_value=True)
        fetcher = GraphFetcher({A: [B], B: []})
        _, scheduler = build(fetcher, visited, extractor, max_depth=3, page_store=store)

        await crawl(scheduler, [CrawlAgent(3, A, scheduler, visited, max_depth=3)])

        stored = {(call.args[0], call.args[1], call.args[2]) for call in store.store.await_args_list}
        assert stored == {(3, 0, A), (3, 1, B)}

    async def test_unexpected_fetch_error_confined_to_task(self, visited, extractor):
        class ExplodingFetcher(GraphFetcher):
            async def fetch(self, url):
                if url == B:
                    raise RuntimeError("socket exploded")
                return await super().fetch(url)

        fetcher = ExplodingFetcher({A: [B, C], C: []})
        _, scheduler = build(fetcher, visited, extractor, max_depth=3)

        await crawl(scheduler, [CrawlAgent(1, A, scheduler, visited, max_depth=3)])

        assert scheduler.agent_stats(1) == {'submitted': 3, 'succeeded': 2, 'failed': 1}

    async def test_stops_expanding_when_scheduler_closed(self, visited, extractor):
        fetcher = GraphFetcher({A: [B, C]})
        processor = PageProcessor(fetcher, extractor, visited, max_depth=3, submit_delay=0)
        scheduler = CrawlScheduler(processor, max_workers=1)
        await scheduler.shutdown()

        task = CrawlTask(A, 0, 1)
        await processor(task, scheduler)

        assert task.state == TaskState.SUCCEEDED
        assert task.children_submitted == 0


class TestCrawlAgent:

    async def test_start_submits_root_task(self, visited, extractor):
        fetcher = GraphFetcher({A: []})
        _, scheduler = build(fetcher, visited, extractor, max_depth=2)
        agent = CrawlAgent(1, A, scheduler, visited, max_depth=2)

        assert await agent.start() is True
        root = await asyncio.wait_for(agent.root_handle, timeout=1)
        await scheduler.shutdown()

        assert (root.url, root.depth, root.agent_id) == (A, 0, 1)
        assert root.state == TaskState.SUCCEEDED

    async def test_start_after_shutdown_yields_no_work(self, visited, extractor):
        fetcher = GraphFetcher({A: []})
        _, scheduler = build(fetcher, visited, extractor, max_depth=2)
        await scheduler.shutdown()

        agent = CrawlAgent(1, A, scheduler, visited, max_depth=2)
        assert await agent.start() is False
        await asyncio.wait_for(agent.wait(), timeout=1)

        assert agent.root_handle is None
        assert A in visited
        assert fetcher.calls == []
        assert scheduler.agent_stats(1)['submitted'] == 0
        assert scheduler.get_stats()['rejected'] == 1

    async def test_soup_extractor_dedups_anchors_with_different_attributes(self, visited):
        html = {
            A: f'<a class="nav" href="{B}">b</a> <a href="{B}" rel="nofollow">again</a>'
               f'<A HREF="{C}" id="c">c</A>',
            B: f'<a title="back" href="{A}">a</a> <a target="_blank" href="{C}">c</a>',
            C: f'<a href="{B}" data-x="1">b</a>',
        }

        class HtmlFetcher(GraphFetcher):
            async def fetch(self, url):
                self.calls.append(url)
                return FetchResult(url=url, status_code=200, content=html[url])

        fetcher = HtmlFetcher({})
        _, scheduler = build(fetcher, visited, SoupLinkExtractor(), max_depth=3)

        await crawl(scheduler, [CrawlAgent(1, A, scheduler, visited, max_depth=3)])

        assert sorted(fetcher.calls) == sorted([A, B, C])
        assert await visited.snapshot() == frozenset({A, B, C})
        assert scheduler.agent_stats(1) == {'submitted': 3, 'succeeded': 3, 'failed': 0}

    async def test_run_returns_agent_stats(self, visited, extractor):
        fetcher = GraphFetcher({A: [B], B: []})
        _, scheduler = build(fetcher, visited, extractor, max_depth=3)

        stats = await CrawlAgent(4, A, scheduler, visited, max_depth=3).run()
        await scheduler.shutdown()

        assert stats == {'submitted': 2, 'succeeded': 2, 'failed': 0}


def test_fetch_result_ok_flag():
    assert FetchResult(url=A, status_code=200, content="").ok
    assert not FetchResult(url=A, status_code=200, content=None).ok
    assert not FetchResult(url=A, status_code=404, content="nope").ok
    assert not FetchResult(url=A, status_code=0, error="Request timeout").ok
