"""
Monitoring and metrics collection for the crawler.
"""

import time
import logging
from typing import Dict, Optional, Any, List
from dataclasses import dataclass, field

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest
from prometheus_client import start_http_server


@dataclass
class MetricPoint:
    """Individual metric data point."""
    timestamp: float
    value: float
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class Metric:
    """Metric container with history."""
    name: str
    description: str
    metric_type: str  # counter, gauge, histogram
    points: List[MetricPoint] = field(default_factory=list)
    current_value: float = 0.0


class MetricsCollector:
    """
    Keeps a short in-memory history of every metric and mirrors known
    metrics into a private Prometheus registry.
    """

    def __init__(self, enable_prometheus: bool = False, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.metrics: Dict[str, Metric] = {}
        self.enable_prometheus = enable_prometheus
        self.prometheus_port = prometheus_port

        self.prometheus_registry = CollectorRegistry()
        self.prometheus_metrics = {
            'pages_fetched_total': Counter(
                'depthcrawl_pages_fetched_total',
                'Total number of pages fetched',
                registry=self.prometheus_registry
            ),
            'fetch_failures_total': Counter(
                'depthcrawl_fetch_failures_total',
                'Total number of failed fetches',
                ['error_type'],
                registry=self.prometheus_registry
            ),
            'urls_claimed_total': Counter(
                'depthcrawl_urls_claimed_total',
                'Total number of URLs claimed in the visited set',
                registry=self.prometheus_registry
            ),
            'claims_rejected_total': Counter(
                'depthcrawl_claims_rejected_total',
                'Total number of claims rejected as already visited',
                registry=self.prometheus_registry
            ),
            'tasks_finished_total': Counter(
                'depthcrawl_tasks_finished_total',
                'Total number of crawl tasks that reached a terminal state',
                ['state'],
                registry=self.prometheus_registry
            ),
            'pages_stored_total': Counter(
                'depthcrawl_pages_stored_total',
                'Total number of pages persisted',
                registry=self.prometheus_registry
            ),
            'bytes_downloaded_total': Counter(
                'depthcrawl_bytes_downloaded_total',
                'Total characters of page content downloaded',
                registry=self.prometheus_registry
            ),
            'fetch_time_seconds': Histogram(
                'depthcrawl_fetch_time_seconds',
                'Time spent fetching a page',
                registry=self.prometheus_registry
            ),
            'queue_size': Gauge(
                'depthcrawl_queue_size',
                'Number of crawl tasks waiting in the queue',
                registry=self.prometheus_registry
            ),
            'active_workers': Gauge(
                'depthcrawl_active_workers',
                'Number of workers currently running a task',
                registry=self.prometheus_registry
            ),
        }

    def start_prometheus_server(self):
        """Start the Prometheus metrics HTTP server when enabled."""
        if not self.enable_prometheus:
            return

        try:
            start_http_server(self.prometheus_port, registry=self.prometheus_registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def _record(self, name: str, value: float, labels: Dict[str, str],
                description: str, metric_type: str):
        if name not in self.metrics:
            self.metrics[name] = Metric(
                name=name,
                description=description,
                metric_type=metric_type
            )

        metric = self.metrics[name]
        metric.points.append(MetricPoint(timestamp=time.time(), value=value, labels=labels))
        metric.current_value = value

        # Keep only recent points
        if len(metric.points) > 1000:
            metric.points = metric.points[-1000:]

    def increment_counter(self, name: str, amount: float = 1,
                          labels: Optional[Dict[str, str]] = None,
                          description: str = ""):
        """Increment a counter metric."""
        labels = labels or {}
        current_value = self.metrics[name].current_value if name in self.metrics else 0
        self._record(name, current_value + amount, labels, description, "counter")

        prom_metric = self.prometheus_metrics.get(name)
        if prom_metric is not None:
            if labels:
                prom_metric.labels(**labels).inc(amount)
            else:
                prom_metric.inc(amount)

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                  description: str = ""):
        """Set a gauge metric value."""
        self._record(name, value, labels or {}, description, "gauge")

        prom_metric = self.prometheus_metrics.get(name)
        if prom_metric is not None:
            prom_metric.set(value)

    def observe_histogram(self, name: str, value: float,
                          labels: Optional[Dict[str, str]] = None,
                          description: str = ""):
        """Record a histogram observation."""
        self._record(name, value, labels or {}, description, "histogram")

        prom_metric = self.prometheus_metrics.get(name)
        if prom_metric is not None:
            prom_metric.observe(value)

    def get_metric(self, name: str) -> Optional[Metric]:
        return self.metrics.get(name)

    def get_current_values(self) -> Dict[str, float]:
        """Get current values of all metrics."""
        return {name: metric.current_value for name, metric in self.metrics.items()}

    def export_prometheus(self) -> bytes:
        """Render the registry in Prometheus text exposition format."""
        return generate_latest(self.prometheus_registry)


class CrawlerMonitor:
    """High-level monitoring interface for the crawler."""

    def __init__(self, metrics_collector: MetricsCollector):
        self.metrics = metrics_collector
        self.logger = logging.getLogger(__name__)
        self.start_time = time.time()

    def record_page_fetched(self, url: str, content_size: int, fetch_time: float):
        self.metrics.increment_counter('pages_fetched_total', description='Pages fetched')
        self.metrics.increment_counter('bytes_downloaded_total', amount=content_size,
                                       description='Characters downloaded')
        self.metrics.observe_histogram('fetch_time_seconds', fetch_time,
                                       description='Fetch time')

    def record_fetch_failure(self, url: str, error_type: str):
        self.metrics.increment_counter('fetch_failures_total', labels={'error_type': error_type},
                                       description='Failed fetches')

    def record_claim(self, url: str, granted: bool):
        if granted:
            self.metrics.increment_counter('urls_claimed_total', description='URLs claimed')
        else:
            self.metrics.increment_counter('claims_rejected_total',
                                           description='Claims rejected')

    def record_page_stored(self, url: str):
        self.metrics.increment_counter('pages_stored_total', description='Pages stored')

    def record_task_finished(self, state: str):
        self.metrics.increment_counter('tasks_finished_total', labels={'state': state},
                                       description='Tasks finished')

    def update_queue_size(self, size: int):
        self.metrics.set_gauge('queue_size', size, description='Tasks in queue')

    def update_active_workers(self, count: int):
        self.metrics.set_gauge('active_workers', count, description='Active workers')

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        current_values = self.metrics.get_current_values()
        runtime = time.time() - self.start_time

        return {
            'runtime_seconds': runtime,
            'metrics': current_values,
            'rates': {
                'pages_per_second': current_values.get('pages_fetched_total', 0) / runtime if runtime > 0 else 0,
            }
        }


def create_monitor(enable_prometheus: bool = False, prometheus_port: int = 8000) -> CrawlerMonitor:
    """Build a monitor with its own metrics collector."""
    return CrawlerMonitor(MetricsCollector(enable_prometheus, prometheus_port))
