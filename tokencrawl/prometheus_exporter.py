import logging
import threading
from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

from .metrics import Metrics


logger = logging.getLogger(__name__)


class PrometheusExporter:
    def __init__(self, metrics: Metrics, port: int = 8000, registry: CollectorRegistry | None = None) -> None:
        self.metrics = metrics
        self.port = port
        self.registry = registry or CollectorRegistry()
        self._server_thread: threading.Thread | None = None
        self._stop_event = threading.Event()

        self.fetches_total = Counter('token_crawler_fetches_total', 'Total number of page fetches', registry=self.registry)
        self.bytes_total = Counter('token_crawler_bytes_total', 'Total number of bytes downloaded', registry=self.registry)
        self.fetch_errors_total = Counter('token_crawler_fetch_errors_total', 'Total number of failed fetches', registry=self.registry)
        self.tokens_total = Counter('token_crawler_tokens_total', 'Total number of tokens extracted', registry=self.registry)
        self.extract_errors_total = Counter(
            'token_crawler_extract_errors_total', 'Total number of detail pages that failed extraction', registry=self.registry
        )
        self.avg_fetch_duration_seconds = Gauge(
            'token_crawler_avg_fetch_duration_seconds', 'Average fetch duration in seconds', registry=self.registry
        )

        self._last = {"fetches": 0, "bytes": 0, "fetch_errors": 0, "tokens": 0, "extract_errors": 0}

    def start(self) -> None:
        start_http_server(self.port, registry=self.registry)
        logger.info("Prometheus metrics server started on port %d", self.port)

        self._server_thread = threading.Thread(
            target=self._update_metrics_loop,
            name="prometheus-updater",
            daemon=True
        )
        self._server_thread.start()

    def _update_metrics_loop(self) -> None:
        while not self._stop_event.is_set():
            self.update()
            self._stop_event.wait(5.0)

    def update(self) -> None:
        totals, _elapsed = self.metrics.snapshot()
        counters = {
            "fetches": self.fetches_total,
            "bytes": self.bytes_total,
            "fetch_errors": self.fetch_errors_total,
            "tokens": self.tokens_total,
            "extract_errors": self.extract_errors_total,
        }
        for name, counter in counters.items():
            value = getattr(totals, name)
            delta = value - self._last[name]
            if delta > 0:
                counter.inc(delta)
            self._last[name] = value

        if totals.fetches > 0:
            self.avg_fetch_duration_seconds.set(totals.fetch_ms_sum / totals.fetches / 1000.0)

    def stop(self) -> None:
        self._stop_event.set()
        if self._server_thread:
            self._server_thread.join(timeout=2.0)
