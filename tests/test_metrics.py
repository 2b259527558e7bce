from prometheus_client import CollectorRegistry

from tokencrawl.metrics import Metrics, StatsLogger
from tokencrawl.prometheus_exporter import PrometheusExporter


def test_metrics_records_fetches_and_tokens():
    m = Metrics()

    m.record_fetch(ok=True, bytes_read=1024, fetch_ms=50.0)
    m.record_fetch(ok=False, bytes_read=0, fetch_ms=100.0)
    m.record_token()
    m.record_extract_error()
    totals, elapsed = m.snapshot()

    assert totals.fetches == 2
    assert totals.bytes == 1024
    assert totals.fetch_errors == 1
    assert totals.fetch_ms_sum == 150.0
    assert totals.tokens == 1
    assert totals.extract_errors == 1
    assert elapsed > 0


def test_snapshot_is_a_copy():
    m = Metrics()
    totals, _ = m.snapshot()
    m.record_token()
    assert totals.tokens == 0


def test_stats_logger_stops():
    lines = []
    logger = StatsLogger(Metrics(), 0.5, lambda *args: lines.append(args))
    logger.start()
    logger.stop()
    logger.join(timeout=2.0)
    assert not logger.is_alive()


def test_prometheus_exporter_publishes_deltas():
    registry = CollectorRegistry()
    m = Metrics()
    exporter = PrometheusExporter(m, port=0, registry=registry)

    m.record_fetch(ok=True, bytes_read=10, fetch_ms=20.0)
    m.record_token()
    exporter.update()
    m.record_fetch(ok=False, bytes_read=0, fetch_ms=40.0)
    exporter.update()

    assert registry.get_sample_value("token_crawler_fetches_total") == 2
    assert registry.get_sample_value("token_crawler_fetch_errors_total") == 1
    assert registry.get_sample_value("token_crawler_tokens_total") == 1
    assert registry.get_sample_value("token_crawler_bytes_total") == 10
    assert registry.get_sample_value("token_crawler_avg_fetch_duration_seconds") == 0.03
