import threading
import time
from dataclasses import dataclass, replace


@dataclass
class Totals:
    fetches: int = 0
    bytes: int = 0
    fetch_errors: int = 0
    fetch_ms_sum: float = 0.0
    tokens: int = 0
    extract_errors: int = 0


class Metrics:
    def __init__(self):
        self._totals = Totals()
        self._lock = threading.Lock()
        self._start = time.time()

    def record_fetch(self, ok: bool, bytes_read: int, fetch_ms: float) -> None:
        with self._lock:
            self._totals.fetches += 1
            self._totals.bytes += max(0, bytes_read)
            if not ok:
                self._totals.fetch_errors += 1
            self._totals.fetch_ms_sum += fetch_ms

    def record_token(self) -> None:
        with self._lock:
            self._totals.tokens += 1

    def record_extract_error(self) -> None:
        with self._lock:
            self._totals.extract_errors += 1

    def snapshot(self) -> tuple[Totals, float]:
        with self._lock:
            t = replace(self._totals)
        elapsed = max(1e-6, time.time() - self._start)
        return t, elapsed


class StatsLogger(threading.Thread):
    daemon = True

    def __init__(self, metrics: Metrics, interval_s: float, log_fn):
        super().__init__(name="stats-logger")
        self._metrics = metrics
        self._interval = max(0.5, interval_s)
        self._log = log_fn
        self._halt = threading.Event()

    def run(self) -> None:
        while not self._halt.is_set():
            self._halt.wait(self._interval)
            if self._halt.is_set():
                break
            totals, elapsed = self._metrics.snapshot()
            avg_ms = (totals.fetch_ms_sum / max(1, totals.fetches))
            self._log(
                "Perf: fetches=%d, fetch_errors=%d, tokens=%d, extract_errors=%d, avg_fetch_ms=%.1f, fetches/min=%.2f",
                totals.fetches,
                totals.fetch_errors,
                totals.tokens,
                totals.extract_errors,
                avg_ms,
                totals.fetches * 60.0 / elapsed,
            )

    def stop(self) -> None:
        self._halt.set()
