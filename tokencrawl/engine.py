import enum
import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from .config import CrawlConfig
from .errors import ExtractError, FetchError
from .metrics import Metrics, StatsLogger
from .net import HttpClient, PageFetcher
from .parsing import Extractor, ParsedDocument, UrlTools
from .rate import LimitRule, Politeness
from .storage import MetadataStore, ResultSet
from .types import FetchResult, HttpClientProtocol


class CrawlState(enum.IntEnum):
    INIT = 0
    DISCOVERING_PAGE_COUNT = 1
    CRAWLING = 2
    DRAINING = 3
    DONE = 4


class PageCountSignal:
    """One-shot page count. The first offer wins; later offers are ignored."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._value: Optional[int] = None

    def offer(self, count: int) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._value = count
            self._event.set()
            return True

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        self._event.wait(timeout)
        return self._value

    @property
    def value(self) -> Optional[int]:
        return self._value


class TaskTracker:
    """Counts tasks that were submitted but have not reached a terminal result."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._pending = 0

    def add(self) -> None:
        with self._cond:
            self._pending += 1

    def done(self) -> None:
        with self._cond:
            self._pending -= 1
            if self._pending <= 0:
                self._cond.notify_all()

    @property
    def pending(self) -> int:
        with self._cond:
            return self._pending

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._pending <= 0, timeout)


@dataclass(frozen=True)
class Task:
    url: str
    page: Optional[int] = None

    @property
    def is_listing(self) -> bool:
        return self.page is not None


@dataclass
class CrawlSummary:
    total_pages: int = 0
    listing_pages_visited: List[int] = field(default_factory=list)
    detail_pages_visited: int = 0
    tokens: int = 0
    fetch_failures: int = 0
    extract_failures: int = 0
    completed: bool = False


class TokenCrawler:
    def __init__(
        self,
        config: CrawlConfig,
        http_client: HttpClientProtocol | None = None,
        store: MetadataStore | None = None,
        politeness: Politeness | None = None,
        metrics: Metrics | None = None,
    ):
        self.config = config
        self._owns_http = http_client is None
        self.http = http_client or HttpClient(
            config.user_agent, config.request_timeout, config.parallelism, config.max_connections
        )
        self.fetcher = PageFetcher(self.http)
        self.store = store or MetadataStore(config.output_path)
        self.politeness = politeness or Politeness(
            LimitRule(
                domain_glob=config.domain_glob,
                parallelism=config.parallelism,
                delay_seconds=config.delay_seconds,
                random_delay=config.random_delay,
            )
        )
        self.results = ResultSet()
        self.metrics = metrics or Metrics()
        self.frontier: "queue.Queue[Task]" = queue.Queue()
        self.tracker = TaskTracker()
        self.page_count = PageCountSignal()
        self.state = CrawlState.INIT
        self.summary = CrawlSummary()
        self.stats_thread: Optional[StatsLogger] = None
        self._seen: Set[str] = set()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._listing_done = 0
        self._deadline: Optional[float] = None

    def _advance(self, state: CrawlState) -> None:
        # states only move forward
        with self._lock:
            if state > self.state:
                logging.debug("Crawl state %s -> %s", self.state.name, state.name)
                self.state = state

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def _submit(self, task: Task) -> bool:
        with self._lock:
            if task.url in self._seen:
                return False
            self._seen.add(task.url)
        self.tracker.add()
        self.frontier.put(task)
        return True

    def _fetch(self, url: str) -> Tuple[ParsedDocument, FetchResult]:
        """Fetch with bounded retry; raises the last FetchError once retries are spent."""
        host = UrlTools.host(url)
        attempt = 0
        while True:
            with self.politeness.slot(host):
                t0 = time.perf_counter()
                try:
                    doc, response = self.fetcher.fetch(url)
                except FetchError as exc:
                    self.metrics.record_fetch(False, 0, (time.perf_counter() - t0) * 1000.0)
                    error = exc
                else:
                    self.metrics.record_fetch(True, response.size_bytes, (time.perf_counter() - t0) * 1000.0)
                    return doc, response
            if not error.retryable or attempt >= self.config.max_retries or self._stop.is_set():
                raise error
            backoff = self.config.retry_backoff * (2 ** attempt)
            attempt += 1
            logging.debug("Retrying %s in %.2fs (attempt %d): %s", url, backoff, attempt + 1, error.cause)
            if backoff > 0 and self._stop.wait(backoff):
                raise error

    def _finish_listing(self) -> None:
        with self._lock:
            self._listing_done += 1
            total = self.page_count.value
            drained = total is not None and self._listing_done >= total
        if drained:
            self._advance(CrawlState.DRAINING)

    def _visit_listing(self, task: Task) -> None:
        try:
            doc, _ = self._fetch(task.url)
        except FetchError as exc:
            logging.warning("Listing page %d failed: %s", task.page, exc)
            with self._lock:
                self.summary.fetch_failures += 1
            return
        links = Extractor.detail_links(doc)
        queued = 0
        for link in links:
            if not Extractor.route.matches_url(link):
                logging.debug("Skipping non-token link %s", link)
                continue
            if self._submit(Task(url=link)):
                queued += 1
        with self._lock:
            self.summary.listing_pages_visited.append(task.page)
        logging.info("Listing page %d: %d token links, %d queued", task.page, len(links), queued)

        count = Extractor.page_count(doc)
        if self.page_count.offer(count):
            logging.info("Listing has %d pages", count)
        else:
            logging.debug("Ignoring page count %d from %s; already known", count, task.url)

    def _visit_detail(self, task: Task) -> None:
        try:
            doc, _ = self._fetch(task.url)
        except FetchError as exc:
            logging.warning("Token page failed: %s", exc)
            with self._lock:
                self.summary.fetch_failures += 1
            return
        with self._lock:
            self.summary.detail_pages_visited += 1
        try:
            token = Extractor.metadata(doc)
        except ExtractError as exc:
            logging.warning("Could not extract %s from %s; skipping token", exc.field, exc.url)
            self.metrics.record_extract_error()
            with self._lock:
                self.summary.extract_failures += 1
            return
        if token is None:
            logging.debug("Not a token page: %s", task.url)
            return
        if self.results.put(token):
            logging.debug("Token %s seen again; keeping latest", token.contract_address)
        self.metrics.record_token()
        logging.info("scraper processed token: %s", token.name)

    def _process(self, task: Task) -> None:
        if task.is_listing:
            try:
                self._visit_listing(task)
            finally:
                if task.page == 1 and self.page_count.offer(1):
                    logging.warning("Page count unknown after listing page 1 failed; treating as a single page")
                self._finish_listing()
        else:
            self._visit_detail(task)

    def worker(self) -> None:
        while not self._stop.is_set():
            try:
                task = self.frontier.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                if not self._stop.is_set():
                    self._process(task)
            except Exception:
                logging.exception("Unexpected error visiting %s", task.url)
                with self._lock:
                    self.summary.fetch_failures += 1
            finally:
                self.frontier.task_done()
                self.tracker.done()

    def _abandon_queued(self) -> int:
        abandoned = 0
        while True:
            try:
                self.frontier.get_nowait()
            except queue.Empty:
                return abandoned
            self.frontier.task_done()
            abandoned += 1

    def _crawl(self) -> bool:
        self._advance(CrawlState.DISCOVERING_PAGE_COUNT)
        self._submit(Task(url=self.config.listing_page_url(1), page=1))

        total = self.page_count.wait(self._remaining())
        if total is None:
            return False
        self.summary.total_pages = total
        self._advance(CrawlState.CRAWLING)
        # page 1 was visited to learn the count
        for page in range(2, total + 1):
            self._submit(Task(url=self.config.listing_page_url(page), page=page))
        return self.tracker.wait_idle(self._remaining())

    def run(self) -> CrawlSummary:
        logging.info(
            "Starting scrape: %s (parallelism %d, delay %.1fs + up to %.1fs jitter)",
            self.config.listing_url,
            self.config.parallelism,
            self.config.delay_seconds,
            self.config.random_delay,
        )
        if self.config.crawl_timeout is not None:
            self._deadline = time.monotonic() + self.config.crawl_timeout
        if self.config.metrics_interval and self.config.metrics_interval > 0:
            self.stats_thread = StatsLogger(self.metrics, self.config.metrics_interval, logging.info)
            self.stats_thread.start()
        try:
            with ThreadPoolExecutor(max_workers=max(1, self.config.parallelism), thread_name_prefix="crawl") as executor:
                futures = [executor.submit(self.worker) for _ in range(max(1, self.config.parallelism))]
                try:
                    completed = self._crawl()
                finally:
                    self._stop.set()
                for future in futures:
                    future.result()
            if not completed:
                abandoned = self._abandon_queued()
                logging.warning(
                    "Crawl timed out after %.1fs; %d queued pages abandoned, persisting partial results",
                    self.config.crawl_timeout or 0.0,
                    abandoned,
                )
            self.summary.completed = completed
            self.summary.tokens = len(self.results)
            self._advance(CrawlState.DONE)
            self.store.write(self.results.snapshot())
        finally:
            if self.stats_thread:
                self.stats_thread.stop()
            if self._owns_http:
                self.http.close()
        logging.info(
            "Finished. Tokens: %d, fetch failures: %d, extract failures: %d. Output: %s",
            self.summary.tokens,
            self.summary.fetch_failures,
            self.summary.extract_failures,
            self.store.output_path,
        )
        return self.summary
