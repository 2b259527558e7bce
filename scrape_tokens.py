#!/usr/bin/env python3
import argparse
import logging
import sys
import time
from typing import List, Optional

from tokencrawl.config import (
    CrawlConfig,
    DEFAULT_LISTING_URL,
    DEFAULT_METADATA_FILE,
    DEFAULT_USER_AGENT,
    SCRAPE_LOOP_PERIOD,
)
from tokencrawl.engine import TokenCrawler
from tokencrawl.errors import PersistError
from tokencrawl.metrics import Metrics
from tokencrawl.prometheus_exporter import PrometheusExporter


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scrape token metadata from a paginated token listing into a JSON file.")
    parser.add_argument("-m", dest="output_path", default=DEFAULT_METADATA_FILE, help="Path of the metadata JSON file.")
    parser.add_argument("--listing-url", default=DEFAULT_LISTING_URL, help="Token listing URL (page number is appended as ?<page-param>=N).")
    parser.add_argument("--page-param", default="p", help="Query parameter that carries the listing page number.")
    parser.add_argument("--domain-glob", default="*etherscan.*", help="Hosts the politeness rule applies to.")
    parser.add_argument("--parallelism", type=int, default=1, help="Max in-flight requests per matching host.")
    parser.add_argument("--delay", type=float, default=0.0, help="Fixed delay between requests in seconds.")
    parser.add_argument("--random-delay", type=float, default=2.0, help="Max random jitter added to the delay in seconds.")
    parser.add_argument("--timeout", type=float, default=15.0, help="HTTP read timeout in seconds.")
    parser.add_argument("--max-connections", type=int, default=4, help="Max connections per pool for HTTP client.")
    parser.add_argument("--retries", type=int, default=2, help="Retries per URL after a failed fetch.")
    parser.add_argument("--retry-backoff", type=float, default=0.5, help="Initial retry backoff in seconds, doubled per attempt.")
    parser.add_argument("--crawl-timeout", type=float, default=None, help="Give up and persist partial results after this many seconds.")
    parser.add_argument("--user-agent", default=DEFAULT_USER_AGENT, help="User-Agent header to send.")
    parser.add_argument("--loop", action="store_true", help="Scrape repeatedly, once every --scrape-period seconds.")
    parser.add_argument("--scrape-period", type=float, default=SCRAPE_LOOP_PERIOD, help="Seconds between scrapes in --loop mode.")
    parser.add_argument("--metrics-interval", type=float, default=10.0, help="Seconds between perf logs (0 to disable).")
    parser.add_argument("--prometheus-port", type=int, default=None, help="Serve Prometheus metrics on this port.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging verbosity.")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CrawlConfig:
    crawl_timeout = args.crawl_timeout
    if crawl_timeout is not None:
        crawl_timeout = max(1.0, crawl_timeout)
    return CrawlConfig(
        listing_url=args.listing_url,
        page_param=args.page_param,
        domain_glob=args.domain_glob,
        parallelism=max(1, args.parallelism),
        delay_seconds=max(0.0, args.delay),
        random_delay=max(0.0, args.random_delay),
        request_timeout=max(1.0, args.timeout),
        max_connections=max(1, args.max_connections),
        max_retries=max(0, args.retries),
        retry_backoff=max(0.0, args.retry_backoff),
        crawl_timeout=crawl_timeout,
        scrape_period=max(1.0, args.scrape_period),
        user_agent=args.user_agent,
        output_path=args.output_path,
        metrics_interval=max(0.0, args.metrics_interval),
    )


def scrape_tokens(config: CrawlConfig, metrics: Optional[Metrics] = None) -> int:
    crawler = TokenCrawler(config, metrics=metrics)
    try:
        crawler.run()
    except PersistError as exc:
        logging.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    log_level = logging.WARNING
    if args.verbose == 1:
        log_level = logging.INFO
    elif args.verbose >= 2:
        log_level = logging.DEBUG
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(threadName)s %(message)s",
    )

    config = build_config(args)
    metrics = Metrics()
    exporter = None
    if args.prometheus_port:
        exporter = PrometheusExporter(metrics, port=args.prometheus_port)
        exporter.start()
        logging.info("Prometheus metrics available at http://0.0.0.0:%d/metrics", args.prometheus_port)

    try:
        if not args.loop:
            return scrape_tokens(config, metrics)
        while True:
            started = time.monotonic()
            status = scrape_tokens(config, metrics)
            if status != 0:
                return status
            wait = max(0.0, config.scrape_period - (time.monotonic() - started))
            logging.info("Next scrape in %.0fs", wait)
            time.sleep(wait)
    finally:
        if exporter:
            exporter.stop()


if __name__ == "__main__":
    sys.exit(main())
