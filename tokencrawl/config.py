from dataclasses import dataclass
from typing import Optional


DEFAULT_USER_AGENT = "token-metadata-crawler/1.0 (+https://example.com; contact: crawler@example.com)"
DEFAULT_LISTING_URL = "https://etherscan.io/tokens"
DEFAULT_METADATA_FILE = "resources/tokenMetadata.json"
SCRAPE_LOOP_PERIOD = 60 * 60.0


@dataclass(frozen=True)
class CrawlConfig:
    listing_url: str = DEFAULT_LISTING_URL
    page_param: str = "p"
    domain_glob: str = "*etherscan.*"
    parallelism: int = 1
    delay_seconds: float = 0.0
    random_delay: float = 2.0
    max_connections: int = 4
    request_timeout: float = 15.0
    max_retries: int = 2
    retry_backoff: float = 0.5
    crawl_timeout: Optional[float] = None
    scrape_period: float = SCRAPE_LOOP_PERIOD
    user_agent: str = DEFAULT_USER_AGENT
    output_path: str = DEFAULT_METADATA_FILE
    metrics_interval: float = 10.0

    def listing_page_url(self, page: int) -> str:
        sep = "&" if "?" in self.listing_url else "?"
        return f"{self.listing_url}{sep}{self.page_param}={page}"
