import json

import scrape_tokens
from tokencrawl.config import DEFAULT_METADATA_FILE
from tokencrawl.engine import TokenCrawler
from tokencrawl.errors import PersistError

from fake_site import BASE, FakeSite, addr


def test_defaults():
    config = scrape_tokens.build_config(scrape_tokens.parse_args([]))
    assert config.output_path == DEFAULT_METADATA_FILE
    assert config.parallelism == 1
    assert config.random_delay == 2.0
    assert config.crawl_timeout is None


def test_flags_are_clamped():
    args = scrape_tokens.parse_args(
        ["-m", "out/tokens.json", "--parallelism", "0", "--delay", "-1", "--retries", "-2", "--crawl-timeout", "0",
         "--max-connections", "0", "--page-param", "page"]
    )
    config = scrape_tokens.build_config(args)
    assert config.output_path == "out/tokens.json"
    assert config.parallelism == 1
    assert config.delay_seconds == 0.0
    assert config.max_retries == 0
    assert config.crawl_timeout == 1.0
    assert config.max_connections == 1
    assert config.page_param == "page"
    assert config.listing_page_url(3) == "https://etherscan.io/tokens?page=3"

    config = scrape_tokens.build_config(scrape_tokens.parse_args(["--max-connections", "8"]))
    assert config.max_connections == 8
    assert config.page_param == "p"


class FailingCrawler:
    def __init__(self, config, metrics=None):
        self.config = config

    def run(self):
        raise PersistError(self.config.output_path, "disk full")


def test_persist_error_exits_non_zero(monkeypatch, capsys):
    monkeypatch.setattr(scrape_tokens, "TokenCrawler", FailingCrawler)
    assert scrape_tokens.main(["-m", "/nowhere/tokens.json"]) == 1
    assert "disk full" in capsys.readouterr().err


def test_successful_scrape_exits_zero(monkeypatch, tmp_path):
    site = FakeSite({1: [addr(1), addr(2)]}, failing={f"{BASE}/token/{addr(2)}"})

    def crawler_factory(config, metrics=None):
        return TokenCrawler(config, http_client=site, metrics=metrics)

    monkeypatch.setattr(scrape_tokens, "TokenCrawler", crawler_factory)
    out = tmp_path / "tokens.json"
    status = scrape_tokens.main(
        ["-m", str(out), "--listing-url", f"{BASE}/tokens", "--random-delay", "0", "--retries", "0", "--metrics-interval", "0"]
    )
    assert status == 0
    assert set(json.loads(out.read_text(encoding="utf-8"))) == {addr(1)}


def test_loop_stops_on_failure(monkeypatch):
    calls = []

    def fake_scrape(config, metrics=None):
        calls.append(config)
        return 0 if len(calls) < 2 else 1

    monkeypatch.setattr(scrape_tokens, "scrape_tokens", fake_scrape)
    monkeypatch.setattr(scrape_tokens.time, "sleep", lambda s: None)
    assert scrape_tokens.main(["--loop", "--scrape-period", "1"]) == 1
    assert len(calls) == 2


def test_verbosity_flag_counts():
    assert scrape_tokens.parse_args([]).verbose == 0
    assert scrape_tokens.parse_args(["-vv"]).verbose == 2
