import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urldefrag, urlparse

from bs4 import BeautifulSoup

from .errors import ExtractError, PageCountParseError
from .types import TokenMetadata


logger = logging.getLogger(__name__)

# Listing page
TOKEN_CELL_SELECTOR = "#ContentPlaceHolder1_divresult tbody tr td:nth-child(3)"
PAGE_COUNT_SELECTOR = "div.col-sm-6 b:nth-child(2)"

# Detail page
NAME_SELECTOR = ".breadcrumbs #address"
SUPPLY_SELECTOR = "#ContentPlaceHolder1_divSummary tbody tr:nth-child(1) td.tditem"
CONTRACT_SELECTOR = "#ContentPlaceHolder1_trContract td.tditem a"

DETAIL_ROUTES = (re.compile(r"^/token/0x[0-9a-fA-F]{40}/?$"),)


@dataclass(frozen=True)
class ParsedDocument:
    url: str
    soup: BeautifulSoup

    @classmethod
    def parse(cls, url: str, html: str) -> "ParsedDocument":
        return cls(url=url, soup=BeautifulSoup(html, "html.parser"))

    @property
    def path(self) -> str:
        return urlparse(self.url).path

    def text_of(self, selector: str) -> str:
        """Trimmed text of the first element matching selector, '' if none."""
        el = self.soup.select_one(selector)
        if el is None:
            return ""
        return el.get_text().strip()


class UrlTools:
    @staticmethod
    def normalize_link(base_url: str, href: str) -> Optional[str]:
        if not href:
            return None
        href = href.strip()
        if href.startswith(("mailto:", "javascript:", "tel:", "#")):
            return None
        absolute = urljoin(base_url, href)
        absolute, _ = urldefrag(absolute)
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https"):
            return None
        return absolute

    @staticmethod
    def host(url: str) -> str:
        return urlparse(url).netloc.lower()


class DetailRoute:
    """Exact allow-list of detail page route templates."""

    def __init__(self, patterns: Iterable[re.Pattern] = DETAIL_ROUTES):
        self.patterns = tuple(patterns)

    def matches(self, path: str) -> bool:
        return any(p.match(path) for p in self.patterns)

    def matches_url(self, url: str) -> bool:
        return self.matches(urlparse(url).path)


def parse_page_count(text: Optional[str]) -> int:
    cleaned = (text or "").strip().replace(",", "")
    try:
        count = int(cleaned)
    except ValueError as exc:
        raise PageCountParseError(text) from exc
    if count < 1:
        raise PageCountParseError(text)
    return count


def parse_symbol(supply_text: str, url: str = "") -> str:
    # "1,000,000 ABC" -> "ABC"
    split = " ".join(supply_text.split()).split(" ")
    if len(split) < 2 or not split[1]:
        raise ExtractError("symbol", url)
    return split[1]


class Extractor:
    route = DetailRoute()

    @staticmethod
    def page_count(doc: ParsedDocument) -> int:
        text = doc.text_of(PAGE_COUNT_SELECTOR)
        try:
            return parse_page_count(text)
        except PageCountParseError as exc:
            logger.warning("error parsing num pages from %s: %s; treating as a single page", doc.url, exc)
            return 1

    @staticmethod
    def detail_links(doc: ParsedDocument) -> List[str]:
        links: List[str] = []
        for cell in doc.soup.select(TOKEN_CELL_SELECTOR):
            anchor = cell.select_one("a[href]")
            if anchor is None:
                continue
            normalized = UrlTools.normalize_link(doc.url, anchor["href"])
            if normalized:
                links.append(normalized)
        return links

    @classmethod
    def metadata(cls, doc: ParsedDocument, path: Optional[str] = None) -> Optional[TokenMetadata]:
        """Extract a token record from a detail page.

        Returns None when the path is not a detail route. Raises ExtractError
        naming the first field that could not be located.
        """
        if not cls.route.matches(doc.path if path is None else path):
            return None

        name = doc.text_of(NAME_SELECTOR)
        if not name:
            raise ExtractError("name", doc.url)

        supply_text = doc.text_of(SUPPLY_SELECTOR)
        if not supply_text:
            raise ExtractError("symbol", doc.url)
        symbol = parse_symbol(supply_text, doc.url)

        contract_address = doc.text_of(CONTRACT_SELECTOR).lower()
        if not contract_address:
            raise ExtractError("contract_address", doc.url)

        return TokenMetadata(name=name, symbol=symbol, contract_address=contract_address)
