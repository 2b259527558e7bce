from typing import Optional


class CrawlError(Exception):
    pass


class FetchError(CrawlError):
    """Network failure, timeout, non-2xx status or unusable body for one URL."""

    def __init__(self, url: str, cause: object, retryable: bool = True):
        self.url = url
        self.cause = cause
        self.retryable = retryable
        super().__init__(f"fetching {url}: {cause}")


class ExtractError(CrawlError):
    """A field could not be located on an otherwise fetched detail page."""

    def __init__(self, field: str, url: str):
        self.field = field
        self.url = url
        super().__init__(f"extracting {field} from {url}")


class PageCountParseError(CrawlError):
    def __init__(self, text: Optional[str]):
        self.text = text
        super().__init__(f"parsing page count from text {text!r}")


class PersistError(CrawlError):
    def __init__(self, path: str, cause: object):
        self.path = path
        self.cause = cause
        super().__init__(f"writing metadata json to {path}: {cause}")
