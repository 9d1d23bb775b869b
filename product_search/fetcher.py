import logging
from typing import Optional
from urllib.parse import urljoin

import requests

logger = logging.getLogger(__name__)

UA = "Mozilla/5.0 (compatible; ProductSearch/1.0) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"
ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
MAX_REDIRECTS = 10


class FetchError(Exception):
    """Base class for anything that keeps a URL from yielding a body."""

    def __init__(self, url: str, message: str):
        super().__init__(f"{message} ({url})")
        self.url = url


class FetchTimeout(FetchError):
    pass


class FetchNetworkError(FetchError):
    pass


class FetchHTTPStatus(FetchError):
    def __init__(self, url: str, status_code: int):
        super().__init__(url, f"HTTP {status_code}")
        self.status_code = status_code


class Fetcher:
    """
    Plain HTTP GET over a shared requests session.

    Redirects are followed by hand so every hop is resolved against the
    current URL and the hop count stays bounded on redirect cycles.
    """

    def __init__(self, session: Optional[requests.Session] = None, max_redirects: int = MAX_REDIRECTS):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": UA, "Accept": ACCEPT})
        self.max_redirects = max_redirects

    def fetch(self, url: str, timeout: float) -> str:
        current = url
        for _ in range(self.max_redirects + 1):
            try:
                resp = self.session.get(current, timeout=timeout, allow_redirects=False)
            except requests.exceptions.Timeout as exc:
                raise FetchTimeout(current, "Timeout") from exc
            except requests.exceptions.RequestException as exc:
                raise FetchNetworkError(current, str(exc)) from exc

            status = resp.status_code
            location = resp.headers.get("Location")
            if 300 <= status < 400 and location:
                resp.close()
                current = urljoin(current, location)
                logger.debug("[fetch] redirect %s -> %s", url, current)
                continue
            if not 200 <= status < 300:
                resp.close()
                raise FetchHTTPStatus(current, status)
            return resp.text

        raise FetchNetworkError(url, f"Too many redirects (>{self.max_redirects})")
