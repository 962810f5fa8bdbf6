"""
Page Fetcher - rate-limited HTTP GET for camp provider websites.

Never called inside an open database write: the job runner fetches first,
then persists the outcome in a separate step.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

import requests

from scrapers.rate_limiter import ScraperRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "CampPipeline/1.0 (+camp availability aggregator)"
DEFAULT_TIMEOUT = 30


class FetchError(Exception):
    """Page could not be fetched. status_code is None for network errors."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_not_found(self) -> bool:
        return self.status_code in (404, 410)


@dataclass
class FetchedPage:
    url: str
    final_url: str
    status_code: int
    html: str


class PageFetcher:
    """
    requests.Session wrapper with a user agent, timeout and domain rate limits.

    Usage:
        fetcher = PageFetcher()
        page = fetcher.fetch("https://example.org/summer-camps")
    """

    def __init__(self, user_agent: Optional[str] = None, timeout: Optional[int] = None,
                 rate_limiter: Optional[ScraperRateLimiter] = None):
        self.timeout = timeout or int(os.getenv("SCRAPE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT))
        self.rate_limiter = rate_limiter or ScraperRateLimiter(
            config_path=os.getenv("SCRAPE_RATE_LIMITS_PATH"),
            redis_url=os.getenv("REDIS_URL"),
        )
        self.session = requests.Session()
        self.session.headers.update({
            "User-Agent": user_agent or os.getenv("SCRAPE_USER_AGENT", DEFAULT_USER_AGENT),
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        })

    def fetch(self, url: str) -> FetchedPage:
        """
        GET a page.

        Raises:
            FetchError: on network failure or any non-2xx status
        """
        self.rate_limiter.wait(url)
        try:
            response = self.session.get(url, timeout=self.timeout, allow_redirects=True)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Fetch failed for {url}: {e}")
            raise FetchError(f"Request failed: {e}", url) from e

        if response.status_code >= 400:
            logger.info(f"Fetch {url} returned HTTP {response.status_code}")
            raise FetchError(f"HTTP {response.status_code}", url, response.status_code)

        return FetchedPage(
            url=url,
            final_url=response.url,
            status_code=response.status_code,
            html=response.text,
        )

    def check(self, url: str) -> int:
        """Return the HTTP status for url (0 on network error)."""
        try:
            return self.fetch(url).status_code
        except FetchError as e:
            return e.status_code or 0

    def close(self):
        self.session.close()
