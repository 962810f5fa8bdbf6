"""
Scraper Rate Limiter - Domain-keyed politeness limits for camp websites.

Camp providers are mostly small organizations on shared hosting; every
fetch goes through wait() so one source (or several sources on the same
domain) never hammers a site.

Uses Redis when REDIS_URL is configured (shared across workers),
otherwise a per-process sliding window.

Key format: scrape:{domain}
"""
import logging
import time
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import redis
import yaml

logger = logging.getLogger(__name__)

DEFAULT_LIMITS = {
    "requests_per_minute": 10,
    "requests_per_hour": 200,
}

MAX_WAIT_ATTEMPTS = 60


def domain_for_url(url: str) -> str:
    """Hostname without a leading www."""
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


class ScraperRateLimiter:
    """Sliding-window rate limiter keyed by domain."""

    def __init__(self, config_path: Optional[str] = None, redis_url: Optional[str] = None,
                 sleep=time.sleep):
        """
        Args:
            config_path: YAML file with `defaults` and per-domain overrides.
                         Defaults to scrapers/config/scrape_rate_limits.yaml
            redis_url: Optional Redis URL for a shared window
            sleep: Injected for tests
        """
        self.config_path = config_path or str(
            Path(__file__).parent / "config" / "scrape_rate_limits.yaml"
        )
        self.redis_url = redis_url
        self._sleep = sleep
        self._config = None
        self._redis = None
        self._memory_store: Dict[str, list] = defaultdict(list)

    @property
    def config(self) -> Dict[str, Any]:
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _load_config(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f) or {}
                logger.info("Loaded scrape rate limits from %s", self.config_path)
                return config
        except FileNotFoundError:
            logger.warning("Rate limit config not found at %s, using defaults", self.config_path)
            return {"defaults": dict(DEFAULT_LIMITS), "domains": {}}

    @property
    def redis(self):
        """Redis client (lazy init); False sentinel after a failed connect."""
        if self._redis is None and self.redis_url:
            try:
                client = redis.from_url(self.redis_url)
                client.ping()
                self._redis = client
                logger.info("Scraper rate limiter using Redis")
            except redis.RedisError as e:
                logger.warning("Failed to connect to Redis, using in-process window: %s", e)
                self._redis = False
        return self._redis or None

    def get_limits(self, domain: str) -> Dict[str, int]:
        limits = dict(DEFAULT_LIMITS)
        limits.update(self.config.get("defaults") or {})
        limits.update((self.config.get("domains") or {}).get(domain) or {})
        return limits

    def wait(self, url: str):
        """Block until a request to url's domain is allowed, then record it."""
        domain = domain_for_url(url)
        limits = self.get_limits(domain)
        key = f"scrape:{domain}"

        for _ in range(MAX_WAIT_ATTEMPTS):
            now = time.time()
            minute_count, hour_count = self._counts(key, now)
            if (minute_count < limits["requests_per_minute"]
                    and hour_count < limits["requests_per_hour"]):
                self._record(key, now)
                return
            wait_time = 60 / max(1, limits["requests_per_minute"])
            logger.debug("Rate limited for %s, waiting %.1fs", domain, wait_time)
            self._sleep(wait_time)

        raise RuntimeError(f"Rate limit wait timeout for {domain}")

    def _counts(self, key: str, now: float):
        client = self.redis
        if client:
            pipe = client.pipeline()
            pipe.zremrangebyscore(f"{key}:minute", 0, now - 60)
            pipe.zremrangebyscore(f"{key}:hour", 0, now - 3600)
            pipe.zcard(f"{key}:minute")
            pipe.zcard(f"{key}:hour")
            results = pipe.execute()
            return results[2], results[3]

        window = [t for t in self._memory_store[key] if now - t < 3600]
        self._memory_store[key] = window
        return sum(1 for t in window if now - t < 60), len(window)

    def _record(self, key: str, now: float):
        client = self.redis
        if client:
            pipe = client.pipeline()
            pipe.zadd(f"{key}:minute", {str(now): now})
            pipe.zadd(f"{key}:hour", {str(now): now})
            pipe.expire(f"{key}:minute", 120)
            pipe.expire(f"{key}:hour", 7200)
            pipe.execute()
            return
        self._memory_store[key].append(now)
