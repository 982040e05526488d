from __future__ import annotations

import asyncio
import logging
import threading
import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from feedcurator.models.errors import FetchFailure
from feedcurator.models.types import Locale, RawArticle, RawCluster

logger = logging.getLogger(__name__)

API_URL = "https://api.worldnewsapi.com/top-news"
ARTICLE_ID_PREFIX = "worldnewsapi:"
RATE_LIMIT_SECONDS = 1.2

COUNTRY_TIMEZONES: dict[str, str] = {
    "FR": "Europe/Paris",
    "US": "America/New_York",
}


def country_date(country: str, now: datetime | None = None) -> str:
    """Today's date (YYYY-MM-DD) as seen in *country*'s time zone."""
    zone = ZoneInfo(COUNTRY_TIMEZONES.get(country.upper(), "UTC"))
    moment = now or datetime.now(tz=timezone.utc)
    return moment.astimezone(zone).strftime("%Y-%m-%d")


def _parse_publish_date(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_top_news(payload: dict) -> list[RawCluster]:
    """Turn a ``/top-news`` response into clusters; empty sections are dropped."""
    if not isinstance(payload, dict) or not isinstance(payload.get("top_news"), list):
        raise ValueError("Response has no top_news list")

    clusters: list[RawCluster] = []
    for section in payload["top_news"]:
        news = section.get("news") or []
        if not news:
            continue
        articles = [
            RawArticle(
                id=f"{ARTICLE_ID_PREFIX}{article['id']}",
                headline=article.get("title") or "",
                body=article.get("text") or "",
            )
            for article in news
        ]
        timestamps = [_parse_publish_date(article["publish_date"]).timestamp() for article in news]
        published_at = datetime.fromtimestamp(sum(timestamps) / len(timestamps), tz=timezone.utc)
        clusters.append(RawCluster(articles=articles, published_at=published_at))
    return clusters


class WorldNewsSource:
    """Fetches the day's top-news clusters for a locale from World News API."""

    def __init__(
        self,
        api_key: str,
        timeout: int = 30,
        rate_limit_seconds: float = RATE_LIMIT_SECONDS,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._rate_limit_seconds = rate_limit_seconds
        self._last_request = 0.0
        self._lock = threading.Lock()

    async def fetch(self, locale: Locale) -> list[RawCluster]:
        return await asyncio.to_thread(self.fetch_sync, locale)

    def fetch_sync(self, locale: Locale) -> list[RawCluster]:
        logger.debug("Fetching top news for %s", locale)
        try:
            payload = self._request(locale)
            clusters = parse_top_news(payload)
        except requests.RequestException as exc:
            logger.error("World News API request failed for %s: %s", locale, exc)
            raise FetchFailure(f"Could not fetch news for {locale}: {exc}") from exc
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("Unexpected World News API response for %s: %s", locale, exc)
            raise FetchFailure(f"Malformed news response for {locale}: {exc}") from exc

        logger.info("Fetched %d news clusters for %s", len(clusters), locale)
        return clusters

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def _request(self, locale: Locale) -> dict:
        self._wait_for_rate_limit()
        params = {
            "api-key": self._api_key,
            "source-country": locale.country.lower(),
            "language": locale.language.lower(),
            "date": country_date(locale.country),
        }
        response = requests.get(API_URL, params=params, timeout=self._timeout)
        response.raise_for_status()
        return response.json()

    def _wait_for_rate_limit(self) -> None:
        with self._lock:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self._rate_limit_seconds:
                time.sleep(self._rate_limit_seconds - elapsed)
            self._last_request = time.monotonic()
