from __future__ import annotations

import asyncio
import json
import logging
import shutil
import tempfile
import time
from datetime import datetime
from pathlib import Path

from feedcurator.models.types import Locale, RawArticle, RawCluster
from feedcurator.oracles.base import NewsSource

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 60


def default_cache_dir(environment: str = "development") -> Path:
    return Path(tempfile.gettempdir()) / "feedcurator" / environment


class CachedNewsSource:
    """Wraps any news source with a JSON file cache, one file per locale.

    Cache files hold ``{"data": [...], "timestamp": <epoch seconds>}``. Files
    that are empty, unreadable or older than the TTL are removed and the
    wrapped source is asked again.
    """

    def __init__(
        self,
        source: NewsSource,
        cache_dir: str | Path | None = None,
        ttl_minutes: int = DEFAULT_TTL_MINUTES,
    ) -> None:
        self._source = source
        self._cache_dir = Path(cache_dir) if cache_dir else default_cache_dir()
        self._ttl_seconds = ttl_minutes * 60
        logger.info(
            "News cache enabled at %s (ttl %d minutes)", self._cache_dir, ttl_minutes
        )

    def cache_path(self, locale: Locale) -> Path:
        return self._cache_dir / "reports" / f"{locale.country.lower()}-{locale.language.lower()}.json"

    async def fetch(self, locale: Locale) -> list[RawCluster]:
        cached = await asyncio.to_thread(self._read, locale)
        if cached is not None:
            logger.info("News cache hit for %s (%d clusters)", locale, len(cached))
            return cached

        logger.info("News cache miss for %s", locale)
        clusters = await self._source.fetch(locale)
        await asyncio.to_thread(self._write, locale, clusters)
        return clusters

    def clear(self) -> None:
        if self._cache_dir.exists():
            shutil.rmtree(self._cache_dir, ignore_errors=True)
            logger.info("News cache cleared at %s", self._cache_dir)

    def _read(self, locale: Locale) -> list[RawCluster] | None:
        path = self.cache_path(locale)
        if not path.exists():
            return None
        try:
            content = path.read_text(encoding="utf-8")
            if not content.strip():
                logger.warning("News cache file %s is empty, removing", path)
                self._remove(path)
                return None
            cache = json.loads(content)
            if time.time() - float(cache["timestamp"]) > self._ttl_seconds:
                logger.info("News cache for %s expired, removing", locale)
                self._remove(path)
                return None
            return [_cluster_from_dict(entry) for entry in cache["data"]]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.error("Error reading news cache %s: %s", path, exc)
            self._remove(path)
            return None

    def _write(self, locale: Locale, clusters: list[RawCluster]) -> None:
        path = self.cache_path(locale)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = {
                "data": [_cluster_to_dict(cluster) for cluster in clusters],
                "timestamp": time.time(),
            }
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            logger.debug("Wrote %d clusters to news cache %s", len(clusters), path)
        except OSError as exc:
            logger.error("Error writing news cache %s: %s", path, exc)

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Error removing news cache file %s: %s", path, exc)


def _cluster_to_dict(cluster: RawCluster) -> dict:
    return {
        "articles": [
            {"id": a.id, "headline": a.headline, "body": a.body} for a in cluster.articles
        ],
        "published_at": cluster.published_at.isoformat(),
    }


def _cluster_from_dict(data: dict) -> RawCluster:
    return RawCluster(
        articles=[
            RawArticle(id=a["id"], headline=a["headline"], body=a["body"])
            for a in data["articles"]
        ],
        published_at=datetime.fromisoformat(data["published_at"]),
    )
