"""Tests for feedcurator.fetchers.cached.CachedNewsSource."""
from __future__ import annotations

import asyncio
import json
import time

from factories import NOW, FakeNewsSource, make_cluster
from feedcurator.fetchers.cached import CachedNewsSource


class TestCachedNewsSource:
    def test_second_fetch_is_served_from_disk(self, tmp_path, us_locale):
        inner = FakeNewsSource({us_locale: [make_cluster("a1", "a2")]})
        cached = CachedNewsSource(inner, cache_dir=tmp_path)

        first = asyncio.run(cached.fetch(us_locale))
        second = asyncio.run(cached.fetch(us_locale))

        assert inner.calls == [us_locale]
        assert second[0].article_ids == first[0].article_ids
        assert second[0].published_at == NOW
        assert second[0].articles[0].headline == "Headline a1"

    def test_locales_have_separate_files(self, tmp_path, us_locale, fr_locale):
        inner = FakeNewsSource(
            {us_locale: [make_cluster("a1", "a2")], fr_locale: [make_cluster("f1", "f2")]}
        )
        cached = CachedNewsSource(inner, cache_dir=tmp_path)

        asyncio.run(cached.fetch(us_locale))
        french = asyncio.run(cached.fetch(fr_locale))

        assert french[0].article_ids == ["f1", "f2"]
        assert cached.cache_path(us_locale) != cached.cache_path(fr_locale)

    def test_expired_cache_is_refreshed(self, tmp_path, us_locale):
        inner = FakeNewsSource({us_locale: [make_cluster("a1", "a2")]})
        cached = CachedNewsSource(inner, cache_dir=tmp_path, ttl_minutes=60)
        asyncio.run(cached.fetch(us_locale))

        path = cached.cache_path(us_locale)
        data = json.loads(path.read_text(encoding="utf-8"))
        data["timestamp"] = time.time() - 2 * 3600
        path.write_text(json.dumps(data), encoding="utf-8")

        asyncio.run(cached.fetch(us_locale))
        assert len(inner.calls) == 2

    def test_corrupt_cache_is_removed_and_refetched(self, tmp_path, us_locale):
        inner = FakeNewsSource({us_locale: [make_cluster("a1", "a2")]})
        cached = CachedNewsSource(inner, cache_dir=tmp_path)
        path = cached.cache_path(us_locale)
        path.parent.mkdir(parents=True)
        path.write_text("{not json", encoding="utf-8")

        clusters = asyncio.run(cached.fetch(us_locale))

        assert clusters[0].article_ids == ["a1", "a2"]
        assert inner.calls == [us_locale]
        assert json.loads(path.read_text(encoding="utf-8"))["data"][0]["articles"][0]["id"] == "a1"

    def test_clear_removes_the_directory(self, tmp_path, us_locale):
        cache_dir = tmp_path / "cache"
        cached = CachedNewsSource(FakeNewsSource({us_locale: []}), cache_dir=cache_dir)
        asyncio.run(cached.fetch(us_locale))

        cached.clear()
        assert not cache_dir.exists()

    def test_file_access_runs_in_worker_threads(self, tmp_path, us_locale, monkeypatch):
        offloaded = []
        to_thread = asyncio.to_thread

        async def recording_to_thread(func, *args):
            offloaded.append(func.__name__)
            return await to_thread(func, *args)

        monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)
        cached = CachedNewsSource(
            FakeNewsSource({us_locale: [make_cluster("a1", "a2")]}), cache_dir=tmp_path
        )

        asyncio.run(cached.fetch(us_locale))
        asyncio.run(cached.fetch(us_locale))

        assert offloaded == ["_read", "_write", "_read"]
