"""Tests for feedcurator.fetchers.world_news."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests
from tenacity import wait_none

from feedcurator.fetchers.world_news import (
    API_URL,
    WorldNewsSource,
    country_date,
    parse_top_news,
)
from feedcurator.models.errors import FetchFailure
from feedcurator.models.types import Locale

PAYLOAD = {
    "country": "us",
    "language": "en",
    "top_news": [
        {
            "news": [
                {"id": 1, "title": "Summit opens", "text": "Leaders meet.", "publish_date": "2024-03-10T12:00:00Z"},
                {"id": 2, "title": "Leaders arrive", "text": "Motorcades.", "publish_date": "2024-03-11T12:00:00Z"},
            ]
        },
        {"news": []},
        {
            "news": [
                {"id": 3, "title": "Storm warning", "text": "Coastal alert.", "publish_date": "2024-03-10 08:00:00"},
            ]
        },
    ],
}


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(WorldNewsSource._request.retry, "wait", wait_none())


def _response(payload=None, status_error=None):
    response = MagicMock()
    response.json.return_value = payload
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    return response


class TestParseTopNews:
    def test_sections_become_clusters(self):
        clusters = parse_top_news(PAYLOAD)

        assert len(clusters) == 2
        assert clusters[0].article_ids == ["worldnewsapi:1", "worldnewsapi:2"]
        assert clusters[0].articles[0].headline == "Summit opens"
        assert clusters[0].articles[0].body == "Leaders meet."

    def test_cluster_time_is_the_mean_publish_date(self):
        clusters = parse_top_news(PAYLOAD)

        assert clusters[0].published_at == datetime(2024, 3, 11, 0, 0, tzinfo=timezone.utc)
        assert clusters[1].published_at == datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)

    def test_missing_top_news_is_an_error(self):
        with pytest.raises(ValueError):
            parse_top_news({"status": "failure"})


class TestCountryDate:
    def test_uses_the_country_time_zone(self):
        late_utc = datetime(2024, 3, 10, 2, 30, tzinfo=timezone.utc)
        assert country_date("US", late_utc) == "2024-03-09"
        assert country_date("FR", late_utc) == "2024-03-10"


class TestWorldNewsSource:
    @patch("feedcurator.fetchers.world_news.requests.get")
    def test_fetch_builds_the_request(self, mock_get):
        mock_get.return_value = _response(PAYLOAD)
        source = WorldNewsSource("secret", rate_limit_seconds=0)

        clusters = asyncio.run(source.fetch(Locale("US", "EN")))

        assert len(clusters) == 2
        args, kwargs = mock_get.call_args
        assert args[0] == API_URL
        params = kwargs["params"]
        assert params["api-key"] == "secret"
        assert params["source-country"] == "us"
        assert params["language"] == "en"
        assert len(params["date"]) == 10

    @patch("feedcurator.fetchers.world_news.requests.get")
    def test_retries_then_raises_fetch_failure(self, mock_get, no_retry_wait):
        mock_get.side_effect = requests.ConnectionError("unreachable")
        source = WorldNewsSource("secret", rate_limit_seconds=0)

        with pytest.raises(FetchFailure) as excinfo:
            source.fetch_sync(Locale("FR", "FR"))
        assert mock_get.call_count == 3
        assert isinstance(excinfo.value.__cause__, requests.ConnectionError)

    @patch("feedcurator.fetchers.world_news.requests.get")
    def test_http_error_is_retried(self, mock_get, no_retry_wait):
        mock_get.side_effect = [
            _response(status_error=requests.HTTPError("502 Bad Gateway")),
            _response(PAYLOAD),
        ]
        source = WorldNewsSource("secret", rate_limit_seconds=0)

        clusters = source.fetch_sync(Locale("US", "EN"))
        assert len(clusters) == 2
        assert mock_get.call_count == 2

    @patch("feedcurator.fetchers.world_news.requests.get")
    def test_malformed_payload_raises_fetch_failure(self, mock_get):
        mock_get.return_value = _response({"unexpected": True})
        source = WorldNewsSource("secret", rate_limit_seconds=0)

        with pytest.raises(FetchFailure):
            source.fetch_sync(Locale("US", "EN"))
        assert mock_get.call_count == 1
