from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from feedcurator.models.types import Locale

load_dotenv()

CONFIG_FILE = Path("feedcurator_config.json")

REQUIRED_ENV_VARS = [
    "WORLD_NEWS_API_KEY",
    "OPENROUTER_API_KEY",
]

INGEST_DEDUP_MODES = ("merge", "defer")

DEFAULT_CONFIG: dict[str, Any] = {
    "locales": [
        {"country": "US", "language": "EN"},
        {"country": "FR", "language": "FR"},
    ],
    "schedule_interval_hours": 2,
    "database_path": "feedcurator.db",
    "use_news_cache": False,
    "news_cache_dir": None,
    "news_cache_ttl_minutes": 60,
    "ingest_dedup_mode": "merge",
    "reconcile_enabled": True,
    "dedup_window_days": 7,
    "dedup_corpus_limit": 1000,
    "known_sources_limit": 5000,
    "reconcile_batch_size": 50,
    "classification_batch_size": 50,
    "publish_batch_size": 20,
    "quiz_enabled": True,
    "quiz_batch_size": 20,
    "fabrication_min_baseline": 10,
    "fabrication_sample_size": 10,
    "fabrication_max_per_run": 3,
    "openrouter_model": "google/gemini-2.5-flash",
    "oracle_models": {
        "ingestion": "google/gemini-2.5-flash",
        "deduplication": "google/gemini-2.5-flash",
        "classification": "google/gemini-2.5-flash",
        "composition": "google/gemini-2.5-pro",
        "fabrication": "google/gemini-2.5-pro",
        "quiz": "google/gemini-2.5-flash",
    },
    "log_level": "INFO",
    "log_file": "feedcurator.log",
}


@dataclass
class Settings:
    """Holds all application configuration loaded from environment variables and config file."""

    world_news_api_key: str
    openrouter_api_key: str
    locales: list[Locale] = field(default_factory=list)
    schedule_interval_hours: int = 2
    database_path: str = "feedcurator.db"
    use_news_cache: bool = False
    news_cache_dir: str | None = None
    news_cache_ttl_minutes: int = 60
    ingest_dedup_mode: str = "merge"
    reconcile_enabled: bool = True
    dedup_window_days: int = 7
    dedup_corpus_limit: int = 1000
    known_sources_limit: int = 5000
    reconcile_batch_size: int = 50
    classification_batch_size: int = 50
    publish_batch_size: int = 20
    quiz_enabled: bool = True
    quiz_batch_size: int = 20
    fabrication_min_baseline: int = 10
    fabrication_sample_size: int = 10
    fabrication_max_per_run: int = 3
    openrouter_model: str = "google/gemini-2.5-flash"
    oracle_models: dict[str, str] = field(default_factory=dict)
    log_level: str = "INFO"
    log_file: str = "feedcurator.log"

    def model_for(self, oracle: str) -> str:
        return self.oracle_models.get(oracle) or self.openrouter_model


def _load_config_file(path: Path = CONFIG_FILE) -> dict[str, Any]:
    if path.exists():
        with open(path, encoding="utf-8") as f:
            user_config = json.load(f)
        merged = {**DEFAULT_CONFIG, **user_config}
        return merged
    return dict(DEFAULT_CONFIG)


def _validate_env_vars() -> dict[str, str]:
    env_values: dict[str, str] = {}
    missing: list[str] = []
    for var in REQUIRED_ENV_VARS:
        value = os.getenv(var)
        if not value:
            missing.append(var)
        else:
            env_values[var] = value
    if missing:
        raise EnvironmentError(
            f"Missing required environment variables: {', '.join(missing)}. "
            "Please set them in your .env file or system environment."
        )
    return env_values


def _parse_locales(raw: list[dict[str, str]]) -> list[Locale]:
    locales: list[Locale] = []
    for entry in raw:
        locale = Locale(country=entry["country"], language=entry["language"])
        if locale not in locales:
            locales.append(locale)
    return locales


def load_settings(config_path: Path = CONFIG_FILE) -> Settings:
    env_values = _validate_env_vars()
    config = _load_config_file(config_path)

    ingest_dedup_mode = config.get("ingest_dedup_mode", DEFAULT_CONFIG["ingest_dedup_mode"])
    if ingest_dedup_mode not in INGEST_DEDUP_MODES:
        raise EnvironmentError(
            f"Invalid ingest_dedup_mode '{ingest_dedup_mode}'. "
            f"Expected one of: {', '.join(INGEST_DEDUP_MODES)}."
        )

    reconcile_enabled = config.get("reconcile_enabled", DEFAULT_CONFIG["reconcile_enabled"])
    if ingest_dedup_mode == "defer" and not reconcile_enabled:
        raise EnvironmentError(
            "ingest_dedup_mode 'defer' needs reconcile_enabled: deferred records are only "
            "deduplicated by the reconciliation pass."
        )

    oracle_models = {
        **DEFAULT_CONFIG["oracle_models"],
        **config.get("oracle_models", {}),
    }

    return Settings(
        world_news_api_key=env_values["WORLD_NEWS_API_KEY"],
        openrouter_api_key=env_values["OPENROUTER_API_KEY"],
        locales=_parse_locales(config.get("locales", DEFAULT_CONFIG["locales"])),
        schedule_interval_hours=config.get(
            "schedule_interval_hours", DEFAULT_CONFIG["schedule_interval_hours"]
        ),
        database_path=config.get("database_path", DEFAULT_CONFIG["database_path"]),
        use_news_cache=config.get("use_news_cache", DEFAULT_CONFIG["use_news_cache"]),
        news_cache_dir=config.get("news_cache_dir", DEFAULT_CONFIG["news_cache_dir"]),
        news_cache_ttl_minutes=config.get(
            "news_cache_ttl_minutes", DEFAULT_CONFIG["news_cache_ttl_minutes"]
        ),
        ingest_dedup_mode=ingest_dedup_mode,
        reconcile_enabled=reconcile_enabled,
        dedup_window_days=config.get("dedup_window_days", DEFAULT_CONFIG["dedup_window_days"]),
        dedup_corpus_limit=config.get("dedup_corpus_limit", DEFAULT_CONFIG["dedup_corpus_limit"]),
        known_sources_limit=config.get(
            "known_sources_limit", DEFAULT_CONFIG["known_sources_limit"]
        ),
        reconcile_batch_size=config.get(
            "reconcile_batch_size", DEFAULT_CONFIG["reconcile_batch_size"]
        ),
        classification_batch_size=config.get(
            "classification_batch_size", DEFAULT_CONFIG["classification_batch_size"]
        ),
        publish_batch_size=config.get("publish_batch_size", DEFAULT_CONFIG["publish_batch_size"]),
        quiz_enabled=config.get("quiz_enabled", DEFAULT_CONFIG["quiz_enabled"]),
        quiz_batch_size=config.get("quiz_batch_size", DEFAULT_CONFIG["quiz_batch_size"]),
        fabrication_min_baseline=config.get(
            "fabrication_min_baseline", DEFAULT_CONFIG["fabrication_min_baseline"]
        ),
        fabrication_sample_size=config.get(
            "fabrication_sample_size", DEFAULT_CONFIG["fabrication_sample_size"]
        ),
        fabrication_max_per_run=config.get(
            "fabrication_max_per_run", DEFAULT_CONFIG["fabrication_max_per_run"]
        ),
        openrouter_model=config.get("openrouter_model", DEFAULT_CONFIG["openrouter_model"]),
        oracle_models=oracle_models,
        log_level=config.get("log_level", DEFAULT_CONFIG["log_level"]),
        log_file=config.get("log_file", DEFAULT_CONFIG["log_file"]),
    )
