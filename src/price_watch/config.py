from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


DEFAULT_DB_URL = "postgresql://price:price@db:5432/price_watch"
DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_OPENROUTER_MODEL = "openai/gpt-4o-mini"


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    try:
        return float(env.get(name, default))
    except (TypeError, ValueError):
        return default


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    try:
        return int(env.get(name, default))
    except (TypeError, ValueError):
        return default


@dataclass
class Settings:
    """Runtime configuration, read from the environment by ``from_env``."""

    db_url: str = DEFAULT_DB_URL
    cron_secret: Optional[str] = None
    llm_provider: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    openrouter_model: str = DEFAULT_OPENROUTER_MODEL
    openrouter_base_url: str = DEFAULT_OPENROUTER_BASE_URL
    llm_timeout_secs: float = 30.0
    alert_webhook_url: Optional[str] = None
    fetch_timeout_secs: float = 30.0
    fetch_min_delay_secs: float = 2.0
    fetch_max_delay_secs: float = 5.0
    batch_size: int = 10
    batch_pause_secs: float = 5.0
    run_timeout_secs: float = 300.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            db_url=env.get("DB_URL", DEFAULT_DB_URL),
            cron_secret=env.get("CRON_SECRET") or None,
            llm_provider=(env.get("LLM_PROVIDER") or "").strip().lower() or None,
            openrouter_api_key=env.get("OPENROUTER_API_KEY") or None,
            openrouter_model=env.get("OPENROUTER_MODEL", DEFAULT_OPENROUTER_MODEL),
            openrouter_base_url=env.get("OPENROUTER_BASE_URL", DEFAULT_OPENROUTER_BASE_URL),
            llm_timeout_secs=_float(env, "LLM_TIMEOUT_SECS", 30.0),
            alert_webhook_url=env.get("ALERT_WEBHOOK_URL") or None,
            fetch_timeout_secs=_float(env, "FETCH_TIMEOUT_SECS", 30.0),
            fetch_min_delay_secs=_float(env, "FETCH_MIN_DELAY_SECS", 2.0),
            fetch_max_delay_secs=_float(env, "FETCH_MAX_DELAY_SECS", 5.0),
            batch_size=max(1, _int(env, "BATCH_SIZE", 10)),
            batch_pause_secs=_float(env, "BATCH_PAUSE_SECS", 5.0),
            run_timeout_secs=_float(env, "RUN_TIMEOUT_SECS", 300.0),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )
