from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class Settings:
    postgres_user: str = os.getenv("POSTGRES_USER", "app")
    postgres_password: str = os.getenv("POSTGRES_PASSWORD", "app")
    postgres_db: str = os.getenv("POSTGRES_DB", "game")
    postgres_host: str = os.getenv("POSTGRES_HOST", "localhost")
    postgres_port: int = int(os.getenv("POSTGRES_PORT", "5432"))

    # AdMob rotates verifier keys and asks clients not to cache longer than 24h.
    ssv_keys_url: str = os.getenv(
        "SSV_KEYS_URL", "https://www.gstatic.com/admob/reward/verifier-keys.json"
    )
    ssv_keys_ttl_seconds: int = int(os.getenv("SSV_KEYS_TTL_SECONDS", str(20 * 3600)))
    ssv_keys_timeout_seconds: float = float(os.getenv("SSV_KEYS_TIMEOUT_SECONDS", "5"))
    # shorter bound for refreshes triggered by a key id the fresh cache lacks
    ssv_keys_miss_timeout_seconds: float = float(os.getenv("SSV_KEYS_MISS_TIMEOUT_SECONDS", "2"))

    http_retries: int = int(os.getenv("HTTP_RETRIES", "2"))
    http_backoff: float = float(os.getenv("HTTP_BACKOFF", "0.5"))

    ensure_schema: bool = os.getenv("SSV_ENSURE_SCHEMA", "1") in {"1", "true", "True"}


settings = Settings()
