"""
Service configuration.

Values are read from environment variables (and a local ``.env`` file,
if present) once at import time.  Override them in the deployment
environment rather than editing defaults here.
"""

import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _split_csv(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    project_name: str = os.getenv("PROJECT_NAME", "Perks API")
    api_version: str = os.getenv("API_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "")

    # MongoDB connection.  When DATABASE_URL is unset the service still
    # starts, but every data endpoint answers 503.
    database_url: str = os.getenv("DATABASE_URL", "")
    database_name: str = os.getenv("DATABASE_NAME", "perks")
    db_timeout_ms: int = int(os.getenv("DB_TIMEOUT_MS", "5000"))

    # Header set by the upstream auth proxy with the caller's user id.
    auth_user_header: str = os.getenv("AUTH_USER_HEADER", "X-User-Id")

    cors_origins: List[str] = field(
        default_factory=lambda: _split_csv(os.getenv("CORS_ORIGINS", "*"))
    )

    # Upper bound on concurrent legacy creator lookups per request.
    creator_lookup_workers: int = int(os.getenv("CREATOR_LOOKUP_WORKERS", "8"))

    port: int = int(os.getenv("PORT", "8000"))


settings = Settings()
