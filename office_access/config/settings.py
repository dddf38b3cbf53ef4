"""
Environment-driven settings for the access-control core.

Configuration:
- DATABASE_URL: SQLAlchemy URL (postgres:// is normalised)
- TOKEN_VERIFICATION_API_URL: Token verifier endpoint; empty disables verification
- TOKEN_VERIFICATION_API_KEY: Bearer key for the verifier
- TOKEN_VERIFICATION_TIMEOUT_SECONDS: httpx timeout (default: 10)
- FEATURE_CATALOG_PATH: YAML feature catalog (default: config/feature_catalog.yml)
- FEATURE_EXPIRATION_INTERVAL: Seconds between expiry sweeps (default: 3600)
- LOG_LEVEL: Log level for job entry points (default: INFO)
"""

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_FEATURE_CATALOG_PATH = "config/feature_catalog.yml"


def normalize_database_url(database_url: Optional[str]) -> Optional[str]:
    """SQLAlchemy requires postgresql:// rather than postgres://."""
    if database_url and database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


@dataclass(frozen=True)
class AccessSettings:
    database_url: Optional[str] = None
    token_verification_api_url: str = ""
    token_verification_api_key: str = ""
    token_verification_timeout_seconds: float = 10.0
    feature_catalog_path: str = DEFAULT_FEATURE_CATALOG_PATH
    feature_expiration_interval: int = 3600
    log_level: str = "INFO"

    @property
    def token_verification_enabled(self) -> bool:
        return bool(self.token_verification_api_url)

    @classmethod
    def from_env(cls) -> "AccessSettings":
        return cls(
            database_url=normalize_database_url(os.getenv("DATABASE_URL")),
            token_verification_api_url=os.getenv("TOKEN_VERIFICATION_API_URL", ""),
            token_verification_api_key=os.getenv("TOKEN_VERIFICATION_API_KEY", ""),
            token_verification_timeout_seconds=float(
                os.getenv("TOKEN_VERIFICATION_TIMEOUT_SECONDS", "10")
            ),
            feature_catalog_path=os.getenv("FEATURE_CATALOG_PATH", DEFAULT_FEATURE_CATALOG_PATH),
            feature_expiration_interval=int(os.getenv("FEATURE_EXPIRATION_INTERVAL", "3600")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
