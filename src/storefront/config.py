"""Runtime configuration for storefront."""

import os
from dataclasses import dataclass, field

# Can be overridden via STOREFRONT_* environment variables
DEFAULT_MONGODB_URI = "mongodb://localhost:27017"
DEFAULT_DB_NAME = "storefront"
DEFAULT_JWT_SECRET = "change-me-in-production"
DEFAULT_TOKEN_TTL_DAYS = 30
DEFAULT_CORS_ORIGINS = "http://localhost:3000,http://127.0.0.1:3000"


def _split_csv(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


@dataclass
class Settings:
    """Settings shared by the API, the CLI and the services."""

    mongodb_uri: str = DEFAULT_MONGODB_URI
    db_name: str = DEFAULT_DB_NAME
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_ttl_days: int = DEFAULT_TOKEN_TTL_DAYS
    cors_origins: list[str] = field(default_factory=lambda: _split_csv(DEFAULT_CORS_ORIGINS))
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build settings from the process environment (or the given mapping)."""
        env = os.environ if environ is None else environ
        return cls(
            mongodb_uri=env.get("STOREFRONT_MONGODB_URI", DEFAULT_MONGODB_URI),
            db_name=env.get("STOREFRONT_DB_NAME", DEFAULT_DB_NAME),
            jwt_secret=env.get("STOREFRONT_JWT_SECRET", DEFAULT_JWT_SECRET),
            token_ttl_days=int(env.get("STOREFRONT_TOKEN_TTL_DAYS", DEFAULT_TOKEN_TTL_DAYS)),
            cors_origins=_split_csv(env.get("STOREFRONT_CORS_ORIGINS", DEFAULT_CORS_ORIGINS)),
            log_level=env.get("STOREFRONT_LOG_LEVEL", "INFO").upper(),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the process-wide Settings, reading the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
