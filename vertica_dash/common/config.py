"""
Configuration for the dashboard API.

Every section is a pydantic model built from environment variables. Validation
failures are converted to ConfigInvalid so the server refuses to start with a
half-configured pool.
"""
import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigInvalid

DEVELOPMENT_ENVS = frozenset(["dev", "development", "local"])
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class VerticaConfig(BaseModel):
    """Vertica connection settings."""
    host: str = Field(..., min_length=1, description="Vertica host")
    port: int = Field(default=5433, description="Vertica port")
    database: str = Field(..., min_length=1, description="Database name")
    user: str = Field(..., min_length=1, description="Database user")
    password: str = Field(..., min_length=1, description="Database password")
    connection_timeout_ms: int = Field(default=10000, gt=0, description="Connection timeout in milliseconds")

    @field_validator("port", "connection_timeout_ms", mode="before")
    @classmethod
    def _digits_only(cls, value):
        # Environment values arrive as strings; only plain digit strings are accepted
        if isinstance(value, str):
            if not value.isdigit():
                raise ValueError(f"expected a non-negative integer, got {value!r}")
            return int(value)
        return value

    @property
    def connection_timeout(self) -> float:
        """Connection timeout in seconds."""
        return self.connection_timeout_ms / 1000

    def connection_info(self) -> dict:
        """Keyword arguments for vertica_python.connect()."""
        return {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "connection_timeout": self.connection_timeout,
        }

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VerticaConfig":
        env = os.environ if environ is None else environ
        values = {
            "host": env.get("VERTICA_HOST"),
            "port": env.get("VERTICA_PORT") or "5433",
            "database": env.get("VERTICA_DATABASE"),
            "user": env.get("VERTICA_USER"),
            "password": env.get("VERTICA_PASSWORD"),
            "connection_timeout_ms": env.get("VERTICA_CONNECTION_TIMEOUT") or "10000",
        }
        return _build(cls, values)


class PoolConfig(BaseModel):
    """Connection pool sizing, timeouts and retry policy. Durations are seconds."""
    min_size: int = Field(default=1, ge=0)
    max_size: int = Field(default=10, ge=1)
    acquire_timeout: float = Field(default=10.0, gt=0)
    idle_timeout: float = Field(default=300.0, gt=0, description="Idle connections past this are evicted down to min_size")
    soft_idle_timeout: float = Field(default=120.0, gt=0, description="Idle connections past this are probed before reuse")
    eviction_interval: float = Field(default=60.0, gt=0)
    evictions_per_run: int = Field(default=3, ge=1)
    query_timeout: float = Field(default=120.0, gt=0)
    validation_timeout: float = Field(default=10.0, gt=0)
    drain_timeout: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=10.0, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.min_size > self.max_size:
            raise ValueError(f"min_size ({self.min_size}) exceeds max_size ({self.max_size})")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PoolConfig":
        env = os.environ if environ is None else environ
        mapping = {
            "min_size": "POOL_MIN_SIZE",
            "max_size": "POOL_MAX_SIZE",
            "acquire_timeout": "POOL_ACQUIRE_TIMEOUT",
            "idle_timeout": "POOL_IDLE_TIMEOUT",
            "soft_idle_timeout": "POOL_SOFT_IDLE_TIMEOUT",
            "eviction_interval": "POOL_EVICTION_INTERVAL",
            "query_timeout": "POOL_QUERY_TIMEOUT",
            "validation_timeout": "POOL_VALIDATION_TIMEOUT",
            "retry_attempts": "POOL_RETRY_ATTEMPTS",
        }
        values = {field: env[name] for field, name in mapping.items() if env.get(name)}
        return _build(cls, values)


class CacheConfig(BaseModel):
    """Response cache settings."""
    default_ttl: int = Field(default=300, ge=0, description="Default entry TTL in seconds (0 = no expiry)")
    max_keys: int = Field(default=100, ge=1, description="Maximum number of cached keys")
    check_period: int = Field(default=60, gt=0, description="Seconds between expiry sweeps")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CacheConfig":
        env = os.environ if environ is None else environ
        mapping = {
            "default_ttl": "CACHE_DEFAULT_TTL",
            "max_keys": "CACHE_MAX_KEYS",
            "check_period": "CACHE_CHECK_PERIOD",
        }
        values = {field: env[name] for field, name in mapping.items() if env.get(name)}
        return _build(cls, values)


class ServerConfig(BaseModel):
    """HTTP server settings."""
    app_env: str = Field(default="production")
    log_level: str = Field(default="INFO")
    cors_origins: list = Field(default_factory=lambda: ["http://localhost:3000"])

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"expected one of {', '.join(LOG_LEVELS)}, got {value!r}")
        return level

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() in DEVELOPMENT_ENVS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        env = os.environ if environ is None else environ
        origins = env.get("CORS_ALLOWED_ORIGINS", "http://localhost:3000")
        values = {
            "app_env": env.get("APP_ENV", "production"),
            "log_level": env.get("LOG_LEVEL", "INFO"),
            "cors_origins": [origin.strip() for origin in origins.split(",") if origin.strip()],
        }
        return _build(cls, values)


class AppConfig(BaseModel):
    """Main configuration."""
    vertica: VerticaConfig
    pool: PoolConfig = Field(default_factory=PoolConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        return cls(
            vertica=VerticaConfig.from_env(environ),
            pool=PoolConfig.from_env(environ),
            cache=CacheConfig.from_env(environ),
            server=ServerConfig.from_env(environ),
        )


def _build(model, values: dict):
    try:
        return model(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or model.__name__}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigInvalid(f"Invalid {model.__name__}: {problems}") from e
