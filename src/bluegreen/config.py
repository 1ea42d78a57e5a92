"""Application configuration using pydantic-settings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class DatabaseSettings(BaseSettings):
    """Database configuration for the SQL ledger backend."""

    host: str = Field(default="localhost", alias="DB_HOST")
    port: int = Field(default=5432, alias="DB_PORT")
    name: str = Field(default="bluegreen", alias="DB_NAME")
    user: str = Field(default="bluegreen", alias="DB_USER")
    password: str = Field(default="", alias="DB_PASSWORD")
    pool_size: int = Field(default=5, alias="DB_POOL_SIZE")
    max_overflow: int = Field(default=5, alias="DB_MAX_OVERFLOW")
    pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT")

    @property
    def async_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    @property
    def sync_url(self) -> str:
        return (
            f"postgresql://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    model_config = {"env_prefix": "DB_", "extra": "ignore", "populate_by_name": True}


class RedisSettings(BaseSettings):
    """Redis configuration for the advisory deployment lock."""

    host: str = Field(default="localhost", alias="REDIS_HOST")
    port: int = Field(default=6379, alias="REDIS_PORT")
    password: str = Field(default="", alias="REDIS_PASSWORD")
    db: int = Field(default=0, alias="REDIS_DB")
    enabled: bool = Field(default=False, alias="REDIS_ENABLED")

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"

    model_config = {"env_prefix": "REDIS_", "extra": "ignore", "populate_by_name": True}


class KafkaSettings(BaseSettings):
    """Kafka configuration for deployment event publishing."""

    bootstrap_servers: str = Field(default="localhost:9092", alias="KAFKA_BOOTSTRAP_SERVERS")
    topic_prefix: str = Field(default="bluegreen", alias="KAFKA_TOPIC_PREFIX")
    enabled: bool = Field(default=False, alias="KAFKA_ENABLED")

    model_config = {"env_prefix": "KAFKA_", "extra": "ignore", "populate_by_name": True}


class ControlPlaneProvider(str, Enum):
    ECS = "ecs"
    SIMULATED = "simulated"


class ControlPlaneSettings(BaseSettings):
    """Remote control-plane configuration."""

    provider: ControlPlaneProvider = Field(
        default=ControlPlaneProvider.SIMULATED, alias="CONTROL_PLANE_PROVIDER"
    )
    region: str = Field(default="us-east-1", alias="CONTROL_PLANE_REGION")
    endpoint_url: str | None = Field(default=None, alias="CONTROL_PLANE_ENDPOINT_URL")
    container_name: str = Field(default="", alias="CONTROL_PLANE_CONTAINER_NAME")
    read_retry_attempts: int = Field(default=3, alias="CONTROL_PLANE_READ_RETRY_ATTEMPTS")
    read_retry_max_wait_seconds: float = Field(
        default=10.0, alias="CONTROL_PLANE_READ_RETRY_MAX_WAIT"
    )

    model_config = {
        "env_prefix": "CONTROL_PLANE_", "extra": "ignore", "populate_by_name": True,
    }


class RolloutSettings(BaseSettings):
    """Rollout timing, capacity and health policy."""

    poll_interval_seconds: float = Field(default=20.0, alias="ROLLOUT_POLL_INTERVAL")
    max_wait_seconds: float = Field(default=900.0, alias="ROLLOUT_MAX_WAIT")
    health_grace_period_seconds: float = Field(default=60.0, alias="ROLLOUT_HEALTH_GRACE_PERIOD")
    min_healthy_percent: int = Field(default=100, alias="ROLLOUT_MIN_HEALTHY_PERCENT")
    max_percent: int = Field(default=200, alias="ROLLOUT_MAX_PERCENT")
    min_healthy_ratio: float = Field(default=0.0, ge=0.0, le=1.0, alias="ROLLOUT_MIN_HEALTHY_RATIO")
    registration_timeout_seconds: float = Field(default=60.0, alias="ROLLOUT_REGISTRATION_TIMEOUT")
    update_timeout_seconds: float = Field(default=60.0, alias="ROLLOUT_UPDATE_TIMEOUT")
    lock_ttl_seconds: int = Field(default=3600, alias="ROLLOUT_LOCK_TTL")
    mutable_tags: list[str] = Field(
        default_factory=lambda: ["latest", "stable", "main", "master", "edge", "dev"],
        alias="ROLLOUT_MUTABLE_TAGS",
    )
    maintenance_window_start_hour: int = Field(default=2, alias="ROLLOUT_MAINTENANCE_START")
    maintenance_window_end_hour: int = Field(default=6, alias="ROLLOUT_MAINTENANCE_END")
    require_production_environment: bool = Field(
        default=False, alias="ROLLOUT_REQUIRE_PRODUCTION"
    )

    model_config = {"env_prefix": "ROLLOUT_", "extra": "ignore", "populate_by_name": True}


class LedgerBackend(str, Enum):
    MEMORY = "memory"
    FILE = "file"
    DATABASE = "database"


class LedgerSettings(BaseSettings):
    """Deployment ledger storage configuration."""

    backend: LedgerBackend = Field(default=LedgerBackend.FILE, alias="LEDGER_BACKEND")
    directory: str = Field(default="./ledger", alias="LEDGER_DIRECTORY")

    model_config = {"env_prefix": "LEDGER_", "extra": "ignore", "populate_by_name": True}


class ObservabilitySettings(BaseSettings):
    """Observability configuration."""

    otlp_endpoint: str = Field(default="http://localhost:4317", alias="OTLP_ENDPOINT")
    service_name: str = Field(default="bluegreen-orchestrator", alias="SERVICE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")
    tracing_enabled: bool = Field(default=False, alias="TRACING_ENABLED")

    model_config = {"env_prefix": "OBS_", "extra": "ignore", "populate_by_name": True}


class Settings(BaseSettings):
    """Main application settings."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")
    host: str = Field(default="0.0.0.0", alias="HOST")  # noqa: S104
    port: int = Field(default=8000, alias="PORT")
    workers: int = Field(default=1, alias="WORKERS")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    kafka: KafkaSettings = Field(default_factory=KafkaSettings)
    control_plane: ControlPlaneSettings = Field(default_factory=ControlPlaneSettings)
    rollout: RolloutSettings = Field(default_factory=RolloutSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
