import re
from pydantic_settings import BaseSettings
from pydantic import field_validator
from pathlib import Path
from typing import List

class Settings(BaseSettings):
    """Configuration settings for the application, loaded from .env file."""

    # Application Settings
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    CORS_ORIGINS: List[str] = ["*"]
    SCRIPT_URL: str = "https://ztas.io/js/analytics.js"

    # Database configuration
    DATABASE_URL: str

    # Auth
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRY: str = "7d"
    HASH_SECRET: str = "zta-default-hash-secret"
    BCRYPT_ROUNDS: int = 12
    TRIAL_DAYS: int = 14
    RESET_TOKEN_TTL_SECONDS: int = 3600
    INVITE_TTL_DAYS: int = 7

    # Rate limiting
    RATELIMIT_ENABLED: bool = True
    DEFAULT_RATELIMIT: str = "100/15minutes"
    API_RATELIMIT: str = "100/minute"
    TRACK_ENDPOINT_RATELIMIT: str = "1000/minute"
    LOGIN_RATELIMIT: str = "10/minute"
    REGISTER_RATELIMIT: str = "5/minute"
    PASSWORD_RESET_RATELIMIT: str = "5/15minutes"

    # Kafka Settings
    KAFKA_ENABLED: bool = False
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:29092"
    KAFKA_MAIN_TOPIC: str = "zta_events"
    KAFKA_DLQ_TOPIC: str = "zta_events_dlq"
    KAFKA_CONSUMER_GROUP_ID: str = "zta_worker_group"

    # Worker Settings
    WORKER_POLL_TIMEOUT: float = 1.0
    WORKER_MAX_POLL_RECORDS: int = 100
    WORKER_HEALTHCHECK_FILE_PATH: str = "/tmp/zta_worker_healthy"

    # Blob store
    BLOB_BACKEND: str = "redis"
    BLOB_NAMESPACE: str = "zta"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Webhooks & alerts
    WEBHOOK_TIMEOUT: float = 10.0
    WEBHOOK_MAX_FAILURES: int = 10
    REALTIME_WINDOW_MINUTES: int = 5
    ERROR_DEDUP_WINDOW_SECONDS: int = 3600

    @field_validator("JWT_SECRET")
    @classmethod
    def jwt_secret_length(cls, v: str) -> str:
        if len(v) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters")
        return v

    @field_validator("JWT_EXPIRY")
    @classmethod
    def jwt_expiry_format(cls, v: str) -> str:
        if not re.match(r"^\d+[mhdwy]$", v):
            raise ValueError("JWT_EXPIRY must look like 30m, 24h, 7d, 2w or 1y")
        return v

    @field_validator("BLOB_BACKEND")
    @classmethod
    def blob_backend_choice(cls, v: str) -> str:
        if v not in ("redis", "memory"):
            raise ValueError("BLOB_BACKEND must be 'redis' or 'memory'")
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    class Config:
        env_file = Path(__file__).resolve().parent.parent / ".env"
        env_file_encoding = 'utf-8'
        extra = "ignore" # Ignore extra fields from .env

# Create a single, globally importable settings instance
settings = Settings()
