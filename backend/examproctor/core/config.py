import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):

    port: int = 8000
    environment: str = "development"
    project_name: str = "Exam Proctoring API"

    postgres_user: str = os.getenv("POSTGRES_USER", "user")
    postgres_password: str = os.getenv("POSTGRES_PASSWORD", "password")
    postgres_db: str = os.getenv("POSTGRES_DB", "proctoring_db")
    postgres_host: str = os.getenv("POSTGRES_HOST", "db")
    postgres_port: int = 5432

    # full URI wins over the postgres_* parts (tests use sqlite)
    sqlalchemy_database_uri: Optional[str] = None

    @property
    def database_url(self) -> str:
        if self.sqlalchemy_database_uri:
            return self.sqlalchemy_database_uri
        return f"postgresql://{self.postgres_user}:{self.postgres_password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    refresh_token_expire_minutes: int = 10080

    cors_origins_str: str = "http://localhost:3000,http://localhost:5173"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins_str.split(",")]

    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    cache_default_ttl: int = 600

    slow_request_threshold: float = 1.0

    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
    celery_result_backend: str = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")
    celery_task_always_eager: bool = False

    default_timezone: str = "Asia/Almaty"
    timezone_display_format: str = "%d.%m.%Y, %H:%M:%S"

    default_warning_threshold: int = 3
    max_options_per_question: int = 6

    realtime_redis_fanout: bool = False
    realtime_channel: str = "proctoring:realtime"

    # server-side expiry sweep is off unless explicitly enabled
    enable_expiry_sweep: bool = False
    expiry_grace_minutes: int = 2

    enable_result_notifications: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
