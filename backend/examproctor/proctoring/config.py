from pydantic_settings import BaseSettings


class MonitorSettings(BaseSettings):
    """Client-side settings, read from ``MONITOR_*`` environment variables."""

    api_url: str = "http://localhost:8000"
    camera_index: int = 0

    interval_seconds: float = 3.0
    detection_threshold: int = 3
    face_match_threshold: float = 0.6
    head_horizontal_threshold: float = 0.4
    head_vertical_threshold: float = 0.45
    violation_dedup_seconds: float = 2.0
    request_timeout: float = 10.0

    class Config:
        env_prefix = "MONITOR_"
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


monitor_settings = MonitorSettings()
