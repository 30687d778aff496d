"""
ExamGuard Configuration Settings

Proctoring cadence, grace periods and result submission are all
environment-driven so the same build can run in the lab and in production.
"""
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Configuration for the proctoring service."""

    # API Settings
    APP_NAME: str = "ExamGuard Proctoring Service"
    DEBUG: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: str = "logs"

    # Sampling cadence (milliseconds)
    ACTIVE_SAMPLE_INTERVAL_MS: int = 500
    PREVIEW_SAMPLE_INTERVAL_MS: int = 800  # Slower interval for setup preview

    # Violation policy
    NO_FACE_TIMEOUT_TICKS: int = 10  # 10 ticks at 500ms = 5 seconds
    COUNTDOWN_TICK_SECONDS: float = 1.0

    # Perception oracles
    OBJECT_MIN_SCORE: float = 0.5
    OBJECT_MODEL_PATH: Optional[str] = None  # Falls back to COCO yolov8n

    # Camera
    CAMERA_INDEX: int = 0
    FRAME_WIDTH: int = 640
    FRAME_HEIGHT: int = 480
    STREAM_STALE_SECONDS: float = 3.0  # No new frame for this long counts as no face

    # Sessions
    SETUP_IDLE_TIMEOUT_SECONDS: float = 300.0  # Abandoned setup sessions are discarded

    # Results
    PASS_SCORE: int = 70  # Badge awarded at or above this score
    RESULTS_API_URL: Optional[str] = None
    RESULTS_API_TOKEN: Optional[str] = None
    RESULTS_API_TIMEOUT: float = 10.0
    RESULTS_FALLBACK_PATH: str = "data/results.jsonl"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
