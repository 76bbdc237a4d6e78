from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings for the clinic backend, read from the environment and ``.env``."""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")

    # Database
    DATABASE_URL: str = "sqlite:///./clinicflow.db"

    # Auth
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 1 day

    # File storage
    UPLOAD_DIR: str = "uploads"
    UPLOAD_URL_PREFIX: str = "/uploads"
    MAX_PLAN_ATTACHMENT_BYTES: int = 5 * 1024 * 1024
    MAX_LAB_REPORT_BYTES: int = 10 * 1024 * 1024
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # Booking
    DEFAULT_CONSULTATION_FEE: int = 500

    CORS_ORIGINS: List[str] = ["http://localhost:5173"]
    LOG_LEVEL: str = "INFO"


settings = Settings()
