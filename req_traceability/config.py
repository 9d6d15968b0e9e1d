"""
Application configuration using Pydantic Settings.
All environment-specific values are centralized here.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── App ──────────────────────────────────────────────
    app_name: str = "Requirements Traceability"
    debug: bool = True
    mock_mode: bool = True  # When True, the in-memory repository is used

    # ── MongoDB ──────────────────────────────────────────
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "req_traceability"

    # ── Requirement identifiers ──────────────────────────
    requirement_id_prefix_length: int = 8
    requirement_id_pad_width: int = 3
    requirement_id_scan_attempts: int = 10
    requirement_id_fallback_attempts: int = 1000

    # ── Spreadsheet import ───────────────────────────────
    preferred_sheet_names: list[str] = ["Requirements", "Standard Format"]

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
