"""Engine configuration loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Tunable windows and limits for the compliance engine.

    Values are read from ``COMPLIANCE_*`` environment variables or a
    ``.env`` file, e.g. ``COMPLIANCE_DUE_SOON_DAYS=21``.
    """

    model_config = SettingsConfigDict(
        env_prefix="COMPLIANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Obligations
    due_soon_days: int = 30
    very_soon_days: int = 7

    # Review scanner
    duplicate_window_days: int = 2
    duplicate_similarity: float = 0.8

    # Scorer
    receipt_min_expense_count: int = 5

    # Service
    max_workers: int = 4
    log_level: str = "INFO"


settings = EngineSettings()
