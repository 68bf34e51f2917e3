from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Loads keys from process env, and also from a local .env file for convenience.
    model_config = SettingsConfigDict(env_prefix="", extra="ignore", env_file=".env", env_file_encoding="utf-8")

    data_dir: str = "data"

    # Keys
    openai_api_key: str | None = None
    gemini_api_key: str | None = None

    # Models (set via env vars as needed)
    openai_text_model: str = "gpt-4.1-mini"
    gemini_vision_model: str = "gemini-2.0-flash"

    # Token budgets per request type
    chat_max_tokens: int = 1024
    batch_max_tokens: int = 3000
    single_shot_max_tokens: int = 1024
    analysis_max_tokens: int = 2048
    plan_max_tokens: int = 2048
    review_max_tokens: int = 1024
    review_video_max_tokens: int = 4096
    learn_max_tokens: int = 2048

    # Readiness percent for 0, 1, 2, ... user turns; past the end of the table it is 100.
    readiness_steps: list[int] = [10, 33, 66]
    history_limit: int = 20
    batch_count: int = 3
    items_per_batch: int = 2

    # None disables the per-batch timeout.
    batch_timeout_s: float | None = None

    # Logging
    log_level: str = "INFO"
    log_dir: str | None = None


settings = Settings()
