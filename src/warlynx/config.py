from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Provider API keys ---
    openai_api_key: str = ""
    anthropic_api_key: str = ""

    # --- Default provider & model tier ---
    default_provider: str = "openai"  # openai | anthropic

    # Narration runs hot, perk generation slightly cooler
    default_strong_temperature: float = 0.8
    default_fast_temperature: float = 0.7

    # --- Data paths ---
    prompts_dir: str = str(Path(__file__).parent / "prompts" / "templates")

    # --- Database ---
    database_url: str = f"sqlite+aiosqlite:///{_PROJECT_ROOT / 'warlynx.db'}"

    # --- Turn resolution ---
    narrative_timeout_seconds: float = 15.0
    stuck_turn_timeout_seconds: float = 30.0
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_backoff_multiplier: float = 2.0

    # One level every N action / stat_change events
    level_up_frequency: int = 3
    recent_events_limit: int = 20
    max_action_length: int = 5000


settings = Settings()
