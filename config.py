"""Centralized configuration using pydantic-settings."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Gmail OAuth2
    gmail_credentials_json: str = ""
    gmail_token_json: str = ""

    # Mailbox labels that collect newsletters not yet registered as sources
    newsstand_labels: str = "newsstand-ai,newsstand-marketing"

    # Fetch window: always look back this far and rely on message-id dedup
    fetch_window_hours: int = 48

    # Sender fetch sizing (at least N emails per source, never below the floor)
    min_results_per_source: int = 3
    min_sender_fetch_results: int = 300
    label_fetch_results: int = 150

    # Per-sender fallback for registered senders missing from the batch
    fallback_sender_cap: int = 20
    fallback_per_sender_results: int = 3

    # Article extraction
    max_articles_per_run: int = 200
    article_batch_size: int = 10
    article_max_age_hours: int = 48
    article_fetch_timeout: int = 15

    # Tagged email notes ("Subject +dailyrepo" from any sender)
    note_subject_tag: str = "+dailyrepo"
    note_hours_back: int = 24
    note_max_results: int = 50
    note_default_title: str = "E-Mail Notiz"

    # Unregistered sender discovery
    discovery_floor_days: int = 2
    discovery_fallback_days: int = 7
    discovery_message_cap: int = 100
    discovery_min_count: int = 1

    # Storage
    db_path: str = "output/daily_repo.db"

    # Admin bearer token for the dashboard API; secret for external cron
    admin_token: str = ""
    cron_secret: str = ""

    # API server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Podcast personality
    personality_locale: str = "de"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def label_list(self) -> list[str]:
        return [label.strip() for label in self.newsstand_labels.split(",") if label.strip()]

    @property
    def database_path(self) -> Path:
        return Path(self.db_path)


settings = Settings()
