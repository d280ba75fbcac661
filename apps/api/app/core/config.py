from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SQUADLINK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str
    redis_url: str
    app_env: str = "development"
    queue_name: str = "squadlink:jobs"
    cors_allowed_origins: str = "http://localhost:8081"
    invite_link_base: str = "squadlink://invite/"
    internal_api_token: str | None = None
    git_sha: str | None = None

    link_resolver_timeout_seconds: float = 5.0
    link_resolver_max_attempts: int = 2
    link_resolver_max_depth: int = 3

    ranked_rating_delta: int = 25
    ranked_submit_cooldown_seconds: int = 10
    ranked_min_session_seconds: int = 120
    ranked_opponent_window_hours: int = 24
    ranked_opponent_max_matches: int = 3
    ranked_cooldown_max_entries: int = 2000

    leaderboard_limit: int = 10
    leaderboard_timezone: str = "Europe/Amsterdam"

    session_auto_complete_after_hours: int = 2
    session_completed_retention_hours: int = 2
    session_lifecycle_batch_size: int = 200
    session_lifecycle_max_batches: int = 10
    session_lifecycle_interval_seconds: int = 300


settings = Settings()
