from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "gp-arena")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "GP Arena")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    log_level: str = os.getenv("LOG_LEVEL", "info")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/arena_dev")
    redis_url: str = os.getenv("REDIS_URL", "redis://redis:6379/0")

    # Wagers and bets (GP)
    min_wager: int = int(os.getenv("MIN_WAGER", "10"))
    max_wager: int = int(os.getenv("MAX_WAGER", "10000"))
    min_bet: int = int(os.getenv("MIN_BET", "1"))
    max_bet: int = int(os.getenv("MAX_BET", "100"))
    house_guarantee_pct: int = int(os.getenv("HOUSE_GUARANTEE_PCT", "50"))
    monthly_grant: int = int(os.getenv("MONTHLY_GRANT", "1000"))

    # Lifecycle windows (hours)
    acceptance_hours: int = int(os.getenv("ACCEPTANCE_HOURS", "24"))
    open_join_hours: int = int(os.getenv("OPEN_JOIN_HOURS", "72"))
    betting_window_hours: int = int(os.getenv("BETTING_WINDOW_HOURS", "72"))
    min_duration_hours: int = int(os.getenv("MIN_DURATION_HOURS", "1"))
    max_duration_hours: int = int(os.getenv("MAX_DURATION_HOURS", "336"))  # 2 weeks

    # Scheduler
    scheduler_enabled: bool = os.getenv("SCHEDULER_ENABLED", "1") == "1"
    sweep_interval_seconds: int = int(os.getenv("SWEEP_INTERVAL_SECONDS", "900"))
    max_resolve_attempts: int = int(os.getenv("MAX_RESOLVE_ATTEMPTS", "4"))

    # Score source (RetroAchievements web API)
    ra_base_url: str = os.getenv("RA_BASE_URL", "https://retroachievements.org/API")
    ra_username: str = os.getenv("RA_USERNAME", "")
    ra_api_key: str = os.getenv("RA_API_KEY", "")
    ra_timeout_seconds: float = float(os.getenv("RA_TIMEOUT_SECONDS", "10"))
    leaderboard_page_size: int = int(os.getenv("LEADERBOARD_PAGE_SIZE", "500"))
    leaderboard_max_entries: int = int(os.getenv("LEADERBOARD_MAX_ENTRIES", "1000"))

    # Outbound notifications to the chat layer
    notify_webhook_url: str = os.getenv("NOTIFY_WEBHOOK_URL", "")
    notify_timeout_seconds: float = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "5"))

settings = Settings()
