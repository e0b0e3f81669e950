from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# Database (a local SQLite file unless overridden)
	database_url: str = Field(default="sqlite:///./quizengine.db", validation_alias="DATABASE_URL")
	database_echo: bool = Field(default=False, validation_alias="DATABASE_ECHO")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")
	# Seed user
	seed_username: str | None = Field(default=None, validation_alias="SEED_USERNAME")
	seed_password_plain: str | None = Field(default=None, validation_alias="SEED_PASSWORD")

	# Per-user sliding window; 0 requests disables the limiter
	rate_limit_requests: int = Field(default=120, validation_alias="RATE_LIMIT_REQUESTS")
	rate_limit_window_seconds: int = Field(default=60, validation_alias="RATE_LIMIT_WINDOW_SECONDS")

	# Failed password logins allowed per client within the window; 0 disables
	login_max_failures: int = Field(default=10, validation_alias="LOGIN_MAX_FAILURES")
	login_failure_window_seconds: int = Field(default=3600, validation_alias="LOGIN_FAILURE_WINDOW_SECONDS")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# JSON catalog loaded into the concept/question tables at startup
	catalog_path: str | None = Field(default=None, validation_alias="CATALOG_PATH")

	# Idle-session sweep (disabled when either is 0)
	idle_session_minutes: int = Field(default=60, validation_alias="IDLE_SESSION_MINUTES")
	sweep_interval_seconds: int = Field(default=300, validation_alias="SWEEP_INTERVAL_SECONDS")

	# Finished sessions on a topic consulted by the repeat-avoidance rules (0 disables them)
	history_sessions: int = Field(default=5, validation_alias="HISTORY_SESSIONS")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)


@lru_cache
def get_settings() -> Settings:
	return Settings()
