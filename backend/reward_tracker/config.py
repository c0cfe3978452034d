from __future__ import annotations
import os
from pydantic import BaseModel
from reward_tracker.errors import ConfigError

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "reward-tracker")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "Reward Dollars")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")

    # Backend connection: https://<project> for the hosted service,
    # postgresql+asyncpg://... or sqlite+aiosqlite://... for the self-hosted one.
    backend_url: str = os.getenv("BACKEND_URL", "")
    backend_api_key: str = os.getenv("BACKEND_API_KEY", "")

    # Timeouts (seconds)
    session_timeout: float = float(os.getenv("SESSION_TIMEOUT", "10"))
    role_query_timeout: float = float(os.getenv("ROLE_QUERY_TIMEOUT", "8"))
    fetch_timeout: float = float(os.getenv("FETCH_TIMEOUT", "15"))
    mutation_timeout: float = float(os.getenv("MUTATION_TIMEOUT", "20"))

    # Retry policy for reads
    retry_max: int = int(os.getenv("RETRY_MAX", "2"))
    retry_delay: float = float(os.getenv("RETRY_DELAY", "2"))

    # Session handling
    role_debounce_seconds: float = float(os.getenv("ROLE_DEBOUNCE_SECONDS", "2"))
    session_check_interval: float = float(os.getenv("SESSION_CHECK_INTERVAL", "60"))
    expiry_warning_minutes: list[int] = [int(m) for m in os.getenv("EXPIRY_WARNING_MINUTES", "5,1").split(",")]
    session_cookie: str = os.getenv("SESSION_COOKIE", "rt_session")
    access_ttl_min: int = int(os.getenv("ACCESS_TTL_MIN", "60"))
    refresh_ttl_min: int = int(os.getenv("REFRESH_TTL_MIN", "10080"))  # 7d
    session_idle_minutes: float = float(os.getenv("SESSION_IDLE_MINUTES", "120"))

    # First admin, created at startup when no admin with this email exists
    bootstrap_admin_email: str = os.getenv("BOOTSTRAP_ADMIN_EMAIL", "")
    bootstrap_admin_password: str = os.getenv("BOOTSTRAP_ADMIN_PASSWORD", "")
    bootstrap_admin_name: str = os.getenv("BOOTSTRAP_ADMIN_NAME", "Administrator")

    def require_backend(self) -> None:
        missing = [name for name, value in (("BACKEND_URL", self.backend_url), ("BACKEND_API_KEY", self.backend_api_key)) if not value]
        if missing:
            raise ConfigError(f"missing required configuration: {', '.join(missing)}")

settings = Settings()
