# clinic_booking/core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict
import urllib.parse

class Settings(BaseSettings):
    # Read env from .env; ignore unknown keys so extra lines don't crash startup
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Database ---
    # DATABASE_URL wins when set (e.g. sqlite+aiosqlite for local runs)
    DATABASE_URL: str | None = None
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "clinic_booking"
    POSTGRES_USER: str = "clinic"
    POSTGRES_PASSWORD: str = ""

    # "sql" or "memory"
    STORE_BACKEND: str = "sql"
    STORE_TIMEOUT_SECONDS: float = 5.0
    STORE_RETRY_ATTEMPTS: int = 3

    # --- Scheduling rules ---
    SLOT_UNIT_MINUTES: int = 10
    CANCELLATION_DEADLINE_HOURS: int = 24
    REMINDER_OFFSETS_HOURS: str = "24,6"
    PRACTICE_TIMEZONE: str = "Europe/Berlin"
    DEFAULT_BOOKING_STATUS: str = "confirmed"
    PHONE_REGION: str = "DE"

    # --- Notifications ---
    NOTIFY_WEBHOOK_URL: str | None = None
    NOTIFY_TIMEOUT_SECONDS: float = 10.0
    # Calendar invites (ICS)
    PRACTICE_NAME: str = "Praxis"
    PRACTICE_ADDRESS: str | None = None

    # --- Security ---
    ADMIN_API_KEY: str | None = None

    # --- Monitoring & Logging ---
    APP_ENV: str = "production"
    LOG_LEVEL: str = "INFO"
    LOG_REQUESTS: bool = False
    MAX_LOG_LENGTH: int = 200

    ALLOWED_CORS_ORIGINS: str = "*"

    # Sync URI (Alembic)
    @property
    def sync_db_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL.replace("+asyncpg", "").replace("+aiosqlite", "")
        pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Async URI (SQLAlchemy engine)
    @property
    def async_db_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        pwd = urllib.parse.quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{pwd}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def reminder_offsets(self) -> list[int]:
        return sorted(
            (int(h.strip()) for h in self.REMINDER_OFFSETS_HOURS.split(",") if h.strip()),
            reverse=True,
        )

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_CORS_ORIGINS.split(",") if o.strip()]

    @property
    def is_development(self) -> bool:
        return self.APP_ENV.lower() in ("development", "dev", "local")

# Singleton
settings = Settings()
