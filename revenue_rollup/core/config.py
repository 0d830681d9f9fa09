from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Revenue Rollup API"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Shared key for the admin analytics routes (sent as X-Admin-Key)
    ADMIN_SECRET_KEY: str = "change-this-admin-secret"

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "12345"
    POSTGRES_DB: str = "revenue_db"
    POSTGRES_PORT: int = 5432
    DATABASE_URL: str = ""

    # Analytics
    ANALYTICS_TIMEZONE: str = "UTC"
    # Only these statuses count toward revenue; the status breakdown always sees every status
    REVENUE_STATUSES: List[str] = ["confirmed"]
    TOP_VENDORS_LIMIT: int = 10
    LEDGER_BATCH_SIZE: int = 500
    # None = wait for an overlapping recalculation as long as it takes
    RECALCULATION_LOCK_TIMEOUT: Optional[float] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    def assemble_db_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

settings = Settings()
settings.DATABASE_URL = settings.assemble_db_url()
