from pydantic_settings import BaseSettings
from typing import Optional
from urllib.parse import quote_plus

class Settings(BaseSettings):
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    postgres_user: str = "subtrack"
    postgres_password: str = ""
    postgres_db: str = "subtrack"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"

    # Full SQLAlchemy URL, overrides the postgres_* fields when set
    DATABASE_URL: Optional[str] = None

    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    BREVO_API_KEY: str = ""
    EMAIL_SENDER: str = "no-reply@subtrack.app"
    EMAIL_SENDER_NAME: str = "SubTrack"
    ADMIN_EMAILS: list[str] = []

    WEBHOOK_SECRET: Optional[str] = None

    # Cancellation retry policy
    CANCELLATION_MAX_ATTEMPTS: int = 3
    CANCELLATION_RETRY_BASE_SECONDS: int = 60
    CANCELLATION_RETRY_MAX_SECONDS: int = 3600
    PROVIDER_API_TIMEOUT_SECONDS: int = 15
    # a processing claim older than this is treated as abandoned by its worker
    PROCESSING_LEASE_SECONDS: int = 900

    # SSE progress stream
    STREAM_POLL_SECONDS: float = 2.0
    STREAM_MAX_SECONDS: int = 300

    @property
    def database_url(self):
        if self.DATABASE_URL:
            return self.DATABASE_URL
        encoded_password = quote_plus(self.postgres_password)
        return (
            f"postgresql+psycopg2://{self.postgres_user}:"
            f"{encoded_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"

settings = Settings()
