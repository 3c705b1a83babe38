import logging
from functools import lru_cache
from typing import List, Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_db: str = "bookstore"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"

    # full SQLAlchemy URL, wins over the postgres_* parts when set
    sqlalchemy_url: Optional[str] = None

    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    base_url: str = "http://localhost:8000"
    env: str = "production"
    log_level: str = "INFO"

    # purchases
    currency: str = "ETB"
    transaction_reference_prefix: str = "BKS"

    # telegram bot
    telegram_bot_secret: Optional[str] = None
    telegram_bot_username: Optional[str] = None

    # email (Brevo)
    brevo_api_key: Optional[str] = None
    mail_from: str = "noreply@bookstore.local"
    store_name: str = "Bookstore"
    admin_emails: List[str] = []
    email_timeout_seconds: float = 5.0

    # receipts (Cloudflare R2)
    r2_account_id: Optional[str] = None
    r2_access_key_id: Optional[str] = None
    r2_secret_access_key: Optional[str] = None
    r2_bucket_name: Optional[str] = None
    receipt_url_ttl_seconds: int = 900
    max_receipt_size_mb: int = 10

    @property
    def database_url(self):
        if self.sqlalchemy_url:
            return self.sqlalchemy_url
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


@lru_cache()
def get_settings() -> Settings:
    """Build the process-wide settings once; inject with Depends(get_settings)."""
    return Settings()


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
