from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Equipment Request Service"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    BASE_URL: str = "http://localhost:8000"
    BACKEND_CORS_ORIGINS: list[str] = ["*"]

    # "file" keeps the two JSON tables, "sql" uses DATABASE_URL.
    REQUEST_STORE_BACKEND: str = "file"
    REQUEST_STORE_FILE: str = ".request-store.json"
    REQUEST_COUNTER_FILE: str = ".request-counter.json"
    DATABASE_URL: str = "sqlite:///./equipment_requests.db"

    APPROVAL_TOKEN_TTL_DAYS: int = 7
    APPROVER_EMAILS: list[str] = []
    NOTIFY_REQUESTER_ON_SUBMIT: bool = True

    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: Optional[int] = None
    SMTP_FALLBACK_PORT: int = 465
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = ""
    SMTP_TIMEOUT_SECONDS: float = 10.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore"
    )

    @model_validator(mode='after')
    def check_production_settings(self):
        self.REQUEST_STORE_BACKEND = self.REQUEST_STORE_BACKEND.strip().lower()
        if self.REQUEST_STORE_BACKEND not in {"file", "sql"}:
            raise ValueError(f"Unsupported REQUEST_STORE_BACKEND: {self.REQUEST_STORE_BACKEND}")

        if self.APPROVAL_TOKEN_TTL_DAYS < 1:
            raise ValueError("APPROVAL_TOKEN_TTL_DAYS must be at least 1")

        self.BASE_URL = self.BASE_URL.rstrip("/")
        self.APPROVER_EMAILS = [email.strip() for email in self.APPROVER_EMAILS if email and email.strip()]

        if not self.SMTP_FROM:
            self.SMTP_FROM = self.SMTP_USER

        if self.ENVIRONMENT == "production":
            if not self.APPROVER_EMAILS:
                raise ValueError("APPROVER_EMAILS must list at least one approver in production.")
            if not self.SMTP_USER or not self.SMTP_PASSWORD:
                raise ValueError("SMTP_USER and SMTP_PASSWORD must be set in production.")

        return self

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_USER and self.SMTP_PASSWORD)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
