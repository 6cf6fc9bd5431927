import secrets

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    DATABASE_URL: str = "sqlite:///./foodbridge.db"
    SQL_ECHO: bool = False

    # A fresh key per process logs everybody out on restart; set it in .env
    SECRET_KEY: str = Field(default_factory=lambda: secrets.token_hex(32))
    SESSION_MAX_AGE: int = 60 * 60 * 8
    MIN_PASSWORD_LENGTH: int = 6

    # Sign-ups with one of these emails are given the admin role
    ADMIN_EMAILS: set[str] = set()

    LOG_LEVEL: str = "INFO"


settings = Settings()
