"""Process configuration loaded from environment variables / .env"""
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Salesforce connection and deploy settings.

    Credentials are for the JWT bearer flow: a connected app consumer key,
    the integration username and the PEM private key registered on the app.
    The key is usually stored on one line with literal ``\\n`` sequences.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SF_",
        case_sensitive=False,
        extra="ignore",
    )

    login_url: str = "https://login.salesforce.com"
    consumer_key: str = ""
    username: str = ""
    private_key: str = ""

    api_version: str = "59.0"
    request_timeout_seconds: int = 30

    # Tokens are treated as valid for one hour and refreshed a minute early.
    token_ttl_seconds: int = 3600
    token_refresh_margin_seconds: int = 60

    poll_interval_seconds: float = 1.0
    simple_deploy_timeout_seconds: int = 30
    bundle_deploy_timeout_seconds: int = 60

    log_level: str = "INFO"

    @field_validator("private_key", mode="before")
    @classmethod
    def unescape_private_key(cls, v: str) -> str:
        return v.replace("\\n", "\n") if isinstance(v, str) else v

    @field_validator("login_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/") if isinstance(v, str) else v

    def missing_credentials(self) -> list[str]:
        names = ("login_url", "consumer_key", "username", "private_key")
        return [f"SF_{n.upper()}" for n in names if not getattr(self, n)]


@lru_cache
def get_settings() -> Settings:
    return Settings()
