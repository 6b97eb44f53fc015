"""Application configuration settings."""

from enum import Enum
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthMode(str, Enum):
    """How requests against the instance are authenticated."""
    OAUTH_BROWSER = "oauth_browser"
    BASIC = "basic"
    UNKNOWN = "unknown"


class InstanceSettings(BaseSettings):
    """Remote instance and credential configuration."""

    instance: str = Field(default="", description="Base URL of the instance")
    user: Optional[str] = Field(default=None, description="Basic auth user")
    password: Optional[str] = Field(default=None, description="Basic auth password")
    client_id: Optional[str] = Field(default=None, description="OAuth client id")
    client_secret: Optional[str] = Field(default=None, description="OAuth client secret")
    enc_secret: Optional[str] = Field(default=None, description="Secret used to encrypt the token cache")
    redirect_uri: str = Field(default="http://localhost:3000/callback", description="OAuth redirect target")
    record_limit: int = Field(default=100, description="Maximum records fetched per table on pull")
    login_timeout_seconds: int = Field(default=300, description="How long to wait for the browser login")

    model_config = SettingsConfigDict(
        env_prefix="SN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def base_url(self) -> str:
        return self.instance.rstrip("/")

    @property
    def auth_mode(self) -> AuthMode:
        """Browser OAuth when a client id is set without a password, else basic."""
        if self.client_id and not self.password:
            return AuthMode.OAUTH_BROWSER
        if self.user:
            return AuthMode.BASIC
        return AuthMode.UNKNOWN

    @property
    def token_url(self) -> str:
        return f"{self.base_url}/oauth_token.do"

    @property
    def authorize_url(self) -> str:
        return f"{self.base_url}/oauth_auth.do"

    @property
    def redirect_port(self) -> int:
        return urlparse(self.redirect_uri).port or 80


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    format: str = Field(default="console")
    file_path: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")


def load_settings(project_root: Union[str, Path]) -> InstanceSettings:
    """Load instance settings from the environment and the project's .env file."""
    env_file = Path(project_root) / ".env"
    return InstanceSettings(_env_file=env_file if env_file.exists() else None)


# Global logging settings instance
logging_settings = LoggingSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return logging_settings
