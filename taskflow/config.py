"""
TaskFlow configuration.

Server, client and AI settings are plain dataclasses filled from the
environment (and a local .env file when present).
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerSettings:
    database_url: str = "sqlite:///./taskflow.db"
    secret_key: str = "change-me"
    algorithm: str = "HS256"
    token_expire_minutes: int = 60
    api_key: Optional[str] = None
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_backend_url: str = "redis://localhost:6379/0"
    celery_eager: bool = False
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ServerSettings":
        return cls(
            database_url=os.getenv("TASKFLOW_DATABASE_URL", cls.database_url),
            secret_key=os.getenv("TASKFLOW_SECRET_KEY", cls.secret_key),
            token_expire_minutes=int(os.getenv("TASKFLOW_TOKEN_EXPIRE_MINUTES", cls.token_expire_minutes)),
            api_key=os.getenv("TASKFLOW_API_KEY") or None,
            celery_broker_url=os.getenv("CELERY_BROKER_URL", cls.celery_broker_url),
            celery_backend_url=os.getenv("CELERY_BACKEND_URL", cls.celery_backend_url),
            celery_eager=_env_flag("TASKFLOW_CELERY_EAGER"),
            smtp_server=os.getenv("SMTP_SERVER", cls.smtp_server),
            smtp_port=int(os.getenv("SMTP_PORT", cls.smtp_port)),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
        )


@dataclass
class ClientSettings:
    """Settings for the client state layer.

    ``api_url`` and ``api_key`` are the two values the client cannot run
    without; everything else has a usable default.
    """
    api_url: Optional[str] = None
    api_key: Optional[str] = None
    cache_dir: Path = field(default_factory=lambda: Path.home() / ".taskflow")
    request_timeout: float = 15.0
    scratchpad_debounce: float = 1.0

    REQUIRED = ("TASKFLOW_API_URL", "TASKFLOW_API_KEY")

    @classmethod
    def from_env(cls) -> "ClientSettings":
        settings = cls(
            api_url=os.getenv("TASKFLOW_API_URL") or None,
            api_key=os.getenv("TASKFLOW_API_KEY") or None,
        )
        cache_dir = os.getenv("TASKFLOW_CACHE_DIR")
        if cache_dir:
            settings.cache_dir = Path(cache_dir).expanduser()
        timeout = os.getenv("TASKFLOW_REQUEST_TIMEOUT")
        if timeout:
            settings.request_timeout = float(timeout)
        return settings

    def missing(self) -> List[str]:
        values = {"TASKFLOW_API_URL": self.api_url, "TASKFLOW_API_KEY": self.api_key}
        return [name for name in self.REQUIRED if not values[name] or values[name] == "undefined"]

    @property
    def is_configured(self) -> bool:
        return not self.missing()

    def require(self) -> "ClientSettings":
        missing = self.missing()
        if missing:
            raise ConfigurationError(f"Setup required: missing {', '.join(missing)}")
        return self


@dataclass
class AIConfig:
    """LLM model configuration for the assistant helpers."""
    provider: str = "google"
    model_name: str = "gemini-2.5-flash"
    temperature: float = 0.7
    api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "AIConfig":
        return cls(
            provider=os.getenv("TASKFLOW_AI_PROVIDER", cls.provider),
            model_name=os.getenv("TASKFLOW_AI_MODEL", cls.model_name),
            api_key=os.getenv("GOOGLE_API_KEY") or os.getenv("API_KEY"),
        )


def configure_logging(level: int = logging.INFO) -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root.setLevel(level)


server_settings = ServerSettings.from_env()
