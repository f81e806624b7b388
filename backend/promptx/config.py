"""
PromptX Runtime Configuration

Loads configuration from environment variables (and a .env file), with defaults.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


DEFAULT_MODEL = "claude-haiku-4-5"
DEFAULT_DATABASE_URL = "sqlite:///promptx_threads.db"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class RuntimeConfig:
    """Runtime configuration"""

    # Chat (Anthropic)
    anthropic_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 1.0

    # Thread store; None disables persistence and delegation isolation
    database_url: Optional[str] = DEFAULT_DATABASE_URL

    # Definition sources
    objects_dir: Optional[str] = None
    primitives_dir: Optional[str] = None

    # Limits
    bus_summary_length: int = 200
    max_file_chars: int = 50_000
    http_timeout: int = 30  # seconds

    # Debugging
    enable_event_logging: bool = True
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "RuntimeConfig":
        """Load configuration from environment variables"""
        load_dotenv(env_file)

        api_key = os.getenv("ANTHROPIC_API_KEY") or os.getenv("PROMPTX_ANTHROPIC_API_KEY")

        database_url = os.getenv("PROMPTX_DATABASE_URL", DEFAULT_DATABASE_URL)

        return cls(
            anthropic_api_key=api_key,
            model=os.getenv("PROMPTX_MODEL", DEFAULT_MODEL),
            max_tokens=int(os.getenv("PROMPTX_MAX_TOKENS", "4096")),
            temperature=float(os.getenv("PROMPTX_TEMPERATURE", "1.0")),
            database_url=database_url or None,
            objects_dir=os.getenv("PROMPTX_OBJECTS_DIR"),
            primitives_dir=os.getenv("PROMPTX_PRIMITIVES_DIR"),
            bus_summary_length=int(os.getenv("PROMPTX_BUS_SUMMARY_LENGTH", "200")),
            max_file_chars=int(os.getenv("PROMPTX_MAX_FILE_CHARS", "50000")),
            http_timeout=int(os.getenv("PROMPTX_HTTP_TIMEOUT", "30")),
            enable_event_logging=_env_bool("PROMPTX_ENABLE_EVENT_LOGGING", "true"),
            log_level=os.getenv("PROMPTX_LOG_LEVEL", "INFO"),
            log_dir=os.getenv("PROMPTX_LOG_DIR"),
        )

    def validate(self) -> None:
        """Validate configuration on startup (fail fast if invalid)"""
        if self.max_tokens < 1 or self.max_tokens > 100000:
            raise ValueError("max_tokens must be between 1 and 100000")

        if self.temperature < 0 or self.temperature > 2:
            raise ValueError("temperature must be between 0 and 2")

        if self.bus_summary_length < 1:
            raise ValueError("bus_summary_length must be at least 1")

        if self.max_file_chars < 1:
            raise ValueError("max_file_chars must be at least 1")

        if self.http_timeout < 1:
            raise ValueError("http_timeout must be at least 1 second")
