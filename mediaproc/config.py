import os
import logging
import logging.config
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

# Base Paths
APP_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = APP_DIR.parent

# Logging Setup
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_FILE_PATH = os.getenv(
    "LOG_FILE_PATH",
    str((PROJECT_ROOT / "logs" / "app.log").resolve()),
)


def build_logging_config(level: str = LOG_LEVEL, log_file: str = LOG_FILE_PATH) -> dict:
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "standard",
            "stream": "ext://sys.stdout",
        },
    }
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "standard",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10 MB
            "backupCount": 5,
            "encoding": "utf8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": LOG_FORMAT,
            }
        },
        "handlers": handlers,
        "loggers": {
            "mediaproc": {
                "handlers": list(handlers),
                "level": level,
                "propagate": False,
            },
            # Let uvicorn log to console using its own handlers
            "uvicorn.error": {"level": "INFO"},
            "uvicorn.access": {"level": "INFO"},
        },
        "root": {
            "handlers": ["console"],
            "level": level,
        },
    }


LOGGING_CONFIG = build_logging_config()

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger("mediaproc")


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _parse_positive(name: str, value: str, cast=float):
    try:
        parsed = cast(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e
    if parsed <= 0:
        raise ValueError(f"{name} must be positive, got {value!r}")
    return parsed


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and passed explicitly."""

    # Cloudflare R2 (S3-compatible object storage)
    storage_endpoint: str = ""
    storage_bucket: str = ""
    storage_access_key_id: str = ""
    storage_secret_access_key: str = ""
    storage_region: str = "auto"
    storage_public_base_url: str = ""
    storage_addressing_style: str = "path"

    # Scratch storage and admission
    scratch_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "mediaproc")
    max_concurrent_jobs: int = 4

    # Source fetching
    fetch_timeout_seconds: float = 300.0
    fetch_connect_timeout_seconds: float = 10.0
    max_source_bytes: int = 2 * 1024 * 1024 * 1024  # 2 GB
    allowed_source_hosts: tuple[str, ...] = ()

    # Transcoding
    transcoder_enabled: bool = True
    ffmpeg_binary: str = "ffmpeg"
    ffmpeg_log_level: str = "error"
    transcode_timeout_seconds: float = 600.0
    stderr_limit_bytes: int = 64 * 1024

    # Publishing
    publish_timeout_seconds: float = 120.0

    # HTTP surface
    allowed_hosts: tuple[str, ...] = ("*",)
    cors_origins: tuple[str, ...] = ("*",)
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 8080

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def debug(self) -> bool:
        return not self.is_production

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()

        account_id = env.get("R2_ACCOUNT_ID", "")
        endpoint = env.get(
            "R2_ENDPOINT_URL",
            f"https://{account_id}.r2.cloudflarestorage.com" if account_id else "",
        )

        addressing_style = env.get("R2_ADDRESSING_STYLE", defaults.storage_addressing_style).lower()
        if addressing_style not in {"path", "virtual", "auto"}:
            raise ValueError(f"R2_ADDRESSING_STYLE must be path, virtual or auto, got {addressing_style!r}")

        def number(name: str, default, cast=float):
            raw = env.get(name)
            return default if raw is None or raw == "" else _parse_positive(name, raw, cast)

        return cls(
            storage_endpoint=endpoint.strip(),
            storage_bucket=env.get("R2_BUCKET_NAME", "").strip(),
            storage_access_key_id=env.get("R2_ACCESS_KEY_ID", "").strip(),
            storage_secret_access_key=env.get("R2_SECRET_ACCESS_KEY", "").strip(),
            storage_region=env.get("R2_REGION", defaults.storage_region),
            storage_public_base_url=env.get("R2_PUBLIC_BASE_URL", "").strip(),
            storage_addressing_style=addressing_style,
            scratch_dir=Path(env.get("SCRATCH_DIR") or defaults.scratch_dir),
            max_concurrent_jobs=number("MAX_CONCURRENT_JOBS", defaults.max_concurrent_jobs, int),
            fetch_timeout_seconds=number("FETCH_TIMEOUT_SECONDS", defaults.fetch_timeout_seconds),
            fetch_connect_timeout_seconds=number(
                "FETCH_CONNECT_TIMEOUT_SECONDS", defaults.fetch_connect_timeout_seconds
            ),
            max_source_bytes=number("MAX_SOURCE_BYTES", defaults.max_source_bytes, int),
            allowed_source_hosts=tuple(
                host.lower() for host in _split_csv(env.get("ALLOWED_SOURCE_HOSTS", ""))
            ),
            transcoder_enabled=_parse_bool(
                "TRANSCODER_ENABLED", env.get("TRANSCODER_ENABLED", "true")
            ),
            ffmpeg_binary=env.get("FFMPEG_BINARY", defaults.ffmpeg_binary),
            ffmpeg_log_level=env.get("FFMPEG_LOG_LEVEL", defaults.ffmpeg_log_level),
            transcode_timeout_seconds=number(
                "TRANSCODE_TIMEOUT_SECONDS", defaults.transcode_timeout_seconds
            ),
            stderr_limit_bytes=number("STDERR_LIMIT_BYTES", defaults.stderr_limit_bytes, int),
            publish_timeout_seconds=number("PUBLISH_TIMEOUT_SECONDS", defaults.publish_timeout_seconds),
            allowed_hosts=tuple(_split_csv(env.get("ALLOWED_HOSTS", "*"))),
            cors_origins=tuple(_split_csv(env.get("CORS_ORIGINS", "*"))),
            environment=env.get("ENVIRONMENT", defaults.environment).lower(),
            host=env.get("HOST", defaults.host),
            port=number("PORT", defaults.port, int),
        )
