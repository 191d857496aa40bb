import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_BASE_URL = "https://wishbubble.app"


@dataclass(frozen=True)
class SmtpSettings:
    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    use_tls: bool
    timeout: float
    from_addr: str


@dataclass(frozen=True)
class Settings:
    database_url: str
    log_level: str
    log_path: str
    base_url: str
    draw_max_attempts: int
    email_batch_size: int
    email_max_attempts: int
    worker_interval_seconds: int
    smtp: Optional[SmtpSettings]


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from None
    if value < 1:
        raise ValueError(f"{name} must be positive, got {value}.")
    return value


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _load_smtp() -> Optional[SmtpSettings]:
    host = os.getenv("SMTP_HOST")
    if not host:
        return None

    user = os.getenv("SMTP_USER") or None
    from_addr = os.getenv("EMAIL_FROM") or user
    if not from_addr:
        raise ValueError("EMAIL_FROM or SMTP_USER is required when SMTP_HOST is set.")

    return SmtpSettings(
        host=host,
        port=_int_env("SMTP_PORT", 587),
        user=user,
        password=os.getenv("SMTP_PASSWORD") or None,
        use_tls=_bool_env("SMTP_USE_TLS", True),
        timeout=float(_int_env("SMTP_TIMEOUT", 10)),
        from_addr=from_addr,
    )


def load_settings() -> Settings:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL is required. Set it in the environment or .env file.")

    return Settings(
        database_url=database_url,
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_path=os.getenv("LOG_PATH", "logs/wishdraw.log"),
        base_url=os.getenv("APP_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        draw_max_attempts=_int_env("DRAW_MAX_ATTEMPTS", 1000),
        email_batch_size=_int_env("EMAIL_BATCH_SIZE", 150),
        email_max_attempts=_int_env("EMAIL_MAX_ATTEMPTS", 3),
        worker_interval_seconds=_int_env("WORKER_INTERVAL_SECONDS", 60),
        smtp=_load_smtp(),
    )
