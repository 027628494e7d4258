from __future__ import annotations

import logging
import os

_TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str, default: str = "0") -> bool:
    v = (os.getenv(name) or default).strip().lower()
    return v in _TRUTHY


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def env_int(name: str, default: int, lo: int | None = None, hi: int | None = None) -> int:
    raw = env_str(name)
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    if lo is not None:
        value = max(lo, value)
    if hi is not None:
        value = min(hi, value)
    return value


def proxy_url() -> str:
    return env_str("ALIMTALK_PROXY_URL", "http://localhost:3100").rstrip("/")


def aligo_base_url() -> str:
    return env_str("ALIGO_BASE_URL", "https://kakaoapi.aligo.in").rstrip("/")


def configure_logging() -> None:
    level_name = env_str("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("johapon").setLevel(level)
