from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv
import json
import logging
import os

load_dotenv()

@dataclass(frozen=True)
class TheaterConfig:
    name: str
    base_url: str
    username: str
    password: str
    vendor_hint: str = ""

@dataclass(frozen=True)
class Config:
    theaters: tuple[TheaterConfig, ...]
    timezone: str
    out_dir: Path

    http_timeout_seconds: float
    health_check_interval_seconds: int
    playlist_cache_ttl_seconds: int
    poll_interval_seconds: int
    next_show_horizon_seconds: int

    redis_url: str | None
    cache_enabled: bool


def parse_theaters(raw: str) -> tuple[TheaterConfig, ...]:
    """Parse the THEATERS JSON object ``{name: {url, username, password, type}}``."""
    logger = logging.getLogger(__name__)
    if not raw.strip():
        return ()
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("invalid THEATERS json, no theaters configured")
        return ()
    if not isinstance(data, dict):
        logger.warning("invalid THEATERS type=%s, expected object", type(data).__name__)
        return ()

    theaters: list[TheaterConfig] = []
    for name, entry in data.items():
        if not isinstance(entry, dict) or not str(entry.get("url") or "").strip():
            logger.warning("theater_config_skipped name=%s reason=missing_url", name)
            continue
        theaters.append(
            TheaterConfig(
                name=str(name),
                base_url=str(entry["url"]).strip().rstrip("/"),
                username=str(entry.get("username") or ""),
                password=str(entry.get("password") or ""),
                vendor_hint=str(entry.get("type") or "").strip().upper(),
            )
        )
    return tuple(theaters)


def load_config() -> Config:
    out_dir = Path(os.getenv("OUT_DIR", "./out"))
    out_dir.mkdir(parents=True, exist_ok=True)

    def _int(name: str, default: int) -> int:
        try:
            value = int(os.getenv(name, str(default)).strip())
        except Exception:
            return default
        if value <= 0:
            logging.getLogger(__name__).warning(
                "invalid %s=%s, using default=%s",
                name,
                value,
                default,
            )
            return default
        return value

    def _float(name: str, default: float) -> float:
        try:
            value = float(os.getenv(name, str(default)).strip())
        except Exception:
            return default
        return value if value > 0 else default

    def _bool(name: str, default: bool) -> bool:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        val = raw.strip().lower()
        if val in ("1", "true", "yes", "on"):
            return True
        if val in ("0", "false", "no", "off"):
            return False
        logging.getLogger(__name__).warning(
            "invalid %s=%s, using default=%s",
            name,
            raw,
            default,
        )
        return default

    redis_url = os.getenv("REDIS_URL", "").strip() or None

    return Config(
        theaters=parse_theaters(os.getenv("THEATERS", "")),
        timezone=os.getenv("TIMEZONE", "Europe/Paris"),
        out_dir=out_dir,

        http_timeout_seconds=_float("HTTP_TIMEOUT_SECONDS", 5.0),
        health_check_interval_seconds=_int("HEALTH_CHECK_INTERVAL_SECONDS", 30),
        playlist_cache_ttl_seconds=_int("PLAYLIST_CACHE_TTL_SECONDS", 3600),
        poll_interval_seconds=_int("POLL_INTERVAL_SECONDS", 10),
        next_show_horizon_seconds=_int("NEXT_SHOW_HORIZON_SECONDS", 5 * 3600),

        redis_url=redis_url,
        cache_enabled=_bool("CACHE_ENABLED", bool(redis_url)),
    )
