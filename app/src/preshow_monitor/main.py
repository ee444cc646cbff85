import argparse
import asyncio
import contextlib
import json
import logging
import os
import signal
from datetime import datetime
from pathlib import Path
from time import perf_counter
from zoneinfo import ZoneInfo

from .cache import build_cache
from .config import Config, load_config
from .errors import PreshowError
from .logging_utils import new_run_id, set_run_id, set_theater, setup_logging
from .theaters import TheaterRegistry


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(text, encoding=encoding)
    tmp.replace(path)


def _write_status(cfg: Config, payload: dict, logger: logging.Logger) -> None:
    try:
        atomic_write_text(
            cfg.out_dir / "status.json",
            json.dumps(payload, ensure_ascii=False, indent=2),
        )
    except OSError:
        logger.exception("status_write_failed")


async def collect_theater(registry: TheaterRegistry, name: str, logger: logging.Logger) -> dict:
    set_theater(name)
    entry: dict = {"name": name, "status": None, "timer": None, "error": None}
    try:
        status = await registry.get_status(name)
    except PreshowError as exc:
        logger.warning("status_unavailable theater=%s error=%s", name, exc)
        entry["error"] = {"message": str(exc), "kind": type(exc).__name__}
        return entry

    entry["status"] = status.to_dict()
    timer = await registry.get_timer(name, status=status)
    entry["timer"] = timer.to_dict() if timer else None
    return entry


async def run_round(cfg: Config, registry: TheaterRegistry, logger: logging.Logger) -> dict:
    run_id = new_run_id()
    set_run_id(run_id)
    start_ts = perf_counter()
    names = registry.names()
    results = await asyncio.gather(*(collect_theater(registry, n, logger) for n in names))

    payload = {
        "run_id": run_id,
        "updated_at": datetime.now(ZoneInfo(cfg.timezone)).isoformat(),
        "theaters": results,
    }
    _write_status(cfg, payload, logger)
    logger.info(
        "poll_round_end duration_ms=%s theaters=%s errors=%s timers=%s",
        int((perf_counter() - start_ts) * 1000),
        len(results),
        sum(1 for r in results if r["error"]),
        sum(1 for r in results if r["timer"]),
    )
    return payload


async def run(cfg: Config, once: bool, logger: logging.Logger) -> None:
    cache = build_cache(cfg, logger)
    registry = TheaterRegistry(cfg, cache=cache)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    try:
        while not stop.is_set():
            await run_round(cfg, registry, logger)
            if once:
                break
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=cfg.poll_interval_seconds)
    finally:
        await registry.shutdown()
        cache.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Poll cinema playback servers for show status and pre-show timers.")
    parser.add_argument("--once", action="store_true", help="run a single polling round and exit")
    args = parser.parse_args()

    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    logger = logging.getLogger(__name__)

    cfg = load_config()
    logger.info(
        "config theaters=%s http_timeout_seconds=%s health_interval_seconds=%s playlist_ttl_seconds=%s poll_interval_seconds=%s",
        len(cfg.theaters),
        cfg.http_timeout_seconds,
        cfg.health_check_interval_seconds,
        cfg.playlist_cache_ttl_seconds,
        cfg.poll_interval_seconds,
    )
    if not cfg.theaters:
        logger.error("no_theaters_configured hint=set THEATERS")
        return

    asyncio.run(run(cfg, args.once, logger))


if __name__ == "__main__":
    main()
