import asyncio
import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable
from zoneinfo import ZoneInfo

import aiohttp

from .auth import AuthEngine
from .cache import Cache, NullCache
from .config import Config, TheaterConfig
from .errors import PreshowError
from .http_session import CookieJarSession
from .logging_utils import set_theater
from .macros import MacroClient
from .models import ShowStatus, TimerDescriptor
from .playlist import PlaylistScraper
from .status import DeviceStatusClient, ScheduleProvider
from .timer import compute_timer

_LOGGER = logging.getLogger(__name__)


def slugify(name: str) -> str:
    return re.sub(r"\s+", "-", str(name).lower())


@dataclass
class Theater:
    config: TheaterConfig
    session: CookieJarSession
    auth: AuthEngine
    status: DeviceStatusClient
    playlist: PlaylistScraper
    macros: MacroClient

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def slug(self) -> str:
        return slugify(self.config.name)


def build_theater(
    theater_cfg: TheaterConfig,
    cfg: Config,
    *,
    cache: Cache | None = None,
    http: aiohttp.ClientSession | None = None,
    schedule_provider: ScheduleProvider | None = None,
) -> Theater:
    session = CookieJarSession(
        theater_cfg.base_url, timeout_seconds=cfg.http_timeout_seconds, http=http
    )
    auth = AuthEngine(
        theater_cfg, session, health_interval_seconds=cfg.health_check_interval_seconds
    )
    playlist = PlaylistScraper(auth, cache=cache, ttl_seconds=cfg.playlist_cache_ttl_seconds)
    return Theater(
        config=theater_cfg,
        session=session,
        auth=auth,
        status=DeviceStatusClient(
            auth,
            schedule_provider=schedule_provider,
            next_show_horizon_seconds=cfg.next_show_horizon_seconds,
        ),
        playlist=playlist,
        # A macro can load another show; the cached timeline is stale after it.
        macros=MacroClient(auth, on_executed=playlist.invalidate),
    )


class TheaterRegistry:
    """All configured theaters, each with its own independent session."""

    def __init__(
        self,
        cfg: Config,
        *,
        cache: Cache | None = None,
        http_factory: Callable[[TheaterConfig], aiohttp.ClientSession | None] | None = None,
        schedule_providers: dict[str, ScheduleProvider] | None = None,
    ) -> None:
        self._cfg = cfg
        self._tz = ZoneInfo(cfg.timezone)
        cache = cache or NullCache()
        providers = schedule_providers or {}
        self._theaters: dict[str, Theater] = {}
        for theater_cfg in cfg.theaters:
            self._theaters[theater_cfg.name] = build_theater(
                theater_cfg,
                cfg,
                cache=cache,
                http=http_factory(theater_cfg) if http_factory else None,
                schedule_provider=providers.get(theater_cfg.name),
            )

    def names(self) -> list[str]:
        return list(self._theaters)

    def resolve(self, id_or_slug: str) -> str | None:
        if id_or_slug in self._theaters:
            return id_or_slug
        for name, theater in self._theaters.items():
            if theater.slug == id_or_slug:
                return name
        return None

    def get(self, id_or_slug: str) -> Theater:
        name = self.resolve(id_or_slug)
        if name is None:
            raise KeyError(f"Theater not found: {id_or_slug}")
        return self._theaters[name]

    async def connect(self, id_or_slug: str) -> dict:
        theater = self.get(id_or_slug)
        set_theater(theater.name)
        if not await theater.auth.check_connection():
            return {"connected": False, "authenticated": False, "name": theater.name}
        authenticated = await theater.auth.login()
        return {
            "connected": True,
            "authenticated": authenticated,
            "name": theater.name,
            "slug": theater.slug,
            "type": theater.session.detected_vendor.value if theater.session.detected_vendor else None,
        }

    async def disconnect(self, id_or_slug: str) -> None:
        theater = self.get(id_or_slug)
        set_theater(theater.name)
        await theater.auth.disconnect()

    async def get_status(self, id_or_slug: str) -> ShowStatus:
        theater = self.get(id_or_slug)
        set_theater(theater.name)
        return await theater.status.get_status()

    async def get_timer(
        self,
        id_or_slug: str,
        status: ShowStatus | None = None,
        now: datetime | None = None,
    ) -> TimerDescriptor | None:
        """Pre-show timer, or None when there is nothing to show or it cannot be computed."""
        theater = self.get(id_or_slug)
        set_theater(theater.name)
        try:
            if status is None:
                status = await theater.status.get_status()
            if not status.spl_title or status.position_seconds is None:
                return None
            items = await theater.playlist.get_or_fetch(status.spl_title)
        except PreshowError as exc:
            _LOGGER.warning("timer_unavailable theater=%s error=%s", theater.name, exc)
            return None

        timer = compute_timer(items, status.position_seconds)
        if timer is None:
            return None
        now = now or datetime.now(self._tz)
        target = now.astimezone(self._tz) + timedelta(seconds=timer.seconds_remaining)
        return replace(timer, target_time=target.strftime("%H:%M"))

    def invalidate_playlist(self, id_or_slug: str) -> None:
        self.get(id_or_slug).playlist.invalidate()

    async def _teardown(self, theater: Theater) -> None:
        set_theater(theater.name)
        try:
            await theater.auth.disconnect()
        finally:
            await theater.session.close()

    async def shutdown(self) -> None:
        """Stop every health monitor and log every theater out; one failure does not stop the rest."""
        theaters = list(self._theaters.values())
        results = await asyncio.gather(
            *(self._teardown(t) for t in theaters), return_exceptions=True
        )
        for theater, result in zip(theaters, results):
            if isinstance(result, BaseException):
                _LOGGER.warning(
                    "shutdown_theater_failed theater=%s error=%r", theater.name, result
                )
        _LOGGER.info("shutdown_complete theaters=%s", len(theaters))
