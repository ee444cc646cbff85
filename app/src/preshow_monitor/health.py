import asyncio
import contextlib
import logging
from typing import Awaitable, Callable

from .http_session import CookieJarSession
from .logging_utils import set_theater, truncate
from .soap import SYSTEM_OVERVIEW_PATH, build_envelope, new_correlation_id

_LOGGER = logging.getLogger(__name__)


class HealthMonitor:
    """Keep-alive loop that probes the server and re-logs in when the session died.

    The server can expire a session silently; the first sign is usually a
    confusing failure on a real request, so a cheap status probe runs on a
    fixed interval while the session is believed to be authenticated.
    """

    def __init__(
        self,
        name: str,
        session: CookieJarSession,
        relogin: Callable[[], Awaitable[bool]],
        interval_seconds: float = 30,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._session = session
        self._relogin = relogin
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        _LOGGER.info("health_monitor_start theater=%s interval=%s", self.name, self.interval_seconds)
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        # Called from inside a tick (re-login): the loop sees it was replaced and exits.
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run(self) -> None:
        set_theater(self.name)
        current = asyncio.current_task()
        while self._task is current:
            await asyncio.sleep(self.interval_seconds)
            if self._task is not current:
                break
            await self.check_once()

    async def probe(self) -> bool:
        """One GetSystemStatus call straight through the cookie session."""
        if not self._session.session_id:
            return False
        try:
            res = await self._session.request(
                "POST",
                SYSTEM_OVERVIEW_PATH,
                build_envelope("GetSystemStatus", new_correlation_id()),
                {"Content-Type": "text/xml", "Accept": "*/*"},
            )
        except Exception as exc:
            _LOGGER.warning("health_probe_error theater=%s error=%r", self.name, exc)
            return False

        data = res.json()
        if res.status == 200 and isinstance(data, dict) and data.get("GetSystemStatusResponse"):
            return True
        _LOGGER.debug(
            "health_probe_rejected theater=%s status=%s body=%s",
            self.name,
            res.status,
            truncate(res.body, 50),
        )
        return False

    async def check_once(self) -> bool:
        if not self._session.authenticated:
            return False
        if await self.probe():
            return True
        _LOGGER.warning("health_check_failed theater=%s action=relogin", self.name)
        self._session.authenticated = False
        try:
            return await self._relogin()
        except Exception:
            _LOGGER.exception("health_relogin_failed theater=%s", self.name)
            return False
