import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from .auth import AuthEngine
from .errors import AuthRejected, SoapNotAuthenticated
from .http_session import HTML_ACCEPT
from .models import NextShow, ScheduledShow, ShowStatus
from .playlist import parse_seconds
from .soap import SHOW_CONTROL_PATH, build_envelope, extract_soap_session_id, unwrap

_LOGGER = logging.getLogger(__name__)

ScheduleProvider = Callable[[], Awaitable[list[ScheduledShow]]]

# One retry after a "not authenticated" fault on a cached SOAP session id.
MAX_SOAP_ATTEMPTS = 2


def show_status_from_payload(payload: dict[str, Any]) -> ShowStatus:
    return ShowStatus(
        spl_title=payload.get("splTitle") or None,
        cpl_title=payload.get("cplTitle") or None,
        position_seconds=parse_seconds(payload.get("splPosition")),
        duration_seconds=parse_seconds(payload.get("splDuration")),
        state=str(payload.get("stateInfo") or "Unknown"),
        raw=dict(payload),
    )


def pick_next_show(
    shows: list[ScheduledShow], now: datetime, horizon_seconds: int
) -> NextShow | None:
    limit = now + timedelta(seconds=horizon_seconds)
    upcoming = sorted((s for s in shows if now < s.start <= limit), key=lambda s: s.start)
    if not upcoming:
        return None
    show = upcoming[0]
    return NextShow(title=show.title, start=show.start.isoformat(), end=show.end.isoformat())


class DeviceStatusClient:
    """Current show status through the vendor's SOAP-over-JSON ShowControl call."""

    def __init__(
        self,
        auth: AuthEngine,
        *,
        schedule_provider: ScheduleProvider | None = None,
        next_show_horizon_seconds: int = 5 * 3600,
    ) -> None:
        self._auth = auth
        self._session = auth.session
        self._schedule_provider = schedule_provider
        self._horizon = next_show_horizon_seconds

    @property
    def name(self) -> str:
        return self._auth.theater.name

    async def extract_soap_session_id(self) -> str:
        res = await self._session.request(
            "GET", self._auth.profile.playback_path, headers={"Accept": HTML_ACCEPT}
        )
        soap_id = extract_soap_session_id(res.body)
        _LOGGER.debug("soap_session_id_extracted theater=%s", self.name)
        return soap_id

    async def get_status(self) -> ShowStatus:
        if not await self._auth.ensure_logged_in():
            raise AuthRejected(f"authentication failed for {self.name}")

        for attempt in range(1, MAX_SOAP_ATTEMPTS + 1):
            cached = self._session.soap_session_id
            soap_id = cached or await self.extract_soap_session_id()
            self._session.soap_session_id = soap_id

            profile = self._auth.profile
            res = await self._session.request(
                "POST",
                SHOW_CONTROL_PATH,
                build_envelope("GetShowStatus", soap_id),
                {
                    "Content-Type": "text/xml",
                    "Accept": "*/*",
                    "Accept-Language": "en-US,en;q=0.9,fr;q=0.8",
                    "Origin": self._auth.theater.base_url,
                    "Referer": self._session.url_for(profile.playback_path),
                },
            )
            try:
                payload = unwrap(res, "GetShowStatusResponse", "showStatus")
            except SoapNotAuthenticated:
                self._session.soap_session_id = None
                if cached and attempt < MAX_SOAP_ATTEMPTS:
                    _LOGGER.info("soap_session_rejected theater=%s action=reextract", self.name)
                    continue
                raise
            status = show_status_from_payload(payload)
            return await self._with_next_show(status)

        # The loop either returns or raises on its last attempt.
        raise AssertionError("unreachable")

    async def _with_next_show(self, status: ShowStatus) -> ShowStatus:
        if status.is_running or self._schedule_provider is None:
            return status
        try:
            shows = await self._schedule_provider()
            next_show = pick_next_show(shows, datetime.now(timezone.utc), self._horizon)
        except Exception:
            _LOGGER.warning("next_show_enrichment_failed theater=%s", self.name, exc_info=True)
            return status
        if next_show is None:
            return status
        return replace(status, next_show=next_show)
