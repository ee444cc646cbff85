import asyncio
import logging
from urllib.parse import urlencode, urljoin

from .config import TheaterConfig
from .errors import PreshowError, TransportError
from .health import HealthMonitor
from .http_session import HTML_ACCEPT, CookieJarSession, HttpResponse, is_login_page
from .vendors import PROFILES, VendorProfile, login_order, profile_for

_LOGGER = logging.getLogger(__name__)


class AuthEngine:
    """Logs a CookieJarSession in against whichever vendor flow the server accepts.

    States are LoggedOut and Authenticated. A successful login starts the
    health monitor; a failed health check or a login page seen in a normal
    response drops back to LoggedOut.
    """

    def __init__(
        self,
        theater: TheaterConfig,
        session: CookieJarSession,
        *,
        health_interval_seconds: float = 30,
    ) -> None:
        self.theater = theater
        self.session = session
        self.monitor = HealthMonitor(
            theater.name, session, self.login, interval_seconds=health_interval_seconds
        )
        self._lock = asyncio.Lock()
        self.login_attempts = 0

    @property
    def is_authenticated(self) -> bool:
        return self.session.authenticated and bool(self.session.session_id)

    @property
    def profile(self) -> VendorProfile:
        return profile_for(self.session.detected_vendor, self.theater.vendor_hint)

    async def ensure_logged_in(self) -> bool:
        if self.is_authenticated:
            return True
        async with self._lock:
            if self.is_authenticated:
                return True
            _LOGGER.info("session_missing theater=%s action=login", self.theater.name)
            return await self._login()

    async def login(self) -> bool:
        async with self._lock:
            return await self._login()

    async def _login(self) -> bool:
        self.login_attempts += 1
        await self.monitor.stop()
        if self.session.session_id:
            await self.logout()
        self.session.authenticated = False

        for vendor in login_order(self.theater.vendor_hint):
            try:
                ok = await self._attempt(PROFILES[vendor])
            except TransportError as exc:
                _LOGGER.warning("login_attempt_error theater=%s vendor=%s error=%s", self.theater.name, vendor.value, exc)
                ok = False
            if not ok:
                continue
            if not self.session.session_id:
                _LOGGER.warning("login_without_session_cookie theater=%s vendor=%s", self.theater.name, vendor.value)
                continue
            self.session.detected_vendor = vendor
            self.session.authenticated = True
            _LOGGER.info("login_success theater=%s vendor=%s", self.theater.name, vendor.value)
            self.monitor.start()
            return True

        self.session.clear()
        _LOGGER.error("login_failed theater=%s", self.theater.name)
        return False

    async def _attempt(self, profile: VendorProfile) -> bool:
        vendor = profile.vendor.value
        _LOGGER.debug("login_attempt theater=%s vendor=%s", self.theater.name, vendor)
        res = await self.session.request(
            "POST",
            profile.login_path,
            urlencode(profile.login_form(self.theater.username, self.theater.password)),
            {
                "Content-Type": "application/x-www-form-urlencoded",
                "Origin": self.theater.base_url,
                "Referer": self.session.url_for(profile.login_path),
                "Accept": HTML_ACCEPT,
            },
            xhr=False,
        )

        if res.status in (301, 302) and profile.redirect_accepted(res.location):
            _LOGGER.info("login_accepted theater=%s vendor=%s via=redirect", self.theater.name, vendor)
            await self._follow_redirect(profile, res)
            return True

        if res.status != 200:
            _LOGGER.warning("login_unexpected_status theater=%s vendor=%s status=%s", self.theater.name, vendor, res.status)
            return False

        if is_login_page(res.body):
            _LOGGER.warning("login_rejected theater=%s vendor=%s", self.theater.name, vendor)
            return False

        if profile.confirm_path is None:
            _LOGGER.info("login_accepted theater=%s vendor=%s via=content", self.theater.name, vendor)
            return True

        probe = await self.session.request("GET", profile.confirm_path, headers={"Accept": HTML_ACCEPT}, xhr=False)
        if probe.status == 200 and not is_login_page(probe.body):
            _LOGGER.info("login_accepted theater=%s vendor=%s via=probe", self.theater.name, vendor)
            return True
        _LOGGER.error("login_probe_failed theater=%s vendor=%s status=%s", self.theater.name, vendor, probe.status)
        return False

    async def _follow_redirect(self, profile: VendorProfile, res: HttpResponse) -> None:
        # The real session cookie is only rotated in once the redirect target is fetched.
        url = urljoin(self.session.url_for(profile.login_path), res.location)
        _LOGGER.debug("login_follow_redirect theater=%s url=%s", self.theater.name, url)
        try:
            await self.session.request("GET", url, headers={"Accept": HTML_ACCEPT}, xhr=False)
        except TransportError as exc:
            _LOGGER.warning("login_follow_redirect_failed theater=%s error=%s", self.theater.name, exc)

    async def logout(self) -> None:
        """Best-effort server logout; local session state is cleared whatever happens."""
        profile = self.profile
        _LOGGER.info("logout theater=%s vendor=%s", self.theater.name, profile.vendor.value)
        try:
            await self.session.request(
                "GET",
                profile.logout_path,
                headers={
                    "Referer": self.session.url_for(profile.logout_referer_path),
                    "Accept": HTML_ACCEPT,
                    "Upgrade-Insecure-Requests": "1",
                },
                xhr=False,
            )
        except PreshowError as exc:
            _LOGGER.warning("logout_failed theater=%s error=%s", self.theater.name, exc)
        finally:
            self.session.clear()

    async def disconnect(self) -> None:
        await self.monitor.stop()
        if self.session.session_id:
            await self.logout()
        self.session.clear()
        _LOGGER.info("session_destroyed theater=%s", self.theater.name)

    async def check_connection(self) -> bool:
        """Reachability check: health probe first, then a plain index GET."""
        if await self.monitor.probe():
            return True
        try:
            res = await self.session.request("GET", "/web/index.php", xhr=False)
        except TransportError:
            return False
        connected = res.status in (200, 301, 302)
        _LOGGER.debug("connectivity_check theater=%s ok=%s status=%s", self.theater.name, connected, res.status)
        return connected
