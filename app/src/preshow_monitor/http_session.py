import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping
from urllib.parse import urljoin

import aiohttp

from .errors import TransportError
from .logging_utils import truncate
from .vendors import Vendor

_LOGGER = logging.getLogger(__name__)

SESSION_COOKIE = "PHPSESSID"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36"
)
HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

_COOKIE_RE = re.compile(r"([^=]+)=([^;]*)")


def is_login_page(html: str | None) -> bool:
    """True when a page is the vendor login form rather than the content asked for."""
    if not html or not isinstance(html, str):
        return False
    if 'attr-page="login"' in html:
        return True
    if 'name="loginForm"' in html:
        return True
    if "authentication failure" in html.lower():
        return True
    if "window.location.href = '/web/login.php'" in html:
        return True
    return False


@dataclass(frozen=True)
class HttpResponse:
    status: int
    headers: Mapping[str, str]
    body: str

    @property
    def location(self) -> str:
        return str(self.headers.get("Location") or "")

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError:
            return None


class CookieJarSession:
    """Browser-like HTTP session for one playback server.

    Redirects are never followed automatically and cookies are kept in a plain
    dict so that every ``Set-Cookie`` along a login chain is captured.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 5.0,
        http: aiohttp.ClientSession | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cookies: dict[str, str] = {}
        self.session_id: str | None = None
        self.authenticated = False
        self.detected_vendor: Vendor | None = None
        self.soap_session_id: str | None = None
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._http = http
        self._owns_http = http is None

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return urljoin(self.base_url + "/", path.lstrip("/"))

    def cookie_header(self) -> str:
        return "; ".join(f"{key}={value}" for key, value in self.cookies.items())

    def absorb_set_cookie(self, set_cookie: str | Iterable[str] | None) -> None:
        if not set_cookie:
            return
        entries = [set_cookie] if isinstance(set_cookie, str) else list(set_cookie)
        for entry in entries:
            match = _COOKIE_RE.match(entry)
            if not match:
                continue
            key = match.group(1).strip()
            value = match.group(2).strip()
            self.cookies[key] = value
            if key == SESSION_COOKIE:
                self.session_id = value
            _LOGGER.debug("cookie_updated name=%s value=%s", key, truncate(value))

    def clear(self) -> None:
        self.cookies = {}
        self.session_id = None
        self.authenticated = False
        self.detected_vendor = None
        self.soap_session_id = None

    def _client(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())
        return self._http

    async def request(
        self,
        method: str,
        path: str,
        body: str | None = None,
        headers: Mapping[str, str] | None = None,
        *,
        xhr: bool = True,
    ) -> HttpResponse:
        merged: dict[str, str] = {"User-Agent": USER_AGENT}
        if xhr:
            merged["X-Requested-With"] = "XMLHttpRequest"
        merged.update(headers or {})
        cookie = self.cookie_header()
        if cookie:
            merged["Cookie"] = cookie
        if body is not None and "content-type" not in {k.lower() for k in merged}:
            merged["Content-Type"] = "application/x-www-form-urlencoded"

        url = self.url_for(path)
        _LOGGER.debug("http_request method=%s url=%s", method, url)
        try:
            async with self._client().request(
                method,
                url,
                data=body,
                headers=merged,
                allow_redirects=False,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text(errors="replace")
                status = resp.status
                resp_headers = resp.headers.copy()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            _LOGGER.error("http_request_failed method=%s url=%s error=%r", method, url, exc)
            raise TransportError(f"{method} {url} failed: {exc!r}") from exc

        self.absorb_set_cookie(resp_headers.getall("Set-Cookie", []))

        if status == 200 and is_login_page(text) and self.authenticated:
            self.authenticated = False
            _LOGGER.warning("session_invalidated reason=login_page_detected url=%s", url)

        return HttpResponse(status=status, headers=resp_headers, body=text)

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.close()
        self._http = None
