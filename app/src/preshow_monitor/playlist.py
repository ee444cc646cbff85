import asyncio
import logging
import math
import re
import time
from itertools import product
from time import perf_counter
from typing import TYPE_CHECKING, Any, Callable, Iterable

from bs4 import BeautifulSoup, Tag

from .cache import Cache, NullCache, cache_key_for_playlist, decode_playlist, encode_playlist
from .errors import AuthRejected, TransportError
from .http_session import HTML_ACCEPT
from .models import Automation, PlaylistCacheEntry, PlaylistItem

if TYPE_CHECKING:
    from .auth import AuthEngine

_LOGGER = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 60 * 60

AJAX_PATHS = (
    "/web/sys_control/cinelister/ajax.php",
    "/web/index.php?page=sys_control/cinelister/ajax.php",
)
EDITOR_PATHS = (
    "/web/index.php?page=sys_control/cinelister/editor.php",
    "/web/sys_control/cinelister/editor.php",
)
PAYLOADS = (
    "request=LOAD_SPL_ITEMS&style=editor",
    "request=LOAD_SPL_ITEMS&style=editor&full=1",
    "request=LOAD_SPL_ITEMS",
)
DISPLAY_COOKIE = ("interfaceSize", "auto")

ITEM_CLASSES = frozenset(
    {"feature", "short", "trailer", "teaser", "psa", "advertisement", "policy", "pattern", "pack"}
)

_TIME_SELECTOR = 'span.editor-time, span[class*="editor-time"]'
_TITLE_SELECTOR = 'span.editor-title, span[class*="editor-title"]'

_HMS_RE = re.compile(r"^(\d{1,3}):(\d{2}):(\d{2})$")
_CPLNAME_RE = re.compile(r"""name\s*=\s*["']cplname["']""", re.IGNORECASE)
_CPL_CLASS_RE = re.compile(r"""\belement\b[^"]*\bcpl\b""", re.IGNORECASE)
_EVENT_DIV_RE = re.compile(r"\beventDiv\b", re.IGNORECASE)


def _normalize_space(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip()


def parse_seconds(raw: Any) -> int | None:
    """Seconds from ``H:MM:SS``, a six digit ``HHMMSS`` run, a bare number, or None."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return round(raw) if math.isfinite(raw) else None
    s = str(raw).strip()
    hms = _HMS_RE.match(s)
    if hms:
        return int(hms.group(1)) * 3600 + int(hms.group(2)) * 60 + int(hms.group(3))
    digits = re.sub(r"\D", "", s)
    if len(digits) == 6:
        return int(digits[0:2]) * 3600 + int(digits[2:4]) * 60 + int(digits[4:6])
    if digits:
        return int(digits)
    return None


def _to_int(raw: str | None) -> int | None:
    if raw is None or not str(raw).strip():
        return None
    try:
        return round(float(str(raw).strip()))
    except ValueError:
        return None


def score_editor_html(html: str) -> int:
    """Rank a LOAD_SPL_ITEMS reply; the full view carries CPL inputs and event divs."""
    if not html:
        return 0
    length_score = min(50, len(html) // 1000)
    cplname_count = len(_CPLNAME_RE.findall(html))
    cpl_class_count = len(_CPL_CLASS_RE.findall(html))
    event_div_count = len(_EVENT_DIV_RE.findall(html))
    return length_score + cplname_count * 10 + cpl_class_count * 5 + event_div_count


def _best_text(el: Tag, selector: str) -> str:
    found = el.select_one(selector)
    if found is None:
        return ""
    return _normalize_space(str(found.get("title") or found.get_text() or ""))


def _input_value(el: Tag, selector: str) -> str:
    found = el.select_one(selector)
    if found is None:
        return ""
    return str(found.get("value") or "").strip()


def _sorted_by_start(entries: Iterable[Any]) -> list[Any]:
    # Stable: equal offsets keep document order, missing offsets go last.
    return sorted(entries, key=lambda e: (e.start_seconds is None, e.start_seconds or 0))


def _parse_automation(row: Tag, container: Tag) -> Automation | None:
    auto_id = str(row.get("id") or "").strip()
    time_text = _best_text(row, _TIME_SELECTOR)
    title = _best_text(row, _TITLE_SELECTOR)

    spans = row.find_all("span")
    if not time_text and len(spans) >= 1:
        time_text = spans[0].get_text(strip=True)
    if not title and len(spans) >= 2:
        title = spans[1].get_text(strip=True)
    if not title:
        return None

    kind = ""
    frame_offset = None
    if auto_id:
        kind_input = container.find("input", id=f"kind{auto_id}")
        offset_input = container.find("input", id=f"offset{auto_id}")
        if kind_input is not None:
            kind = str(kind_input.get("value") or "").strip()
        if offset_input is not None:
            frame_offset = _to_int(offset_input.get("value"))

    return Automation(
        id=auto_id,
        time_text=time_text,
        start_seconds=parse_seconds(time_text),
        title=title,
        kind=kind,
        frame_offset=frame_offset,
    )


def _automations_for(item_id: str, cpl_id: str, addons: dict[str, Tag]) -> list[Automation]:
    """Automation rows live in an ``addOnDiv`` named after the element id or the CPL uuid.

    Firmware is not consistent about which key it uses, so the element id is
    tried first and the CPL uuid second; rows already seen under the first key
    are not added twice.
    """
    found: list[Automation] = []
    for key in (item_id, cpl_id):
        if not key or key not in addons:
            continue
        container = addons[key]
        for row in container.select("div.element.automation"):
            automation = _parse_automation(row, container)
            if automation is None:
                continue
            if automation.id and any(a.id == automation.id for a in found):
                continue
            found.append(automation)
    return _sorted_by_start(found)


def parse_playlist_html(html: str) -> list[PlaylistItem]:
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")

    addons: dict[str, Tag] = {}
    for div in soup.select("div.addOnDiv"):
        name = str(div.get("name") or "").strip()
        if name:
            addons[name] = div

    items: list[PlaylistItem] = []
    for row in soup.select("div.element"):
        classes = tuple(row.get("class") or ())
        lowered = {c.lower() for c in classes}
        if "automation" in lowered:
            continue

        time_text = _best_text(row, _TIME_SELECTOR)
        title = _best_text(row, _TITLE_SELECTOR)
        # DCP2000 renders plain ellipsis spans instead of editor-time/editor-title.
        ellipsis = row.select("span.ellipsis")
        if not time_text and len(ellipsis) >= 1:
            time_text = ellipsis[0].get_text(strip=True)
        if not title and len(ellipsis) >= 2:
            title = str(ellipsis[1].get("title") or ellipsis[1].get_text(strip=True))
        if not time_text and not title:
            continue

        start = parse_seconds(time_text)
        cpl_name = _input_value(row, 'input[name="cplname"], input[name="cpl_name"]')
        cpl_id = _input_value(row, 'input[name="cpl"]')
        duration = _to_int(_input_value(row, 'input[name="duration"]'))

        looks_like_item = (
            start is not None
            or duration is not None
            or bool(cpl_name)
            or bool(cpl_id)
            or bool(lowered & ITEM_CLASSES)
        )
        if not looks_like_item:
            continue

        item_id = str(row.get("id") or "").strip()
        items.append(
            PlaylistItem(
                id=item_id,
                classes=classes,
                time_text=time_text,
                start_seconds=start,
                title=title,
                cpl_name=cpl_name,
                cpl_id=cpl_id,
                duration_seconds=duration,
                automations=tuple(_automations_for(item_id, cpl_id, addons)),
            )
        )

    return _sorted_by_start(items)


class PlaylistScraper:
    """Per-theater show timeline, scraped from the playlist editor and cached by show title."""

    def __init__(
        self,
        auth: "AuthEngine",
        *,
        cache: Cache | None = None,
        ttl_seconds: int = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._auth = auth
        self._session = auth.session
        self._cache = cache or NullCache()
        self._ttl = ttl_seconds
        self._clock = clock
        self._entry: PlaylistCacheEntry | None = None
        self._lock = asyncio.Lock()
        self.scrape_count = 0

    @property
    def name(self) -> str:
        return self._auth.theater.name

    @property
    def entry(self) -> PlaylistCacheEntry | None:
        return self._entry

    def _fresh(self, entry: PlaylistCacheEntry | None, show_title: str) -> bool:
        return (
            entry is not None
            and entry.show_title == show_title
            and (self._clock() - entry.fetched_at) < self._ttl
        )

    async def prime(self) -> None:
        """Visit the editor page; some firmware only serves the full view after it."""
        for path in EDITOR_PATHS:
            try:
                res = await self._session.request("GET", path, headers={"Accept": HTML_ACCEPT})
                _LOGGER.debug("editor_primed theater=%s path=%s status=%s", self.name, path, res.status)
            except TransportError as exc:
                _LOGGER.debug("editor_prime_failed theater=%s path=%s error=%s", self.name, path, exc)
        name, value = DISPLAY_COOKIE
        self._session.cookies.setdefault(name, value)

    async def fetch_best_html(self) -> str:
        base = self._auth.theater.base_url
        referers = [self._session.url_for(path) for path in EDITOR_PATHS]
        best_score, best_html = -1, ""
        for path, referer, payload in product(AJAX_PATHS, referers, PAYLOADS):
            try:
                res = await self._session.request(
                    "POST",
                    path,
                    payload,
                    {
                        "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
                        "Referer": referer,
                        "Origin": base,
                    },
                )
            except TransportError as exc:
                _LOGGER.debug("playlist_attempt_failed theater=%s path=%s error=%s", self.name, path, exc)
                continue
            score = score_editor_html(res.body)
            if score > best_score:
                best_score, best_html = score, res.body
        _LOGGER.info(
            "playlist_html_selected theater=%s score=%s length=%s",
            self.name,
            best_score,
            len(best_html),
        )
        return best_html

    async def refresh(self, show_title: str) -> list[PlaylistItem]:
        if not await self._auth.ensure_logged_in():
            raise AuthRejected(f"authentication failed for {self.name}")
        start_ts = perf_counter()
        self.scrape_count += 1
        await self.prime()
        html = await self.fetch_best_html()
        items = parse_playlist_html(html)
        self._entry = PlaylistCacheEntry(show_title=show_title, items=items, fetched_at=self._clock())
        if items:
            await self._cache_set(self._entry)
        else:
            _LOGGER.warning("playlist_parse_miss theater=%s title=%s", self.name, show_title)
        _LOGGER.info(
            "playlist_scrape_done theater=%s title=%s items=%s duration_ms=%s",
            self.name,
            show_title,
            len(items),
            int((perf_counter() - start_ts) * 1000),
        )
        return items

    async def get_or_fetch(self, show_title: str) -> list[PlaylistItem]:
        if self._fresh(self._entry, show_title):
            return self._entry.items
        async with self._lock:
            if self._fresh(self._entry, show_title):
                return self._entry.items
            cached = await self._cache_get(show_title)
            if cached is not None:
                self._entry = cached
                return cached.items
            return await self.refresh(show_title)

    def invalidate(self) -> None:
        entry, self._entry = self._entry, None
        if entry is not None:
            self._cache.delete(cache_key_for_playlist(self.name, entry.show_title))
        _LOGGER.info("playlist_cache_invalidated theater=%s", self.name)

    async def _cache_get(self, show_title: str) -> PlaylistCacheEntry | None:
        key = cache_key_for_playlist(self.name, show_title)
        raw = await asyncio.to_thread(self._cache.get_json, key)
        if not raw:
            return None
        try:
            entry = decode_playlist(raw)
        except (KeyError, TypeError, ValueError):
            _LOGGER.warning("playlist_cache_entry_invalid key=%s", key, exc_info=True)
            return None
        if not self._fresh(entry, show_title):
            return None
        _LOGGER.info("playlist_cache_hit theater=%s title=%s", self.name, show_title)
        return entry

    async def _cache_set(self, entry: PlaylistCacheEntry) -> None:
        key = cache_key_for_playlist(self.name, entry.show_title)
        await asyncio.to_thread(self._cache.set_json, key, encode_playlist(entry), self._ttl)
