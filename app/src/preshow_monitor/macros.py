import logging
import re
from typing import Callable
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from .auth import AuthEngine
from .errors import PreshowError
from .logging_utils import truncate
from .models import MacroControl, MacroGroup

_LOGGER = logging.getLogger(__name__)

QUICK_CONTROL_PATH = "/web/tooltip/quickControl.php"
AJAX_COMMON_PATH = "/web/js/ajax_common.php"

_ACTION_RE = re.compile(r"ajaxExecuteAction\('([^']+)'")
_CONTROL_RE = re.compile(r"ajaxExecuteControl\('([^']+)'")


def parse_quick_control_html(html: str) -> list[MacroGroup] | None:
    soup = BeautifulSoup(html or "", "html.parser")
    groups: list[MacroGroup] = []
    for row_idx, row in enumerate(soup.select("div.row.mb-3")):
        title = row.select_one("div.col-12.h6.mb-1")
        group_name = title.get_text(strip=True) if title else ""
        if not group_name:
            continue
        controls = []
        for btn_idx, col in enumerate(row.select('div.col-4[onclick^="ajaxExecuteAction"]')):
            match = _ACTION_RE.search(str(col.get("onclick") or ""))
            button = col.find("button")
            label = button.get_text(strip=True) if button else ""
            if match and label:
                controls.append(MacroControl(id=f"{row_idx}-{btn_idx}", name=match.group(1), display=label))
        if controls:
            groups.append(MacroGroup(group=group_name, controls=controls))
    return groups or None


def parse_control_view_html(html: str) -> list[MacroGroup] | None:
    soup = BeautifulSoup(html or "", "html.parser")
    groups: list[MacroGroup] = []
    for g_idx, group in enumerate(soup.select("div.controlViewButtonList")):
        title = group.select_one("div.controlViewTitle span")
        group_name = (title.get_text(strip=True) if title else "") or f"Groupe {g_idx + 1}"
        controls = []
        for b_idx, btn in enumerate(group.select("div.controlViewButton")):
            match = _CONTROL_RE.search(str(btn.get("onclick") or ""))
            span = btn.find("span")
            label = span.get_text(strip=True) if span else ""
            if match and label:
                controls.append(MacroControl(id=f"{g_idx}-{b_idx}", name=match.group(1), display=label))
        if controls:
            groups.append(MacroGroup(group=group_name, controls=controls))
    return groups or None


class MacroClient:
    def __init__(self, auth: AuthEngine, on_executed: Callable[[], None] | None = None) -> None:
        self._auth = auth
        self._session = auth.session
        self._on_executed = on_executed

    def _headers(self) -> dict[str, str]:
        return {"Referer": self._session.url_for("/web/index.php")}

    async def load_macros(self) -> list[MacroGroup] | None:
        name = self._auth.theater.name
        try:
            if not await self._auth.ensure_logged_in():
                return None
            res = await self._session.request("GET", QUICK_CONTROL_PATH, headers=self._headers())
            if res.status == 200:
                groups = parse_quick_control_html(res.body)
                if groups:
                    return groups
            res = await self._session.request(
                "POST", AJAX_COMMON_PATH, "request=GET_CONTROL_VIEW", self._headers()
            )
            if res.status == 200:
                return parse_control_view_html(res.body)
            return None
        except PreshowError:
            _LOGGER.exception("macros_load_failed theater=%s", name)
            return None

    async def execute_macro(self, macro_name: str) -> bool:
        name = self._auth.theater.name
        try:
            if not await self._auth.ensure_logged_in():
                return False
            _LOGGER.info("macro_execute theater=%s macro=%s", name, macro_name)
            res = await self._session.request(
                "POST",
                AJAX_COMMON_PATH,
                urlencode({"request": "EXECUTE_MACRO", "macro_name": macro_name}),
                {
                    **self._headers(),
                    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
                    "Origin": self._auth.theater.base_url,
                },
            )
        except PreshowError:
            _LOGGER.exception("macro_execute_failed theater=%s macro=%s", name, macro_name)
            return False

        if res.status != 200:
            _LOGGER.error(
                "macro_execute_failed theater=%s macro=%s status=%s body=%s",
                name,
                macro_name,
                res.status,
                truncate(res.body, 50),
            )
            return False
        _LOGGER.info("macro_executed theater=%s macro=%s", name, macro_name)
        if self._on_executed is not None:
            self._on_executed()
        return True
