import unittest
from urllib.parse import parse_qs

from fakes import FakeHttp, FakeResponse, logged_in_auth, make_auth

from preshow_monitor.macros import (
    AJAX_COMMON_PATH,
    QUICK_CONTROL_PATH,
    MacroClient,
    parse_control_view_html,
    parse_quick_control_html,
)

QUICK_CONTROL_HTML = """
<div class="row mb-3">
  <div class="col-12 h6 mb-1">Lumieres</div>
  <div class="col-4" onclick="ajaxExecuteAction('LIGHTS_UP', this)"><button>Allumer</button></div>
  <div class="col-4" onclick="ajaxExecuteAction('LIGHTS_DOWN', this)"><button>Eteindre</button></div>
</div>
<div class="row mb-3"><div class="col-12 h6 mb-1">Vide</div></div>
"""

CONTROL_VIEW_HTML = """
<div class="controlViewButtonList">
  <div class="controlViewTitle"><span>Son</span></div>
  <div class="controlViewButton" onclick="ajaxExecuteControl('VOL_7')"><span>Volume 7</span></div>
</div>
<div class="controlViewButtonList">
  <div class="controlViewButton" onclick="ajaxExecuteControl('CURTAIN')"><span>Rideau</span></div>
</div>
"""


class ParseTests(unittest.TestCase):
    def test_quick_control(self) -> None:
        groups = parse_quick_control_html(QUICK_CONTROL_HTML)
        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0].group, "Lumieres")
        self.assertEqual([c.name for c in groups[0].controls], ["LIGHTS_UP", "LIGHTS_DOWN"])
        self.assertEqual(groups[0].controls[1].display, "Eteindre")
        self.assertEqual(groups[0].controls[1].id, "0-1")

    def test_control_view_default_group_name(self) -> None:
        groups = parse_control_view_html(CONTROL_VIEW_HTML)
        self.assertEqual([g.group for g in groups], ["Son", "Groupe 2"])
        self.assertEqual(groups[1].controls[0].name, "CURTAIN")

    def test_nothing_found(self) -> None:
        self.assertIsNone(parse_quick_control_html("<html></html>"))
        self.assertIsNone(parse_control_view_html(""))


class MacroClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_load_prefers_quick_control(self) -> None:
        http = FakeHttp().route("GET", QUICK_CONTROL_PATH, FakeResponse(200, QUICK_CONTROL_HTML))
        groups = await MacroClient(logged_in_auth(http)).load_macros()
        self.assertEqual(groups[0].group, "Lumieres")
        self.assertEqual(http.paths(), [QUICK_CONTROL_PATH])

    async def test_load_falls_back_to_control_view(self) -> None:
        http = FakeHttp()
        http.route("GET", QUICK_CONTROL_PATH, FakeResponse(200, "<html></html>"))
        http.route("POST", AJAX_COMMON_PATH, FakeResponse(200, CONTROL_VIEW_HTML))

        groups = await MacroClient(logged_in_auth(http)).load_macros()

        self.assertEqual([g.group for g in groups], ["Son", "Groupe 2"])
        self.assertEqual(http.calls[1].data, "request=GET_CONTROL_VIEW")

    async def test_load_without_session(self) -> None:
        self.assertIsNone(await MacroClient(make_auth(FakeHttp())).load_macros())

    async def test_execute_invalidates_playlist(self) -> None:
        executed = []
        http = FakeHttp().route("POST", AJAX_COMMON_PATH, FakeResponse(200, "OK"))
        client = MacroClient(logged_in_auth(http), on_executed=lambda: executed.append(True))

        self.assertTrue(await client.execute_macro("LIGHTS UP"))

        self.assertEqual(executed, [True])
        form = parse_qs(http.calls[0].data)
        self.assertEqual(form, {"request": ["EXECUTE_MACRO"], "macro_name": ["LIGHTS UP"]})

    async def test_execute_failure(self) -> None:
        executed = []
        http = FakeHttp().route("POST", AJAX_COMMON_PATH, FakeResponse(500, "error"))
        client = MacroClient(logged_in_auth(http), on_executed=lambda: executed.append(True))

        self.assertFalse(await client.execute_macro("X"))
        self.assertEqual(executed, [])


if __name__ == "__main__":
    unittest.main()
