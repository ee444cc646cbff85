import json
import unittest
from datetime import datetime, timedelta, timezone

from fakes import FakeHttp, FakeResponse, logged_in_auth, make_auth

from preshow_monitor.errors import AuthRejected, ParseMiss, SoapFault, SoapNotAuthenticated, UnexpectedResponse
from preshow_monitor.models import ScheduledShow
from preshow_monitor.soap import SHOW_CONTROL_PATH
from preshow_monitor.status import DeviceStatusClient, pick_next_show, show_status_from_payload

IMS_PLAYBACK = "/web/index.php?page=sys_control/cinelister/playback.php"
DCP_PLAYBACK = "/web/sys_control/cinelister/playback.php"
FRESH_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"
STALE_ID = "11111111-2222-3333-4444-555555555555"

PLAYBACK_PAGE = f"<script>var sessionId = '{FRESH_ID}';</script>"
NOT_AUTH = FakeResponse(200, json.dumps({"Fault": {"faultstring": "not authenticated"}}))


def status_response(state: str = "Play", position: str = "01:10:00") -> FakeResponse:
    body = {
        "GetShowStatusResponse": {
            "showStatus": {
                "splTitle": "Soir",
                "cplTitle": "MOVIE_FTR_2K",
                "splPosition": position,
                "splDuration": 7200,
                "stateInfo": state,
            }
        }
    }
    return FakeResponse(200, json.dumps(body))


class PayloadTests(unittest.TestCase):
    def test_show_status_from_payload(self) -> None:
        status = show_status_from_payload(
            {"splTitle": "Soir", "cplTitle": "", "splPosition": "00:15:00", "splDuration": "020000", "stateInfo": "Play"}
        )
        self.assertEqual(status.spl_title, "Soir")
        self.assertIsNone(status.cpl_title)
        self.assertEqual(status.position_seconds, 900)
        self.assertEqual(status.duration_seconds, 7200)
        self.assertTrue(status.is_running)

    def test_missing_state_is_unknown(self) -> None:
        status = show_status_from_payload({})
        self.assertEqual(status.state, "Unknown")
        self.assertIsNone(status.position_seconds)
        self.assertFalse(status.is_running)

    def test_pick_next_show_within_horizon(self) -> None:
        now = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)
        shows = [
            ScheduledShow("Later", now + timedelta(hours=3), now + timedelta(hours=5)),
            ScheduledShow("Past", now - timedelta(hours=1), now + timedelta(hours=1)),
            ScheduledShow("Soon", now + timedelta(hours=1), now + timedelta(hours=3)),
            ScheduledShow("Too far", now + timedelta(hours=6), now + timedelta(hours=8)),
        ]
        nxt = pick_next_show(shows, now, 5 * 3600)
        self.assertEqual(nxt.title, "Soon")
        self.assertEqual(nxt.start, (now + timedelta(hours=1)).isoformat())

    def test_pick_next_show_none(self) -> None:
        now = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)
        far = [ScheduledShow("Too far", now + timedelta(hours=6), now + timedelta(hours=8))]
        self.assertIsNone(pick_next_show(far, now, 5 * 3600))
        self.assertIsNone(pick_next_show([], now, 5 * 3600))


class DeviceStatusClientTests(unittest.IsolatedAsyncioTestCase):
    async def test_extracts_session_id_then_fetches_status(self) -> None:
        http = FakeHttp()
        http.route("GET", IMS_PLAYBACK, FakeResponse(200, PLAYBACK_PAGE))
        http.route("POST", SHOW_CONTROL_PATH, status_response())
        client = DeviceStatusClient(logged_in_auth(http))

        status = await client.get_status()

        self.assertEqual(status.spl_title, "Soir")
        self.assertEqual(status.position_seconds, 4200)
        self.assertEqual(http.paths(), [IMS_PLAYBACK, SHOW_CONTROL_PATH])
        envelope = http.calls[1].data
        self.assertIn("<v1:GetShowStatus>", envelope)
        self.assertIn(f"<sessionId>{FRESH_ID}</sessionId>", envelope)
        self.assertTrue(http.calls[1].headers["Referer"].endswith(IMS_PLAYBACK))
        self.assertEqual(http.calls[1].headers["Content-Type"], "text/xml")

    async def test_cached_session_id_is_reused(self) -> None:
        http = FakeHttp()
        http.route("GET", IMS_PLAYBACK, FakeResponse(200, PLAYBACK_PAGE))
        http.route("POST", SHOW_CONTROL_PATH, status_response())
        client = DeviceStatusClient(logged_in_auth(http))

        await client.get_status()
        await client.get_status()

        self.assertEqual(http.paths("GET"), [IMS_PLAYBACK])

    async def test_stale_cached_id_is_reextracted_once(self) -> None:
        http = FakeHttp()
        http.route("GET", IMS_PLAYBACK, FakeResponse(200, PLAYBACK_PAGE))
        http.route("POST", SHOW_CONTROL_PATH, NOT_AUTH, status_response())
        auth = logged_in_auth(http)
        auth.session.soap_session_id = STALE_ID
        client = DeviceStatusClient(auth)

        status = await client.get_status()

        self.assertEqual(status.state, "Play")
        self.assertEqual(http.paths(), [SHOW_CONTROL_PATH, IMS_PLAYBACK, SHOW_CONTROL_PATH])
        self.assertIn(STALE_ID, http.calls[0].data)
        self.assertIn(FRESH_ID, http.calls[2].data)
        self.assertEqual(auth.session.soap_session_id, FRESH_ID)

    async def test_second_not_authenticated_fault_is_raised(self) -> None:
        http = FakeHttp()
        http.route("GET", IMS_PLAYBACK, FakeResponse(200, PLAYBACK_PAGE))
        http.route("POST", SHOW_CONTROL_PATH, NOT_AUTH)
        auth = logged_in_auth(http)
        auth.session.soap_session_id = STALE_ID
        client = DeviceStatusClient(auth)

        with self.assertRaises(SoapNotAuthenticated) as ctx:
            await client.get_status()

        self.assertEqual(str(ctx.exception), "SOAP Fault: not authenticated")
        self.assertEqual(len(http.calls), 3)
        self.assertIsNone(auth.session.soap_session_id)

    async def test_fresh_id_fault_is_not_retried(self) -> None:
        http = FakeHttp()
        http.route("GET", IMS_PLAYBACK, FakeResponse(200, PLAYBACK_PAGE))
        http.route("POST", SHOW_CONTROL_PATH, NOT_AUTH)
        client = DeviceStatusClient(logged_in_auth(http))

        with self.assertRaises(SoapNotAuthenticated):
            await client.get_status()
        self.assertEqual(http.paths(), [IMS_PLAYBACK, SHOW_CONTROL_PATH])

    async def test_other_fault_is_raised_without_retry(self) -> None:
        http = FakeHttp()
        http.route("POST", SHOW_CONTROL_PATH, FakeResponse(500, json.dumps({"Fault": {"faultstring": "license expired"}})))
        auth = logged_in_auth(http)
        auth.session.soap_session_id = STALE_ID
        client = DeviceStatusClient(auth)

        with self.assertRaises(SoapFault) as ctx:
            await client.get_status()

        self.assertNotIsInstance(ctx.exception, SoapNotAuthenticated)
        self.assertEqual(ctx.exception.fault_string, "license expired")
        self.assertEqual(len(http.calls), 1)

    async def test_unexpected_body(self) -> None:
        http = FakeHttp()
        http.route("POST", SHOW_CONTROL_PATH, FakeResponse(200, "<html>oops</html>"))
        auth = logged_in_auth(http)
        auth.session.soap_session_id = STALE_ID

        with self.assertRaises(UnexpectedResponse):
            await DeviceStatusClient(auth).get_status()

    async def test_missing_session_id_in_page(self) -> None:
        http = FakeHttp().route("GET", IMS_PLAYBACK, FakeResponse(200, "<html>no id here</html>"))
        client = DeviceStatusClient(logged_in_auth(http))

        with self.assertRaises(ParseMiss):
            await client.get_status()
        self.assertNotIn(SHOW_CONTROL_PATH, http.paths())

    async def test_dcp_uses_its_own_playback_page(self) -> None:
        http = FakeHttp()
        http.route("GET", DCP_PLAYBACK, FakeResponse(200, PLAYBACK_PAGE))
        http.route("POST", SHOW_CONTROL_PATH, status_response())
        client = DeviceStatusClient(logged_in_auth(http, "DCP2000"))

        await client.get_status()

        self.assertEqual(http.paths(), [DCP_PLAYBACK, SHOW_CONTROL_PATH])
        self.assertTrue(http.calls[1].headers["Referer"].endswith(DCP_PLAYBACK))

    async def test_login_failure_raises_auth_rejected(self) -> None:
        client = DeviceStatusClient(make_auth(FakeHttp()))
        with self.assertRaises(AuthRejected):
            await client.get_status()

    async def test_next_show_added_when_idle(self) -> None:
        start = datetime.now(timezone.utc) + timedelta(hours=1)

        async def schedule():
            return [ScheduledShow("Dune", start, start + timedelta(hours=3))]

        http = FakeHttp()
        http.route("GET", IMS_PLAYBACK, FakeResponse(200, PLAYBACK_PAGE))
        http.route("POST", SHOW_CONTROL_PATH, status_response(state="Stop"))
        client = DeviceStatusClient(logged_in_auth(http), schedule_provider=schedule)

        status = await client.get_status()

        self.assertEqual(status.next_show.title, "Dune")
        self.assertEqual(status.to_dict()["nextShow"]["title"], "Dune")

    async def test_next_show_skipped_while_playing(self) -> None:
        calls = []

        async def schedule():
            calls.append(1)
            return []

        http = FakeHttp()
        http.route("GET", IMS_PLAYBACK, FakeResponse(200, PLAYBACK_PAGE))
        http.route("POST", SHOW_CONTROL_PATH, status_response(state="Play"))
        client = DeviceStatusClient(logged_in_auth(http), schedule_provider=schedule)

        status = await client.get_status()

        self.assertIsNone(status.next_show)
        self.assertEqual(calls, [])

    async def test_schedule_failure_keeps_status(self) -> None:
        async def schedule():
            raise RuntimeError("calendar down")

        http = FakeHttp()
        http.route("GET", IMS_PLAYBACK, FakeResponse(200, PLAYBACK_PAGE))
        http.route("POST", SHOW_CONTROL_PATH, status_response(state="Stop"))
        client = DeviceStatusClient(logged_in_auth(http), schedule_provider=schedule)

        with self.assertLogs("preshow_monitor.status", level="WARNING"):
            status = await client.get_status()
        self.assertEqual(status.state, "Stop")
        self.assertIsNone(status.next_show)


if __name__ == "__main__":
    unittest.main()
