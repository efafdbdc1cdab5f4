import unittest

import requests

from app.data_sources import http_gateway
from app.domain import ProviderStatus
from app.errors import InputValidationError


class DummyResp:
    def __init__(self, payload=None, text="", status_error=None):
        self._payload = payload
        self.text = text
        self.headers = {}
        self._status_error = status_error

    def raise_for_status(self):
        if self._status_error:
            raise self._status_error

    def json(self):
        return self._payload


class TestHttpGateway(unittest.TestCase):
    def setUp(self):
        self.orig_session = http_gateway.session
        self.calls = []

    def tearDown(self):
        http_gateway.session = self.orig_session

    def _install(self, resp):
        calls = self.calls

        def fake_get(url, params=None, headers=None, timeout=None):
            calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
            return resp

        http_gateway.session = type("S", (), {"get": staticmethod(fake_get)})()

    def test_get_json_sends_user_agent_and_timeout(self):
        self._install(DummyResp({"ok": True}))
        self.assertEqual(http_gateway.get_json("https://example.test/a", params={"x": 1}), {"ok": True})
        call = self.calls[-1]
        self.assertEqual(call["params"], {"x": 1})
        self.assertIn("User-Agent", call["headers"])
        self.assertGreater(call["timeout"], 0)

    def test_extra_headers_override_defaults(self):
        self._install(DummyResp(text="<html></html>"))
        body = http_gateway.get_text("https://example.test/page", headers={"Accept": "text/html"})
        self.assertEqual(body, "<html></html>")
        self.assertEqual(self.calls[-1]["headers"]["Accept"], "text/html")

    def test_http_errors_raise(self):
        self._install(DummyResp(status_error=requests.HTTPError("503")))
        with self.assertRaises(requests.HTTPError):
            http_gateway.get_json("https://example.test/down")


class TestCallProvider(unittest.TestCase):
    def test_success_is_ok(self):
        result = http_gateway.call_provider("Solar", lambda: {"sunrise": "6:00"})
        self.assertEqual(result.status, ProviderStatus.OK)
        self.assertTrue(result.available)
        self.assertEqual(result.source, "Solar")

    def test_recoverable_failure_is_unavailable(self):
        def fail():
            raise requests.ConnectionError("refused")

        result = http_gateway.call_provider("Solar", fail)
        self.assertEqual(result.status, ProviderStatus.UNAVAILABLE)
        self.assertFalse(result.available)
        self.assertIn("refused", result.error)

    def test_degraded_result_is_still_available(self):
        result = http_gateway.ProviderResult.degraded("Open-Meteo", {"temp": 21}, error="NOAA timed out")
        self.assertEqual(result.status, ProviderStatus.DEGRADED)
        self.assertTrue(result.available)
        self.assertEqual(result.error, "NOAA timed out")

    def test_empty_response_is_unavailable(self):
        result = http_gateway.call_provider("Solar", lambda: None)
        self.assertEqual(result.status, ProviderStatus.UNAVAILABLE)

    def test_validation_errors_propagate(self):
        def invalid():
            raise InputValidationError("Requested forecast date is outside NOAA forecast range")

        with self.assertRaises(InputValidationError):
            http_gateway.call_provider("NOAA", invalid)


if __name__ == "__main__":
    unittest.main()
