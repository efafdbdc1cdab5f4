import unittest

import redis
from fastapi.testclient import TestClient

from app.main import app as fastapi_app


class FakeRedis:
    def __init__(self, members=(), error=None):
        self.members = set(members)
        self.error = error

    def sismember(self, key, value):
        if self.error:
            raise self.error
        return value in self.members


class TestApi(unittest.TestCase):
    def setUp(self):
        import app.api as api_mod
        from app.config import settings

        self.api_mod = api_mod
        self._orig_build = api_mod.build_safety_report
        self._orig_redis = api_mod._redis_client
        self._orig_api_key = settings.api_key
        api_mod._redis_client = None
        settings.api_key = None
        self.client = TestClient(fastapi_app)

    def tearDown(self):
        from app.config import settings

        self.api_mod.build_safety_report = self._orig_build
        self.api_mod._redis_client = self._orig_redis
        settings.api_key = self._orig_api_key

    def test_healthz(self):
        resp = self.client.get("/v1/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_safety_passes_raw_query_values(self):
        calls = {}

        def fake_build(lat, lon, date, start, travel_window_hours):
            calls.update(lat=lat, lon=lon, date=date, start=start, window=travel_window_hours)
            return {"lat": 40.6, "lon": -111.6, "safety": {"score": 77}}

        self.api_mod.build_safety_report = fake_build
        resp = self.client.get("/v1/safety", params={"lat": "40.6", "lon": "-111.6", "date": "2025-01-10",
                                                     "start": "06:30", "travel_window_hours": "8"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["safety"]["score"], 77)
        self.assertEqual(calls, {"lat": "40.6", "lon": "-111.6", "date": "2025-01-10", "start": "06:30",
                                 "window": "8"})

    def test_missing_coordinates_400(self):
        resp = self.client.get("/v1/safety", params={"lat": "40.6"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], {"error": "Latitude and longitude are required"})

    def test_invalid_inputs_400(self):
        cases = [
            ({"lat": "abc", "lon": "-111.6"}, "Latitude/longitude must be valid decimal coordinates."),
            ({"lat": "40.6", "lon": "-111.6", "date": "01/10/2025"}, "Invalid date format. Use YYYY-MM-DD."),
            ({"lat": "40.6", "lon": "-111.6", "start": "noon"}, "Invalid start time format. Use HH:MM."),
        ]
        for params, message in cases:
            resp = self.client.get("/v1/safety", params=params)
            self.assertEqual(resp.status_code, 400)
            self.assertEqual(resp.json()["detail"]["error"], message)

    def test_requires_static_api_key_when_set(self):
        from app.config import settings

        settings.api_key = "sekret"
        self.api_mod.build_safety_report = lambda *args: {"ok": True}

        missing = self.client.get("/v1/safety", params={"lat": "40.6", "lon": "-111.6"})
        self.assertEqual(missing.status_code, 401)
        self.assertEqual(missing.json()["detail"], "Missing API key")

        wrong = self.client.get("/v1/safety", params={"lat": "40.6", "lon": "-111.6"},
                                headers={"X-API-Key": "nope"})
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(wrong.json()["detail"], "Invalid API key")

        ok = self.client.get("/v1/safety", params={"lat": "40.6", "lon": "-111.6"},
                             headers={"X-API-Key": "sekret"})
        self.assertEqual(ok.status_code, 200)

    def test_healthz_is_open_when_key_set(self):
        from app.config import settings

        settings.api_key = "sekret"
        self.assertEqual(self.client.get("/v1/healthz").status_code, 200)

    def test_redis_key_lookup(self):
        self.api_mod._redis_client = FakeRedis(members={"team-key"})
        self.api_mod.build_safety_report = lambda *args: {"ok": True}

        ok = self.client.get("/v1/safety", params={"lat": "40.6", "lon": "-111.6"},
                             headers={"X-API-Key": "team-key"})
        self.assertEqual(ok.status_code, 200)
        bad = self.client.get("/v1/safety", params={"lat": "40.6", "lon": "-111.6"},
                              headers={"X-API-Key": "other"})
        self.assertEqual(bad.status_code, 401)

    def test_redis_error_falls_back_to_static_key(self):
        from app.config import settings

        settings.api_key = "sekret"
        self.api_mod._redis_client = FakeRedis(error=redis.ConnectionError("down"))
        self.api_mod.build_safety_report = lambda *args: {"ok": True}

        resp = self.client.get("/v1/safety", params={"lat": "40.6", "lon": "-111.6"},
                               headers={"X-API-Key": "sekret"})
        self.assertEqual(resp.status_code, 200)


if __name__ == "__main__":
    unittest.main()
