import datetime as dt
import unittest

import requests

from app.data_sources import http_gateway, open_meteo_client
from app.weather_math import parse_iso


class DummyResp:
    def __init__(self, payload, headers=None):
        self._payload = payload
        self.headers = headers or {}

    def raise_for_status(self):
        pass

    def json(self):
        return self._payload


def _make_weather_payload():
    times = [f"2025-01-10T{h:02d}:00" for h in range(24)] + [f"2025-01-11T{h:02d}:00" for h in range(6)]
    n = len(times)
    return {
        "timezone": "America/Denver",
        "utc_offset_seconds": -25200,
        "elevation": 2500,
        "hourly": {
            "time": times,
            "temperature_2m": [20.0 + i for i in range(n)],
            "dew_point_2m": [5.0] * n,
            "relative_humidity_2m": [60.0] * n,
            "precipitation_probability": [30.0] * n,
            "cloud_cover": [70.0] * n,
            "surface_pressure": [740.0] * n,
            "weather_code": [71] * n,
            "wind_speed_10m": [12.0] * n,
            "wind_gusts_10m": [None] * n,
            "wind_direction_10m": [270.0] * n,
            "is_day": [1] * n,
        },
    }


def _make_air_payload():
    return {
        "hourly": {
            "time": ["2025-01-10T12:00", "2025-01-10T13:00", "2025-01-10T14:00"],
            "us_aqi": [40, 75, None],
            "pm2_5": [5.0, 12.0, None],
            "pm10": [8.0, 20.0, None],
            "ozone": [30.0, 44.0, None],
        }
    }


def _make_precip_payload():
    start = dt.datetime(2025, 1, 9, tzinfo=dt.timezone.utc)
    times = [(start + dt.timedelta(hours=h)).strftime("%Y-%m-%dT%H:%M") for h in range(60)]
    return {"hourly": {"time": times, "rain": [0.5] * 60, "precipitation": [0.5] * 60}}


class TestFallbackForecast(unittest.TestCase):
    def test_build_fallback_forecast_anchors_start(self):
        result = open_meteo_client.build_fallback_forecast(
            _make_weather_payload(), issued_time="2025-01-10T00:00:00+00:00", lat=40.6, lon=-111.6,
            selected_date="2025-01-10", start_clock="06:30", travel_window_hours=4)
        snapshot = result.snapshot
        self.assertEqual(snapshot.forecast_start_time, "2025-01-10T07:00:00-07:00")
        self.assertEqual(snapshot.forecast_end_time, "2025-01-10T08:00:00-07:00")
        self.assertEqual(snapshot.temp, 27.0)
        self.assertEqual(snapshot.wind_gust, 15.0)
        self.assertEqual(snapshot.wind_direction, "W")
        self.assertEqual(snapshot.description, "Slight Snow Fall")
        self.assertEqual(snapshot.elevation, 8202.0)
        self.assertEqual(len(snapshot.trend), 4)
        self.assertEqual(snapshot.source_details.field_sources["windGust"],
                         "Estimated from Open-Meteo sustained wind")
        self.assertEqual(result.date_range, {"start": "2025-01-10", "end": "2025-01-11"})

    def test_unknown_date_falls_back_to_first_day(self):
        result = open_meteo_client.build_fallback_forecast(
            _make_weather_payload(), issued_time=None, lat=0, lon=0, selected_date="2030-01-01",
            start_clock=None, travel_window_hours=12)
        self.assertEqual(result.selected_date, "2025-01-10")

    def test_local_times_carry_the_payload_offset(self):
        result = open_meteo_client.build_fallback_forecast(
            _make_weather_payload(), issued_time=None, lat=40.6, lon=-111.6,
            selected_date="2025-01-10", start_clock="07:00", travel_window_hours=2)
        start = parse_iso(result.snapshot.forecast_start_time)
        self.assertEqual(start, dt.datetime(2025, 1, 10, 14, 0, tzinfo=dt.timezone.utc))
        self.assertEqual(result.snapshot.trend[1].time_iso, "2025-01-10T08:00:00-07:00")

    def test_missing_offset_is_read_as_utc(self):
        payload = _make_weather_payload()
        del payload["utc_offset_seconds"]
        result = open_meteo_client.build_fallback_forecast(
            payload, issued_time=None, lat=0, lon=0, selected_date=None, start_clock=None,
            travel_window_hours=1)
        self.assertEqual(result.snapshot.forecast_start_time, "2025-01-10T00:00:00+00:00")

    def test_missing_time_series_raises(self):
        with self.assertRaises(ValueError):
            open_meteo_client.build_fallback_forecast({"hourly": {}}, issued_time=None, lat=0, lon=0,
                                                      selected_date=None, start_clock=None,
                                                      travel_window_hours=12)


class TestOpenMeteoFetch(unittest.TestCase):
    def setUp(self):
        self.orig_session = http_gateway.session
        self.orig_cache_session = http_gateway.cache_session

    def tearDown(self):
        http_gateway.session = self.orig_session
        http_gateway.cache_session = self.orig_cache_session

    @staticmethod
    def _refuse_retrying_session(*args, **kwargs):
        raise AssertionError("forecast attempts must not go through the retrying session")

    def test_forecast_fails_over_to_second_host(self):
        calls = []

        def fake_get(url, **kwargs):
            calls.append(url)
            if url.startswith("https://api."):
                raise requests.ConnectionError("primary host down")
            return DummyResp(_make_weather_payload(), headers={"Date": "Fri, 10 Jan 2025 12:00:00 GMT"})

        http_gateway.cache_session = type("S", (), {"get": staticmethod(fake_get)})()
        http_gateway.session = type("S", (), {"get": staticmethod(self._refuse_retrying_session)})()
        result = open_meteo_client.fetch_fallback_forecast(40.6, -111.6, selected_date="2025-01-10",
                                                           start_clock=None, travel_window_hours=12)
        self.assertEqual(len(calls), open_meteo_client.OPEN_METEO_ATTEMPTS_PER_HOST + 1)
        self.assertEqual(result.snapshot.issued_time, "2025-01-10T12:00:00+00:00")

    def test_total_attempts_are_hosts_times_attempts(self):
        calls = []

        def fake_get(url, **kwargs):
            calls.append(url)
            raise requests.ConnectionError("host down")

        http_gateway.cache_session = type("S", (), {"get": staticmethod(fake_get)})()
        http_gateway.session = type("S", (), {"get": staticmethod(self._refuse_retrying_session)})()
        with self.assertRaises(requests.ConnectionError):
            open_meteo_client.fetch_fallback_forecast(40.6, -111.6, selected_date=None,
                                                      start_clock=None, travel_window_hours=12)
        per_host = open_meteo_client.OPEN_METEO_ATTEMPTS_PER_HOST
        self.assertEqual(len(calls), len(open_meteo_client.OPEN_METEO_HOSTS) * per_host)
        self.assertEqual(calls.count("https://api.open-meteo.com/v1/forecast"), per_host)

    def test_air_quality_uses_closest_hour(self):
        http_gateway.session = type("S", (), {"get": lambda *a, **k: DummyResp(_make_air_payload())})()
        target = dt.datetime(2025, 1, 10, 13, 20, tzinfo=dt.timezone.utc)
        report = open_meteo_client.fetch_air_quality(40.6, -111.6, target)
        self.assertEqual(report.status, "ok")
        self.assertEqual(report.us_aqi, 75.0)
        self.assertEqual(report.category, "Moderate")
        self.assertEqual(report.measured_time, "2025-01-10T13:00")

    def test_air_quality_missing_value_is_no_data(self):
        http_gateway.session = type("S", (), {"get": lambda *a, **k: DummyResp(_make_air_payload())})()
        target = dt.datetime(2025, 1, 10, 14, 0, tzinfo=dt.timezone.utc)
        report = open_meteo_client.fetch_air_quality(40.6, -111.6, target)
        self.assertEqual(report.status, "no_data")
        self.assertIsNone(report.us_aqi)


class TestRainfall(unittest.TestCase):
    def test_rolling_and_forward_totals(self):
        target = dt.datetime(2025, 1, 11, 0, 0, tzinfo=dt.timezone.utc)
        report = open_meteo_client.build_rainfall_report(_make_precip_payload(), target_time=target,
                                                         travel_window_hours=6, lat=40.6, lon=-111.6)
        self.assertEqual(report.status, "ok")
        self.assertEqual(report.totals.rain_past_12h_mm, 6.5)
        self.assertEqual(report.totals.rain_past_24h_mm, 12.5)
        self.assertEqual(report.totals.rain_past_48h_mm, 24.5)
        self.assertIsNone(report.totals.snow_past_24h_cm)
        self.assertEqual(report.expected.status, "ok")
        self.assertEqual(report.expected.rain_window_mm, 3.0)
        self.assertEqual(report.expected.rain_window_in, 0.12)

    def test_empty_feed_is_no_data(self):
        report = open_meteo_client.build_rainfall_report({"hourly": {"time": []}},
                                                         target_time=dt.datetime.now(dt.timezone.utc),
                                                         travel_window_hours=12, lat=0, lon=0)
        self.assertEqual(report.status, "no_data")

    def test_zeroed_fallback_keeps_totals_empty(self):
        report = open_meteo_client.zeroed_rainfall_fallback(40.6, -111.6, 30)
        self.assertEqual(report.fallback_mode, "zeroed_totals")
        self.assertEqual(report.expected.travel_window_hours, 24)
        self.assertIsNone(report.totals.rain_past_24h_mm)


class TestClassifyAqi(unittest.TestCase):
    def test_category_boundaries(self):
        self.assertEqual(open_meteo_client.classify_us_aqi(50), "Good")
        self.assertEqual(open_meteo_client.classify_us_aqi(101), "Unhealthy for Sensitive Groups")
        self.assertEqual(open_meteo_client.classify_us_aqi(None), "Unknown")


if __name__ == "__main__":
    unittest.main()
