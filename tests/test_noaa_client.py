import unittest

from app.data_sources import http_gateway, noaa_client
from app.errors import InputValidationError


class DummyResp:
    def __init__(self, payload):
        self._payload = payload
        self.headers = {}

    def raise_for_status(self):
        pass

    def json(self):
        return self._payload


def _period(start, temp=20, wind="10 mph", gust=None, direction="NW", short="Mostly Sunny",
            daytime=True, pop=10, rh=40):
    period = {
        "startTime": start,
        "endTime": start,
        "temperature": temp,
        "windSpeed": wind,
        "windDirection": direction,
        "shortForecast": short,
        "isDaytime": daytime,
        "probabilityOfPrecipitation": {"unitCode": "wmoUnit:percent", "value": pop},
        "relativeHumidity": {"unitCode": "wmoUnit:percent", "value": rh},
        "dewpoint": {"unitCode": "wmoUnit:degC", "value": -10},
    }
    if gust is not None:
        period["windGust"] = gust
    return period


def _forecast_payload():
    periods = []
    for hour in range(5, 24):
        periods.append(_period(f"2025-01-10T{hour:02d}:00:00-07:00", temp=10 + hour))
    for hour in range(0, 5):
        periods.append(_period(f"2025-01-11T{hour:02d}:00:00-07:00", temp=15, daytime=False))
    return {
        "properties": {
            "updateTime": "2025-01-10T04:10:00+00:00",
            "elevation": {"unitCode": "wmoUnit:m", "value": 3000},
            "periods": periods,
        }
    }


class TestNoaaHelpers(unittest.TestCase):
    def test_nearest_wind_direction_searches_outward(self):
        periods = [{"windDirection": ""}, {"windDirection": None}, {"windDirection": "sw"}]
        self.assertEqual(noaa_client.nearest_wind_direction(periods, 0), "SW")
        self.assertIsNone(noaa_client.nearest_wind_direction(periods, 5))

    def test_reported_gust_wins(self):
        periods = [{"windSpeed": "10 mph", "windGust": "25 mph"}]
        self.assertEqual(noaa_client.infer_wind_gust(periods, 0, 10.0), (25.0, "reported"))

    def test_gust_ratio_borrowed_from_nearby_period(self):
        periods = [{"windSpeed": "10 mph"}, {"windSpeed": "20 mph", "windGust": "30 mph"}]
        self.assertEqual(noaa_client.infer_wind_gust(periods, 0, 10.0), (15.0, "inferred_nearby"))

    def test_gust_estimated_when_nothing_reported(self):
        periods = [{"windSpeed": "8 mph"}, {"windSpeed": "8 mph"}]
        self.assertEqual(noaa_client.infer_wind_gust(periods, 0, 8.0), (10.0, "estimated_from_wind"))
        self.assertEqual(noaa_client.infer_wind_gust(periods, 0, None), (None, "Unavailable"))

    def test_start_index_uses_first_period_at_or_after_clock(self):
        periods = _forecast_payload()["properties"]["periods"]
        self.assertEqual(noaa_client.select_start_index(periods, "2025-01-10", "07:30"), 3)
        self.assertEqual(noaa_client.select_start_index(periods, "2025-01-10", None), 0)
        self.assertEqual(noaa_client.select_start_index(periods, "2025-01-11", "23:00"), 23)


class TestBuildPrimaryForecast(unittest.TestCase):
    def test_snapshot_anchored_to_start(self):
        result = noaa_client.build_primary_forecast(
            _forecast_payload(), lat=40.6, lon=-111.6, selected_date="2025-01-10",
            start_clock="07:30", travel_window_hours=6, timezone="America/Denver")
        snapshot = result.snapshot
        self.assertEqual(result.selected_date, "2025-01-10")
        self.assertEqual(result.date_range, {"start": "2025-01-10", "end": "2025-01-11"})
        self.assertEqual(snapshot.forecast_start_time, "2025-01-10T08:00:00-07:00")
        self.assertEqual(snapshot.temp, 18.0)
        self.assertEqual(len(snapshot.trend), 6)
        self.assertEqual(snapshot.dew_point, 14.0)
        self.assertEqual(snapshot.cloud_cover, 25.0)
        self.assertEqual(snapshot.elevation, 9843.0)
        self.assertEqual(len(snapshot.elevation_forecast), 4)
        self.assertEqual(snapshot.source_details.primary, "NOAA")
        self.assertEqual(snapshot.source_details.field_sources["windGust"], "NOAA (estimated_from_wind)")

    def test_date_outside_range_is_validation_error(self):
        with self.assertRaises(InputValidationError) as ctx:
            noaa_client.build_primary_forecast(
                _forecast_payload(), lat=40.6, lon=-111.6, selected_date="2025-02-01",
                start_clock=None, travel_window_hours=12)
        self.assertEqual(ctx.exception.available_range, {"start": "2025-01-10", "end": "2025-01-11"})
        self.assertEqual(ctx.exception.status_code, 400)

    def test_empty_periods_is_provider_failure(self):
        with self.assertRaises(ValueError) as ctx:
            noaa_client.build_primary_forecast({"properties": {"periods": []}}, lat=0, lon=0,
                                               selected_date=None, start_clock=None, travel_window_hours=12)
        self.assertNotIsInstance(ctx.exception, InputValidationError)


class TestNoaaFetch(unittest.TestCase):
    def setUp(self):
        self.orig_session = http_gateway.session

    def tearDown(self):
        http_gateway.session = self.orig_session

    def test_fetch_primary_forecast_follows_points_url(self):
        responses = {
            "points": {"properties": {"forecastHourly": "https://api.weather.gov/gridpoints/SLC/1,1/forecast/hourly",
                                      "timeZone": "America/Denver"}},
            "hourly": _forecast_payload(),
        }

        def fake_get(url, **kwargs):
            return DummyResp(responses["points"] if "/points/" in url else responses["hourly"])

        http_gateway.session = type("S", (), {"get": staticmethod(fake_get)})()
        result = noaa_client.fetch_primary_forecast(40.6, -111.6, selected_date=None, start_clock=None,
                                                    travel_window_hours=12)
        self.assertEqual(result.snapshot.timezone, "America/Denver")
        self.assertEqual(result.selected_date, "2025-01-10")

    def test_fetch_active_alerts_requires_features(self):
        http_gateway.session = type("S", (), {"get": lambda *a, **k: DummyResp({"title": "no features"})})()
        with self.assertRaises(ValueError):
            noaa_client.fetch_active_alerts(40.6, -111.6)

        http_gateway.session = type("S", (), {"get": lambda *a, **k: DummyResp({"features": [{"id": "a"}]})})()
        self.assertEqual(noaa_client.fetch_active_alerts(40.6, -111.6), [{"id": "a"}])


if __name__ == "__main__":
    unittest.main()
