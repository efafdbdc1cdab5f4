import datetime as dt
import unittest

import requests
from fastapi.testclient import TestClient

from app import alerts as alerts_service
from app import api as api_mod
from app import report_service
from app.config import settings
from app.data_sources import CallableWeatherProvider, avalanche_client, open_meteo_client, solar_client
from app.domain import (
    AirQualityReport,
    AlertsReport,
    CoverageStatus,
    HazardBulletin,
    NohrscObservation,
    SnowpackReport,
    SolarTimes,
    WeatherSnapshot,
)
from app.errors import InputValidationError
from app.main import app as fastapi_app
from app.report_service import (
    PARTIAL_FAILURE_MESSAGE,
    ReportService,
    WeatherBundle,
    fetch_rainfall_or_placeholder,
    validate_request,
)
from app.weather_blender import BlendedWeather
from app.zone_resolver import ZoneFeature

NOW = dt.datetime(2025, 1, 10, 12, 0, tzinfo=dt.timezone.utc)


class FakeCatalog:
    def __init__(self, features=None, error=None):
        self._features = features or []
        self._error = error

    def features(self):
        if self._error:
            raise self._error
        return self._features


def _weather():
    return WeatherSnapshot(temp=28.0, feels_like=20.0, wind_speed=10.0, wind_gust=18.0, precip_chance=20.0,
                           humidity=60.0, description="Partly Sunny", is_daytime=True,
                           issued_time="2025-01-10T11:00:00Z", forecast_start_time="2025-01-10T14:00:00Z",
                           forecast_date="2025-01-10")


def _salt_lake_zone():
    ring = [[-111.9, 40.4], [-111.4, 40.4], [-111.4, 40.8], [-111.9, 40.8], [-111.9, 40.4]]
    return ZoneFeature.from_geojson({
        "id": 2114,
        "geometry": {"type": "Polygon", "coordinates": [ring]},
        "properties": {
            "center": "Utah Avalanche Center",
            "center_id": "UAC",
            "name": "Salt Lake",
            "link": "https://utahavalanchecenter.org/forecast/salt-lake",
            "danger_level": 3,
            "danger": "considerable",
            "travel_advice": "Dangerous avalanche conditions on wind loaded slopes.",
            "start_date": "2025-01-10T07:00:00Z",
            "end_date": "2025-01-11T07:00:00Z",
            "danger_low": 2,
            "danger_mid": 3,
            "danger_high": 3,
        },
    })


def _bundle(request):
    return WeatherBundle(
        blended=BlendedWeather(snapshot=_weather(), selected_date="2025-01-10",
                               date_range={"start": "2025-01-10", "end": "2025-01-16"}),
        solar=SolarTimes(sunrise="7:45 AM", sunset="5:10 PM", day_length="9h 25m"),
    )


class TestValidateRequest(unittest.TestCase):
    def assertRejected(self, message, *args, **kwargs):
        with self.assertRaises(InputValidationError) as ctx:
            validate_request(*args, **kwargs)
        self.assertEqual(ctx.exception.message, message)
        self.assertEqual(ctx.exception.status_code, 400)

    def test_coordinates(self):
        self.assertRejected("Latitude and longitude are required", None, "-111.6")
        self.assertRejected("Latitude and longitude are required", " ", "-111.6")
        self.assertRejected("Latitude/longitude must be valid decimal coordinates.", "north", "-111.6")
        self.assertRejected("Latitude/longitude must be valid decimal coordinates.", "95", "-111.6")

    def test_date_and_start(self):
        self.assertRejected("Invalid date format. Use YYYY-MM-DD.", "40.6", "-111.6", date="2025-1-5")
        self.assertRejected("Invalid date format. Use YYYY-MM-DD.", "40.6", "-111.6", date="2025-02-30")
        self.assertRejected("Invalid start time format. Use HH:MM.", "40.6", "-111.6", start="25:00")

    def test_normalizes_inputs(self):
        request = validate_request("40.6", "-111.6", date="2025-01-10", start="7:05 PM", travel_window_hours="48")
        self.assertEqual(request.lat, 40.6)
        self.assertEqual(request.start_clock, "19:05")
        self.assertEqual(request.travel_window_hours, 24)
        self.assertEqual(validate_request("40.6", "-111.6").travel_window_hours, 12)
        self.assertIsNone(validate_request("40.6", "-111.6", date="").requested_date)


class TestReportService(unittest.TestCase):
    def setUp(self):
        self.orig = {
            "fetch_weather_and_solar": report_service.fetch_weather_and_solar,
            "resolve_zone": report_service.resolve_zone,
            "build_bulletin": report_service.build_bulletin,
            "fetch_rainfall_or_placeholder": report_service.fetch_rainfall_or_placeholder,
            "fetch_snowpack": report_service.fetch_snowpack,
            "derive_terrain_condition": report_service.derive_terrain_condition,
            "build_weather_providers": report_service.build_weather_providers,
            "report_service": report_service.report_service,
        }
        self.orig_alerts = alerts_service.fetch_alerts
        self.orig_air = open_meteo_client.fetch_air_quality
        self.orig_solar = solar_client.fetch_solar_times
        self.orig_avalanche = {name: getattr(avalanche_client, name)
                               for name in ("fetch_detail_text", "fetch_page_text", "fetch_utah_advisory")}

        report_service.fetch_weather_and_solar = _bundle
        report_service.resolve_zone = lambda lat, lon, features: None
        report_service.build_bulletin = lambda match, lat, lon, planned_start=None: HazardBulletin(
            center="Utah Avalanche Center", danger_level=3, risk_label="Considerable", danger_unknown=False,
            coverage_status=CoverageStatus.REPORTED, published_time="2025-01-10T07:00:00Z")
        report_service.fetch_rainfall_or_placeholder = lambda lat, lon, target, window: (
            open_meteo_client.zeroed_rainfall_fallback(lat, lon, window))
        report_service.fetch_snowpack = lambda lat, lon, date: SnowpackReport(
            status="partial", nohrsc=NohrscObservation(snow_depth_in=48.0, swe_in=14.0))
        alerts_service.fetch_alerts = lambda lat, lon, target: AlertsReport(status="none")
        open_meteo_client.fetch_air_quality = lambda lat, lon, target: AirQualityReport(status="ok", us_aqi=12,
                                                                                        category="Good")
        self.service = ReportService(FakeCatalog(), now=lambda: NOW)
        self.request = validate_request("40.6", "-111.6", date="2025-01-10", start="07:00")
        self.orig_api_key = settings.api_key

    def tearDown(self):
        for name, value in self.orig.items():
            setattr(report_service, name, value)
        alerts_service.fetch_alerts = self.orig_alerts
        open_meteo_client.fetch_air_quality = self.orig_air
        solar_client.fetch_solar_times = self.orig_solar
        for name, fn in self.orig_avalanche.items():
            setattr(avalanche_client, name, fn)
        settings.api_key = self.orig_api_key

    def test_full_report(self):
        payload = self.service.build_report(self.request)
        self.assertEqual(payload["selectedForecastDate"], "2025-01-10")
        self.assertEqual(payload["forecastDateRange"], {"start": "2025-01-10", "end": "2025-01-16"})
        self.assertEqual(payload["avalanche"]["riskLabel"], "Considerable")
        self.assertTrue(payload["avalanche"]["relevant"])
        self.assertEqual(payload["airQuality"]["usAqi"], 12)
        self.assertEqual(payload["trail"], payload["terrainCondition"]["label"])
        self.assertEqual(payload["safety"]["primaryHazard"], "Avalanche")
        self.assertEqual(payload["weather"]["generatedTime"], NOW.isoformat())
        self.assertNotIn("partialData", payload)

    def test_weather_failure_gives_placeholder(self):
        def broken(request):
            raise requests.ConnectionError("NOAA down")

        report_service.fetch_weather_and_solar = broken
        payload = self.service.build_report(self.request)
        self.assertTrue(payload["partialData"])
        self.assertEqual(payload["apiWarning"], report_service.WEATHER_WARNING)
        self.assertEqual(payload["weather"]["status"], "unavailable")
        self.assertIn("Weather Unavailable", [f["hazard"] for f in payload["safety"]["factors"]])

    def _fail_every_weather_provider(self):
        def down(lat, lon, **kwargs):
            raise requests.ConnectionError("provider down")

        report_service.fetch_weather_and_solar = self.orig["fetch_weather_and_solar"]
        report_service.build_weather_providers = lambda: (CallableWeatherProvider("NOAA", down),
                                                          CallableWeatherProvider("Open-Meteo", down))
        solar_client.fetch_solar_times = lambda lat, lon, date: SolarTimes(sunrise="7:45 AM", sunset="5:10 PM")

    def test_all_weather_providers_down_gives_unavailable_description(self):
        self._fail_every_weather_provider()
        payload = self.service.build_report(self.request)
        self.assertTrue(payload["partialData"])
        self.assertEqual(payload["weather"]["description"], "Weather data unavailable")
        self.assertEqual(payload["weather"]["status"], "unavailable")
        self.assertEqual(payload["solar"]["sunrise"], "7:45 AM")

    def test_weather_outage_still_returns_200(self):
        self._fail_every_weather_provider()
        report_service.report_service = self.service
        settings.api_key = None
        self.addCleanup(setattr, api_mod, "_redis_client", api_mod._redis_client)
        api_mod._redis_client = None
        resp = TestClient(fastapi_app).get("/v1/safety", params={"lat": "40.6", "lon": "-111.6",
                                                                  "date": "2025-01-10", "start": "07:00"})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["partialData"])
        self.assertEqual(body["weather"]["description"], "Weather data unavailable")

    def test_point_inside_zone_polygon_is_reported(self):
        def offline(*args):
            raise requests.ConnectionError("center offline")

        report_service.resolve_zone = self.orig["resolve_zone"]
        report_service.build_bulletin = self.orig["build_bulletin"]
        for name in self.orig_avalanche:
            setattr(avalanche_client, name, offline)
        service = ReportService(FakeCatalog([_salt_lake_zone()]), now=lambda: NOW)

        payload = service.build_report(self.request)
        avalanche = payload["avalanche"]
        self.assertEqual(avalanche["coverageStatus"], "reported")
        self.assertEqual(avalanche["zone"], "Salt Lake")
        self.assertEqual(avalanche["matchMode"], "polygon")
        self.assertEqual(avalanche["dangerLevel"], 3)
        self.assertEqual(payload["weather"]["status"], "ok")
        self.assertGreaterEqual(payload["safety"]["score"], 0)
        self.assertLessEqual(payload["safety"]["score"], 100)
        self.assertNotIn("partialData", payload)

    def test_catalog_failure_marks_bulletin_unavailable(self):
        service = ReportService(FakeCatalog(error=requests.Timeout("map layer")), now=lambda: NOW)
        payload = service.build_report(self.request)
        self.assertEqual(payload["avalanche"]["coverageStatus"], CoverageStatus.TEMPORARILY_UNAVAILABLE.value)
        self.assertIn("safety", payload)

    def test_failed_section_falls_back(self):
        def broken(*args):
            raise requests.Timeout("AWDB slow")

        report_service.fetch_snowpack = broken
        alerts_service.fetch_alerts = broken
        payload = self.service.build_report(self.request)
        self.assertEqual(payload["snowpack"]["status"], "unavailable")
        self.assertEqual(payload["alerts"]["status"], "unavailable")
        self.assertIn("NWS alerts feed unavailable.", payload["safety"]["confidenceReasons"])

    def test_unexpected_failure_returns_partial_payload(self):
        def broken(*args, **kwargs):
            raise RuntimeError("terrain classifier exploded")

        report_service.derive_terrain_condition = broken
        payload = self.service.build_report(self.request)
        self.assertEqual(payload["error"], PARTIAL_FAILURE_MESSAGE)
        self.assertEqual(payload["details"], "terrain classifier exploded")
        self.assertTrue(payload["partialData"])
        self.assertIn("safety", payload)
        self.assertEqual(payload["weather"]["description"], "Partly Sunny")
        self.assertNotIn("terrainCondition", payload)


class TestRainfallPlaceholder(unittest.TestCase):
    def setUp(self):
        self.orig = open_meteo_client.fetch_rainfall

    def tearDown(self):
        open_meteo_client.fetch_rainfall = self.orig

    def test_outage_uses_zeroed_totals(self):
        def broken(*args):
            raise requests.ConnectionError("archive down")

        open_meteo_client.fetch_rainfall = broken
        report = fetch_rainfall_or_placeholder(40.6, -111.6, NOW, 6)
        self.assertEqual(report.fallback_mode, "zeroed_totals")
        self.assertEqual(report.expected.travel_window_hours, 6)
        self.assertIsNone(report.totals.rain_past_24h_in)


if __name__ == "__main__":
    unittest.main()
