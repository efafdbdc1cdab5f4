import unittest

from app.domain import TrendPoint, WeatherSnapshot
from app.weather_math import (
    build_elevation_bands,
    build_temperature_context,
    build_visibility_risk,
    clamp_travel_window_hours,
    compute_feels_like,
    degrees_to_cardinal,
    estimate_gust,
    normalize_pressure_hpa,
    parse_clock_minutes,
    parse_wind_mph,
    resolve_noaa_cloud_cover,
    to_float,
    unavailable_weather,
)


class TestConversions(unittest.TestCase):
    def test_to_float_rejects_blank_bool_and_nan(self):
        self.assertIsNone(to_float(""))
        self.assertIsNone(to_float(True))
        self.assertIsNone(to_float(float("nan")))
        self.assertEqual(to_float("12.5"), 12.5)

    def test_parse_clock_minutes(self):
        self.assertEqual(parse_clock_minutes("06:30"), 390)
        self.assertEqual(parse_clock_minutes("6:30 PM"), 1110)
        self.assertEqual(parse_clock_minutes("12:00 AM"), 0)
        self.assertIsNone(parse_clock_minutes("25:00"))
        self.assertIsNone(parse_clock_minutes("noon"))

    def test_travel_window_clamped(self):
        self.assertEqual(clamp_travel_window_hours("0"), 1)
        self.assertEqual(clamp_travel_window_hours(48), 24)
        self.assertEqual(clamp_travel_window_hours("abc"), 12)

    def test_wind_strings_take_the_larger_number(self):
        self.assertEqual(parse_wind_mph("10 to 15 mph"), 15.0)
        self.assertIsNone(parse_wind_mph("calm"))

    def test_feels_like_uses_wind_chill_only_when_cold(self):
        self.assertEqual(compute_feels_like(20, 10), 9.0)
        self.assertEqual(compute_feels_like(60, 10), 60.0)
        self.assertIsNone(compute_feels_like(None, 10))

    def test_gust_estimate_tiers(self):
        self.assertEqual(estimate_gust(4), 6.0)
        self.assertEqual(estimate_gust(8), 10.0)
        self.assertEqual(estimate_gust(20), 27.0)

    def test_cardinal_and_pressure(self):
        self.assertEqual(degrees_to_cardinal(0), "N")
        self.assertEqual(degrees_to_cardinal(225), "SW")
        self.assertEqual(normalize_pressure_hpa({"unitCode": "wmoUnit:Pa", "value": 101325}), 1013.2)
        self.assertEqual(normalize_pressure_hpa(850.04), 850.0)

    def test_cloud_cover_fallback_chain(self):
        self.assertEqual(resolve_noaa_cloud_cover({"skyCover": {"value": 42}}), (42.0, "NOAA skyCover"))
        self.assertEqual(resolve_noaa_cloud_cover({"icon": "https://x/icons/land/day/bkn?size=small"})[0], 75.0)
        self.assertEqual(resolve_noaa_cloud_cover({"shortForecast": "Mostly Sunny"})[0], 25.0)
        self.assertEqual(resolve_noaa_cloud_cover({}), (None, "Unavailable"))


class TestDerivedWeather(unittest.TestCase):
    def test_temperature_context(self):
        rows = [("t0", 30.0, True), ("t1", 40.0, True), ("t2", 10.0, False), ("t3", None, False)]
        context = build_temperature_context(rows, timezone="America/Denver")
        self.assertEqual(context.min_temp_f, 10.0)
        self.assertEqual(context.daytime_high_f, 40.0)
        self.assertEqual(context.overnight_low_f, 10.0)
        self.assertIsNone(build_temperature_context([("t0", None, True)]))

    def test_elevation_bands_sorted_and_lapsed(self):
        bands = build_elevation_bands(10000, 20.0, 10.0, 15.0)
        self.assertEqual([b.elevation_ft for b in bands], [7200, 8300, 9200, 10000])
        self.assertEqual(bands[-1].temp, 20.0)
        self.assertGreater(bands[0].temp, bands[-1].temp)
        self.assertLess(bands[0].wind_speed, bands[-1].wind_speed)
        self.assertEqual(build_elevation_bands(None, 20.0, 10.0, 15.0), [])

    def test_low_objective_bands_do_not_go_negative(self):
        bands = build_elevation_bands(150, 50.0, 5.0, 7.0)
        self.assertEqual(bands[0].elevation_ft, 0)
        self.assertEqual(len({b.elevation_ft for b in bands}), len(bands))

    def test_visibility_risk_whiteout(self):
        trend = [TrendPoint(condition="Blowing Snow", precip_chance=70, wind=30, gust=40) for _ in range(6)]
        snapshot = WeatherSnapshot(description="Blizzard", precip_chance=85, wind_speed=30, wind_gust=48,
                                   humidity=95, cloud_cover=98, trend=trend, is_daytime=True)
        risk = build_visibility_risk(snapshot)
        self.assertEqual(risk.level, "Extreme")
        self.assertEqual(risk.active_hours, 6)
        self.assertLessEqual(len(risk.factors), 4)

    def test_unavailable_weather_has_no_numbers(self):
        snapshot = unavailable_weather(40.0, -111.0, "2025-01-10")
        self.assertEqual(snapshot.status, "unavailable")
        self.assertIsNone(snapshot.temp)
        self.assertIsNone(snapshot.visibility_risk.score)
        self.assertEqual(snapshot.source_details.primary, "Unavailable")


if __name__ == "__main__":
    unittest.main()
