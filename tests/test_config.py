import os
import unittest

from pydantic import ValidationError

from app.config import Settings


class TestConfig(unittest.TestCase):
    def _with_env(self, **values):
        previous = {key: os.environ.get(key) for key in values}
        os.environ.update(values)
        self.addCleanup(self._restore, previous)

    @staticmethod
    def _restore(previous):
        for key, value in previous.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    def test_settings_defaults(self):
        s = Settings()
        self.assertEqual(s.request_timeout_seconds, 9.0)
        self.assertEqual(s.nearest_zone_cap_km, 40.0)
        self.assertEqual(s.regional_zone_cap_km, 90.0)
        self.assertEqual(s.overall_danger_rule, "max")
        self.assertEqual(s.snowpack_station_ttl_seconds, 12 * 3600)

    def test_settings_env_override(self):
        self._with_env(SAFETY_REQUEST_TIMEOUT_SECONDS="3.5", SAFETY_OVERALL_DANGER_RULE="Almost_Worst_Case")
        s = Settings()
        self.assertEqual(s.request_timeout_seconds, 3.5)
        self.assertEqual(s.overall_danger_rule, "almost_worst_case")

    def test_catalog_url_trailing_slash_is_stripped(self):
        self._with_env(SAFETY_ZONE_CATALOG_URL="https://example.com/map-layer/")
        self.assertEqual(Settings().zone_catalog_url, "https://example.com/map-layer")

    def test_regional_cap_never_below_generic_cap(self):
        self._with_env(SAFETY_NEAREST_ZONE_CAP_KM="60", SAFETY_REGIONAL_ZONE_CAP_KM="30")
        s = Settings()
        self.assertEqual(s.regional_zone_cap_km, 60.0)

    def test_unknown_danger_rule_rejected(self):
        self._with_env(SAFETY_OVERALL_DANGER_RULE="average")
        with self.assertRaises(ValidationError):
            Settings()


if __name__ == "__main__":
    unittest.main()
