import datetime as dt
import unittest

from app import alerts
from app.data_sources import http_gateway

TARGET = dt.datetime(2025, 1, 10, 15, 0, tzinfo=dt.timezone.utc)


class DummyResp:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self._payload


def _feature(event, severity, onset=None, ends=None, expires=None, feature_id=None, **props):
    properties = {
        "event": event,
        "severity": severity,
        "onset": onset,
        "ends": ends,
        "expires": expires,
        "headline": f"{event} issued",
        "areaDesc": "Salt Lake; Summit, Wasatch",
    }
    properties.update(props)
    return {"id": feature_id, "properties": properties}


class TestSummarizeAlerts(unittest.TestCase):
    def test_no_features(self):
        report = alerts.summarize_alerts([], TARGET, 40.6, -111.6)
        self.assertEqual(report.status, "none")
        self.assertEqual(report.active_count, 0)

    def test_alerts_outside_start_are_excluded(self):
        expired = _feature("Winter Storm Warning", "Severe", onset="2025-01-09T00:00:00Z",
                           ends="2025-01-10T06:00:00Z")
        report = alerts.summarize_alerts([expired], TARGET, 40.6, -111.6)
        self.assertEqual(report.status, "none_for_selected_start")
        self.assertEqual(report.total_active_count, 1)
        self.assertEqual(report.alerts, [])

    def test_active_alerts_sorted_by_severity(self):
        features = [
            _feature("Wind Advisory", "moderate", onset="2025-01-10T12:00:00Z",
                     feature_id="https://api.weather.gov/alerts/urn:oid:2.49.0.1.840.0.wind"),
            _feature("Winter Storm Warning", "SEVERE", onset="2025-01-10T07:00:00-07:00",
                     expires="2025-01-11T09:00:00-07:00"),
            _feature("Special Weather Statement", "Minor", ends="2025-01-10T10:00:00Z"),
            _feature("Test Message", "bogus"),
        ]
        report = alerts.summarize_alerts(features, TARGET, 40.6, -111.6)
        self.assertEqual(report.status, "ok")
        self.assertEqual(report.active_count, 3)
        self.assertEqual(report.total_active_count, 4)
        self.assertEqual(report.highest_severity, "Severe")
        self.assertEqual([a.event for a in report.alerts], ["Winter Storm Warning", "Wind Advisory", "Test Message"])
        self.assertEqual(report.alerts[2].severity, "Unknown")
        self.assertEqual(report.alerts[1].link, "https://api.weather.gov/alerts/urn:oid:2.49.0.1.840.0.wind")
        self.assertEqual(report.alerts[0].area_desc, ["Salt Lake", "Summit", "Wasatch"])

    def test_open_ended_window_counts_as_active(self):
        self.assertTrue(alerts.active_at({}, TARGET))
        self.assertTrue(alerts.active_at({"effective": "2025-01-10T00:00:00Z"}, TARGET))
        self.assertFalse(alerts.active_at({"onset": "2025-01-11T00:00:00Z"}, TARGET))

    def test_window_from_two_to_five_hours_after_reference(self):
        reference = dt.datetime(2025, 1, 10, 12, 0, tzinfo=dt.timezone.utc)
        props = {"onset": (reference + dt.timedelta(hours=2)).isoformat(),
                 "ends": (reference + dt.timedelta(hours=5)).isoformat()}
        self.assertTrue(alerts.active_at(props, reference + dt.timedelta(hours=3)))
        self.assertTrue(alerts.active_at(props, reference + dt.timedelta(hours=2)))
        self.assertTrue(alerts.active_at(props, reference + dt.timedelta(hours=5)))
        self.assertFalse(alerts.active_at(props, reference))
        self.assertFalse(alerts.active_at(props, reference + dt.timedelta(hours=5, minutes=1)))

    def test_windowed_alert_counted_for_start_inside_it(self):
        reference = dt.datetime(2025, 1, 10, 12, 0, tzinfo=dt.timezone.utc)
        storm = _feature("Winter Storm Warning", "Severe", onset="2025-01-10T14:00:00Z", ends="2025-01-10T17:00:00Z")
        inside = alerts.summarize_alerts([storm], reference + dt.timedelta(hours=4), 40.6, -111.6)
        self.assertEqual(inside.active_count, 1)
        before = alerts.summarize_alerts([storm], reference, 40.6, -111.6)
        self.assertEqual(before.status, "none_for_selected_start")


class TestAlertHelpers(unittest.TestCase):
    def test_normalize_alert_text(self):
        self.assertEqual(alerts.normalize_alert_text("Heavy   snow\r\n\r\n  expected "), "Heavy snow\nexpected")
        self.assertIsNone(alerts.normalize_alert_text("   "))
        truncated = alerts.normalize_alert_text("x" * 50, max_length=10)
        self.assertEqual(len(truncated), 10)
        self.assertTrue(truncated.endswith("…"))

    def test_alert_link_fallbacks(self):
        self.assertEqual(alerts.alert_link({"id": "urn:oid:abc"}, {}, 40.6, -111.6),
                         "https://api.weather.gov/alerts/urn:oid:abc")
        self.assertEqual(alerts.alert_link({}, {}, 40.6, -111.6),
                         "https://api.weather.gov/alerts/active?point=40.6,-111.6")


class TestFetchAlerts(unittest.TestCase):
    def setUp(self):
        self.orig_session = http_gateway.session

    def tearDown(self):
        http_gateway.session = self.orig_session

    def test_fetch_alerts_summarizes_features(self):
        payload = {"features": [_feature("Avalanche Warning", "Severe", onset="2025-01-10T00:00:00Z")]}
        http_gateway.session = type("S", (), {"get": lambda *a, **k: DummyResp(payload)})()
        report = alerts.fetch_alerts(40.6, -111.6, TARGET)
        self.assertEqual(report.status, "ok")
        self.assertEqual(report.alerts[0].event, "Avalanche Warning")


if __name__ == "__main__":
    unittest.main()
