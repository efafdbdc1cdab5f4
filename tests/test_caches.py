import threading
import unittest

from app.caches import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestTTLCache(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.calls = 0
        self.fail = False

    def _loader(self):
        self.calls += 1
        if self.fail:
            raise ConnectionError("upstream down")
        return f"value-{self.calls}"

    def _cache(self, ttl=60):
        return TTLCache(self._loader, ttl, name="test", clock=self.clock)

    def test_value_is_reused_within_ttl(self):
        cache = self._cache()
        self.assertEqual(cache.get(), "value-1")
        self.clock.now = 59
        self.assertEqual(cache.get(), "value-1")
        self.assertEqual(self.calls, 1)

    def test_value_refreshes_after_ttl(self):
        cache = self._cache()
        cache.get()
        self.clock.now = 60
        self.assertEqual(cache.get(), "value-2")

    def test_failed_refresh_serves_last_good_value(self):
        cache = self._cache()
        cache.get()
        self.fail = True
        self.clock.now = 120
        self.assertEqual(cache.get(), "value-1")
        self.fail = False
        self.assertEqual(cache.get(), "value-3")

    def test_first_load_failure_propagates(self):
        cache = self._cache()
        self.fail = True
        with self.assertRaises(ConnectionError):
            cache.get()
        self.fail = False
        self.assertEqual(cache.get(), "value-2")


class TestTTLCacheConcurrency(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.calls = 0
        self.started = threading.Event()
        self.release = threading.Event()
        self.block = False

    def _slow_loader(self):
        self.calls += 1
        if self.block:
            self.started.set()
            self.release.wait(timeout=5)
        return f"value-{self.calls}"

    def _get_in_thread(self, cache, results):
        thread = threading.Thread(target=lambda: results.append(cache.get()))
        thread.start()
        return thread

    def test_readers_get_stale_value_while_one_thread_refreshes(self):
        cache = TTLCache(self._slow_loader, 60, name="test", clock=self.clock)
        self.assertEqual(cache.get(), "value-1")
        self.clock.now = 60
        self.block = True

        results = []
        refresher = self._get_in_thread(cache, results)
        self.assertTrue(self.started.wait(timeout=5))
        # The refresh is parked inside the loader; this read must not wait for it.
        self.assertEqual(cache.get(), "value-1")
        self.assertEqual(self.calls, 2)

        self.release.set()
        refresher.join(timeout=5)
        self.assertEqual(results, ["value-2"])
        self.assertEqual(cache.get(), "value-2")
        self.assertEqual(self.calls, 2)

    def test_first_load_is_shared_by_concurrent_readers(self):
        cache = TTLCache(self._slow_loader, 60, name="test", clock=self.clock)
        self.block = True

        results = []
        first = self._get_in_thread(cache, results)
        self.assertTrue(self.started.wait(timeout=5))
        second = self._get_in_thread(cache, results)
        self.release.set()
        first.join(timeout=5)
        second.join(timeout=5)
        self.assertEqual(results, ["value-1", "value-1"])
        self.assertEqual(self.calls, 1)


if __name__ == "__main__":
    unittest.main()
