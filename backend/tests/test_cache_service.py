"""
Memora Backend — TTL Cache Tests
==================================

Uses an injectable fake clock so expiry is tested without sleeping.
"""

import pytest

from memora.services.cache_service import TTLCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestTTLCache:

    def setup_method(self):
        self.clock = FakeClock()
        self.cache = TTLCache(sweep_interval=100, clock=self.clock)

    def test_get_before_expiry(self):
        self.cache.set("zip_job:1", {"status": "processing"}, ttl=60)
        self.clock.advance(59)
        assert self.cache.get("zip_job:1") == {"status": "processing"}

    def test_entry_expires_at_ttl(self):
        self.cache.set("zip_job:1", "value", ttl=60)
        self.clock.advance(60)
        assert self.cache.get("zip_job:1") is None
        assert len(self.cache) == 0

    def test_default_for_missing_key(self):
        assert self.cache.get("nope", default="fallback") == "fallback"
        assert self.cache.has("nope") is False

    def test_has_reports_falsy_values(self):
        self.cache.set("flag", 0, ttl=10)
        assert self.cache.has("flag") is True

    def test_forget_returns_live_value(self):
        self.cache.set("checkout_pending:paystack:a@example.com", {"tier": "pro"}, ttl=10)
        assert self.cache.forget("checkout_pending:paystack:a@example.com") == {"tier": "pro"}
        assert self.cache.get("checkout_pending:paystack:a@example.com") is None

    def test_forget_expired_returns_none(self):
        self.cache.set("key", "value", ttl=10)
        self.clock.advance(11)
        assert self.cache.forget("key") is None

    def test_update_merges_and_refreshes_ttl(self):
        self.cache.set("zip_job:2", {"status": "processing", "file_count": 3}, ttl=10)
        self.clock.advance(8)
        merged = self.cache.update("zip_job:2", 10, status="completed")
        self.clock.advance(8)

        assert merged == {"status": "completed", "file_count": 3}
        assert self.cache.get("zip_job:2")["status"] == "completed"

    def test_sweep_removes_only_expired(self):
        self.cache.set("short", 1, ttl=5)
        self.cache.set("long", 2, ttl=50)
        self.clock.advance(10)

        assert self.cache.sweep() == 1
        assert len(self.cache) == 1
        assert self.cache.get("long") == 2

    def test_sweep_runs_every_interval_writes(self):
        cache = TTLCache(sweep_interval=3, clock=self.clock)
        cache.set("old", 1, ttl=1)
        self.clock.advance(2)
        cache.set("a", 1, ttl=100)
        # Third write triggers the sweep
        cache.set("b", 1, ttl=100)
        assert len(cache) == 2

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValueError):
            self.cache.set("key", "value", ttl=0)
