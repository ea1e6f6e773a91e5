"""
Memora Backend — Middleware Tests
===================================

What we test:
    ✅ Guest endpoints are limited per IP inside the sliding window
    ✅ 429 carries Retry-After and the standard error envelope
    ✅ The window slides: old requests stop counting
    ✅ Owner and health endpoints are never limited
    ✅ Request IDs are echoed or generated
"""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from memora.config import settings
from memora.middleware.rate_limit import RateLimitMiddleware
from memora.middleware.request_id import RequestIDMiddleware


class FakeClock:
    def __init__(self):
        self.now = 1_000_000.0

    def __call__(self) -> float:
        return self.now


def build_app(clock):
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, clock=clock)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/api/public/selections/ping")
    async def public_ping():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app


class TestRateLimit:

    @pytest.fixture(autouse=True)
    def small_window(self, monkeypatch):
        monkeypatch.setattr(settings, "rate_limit_requests", 2)
        monkeypatch.setattr(settings, "rate_limit_window", 60)

    def setup_method(self):
        self.clock = FakeClock()
        self.app = build_app(self.clock)

    def _client(self):
        return AsyncClient(transport=ASGITransport(app=self.app), base_url="http://test")

    @pytest.mark.asyncio
    async def test_third_request_is_limited(self):
        async with self._client() as client:
            assert (await client.get("/api/public/selections/ping")).status_code == 200
            self.clock.now += 10
            assert (await client.get("/api/public/selections/ping")).status_code == 200

            response = await client.get("/api/public/selections/ping")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "51"
        body = response.json()
        assert body["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["error"] == "rate_limit_exceeded"
        assert body["request_id"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_window_slides(self):
        async with self._client() as client:
            await client.get("/api/public/selections/ping")
            await client.get("/api/public/selections/ping")
            self.clock.now += 61
            response = await client.get("/api/public/selections/ping")
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_other_paths_are_not_limited(self):
        async with self._client() as client:
            for _ in range(5):
                response = await client.get("/health")
                assert response.status_code == 200


class TestRequestID:

    @pytest.mark.asyncio
    async def test_client_id_is_echoed(self):
        app = build_app(FakeClock())
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/health", headers={"X-Request-ID": "abc12345"})
        assert response.headers["X-Request-ID"] == "abc12345"

    @pytest.mark.asyncio
    async def test_id_is_generated(self):
        app = build_app(FakeClock())
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/health")
        assert len(response.headers["X-Request-ID"]) == 8
