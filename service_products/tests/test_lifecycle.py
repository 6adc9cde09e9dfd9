"""
Unit tests for startup, drain and shutdown sequencing.
"""

import asyncio
import time

import pytest
from unittest.mock import MagicMock

from service_products.app.lifecycle import LifecycleManager, LifecycleState, RequestGate


class TestLifecycleManager:

    @pytest.fixture
    def lifecycle(self, store, cache, metrics):
        return LifecycleManager(store, cache, grace_period=0.5, metrics=metrics)

    @pytest.mark.asyncio
    async def test_start_reaches_serving(self, lifecycle, store):
        await lifecycle.start()

        assert lifecycle.state is LifecycleState.SERVING
        assert store.started

    @pytest.mark.asyncio
    async def test_store_failure_aborts_startup(self, lifecycle, store):
        store.start_error = ConnectionError("could not connect to server")

        with pytest.raises(ConnectionError):
            await lifecycle.start()

        assert lifecycle.state is LifecycleState.STARTING
        assert ("stop", None) in store.events

    @pytest.mark.asyncio
    async def test_cache_outage_does_not_abort_startup(self, lifecycle, fake_redis):
        fake_redis.available = False

        await lifecycle.start()

        assert lifecycle.state is LifecycleState.SERVING

    @pytest.mark.asyncio
    async def test_shutdown_closes_store_before_cache(self, lifecycle, store, fake_redis):
        order = []
        original_stop = store.stop
        original_aclose = fake_redis.aclose

        async def stop_store():
            order.append("store")
            await original_stop()

        async def close_cache():
            order.append("cache")
            await original_aclose()

        await lifecycle.start()
        store.stop = stop_store
        fake_redis.aclose = close_cache

        assert await lifecycle.shutdown() is True
        assert order == ["store", "cache"]
        assert lifecycle.state is LifecycleState.STOPPED
        assert fake_redis.closed

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_in_flight(self, lifecycle):
        await lifecycle.start()
        finished = []

        async def request():
            async with lifecycle.track():
                await asyncio.sleep(0.1)
                finished.append(True)

        task = asyncio.create_task(request())
        await asyncio.sleep(0)
        assert lifecycle.in_flight == 1

        drained = await lifecycle.shutdown()
        await task

        assert drained is True
        assert finished == [True]
        assert lifecycle.in_flight == 0

    @pytest.mark.asyncio
    async def test_grace_period_elapses(self, lifecycle, store):
        await lifecycle.start()
        release = asyncio.Event()

        async def stuck_request():
            async with lifecycle.track():
                await release.wait()

        task = asyncio.create_task(stuck_request())
        await asyncio.sleep(0)

        drained = await lifecycle.shutdown()

        assert drained is False
        assert lifecycle.state is LifecycleState.STOPPED
        assert ("stop", None) in store.events
        release.set()
        await task

    @pytest.mark.asyncio
    async def test_begin_drain_moves_to_draining(self, lifecycle):
        await lifecycle.start()

        lifecycle.begin_drain()
        lifecycle.begin_drain()

        assert lifecycle.state is LifecycleState.DRAINING
        assert not lifecycle.accepting

    @pytest.mark.asyncio
    async def test_begin_drain_before_serving_is_noop(self, lifecycle):
        lifecycle.begin_drain()

        assert lifecycle.state is LifecycleState.STARTING

    @pytest.mark.asyncio
    async def test_grace_period_counts_from_signal(self, lifecycle):
        await lifecycle.start()
        release = asyncio.Event()

        async def stuck_request():
            async with lifecycle.track():
                await release.wait()

        task = asyncio.create_task(stuck_request())
        await asyncio.sleep(0)
        lifecycle.begin_drain()
        await asyncio.sleep(0.4)

        started = time.monotonic()
        drained = await lifecycle.shutdown()
        waited = time.monotonic() - started

        assert drained is False
        assert waited < 0.3
        release.set()
        await task

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, lifecycle, store):
        await lifecycle.start()
        await lifecycle.shutdown()
        await lifecycle.shutdown()

        assert store.events.count(("stop", None)) == 1

    @pytest.mark.asyncio
    async def test_shutdown_before_startup_completes(self, lifecycle, store):
        assert await lifecycle.shutdown() is True

        assert lifecycle.state is LifecycleState.STOPPED
        assert ("stop", None) in store.events

    @pytest.mark.asyncio
    async def test_tracer_provider_flushed_last(self, store, cache):
        provider = MagicMock()
        lifecycle = LifecycleManager(store, cache, grace_period=0.1, tracer_provider=provider)

        await lifecycle.start()
        await lifecycle.shutdown()

        provider.shutdown.assert_called_once()

    @pytest.mark.asyncio
    async def test_illegal_transition_raises(self, lifecycle):
        await lifecycle.start()

        with pytest.raises(RuntimeError):
            await lifecycle.start()

    @pytest.mark.asyncio
    async def test_in_flight_gauge_follows_requests(self, lifecycle, sample):
        async with lifecycle.track():
            assert sample("http_requests_in_flight") == 1

        assert sample("http_requests_in_flight") == 0


class TestRequestGate:

    @pytest.fixture
    def lifecycle(self, store, cache):
        return LifecycleManager(store, cache, grace_period=0.1)

    @staticmethod
    async def ok_app(scope, receive, send):
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"ok"})

    @staticmethod
    def scope(path):
        return {"type": "http", "method": "GET", "path": path, "headers": []}

    @pytest.mark.asyncio
    async def test_passes_requests_while_serving(self, lifecycle):
        await lifecycle.start()
        sent = []

        async def send(message):
            sent.append(message)

        await RequestGate(self.ok_app, lifecycle)(self.scope("/api/v1/products"), None, send)

        assert sent[0]["status"] == 200

    @pytest.mark.asyncio
    async def test_rejects_api_requests_once_draining(self, lifecycle):
        await lifecycle.start()
        await lifecycle.shutdown()
        sent = []

        async def send(message):
            sent.append(message)

        await RequestGate(self.ok_app, lifecycle)(self.scope("/api/v1/products"), None, send)

        assert sent[0]["status"] == 503
        assert b"SHUTTING_DOWN" in sent[1]["body"]

    @pytest.mark.asyncio
    async def test_rejects_new_requests_while_earlier_ones_finish(self, lifecycle):
        await lifecycle.start()
        release = asyncio.Event()
        sent = []

        async def slow_app(scope, receive, send):
            await release.wait()
            await self.ok_app(scope, receive, send)

        async def send(message):
            sent.append(message)

        gate = RequestGate(slow_app, lifecycle)
        in_flight = asyncio.create_task(gate(self.scope("/api/v1/products"), None, send))
        await asyncio.sleep(0)
        lifecycle.begin_drain()

        await gate(self.scope("/api/v1/products"), None, send)
        assert sent[0]["status"] == 503

        release.set()
        await in_flight
        assert sent[2]["status"] == 200
        assert await lifecycle.shutdown() is True

    @pytest.mark.asyncio
    async def test_probes_still_answer_while_stopping(self, lifecycle):
        await lifecycle.start()
        await lifecycle.shutdown()
        sent = []

        async def send(message):
            sent.append(message)

        await RequestGate(self.ok_app, lifecycle)(self.scope("/health/live"), None, send)

        assert sent[0]["status"] == 200
