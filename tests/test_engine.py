"""Tests for the serial queue and the overlay message contract."""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import fast_rate_limiter, make_response, make_session
import modules.musicbrainz as mb
from modules.cache import CacheStore
from modules.engine import CamelotEngine
from modules.helperClasses import KeyMatch, KeyMiss, UserInputs
from modules.orchestrator import KeyOrchestrator
from modules.serial_queue import SerialRequestQueue


class FakeOrchestrator:
    """Records call order and how many resolutions overlap."""

    def __init__(self, delays=None, fail_on=None):
        self.delays = delays or {}
        self.fail_on = fail_on or set()
        self.started = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def resolve(self, cache_key, title, artist):
        self.started.append(cache_key)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(cache_key, 0))
            if cache_key in self.fail_on:
                raise RuntimeError(f"provider exploded for {cache_key}")
            return KeyMatch(key="C", mode="major", camelot="8B", provider="getsongbpm",
                            provider_id=cache_key)
        finally:
            self.in_flight -= 1

    async def close(self):
        pass


@pytest.fixture
def user_inputs(tmp_path):
    return UserInputs(db_path=str(tmp_path / "test.db"))


def _message(cache_key, title="Strobe", artist="deadmau5"):
    return {"type": "LOOKUP_CAMELOT", "cacheKey": cache_key, "title": title, "artist": artist}


class TestSerialRequestQueue:

    @pytest.mark.asyncio
    async def test_jobs_settle_in_submission_order(self):
        queue = SerialRequestQueue()
        finished = []

        async def job(name, delay):
            await asyncio.sleep(delay)
            finished.append(name)
            return name

        results = await asyncio.gather(
            queue.submit(lambda: job("first", 0.05)),
            queue.submit(lambda: job("second", 0.0)),
            queue.submit(lambda: job("third", 0.02)),
        )

        assert results == ["first", "second", "third"]
        assert finished == ["first", "second", "third"]
        assert queue.pending == 0

    @pytest.mark.asyncio
    async def test_failure_does_not_stall_the_chain(self):
        queue = SerialRequestQueue()

        async def boom():
            raise ValueError("bad job")

        async def ok():
            return "fine"

        results = await asyncio.gather(
            queue.submit(boom), queue.submit(ok), return_exceptions=True
        )

        assert isinstance(results[0], ValueError)
        assert results[1] == "fine"

    @pytest.mark.asyncio
    async def test_abandoned_caller_keeps_order(self):
        queue = SerialRequestQueue()
        events = []

        async def slow():
            events.append("slow start")
            await asyncio.sleep(0.05)
            events.append("slow end")
            return "slow"

        async def fast():
            events.append("fast start")
            return "fast"

        slow_caller = asyncio.ensure_future(queue.submit(slow))
        await asyncio.sleep(0)
        slow_caller.cancel()
        assert await queue.submit(fast) == "fast"
        assert events == ["slow start", "slow end", "fast start"]


class TestCamelotEngine:

    @pytest.mark.asyncio
    async def test_concurrent_lookups_run_one_at_a_time_in_order(self, user_inputs):
        orchestrator = FakeOrchestrator(delays={"ta:1": 0.05, "ta:2": 0.0, "ta:3": 0.02})
        engine = CamelotEngine(user_inputs, orchestrator=orchestrator)

        responses = await asyncio.gather(
            engine.handle_message(_message("ta:1")),
            engine.handle_message(_message("ta:2")),
            engine.handle_message(_message("ta:3")),
        )

        assert orchestrator.started == ["ta:1", "ta:2", "ta:3"]
        assert orchestrator.max_in_flight == 1
        assert [r["data"]["providerId"] for r in responses] == ["ta:1", "ta:2", "ta:3"]

    @pytest.mark.asyncio
    async def test_successful_lookup_response(self, user_inputs):
        engine = CamelotEngine(user_inputs, orchestrator=FakeOrchestrator())

        response = await engine.handle_message(_message("ta:strobe|deadmau5", title="  Strobe  "))

        assert response["ok"] is True
        assert response["data"]["camelot"] == "8B"
        assert isinstance(response["data"]["cachedAt"], int)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("missing", ["cacheKey", "title", "artist"])
    async def test_missing_fields_short_circuit(self, user_inputs, missing):
        orchestrator = FakeOrchestrator()
        engine = CamelotEngine(user_inputs, orchestrator=orchestrator)
        message = _message("ta:k")
        message[missing] = "   " if missing != "cacheKey" else None

        assert await engine.handle_message(message) == {"ok": True, "data": None}
        assert orchestrator.started == []

    @pytest.mark.asyncio
    async def test_only_canonical_message_type_is_handled(self, user_inputs):
        orchestrator = FakeOrchestrator()
        engine = CamelotEngine(user_inputs, orchestrator=orchestrator)
        message = _message("ta:k")
        message["type"] = "LOOKUP_CAMELot"

        assert await engine.handle_message(message) is None
        assert await engine.handle_message({"type": "SOMETHING_ELSE"}) is None
        assert orchestrator.started == []

    @pytest.mark.asyncio
    async def test_error_becomes_failure_payload_and_queue_continues(self, user_inputs):
        orchestrator = FakeOrchestrator(fail_on={"ta:bad"})
        engine = CamelotEngine(user_inputs, orchestrator=orchestrator)

        bad, good = await asyncio.gather(
            engine.handle_message(_message("ta:bad")),
            engine.handle_message(_message("ta:good")),
        )

        assert bad == {"ok": False, "error": "provider exploded for ta:bad"}
        assert good["ok"] is True
        assert good["data"]["providerId"] == "ta:good"

    @pytest.mark.asyncio
    async def test_search_outage_becomes_failure_payload(self, user_inputs, monkeypatch):
        monkeypatch.setattr(mb, "mb_rate_limiter", fast_rate_limiter())
        cache = CacheStore(user_inputs.db_path)
        orchestrator = KeyOrchestrator(cache, [mb.MusicBrainzProvider()])
        engine = CamelotEngine(user_inputs, orchestrator=orchestrator)
        await engine.initialize()
        down = make_session(*[make_response(503) for _ in range(3)])

        with patch.object(mb, "_get_http_session", new_callable=AsyncMock, return_value=down):
            response = await engine.handle_message(_message("ta:strobe|deadmau5"))

        assert response["ok"] is False
        assert "MusicBrainz search failed" in response["error"]
        assert await cache.get("ta:strobe|deadmau5") is None

    @pytest.mark.asyncio
    async def test_lookup_builds_cache_key(self, user_inputs):
        orchestrator = FakeOrchestrator()
        engine = CamelotEngine(user_inputs, orchestrator=orchestrator)

        await engine.lookup("Strobe", "Deadmau5")

        assert orchestrator.started == ["ta:strobe|deadmau5"]

    @pytest.mark.asyncio
    async def test_api_key_storage_and_fallback(self, tmp_path):
        inputs = UserInputs(db_path=str(tmp_path / "keys.db"), getsongbpm_api_key="from-env")
        engine = CamelotEngine(inputs, orchestrator=FakeOrchestrator())
        await engine.initialize()

        assert await engine.get_api_key() == "from-env"
        await engine.set_api_key("  stored-key ")
        assert await engine.get_api_key() == "stored-key"
        await engine.set_api_key("")
        assert await engine.get_api_key() == "from-env"

    @pytest.mark.asyncio
    async def test_default_wiring_uses_fixed_provider_order(self, user_inputs):
        engine = CamelotEngine(user_inputs)
        try:
            assert [p.name for p in engine.orchestrator.providers] == ["getsongbpm", "musicbrainz"]
        finally:
            await engine.close()

    @pytest.mark.asyncio
    async def test_cached_miss_record_shape(self, user_inputs):
        class MissOrchestrator(FakeOrchestrator):
            async def resolve(self, cache_key, title, artist):
                return KeyMiss(mbid="top", score=66)

        engine = CamelotEngine(user_inputs, orchestrator=MissOrchestrator())
        response = await engine.handle_message(_message("ta:k"))

        data = response["data"]
        assert response["ok"] is True
        assert data["camelot"] is None
        assert data["provider"] is None
        assert data["mbid"] == "top"
        assert data["score"] == 66
