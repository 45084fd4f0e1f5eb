from __future__ import annotations

import asyncio
import random

import pytest

from narrative_engine.core.action_options import (
    ActionOptionsCache,
    build_fingerprint,
    default_options,
    roll_fate,
)
from narrative_engine.core.errors import GenericServiceError
from narrative_engine.core.types import ActionOption, Message
from narrative_engine.persistence.sqlalchemy.gateway import SQLAlchemyActionOptionsStore


class _FixedRng:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def test_roll_fate_checks_bad_range_first():
    option = ActionOption(text="Pick the lock", good_chance=30, bad_chance=20, good_hint="click", bad_hint="snap")
    assert roll_fate(option, _FixedRng(0.10)).type == "bad"
    assert roll_fate(option, _FixedRng(0.10)).hint == "snap"
    assert roll_fate(option, _FixedRng(0.35)).type == "good"
    neutral = roll_fate(option, _FixedRng(0.60))
    assert neutral.type == "neutral" and neutral.hint is None


def test_roll_fate_zero_chances_is_always_neutral():
    option = ActionOption(text="Wait")
    rng = random.Random(7)
    assert {roll_fate(option, rng).type for _ in range(50)} == {"neutral"}


def test_default_options_are_localized():
    assert default_options("pt")[0].text == "Olhar ao redor"
    assert default_options("xx")[0].text == "Look around"
    assert all(o.good_chance == 10 and o.bad_chance == 5 for o in default_options("zh"))


def test_fingerprint_changes_with_context(make_session):
    session = make_session()
    before = build_fingerprint(session)
    assert build_fingerprint(session) == before
    session.messages.append(Message(id="m3", sender_id="GM", text="Thunder.", type="narration", timestamp=5_000))
    after_message = build_fingerprint(session)
    assert after_message != before
    session.current_location_id = "road"
    assert build_fingerprint(session) != after_message


def test_concurrent_requests_share_one_fetch():
    async def run_test():
        cache = ActionOptionsCache()
        calls = {"n": 0}
        gate = asyncio.Event()

        async def fetcher():
            calls["n"] += 1
            await gate.wait()
            return [ActionOption(text="Run")]

        first = asyncio.create_task(cache.fetch_with_cache("s1", "fp", fetcher, "m2"))
        second = asyncio.create_task(cache.fetch_with_cache("s1", "fp", fetcher, "m2"))
        await asyncio.sleep(0)
        gate.set()
        a, b = await asyncio.gather(first, second)
        assert calls["n"] == 1
        assert a == b == [ActionOption(text="Run")]

        again = await cache.fetch_with_cache("s1", "fp", fetcher, "m2")
        assert again == a
        assert calls["n"] == 1

    asyncio.run(run_test())


def test_shared_failure_reaches_every_waiter():
    async def run_test():
        cache = ActionOptionsCache()
        gate = asyncio.Event()

        async def fetcher():
            await gate.wait()
            raise RuntimeError("model offline")

        first = asyncio.create_task(cache.fetch_with_cache("s1", "fp", fetcher))
        second = asyncio.create_task(cache.fetch_with_cache("s1", "fp", fetcher))
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(first, second, return_exceptions=True)
        assert all(isinstance(r, RuntimeError) for r in results)
        assert cache.get("s1") is None

    asyncio.run(run_test())


def test_cancelled_owner_fails_waiters_with_service_error():
    async def run_test():
        cache = ActionOptionsCache()
        started = asyncio.Event()
        gate = asyncio.Event()

        async def fetcher():
            started.set()
            await gate.wait()
            return [ActionOption(text="Hide")]

        owner = asyncio.create_task(cache.fetch_with_cache("s1", "fp", fetcher))
        await started.wait()
        waiter = asyncio.create_task(cache.fetch_with_cache("s1", "fp", fetcher))
        await asyncio.sleep(0)

        owner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await owner
        with pytest.raises(GenericServiceError):
            await waiter
        assert cache.get("s1") is None

        gate.set()
        assert await cache.fetch_with_cache("s1", "fp", fetcher) == [ActionOption(text="Hide")]

    asyncio.run(run_test())


def test_fingerprint_is_sha256_hex(make_session):
    assert len(build_fingerprint(make_session())) == 64


def test_cache_persists_through_store_and_invalidates(uow_factory, gateway, make_session):
    gateway.save(make_session("s1"))
    store = SQLAlchemyActionOptionsStore(uow_factory)

    async def run_test():
        cache = ActionOptionsCache(store)

        async def fetcher():
            return [ActionOption(text="Order an ale", good_chance=15, bad_chance=5)]

        await cache.fetch_with_cache("s1", "fp-1", fetcher, "m2")

        fresh = ActionOptionsCache(store)
        cached = fresh.get("s1")
        assert cached.cache_key == "fp-1"
        assert cached.last_message_id == "m2"
        assert cached.options[0].text == "Order an ale"

        async def failing():
            raise AssertionError("should be served from cache")

        assert (await fresh.fetch_with_cache("s1", "fp-1", failing))[0].good_chance == 15
        with pytest.raises(AssertionError):
            await fresh.fetch_with_cache("s1", "fp-2", failing)

        fresh.invalidate("s1")
        assert store.get("s1") is None
        assert fresh.get("s1") is None

    asyncio.run(run_test())


def test_unreadable_durable_entry_is_a_miss():
    class BrokenStore:
        def get(self, session_id):
            return "{not json"

        def put(self, session_id, payload):
            pass

        def delete(self, session_id):
            pass

    cache = ActionOptionsCache(BrokenStore())
    assert cache.get("s1") is None
