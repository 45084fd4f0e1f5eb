from __future__ import annotations

import asyncio

from narrative_engine.core.background import BackgroundTaskCoordinator


def test_run_exclusive_skips_while_key_in_flight():
    async def run_test():
        coordinator = BackgroundTaskCoordinator()
        gate = asyncio.Event()
        calls = {"n": 0}
        applied = []

        async def slow():
            calls["n"] += 1
            await gate.wait()
            return "digest"

        first = asyncio.create_task(coordinator.run_exclusive("memory_digest", slow, applied.append, scope="s1"))
        await asyncio.sleep(0)
        assert coordinator.is_running("memory_digest", scope="s1")

        skipped = await coordinator.run_exclusive("memory_digest", slow, applied.append, scope="s1")
        assert skipped is False
        other_scope = coordinator.spawn("memory_digest", slow, applied.append, scope="s2")
        assert other_scope is not None

        gate.set()
        assert await first is True
        await other_scope.wait()
        assert calls["n"] == 2
        assert applied == ["digest", "digest"]
        assert not coordinator.is_running("memory_digest", scope="s1")

    asyncio.run(run_test())


def test_failed_job_is_logged_and_releases_marker(caplog):
    async def run_test():
        coordinator = BackgroundTaskCoordinator()

        async def boom():
            raise RuntimeError("image service down")

        handle = coordinator.spawn("location_background:tavern", boom, scope="s1")
        assert await handle.wait() is False
        assert not coordinator.is_running("location_background:tavern", scope="s1")

        async def ok():
            return 1

        assert await coordinator.run_exclusive("location_background:tavern", ok, scope="s1") is True

    asyncio.run(run_test())
    assert any("failed" in r.getMessage() for r in caplog.records)


def test_cancel_scope_drops_late_results():
    async def run_test():
        coordinator = BackgroundTaskCoordinator()
        started = asyncio.Event()
        applied = []

        async def stubborn():
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                return "late result"
            return "never"

        handle = coordinator.spawn("spatial_snapshot", stubborn, applied.append, scope="s1")
        await started.wait()
        assert coordinator.cancel_scope("s1") == 1
        assert coordinator.cancel_scope("other") == 0
        assert await handle.wait() is False
        assert applied == []
        assert coordinator.pending() == []
        assert not coordinator.is_running("spatial_snapshot", scope="s1")

    asyncio.run(run_test())


def test_cancel_before_start_releases_marker():
    async def run_test():
        coordinator = BackgroundTaskCoordinator()

        async def work():
            return 1

        handle = coordinator.spawn("theme_colors", work, scope="s1")
        handle.cancel()
        await coordinator.wait_idle()
        await asyncio.sleep(0)
        assert not coordinator.is_running("theme_colors", scope="s1")
        assert coordinator.spawn("theme_colors", work, scope="s1") is not None
        await coordinator.shutdown()

    asyncio.run(run_test())


def test_async_on_success_is_awaited():
    async def run_test():
        coordinator = BackgroundTaskCoordinator()
        seen = []

        async def work():
            return "colors"

        async def apply(result):
            await asyncio.sleep(0)
            seen.append(result)

        assert await coordinator.run_exclusive("theme_colors", work, apply, scope="s1") is True
        assert seen == ["colors"]

    asyncio.run(run_test())
