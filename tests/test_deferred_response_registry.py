import asyncio
import time

import pytest

from mirror_remote.runtime.waiters import DeferredResponseRegistry


class _Refresher:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1


def _registry(*, snapshot=None, timeout_ms: int = 1000) -> tuple[DeferredResponseRegistry, _Refresher]:
    refresher = _Refresher()
    registry = DeferredResponseRegistry(
        request_refresh=refresher,
        current_snapshot=lambda: snapshot,
        default_timeout_ms=timeout_ms,
    )
    return registry, refresher


@pytest.mark.asyncio
async def test_resolve_all_fires_every_waiter_exactly_once() -> None:
    registry, refresher = _registry(timeout_ms=80)
    calls: list[tuple[int, object]] = []
    for idx in range(5):
        registry.await_fresh_state(lambda snap, idx=idx: calls.append((idx, snap)))

    assert refresher.calls == 5
    assert registry.pending_count == 5

    snapshot = {"brightness": 42}
    fired = registry.resolve_all(snapshot)

    assert fired == 5
    assert registry.pending_count == 0
    assert sorted(idx for idx, _ in calls) == [0, 1, 2, 3, 4]
    assert all(snap is snapshot for _, snap in calls)

    # timers were disarmed; nothing fires a second time
    await asyncio.sleep(0.15)
    assert len(calls) == 5


@pytest.mark.asyncio
async def test_timeout_resolves_with_current_snapshot_and_later_resolve_is_noop() -> None:
    registry, _ = _registry(snapshot={"brightness": 10}, timeout_ms=20)
    calls: list[object] = []
    registry.await_fresh_state(calls.append)

    await asyncio.sleep(0.1)
    assert calls == [{"brightness": 10}]
    assert registry.pending_count == 0

    assert registry.resolve_all({"brightness": 99}) == 0
    assert calls == [{"brightness": 10}]


@pytest.mark.asyncio
async def test_timeout_without_any_snapshot_delivers_none() -> None:
    registry, _ = _registry(snapshot=None, timeout_ms=10)
    calls: list[object] = []
    registry.await_fresh_state(calls.append)
    await asyncio.sleep(0.08)
    assert calls == [None]


@pytest.mark.asyncio
async def test_mixed_waiters_only_unexpired_ones_get_new_snapshot() -> None:
    registry, _ = _registry(snapshot="stale", timeout_ms=1000)
    early: list[object] = []
    late: list[object] = []
    registry.await_fresh_state(early.append, timeout_ms=10)
    await asyncio.sleep(0.08)
    registry.await_fresh_state(late.append, timeout_ms=1000)

    fired = registry.resolve_all("fresh")

    assert fired == 1
    assert early == ["stale"]
    assert late == ["fresh"]


@pytest.mark.asyncio
async def test_refresh_signal_is_emitted_per_call_without_dedup() -> None:
    registry, refresher = _registry(timeout_ms=500)
    registry.await_fresh_state(lambda _snap: None)
    registry.await_fresh_state(lambda _snap: None)
    registry.await_fresh_state(lambda _snap: None)
    assert refresher.calls == 3
    registry.resolve_all({})


@pytest.mark.asyncio
async def test_async_refresh_request_is_awaited() -> None:
    sent: list[str] = []

    async def _send_update() -> None:
        sent.append("UPDATE")

    registry = DeferredResponseRegistry(
        request_refresh=_send_update,
        current_snapshot=lambda: None,
        default_timeout_ms=500,
    )
    registry.await_fresh_state(lambda _snap: None)
    await asyncio.sleep(0.01)
    assert sent == ["UPDATE"]
    registry.resolve_all({})


@pytest.mark.asyncio
async def test_failing_callback_does_not_block_other_waiters() -> None:
    registry, _ = _registry(timeout_ms=500)
    calls: list[object] = []

    def _boom(_snap: object) -> None:
        raise RuntimeError("boom")

    registry.await_fresh_state(_boom)
    registry.await_fresh_state(calls.append)

    assert registry.resolve_all("snap") == 2
    assert calls == ["snap"]


@pytest.mark.asyncio
async def test_wait_for_fresh_state_returns_delivered_snapshot() -> None:
    registry, _ = _registry(timeout_ms=1000)
    task = asyncio.create_task(registry.wait_for_fresh_state())
    await asyncio.sleep(0)
    registry.resolve_all({"moduleData": []})
    assert await asyncio.wait_for(task, timeout=1) == {"moduleData": []}


@pytest.mark.asyncio
async def test_wait_for_fresh_state_completes_by_timeout_when_no_reply() -> None:
    registry, _ = _registry(snapshot={"brightness": 70}, timeout_ms=100)
    started = time.monotonic()
    result = await registry.wait_for_fresh_state()
    elapsed = time.monotonic() - started

    assert result == {"brightness": 70}
    assert 0.09 <= elapsed < 0.6
