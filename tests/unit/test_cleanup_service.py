from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from gomoku.exceptions import StorageError
from gomoku.models.game_room import Player, Room
from gomoku.services import cleanup_service


def _room_idle_for(minutes: int, now: datetime, status: str = "waiting") -> Room:
    room = Room(
        creator={"user_id": f"u{minutes}", "nickname": "闲置"},
        players=[Player(user_id=f"u{minutes}", nickname="闲置")],
        status=status,
    )
    room.last_action_time = now - timedelta(minutes=minutes)
    return room


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_deletes_only_rooms_idle_past_threshold(service, repo, gateway) -> None:
    now = datetime.now(timezone.utc)
    stale = _room_idle_for(11, now)
    fresh = _room_idle_for(5, now)
    repo.put(stale)
    repo.put(fresh)

    stats = await cleanup_service.cleanup_inactive_rooms(service, now=now)

    assert stats == {"found": 1, "deleted": 1, "failed": 0}
    assert [room.id for room in repo.all_rooms()] == [fresh.id]
    assert gateway.messages == [
        (stale.id, {"type": "room_deleted", "data": {"room_id": stale.id, "reason": "inactivity"}})
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_scans_every_partition(service, repo) -> None:
    now = datetime.now(timezone.utc)
    rooms = [_room_idle_for(30, now, status) for status in ("waiting", "playing", "finished")]
    for room in rooms:
        repo.put(room)

    stats = await cleanup_service.cleanup_inactive_rooms(service, now=now)

    assert stats["deleted"] == 3
    assert repo.all_rooms() == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_continues_after_single_room_failure(service, repo, monkeypatch) -> None:
    now = datetime.now(timezone.utc)
    broken = _room_idle_for(20, now)
    healthy = _room_idle_for(40, now)
    repo.put(broken)
    repo.put(healthy)

    original_delete = repo.delete

    async def flaky_delete(room_id: str, status: str) -> None:
        if room_id == broken.id:
            raise StorageError("删除失败")
        await original_delete(room_id, status)

    monkeypatch.setattr(repo, "delete", flaky_delete)

    stats = await cleanup_service.cleanup_inactive_rooms(service, now=now)

    assert stats == {"found": 2, "deleted": 1, "failed": 1}
    assert [room.id for room in repo.all_rooms()] == [broken.id]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_removes_members_from_room_group(service, repo, gateway) -> None:
    now = datetime.now(timezone.utc)
    room = _room_idle_for(15, now)
    repo.put(room)
    await gateway.subscribe(room.players[0].user_id, room.id)

    await cleanup_service.cleanup_inactive_rooms(service, now=now)

    assert gateway.get_members(room.id) == set()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_cleanup_once_skips_when_previous_sweep_running(service) -> None:
    async with cleanup_service._sweep_lock:
        assert await cleanup_service.run_cleanup_once(service) is None

    stats = await cleanup_service.run_cleanup_once(service)
    assert stats == {"found": 0, "deleted": 0, "failed": 0}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_scheduler_runs_sweeps_until_stopped(monkeypatch) -> None:
    calls: list[int] = []

    async def fake_run_cleanup_once(service=None):
        calls.append(1)
        return {"found": 0, "deleted": 0, "failed": 0}

    monkeypatch.setattr(cleanup_service, "run_cleanup_once", fake_run_cleanup_once)

    loop_task = asyncio.create_task(cleanup_service._cleanup_scheduler_loop(0.01))
    await asyncio.sleep(0.05)
    loop_task.cancel()
    await asyncio.wait_for(loop_task, timeout=1)

    assert len(calls) >= 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_and_stop_scheduler_manage_single_task() -> None:
    cleanup_service.start_cleanup_scheduler(interval_seconds=3600)
    task = cleanup_service._cleanup_task
    assert task is not None
    await asyncio.sleep(0)

    cleanup_service.start_cleanup_scheduler(interval_seconds=3600)
    assert cleanup_service._cleanup_task is task

    cleanup_service.stop_cleanup_scheduler()
    assert cleanup_service._cleanup_task is None
    await asyncio.gather(task, return_exceptions=True)
    assert task.done()
