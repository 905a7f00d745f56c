# tests/test_upload_queue.py

from __future__ import annotations

import itertools
import json

import pytest

from vidqueue.core.ports import TransferResult
from vidqueue.uploads import OpResult, UploadCategory, UploadStatus

KEY = "test:upload-queue"


def _record(kv) -> list[dict]:
    return json.loads(kv.data[KEY])


@pytest.mark.asyncio
async def test_upload_runs_to_completion_with_full_byte_count(make_queue, transfer, probe, kv) -> None:
    probe.sizes["/v/a.mp4"] = 10_485_760
    transfer.script(
        "/v/a.mp4",
        progress=[0, 25, 50, 75, 100],
        result=TransferResult(remote_id="v1", remote_url="https://x/v1"),
    )
    q = make_queue()
    await q.load()

    task_id = await q.enqueue("/v/a.mp4")
    seen: list[int] = []
    done = []
    q.on_progress(task_id, lambda p, t: seen.append(p))
    q.on_completed(task_id, done.append)

    assert await q.try_advance() == task_id
    await q.wait_idle()

    t = q.get_task(task_id)
    assert t is not None
    assert t.status == UploadStatus.COMPLETED
    assert t.progress == 100
    assert t.uploaded_bytes == 10_485_760
    assert t.remote_id == "v1"
    assert t.remote_url == "https://x/v1"
    assert t.completed_at is not None

    # Listeners get the reported percent; the stored value hit 100 only on completion.
    assert seen == [0, 25, 50, 75, 100]
    assert [x.id for x in done] == [task_id]

    stored = _record(kv)[0]
    assert stored["status"] == "completed"
    assert stored["progress"] == 100


@pytest.mark.asyncio
async def test_enqueue_does_not_start_execution(make_queue, transfer) -> None:
    q = make_queue()
    task_id = await q.enqueue("/v/a.mp4", listing_id="L-1", category="horse")

    t = q.get_task(task_id)
    assert t is not None
    assert t.status == UploadStatus.PENDING
    assert t.listing_id == "L-1"
    assert t.category == UploadCategory.HORSE
    assert transfer.calls == []


@pytest.mark.asyncio
async def test_enqueue_rejects_empty_source(make_queue) -> None:
    q = make_queue()
    with pytest.raises(ValueError):
        await q.enqueue("   ")
    assert q.get_all_tasks() == []


@pytest.mark.asyncio
async def test_cap_one_drives_only_the_oldest(make_queue, transfer) -> None:
    transfer.script("/v/a.mp4", hold=True)
    q = make_queue(concurrency_cap=1)

    a = await q.enqueue("/v/a.mp4")
    b = await q.enqueue("/v/b.mp4")

    assert await q.try_advance() == a
    assert q.get_task(a).status == UploadStatus.UPLOADING
    assert q.get_task(b).status == UploadStatus.PENDING

    # No free slot.
    assert await q.try_advance() is None
    assert q.get_task(b).status == UploadStatus.PENDING

    transfer.release("/v/a.mp4")
    await q.wait_idle()
    assert q.get_task(a).status == UploadStatus.COMPLETED
    assert q.get_task(b).status == UploadStatus.PENDING


@pytest.mark.asyncio
async def test_pause_frees_the_slot_and_drops_the_late_result(make_queue, transfer) -> None:
    transfer.script("/v/a.mp4", progress=[30], after_gate=[80], hold=True)
    q = make_queue(concurrency_cap=1, schedule_paused=False)

    a = await q.enqueue("/v/a.mp4")
    b = await q.enqueue("/v/b.mp4")
    completed: list[str] = []
    q.on_completed(a, lambda t: completed.append(t.id))

    await q.try_advance()
    await transfer.wait_entered("/v/a.mp4")
    assert q.get_task(a).progress == 30

    assert await q.pause_upload(a) == OpResult.OK
    assert q.get_task(a).status == UploadStatus.PAUSED
    assert a not in q.scheduler.active_set

    # Paused tasks are not picked up here, so B gets the freed slot.
    assert await q.try_advance() == b

    transfer.release("/v/a.mp4")
    await q.wait_idle()

    t = q.get_task(a)
    assert t.status == UploadStatus.PAUSED
    assert t.progress == 30
    assert t.remote_id is None
    assert completed == []
    assert q.get_task(b).status == UploadStatus.COMPLETED


@pytest.mark.asyncio
async def test_paused_tasks_stay_eligible_by_default(make_queue, transfer) -> None:
    transfer.script("/v/a.mp4", hold=True)
    q = make_queue(concurrency_cap=1)

    a = await q.enqueue("/v/a.mp4")
    b = await q.enqueue("/v/b.mp4")
    await q.try_advance()
    await q.pause_upload(a)

    assert [t.id for t in q.scheduler.eligible()] == [a, b]

    transfer.release("/v/a.mp4")
    await q.wait_idle()


@pytest.mark.asyncio
async def test_resume_restarts_the_transfer_and_keeps_progress_monotonic(make_queue, transfer) -> None:
    transfer.script("/v/a.mp4", progress=[10, 30], after_gate=[60], hold=True)
    q = make_queue(concurrency_cap=1)

    a = await q.enqueue("/v/a.mp4")
    seen: list[int] = []
    q.on_progress(a, lambda p, t: seen.append(p))

    await q.try_advance()
    await transfer.wait_entered("/v/a.mp4")
    assert await q.pause_upload(a) == OpResult.OK

    assert await q.resume_upload(a) == OpResult.OK
    assert q.get_task(a).status == UploadStatus.PENDING
    assert q.get_task(a).progress == 30

    assert await q.try_advance() == a
    transfer.release("/v/a.mp4")
    await q.wait_idle()

    assert transfer.calls_for("/v/a.mp4") == 2
    # The restarted run reports from the beginning again.
    assert seen == [10, 30, 10, 30, 60]
    assert q.get_task(a).status == UploadStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancel_in_flight_removes_task_and_ignores_late_result(make_queue, transfer, kv) -> None:
    transfer.script("/v/a.mp4", after_gate=[50], hold=True)
    q = make_queue()

    a = await q.enqueue("/v/a.mp4")
    await q.try_advance()
    await transfer.wait_entered("/v/a.mp4")

    assert await q.cancel_upload(a) == OpResult.OK
    assert q.get_task(a) is None
    assert a not in q.scheduler.active_set

    # Even a fresh listener must not hear from the cancelled run.
    events: list[str] = []
    q.on_progress(a, lambda p, t: events.append("progress"))
    q.on_completed(a, lambda t: events.append("completed"))

    transfer.release("/v/a.mp4")
    await q.wait_idle()

    assert events == []
    assert q.get_all_tasks() == []
    assert _record(kv) == []


@pytest.mark.asyncio
async def test_cancel_unknown_id_is_a_no_op(make_queue) -> None:
    q = make_queue()
    assert await q.cancel_upload("upload-0-missing") == OpResult.NOT_FOUND


@pytest.mark.asyncio
async def test_ops_on_incompatible_states_return_invalid_state(make_queue) -> None:
    q = make_queue()
    a = await q.enqueue("/v/a.mp4")

    assert await q.pause_upload(a) == OpResult.INVALID_STATE
    assert await q.resume_upload(a) == OpResult.INVALID_STATE
    assert await q.retry_upload(a) == OpResult.INVALID_STATE
    assert await q.pause_upload("nope") == OpResult.NOT_FOUND
    assert await q.resume_upload("nope") == OpResult.NOT_FOUND
    assert await q.retry_upload("nope") == OpResult.NOT_FOUND

    await q.try_advance()
    await q.wait_idle()
    assert q.get_task(a).status == UploadStatus.COMPLETED
    assert await q.pause_upload(a) == OpResult.INVALID_STATE
    assert q.get_task(a).status == UploadStatus.COMPLETED


@pytest.mark.asyncio
async def test_transfer_failure_is_recorded_and_reported(make_queue, transfer) -> None:
    transfer.script("/v/a.mp4", progress=[40], error="boom")
    q = make_queue()

    a = await q.enqueue("/v/a.mp4")
    errors: list[tuple[str, str]] = []
    q.on_error(a, lambda msg, t: errors.append((msg, t.id)))

    await q.try_advance()
    await q.wait_idle()

    t = q.get_task(a)
    assert t.status == UploadStatus.FAILED
    assert t.error == "boom"
    assert t.remote_id is None
    assert t.progress == 40
    assert errors == [("boom", a)]
    assert [x.id for x in q.get_failed_uploads()] == [a]
    assert q.scheduler.active_set == frozenset()


@pytest.mark.asyncio
async def test_failure_does_not_stall_an_auto_advancing_queue(make_queue, transfer) -> None:
    transfer.script("/v/a.mp4", error="boom")
    q = make_queue(concurrency_cap=1)

    a = await q.enqueue("/v/a.mp4")
    b = await q.enqueue("/v/b.mp4")
    q.auto_advance = True

    await q.try_advance()
    await q.wait_idle()

    assert q.get_task(a).status == UploadStatus.FAILED
    assert q.get_task(b).status == UploadStatus.COMPLETED


@pytest.mark.asyncio
async def test_retry_requeues_a_failed_upload(make_queue, transfer) -> None:
    script = transfer.script("/v/a.mp4", progress=[40], error="boom")
    q = make_queue()

    a = await q.enqueue("/v/a.mp4")
    await q.try_advance()
    await q.wait_idle()
    assert q.get_task(a).status == UploadStatus.FAILED

    assert await q.retry_upload(a) == OpResult.OK
    t = q.get_task(a)
    assert t.status == UploadStatus.PENDING
    assert t.error is None
    assert t.progress == 0
    assert t.uploaded_bytes == 0

    script.error = None
    await q.try_advance()
    await q.wait_idle()
    assert q.get_task(a).status == UploadStatus.COMPLETED


@pytest.mark.asyncio
async def test_auto_advance_never_exceeds_the_cap(make_queue, transfer) -> None:
    q = make_queue(concurrency_cap=2, auto_advance=True)
    max_running = 0

    def watch(percent, task) -> None:
        nonlocal max_running
        max_running = max(max_running, len(q.get_active_uploads()))
        assert len(q.scheduler.active_set) <= 2

    sources = [f"/v/{i}.mp4" for i in range(5)]
    for src in sources:
        transfer.script(src, progress=[50])
    for src in sources:
        task_id = await q.enqueue(src)
        q.on_progress(task_id, watch)

    await q.wait_idle()

    assert max_running == 2
    assert len(q.get_completed_uploads()) == 5
    assert q.get_active_uploads() == []


@pytest.mark.asyncio
async def test_clear_completed_keeps_every_other_status(make_queue, kv) -> None:
    kv.data[KEY] = json.dumps(
        [
            {"id": f"upload-{i}-x", "source": f"/v/{s}.mp4", "status": s, "created_at": float(i),
             "progress": 100 if s == "completed" else 0, "remote_id": "r" if s == "completed" else None}
            for i, s in enumerate(["pending", "uploading", "paused", "completed", "failed", "completed"])
        ]
    )
    q = make_queue()
    await q.load()

    assert await q.clear_completed() == 2
    statuses = sorted(t.status.value for t in q.get_all_tasks())
    assert statuses == ["failed", "paused", "pending", "uploading"]
    assert all(e["status"] != "completed" for e in _record(kv))


@pytest.mark.asyncio
async def test_clear_all_erases_the_record_and_drops_in_flight_runs(make_queue, transfer, kv) -> None:
    transfer.script("/v/a.mp4", hold=True)
    q = make_queue()

    a = await q.enqueue("/v/a.mp4")
    await q.enqueue("/v/b.mp4")
    completed: list[str] = []
    q.on_completed(a, lambda t: completed.append(t.id))
    await q.try_advance()

    assert await q.clear_all() == 2
    assert KEY not in kv.data
    assert q.scheduler.active_set == frozenset()
    assert not q.subscriptions.has_subscribers(a)

    transfer.release("/v/a.mp4")
    await q.wait_idle()
    assert q.get_all_tasks() == []
    assert completed == []


@pytest.mark.asyncio
async def test_resume_all_recovers_interrupted_uploads(make_queue, kv) -> None:
    kv.data[KEY] = json.dumps(
        [
            {"id": "upload-1-a", "source": "/v/a.mp4", "status": "uploading", "created_at": 1.0,
             "progress": 40, "uploaded_bytes": 400, "total_bytes": 1000},
            {"id": "upload-2-b", "source": "/v/b.mp4", "status": "paused", "created_at": 2.0,
             "progress": 20, "uploaded_bytes": 200, "total_bytes": 1000},
        ]
    )
    q = make_queue()
    await q.load()

    assert await q.resume_all() == 1

    a = q.get_task("upload-1-a")
    assert a.status == UploadStatus.PENDING
    assert a.progress == 40
    assert a.uploaded_bytes == 400
    assert q.get_task("upload-2-b").status == UploadStatus.PAUSED
    assert [e["status"] for e in _record(kv)] == ["pending", "paused"]


@pytest.mark.asyncio
async def test_persisted_queue_round_trips_into_a_new_instance(make_queue, probe) -> None:
    probe.sizes["/v/a.mp4"] = 2048
    q1 = make_queue()
    a = await q1.enqueue("/v/a.mp4", listing_id="L-9", category=UploadCategory.REAL_ESTATE)
    await q1.enqueue("/v/b.mp4")
    await q1.try_advance()
    await q1.wait_idle()
    assert q1.get_task(a).status == UploadStatus.COMPLETED

    q2 = make_queue()
    assert await q2.load() == 2
    assert [t.to_dict() for t in q2.get_all_tasks()] == [t.to_dict() for t in q1.get_all_tasks()]


@pytest.mark.asyncio
async def test_async_context_manager_loads_and_saves(make_queue, kv) -> None:
    async with make_queue() as q:
        await q.enqueue("/v/a.mp4")

    async with make_queue() as again:
        assert len(again.get_all_tasks()) == 1


@pytest.mark.asyncio
async def test_out_of_range_progress_is_clamped_and_never_decreases(make_queue, transfer, probe) -> None:
    probe.sizes["/v/a.mp4"] = 1000
    transfer.script("/v/a.mp4", progress=[50, 40, "x", 250, -5])  # type: ignore[list-item]
    q = make_queue()

    a = await q.enqueue("/v/a.mp4")
    seen: list[tuple[int, int]] = []
    q.on_progress(a, lambda p, t: seen.append((p, t.uploaded_bytes)))

    await q.try_advance()
    await q.wait_idle()

    assert seen == [(50, 500), (40, 500), (100, 990), (0, 990)]
    t = q.get_task(a)
    assert (t.status, t.progress, t.uploaded_bytes) == (UploadStatus.COMPLETED, 100, 1000)


def test_zero_concurrency_cap_is_rejected(make_queue) -> None:
    with pytest.raises(ValueError):
        make_queue(concurrency_cap=0)


@pytest.mark.asyncio
async def test_timestamps_are_set_once_across_pause_and_resume(make_queue, transfer) -> None:
    ticks = itertools.count(1000)
    transfer.script("/v/a.mp4", hold=True)
    q = make_queue(clock=lambda: float(next(ticks)))

    a = await q.enqueue("/v/a.mp4")
    created_at = q.get_task(a).created_at

    await q.try_advance()
    first_start = q.get_task(a).started_at
    assert first_start is not None

    await q.pause_upload(a)
    await q.resume_upload(a)
    await q.try_advance()
    assert q.get_task(a).started_at == first_start

    transfer.release("/v/a.mp4")
    await q.wait_idle()

    t = q.get_task(a)
    assert t.status == UploadStatus.COMPLETED
    assert t.created_at == created_at
    assert t.started_at == first_start
    assert t.completed_at is not None and t.completed_at > first_start


@pytest.mark.asyncio
async def test_rows_left_uploading_hold_their_slots_until_resume_all(make_queue, kv) -> None:
    kv.data[KEY] = json.dumps(
        [
            {"id": f"upload-{i}-x", "source": f"/v/{i}.mp4", "status": status, "created_at": float(i)}
            for i, status in enumerate(["uploading", "uploading", "pending", "pending"], start=1)
        ]
    )

    async with make_queue(concurrency_cap=2) as q:
        assert await q.scheduler.fill() == []
        assert len(q.get_active_uploads()) == 2
        assert not q.scheduler.has_capacity()

        assert await q.resume_all() == 2
        started = await q.scheduler.fill()
        assert started == ["upload-1-x", "upload-2-x"]
        assert len(q.get_active_uploads()) == 2

        await q.wait_idle()
        statuses = [t.status for t in q.get_all_tasks()]

    assert statuses == [UploadStatus.COMPLETED, UploadStatus.COMPLETED, UploadStatus.PENDING, UploadStatus.PENDING]
