import asyncio
import json

from nest_sync.errors import ErrorKind
from nest_sync.session import SessionState
from nest_sync.worker import (
    ACTION_AWAY, ACTION_NODE_SETPOINT, ACTION_NODE_SWITCH, ACTION_REFRESH, SyncWorker,
)


def make_worker(db_path, transport, tick_seconds=10.0):
    worker = SyncWorker.from_config(db_path, access_token="tok", transport=transport)
    worker.tick_seconds = tick_seconds
    return worker


def test_poll_logs_in_and_reconciles(db_path, transport, structures, devices):
    transport.serve(structures, devices)
    worker = make_worker(db_path, transport)

    result = asyncio.run(worker.poll())

    assert result.ok
    assert result.value > 0
    assert worker.token_manager.session.state == SessionState.VALID
    assert len(worker.index.thermostats) == 2
    assert worker.registry.all_entries()


def test_poll_without_credentials_does_not_touch_network(db_path, transport):
    worker = SyncWorker.from_config(db_path, transport=transport)

    result = asyncio.run(worker.poll())

    assert result.error == ErrorKind.AUTH
    assert transport.calls == []
    assert worker.last_poll_result is result


def test_submit_requires_running_worker(db_path, transport):
    worker = make_worker(db_path, transport)

    result = asyncio.run(worker.submit(ACTION_REFRESH))

    assert result.error == ErrorKind.NOT_READY


def test_commands_run_on_worker_task(db_path, transport, structures, devices):
    transport.serve(structures, devices)
    worker = make_worker(db_path, transport)

    async def run():
        worker.start()
        try:
            before_poll = await worker.submit(ACTION_AWAY, 0, True)
            refreshed = await worker.submit(ACTION_REFRESH)
            away = await worker.submit(ACTION_AWAY, 0, True)
            unknown = await worker.submit(ACTION_NODE_SWITCH, 5, True)
            return before_poll, refreshed, away, unknown
        finally:
            await worker.stop()

    before_poll, refreshed, away, unknown = asyncio.run(run())

    assert before_poll.error == ErrorKind.NOT_READY
    assert refreshed.ok
    assert away.ok
    assert unknown.error == ErrorKind.UNRECOGNIZED
    puts = transport.calls_of("PUT")
    assert len(puts) == 1
    assert json.loads(puts[0][2]) == {"away": "away"}
    # A successful switch command is followed by a poll
    assert worker.poll_count == 2
    assert not worker.is_running


def test_concurrent_submissions_are_serialized(db_path, transport, structures, devices):
    transport.serve(structures, devices)
    worker = make_worker(db_path, transport)
    active = []
    overlaps = []
    original_put = transport.put

    async def slow_put(url, body, headers=None):
        if active:
            overlaps.append(url)
        active.append(url)
        await asyncio.sleep(0.01)
        active.remove(url)
        return await original_put(url, body, headers)

    transport.put = slow_put

    async def run():
        worker.start()
        try:
            await worker.submit(ACTION_REFRESH)
            return await asyncio.gather(
                worker.submit(ACTION_NODE_SETPOINT, 1, 20.0),
                worker.submit(ACTION_NODE_SETPOINT, 4, 21.0),
                worker.submit(ACTION_NODE_SWITCH, 3, False),
            )
        finally:
            await worker.stop()

    results = asyncio.run(run())

    assert all(r.ok for r in results)
    assert overlaps == []
    assert len(transport.calls_of("PUT")) == 3


def test_worker_polls_on_schedule(db_path, transport, structures, devices):
    transport.serve(structures, devices)
    worker = make_worker(db_path, transport, tick_seconds=0.005)

    async def run():
        worker.start()
        await asyncio.sleep(0.3)
        await worker.stop()

    asyncio.run(run())

    assert worker.poll_count >= 1
    assert worker.last_heartbeat is not None
    # Stopping logs out, so the next start validates again
    assert worker.token_manager.needs_login


def test_stop_fails_queued_commands_and_rejects_new_ones(db_path, transport):
    worker = make_worker(db_path, transport)

    async def run():
        worker.start()
        await worker.stop()
        return await worker.submit(ACTION_REFRESH)

    assert asyncio.run(run()).error == ErrorKind.NOT_READY


def test_malformed_devices_payload_fails_poll_and_forces_login(db_path, transport, structures, devices):
    devices["smoke_co_alarms"] = [{"where_name": "Kitchen"}]
    transport.serve(structures, devices)
    worker = make_worker(db_path, transport)

    result = asyncio.run(worker.poll())

    assert result.error == ErrorKind.DATA
    assert worker.token_manager.session.state == SessionState.INVALID


def test_applied_command_survives_failing_follow_up_poll(db_path, transport, structures, devices):
    transport.serve(structures, devices)
    worker = make_worker(db_path, transport)

    def broken_reconcile(structures, devices):
        raise RuntimeError("registry unavailable")

    async def run():
        await worker.poll()
        worker.reconciler.reconcile = broken_reconcile
        away = await worker.execute(ACTION_AWAY, 0, True)
        setpoint = await worker.execute(ACTION_NODE_SETPOINT, 1, 20.0)
        return away, setpoint

    away, setpoint = asyncio.run(run())

    assert away.ok
    assert setpoint.ok
    assert len(transport.calls_of("PUT")) == 2
