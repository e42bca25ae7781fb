"""
Unit tests for JobScheduler

Tests cover:
- Registration (duplicates, defaults, invalid CRON)
- run_job success/failure bookkeeping and skip-if-busy
- start/stop lifecycle with a fake trigger backend
- Enable/disable without losing run history
- Error isolation for scheduled firings
- Status snapshots
"""

import asyncio
from datetime import datetime

import pytest

from mediasync.core.exceptions import InvalidScheduleError, JobNotFoundError
from mediasync.scheduler.cron import CronSchedule
from mediasync.scheduler.scheduler import JobOptions, JobScheduler, JobStatus

NOW = datetime(2026, 1, 1, 12, 0, 0)


@pytest.fixture
def context():
    return {"name": "app-context"}


@pytest.fixture
def scheduler(trigger_backend, context) -> JobScheduler:
    return JobScheduler(context=context, backend=trigger_backend, clock=lambda: NOW)


class RecordingHandler:
    """Job handler that records calls and optionally fails or blocks."""

    def __init__(self, result="done", error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls = []
        self.release: asyncio.Event | None = None
        self.started = asyncio.Event()

    def block(self) -> asyncio.Event:
        self.release = asyncio.Event()
        return self.release

    async def __call__(self, context):
        self.calls.append(context)
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.result


class TestJobRegistration:
    """Test register()"""

    def test_register_applies_defaults(self, scheduler):
        scheduler.register("refresh-collections", "0 * * * *", RecordingHandler())

        job = scheduler.get_job("refresh-collections")
        assert job.options == JobOptions(run_on_start=False, enabled=True)
        assert job.task is None
        assert job.run_count == 0
        assert job.last_run is None
        assert job.last_error is None
        assert job.is_running is False

    def test_register_merges_dict_options_over_defaults(self, scheduler):
        scheduler.register("image-cache-queue", "*/15 * * * *", RecordingHandler(), {"run_on_start": True})

        assert scheduler.get_job("image-cache-queue").options == JobOptions(run_on_start=True, enabled=True)

    def test_register_copies_options_object(self, scheduler):
        options = JobOptions(enabled=False)
        scheduler.register("sync-to-emby", "0 */2 * * *", RecordingHandler(), options)

        scheduler.set_enabled("sync-to-emby", True)

        assert options.enabled is False

    async def test_duplicate_registration_keeps_first(self, scheduler):
        first = RecordingHandler(result="first")
        second = RecordingHandler(result="second")

        scheduler.register("cache-cleanup", "0 3 * * *", first)
        scheduler.register("cache-cleanup", "*/5 * * * *", second)

        assert await scheduler.run_job("cache-cleanup") == "first"
        assert scheduler.get_job("cache-cleanup").schedule == "0 3 * * *"
        assert second.calls == []
        assert len(scheduler.get_status()) == 1

    @pytest.mark.parametrize("schedule", ["0 9 * * 0-3", "0 9 * * 0-6", "0 9 * * */2", "0 9 * * 7"])
    def test_crontab_weekday_forms_accepted(self, scheduler, schedule):
        scheduler.register("weekly", schedule, RecordingHandler())

        assert scheduler.get_job("weekly").schedule == schedule

    @pytest.mark.parametrize("schedule", ["not a cron", "0 0 * * * *", "61 * * * *", ""])
    def test_invalid_schedule_rejected(self, scheduler, schedule):
        with pytest.raises(InvalidScheduleError):
            scheduler.register("bad", schedule, RecordingHandler())

        with pytest.raises(JobNotFoundError):
            scheduler.get_job("bad")


class TestRunJob:
    """Test run_job()"""

    async def test_unknown_job_raises(self, scheduler):
        with pytest.raises(JobNotFoundError) as exc_info:
            await scheduler.run_job("missing")

        assert exc_info.value.job_name == "missing"

    async def test_success_records_history(self, scheduler, context):
        handler = RecordingHandler(result={"synced": 3})
        scheduler.register("sync", "0 * * * *", handler)

        result = await scheduler.run_job("sync")

        job = scheduler.get_job("sync")
        assert result == {"synced": 3}
        assert handler.calls == [context]
        assert job.last_run == NOW
        assert job.last_error is None
        assert job.run_count == 1
        assert job.is_running is False

    async def test_failure_records_error_and_reraises(self, scheduler):
        scheduler.register("sync", "0 * * * *", RecordingHandler(error=RuntimeError("Emby unreachable")))

        with pytest.raises(RuntimeError, match="Emby unreachable"):
            await scheduler.run_job("sync")

        job = scheduler.get_job("sync")
        assert job.last_error == "Emby unreachable"
        assert job.run_count == 0
        assert job.last_run is None
        assert job.is_running is False

    async def test_success_clears_previous_error(self, scheduler):
        handler = RecordingHandler(error=RuntimeError("boom"))
        scheduler.register("sync", "0 * * * *", handler)

        with pytest.raises(RuntimeError):
            await scheduler.run_job("sync")

        handler.error = None
        await scheduler.run_job("sync")

        job = scheduler.get_job("sync")
        assert job.last_error is None
        assert job.run_count == 1

    async def test_error_without_message_uses_type_name(self, scheduler):
        scheduler.register("sync", "0 * * * *", RecordingHandler(error=ValueError()))

        with pytest.raises(ValueError):
            await scheduler.run_job("sync")

        assert scheduler.get_job("sync").last_error == "ValueError"

    async def test_overlapping_run_is_skipped(self, scheduler):
        """A second run while the first is in flight returns None without calling the handler"""
        handler = RecordingHandler()
        release = handler.block()
        scheduler.register("refresh", "0 * * * *", handler)

        first = asyncio.create_task(scheduler.run_job("refresh"))
        await handler.started.wait()

        assert scheduler.get_job("refresh").is_running is True
        assert await scheduler.run_job("refresh") is None
        assert len(handler.calls) == 1

        release.set()
        assert await first == "done"

        job = scheduler.get_job("refresh")
        assert job.is_running is False
        assert job.run_count == 1

    async def test_concurrent_runs_execute_handler_once(self, scheduler):
        """Runs started in the same loop iteration cannot both pass the guard"""
        handler = RecordingHandler()
        release = handler.block()
        scheduler.register("refresh", "0 * * * *", handler)

        tasks = [asyncio.create_task(scheduler.run_job("refresh")) for _ in range(5)]
        await handler.started.wait()
        release.set()
        results = await asyncio.gather(*tasks)

        assert len(handler.calls) == 1
        assert results.count("done") == 1
        assert results.count(None) == 4

    async def test_guard_released_after_failure(self, scheduler):
        handler = RecordingHandler(error=RuntimeError("boom"))
        scheduler.register("refresh", "0 * * * *", handler)

        with pytest.raises(RuntimeError):
            await scheduler.run_job("refresh")
        with pytest.raises(RuntimeError):
            await scheduler.run_job("refresh")

        assert len(handler.calls) == 2

    async def test_guard_released_after_cancellation(self, scheduler):
        handler = RecordingHandler()
        handler.block()
        scheduler.register("refresh", "0 * * * *", handler)

        task = asyncio.create_task(scheduler.run_job("refresh"))
        await handler.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert scheduler.get_job("refresh").is_running is False


class TestSchedulerLifecycle:
    """Test start()/stop() with the fake trigger backend"""

    def test_start_binds_enabled_jobs_only(self, scheduler, trigger_backend):
        scheduler.register("enabled", "0 * * * *", RecordingHandler())
        scheduler.register("disabled", "0 * * * *", RecordingHandler(), {"enabled": False})

        scheduler.start()

        assert set(trigger_backend.handles) == {"enabled"}
        assert trigger_backend.handles["enabled"].schedule == CronSchedule("0 * * * *")
        assert scheduler.get_job("disabled").task is None
        assert scheduler.is_started is True
        assert trigger_backend.started is True

    def test_start_is_idempotent(self, scheduler, trigger_backend):
        scheduler.register("job", "0 * * * *", RecordingHandler())

        scheduler.start()
        handle = trigger_backend.handles["job"]
        scheduler.start()

        assert trigger_backend.handles["job"] is handle

    async def test_bind_failure_does_not_block_other_jobs(self, scheduler, trigger_backend):
        """A job whose trigger cannot be created is reported, the rest still run"""
        add = trigger_backend.add

        def add_or_fail(name, schedule, callback):
            if name == "broken":
                raise ValueError("bad trigger")
            return add(name, schedule, callback)

        trigger_backend.add = add_or_fail
        healthy = RecordingHandler()
        scheduler.register("broken", "0 * * * *", RecordingHandler(), {"run_on_start": True})
        scheduler.register("healthy", "0 * * * *", healthy)

        scheduler.start()
        await scheduler.wait_for_active_runs()

        broken = scheduler.get_job("broken")
        assert broken.task is None
        assert broken.run_count == 0
        assert "bad trigger" in broken.last_error
        assert trigger_backend.started is True
        assert await trigger_backend.fire("healthy") is True
        assert len(healthy.calls) == 1

    async def test_trigger_firing_runs_job(self, scheduler, trigger_backend, context):
        handler = RecordingHandler()
        scheduler.register("job", "0 * * * *", handler)
        scheduler.start()

        assert await trigger_backend.fire("job") is True

        assert handler.calls == [context]
        assert scheduler.get_job("job").run_count == 1

    async def test_run_on_start_runs_once_in_background(self, scheduler):
        handler = RecordingHandler()
        scheduler.register("warm-cache", "*/15 * * * *", handler, {"run_on_start": True})
        scheduler.register("hourly", "0 * * * *", RecordingHandler())

        scheduler.start()
        assert handler.calls == []

        await scheduler.wait_for_active_runs()

        assert len(handler.calls) == 1
        assert scheduler.get_job("warm-cache").run_count == 1
        assert scheduler.get_job("hourly").run_count == 0

    async def test_disabled_run_on_start_job_does_not_run(self, scheduler):
        handler = RecordingHandler()
        scheduler.register("job", "0 * * * *", handler, {"run_on_start": True, "enabled": False})

        scheduler.start()
        await scheduler.wait_for_active_runs()

        assert handler.calls == []

    async def test_failing_firing_is_isolated(self, scheduler, trigger_backend):
        """A failing scheduled run neither raises nor affects other jobs"""
        scheduler.register("broken", "0 * * * *", RecordingHandler(error=RuntimeError("boom")))
        healthy = RecordingHandler()
        scheduler.register("healthy", "0 * * * *", healthy)
        scheduler.start()

        await trigger_backend.fire("broken")
        await trigger_backend.fire("healthy")

        assert scheduler.get_job("broken").last_error == "boom"
        assert scheduler.get_job("healthy").run_count == 1

    async def test_failing_run_on_start_is_isolated(self, scheduler):
        scheduler.register("broken", "0 * * * *", RecordingHandler(error=RuntimeError("boom")), {"run_on_start": True})

        scheduler.start()
        await scheduler.wait_for_active_runs()

        assert scheduler.get_job("broken").last_error == "boom"

    async def test_stop_removes_triggers_and_keeps_history(self, scheduler, trigger_backend):
        scheduler.register("job", "0 * * * *", RecordingHandler())
        scheduler.start()
        await trigger_backend.fire("job")
        handle = trigger_backend.handles["job"]

        scheduler.stop()

        job = scheduler.get_job("job")
        assert handle.removed is True
        assert job.task is None
        assert job.run_count == 1
        assert job.last_run == NOW
        assert scheduler.is_started is False
        assert trigger_backend.started is False

    async def test_restart_rebinds_triggers(self, scheduler, trigger_backend):
        scheduler.register("job", "0 * * * *", RecordingHandler())
        scheduler.start()
        await trigger_backend.fire("job")
        scheduler.stop()

        scheduler.start()
        await trigger_backend.fire("job")

        assert scheduler.get_job("job").run_count == 2

    async def test_stop_does_not_interrupt_in_flight_run(self, scheduler, trigger_backend):
        handler = RecordingHandler()
        release = handler.block()
        scheduler.register("job", "0 * * * *", handler)
        scheduler.start()

        firing = asyncio.create_task(trigger_backend.fire("job"))
        await handler.started.wait()
        scheduler.stop()

        assert scheduler.get_job("job").is_running is True

        release.set()
        await firing

        job = scheduler.get_job("job")
        assert job.is_running is False
        assert job.run_count == 1

    async def test_overlapping_firings_are_dropped(self, scheduler, trigger_backend):
        handler = RecordingHandler()
        release = handler.block()
        scheduler.register("job", "* * * * *", handler)
        scheduler.start()

        first = asyncio.create_task(trigger_backend.fire("job"))
        await handler.started.wait()
        await trigger_backend.fire("job")
        release.set()
        await first

        assert len(handler.calls) == 1
        assert scheduler.get_job("job").run_count == 1


class TestSetEnabled:
    """Test set_enabled()"""

    def test_unknown_job_raises(self, scheduler):
        with pytest.raises(JobNotFoundError):
            scheduler.set_enabled("missing", True)

    async def test_disable_stops_triggering_and_enable_restores(self, scheduler, trigger_backend):
        handler = RecordingHandler(error=RuntimeError("first run failed"))
        scheduler.register("job", "0 * * * *", handler)
        scheduler.start()
        await trigger_backend.fire("job")

        scheduler.set_enabled("job", False)
        assert await trigger_backend.fire("job") is False
        assert len(handler.calls) == 1

        scheduler.set_enabled("job", True)
        job = scheduler.get_job("job")
        assert job.last_error == "first run failed"
        assert job.run_count == 0

        handler.error = None
        assert await trigger_backend.fire("job") is True
        assert len(handler.calls) == 2
        assert job.run_count == 1

    async def test_firing_for_disabled_job_is_ignored(self, scheduler, trigger_backend):
        """Even if a backend delivers a firing, a disabled job does not run"""
        handler = RecordingHandler()
        scheduler.register("job", "0 * * * *", handler)
        scheduler.start()

        scheduler.set_enabled("job", False)
        await trigger_backend.handles["job"].callback()

        assert handler.calls == []

    def test_set_enabled_before_start_only_updates_flag(self, scheduler, trigger_backend):
        scheduler.register("job", "0 * * * *", RecordingHandler(), {"enabled": False})

        scheduler.set_enabled("job", True)

        assert scheduler.get_job("job").options.enabled is True
        assert trigger_backend.handles == {}

    async def test_enabling_job_disabled_at_start_binds_trigger(self, scheduler, trigger_backend):
        handler = RecordingHandler()
        scheduler.register("job", "0 * * * *", handler, {"enabled": False})
        scheduler.start()

        scheduler.set_enabled("job", True)

        assert scheduler.get_job("job").task is trigger_backend.handles["job"]
        assert await trigger_backend.fire("job") is True
        assert len(handler.calls) == 1

    async def test_set_enabled_does_not_touch_running_flag(self, scheduler):
        handler = RecordingHandler()
        release = handler.block()
        scheduler.register("job", "0 * * * *", handler)

        task = asyncio.create_task(scheduler.run_job("job"))
        await handler.started.wait()
        scheduler.set_enabled("job", False)

        assert scheduler.get_job("job").is_running is True

        release.set()
        await task
        assert scheduler.get_job("job").run_count == 1


class TestGetStatus:
    """Test status snapshots"""

    async def test_status_reports_every_job(self, scheduler, trigger_backend):
        scheduler.register("hourly", "0 * * * *", RecordingHandler())
        scheduler.register("nightly", "0 3 * * *", RecordingHandler(), {"enabled": False})
        scheduler.start()
        await trigger_backend.fire("hourly")

        status = {s.name: s for s in scheduler.get_status()}

        assert status["hourly"] == JobStatus(
            name="hourly",
            schedule="0 * * * *",
            enabled=True,
            is_running=False,
            last_run=NOW,
            last_error=None,
            run_count=1,
            next_run=datetime(2026, 1, 1, 13, 0, 0),
        )
        assert status["nightly"].enabled is False
        assert status["nightly"].next_run is None

    def test_status_dict_uses_reporting_field_names(self, scheduler):
        scheduler.register("hourly", "0 * * * *", RecordingHandler())

        status_dict = scheduler.get_status()[0].to_dict()

        assert status_dict == {
            "name": "hourly",
            "schedule": "0 * * * *",
            "enabled": True,
            "isRunning": False,
            "lastRun": None,
            "lastError": None,
            "runCount": 0,
            "nextRun": None,
        }

    async def test_status_shows_running_job(self, scheduler):
        handler = RecordingHandler()
        release = handler.block()
        scheduler.register("job", "0 * * * *", handler)

        task = asyncio.create_task(scheduler.run_job("job"))
        await handler.started.wait()

        assert scheduler.get_status()[0].is_running is True

        release.set()
        await task
        assert scheduler.get_status()[0].is_running is False
