"""
Job Scheduler

Registry of named, CRON-triggered background jobs (collection refresh, media
server sync, token refresh, cache cleanup).

Guarantees:
- at most one registered job per name
- at most one in-flight run per job: a firing that arrives while the job is
  still running is skipped (not queued, never compensated)
- a failing job only records last_error; every scheduled firing runs inside
  its own error boundary so it can never take the scheduler down
- stop() cancels future firings but lets in-flight runs finish
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Awaitable, Callable

from mediasync.core.exceptions import JobNotFoundError
from mediasync.scheduler.cron import CronSchedule
from mediasync.scheduler.triggers import APSchedulerBackend, TriggerBackend, TriggerHandle

logger = logging.getLogger(__name__)

JobHandler = Callable[[Any], Awaitable[Any]]


@dataclass
class JobOptions:
    """Registration options for a job."""
    run_on_start: bool = False
    enabled: bool = True


@dataclass
class Job:
    """
    A registered unit of scheduled work.

    Runtime fields are only mutated by JobScheduler.
    """
    name: str
    schedule: str
    handler: JobHandler
    options: JobOptions
    task: TriggerHandle | None = None
    last_run: datetime | None = None
    last_error: str | None = None
    run_count: int = 0
    _run_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def cron(self) -> CronSchedule:
        return CronSchedule(self.schedule)


@dataclass(frozen=True)
class JobStatus:
    """Read-only snapshot of a job for status reporting."""
    name: str
    schedule: str
    enabled: bool
    is_running: bool
    last_run: datetime | None
    last_error: str | None
    run_count: int
    next_run: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "schedule": self.schedule,
            "enabled": self.enabled,
            "isRunning": self.is_running,
            "lastRun": self.last_run.isoformat() if self.last_run else None,
            "lastError": self.last_error,
            "runCount": self.run_count,
            "nextRun": self.next_run.isoformat() if self.next_run else None,
        }


class JobScheduler:
    """
    CRON job scheduler with skip-if-busy execution.

    One instance is created at process start and shared through the
    application context. Handlers receive that context as their only
    argument.
    """

    def __init__(
        self,
        context: Any = None,
        backend: TriggerBackend | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize the scheduler.

        Args:
            context: Object passed to every job handler
            backend: Trigger source (default: APScheduler)
            clock: Returns the current naive UTC time
        """
        self.context = context
        self._backend = backend or APSchedulerBackend()
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._started = False
        self._active: set[asyncio.Task] = set()

    @property
    def is_started(self) -> bool:
        return self._started

    def register(
        self,
        name: str,
        schedule: str,
        handler: JobHandler,
        options: JobOptions | dict[str, Any] | None = None,
    ) -> None:
        """
        Register a job. Registering an existing name is a logged no-op.

        Args:
            name: Unique job name
            schedule: 5-field CRON expression
            handler: Async function called with the application context
            options: run_on_start / enabled overrides

        Raises:
            InvalidScheduleError: If the CRON expression is invalid
        """
        if name in self._jobs:
            logger.warning(f"Job {name} already registered, skipping")
            return

        CronSchedule.parse(schedule)

        if isinstance(options, JobOptions):
            job_options = replace(options)
        else:
            job_options = JobOptions(**{**asdict(JobOptions()), **(options or {})})

        self._jobs[name] = Job(name=name, schedule=schedule, handler=handler, options=job_options)
        logger.info(f"Registered job: {name} ({schedule})")

    def get_job(self, name: str) -> Job:
        job = self._jobs.get(name)
        if job is None:
            raise JobNotFoundError(name)
        return job

    def start(self) -> None:
        """
        Bind every enabled job to its CRON trigger.

        Must be called from inside the running event loop. Jobs flagged
        run_on_start also get one immediate background run.
        """
        if self._started:
            return

        self._started = True
        logger.info("Starting job scheduler")

        for name, job in self._jobs.items():
            if not job.options.enabled:
                logger.info(f"Job {name} is disabled, skipping")
                continue

            try:
                self._bind(job)
            except Exception as e:
                job.last_error = f"Failed to schedule: {e}"
                logger.error(
                    f"Could not schedule job {name}: {e}",
                    extra={"job_name": name},
                    exc_info=True,
                )
                continue

            if job.options.run_on_start:
                self._spawn(name)

        self._backend.start()

    def stop(self) -> None:
        """
        Remove all triggers. Registry entries and run history are kept and
        in-flight runs are left to finish.
        """
        logger.info("Stopping job scheduler")

        for job in self._jobs.values():
            if job.task:
                job.task.remove()
                job.task = None

        self._backend.shutdown()
        self._started = False

    async def run_job(self, name: str) -> Any:
        """
        Run a job now.

        Args:
            name: Job name

        Returns:
            The handler's result, or None if the job was already running

        Raises:
            JobNotFoundError: If no job has this name
            Exception: Whatever the handler raised (recorded in last_error)
        """
        job = self.get_job(name)

        if job.is_running:
            logger.warning(f"Job {name} is already running, skipping")
            return None

        # An uncontended asyncio.Lock is acquired without yielding, so no
        # other firing can slip in between the check above and this point.
        async with job._run_lock:
            start_time = time.monotonic()
            logger.info(f"Running job: {name}")

            try:
                result = await job.handler(self.context)
            except Exception as e:
                job.last_error = str(e) or e.__class__.__name__
                logger.error(
                    f"Job {name} failed: {job.last_error}",
                    extra={"job_name": name},
                    exc_info=True,
                )
                raise

            job.last_run = self._clock()
            job.last_error = None
            job.run_count += 1

            duration = time.monotonic() - start_time
            logger.info(
                f"Job {name} completed in {duration:.2f}s",
                extra={"job_name": name, "duration_seconds": duration},
            )
            return result

    def get_status(self) -> list[JobStatus]:
        """Snapshot of every registered job."""
        now = self._clock()
        return [
            JobStatus(
                name=job.name,
                schedule=job.schedule,
                enabled=job.options.enabled,
                is_running=job.is_running,
                last_run=job.last_run,
                last_error=job.last_error,
                run_count=job.run_count,
                next_run=(
                    job.cron.next_after(now)
                    if job.task and job.options.enabled
                    else None
                ),
            )
            for job in self._jobs.values()
        ]

    def set_enabled(self, name: str, enabled: bool) -> None:
        """
        Enable or disable a job without touching its run history.

        Raises:
            JobNotFoundError: If no job has this name
        """
        job = self.get_job(name)
        job.options.enabled = enabled

        if job.task:
            if enabled:
                job.task.resume()
            else:
                job.task.pause()
        elif enabled and self._started:
            # Disabled at start(), so it never got a trigger
            self._bind(job)

        logger.info(f"Job {name} {'enabled' if enabled else 'disabled'}")

    async def wait_for_active_runs(self) -> None:
        """Wait for runs started by triggers or run_on_start to finish."""
        current = asyncio.current_task()
        pending = [task for task in self._active if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _bind(self, job: Job) -> None:
        name = job.name

        async def fire() -> None:
            await self._fire(name)

        job.task = self._backend.add(name, job.cron, fire)

    def _spawn(self, name: str) -> None:
        task = asyncio.get_running_loop().create_task(self._fire(name))
        self._active.add(task)
        task.add_done_callback(self._active.discard)

    async def _fire(self, name: str) -> None:
        """Error boundary around a scheduled run."""
        task = asyncio.current_task()
        if task is not None:
            self._active.add(task)
            task.add_done_callback(self._active.discard)

        job = self._jobs.get(name)
        if job is None or not job.options.enabled:
            logger.debug(f"Ignoring trigger for disabled or unknown job {name}")
            return

        try:
            await self.run_job(name)
        except Exception:
            # Already recorded in last_error and logged by run_job
            pass
