# Job scheduling
from mediasync.scheduler.scheduler import Job, JobOptions, JobScheduler, JobStatus
from mediasync.scheduler.triggers import APSchedulerBackend, TriggerBackend, TriggerHandle

__all__ = [
    "Job",
    "JobOptions",
    "JobScheduler",
    "JobStatus",
    "APSchedulerBackend",
    "TriggerBackend",
    "TriggerHandle",
]
