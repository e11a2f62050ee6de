"""Background jobs: state machine, dispatch, workers and operator commands."""

from scoreline.jobs.admin import JobAdmin, JobPage
from scoreline.jobs.dispatcher import InMemoryJobDispatcher, JobDispatcher
from scoreline.jobs.handlers import JOB_HANDLERS, HandlerContext, register_job_handler
from scoreline.jobs.state import Job, JobAction, JobStatus, Transition
from scoreline.jobs.worker import JobWorker, recover_stale_jobs, requeue_unfinished_jobs

__all__ = [
    "JOB_HANDLERS",
    "HandlerContext",
    "InMemoryJobDispatcher",
    "Job",
    "JobAction",
    "JobAdmin",
    "JobDispatcher",
    "JobPage",
    "JobStatus",
    "JobWorker",
    "Transition",
    "recover_stale_jobs",
    "register_job_handler",
    "requeue_unfinished_jobs",
]
