"""APScheduler-based background job service."""

from __future__ import annotations

import uuid
from typing import Any, Callable, Coroutine, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from chatsync.log import get_logger
from chatsync.services.base import Service

logger = get_logger(__name__)


class SchedulerService(Service):
    """Runs recurring coroutines on the event loop."""

    def __init__(self, timezone: str = "UTC"):
        self._timezone = timezone
        self._scheduler = AsyncIOScheduler(timezone=timezone)

    @property
    def service_name(self) -> str:
        return "scheduler"

    async def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("scheduler_started", timezone=self._timezone)

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")

    async def health_check(self) -> bool:
        return self._scheduler.running

    def add_interval_job(
        self,
        callback: Callable[..., Coroutine[Any, Any, None]],
        seconds: float,
        job_id: Optional[str] = None,
        **kwargs: Any,
    ) -> str:
        """Run ``callback`` every ``seconds``. A slow run is never overlapped by the next one."""
        job_id = job_id or uuid.uuid4().hex[:12]
        self._scheduler.add_job(
            callback,
            IntervalTrigger(seconds=seconds),
            id=job_id,
            kwargs=kwargs,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("interval_job_added", job_id=job_id, seconds=seconds)
        return job_id

    def remove_job(self, job_id: str) -> bool:
        """Remove a scheduled job. Returns True if found and removed."""
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.info("job_removed", job_id=job_id)
        return True

    def has_job(self, job_id: str) -> bool:
        return self._scheduler.get_job(job_id) is not None

    def list_jobs(self) -> list[dict[str, Any]]:
        """List all scheduled jobs."""
        return [
            {
                "id": job.id,
                "next_run_time": str(job.next_run_time) if getattr(job, "next_run_time", None) else None,
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]
