"""
Dispatch and monitoring cycles for job-backed tasks.

Only tasks bound to neither a session nor a workspace are handled here;
the rest belong to the workspace execution sweeps.

process_next_task starts at most one task at a time by creating its
Kubernetes job. monitor_job_status reconciles the jobs of IN_PROGRESS
tasks back into task state. It fails tasks whose pods stay in
CrashLoopBackOff for longer than the configured timeout, and tasks whose
job never shows up (background creation failed or the job was removed).
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional, Set

from common.concurrency.single_flight import SingleFlightGuard
from common.core.clock import utc_now
from common.core.config import settings
from common.core.telemetry import get_logger, log_span_event, trace_span
from common.execution.job_status import JobStatus
from common.execution.k8s_job_client import KubernetesJobClient
from common.providers.tracking.interface import DwellTrackerInterface
from common.providers.tracking.memory_tracking import MemoryDwellTracker
from packages.tasks.models.domain.task import Task, TaskErrorCode, TaskStatus
from packages.tasks.services.task_service import TaskService

logger = get_logger(__name__)


class BackgroundTaskProcessor:
    def __init__(
        self,
        task_service: Optional[TaskService] = None,
        job_client: Optional[KubernetesJobClient] = None,
        crash_loop_tracker: Optional[DwellTrackerInterface] = None,
        crash_loop_timeout_seconds: Optional[float] = None,
        missing_job_tracker: Optional[DwellTrackerInterface] = None,
        missing_job_timeout_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.task_service = task_service or TaskService()
        self.job_client = job_client or self.task_service.job_client
        self.crash_loop_tracker = crash_loop_tracker or MemoryDwellTracker()
        self.crash_loop_timeout = timedelta(
            seconds=crash_loop_timeout_seconds
            if crash_loop_timeout_seconds is not None
            else settings.crash_loop_backoff_timeout_seconds
        )
        self.missing_job_tracker = missing_job_tracker or MemoryDwellTracker()
        self.missing_job_timeout = timedelta(
            seconds=missing_job_timeout_seconds
            if missing_job_timeout_seconds is not None
            else settings.missing_job_timeout_seconds
        )
        self.clock = clock

        self.processing_guard = SingleFlightGuard("process_next_task")
        self.monitoring_guard = SingleFlightGuard("monitor_job_status")

    @trace_span
    async def process_next_task(self) -> Optional[Task]:
        """
        Start the next PENDING task unless a task is already IN_PROGRESS.

        Returns:
            The dispatched task, or None if nothing was dispatched
        """
        with self.processing_guard.attempt() as acquired:
            if not acquired:
                return None

            in_progress = await self.task_service.get_tasks_by_status(
                TaskStatus.IN_PROGRESS, in_workspace=False
            )
            if in_progress:
                logger.debug(
                    f"Task {in_progress[0].id} is still in progress, not dispatching"
                )
                return None

            task = None
            try:
                task = await self.task_service.get_next_task_from_queue(in_workspace=False)
                if task is None:
                    return None

                image = task.image or settings.kubernetes_default_image
                namespace = task.namespace or settings.kubernetes_default_namespace
                logger.info(f"Dispatching task {task.id} ({task.display_name})")
                return await self.task_service.create_job(task, image, namespace)
            except Exception as e:
                logger.error(f"Error processing task: {e}", exc_info=True)
                if task is not None:
                    await self._fail_dispatch(task, e)
                return None

    async def _fail_dispatch(self, task: Task, error: Exception):
        try:
            await self.task_service.fail_task(
                task.id, f"Task processing failed: {error}", TaskErrorCode.DISPATCH_ERROR
            )
        except Exception as e:
            logger.error(f"Could not mark task {task.id} as failed: {e}")

    @trace_span
    async def monitor_job_status(self) -> None:
        """Reconcile job status of every IN_PROGRESS task into the task."""
        with self.monitoring_guard.attempt() as acquired:
            if not acquired:
                return

            tasks = await self.task_service.get_tasks_by_status(
                TaskStatus.IN_PROGRESS, in_workspace=False
            )
            if not tasks:
                self.crash_loop_tracker.clear()
                self.missing_job_tracker.clear()
                return

            active_jobs: Set[str] = set()
            for task in tasks:
                job_name = task.job_name or task.pod_name
                if not job_name:
                    continue
                active_jobs.add(job_name)

                try:
                    await self._reconcile_task(task, job_name)
                except Exception as e:
                    logger.error(f"Error monitoring task {task.id}: {e}", exc_info=True)

            dropped = self.crash_loop_tracker.retain_only(active_jobs)
            if dropped:
                logger.info(f"Stopped crash-loop tracking for finished jobs: {dropped}")
            self.missing_job_tracker.retain_only(active_jobs)

    async def _reconcile_task(self, task: Task, job_name: str):
        namespace = task.namespace or settings.kubernetes_default_namespace
        status = await asyncio.to_thread(
            self.job_client.get_job_status, namespace, job_name
        )

        if status == JobStatus.NOT_FOUND:
            await self._handle_missing_job(task, job_name)
            return
        self.missing_job_tracker.stop(job_name)

        if status == JobStatus.CRASH_LOOP_BACKOFF:
            await self._handle_crash_loop(task, namespace, job_name)
            return

        if status == JobStatus.FAILED:
            self.crash_loop_tracker.stop(job_name)
            await self.task_service.fail_task(
                task.id,
                f"Task FAILED: Job {job_name} completed with status {status}",
                TaskErrorCode.JOB_FAILED,
            )
            return

        if status in (JobStatus.SUCCEEDED, JobStatus.COMPLETED):
            self.crash_loop_tracker.stop(job_name)
            await self.task_service.complete_task(
                task.id,
                message=f"Task COMPLETED: Job {job_name} completed with status {status}",
            )
            return

        if self.crash_loop_tracker.stop(job_name):
            logger.info(f"Job {job_name} recovered from CrashLoopBackOff ({status})")

    async def _handle_crash_loop(self, task: Task, namespace: str, job_name: str):
        now = self.clock()
        first_seen = self.crash_loop_tracker.start(job_name, now)
        elapsed = now - first_seen

        if elapsed < self.crash_loop_timeout:
            logger.warning(
                f"Job {job_name} in CrashLoopBackOff for {int(elapsed.total_seconds())}s"
            )
            return

        seconds = int(elapsed.total_seconds())
        log_span_event(
            f"Crash-loop timeout for job {job_name}",
            {"task_id": task.id, "job_name": job_name, "elapsed_seconds": seconds},
        )
        await self.task_service.fail_task(
            task.id,
            f"Task failed: Job {job_name} had pods in CrashLoopBackOff state for too long ({seconds}s)",
            TaskErrorCode.CRASH_LOOP_TIMEOUT,
        )
        self.crash_loop_tracker.stop(job_name)

        deleted = await asyncio.to_thread(self.job_client.delete_job, namespace, job_name)
        if not deleted:
            logger.warning(f"Could not delete crash-looping job {job_name}")

    async def _handle_missing_job(self, task: Task, job_name: str):
        now = self.clock()
        elapsed = now - self.missing_job_tracker.start(job_name, now)

        if elapsed < self.missing_job_timeout:
            logger.info(f"Job {job_name} not found yet ({int(elapsed.total_seconds())}s)")
            return

        seconds = int(elapsed.total_seconds())
        await self.task_service.fail_task(
            task.id,
            f"Task failed: Job {job_name} was not found for {seconds}s",
            TaskErrorCode.DISPATCH_ERROR,
        )
        self.missing_job_tracker.stop(job_name)


def get_background_task_processor() -> BackgroundTaskProcessor:
    return BackgroundTaskProcessor()
