"""
Task execution through session workspaces.

A task is bound to its session's workspace, the workspace is brought to
RUNNING (start + bounded wait), and only then does the task go IN_PROGRESS
and get handed to the execution delegate. Three sweeps keep the queue
moving: dispatch PENDING tasks, time out long-running ones, and retry
FAILED ones that still have retry budget. The sweeps only see tasks bound
to a session or workspace; job-backed tasks belong to the background
task processor.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

from common.concurrency.single_flight import SingleFlightGuard
from common.core.clock import as_utc, utc_now
from common.core.config import settings
from common.core.exceptions import (
    NotFoundError,
    ProcessingError,
    ProvisioningError,
    WorkspaceNotReadyError,
)
from common.core.telemetry import trace_span, get_logger
from packages.tasks.models.domain.task import (
    Task,
    TaskErrorCode,
    TaskExecutionInfo,
    TaskExecutionStats,
    TaskStatus,
)
from packages.tasks.services.task_executors import (
    SimulatedTaskExecutor,
    TaskExecutorInterface,
)
from packages.tasks.services.task_service import TaskService
from packages.workspaces.models.domain.workspace import Workspace, WorkspaceStatus
from packages.workspaces.services.readiness import WorkspaceReadinessWaiter
from packages.workspaces.services.workspace_service import WorkspaceService

logger = get_logger(__name__)


class ScriptExecutionError(ProcessingError):
    """The execution delegate raised. The task is already marked FAILED."""

    pass


class WorkspaceTaskExecutionService:
    def __init__(
        self,
        task_service: Optional[TaskService] = None,
        workspace_service: Optional[WorkspaceService] = None,
        executor: Optional[TaskExecutorInterface] = None,
        readiness_waiter: Optional[WorkspaceReadinessWaiter] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.task_service = task_service or TaskService()
        self.workspace_service = workspace_service or WorkspaceService()
        self.executor = executor or SimulatedTaskExecutor(self.task_service)
        self.readiness_waiter = readiness_waiter or WorkspaceReadinessWaiter(
            self.workspace_service.refresh_workspace
        )
        self.clock = clock
        self.running_timeout = timedelta(minutes=settings.task_running_timeout_minutes)

        self.pending_guard = SingleFlightGuard("process_pending_tasks")
        self.running_guard = SingleFlightGuard("monitor_running_tasks")
        self.retry_guard = SingleFlightGuard("retry_failed_tasks")

    @trace_span
    async def execute_task_in_workspace(self, task_id: int) -> Task:
        """
        Run one task in its session workspace.

        Readiness failures end the task as WORKSPACE_NOT_READY, delegate
        failures as SCRIPT_ERROR and anything else as EXECUTION_ERROR. The
        latter two are re-raised after the task is marked FAILED.
        """
        task = await self.task_service.require_task(task_id)
        if task.status != TaskStatus.PENDING:
            logger.warning(f"Task {task_id} is {task.status}, not executing it")
            return task

        try:
            workspace = await self._assign_workspace(task)

            try:
                workspace = await self._prepare_workspace(workspace)
            except (WorkspaceNotReadyError, NotFoundError) as e:
                return await self.task_service.fail_task(
                    task.id,
                    f"Workspace not ready: {e}",
                    TaskErrorCode.WORKSPACE_NOT_READY,
                )

            if workspace.status != WorkspaceStatus.RUNNING:
                return await self.task_service.fail_task(
                    task.id,
                    f"Workspace not ready: {workspace.status}",
                    TaskErrorCode.WORKSPACE_NOT_READY,
                )

            task = await self.task_service.start_task(task.id)
            await self._execute_task_script(task, workspace)
            return await self.task_service.require_task(task.id)

        except ScriptExecutionError:
            raise
        except Exception as e:
            logger.error(f"Task {task_id} execution failed: {e}", exc_info=True)
            await self._fail_quietly(
                task_id, f"Task execution failed: {e}", TaskErrorCode.EXECUTION_ERROR
            )
            raise

    async def _assign_workspace(self, task: Task) -> Workspace:
        if task.workspace_id is not None:
            workspace = await self.workspace_service.get_workspace(task.workspace_id)
            if workspace is None:
                raise NotFoundError(f"Workspace not found: {task.workspace_id}")
            return workspace

        if task.session_id is None:
            raise ProcessingError(f"Task {task.id} has no session")

        workspaces = await self.workspace_service.get_workspaces_by_session(
            task.session_id
        )
        if not workspaces:
            raise ProcessingError(
                f"No workspace available for session: {task.session_id}"
            )

        workspace = workspaces[0]
        await self.task_service.assign_workspace(task.id, workspace.id)
        return workspace

    async def _prepare_workspace(self, workspace: Workspace) -> Workspace:
        """Bring the workspace to RUNNING or raise WorkspaceNotReadyError."""
        if workspace.status == WorkspaceStatus.RUNNING:
            return workspace

        if workspace.status in (WorkspaceStatus.STOPPED, WorkspaceStatus.PENDING):
            try:
                await self.workspace_service.start_workspace(workspace.id)
            except ProvisioningError as e:
                raise WorkspaceNotReadyError(str(e), status=workspace.status.value)
            return await self.readiness_waiter.wait_until_ready(workspace.id)

        if workspace.status == WorkspaceStatus.STARTING:
            return await self.readiness_waiter.wait_until_ready(workspace.id)

        raise WorkspaceNotReadyError(
            f"Workspace not available for task execution: {workspace.status}",
            status=workspace.status.value,
        )

    async def _execute_task_script(self, task: Task, workspace: Workspace):
        try:
            await self.executor.execute(task, workspace)
        except Exception as e:
            logger.error(f"Script execution for task {task.id} failed: {e}", exc_info=True)
            await self._fail_quietly(
                task.id, f"Script execution failed: {e}", TaskErrorCode.SCRIPT_ERROR
            )
            raise ScriptExecutionError(str(e)) from e

    async def _fail_quietly(self, task_id: int, message: str, code: TaskErrorCode):
        try:
            await self.task_service.fail_task(task_id, message, code)
        except Exception as e:
            logger.error(f"Could not mark task {task_id} as failed: {e}")

    @trace_span
    async def process_pending_tasks(self) -> int:
        """Dispatch every PENDING task. Returns how many were attempted."""
        with self.pending_guard.attempt() as acquired:
            if not acquired:
                return 0

            tasks = await self.task_service.get_tasks_by_status(
                TaskStatus.PENDING, in_workspace=True
            )
            if tasks:
                logger.info(f"Processing {len(tasks)} pending task(s)")

            for task in tasks:
                try:
                    await self.execute_task_in_workspace(task.id)
                except Exception as e:
                    logger.error(f"Error processing pending task {task.id}: {e}")
            return len(tasks)

    @trace_span
    async def monitor_running_tasks(self) -> int:
        """Fail IN_PROGRESS tasks running longer than the timeout. Returns the count."""
        with self.running_guard.attempt() as acquired:
            if not acquired:
                return 0

            tasks = await self.task_service.get_tasks_by_status(
                TaskStatus.IN_PROGRESS, in_workspace=True
            )
            now = self.clock()
            timed_out = 0

            for task in tasks:
                try:
                    started_at = as_utc(task.started_at)
                    if started_at is None:
                        continue
                    if now - started_at > self.running_timeout:
                        minutes = int(self.running_timeout.total_seconds() // 60)
                        await self.task_service.fail_task(
                            task.id,
                            f"Task timeout after {minutes} minutes",
                            TaskErrorCode.TIMEOUT,
                        )
                        timed_out += 1
                except Exception as e:
                    logger.error(f"Error monitoring running task {task.id}: {e}")
            return timed_out

    @trace_span
    async def retry_failed_tasks(self) -> int:
        """Requeue FAILED tasks that still have retries left. Returns the count."""
        with self.retry_guard.attempt() as acquired:
            if not acquired:
                return 0

            tasks = await self.task_service.get_tasks_by_status(
                TaskStatus.FAILED, in_workspace=True
            )
            retried = 0

            for task in tasks:
                if not task.has_retries_left:
                    continue
                try:
                    await self.task_service.retry_task(task.id)
                    retried += 1
                    logger.info(
                        f"Retrying task {task.id} (attempt {task.retry_count + 1}/{task.max_retries})"
                    )
                except Exception as e:
                    logger.error(f"Error retrying task {task.id}: {e}")
            return retried

    @trace_span
    async def get_task_execution_stats(self) -> TaskExecutionStats:
        counts = await self.task_service.task_repo.count_by_status()
        completed = counts[TaskStatus.COMPLETED]
        failed = counts[TaskStatus.FAILED]
        finished = completed + failed
        success_rate = (completed / finished * 100) if finished else 0.0

        return TaskExecutionStats(
            total=sum(counts.values()),
            pending=counts[TaskStatus.PENDING],
            in_progress=counts[TaskStatus.IN_PROGRESS],
            completed=completed,
            failed=failed,
            cancelled=counts[TaskStatus.CANCELLED],
            waiting_for_input=counts[TaskStatus.WAITING_FOR_INPUT],
            success_rate=f"{success_rate:.1f}%",
        )

    @trace_span
    async def get_task_execution_info(self, task_id: int) -> TaskExecutionInfo:
        task = await self.task_service.require_task(task_id)
        started_at = as_utc(task.started_at)
        completed_at = as_utc(task.completed_at)

        duration = None
        if started_at is not None:
            end = completed_at or self.clock()
            duration = (end - started_at).total_seconds()

        return TaskExecutionInfo(
            task_id=task.id,
            status=task.status,
            workspace_id=task.workspace_id,
            job_name=task.job_name,
            started_at=task.started_at,
            completed_at=task.completed_at,
            duration_seconds=duration,
            retry_count=task.retry_count,
            max_retries=task.max_retries,
            error_code=task.error_code,
            error_message=task.error_message,
            artifacts=task.artifacts,
        )


def get_workspace_task_execution_service() -> WorkspaceTaskExecutionService:
    return WorkspaceTaskExecutionService()
