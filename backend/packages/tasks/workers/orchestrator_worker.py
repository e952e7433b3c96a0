from typing import Optional

from common.core.config import settings
from common.core.constants import OrchestratorMode
from common.core.telemetry import get_logger
from common.db.session import init_db
from common.workers.scheduler import FixedDelayScheduler
from packages.tasks.services.background_task_processor import BackgroundTaskProcessor
from packages.tasks.services.task_service import TaskService
from packages.tasks.services.workspace_task_execution_service import (
    WorkspaceTaskExecutionService,
)
from packages.workspaces.services.failed_workspace_cleanup_service import (
    FailedWorkspaceCleanupService,
)
from packages.workspaces.services.workspace_service import WorkspaceService

logger = get_logger(__name__)


class OrchestratorWorker:
    """
    Runs the orchestration loops on a fixed-delay scheduler.

    JOBS mode runs the job dispatch and job monitoring cycles. WORKSPACES
    mode runs the workspace execution sweeps and the failed-workspace
    cleanup sweep. ALL runs both sets; tasks bound to a session or
    workspace go to the sweeps, the rest to job dispatch.
    """

    def __init__(
        self,
        mode: OrchestratorMode = OrchestratorMode.ALL,
        scheduler: Optional[FixedDelayScheduler] = None,
        task_service: Optional[TaskService] = None,
        workspace_service: Optional[WorkspaceService] = None,
        create_schema: bool = True,
    ):
        self.mode = OrchestratorMode(mode)
        self.scheduler = scheduler or FixedDelayScheduler()
        self.task_service = task_service or TaskService()
        self.workspace_service = workspace_service or WorkspaceService()
        self.create_schema = create_schema
        self.running = False

        self.processor: Optional[BackgroundTaskProcessor] = None
        self.execution_service: Optional[WorkspaceTaskExecutionService] = None
        self.cleanup_service: Optional[FailedWorkspaceCleanupService] = None

        if self.mode in (OrchestratorMode.JOBS, OrchestratorMode.ALL):
            self._register_job_loops()
        if self.mode in (OrchestratorMode.WORKSPACES, OrchestratorMode.ALL):
            self._register_workspace_loops()

    def _register_job_loops(self):
        self.processor = BackgroundTaskProcessor(self.task_service)
        self.scheduler.add_job(
            "process_next_task",
            self.processor.process_next_task,
            settings.task_processing_delay_seconds,
        )
        self.scheduler.add_job(
            "monitor_job_status",
            self.processor.monitor_job_status,
            settings.task_monitoring_delay_seconds,
        )

    def _register_workspace_loops(self):
        self.execution_service = WorkspaceTaskExecutionService(
            self.task_service, self.workspace_service
        )
        self.cleanup_service = FailedWorkspaceCleanupService(self.workspace_service)

        self.scheduler.add_job(
            "process_pending_tasks",
            self.execution_service.process_pending_tasks,
            settings.pending_task_sweep_seconds,
        )
        self.scheduler.add_job(
            "monitor_running_tasks",
            self.execution_service.monitor_running_tasks,
            settings.running_task_sweep_seconds,
        )
        self.scheduler.add_job(
            "retry_failed_tasks",
            self.execution_service.retry_failed_tasks,
            settings.failed_task_retry_sweep_seconds,
        )
        self.scheduler.add_job(
            "cleanup_failed_workspaces",
            self.cleanup_service.cleanup_failed_workspaces,
            settings.failed_workspace_sweep_minutes * 60,
            initial_delay_seconds=settings.failed_workspace_sweep_minutes * 60,
        )

    async def setup(self):
        if self.create_schema:
            await init_db()

    async def start(self):
        """Start all registered loops and run until stopped."""
        if self.running:
            logger.warning("Orchestrator worker is already running")
            return

        await self.setup()
        self.running = True
        logger.info(
            f"Orchestrator worker starting in {self.mode.value} mode with jobs: "
            f"{[job.name for job in self.scheduler.jobs]}"
        )
        self.scheduler.start()
        await self.scheduler.wait()

    async def stop(self):
        self.running = False
        await self.scheduler.stop()
        if self.cleanup_service is not None:
            await self.cleanup_service.wait_for_pending()
        self.task_service.job_creator.shutdown(wait=False)
        logger.info("Orchestrator worker stopped")
