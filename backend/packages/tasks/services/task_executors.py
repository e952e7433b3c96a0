import asyncio
import random
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from common.core.config import settings
from common.core.telemetry import trace_span, get_logger
from packages.tasks.models.domain.task import Task, TaskErrorCode
from packages.tasks.services.task_service import TaskService
from packages.workspaces.models.domain.workspace import Workspace

logger = get_logger(__name__)


class TaskExecutorInterface(ABC):
    """Runs a task inside a ready workspace.

    Implementations report back through the task service (logs, artifacts,
    terminal status). Raising marks the task FAILED with SCRIPT_ERROR.
    """

    @abstractmethod
    async def execute(self, task: Task, workspace: Workspace) -> None:
        pass


class SimulatedTaskExecutor(TaskExecutorInterface):
    """Stand-in executor that sleeps and succeeds or fails at random.

    Retried tasks always succeed.
    """

    def __init__(
        self,
        task_service: TaskService,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.task_service = task_service
        self._sleep = sleep
        self._rng = rng or random.Random()

    @trace_span
    async def execute(self, task: Task, workspace: Workspace) -> None:
        await self.task_service.append_task_logs(
            task.id, f"Starting task execution: {task.display_name}"
        )
        logger.info(f"Executing task {task.id} in workspace {workspace.id}")

        duration = self._rng.uniform(
            settings.simulated_execution_min_seconds,
            settings.simulated_execution_max_seconds,
        )
        await self._sleep(duration)

        succeeded = self._rng.random() < 0.5 or task.retry_count > 0
        if succeeded:
            await self.task_service.append_task_logs(
                task.id,
                f"Task execution completed in workspace {workspace.name} after {duration:.1f}s",
            )
            await self.task_service.add_artifact(
                task.id, f"/tmp/task-{task.id}-output.txt"
            )
            await self.task_service.complete_task(task.id)
        else:
            await self.task_service.fail_task(
                task.id, "Simulated execution failure", TaskErrorCode.SIMULATED_ERROR
            )
