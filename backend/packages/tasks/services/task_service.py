import asyncio
from typing import List, Optional

from common.core.clock import utc_now
from common.core.config import settings
from common.core.exceptions import (
    InvalidStatusTransitionError,
    KubernetesError,
    NotFoundError,
    ValidationError,
)
from common.core.telemetry import trace_span, get_logger
from common.db.context import transactional
from common.db.scoped import transaction
from common.execution.k8s_job_client import KubernetesJobClient, get_job_client
from packages.tasks.models.domain.task import (
    Task,
    TaskCreateModel,
    TaskErrorCode,
    TaskStatus,
    TaskUpdateModel,
)
from packages.tasks.repositories.task_repository import TaskRepository
from packages.tasks.services.job_creator import JobCreator

logger = get_logger(__name__)


class TaskService:
    """Task state changes used by the schedulers and execution delegates."""

    def __init__(
        self,
        task_repo: Optional[TaskRepository] = None,
        job_client: Optional[KubernetesJobClient] = None,
        job_creator: Optional[JobCreator] = None,
    ):
        self.task_repo = task_repo or TaskRepository()
        self.job_client = job_client or get_job_client()
        self.job_creator = job_creator or JobCreator(self.job_client)

    @trace_span
    async def create_task(self, task_data: TaskCreateModel) -> Task:
        """Queue a new task in PENDING."""
        if task_data.max_retries is None:
            task_data.max_retries = settings.task_default_max_retries
        task = await self.task_repo.create(task_data)
        logger.info(f"Queued task {task.id}: {task.title}")
        return task

    @trace_span
    async def get_task(self, task_id: int) -> Optional[Task]:
        return await self.task_repo.get(task_id)

    async def require_task(self, task_id: int) -> Task:
        task = await self.task_repo.get(task_id)
        if not task:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    @trace_span
    async def get_tasks_by_status(
        self, status: TaskStatus, in_workspace: Optional[bool] = None
    ) -> List[Task]:
        return await self.task_repo.find_by_status(status, in_workspace=in_workspace)

    @trace_span
    async def get_next_task_from_queue(
        self, in_workspace: Optional[bool] = None
    ) -> Optional[Task]:
        return await self.task_repo.get_next_pending(in_workspace=in_workspace)

    async def _transition(
        self, task_id: int, target: TaskStatus, update: TaskUpdateModel, force: bool = False
    ) -> Task:
        task = await self.require_task(task_id)
        if not force and not task.status.can_transition_to(target):
            raise InvalidStatusTransitionError(
                f"Task {task_id} cannot move from {task.status} to {target}"
            )
        update.status = target.value
        updated = await self.task_repo.update(task_id, update)
        if not updated:
            raise NotFoundError(f"Task not found: {task_id}")
        logger.info(f"Task {task_id} status {task.status} -> {target}")
        return updated

    @trace_span
    async def update_task_status(
        self, task_id: int, status: TaskStatus, force: bool = False
    ) -> Task:
        """
        Change a task's status.

        force=True skips the state machine check; it is meant for manual
        overrides, where the latest write wins.
        """
        return await self._transition(task_id, status, TaskUpdateModel(), force=force)

    @trace_span
    async def append_task_logs(self, task_id: int, text: str) -> Task:
        task = await self.task_repo.append_logs(task_id, text)
        if not task:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    @trace_span
    async def assign_workspace(self, task_id: int, workspace_id: int) -> Task:
        task = await self.task_repo.update(
            task_id, TaskUpdateModel(workspace_id=workspace_id)
        )
        if not task:
            raise NotFoundError(f"Task not found: {task_id}")
        logger.info(f"Assigned workspace {workspace_id} to task {task_id}")
        return task

    @trace_span
    async def add_artifact(self, task_id: int, path: str) -> Task:
        task = await self.require_task(task_id)
        return await self.task_repo.update(
            task_id, TaskUpdateModel(artifacts=[*task.artifacts, path])
        )

    @trace_span
    @transactional
    async def start_task(self, task_id: int) -> Task:
        task = await self._transition(
            task_id,
            TaskStatus.IN_PROGRESS,
            TaskUpdateModel(started_at=utc_now(), error_message=None, error_code=None),
        )
        return await self.append_task_logs(task.id, "Task started")

    @trace_span
    @transactional
    async def complete_task(self, task_id: int, message: Optional[str] = None) -> Task:
        await self._transition(
            task_id, TaskStatus.COMPLETED, TaskUpdateModel(completed_at=utc_now())
        )
        return await self.append_task_logs(task_id, message or "Task completed")

    @trace_span
    @transactional
    async def fail_task(
        self, task_id: int, message: str, error_code: TaskErrorCode
    ) -> Task:
        """Mark the task FAILED with a stable error code and log the reason."""
        await self._transition(
            task_id,
            TaskStatus.FAILED,
            TaskUpdateModel(
                error_message=message,
                error_code=error_code,
                completed_at=utc_now(),
            ),
        )
        logger.warning(f"Task {task_id} failed [{error_code}]: {message}")
        return await self.append_task_logs(task_id, message)

    @trace_span
    async def retry_task(self, task_id: int) -> Task:
        """
        Put a FAILED task back in the queue and count the retry.

        The retry count is incremented here, when the retry is requested,
        not when the task failed.
        """
        task = await self.require_task(task_id)
        if task.status != TaskStatus.FAILED:
            raise InvalidStatusTransitionError(
                f"Only FAILED tasks can be retried, task {task_id} is {task.status}"
            )
        if not task.has_retries_left:
            raise ValidationError(
                f"Task {task_id} has no retries left ({task.retry_count}/{task.max_retries})"
            )

        if task.job_name:
            await self._delete_job_quietly(task)

        async with transaction():
            await self._transition(
                task_id,
                TaskStatus.PENDING,
                TaskUpdateModel(
                    error_message=None,
                    error_code=None,
                    job_name=None,
                    pod_name=None,
                    started_at=None,
                    completed_at=None,
                ),
            )
            updated = await self.task_repo.increment_retry_count(task_id)
            await self.append_task_logs(
                task_id,
                f"Task retry requested ({updated.retry_count}/{updated.max_retries})",
            )
        return await self.require_task(task_id)

    @trace_span
    async def cancel_task(self, task_id: int) -> Task:
        """Mark the task CANCELLED and delete its job if it has one."""
        task = await self._transition(task_id, TaskStatus.CANCELLED, TaskUpdateModel())
        if task.job_name:
            await self._delete_job_quietly(task)
        return await self.append_task_logs(task_id, "Task cancelled")

    async def _delete_job_quietly(self, task: Task) -> bool:
        namespace = task.namespace or settings.kubernetes_default_namespace
        deleted = await asyncio.to_thread(
            self.job_client.delete_job, namespace, task.job_name
        )
        if not deleted:
            logger.info(f"No job deleted for task {task.id} ({task.job_name})")
        return deleted

    @trace_span
    async def create_job(self, task: Task, image: str, namespace: str) -> Task:
        """
        Create the task's PVC and job, then mark it IN_PROGRESS.

        Sub-tasks reuse their parent's PVC; only tasks without an inherited
        PVC get one created.
        """
        pvc_name = None
        if task.parent_id is not None:
            parent = await self.task_repo.get(task.parent_id)
            if parent and parent.pvc_name:
                pvc_name = parent.pvc_name

        if pvc_name is None:
            pvc_name = JobCreator.default_pvc_name(task.id)
            await asyncio.to_thread(
                self.job_client.create_pvc, namespace, pvc_name, owner_task_id=task.id
            )

        submission = self.job_creator.submit_job(
            task, image, namespace, pvc_name=pvc_name
        )
        if not submission.accepted:
            raise KubernetesError(submission.job_name)

        job_name = submission.job_name
        async with transaction():
            await self._transition(
                task.id,
                TaskStatus.IN_PROGRESS,
                TaskUpdateModel(
                    image=image,
                    namespace=namespace,
                    job_name=job_name,
                    pod_name=job_name,
                    pvc_name=pvc_name,
                    started_at=utc_now(),
                ),
            )
            updated = await self.append_task_logs(
                task.id, f"Job {job_name} created in namespace {namespace}"
            )
        return updated

    @trace_span
    async def get_job_logs(self, task: Task) -> str:
        """Logs of the task's job, or a readable message when there are none."""
        job_name = task.job_name or task.pod_name
        if not job_name:
            return "No job for task"
        namespace = task.namespace or settings.kubernetes_default_namespace
        return await asyncio.to_thread(self.job_client.get_job_logs, namespace, job_name)


def get_task_service() -> TaskService:
    return TaskService()
