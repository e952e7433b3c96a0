from typing import Dict, List, Optional
from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from common.repositories.base import BaseRepository
from common.core.telemetry import trace_span, get_logger
from packages.tasks.models.database.task import TaskEntity
from packages.tasks.models.domain.task import Task, TaskStatus, TaskUpdateModel

logger = get_logger(__name__)


class TaskRepository(BaseRepository[TaskEntity, Task]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(TaskEntity, Task, db_session)

    @trace_span
    async def find_by_status(
        self,
        status: TaskStatus,
        limit: Optional[int] = None,
        in_workspace: Optional[bool] = None,
    ) -> List[Task]:
        """
        Tasks in a status, oldest first.

        in_workspace=True keeps tasks bound to a session or workspace,
        False keeps job-backed tasks, None keeps both.
        """
        query = select(self.entity_class).where(self.entity_class.status == status.value)
        if in_workspace is not None:
            bound = or_(
                self.entity_class.session_id.isnot(None),
                self.entity_class.workspace_id.isnot(None),
            )
            query = query.where(bound if in_workspace else ~bound)
        query = query.order_by(self.entity_class.created_at, self.entity_class.id)
        if limit is not None:
            query = query.limit(limit)

        async with self._get_session() as session:
            result = await session.execute(query)
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def get_next_pending(self, in_workspace: Optional[bool] = None) -> Optional[Task]:
        """Head of the FIFO queue of PENDING tasks."""
        tasks = await self.find_by_status(
            TaskStatus.PENDING, limit=1, in_workspace=in_workspace
        )
        return tasks[0] if tasks else None

    @trace_span
    async def update_status(self, task_id: int, status: TaskStatus) -> Optional[Task]:
        return await self.update(task_id, TaskUpdateModel(status=status))

    @trace_span
    async def increment_retry_count(self, task_id: int) -> Optional[Task]:
        async with self._get_session() as session:
            await session.execute(
                update(self.entity_class)
                .where(self.entity_class.id == task_id)
                .values(retry_count=self.entity_class.retry_count + 1)
            )
            await session.flush()
        return await self.get(task_id)

    @trace_span
    async def append_logs(self, task_id: int, text: str) -> Optional[Task]:
        """Append text to the task log, newline separated."""
        async with self._get_session() as session:
            result = await session.execute(
                select(self.entity_class).where(self.entity_class.id == task_id)
            )
            entity = result.scalar_one_or_none()
            if entity is None:
                return None
            entity.logs = f"{entity.logs}\n{text}" if entity.logs else text
            await session.flush()
            await session.refresh(entity)
            return self._entity_to_domain(entity)

    @trace_span
    async def count_by_status(self) -> Dict[TaskStatus, int]:
        query = select(self.entity_class.status, func.count()).group_by(
            self.entity_class.status
        )
        async with self._get_session() as session:
            result = await session.execute(query)
            counts = {status: 0 for status in TaskStatus}
            for status, count in result.all():
                counts[TaskStatus(status)] = count
            return counts
