from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from packages.workspaces.models.database.workspace import WorkspaceEntity
from packages.workspaces.models.domain.workspace import Workspace, WorkspaceStatus
from common.repositories.base import BaseRepository
from common.core.telemetry import trace_span


class WorkspaceRepository(BaseRepository[WorkspaceEntity, Workspace]):
    def __init__(self, db_session: Optional[AsyncSession] = None):
        super().__init__(WorkspaceEntity, Workspace, db_session)

    @trace_span
    async def find_by_session_id(self, session_id: int) -> List[Workspace]:
        """Workspaces of a session, oldest first."""
        async with self._get_session() as session:
            query = (
                select(self.entity_class)
                .where(self.entity_class.session_id == session_id)
                .order_by(self.entity_class.created_at, self.entity_class.id)
            )
            result = await session.execute(query)
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def find_by_status(self, status: WorkspaceStatus) -> List[Workspace]:
        async with self._get_session() as session:
            query = select(self.entity_class).where(
                self.entity_class.status == status.value
            )
            result = await session.execute(query)
            return self._entities_to_domain(result.scalars().all())

    @trace_span
    async def find_by_status_and_updated_at_before(
        self, status: WorkspaceStatus, cutoff: datetime
    ) -> List[Workspace]:
        """Workspaces in status whose last update is older than cutoff."""
        async with self._get_session() as session:
            query = (
                select(self.entity_class)
                .where(
                    self.entity_class.status == status.value,
                    self.entity_class.updated_at < cutoff,
                )
                .order_by(self.entity_class.updated_at)
            )
            result = await session.execute(query)
            return self._entities_to_domain(result.scalars().all())
