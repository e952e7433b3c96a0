from datetime import datetime
from typing import List, Optional

from packages.workspaces.repositories.workspace_repository import WorkspaceRepository
from packages.workspaces.models.domain.workspace import (
    BuildStatus,
    Workspace,
    WorkspaceCreateModel,
    WorkspaceStatus,
    WorkspaceUpdateModel,
)
from common.core.clock import utc_now
from common.core.config import settings
from common.core.exceptions import NotFoundError, ProvisioningError, ValidationError
from common.core.telemetry import trace_span, get_logger
from common.providers.provisioning.factory import get_workspace_provisioner
from common.providers.provisioning.interface import WorkspaceProvisionerInterface
from common.providers.provisioning.models import ProvisionedBuild

logger = get_logger(__name__)

_BUILD_STATUS_BY_WORKSPACE_STATUS = {
    WorkspaceStatus.PENDING: BuildStatus.PENDING,
    WorkspaceStatus.STARTING: BuildStatus.RUNNING,
    WorkspaceStatus.STOPPING: BuildStatus.RUNNING,
    WorkspaceStatus.DELETING: BuildStatus.RUNNING,
    WorkspaceStatus.RUNNING: BuildStatus.SUCCEEDED,
    WorkspaceStatus.STOPPED: BuildStatus.SUCCEEDED,
    WorkspaceStatus.DELETED: BuildStatus.SUCCEEDED,
    WorkspaceStatus.FAILED: BuildStatus.FAILED,
    WorkspaceStatus.CANCELED: BuildStatus.CANCELED,
}


class WorkspaceService:
    """Service for workspace records and their provisioner counterparts."""

    def __init__(
        self,
        workspace_repo: Optional[WorkspaceRepository] = None,
        provisioner: Optional[WorkspaceProvisionerInterface] = None,
    ):
        self.workspace_repo = workspace_repo or WorkspaceRepository()
        self.provisioner = provisioner or get_workspace_provisioner()

    def _build_update(
        self, build: Optional[ProvisionedBuild], status: WorkspaceStatus
    ) -> WorkspaceUpdateModel:
        update = WorkspaceUpdateModel(
            status=status, build_status=_BUILD_STATUS_BY_WORKSPACE_STATUS[status]
        )
        if build is not None:
            update.build_id = build.id
            update.build_number = build.build_number
        return update

    async def _get_or_raise(self, workspace_id: int) -> Workspace:
        workspace = await self.workspace_repo.get(workspace_id)
        if not workspace:
            raise NotFoundError(f"Workspace not found: {workspace_id}")
        return workspace

    @trace_span
    async def get_workspace(self, workspace_id: int) -> Optional[Workspace]:
        workspace = await self.workspace_repo.get(workspace_id)
        if not workspace:
            logger.warning(f"Workspace not found: {workspace_id}")
        return workspace

    @trace_span
    async def get_workspaces_by_session(self, session_id: int) -> List[Workspace]:
        """Live (not deleted) workspaces of a session, oldest first."""
        workspaces = await self.workspace_repo.find_by_session_id(session_id)
        return [w for w in workspaces if w.status != WorkspaceStatus.DELETED]

    @trace_span
    async def get_failed_workspaces_before(self, cutoff: datetime) -> List[Workspace]:
        return await self.workspace_repo.find_by_status_and_updated_at_before(
            WorkspaceStatus.FAILED, cutoff
        )

    @trace_span
    async def create_workspace(
        self,
        session_id: int,
        name: str,
        template_id: Optional[str] = None,
        automatic_updates: bool = True,
        ttl_ms: Optional[int] = None,
    ) -> Workspace:
        """Provision a workspace and record it for the session."""
        template_id = template_id or settings.coder_default_template_id
        if not template_id:
            raise ValidationError(
                f"No template available for workspace {name} of session {session_id}"
            )

        logger.info(f"Creating workspace {name} for session {session_id}")
        provisioned = await self.provisioner.create_workspace(
            name, template_id, ttl_ms=ttl_ms, automatic_updates=automatic_updates
        )
        if provisioned is None:
            raise ProvisioningError(f"Failed to provision workspace {name}")

        status = WorkspaceStatus.from_provisioner(provisioned.status)
        build = provisioned.build
        workspace = await self.workspace_repo.create(
            WorkspaceCreateModel(
                name=name,
                session_id=session_id,
                template_id=template_id,
                status=status,
                provisioner_workspace_id=provisioned.id,
                automatic_updates=automatic_updates,
                ttl_ms=ttl_ms,
                build_id=build.id if build else None,
                build_number=build.build_number if build else None,
                build_status=_BUILD_STATUS_BY_WORKSPACE_STATUS[status],
            )
        )
        logger.info(
            f"Created workspace {workspace.id} ({provisioned.id}) for session {session_id}"
        )
        return workspace

    @trace_span
    async def start_workspace(self, workspace_id: int) -> Workspace:
        """Request a start. A RUNNING workspace is returned unchanged."""
        workspace = await self._get_or_raise(workspace_id)
        if workspace.status == WorkspaceStatus.RUNNING:
            return workspace

        build = None
        if workspace.provisioner_workspace_id:
            build = await self.provisioner.start_workspace(
                workspace.provisioner_workspace_id
            )
            if build is None:
                raise ProvisioningError(f"Failed to start workspace {workspace_id}")

        logger.info(f"Starting workspace {workspace_id}")
        update = self._build_update(build, WorkspaceStatus.STARTING)
        update.started_at = utc_now()
        return await self.workspace_repo.update(workspace_id, update)

    @trace_span
    async def stop_workspace(self, workspace_id: int) -> Workspace:
        """Request a stop. A STOPPED workspace is returned unchanged."""
        workspace = await self._get_or_raise(workspace_id)
        if workspace.status == WorkspaceStatus.STOPPED:
            return workspace

        build = None
        if workspace.provisioner_workspace_id:
            build = await self.provisioner.stop_workspace(
                workspace.provisioner_workspace_id
            )
            if build is None:
                raise ProvisioningError(f"Failed to stop workspace {workspace_id}")

        logger.info(f"Stopping workspace {workspace_id}")
        update = self._build_update(build, WorkspaceStatus.STOPPING)
        update.stopped_at = utc_now()
        return await self.workspace_repo.update(workspace_id, update)

    @trace_span
    async def delete_workspace(self, workspace_id: int) -> bool:
        """
        Delete the provisioned workspace and mark the record DELETED.

        Returns:
            False if the workspace is unknown or the provisioner refused
        """
        workspace = await self.workspace_repo.get(workspace_id)
        if not workspace:
            return False

        if workspace.provisioner_workspace_id:
            deleted = await self.provisioner.delete_workspace(
                workspace.provisioner_workspace_id
            )
            if not deleted:
                return False

        await self.workspace_repo.update(
            workspace_id,
            WorkspaceUpdateModel(status=WorkspaceStatus.DELETED, deleted_at=utc_now()),
        )
        logger.info(f"Deleted workspace {workspace_id}")
        return True

    @trace_span
    async def refresh_workspace(self, workspace_id: int) -> Optional[Workspace]:
        """Re-read the workspace, syncing status from the provisioner when linked."""
        workspace = await self.workspace_repo.get(workspace_id)
        if not workspace or not workspace.provisioner_workspace_id:
            return workspace

        provisioned = await self.provisioner.get_workspace(
            workspace.provisioner_workspace_id
        )
        if provisioned is None:
            return workspace

        status = WorkspaceStatus.from_provisioner(provisioned.status)
        if status == workspace.status:
            return workspace

        logger.info(
            f"Workspace {workspace_id} status changed {workspace.status} -> {status}"
        )
        return await self.workspace_repo.update(
            workspace_id, self._build_update(provisioned.build, status)
        )


def get_workspace_service() -> WorkspaceService:
    return WorkspaceService()
