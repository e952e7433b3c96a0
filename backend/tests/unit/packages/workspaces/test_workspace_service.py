from datetime import timedelta

import pytest

from common.core.clock import utc_now
from common.core.exceptions import NotFoundError, ProvisioningError, ValidationError
from common.providers.provisioning.models import ProvisionedBuild, ProvisionedWorkspace
from packages.workspaces.models.domain.workspace import (
    BuildStatus,
    WorkspaceCreateModel,
    WorkspaceStatus,
    WorkspaceUpdateModel,
)
from packages.workspaces.repositories.workspace_repository import WorkspaceRepository
from packages.workspaces.services.workspace_service import WorkspaceService


def provisioned(status="starting", workspace_id="coder-ws-9"):
    build = ProvisionedBuild(id="build-1", build_number=1, status=status, transition="start")
    return ProvisionedWorkspace(
        id=workspace_id, name="feature-work", template_id="template-1", status=status, build=build
    )


@pytest.fixture
def workspace_service(test_db, mock_provisioner):
    return WorkspaceService(WorkspaceRepository(), mock_provisioner)


class TestWorkspaceStatusMapping:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("running", WorkspaceStatus.RUNNING),
            ("RUNNING", WorkspaceStatus.RUNNING),
            ("canceling", WorkspaceStatus.CANCELED),
            ("failed", WorkspaceStatus.FAILED),
            ("something-new", WorkspaceStatus.PENDING),
            (None, WorkspaceStatus.PENDING),
        ],
    )
    def test_from_provisioner(self, value, expected):
        assert WorkspaceStatus.from_provisioner(value) == expected


class TestWorkspaceService:
    """Tests for WorkspaceService with mocked provisioner and real DB."""

    async def test_create_workspace(self, workspace_service, mock_provisioner, sample_session):
        mock_provisioner.create_workspace.return_value = provisioned()

        workspace = await workspace_service.create_workspace(
            sample_session.id, "feature-work", template_id="template-1", ttl_ms=1000
        )

        assert workspace.status == WorkspaceStatus.STARTING
        assert workspace.provisioner_workspace_id == "coder-ws-9"
        assert workspace.build_status == BuildStatus.RUNNING
        assert workspace.ttl_ms == 1000
        mock_provisioner.create_workspace.assert_awaited_once_with(
            "feature-work", "template-1", ttl_ms=1000, automatic_updates=True
        )

    async def test_create_without_template_rejected(self, workspace_service, sample_session):
        with pytest.raises(ValidationError):
            await workspace_service.create_workspace(sample_session.id, "feature-work")

    async def test_create_provisioner_failure(self, workspace_service, sample_session):
        with pytest.raises(ProvisioningError):
            await workspace_service.create_workspace(
                sample_session.id, "feature-work", template_id="template-1"
            )

    async def test_start_running_workspace_is_noop(
        self, workspace_service, mock_provisioner, sample_workspace
    ):
        workspace = await workspace_service.start_workspace(sample_workspace.id)

        assert workspace.status == WorkspaceStatus.RUNNING
        mock_provisioner.start_workspace.assert_not_called()

    async def test_start_stopped_workspace(
        self, workspace_service, mock_provisioner, sample_workspace
    ):
        await workspace_service.workspace_repo.update(
            sample_workspace.id, WorkspaceUpdateModel(status=WorkspaceStatus.STOPPED)
        )
        mock_provisioner.start_workspace.return_value = ProvisionedBuild(
            id="build-2", build_number=2, status="pending", transition="start"
        )

        workspace = await workspace_service.start_workspace(sample_workspace.id)

        assert workspace.status == WorkspaceStatus.STARTING
        assert workspace.build_number == 2
        assert workspace.started_at is not None
        mock_provisioner.start_workspace.assert_awaited_once_with("coder-ws-1")

    async def test_start_failure_raises(self, workspace_service, sample_workspace):
        await workspace_service.workspace_repo.update(
            sample_workspace.id, WorkspaceUpdateModel(status=WorkspaceStatus.STOPPED)
        )

        with pytest.raises(ProvisioningError):
            await workspace_service.start_workspace(sample_workspace.id)

    async def test_stop_workspace(self, workspace_service, mock_provisioner, sample_workspace):
        mock_provisioner.stop_workspace.return_value = ProvisionedBuild(id="build-3", build_number=3)

        workspace = await workspace_service.stop_workspace(sample_workspace.id)

        assert workspace.status == WorkspaceStatus.STOPPING
        assert workspace.stopped_at is not None

    async def test_start_unknown_workspace(self, workspace_service):
        with pytest.raises(NotFoundError):
            await workspace_service.start_workspace(4242)

    async def test_delete_marks_deleted_and_hides_from_session(
        self, workspace_service, mock_provisioner, sample_workspace, sample_session
    ):
        assert await workspace_service.delete_workspace(sample_workspace.id) is True

        mock_provisioner.delete_workspace.assert_awaited_once_with("coder-ws-1")
        deleted = await workspace_service.get_workspace(sample_workspace.id)
        assert deleted.status == WorkspaceStatus.DELETED
        assert deleted.deleted_at is not None
        assert await workspace_service.get_workspaces_by_session(sample_session.id) == []

    async def test_delete_refused_by_provisioner(
        self, workspace_service, mock_provisioner, sample_workspace
    ):
        mock_provisioner.delete_workspace.return_value = False

        assert await workspace_service.delete_workspace(sample_workspace.id) is False
        workspace = await workspace_service.get_workspace(sample_workspace.id)
        assert workspace.status == WorkspaceStatus.RUNNING

    async def test_delete_unknown_workspace(self, workspace_service):
        assert await workspace_service.delete_workspace(4242) is False

    async def test_refresh_syncs_status(
        self, workspace_service, mock_provisioner, sample_workspace
    ):
        mock_provisioner.get_workspace.return_value = provisioned("failed", "coder-ws-1")

        workspace = await workspace_service.refresh_workspace(sample_workspace.id)

        assert workspace.status == WorkspaceStatus.FAILED
        assert workspace.build_status == BuildStatus.FAILED

    async def test_refresh_keeps_record_when_provisioner_unreachable(
        self, workspace_service, sample_workspace
    ):
        workspace = await workspace_service.refresh_workspace(sample_workspace.id)

        assert workspace.status == WorkspaceStatus.RUNNING

    async def test_failed_workspaces_before_cutoff(
        self, workspace_service, sample_session
    ):
        repo = workspace_service.workspace_repo
        failed = await repo.create(
            WorkspaceCreateModel(
                name="broken", session_id=sample_session.id, status=WorkspaceStatus.FAILED
            )
        )
        await repo.create(
            WorkspaceCreateModel(
                name="fine", session_id=sample_session.id, status=WorkspaceStatus.RUNNING
            )
        )

        later = await workspace_service.get_failed_workspaces_before(
            utc_now() + timedelta(minutes=1)
        )
        earlier = await workspace_service.get_failed_workspaces_before(
            utc_now() - timedelta(hours=1)
        )

        assert [w.id for w in later] == [failed.id]
        assert earlier == []
