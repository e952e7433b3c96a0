import pytest
from unittest.mock import AsyncMock, MagicMock

from common.execution.job_status import JobStatus
from common.execution.k8s_job_client import KubernetesJobClient
from common.providers.provisioning.interface import WorkspaceProvisionerInterface


@pytest.fixture
def mock_job_client():
    """Create a mock Kubernetes job client that accepts every call."""
    job_client = MagicMock(spec=KubernetesJobClient)
    job_client.is_available = True
    job_client.create_job = MagicMock(side_effect=lambda namespace, manifest: manifest["metadata"]["name"])
    job_client.create_pvc = MagicMock(return_value=True)
    job_client.delete_pvc = MagicMock(return_value=True)
    job_client.delete_job = MagicMock(return_value=True)
    job_client.get_job_status = MagicMock(return_value=JobStatus.ACTIVE)
    job_client.get_job_logs = MagicMock(return_value="hello from the job")
    return job_client


@pytest.fixture
def mock_provisioner():
    """Create a mock workspace provisioner."""
    provisioner = AsyncMock(spec=WorkspaceProvisionerInterface)
    provisioner.create_workspace = AsyncMock(return_value=None)
    provisioner.get_workspace = AsyncMock(return_value=None)
    provisioner.start_workspace = AsyncMock(return_value=None)
    provisioner.stop_workspace = AsyncMock(return_value=None)
    provisioner.delete_workspace = AsyncMock(return_value=True)
    provisioner.list_templates = AsyncMock(return_value=[])
    return provisioner

