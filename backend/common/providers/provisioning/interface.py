from abc import ABC, abstractmethod
from typing import List, Optional

from .models import ProvisionedBuild, ProvisionedWorkspace, WorkspaceTemplate


class WorkspaceProvisionerInterface(ABC):
    """Interface for workspace provisioning backends.

    Implementations log failures and return None/False/[] instead of raising.
    """

    @abstractmethod
    async def create_workspace(
        self,
        name: str,
        template_id: str,
        ttl_ms: Optional[int] = None,
        automatic_updates: bool = True,
    ) -> Optional[ProvisionedWorkspace]:
        """
        Create a workspace from a template.

        Returns:
            The created workspace, None on failure
        """
        pass

    @abstractmethod
    async def get_workspace(self, workspace_id: str) -> Optional[ProvisionedWorkspace]:
        pass

    @abstractmethod
    async def start_workspace(self, workspace_id: str) -> Optional[ProvisionedBuild]:
        """Request a start build. Safe to call on a running workspace."""
        pass

    @abstractmethod
    async def stop_workspace(self, workspace_id: str) -> Optional[ProvisionedBuild]:
        """Request a stop build. Safe to call on a stopped workspace."""
        pass

    @abstractmethod
    async def delete_workspace(self, workspace_id: str) -> bool:
        pass

    @abstractmethod
    async def list_templates(self) -> List[WorkspaceTemplate]:
        pass
