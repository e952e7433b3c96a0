"""Coder-style REST workspace provisioner."""

from typing import Any, Dict, List, Optional

import httpx

from common.core.config import settings
from common.core.telemetry import get_logger, trace_span

from .interface import WorkspaceProvisionerInterface
from .models import ProvisionedBuild, ProvisionedWorkspace, WorkspaceTemplate

logger = get_logger(__name__)


class CoderProvisioner(WorkspaceProvisionerInterface):
    """Workspace provisioner backed by the Coder v2 REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        session_token: Optional[str] = None,
        organization: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.coder_base_url).rstrip("/")
        self.session_token = (
            session_token if session_token is not None else settings.coder_session_token
        )
        self.organization = organization or settings.coder_organization
        self.timeout = httpx.Timeout(
            settings.coder_read_timeout_seconds,
            connect=settings.coder_connect_timeout_seconds,
        )
        self._transport = transport
        self._user_id: Optional[str] = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Coder-Session-Token": self.session_token,
                "Accept": "application/json",
            },
            timeout=self.timeout,
            verify=settings.coder_verify_ssl,
            transport=self._transport,
        )

    async def _request(
        self, method: str, path: str, json: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        async with self._client() as client:
            response = await client.request(method, path, json=json)
            response.raise_for_status()
            return response

    async def _current_user_id(self) -> str:
        """Id of the authenticated user, falling back to the configured user."""
        if self._user_id:
            return self._user_id
        try:
            response = await self._request("GET", "/api/v2/users/me")
            self._user_id = response.json()["id"]
            return self._user_id
        except Exception as e:
            logger.warning(
                f"Could not resolve current Coder user, using {settings.coder_user}: {e}"
            )
            return settings.coder_user

    @trace_span
    async def create_workspace(
        self,
        name: str,
        template_id: str,
        ttl_ms: Optional[int] = None,
        automatic_updates: bool = True,
    ) -> Optional[ProvisionedWorkspace]:
        user_id = await self._current_user_id()
        payload: Dict[str, Any] = {
            "name": name,
            "template_id": template_id,
            "automatic_updates": "always" if automatic_updates else "never",
        }
        if ttl_ms is not None:
            payload["ttl_ms"] = ttl_ms

        try:
            response = await self._request(
                "POST",
                f"/api/v2/organizations/{self.organization}/members/{user_id}/workspaces",
                json=payload,
            )
            workspace = ProvisionedWorkspace.from_api(response.json())
            logger.info(f"Created Coder workspace {workspace.name} ({workspace.id})")
            return workspace
        except Exception as e:
            logger.error(f"Failed to create Coder workspace {name}: {e}")
            return None

    @trace_span
    async def get_workspace(self, workspace_id: str) -> Optional[ProvisionedWorkspace]:
        try:
            response = await self._request("GET", f"/api/v2/workspaces/{workspace_id}")
            return ProvisionedWorkspace.from_api(response.json())
        except Exception as e:
            logger.error(f"Failed to get Coder workspace {workspace_id}: {e}")
            return None

    async def _build(
        self, workspace_id: str, transition: str
    ) -> Optional[ProvisionedBuild]:
        try:
            response = await self._request(
                "POST",
                f"/api/v2/workspaces/{workspace_id}/builds",
                json={"transition": transition},
            )
            logger.info(f"Requested {transition} build for Coder workspace {workspace_id}")
            return ProvisionedBuild.from_api(response.json())
        except Exception as e:
            logger.error(
                f"Failed to {transition} Coder workspace {workspace_id}: {e}"
            )
            return None

    @trace_span
    async def start_workspace(self, workspace_id: str) -> Optional[ProvisionedBuild]:
        return await self._build(workspace_id, "start")

    @trace_span
    async def stop_workspace(self, workspace_id: str) -> Optional[ProvisionedBuild]:
        return await self._build(workspace_id, "stop")

    @trace_span
    async def delete_workspace(self, workspace_id: str) -> bool:
        try:
            await self._request("DELETE", f"/api/v2/workspaces/{workspace_id}")
            logger.info(f"Deleted Coder workspace {workspace_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to delete Coder workspace {workspace_id}: {e}")
            return False

    @trace_span
    async def list_templates(self) -> List[WorkspaceTemplate]:
        try:
            response = await self._request(
                "GET", f"/api/v2/organizations/{self.organization}/templates"
            )
            return [
                WorkspaceTemplate(
                    id=item["id"],
                    name=item.get("name", ""),
                    display_name=item.get("display_name"),
                    description=item.get("description"),
                )
                for item in response.json()
            ]
        except Exception as e:
            logger.error(f"Failed to list Coder templates: {e}")
            return []
