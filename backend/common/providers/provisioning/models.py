from typing import Any, Dict, Optional
from pydantic import BaseModel


class ProvisionedBuild(BaseModel):
    """Latest build of a provisioned workspace."""

    id: Optional[str] = None
    build_number: Optional[int] = None
    status: Optional[str] = None
    transition: Optional[str] = None

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> Optional["ProvisionedBuild"]:
        if not data:
            return None
        return cls(
            id=data.get("id"),
            build_number=data.get("build_number"),
            status=data.get("status"),
            transition=data.get("transition"),
        )


class ProvisionedWorkspace(BaseModel):
    """Workspace as reported by the provisioner."""

    id: str
    name: str
    template_id: Optional[str] = None
    status: Optional[str] = None  # Provisioner-native status string
    build: Optional[ProvisionedBuild] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ProvisionedWorkspace":
        build = ProvisionedBuild.from_api(data.get("latest_build"))
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            template_id=data.get("template_id"),
            status=build.status if build else None,
            build=build,
        )


class WorkspaceTemplate(BaseModel):
    id: str
    name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
