from datetime import datetime
from enum import StrEnum
from typing import Optional
from pydantic import BaseModel, field_validator


class WorkspaceStatus(StrEnum):
    PENDING = "PENDING"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    DELETING = "DELETING"
    DELETED = "DELETED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"

    @classmethod
    def from_provisioner(cls, value: Optional[str]) -> "WorkspaceStatus":
        """Map a provisioner build status (e.g. "running", "canceling") to ours."""
        if not value:
            return cls.PENDING
        normalized = value.strip().lower()
        return _PROVISIONER_STATUS_MAP.get(normalized, cls.PENDING)


_PROVISIONER_STATUS_MAP = {
    "pending": WorkspaceStatus.PENDING,
    "starting": WorkspaceStatus.STARTING,
    "running": WorkspaceStatus.RUNNING,
    "stopping": WorkspaceStatus.STOPPING,
    "stopped": WorkspaceStatus.STOPPED,
    "failed": WorkspaceStatus.FAILED,
    "canceling": WorkspaceStatus.CANCELED,
    "canceled": WorkspaceStatus.CANCELED,
    "deleting": WorkspaceStatus.DELETING,
    "deleted": WorkspaceStatus.DELETED,
}


class BuildStatus(StrEnum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


class Workspace(BaseModel):
    id: int
    name: str
    session_id: int
    template_id: Optional[str] = None
    status: WorkspaceStatus = WorkspaceStatus.PENDING
    provisioner_workspace_id: Optional[str] = None
    automatic_updates: bool = True
    ttl_ms: Optional[int] = None

    # Build info
    build_id: Optional[str] = None
    build_number: Optional[int] = None
    build_status: Optional[BuildStatus] = None

    # Resource info
    resource_namespace: Optional[str] = None
    resource_pvc_name: Optional[str] = None
    resource_pod_name: Optional[str] = None
    resource_service_name: Optional[str] = None
    resource_ingress_url: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @property
    def is_ready(self) -> bool:
        return self.status == WorkspaceStatus.RUNNING


class WorkspaceCreateModel(BaseModel):
    """Model for creating a new workspace."""

    name: str
    session_id: int
    template_id: Optional[str] = None
    status: str = WorkspaceStatus.PENDING.value
    provisioner_workspace_id: Optional[str] = None
    automatic_updates: bool = True
    ttl_ms: Optional[int] = None
    build_id: Optional[str] = None
    build_number: Optional[int] = None
    build_status: Optional[str] = None

    @field_validator("status", "build_status", mode="before")
    @classmethod
    def validate_status(cls, v):
        if isinstance(v, (WorkspaceStatus, BuildStatus)):
            return v.value
        return v


class WorkspaceUpdateModel(BaseModel):
    """Model for updating a workspace."""

    name: Optional[str] = None
    status: Optional[str] = None
    provisioner_workspace_id: Optional[str] = None
    build_id: Optional[str] = None
    build_number: Optional[int] = None
    build_status: Optional[str] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @field_validator("status", "build_status", mode="before")
    @classmethod
    def validate_status(cls, v):
        if isinstance(v, (WorkspaceStatus, BuildStatus)):
            return v.value
        return v
