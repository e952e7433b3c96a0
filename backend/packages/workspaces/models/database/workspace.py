from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Integer
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType
from packages.workspaces.models.domain.workspace import WorkspaceStatus


class WorkspaceEntity(Base):
    __tablename__ = "workspaces"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    name = Column(String, index=True, nullable=False)
    session_id = Column(
        BigIntegerType, ForeignKey("sessions.id"), nullable=False, index=True
    )
    template_id = Column(String, nullable=True)
    status = Column(
        String, nullable=False, default=WorkspaceStatus.PENDING.value, index=True
    )
    provisioner_workspace_id = Column(String, nullable=True)
    automatic_updates = Column(Boolean, nullable=False, default=True)
    ttl_ms = Column(BigIntegerType, nullable=True)

    build_id = Column(String, nullable=True)
    build_number = Column(Integer, nullable=True)
    build_status = Column(String, nullable=True)

    resource_namespace = Column(String, nullable=True)
    resource_pvc_name = Column(String, nullable=True)
    resource_pod_name = Column(String, nullable=True)
    resource_service_name = Column(String, nullable=True)
    resource_ingress_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    started_at = Column(DateTime(timezone=True), nullable=True)
    stopped_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
