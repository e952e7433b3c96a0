from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Integer, JSON
from sqlalchemy.sql import func

from common.db.base import Base, BigIntegerType
from packages.tasks.models.domain.task import TaskStatus


class TaskEntity(Base):
    __tablename__ = "tasks"

    id = Column(BigIntegerType, primary_key=True, index=True, autoincrement=True)
    title = Column(String, nullable=False)
    name = Column(String, nullable=True)
    status = Column(
        String, default=TaskStatus.PENDING.value, nullable=False, index=True
    )
    script = Column(Text, nullable=True)

    image = Column(String, nullable=True)
    namespace = Column(String, nullable=True)
    job_name = Column(String, nullable=True)
    pod_name = Column(String, nullable=True)
    pvc_name = Column(String, nullable=True)
    kubernetes_manifest = Column(Text, nullable=True)
    cpu = Column(String, nullable=True)
    memory = Column(String, nullable=True)
    repository_url = Column(String, nullable=True)
    repository_branch = Column(String, nullable=True)
    additional_env = Column(JSON, nullable=False, default=dict)

    session_id = Column(
        BigIntegerType, ForeignKey("sessions.id"), nullable=True, index=True
    )
    workspace_id = Column(
        BigIntegerType, ForeignKey("workspaces.id"), nullable=True, index=True
    )
    parent_id = Column(BigIntegerType, ForeignKey("tasks.id"), nullable=True)

    logs = Column(Text, nullable=True)
    artifacts = Column(JSON, nullable=False, default=list)
    error_message = Column(Text, nullable=True)
    error_code = Column(String, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
