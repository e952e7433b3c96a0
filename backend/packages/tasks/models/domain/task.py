from datetime import datetime
from enum import StrEnum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator


class TaskStatus(StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"
    WAITING_FOR_INPUT = "WAITING_FOR_INPUT"

    def can_transition_to(self, target: "TaskStatus") -> bool:
        """Whether the orchestrator may move a task from this status to target."""
        if self == target:
            return True
        return target in _ALLOWED_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self]


# FAILED -> PENDING is the explicit retry path
_ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.IN_PROGRESS: {
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
        TaskStatus.WAITING_FOR_INPUT,
    },
    TaskStatus.WAITING_FOR_INPUT: {
        TaskStatus.IN_PROGRESS,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.FAILED: {TaskStatus.PENDING},
    TaskStatus.COMPLETED: set(),
    TaskStatus.CANCELLED: set(),
}


class TaskErrorCode(StrEnum):
    """Stable failure codes API consumers can branch on."""

    WORKSPACE_NOT_READY = "WORKSPACE_NOT_READY"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    SCRIPT_ERROR = "SCRIPT_ERROR"
    TIMEOUT = "TIMEOUT"
    SIMULATED_ERROR = "SIMULATED_ERROR"
    CRASH_LOOP_TIMEOUT = "CRASH_LOOP_TIMEOUT"
    JOB_FAILED = "JOB_FAILED"
    DISPATCH_ERROR = "DISPATCH_ERROR"


class Task(BaseModel):
    id: int
    title: str
    name: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    script: Optional[str] = None

    # Job execution
    image: Optional[str] = None
    namespace: Optional[str] = None
    job_name: Optional[str] = None
    pod_name: Optional[str] = None
    pvc_name: Optional[str] = None
    kubernetes_manifest: Optional[str] = None
    cpu: Optional[str] = None
    memory: Optional[str] = None
    repository_url: Optional[str] = None
    repository_branch: Optional[str] = None
    additional_env: Dict[str, str] = Field(default_factory=dict)

    # Ownership
    session_id: Optional[int] = None
    workspace_id: Optional[int] = None
    parent_id: Optional[int] = None

    # Outcome
    logs: Optional[str] = None
    artifacts: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 3

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("additional_env", "artifacts", mode="before")
    @classmethod
    def empty_when_null(cls, v, info):
        if v is None:
            return {} if info.field_name == "additional_env" else []
        return v

    @property
    def display_name(self) -> str:
        return self.name or self.title

    @property
    def has_retries_left(self) -> bool:
        return self.retry_count < self.max_retries


class TaskCreateModel(BaseModel):
    """Model for creating a new task (without auto-generated fields)."""

    title: str
    name: Optional[str] = None
    status: str = TaskStatus.PENDING.value
    script: Optional[str] = None
    image: Optional[str] = None
    namespace: Optional[str] = None
    kubernetes_manifest: Optional[str] = None
    cpu: Optional[str] = None
    memory: Optional[str] = None
    repository_url: Optional[str] = None
    repository_branch: Optional[str] = None
    additional_env: Dict[str, str] = Field(default_factory=dict)
    session_id: Optional[int] = None
    workspace_id: Optional[int] = None
    parent_id: Optional[int] = None
    max_retries: Optional[int] = None

    @field_validator("status", mode="before")
    @classmethod
    def validate_status(cls, v):
        if isinstance(v, TaskStatus):
            return v.value
        return v


class TaskUpdateModel(BaseModel):
    """Model for updating a task. Only fields that are set are written."""

    status: Optional[str] = None
    image: Optional[str] = None
    namespace: Optional[str] = None
    job_name: Optional[str] = None
    pod_name: Optional[str] = None
    pvc_name: Optional[str] = None
    workspace_id: Optional[int] = None
    artifacts: Optional[List[str]] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("status", "error_code", mode="before")
    @classmethod
    def validate_enum(cls, v):
        if isinstance(v, (TaskStatus, TaskErrorCode)):
            return v.value
        return v


class TaskExecutionStats(BaseModel):
    """Task totals per status."""

    total: int
    pending: int
    in_progress: int
    completed: int
    failed: int
    cancelled: int
    waiting_for_input: int
    success_rate: str


class TaskExecutionInfo(BaseModel):
    task_id: int
    status: TaskStatus
    workspace_id: Optional[int] = None
    job_name: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    retry_count: int
    max_retries: int
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    artifacts: List[str] = Field(default_factory=list)
