from enum import StrEnum


class JobStatus(StrEnum):
    """Orchestrator job status normalized for task reconciliation."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUCCEEDED = "SUCCEEDED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CRASH_LOOP_BACKOFF = "CRASH_LOOP_BACKOFF"
    NOT_FOUND = "NOT_FOUND"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.COMPLETED, JobStatus.FAILED)
