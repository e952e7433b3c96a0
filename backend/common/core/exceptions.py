from typing import Optional


class AppException(Exception):
    """Base application exception."""

    pass


class NotFoundError(AppException):
    """Resource not found exception."""

    pass


class ValidationError(AppException):
    """Validation error exception."""

    pass


class InvalidStatusTransitionError(ValidationError):
    """A status change that the task state machine does not allow."""

    pass


class ProcessingError(AppException):
    """Processing error exception."""

    pass


class KubernetesError(AppException):
    """Cluster API call failed."""

    pass


class ProvisioningError(AppException):
    """Workspace provisioner call failed."""

    pass


class WorkspaceNotReadyError(AppException):
    """Workspace cannot be used for task execution."""

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status


class WorkspaceReadinessTimeoutError(WorkspaceNotReadyError):
    """Workspace did not reach RUNNING within the wait budget."""

    pass
