from typing import Optional

from common.core.telemetry import get_logger

from .interface import WorkspaceProvisionerInterface
from .coder_provisioner import CoderProvisioner

logger = get_logger(__name__)

# Global instance
_provisioner: Optional[WorkspaceProvisionerInterface] = None


def get_workspace_provisioner() -> WorkspaceProvisionerInterface:
    """
    Get the configured workspace provisioner.

    Returns:
        WorkspaceProvisionerInterface: The provisioner instance
    """
    global _provisioner

    if _provisioner is None:
        _provisioner = CoderProvisioner()
        logger.info("Initialized Coder workspace provisioner")

    return _provisioner
