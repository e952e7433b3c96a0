from enum import Enum


class Environment(str, Enum):
    """Environment profiles."""

    LOCAL = "local"
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class OrchestratorMode(str, Enum):
    """Which scheduling loops an orchestrator process runs."""

    JOBS = "jobs"
    WORKSPACES = "workspaces"
    ALL = "all"
