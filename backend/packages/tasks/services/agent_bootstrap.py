from typing import Dict, Optional

from common.core.config import settings
from common.execution.job_spec import AgentBootstrap
from packages.tasks.models.domain.task import Task

AGENT_BINARY_PATH = "/usr/local/bin/task-agent"


class AgentBootstrapService:
    """Commands and env that install and start the task agent inside a job."""

    def __init__(self, release_url: Optional[str] = None, api_url: Optional[str] = None):
        self.release_url = release_url or settings.agent_release_url
        self.api_url = api_url or settings.api_endpoint

    def install_command(self) -> str:
        return "\n".join(
            [
                "set -e",
                "echo 'Downloading task agent'",
                f'curl -sfL -o {AGENT_BINARY_PATH} "$AGENT_RELEASE_URL" || wget -q -O {AGENT_BINARY_PATH} "$AGENT_RELEASE_URL"',
                f"chmod +x {AGENT_BINARY_PATH}",
                "echo 'Task agent installed'",
            ]
        )

    def execute_command(self) -> str:
        return f'{AGENT_BINARY_PATH} execute --task-id "$AGENT_TASK_ID" --api-url "$AGENT_API_URL"'

    def environment(self, task: Task) -> Dict[str, str]:
        env = {"AGENT_RELEASE_URL": self.release_url}
        if task.session_id is not None:
            env["AGENT_SESSION_ID"] = str(task.session_id)
        if task.workspace_id is not None:
            env["AGENT_WORKSPACE_ID"] = str(task.workspace_id)
        if task.repository_url:
            env["AGENT_REPOSITORY_URL"] = task.repository_url
        return env

    def task_environment(self, task: Task) -> Dict[str, str]:
        """Env describing the task itself."""
        return {
            "AGENT_TASK_ID": str(task.id),
            "AGENT_TASK_TITLE": task.title,
            "AGENT_TASK_STATUS": task.status.value,
            "AGENT_TASK_CREATED_AT": task.created_at.isoformat() if task.created_at else "",
            "AGENT_TASK_UPDATED_AT": task.updated_at.isoformat() if task.updated_at else "",
            "AGENT_API_URL": self.api_url,
        }

    def build_bootstrap(self, task: Task) -> AgentBootstrap:
        return AgentBootstrap(
            install_command=self.install_command(),
            execute_command=self.execute_command(),
            env=self.environment(task),
        )
