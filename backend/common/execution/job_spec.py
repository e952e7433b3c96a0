"""
Job specification and manifest assembly for task jobs.

Builds the Kubernetes Job manifest for one task from a Jinja2 template:
optional git-clone init container, the task container running the agent
bootstrap script, environment, resources and the PVC-backed work volume.
Rendering is a pure function of the TaskJobSpec.
"""

import os
import shlex
from typing import Any, Dict, List, Optional

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined
from pydantic import BaseModel, Field

TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "job_templates")

REPO_VOLUME_NAME = "repo-volume"
REPO_MOUNT_PATH = "/work"
PVC_VOLUME_NAME = "pvc-volume"
PVC_MOUNT_PATH = "/pvc"
GIT_CLONE_CONTAINER_NAME = "git-clone"
AGENT_WORKDIR_EXCLUDE = "/.task-agent"


class ResourceLimits(BaseModel):
    """CPU/memory for the task container. Requests are set equal to limits."""

    cpu: str = Field(..., description="CPU quantity, e.g. '500m'")
    memory: str = Field(..., description="Memory quantity, e.g. '512Mi'")


class RepositoryRef(BaseModel):
    url: str = Field(..., description="Clone URL of the repository")
    branch: Optional[str] = Field(default=None, description="Branch to check out")


class AgentBootstrap(BaseModel):
    """Commands and env that install and run the task agent inside the job."""

    install_command: str
    execute_command: str
    env: Dict[str, str] = Field(default_factory=dict)


class TaskJobSpec(BaseModel):
    """Everything needed to render the Job manifest for one task."""

    job_name: str = Field(..., description="Kubernetes Job name")
    namespace: str = Field(..., description="Namespace the Job is created in")
    task_id: int
    image: str = Field(..., description="Image of the task container")
    pvc_name: str = Field(..., description="PVC backing the work volume")
    app_label: str = Field(default="task-orchestrator")
    backoff_limit: int = Field(default=4, description="Job retry budget")
    git_clone_image: str = Field(default="alpine/git:latest")

    # Task env comes first, then bootstrap env, then the task's additional env
    task_env: Dict[str, str] = Field(default_factory=dict)
    bootstrap: AgentBootstrap
    additional_env: Dict[str, str] = Field(default_factory=dict)

    repository: Optional[RepositoryRef] = None
    resources: Optional[ResourceLimits] = None


class JobSpecBuilder:
    """Renders TaskJobSpec into a Job manifest dict."""

    def __init__(self, template_name: str = "task_job.yaml.j2"):
        self.template_name = template_name
        self.jinja_env = Environment(
            loader=FileSystemLoader(TEMPLATE_DIR),
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def git_clone_script(self, repository: RepositoryRef) -> str:
        branch = (
            f" --branch {shlex.quote(repository.branch)}" if repository.branch else ""
        )
        return "\n".join(
            [
                "set -e",
                f"git clone --depth 1 --single-branch{branch} {shlex.quote(repository.url)} {REPO_MOUNT_PATH}",
                "echo 'Setting up git exclusions'",
                f"echo '{AGENT_WORKDIR_EXCLUDE}' >> {REPO_MOUNT_PATH}/.git/info/exclude",
                "echo 'Git exclusions configured'",
            ]
        )

    def main_script(self, bootstrap: AgentBootstrap) -> str:
        return f"{bootstrap.install_command}\n{bootstrap.execute_command}"

    def env_vars(self, spec: TaskJobSpec) -> List[Dict[str, str]]:
        merged: Dict[str, str] = {}
        merged.update(spec.task_env)
        merged.update(spec.bootstrap.env)
        merged.update(spec.additional_env)
        return [{"name": name, "value": value} for name, value in merged.items()]

    def render(self, spec: TaskJobSpec) -> str:
        """Render the manifest YAML."""
        if spec.repository:
            volume = {"name": REPO_VOLUME_NAME, "mount_path": REPO_MOUNT_PATH}
            init_container = {
                "name": GIT_CLONE_CONTAINER_NAME,
                "image": spec.git_clone_image,
                "script": self.git_clone_script(spec.repository),
            }
        else:
            volume = {"name": PVC_VOLUME_NAME, "mount_path": PVC_MOUNT_PATH}
            init_container = None

        template = self.jinja_env.get_template(self.template_name)
        return template.render(
            job_name=spec.job_name,
            namespace=spec.namespace,
            task_id=spec.task_id,
            app_label=spec.app_label,
            backoff_limit=spec.backoff_limit,
            image=spec.image,
            pvc_name=spec.pvc_name,
            volume=volume,
            init_container=init_container,
            main_script=self.main_script(spec.bootstrap),
            env_vars=self.env_vars(spec),
            resources=spec.resources.model_dump() if spec.resources else None,
        )

    def build(self, spec: TaskJobSpec) -> Dict[str, Any]:
        """Render and parse the manifest into a dict for the Kubernetes client."""
        return yaml.safe_load(self.render(spec))
