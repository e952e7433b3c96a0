"""
Asynchronous job creation for tasks.

submit_job() resolves the job name, hands manifest assembly and submission
to a worker pool and returns at once. The returned future is the only place
a background failure shows up; the monitoring cycle is what notices a job
that never became ACTIVE.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Optional

import yaml

from common.core.config import settings
from common.core.telemetry import get_logger
from common.execution.job_spec import (
    JobSpecBuilder,
    RepositoryRef,
    ResourceLimits,
    TaskJobSpec,
)
from common.execution.k8s_job_client import KubernetesJobClient, get_job_client
from packages.tasks.models.domain.task import Task
from packages.tasks.services.agent_bootstrap import AgentBootstrapService

logger = get_logger(__name__)

CLIENT_UNAVAILABLE_MESSAGE = (
    "Kubernetes integration is disabled or client is not available"
)


@dataclass
class JobSubmission:
    """Job name plus the completion signal of its background creation."""

    job_name: str
    future: Optional[Future] = None

    @property
    def accepted(self) -> bool:
        return self.future is not None


class JobCreator:
    """Creates Kubernetes jobs for tasks on a worker pool."""

    def __init__(
        self,
        job_client: Optional[KubernetesJobClient] = None,
        spec_builder: Optional[JobSpecBuilder] = None,
        bootstrap_service: Optional[AgentBootstrapService] = None,
        max_workers: Optional[int] = None,
    ):
        self.job_client = job_client or get_job_client()
        self.spec_builder = spec_builder or JobSpecBuilder()
        self.bootstrap_service = bootstrap_service or AgentBootstrapService()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.job_creator_max_workers,
            thread_name_prefix="job-creator",
        )

    @staticmethod
    def default_job_name(task_id: int) -> str:
        return f"job-{task_id}"

    @staticmethod
    def default_pvc_name(task_id: int) -> str:
        return f"pvc-{task_id}"

    def validate_client(self) -> Optional[str]:
        """Return a reason string if jobs cannot be created, else None."""
        if not self.job_client.is_available:
            return CLIENT_UNAVAILABLE_MESSAGE
        return None

    def submit_job(
        self,
        task: Task,
        image: str,
        namespace: Optional[str] = None,
        job_name: Optional[str] = None,
        repository: Optional[RepositoryRef] = None,
        pvc_name: Optional[str] = None,
        resources: Optional[ResourceLimits] = None,
    ) -> JobSubmission:
        problem = self.validate_client()
        if problem:
            logger.warning(f"Not creating job for task {task.id}: {problem}")
            return JobSubmission(job_name=problem)

        namespace = namespace or settings.kubernetes_default_namespace
        job_name = job_name or self.default_job_name(task.id)
        pvc_name = pvc_name or self.default_pvc_name(task.id)

        future = self._executor.submit(
            self._create_job,
            task,
            image,
            namespace,
            job_name,
            repository,
            pvc_name,
            resources,
        )
        logger.info(f"Submitted job {job_name} for task {task.id} in {namespace}")
        return JobSubmission(job_name=job_name, future=future)

    def create_job(
        self,
        task: Task,
        image: str,
        namespace: Optional[str] = None,
        job_name: Optional[str] = None,
        repository: Optional[RepositoryRef] = None,
        pvc_name: Optional[str] = None,
        resources: Optional[ResourceLimits] = None,
    ) -> str:
        """Start job creation and return the job name without waiting."""
        return self.submit_job(
            task, image, namespace, job_name, repository, pvc_name, resources
        ).job_name

    def build_manifest(
        self,
        task: Task,
        image: str,
        namespace: str,
        job_name: str,
        repository: Optional[RepositoryRef],
        pvc_name: str,
        resources: Optional[ResourceLimits],
    ) -> Dict[str, Any]:
        if task.kubernetes_manifest:
            manifest = yaml.safe_load(task.kubernetes_manifest)
            metadata = manifest.setdefault("metadata", {})
            metadata["name"] = job_name
            metadata["namespace"] = namespace
            return manifest

        if repository is None and task.repository_url:
            repository = RepositoryRef(
                url=task.repository_url, branch=task.repository_branch
            )
        if resources is None and task.cpu and task.memory:
            resources = ResourceLimits(cpu=task.cpu, memory=task.memory)

        spec = TaskJobSpec(
            job_name=job_name,
            namespace=namespace,
            task_id=task.id,
            image=image,
            pvc_name=pvc_name,
            app_label=settings.kubernetes_app_label,
            backoff_limit=settings.job_backoff_limit,
            git_clone_image=settings.git_clone_image,
            task_env=self.bootstrap_service.task_environment(task),
            bootstrap=self.bootstrap_service.build_bootstrap(task),
            additional_env=task.additional_env,
            repository=repository,
            resources=resources,
        )
        return self.spec_builder.build(spec)

    def _create_job(
        self,
        task: Task,
        image: str,
        namespace: str,
        job_name: str,
        repository: Optional[RepositoryRef],
        pvc_name: str,
        resources: Optional[ResourceLimits],
    ) -> str:
        try:
            manifest = self.build_manifest(
                task, image, namespace, job_name, repository, pvc_name, resources
            )
            return self.job_client.create_job(namespace, manifest)
        except Exception as e:
            logger.error(
                f"Background creation of job {job_name} for task {task.id} failed: {e}",
                exc_info=True,
            )
            raise

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
