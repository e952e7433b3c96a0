"""
Kubernetes job lifecycle client.

Wraps the cluster API for task jobs: submit a job, create/delete the task
PVC, read pod logs, compute a normalized job status and delete a job.

Monitoring calls never raise. When the integration is disabled or the
cluster is unreachable they return sentinel values (JobStatus.UNKNOWN /
ERROR, False, or a human-readable log message) so the scheduler loops keep
running.
"""

from typing import Any, Dict, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from common.core.config import settings
from common.core.exceptions import KubernetesError
from common.core.telemetry import get_logger, trace_span
from common.execution.job_status import JobStatus

logger = get_logger(__name__)

DISABLED_MESSAGE = "Kubernetes integration is disabled"
JOB_NOT_FOUND_MESSAGE = "Job not found"
NO_PODS_MESSAGE = "No pods found for job"
CRASH_LOOP_REASON = "CrashLoopBackOff"


class KubernetesJobClient:
    """Job, PVC and pod-log operations against one cluster."""

    def __init__(self, enabled: Optional[bool] = None):
        self.enabled = settings.kubernetes_enabled if enabled is None else enabled
        self.batch_v1 = None
        self.core_v1 = None

        if not self.enabled:
            logger.info("Kubernetes integration is disabled by configuration")
            return

        # Load K8s config (in-cluster or kubeconfig)
        try:
            try:
                config.load_incluster_config()
            except config.ConfigException:
                config.load_kube_config()
            self.batch_v1 = client.BatchV1Api()
            self.core_v1 = client.CoreV1Api()
        except Exception as e:
            logger.error(f"Kubernetes client is not available: {e}")

    @property
    def is_available(self) -> bool:
        return self.enabled and self.batch_v1 is not None and self.core_v1 is not None

    @trace_span
    def create_job(self, namespace: str, manifest: Dict[str, Any]) -> str:
        """Submit a Job manifest. Raises KubernetesError on failure."""
        job_name = manifest.get("metadata", {}).get("name")
        if not self.is_available:
            raise KubernetesError(DISABLED_MESSAGE)

        try:
            self.batch_v1.create_namespaced_job(namespace=namespace, body=manifest)
        except ApiException as e:
            raise KubernetesError(f"Failed to create K8s job {job_name}: {e}") from e

        logger.info(f"Created job {job_name} in namespace {namespace}")
        return job_name

    @trace_span
    def create_pvc(
        self,
        namespace: str,
        name: str,
        storage_size: str = "",
        access_mode: str = "",
        storage_class: str = "",
        owner_task_id: Optional[int] = None,
    ) -> bool:
        """
        Create a PVC unless one with that name already exists.

        Blank size/access mode/storage class fall back to configuration.

        Returns:
            True if the PVC exists afterwards, False otherwise
        """
        if not self.is_available:
            logger.warning(f"Cannot create PVC {name}: {DISABLED_MESSAGE}")
            return False

        try:
            self.core_v1.read_namespaced_persistent_volume_claim(
                name=name, namespace=namespace
            )
            logger.info(f"PVC {name} already exists in namespace {namespace}")
            return True
        except ApiException as e:
            if e.status != 404:
                logger.error(f"Failed to look up PVC {name}: {e}")
                return False

        storage_size = storage_size or settings.default_pvc_storage_size
        access_mode = access_mode or settings.default_pvc_access_mode
        storage_class = storage_class or settings.default_pvc_storage_class

        labels = {"app": settings.kubernetes_app_label}
        if owner_task_id is not None:
            labels["task-id"] = str(owner_task_id)

        body = {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": {"name": name, "namespace": namespace, "labels": labels},
            "spec": {
                "accessModes": [access_mode],
                "resources": {"requests": {"storage": storage_size}},
            },
        }
        if storage_class:
            body["spec"]["storageClassName"] = storage_class

        try:
            self.core_v1.create_namespaced_persistent_volume_claim(
                namespace=namespace, body=body
            )
            logger.info(
                f"Created PVC {name} in namespace {namespace} ({storage_size}, {access_mode})"
            )
            return True
        except Exception as e:
            logger.error(f"Failed to create PVC {name}: {e}", exc_info=True)
            return False

    @trace_span
    def delete_pvc(self, namespace: str, name: str) -> bool:
        """Delete a PVC. Returns False if nothing was deleted."""
        if not self.is_available:
            return False

        try:
            self.core_v1.delete_namespaced_persistent_volume_claim(
                name=name, namespace=namespace
            )
            logger.info(f"Deleted PVC {name} in namespace {namespace}")
            return True
        except ApiException as e:
            if e.status == 404:
                logger.info(f"PVC {name} already deleted or not found")
            else:
                logger.error(f"Failed to delete PVC {name}: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to delete PVC {name}: {e}")
            return False

    @trace_span
    def delete_job(self, namespace: str, job_name: str) -> bool:
        """Delete a job and its pods. Returns False if nothing was deleted."""
        if not self.is_available:
            return False

        try:
            self.batch_v1.delete_namespaced_job(
                name=job_name,
                namespace=namespace,
                propagation_policy="Background",  # Delete pods in background
            )
            logger.info(f"Deleted job {job_name} in namespace {namespace}")
            return True
        except ApiException as e:
            if e.status == 404:
                logger.info(f"Job {job_name} already deleted or not found")
            else:
                logger.error(f"Failed to delete job {job_name}: {e}")
            return False
        except Exception as e:
            logger.error(f"Failed to delete job {job_name}: {e}")
            return False

    @trace_span
    def get_job_status(self, namespace: str, job_name: str) -> JobStatus:
        """
        Normalized job status.

        Precedence: job conditions (Failed, then Complete), then the
        active/succeeded/failed counters, then a CrashLoopBackOff waiting
        reason on any container of the job's pods. PENDING otherwise.
        """
        if not self.is_available:
            return JobStatus.UNKNOWN

        try:
            job = self.batch_v1.read_namespaced_job(name=job_name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return JobStatus.NOT_FOUND
            logger.error(f"Failed to read job {job_name}: {e}")
            return JobStatus.ERROR
        except Exception as e:
            logger.error(f"Failed to read job {job_name}: {e}")
            return JobStatus.ERROR

        try:
            status = job.status
            conditions = status.conditions or []
            if any(c.type == "Failed" and c.status == "True" for c in conditions):
                return JobStatus.FAILED
            if any(c.type == "Complete" and c.status == "True" for c in conditions):
                return JobStatus.COMPLETED

            if (status.active or 0) > 0:
                return JobStatus.ACTIVE
            if (status.succeeded or 0) > 0:
                return JobStatus.SUCCEEDED
            if (status.failed or 0) > 0:
                return JobStatus.FAILED

            if self._has_crash_looping_pod(namespace, job_name):
                return JobStatus.CRASH_LOOP_BACKOFF

            return JobStatus.PENDING
        except Exception as e:
            logger.error(f"Failed to compute status of job {job_name}: {e}")
            return JobStatus.ERROR

    def _has_crash_looping_pod(self, namespace: str, job_name: str) -> bool:
        pods = self.core_v1.list_namespaced_pod(
            namespace=namespace, label_selector=f"job-name={job_name}"
        )
        for pod in pods.items or []:
            statuses = list(pod.status.container_statuses or []) + list(
                pod.status.init_container_statuses or []
            )
            for container_status in statuses:
                waiting = container_status.state.waiting if container_status.state else None
                if waiting is not None and waiting.reason == CRASH_LOOP_REASON:
                    logger.warning(
                        f"Container {container_status.name} of pod {pod.metadata.name} is in {CRASH_LOOP_REASON}"
                    )
                    return True
        return False

    @trace_span
    def get_job_logs(self, namespace: str, job_name: str) -> str:
        """Logs of the job's first pod, or a readable sentinel message."""
        if not self.is_available:
            return DISABLED_MESSAGE

        try:
            try:
                self.batch_v1.read_namespaced_job(name=job_name, namespace=namespace)
            except ApiException as e:
                if e.status == 404:
                    return JOB_NOT_FOUND_MESSAGE
                raise

            pods = self.core_v1.list_namespaced_pod(
                namespace=namespace, label_selector=f"job-name={job_name}"
            )
            if not pods.items:
                return NO_PODS_MESSAGE

            pod_name = pods.items[0].metadata.name
            return self.core_v1.read_namespaced_pod_log(
                name=pod_name, namespace=namespace
            )
        except Exception as e:
            logger.error(f"Failed to get logs for job {job_name}: {e}")
            return f"Error getting logs: {e}"


# Global instance
_job_client: Optional[KubernetesJobClient] = None


def get_job_client() -> KubernetesJobClient:
    """Process-wide job client, created on first use."""
    global _job_client

    if _job_client is None:
        _job_client = KubernetesJobClient()

    return _job_client
