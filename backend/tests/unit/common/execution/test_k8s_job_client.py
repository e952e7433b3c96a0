import pytest
from kubernetes.config import ConfigException
from kubernetes.client.rest import ApiException
from unittest.mock import patch, MagicMock

from common.core.exceptions import KubernetesError
from common.execution.job_status import JobStatus
from common.execution.k8s_job_client import (
    DISABLED_MESSAGE,
    JOB_NOT_FOUND_MESSAGE,
    NO_PODS_MESSAGE,
    KubernetesJobClient,
)


def make_job(conditions=None, active=None, succeeded=None, failed=None):
    job = MagicMock()
    job.status.conditions = conditions
    job.status.active = active
    job.status.succeeded = succeeded
    job.status.failed = failed
    return job


def make_condition(type_, status="True"):
    condition = MagicMock()
    condition.type = type_
    condition.status = status
    return condition


def make_pod(name="job-1-abcde", waiting_reason=None, init_waiting_reason=None):
    def container_status(reason):
        status = MagicMock()
        status.name = "task-container"
        status.state.waiting = MagicMock(reason=reason) if reason else None
        return status

    pod = MagicMock()
    pod.metadata.name = name
    pod.status.container_statuses = [container_status(waiting_reason)]
    pod.status.init_container_statuses = (
        [container_status(init_waiting_reason)] if init_waiting_reason else None
    )
    return pod


class TestKubernetesJobClient:
    """Tests for KubernetesJobClient with mocked cluster APIs."""

    @pytest.fixture
    def job_client(self):
        """Create a client with mocked K8s config loading and API clients."""
        with patch("common.execution.k8s_job_client.config") as mock_config:
            mock_config.ConfigException = ConfigException
            mock_config.load_incluster_config.side_effect = ConfigException(
                "Not in cluster"
            )
            mock_config.load_kube_config.return_value = None

            with patch("common.execution.k8s_job_client.client") as mock_client:
                mock_client.BatchV1Api.return_value = MagicMock()
                mock_client.CoreV1Api.return_value = MagicMock()

                job_client = KubernetesJobClient(enabled=True)

                mock_config.load_kube_config.assert_called_once()
                yield job_client

    def test_config_failure_leaves_client_unavailable(self):
        with patch("common.execution.k8s_job_client.config") as mock_config:
            mock_config.ConfigException = ConfigException
            mock_config.load_incluster_config.side_effect = ConfigException("no")
            mock_config.load_kube_config.side_effect = ConfigException("no kubeconfig")

            job_client = KubernetesJobClient(enabled=True)

        assert job_client.is_available is False
        assert job_client.get_job_status("default", "job-1") == JobStatus.UNKNOWN

    def test_create_job(self, job_client):
        manifest = {"metadata": {"name": "job-1"}}

        assert job_client.create_job("tasks", manifest) == "job-1"
        job_client.batch_v1.create_namespaced_job.assert_called_once_with(
            namespace="tasks", body=manifest
        )

    def test_create_job_api_failure_raises(self, job_client):
        job_client.batch_v1.create_namespaced_job.side_effect = ApiException(
            status=500, reason="Internal Server Error"
        )

        with pytest.raises(KubernetesError):
            job_client.create_job("tasks", {"metadata": {"name": "job-1"}})


class TestJobStatus:
    """Status precedence: conditions, then counters, then pod heuristics."""

    @pytest.fixture
    def job_client(self):
        with patch("common.execution.k8s_job_client.config"), patch(
            "common.execution.k8s_job_client.client"
        ):
            yield KubernetesJobClient(enabled=True)

    def test_failed_condition_beats_active_counter(self, job_client):
        job_client.batch_v1.read_namespaced_job.return_value = make_job(
            conditions=[make_condition("Failed")], active=1
        )

        assert job_client.get_job_status("ns", "job-1") == JobStatus.FAILED

    def test_complete_condition_beats_failed_counter(self, job_client):
        job_client.batch_v1.read_namespaced_job.return_value = make_job(
            conditions=[make_condition("Complete")], failed=2
        )

        assert job_client.get_job_status("ns", "job-1") == JobStatus.COMPLETED

    def test_false_condition_is_ignored(self, job_client):
        job_client.batch_v1.read_namespaced_job.return_value = make_job(
            conditions=[make_condition("Failed", status="False")], active=1
        )

        assert job_client.get_job_status("ns", "job-1") == JobStatus.ACTIVE

    @pytest.mark.parametrize(
        "counters,expected",
        [
            ({"active": 1, "succeeded": 1}, JobStatus.ACTIVE),
            ({"succeeded": 1, "failed": 1}, JobStatus.SUCCEEDED),
            ({"failed": 1}, JobStatus.FAILED),
        ],
    )
    def test_counters_in_order(self, job_client, counters, expected):
        job_client.batch_v1.read_namespaced_job.return_value = make_job(**counters)

        assert job_client.get_job_status("ns", "job-1") == expected
        job_client.core_v1.list_namespaced_pod.assert_not_called()

    def test_active_counter_beats_crash_looping_pod(self, job_client):
        job_client.batch_v1.read_namespaced_job.return_value = make_job(active=1)
        job_client.core_v1.list_namespaced_pod.return_value = MagicMock(
            items=[make_pod(waiting_reason="CrashLoopBackOff")]
        )

        assert job_client.get_job_status("ns", "job-1") == JobStatus.ACTIVE

    def test_crash_loop_detected_from_pod_waiting_reason(self, job_client):
        job_client.batch_v1.read_namespaced_job.return_value = make_job()
        job_client.core_v1.list_namespaced_pod.return_value = MagicMock(
            items=[make_pod(waiting_reason="CrashLoopBackOff")]
        )

        assert job_client.get_job_status("ns", "job-1") == JobStatus.CRASH_LOOP_BACKOFF
        job_client.core_v1.list_namespaced_pod.assert_called_once_with(
            namespace="ns", label_selector="job-name=job-1"
        )

    def test_crash_loop_detected_on_init_container(self, job_client):
        job_client.batch_v1.read_namespaced_job.return_value = make_job()
        job_client.core_v1.list_namespaced_pod.return_value = MagicMock(
            items=[make_pod(init_waiting_reason="CrashLoopBackOff")]
        )

        assert job_client.get_job_status("ns", "job-1") == JobStatus.CRASH_LOOP_BACKOFF

    def test_pending_when_no_signal(self, job_client):
        job_client.batch_v1.read_namespaced_job.return_value = make_job()
        job_client.core_v1.list_namespaced_pod.return_value = MagicMock(
            items=[make_pod(waiting_reason="ContainerCreating")]
        )

        assert job_client.get_job_status("ns", "job-1") == JobStatus.PENDING

    def test_missing_job_is_not_found(self, job_client):
        job_client.batch_v1.read_namespaced_job.side_effect = ApiException(status=404)

        assert job_client.get_job_status("ns", "job-1") == JobStatus.NOT_FOUND

    def test_api_error_is_error_sentinel(self, job_client):
        job_client.batch_v1.read_namespaced_job.side_effect = ApiException(status=500)

        assert job_client.get_job_status("ns", "job-1") == JobStatus.ERROR

    def test_disabled_client_reports_unknown(self):
        job_client = KubernetesJobClient(enabled=False)

        assert job_client.get_job_status("ns", "job-1") == JobStatus.UNKNOWN


class TestPvcAndCleanup:
    """Tests for PVC creation and job/PVC deletion."""

    @pytest.fixture
    def job_client(self):
        with patch("common.execution.k8s_job_client.config"), patch(
            "common.execution.k8s_job_client.client"
        ):
            yield KubernetesJobClient(enabled=True)

    def test_create_pvc_is_idempotent(self, job_client):
        job_client.core_v1.read_namespaced_persistent_volume_claim.return_value = (
            MagicMock()
        )

        assert job_client.create_pvc("ns", "pvc-1") is True
        job_client.core_v1.create_namespaced_persistent_volume_claim.assert_not_called()

    def test_create_pvc_uses_defaults_when_blank(self, job_client):
        job_client.core_v1.read_namespaced_persistent_volume_claim.side_effect = (
            ApiException(status=404)
        )

        assert job_client.create_pvc("ns", "pvc-1", owner_task_id=9) is True

        body = job_client.core_v1.create_namespaced_persistent_volume_claim.call_args[1][
            "body"
        ]
        assert body["metadata"]["name"] == "pvc-1"
        assert body["metadata"]["labels"]["task-id"] == "9"
        assert body["spec"]["accessModes"] == ["ReadWriteOnce"]
        assert body["spec"]["resources"]["requests"]["storage"] == "1Gi"
        assert "storageClassName" not in body["spec"]

    def test_create_pvc_with_explicit_storage_class(self, job_client):
        job_client.core_v1.read_namespaced_persistent_volume_claim.side_effect = (
            ApiException(status=404)
        )

        job_client.create_pvc(
            "ns", "pvc-1", storage_size="5Gi", access_mode="ReadWriteMany", storage_class="fast"
        )

        body = job_client.core_v1.create_namespaced_persistent_volume_claim.call_args[1][
            "body"
        ]
        assert body["spec"]["storageClassName"] == "fast"
        assert body["spec"]["accessModes"] == ["ReadWriteMany"]
        assert body["spec"]["resources"]["requests"]["storage"] == "5Gi"

    def test_create_pvc_lookup_error_returns_false(self, job_client):
        job_client.core_v1.read_namespaced_persistent_volume_claim.side_effect = (
            ApiException(status=403)
        )

        assert job_client.create_pvc("ns", "pvc-1") is False
        job_client.core_v1.create_namespaced_persistent_volume_claim.assert_not_called()

    def test_delete_job_uses_background_propagation(self, job_client):
        assert job_client.delete_job("ns", "job-1") is True
        job_client.batch_v1.delete_namespaced_job.assert_called_once_with(
            name="job-1", namespace="ns", propagation_policy="Background"
        )

    def test_delete_missing_job_returns_false(self, job_client):
        job_client.batch_v1.delete_namespaced_job.side_effect = ApiException(status=404)

        assert job_client.delete_job("ns", "job-1") is False

    def test_delete_missing_pvc_returns_false(self, job_client):
        job_client.core_v1.delete_namespaced_persistent_volume_claim.side_effect = (
            ApiException(status=404)
        )

        assert job_client.delete_pvc("ns", "pvc-1") is False

    def test_disabled_client_never_touches_cluster(self):
        job_client = KubernetesJobClient(enabled=False)

        assert job_client.create_pvc("ns", "pvc-1") is False
        assert job_client.delete_job("ns", "job-1") is False
        assert job_client.delete_pvc("ns", "pvc-1") is False
        with pytest.raises(KubernetesError):
            job_client.create_job("ns", {"metadata": {"name": "job-1"}})


class TestJobLogs:
    """Tests for job log retrieval sentinels."""

    @pytest.fixture
    def job_client(self):
        with patch("common.execution.k8s_job_client.config"), patch(
            "common.execution.k8s_job_client.client"
        ):
            yield KubernetesJobClient(enabled=True)

    def test_logs_of_first_pod(self, job_client):
        job_client.core_v1.list_namespaced_pod.return_value = MagicMock(
            items=[make_pod(name="job-1-aaaaa"), make_pod(name="job-1-bbbbb")]
        )
        job_client.core_v1.read_namespaced_pod_log.return_value = "done\n"

        assert job_client.get_job_logs("ns", "job-1") == "done\n"
        job_client.core_v1.read_namespaced_pod_log.assert_called_once_with(
            name="job-1-aaaaa", namespace="ns"
        )

    def test_missing_job(self, job_client):
        job_client.batch_v1.read_namespaced_job.side_effect = ApiException(status=404)

        assert job_client.get_job_logs("ns", "job-1") == JOB_NOT_FOUND_MESSAGE

    def test_no_pods(self, job_client):
        job_client.core_v1.list_namespaced_pod.return_value = MagicMock(items=[])

        assert job_client.get_job_logs("ns", "job-1") == NO_PODS_MESSAGE

    def test_api_error_is_reported_in_text(self, job_client):
        job_client.core_v1.list_namespaced_pod.side_effect = ApiException(status=500)

        assert job_client.get_job_logs("ns", "job-1").startswith("Error getting logs:")

    def test_disabled(self):
        assert KubernetesJobClient(enabled=False).get_job_logs("ns", "job-1") == (
            DISABLED_MESSAGE
        )
