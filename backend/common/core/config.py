from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.core.constants import Environment


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Environment Profile
    environment: Environment = Environment.LOCAL

    app_name: str = "task-orchestrator"
    debug: bool = False

    # Database Components
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "orchestrator"
    db_use_nullpool: bool = True  # The orchestrator runs as a worker process
    db_pool_size: int = 10
    db_pool_overflow: int = 5

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # OpenTelemetry
    otel_service_name: str = "task-orchestrator"
    otel_service_version: str = "0.1.0"
    otel_exporter_otlp_endpoint: Optional[str] = None  # e.g. http://collector:4318
    otel_exporter_otlp_token: Optional[str] = None

    # Kubernetes
    kubernetes_enabled: bool = True
    kubernetes_default_image: str = "task-executor:latest"
    kubernetes_default_namespace: str = "default"
    kubernetes_app_label: str = "task-orchestrator"
    default_pvc_storage_size: str = "1Gi"
    default_pvc_access_mode: str = "ReadWriteOnce"
    default_pvc_storage_class: str = ""  # Blank uses the cluster default
    job_backoff_limit: int = 4
    git_clone_image: str = "alpine/git:latest"
    job_creator_max_workers: int = 4

    # Background task processor
    task_processing_delay_seconds: float = 5.0
    task_monitoring_delay_seconds: float = 10.0
    crash_loop_backoff_timeout_seconds: float = 300.0
    missing_job_timeout_seconds: float = 120.0

    # Workspace task execution
    workspace_wait_max_attempts: int = 30
    workspace_wait_interval_seconds: float = 10.0
    task_running_timeout_minutes: int = 30
    pending_task_sweep_seconds: float = 60.0
    running_task_sweep_seconds: float = 300.0
    failed_task_retry_sweep_seconds: float = 600.0
    task_default_max_retries: int = 3
    simulated_execution_min_seconds: float = 2.0
    simulated_execution_max_seconds: float = 10.0

    # Failed workspace cleanup
    failed_workspace_grace_period_minutes: int = 30
    failed_workspace_sweep_minutes: int = 15
    workspace_ttl_ms: int = 3600000
    workspace_name_max_length: int = 32

    # Workspace provisioner (Coder REST API)
    coder_base_url: str = "http://localhost:3000"
    coder_session_token: str = ""
    coder_organization: str = "default"
    coder_user: str = "admin"
    coder_default_template_id: Optional[str] = None
    coder_connect_timeout_seconds: float = 10.0
    coder_read_timeout_seconds: float = 30.0
    coder_verify_ssl: bool = True

    # Task agent bootstrap
    agent_release_url: str = "https://github.com/task-orchestrator/task-agent/releases/latest/download/task-agent-linux-amd64"
    agent_api_url: Optional[str] = None

    @property
    def api_endpoint(self) -> str:
        """URL the in-job agent reports back to."""
        if self.agent_api_url:
            return self.agent_api_url
        if self.environment == Environment.LOCAL:
            return "http://localhost:8080"
        return "http://task-orchestrator-api:8080"


settings = Settings()
