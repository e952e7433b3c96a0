import argparse

from common.core.constants import OrchestratorMode
from common.workers.launcher import WorkerLauncher
from packages.tasks.workers.orchestrator_worker import OrchestratorWorker


def setup_cli():
    """Setup CLI arguments and return parsed args with factory parameters."""
    parser = argparse.ArgumentParser(description="Task Orchestrator")
    parser.add_argument(
        "--mode",
        type=str,
        choices=[mode.value for mode in OrchestratorMode],
        default=OrchestratorMode.ALL.value,
        help="Which scheduling loops to run (default: all)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )

    args = parser.parse_args()

    factory_args = (OrchestratorMode(args.mode),)
    factory_kwargs = {}

    return args, factory_args, factory_kwargs


def main():
    WorkerLauncher().run_with_cli(
        worker_factory=OrchestratorWorker,
        worker_name="Task Orchestrator",
        cli_setup_func=setup_cli,
    )


if __name__ == "__main__":
    main()
