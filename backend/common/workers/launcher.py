"""
Worker launcher: telemetry, logging, signals and lifecycle for worker entrypoints.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional, Any, Callable

from common.core.telemetry import _initialize_telemetry, get_logger


class WorkerLauncher:
    """Runs a worker exposing async start()/stop() and a running flag."""

    def __init__(self):
        self.logger = get_logger(__name__)
        self.worker_instance: Optional[Any] = None
        self._shutdown: Optional[asyncio.Event] = None

    def _setup_logging(self, level: int = logging.INFO):
        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            force=True,  # This ensures it overrides any existing configuration
        )

    def _request_shutdown(self, signum: int) -> None:
        self.logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        if self.worker_instance:
            self.worker_instance.running = False
        if self._shutdown is not None:
            self._shutdown.set()

    def _register_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._request_shutdown, signum)
            except NotImplementedError:
                # No loop signal support on this platform
                signal.signal(signum, lambda s, _frame: self._request_shutdown(s))

    async def _run_worker_async(self, worker_instance: Any, worker_name: str):
        """Start the worker, wait for it to finish or for a signal, then stop it."""
        self.worker_instance = worker_instance
        self._shutdown = asyncio.Event()
        self._register_signal_handlers()

        worker_task = None
        try:
            self.logger.info(f"Starting {worker_name}...")
            worker_task = asyncio.create_task(worker_instance.start())
            shutdown_task = asyncio.create_task(self._shutdown.wait())
            done, _ = await asyncio.wait(
                {worker_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
            )
            shutdown_task.cancel()
            if worker_task in done:
                worker_task.result()
        except Exception as e:
            self.logger.error(f"Worker failed with error: {e}", exc_info=True)
        finally:
            try:
                self.logger.info("Performing worker cleanup...")
                await worker_instance.stop()
                if worker_task is not None and not worker_task.done():
                    worker_task.cancel()
                    await asyncio.gather(worker_task, return_exceptions=True)
                self.logger.info("Worker shutdown complete")
            except Exception as cleanup_error:
                self.logger.error(f"Error during cleanup: {cleanup_error}")

    def run(
        self,
        worker_factory: Callable,
        worker_name: str,
        setup_logging: bool = True,
        log_level: int = logging.INFO,
        factory_args: tuple = (),
        factory_kwargs: dict = None,
    ):
        """
        Main entry point to run a worker.

        Args:
            worker_factory: Function/class that creates the worker instance
            worker_name: Human readable name for logging
            setup_logging: Whether to setup logging configuration
            log_level: Root log level
            factory_args: Args to pass to worker factory
            factory_kwargs: Kwargs to pass to worker factory
        """
        if factory_kwargs is None:
            factory_kwargs = {}

        _initialize_telemetry()

        if setup_logging:
            self._setup_logging(log_level)
        logging.getLogger().setLevel(log_level)

        self.logger.info(f"Configuring {worker_name}...")
        worker_instance = worker_factory(*factory_args, **factory_kwargs)

        try:
            asyncio.run(self._run_worker_async(worker_instance, worker_name))
        except KeyboardInterrupt:
            self.logger.info("Final keyboard interrupt caught, exiting...")
            sys.exit(0)

    def run_with_cli(
        self,
        worker_factory: Callable,
        worker_name: str,
        setup_logging: bool = True,
        cli_setup_func: Optional[Callable] = None,
    ):
        """
        Run worker with CLI argument parsing support.

        Args:
            cli_setup_func: Function that sets up argument parser and returns (args, factory_args, factory_kwargs)
        """
        log_level = logging.INFO
        if cli_setup_func:
            args, factory_args, factory_kwargs = cli_setup_func()
            if hasattr(args, "log_level"):
                log_level = getattr(logging, args.log_level)
        else:
            factory_args, factory_kwargs = (), {}

        self.run(
            worker_factory=worker_factory,
            worker_name=worker_name,
            setup_logging=setup_logging,
            log_level=log_level,
            factory_args=factory_args,
            factory_kwargs=factory_kwargs,
        )
