"""
Process launcher: telemetry, signals, lifecycle and exit codes.
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Callable, Optional

from event_jobs.core.telemetry import LOG_FORMAT, _initialize_telemetry, get_logger

EXIT_OK = 0
EXIT_FATAL = 1


class WorkerLauncher:
    """Runs a controller until a signal arrives or it reports a fatal error."""

    def __init__(self):
        self.logger = get_logger(__name__)
        self.worker_instance: Optional[Any] = None
        self._shutdown: Optional[asyncio.Event] = None

    def _setup_logging(self, level: str = "INFO"):
        logging.basicConfig(
            level=getattr(logging, level.upper(), logging.INFO),
            format=LOG_FORMAT,
            force=True,  # This ensures it overrides any existing configuration
        )

    def _signal_handler(self, signum: int) -> None:
        """Handle SIGINT/SIGTERM gracefully."""
        self.logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        if self._shutdown:
            self._shutdown.set()

    def _register_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._signal_handler, signum)

    async def _run_worker_async(self, worker_instance: Any, worker_name: str) -> int:
        """Run worker with common lifecycle management. Returns the exit code."""
        self.worker_instance = worker_instance
        self._shutdown = asyncio.Event()
        self._register_signal_handlers()

        exit_code = EXIT_OK
        try:
            self.logger.info(f"Starting {worker_name}...")
            await worker_instance.start()

            fatal_wait = asyncio.create_task(worker_instance.wait_fatal())
            shutdown_wait = asyncio.create_task(self._shutdown.wait())
            done, pending = await asyncio.wait(
                {fatal_wait, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()

            if fatal_wait in done:
                fatal = fatal_wait.result()
                self.logger.error(
                    f"{worker_name} stopped on fatal error: {fatal.reason}: {fatal.error}"
                )
                exit_code = EXIT_FATAL
        except Exception as e:
            self.logger.error(f"Worker failed with error: {e}", exc_info=True)
            exit_code = EXIT_FATAL
        finally:
            try:
                self.logger.info("Performing worker cleanup...")
                await worker_instance.stop()
                self.logger.info("Worker shutdown complete")
            except Exception as cleanup_error:
                self.logger.error(f"Error during cleanup: {cleanup_error}")

        return exit_code

    def run(
        self,
        worker_factory: Callable,
        worker_name: str,
        setup_logging: bool = True,
        log_level: str = "INFO",
        factory_args: tuple = (),
        factory_kwargs: dict = None,
    ):
        """
        Main entry point to run a worker. Exits the process when it finishes.

        Args:
            worker_factory: Function/class that creates the worker instance
            worker_name: Human readable name for logging
            setup_logging: Whether to setup logging configuration
            log_level: Root log level when setup_logging is set
            factory_args: Args to pass to worker factory
            factory_kwargs: Kwargs to pass to worker factory
        """
        if factory_kwargs is None:
            factory_kwargs = {}

        _initialize_telemetry()

        if setup_logging:
            self._setup_logging(log_level)

        self.logger.info(f"Configuring {worker_name}...")

        try:
            worker_instance = worker_factory(*factory_args, **factory_kwargs)
        except Exception as e:
            self.logger.error(f"Could not create {worker_name}: {e}", exc_info=True)
            sys.exit(EXIT_FATAL)

        exit_code = asyncio.run(self._run_worker_async(worker_instance, worker_name))
        sys.exit(exit_code)
