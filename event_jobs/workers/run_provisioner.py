import argparse

from event_jobs.core.config import settings
from event_jobs.dispatch.controller import MessageController
from event_jobs.workers.launcher import WorkerLauncher


def setup_cli() -> argparse.Namespace:
    """Setup CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Provision Kubernetes jobs for messages on AMQP queues"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.log_level.upper(),
        help="Log level (default: from settings or INFO)",
    )
    return parser.parse_args()


def main():
    """Main entry point with command-line argument support."""
    args = setup_cli()

    WorkerLauncher().run(
        worker_factory=MessageController.from_settings,
        worker_name="Event Job Provisioner",
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
