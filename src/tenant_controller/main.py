"""Main entry point for the tenant controller.

Startup sequence:
1. Load and validate configuration (exit 1 on error)
2. Start the health probe server
3. Load the project subscription from PROJECT_SUBSCRIPTION_FACTORY
4. Initialize plugins, start workers and subscribe to project notifications
5. Run until SIGTERM/SIGINT
"""

from __future__ import annotations

import asyncio
import importlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import Any

from .config import Config, ConfigurationError
from .health import HealthServer
from .manager import Manager
from .watcher import ProjectSubscription

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the HTTP pipeline
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class SubscriptionLoadError(Exception):
    """Raised when the project subscription factory cannot be loaded."""

    pass


def load_subscription(config: Config) -> ProjectSubscription | None:
    """Build the project subscription named by ``config.subscription_factory``.

    The factory is a ``module:callable`` taking the configuration.

    Returns:
        The subscription, or None when no factory is configured.

    Raises:
        SubscriptionLoadError: If the factory cannot be imported or fails.
    """
    if not config.subscription_factory:
        return None

    module_name, _, attr = config.subscription_factory.partition(":")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise SubscriptionLoadError(
            f"Cannot load subscription factory {config.subscription_factory}: {e}"
        ) from e

    try:
        return factory(config)
    except Exception as e:
        raise SubscriptionLoadError(
            f"Subscription factory {config.subscription_factory} failed: {e}"
        ) from e


async def main() -> int:
    """Run the controller.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    config.dump()
    logger.info(
        "Starting tenant controller",
        extra={
            "manifest_tag": config.manifest_tag,
            "workers": config.number_worker_threads,
        },
    )

    try:
        subscription = load_subscription(config)
    except SubscriptionLoadError as e:
        logger.error("Subscription error", extra={"error": str(e)})
        return 1
    if subscription is None:
        logger.warning("No PROJECT_SUBSCRIPTION_FACTORY set, no project events will arrive")

    manager = Manager(config)
    health = HealthServer(config.health_probe_port, lambda: manager.ready)

    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        manager.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await health.start()
        await manager.run(subscription)
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1
    finally:
        await health.stop()

    logger.info("Controller stopped")
    return 0


def run() -> None:
    """Entry point for the controller process."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
