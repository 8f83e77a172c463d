"""Provisioning plugin contract, registry and dispatcher.

Each plugin integrates one backend. Plugins are registered once at startup
and every event fans out to them in registration order, so a plugin may
consume PluginData published by an earlier one (the Harbor robot credential
is read by the catalog plugin).

There is no rollback: when plugin k fails, the side effects of plugins
0..k-1 stay in place and the whole chain is retried later. Every plugin step
must therefore be idempotent (create-or-update, get-before-create, delete
with missing-is-ok).
"""

from __future__ import annotations

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from .events import Event, EventKind, PluginData

if TYPE_CHECKING:
    from .watcher import WatcherHook

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Startup dependency wait: exponential backoff with a ceiling
READY_MAX_ATTEMPTS = 12
READY_INITIAL_DELAY_SECONDS = 5.0
READY_MAX_DELAY_SECONDS = 60.0
READY_PROBE_TIMEOUT_SECONDS = 10.0

# Upper bound for a single blocking backend call
DEFAULT_CALL_TIMEOUT_SECONDS = 30.0


class DependencyNotReadyError(Exception):
    """Raised when a backend is still unreachable after the startup wait."""

    pass


class Plugin(ABC):
    """A unit of provisioning logic for one backend."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable plugin name used in logs and watcher messages."""

    @abstractmethod
    async def initialize(self, data: PluginData) -> None:
        """Prepare the backend once at startup."""

    @abstractmethod
    async def create_event(self, event: Event, data: PluginData) -> None:
        """Provision backend resources for a created project."""

    @abstractmethod
    async def delete_event(self, event: Event, data: PluginData) -> None:
        """Release backend resources of a deleted project."""


class PluginRegistry:
    """Ordered set of plugins; the order is the fan-out order for every event."""

    def __init__(self) -> None:
        self._plugins: list[Plugin] = []

    @property
    def plugins(self) -> tuple[Plugin, ...]:
        return tuple(self._plugins)

    def register(self, plugin: Plugin) -> None:
        """Append a plugin. Callers must not register the same plugin twice."""
        self._plugins.append(plugin)

    async def initialize(self) -> None:
        """Initialize every plugin in order.

        Raises:
            Exception: The first plugin failure, unchanged. Startup must abort.
        """
        data: PluginData = {}
        for plugin in self._plugins:
            logger.info("Initializing plugin %s", plugin.name)
            await plugin.initialize(data)
            logger.info("Done initializing plugin %s", plugin.name)
        logger.info("Done initializing plugins", extra={"plugin_count": len(self._plugins)})

    async def dispatch(self, event: Event, hook: WatcherHook | None = None) -> None:
        """Send one event through every plugin in registration order.

        Args:
            event: The lifecycle event.
            hook: Optional watcher hook used to publish per-plugin progress.

        Raises:
            Exception: The first plugin failure, unchanged. Later plugins are
                not invoked for this attempt.
        """
        data: PluginData = {}
        for plugin in self._plugins:
            logger.info("Sending event %s to %s", event, plugin.name)
            if hook is not None and event.project is not None:
                hook.set_status_in_progress(
                    event.project,
                    f"Processing project {event.kind.value} with {plugin.name}",
                )

            try:
                if event.kind is EventKind.CREATE:
                    await plugin.create_event(event, data)
                else:
                    await plugin.delete_event(event, data)
            except Exception as e:
                logger.info(
                    "Error processing event %s by %s: %s",
                    event,
                    plugin.name,
                    e,
                    extra={"plugin": plugin.name, "error_type": type(e).__name__},
                )
                raise

            logger.info("Successfully processed event %s by %s", event, plugin.name)

        logger.info("Done dispatching event %s", event)


async def run_blocking(
    func: Callable[..., T],
    *args: Any,
    timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
    **kwargs: Any,
) -> T:
    """Run a blocking backend call on the default executor with a timeout.

    Raises:
        TimeoutError: If the call does not finish within ``timeout``.
    """
    loop = asyncio.get_running_loop()
    return await asyncio.wait_for(
        loop.run_in_executor(None, functools.partial(func, *args, **kwargs)),
        timeout=timeout,
    )


async def wait_until_ready(
    probe: Callable[[], Awaitable[bool]],
    *,
    name: str,
    max_attempts: int = READY_MAX_ATTEMPTS,
    initial_delay: float = READY_INITIAL_DELAY_SECONDS,
    max_delay: float = READY_MAX_DELAY_SECONDS,
    probe_timeout: float = READY_PROBE_TIMEOUT_SECONDS,
) -> None:
    """Wait for a backend with exponential backoff (doubling, capped).

    Args:
        probe: Coroutine factory returning True when the backend is usable.
            Exceptions count as "not ready".
        name: Dependency name for logs.
        max_attempts: Probes before giving up.
        initial_delay: Delay after the first failed probe.
        max_delay: Ceiling for the delay.
        probe_timeout: Timeout applied to each probe.

    Raises:
        DependencyNotReadyError: If the backend never became ready.
    """
    logger.info("Waiting for %s", name)
    delay = initial_delay
    last_error: BaseException | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            if await asyncio.wait_for(probe(), timeout=probe_timeout):
                logger.info("%s ready", name)
                return
            last_error = None
        except Exception as e:
            last_error = e

        if attempt == max_attempts:
            break

        logger.info(
            "%s not ready (attempt %d/%d), retrying in %.1fs",
            name,
            attempt,
            max_attempts,
            delay,
            extra={"dependency": name, "error": str(last_error) if last_error else None},
        )
        await asyncio.sleep(delay)
        delay = min(delay * 2, max_delay)

    message = f"{name} not available after {max_attempts} attempts"
    if last_error is not None:
        raise DependencyNotReadyError(f"{message}: {last_error}") from last_error
    raise DependencyNotReadyError(message)
