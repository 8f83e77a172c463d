"""Event worker pool with a bounded retry loop.

Project notifications are turned into events and queued. A fixed number of
worker tasks drain the queue; each event is retried at a fixed interval until
the plugin chain succeeds or the retry budget runs out. The outcome is
published on the project's watcher record:

    success (create) -> IDLE "Created" with the configured manifest tag
    success (delete) -> IDLE, then the watcher record is removed
    budget exceeded  -> ERROR with the last error, event dropped

The queue lives in memory only. Events lost on restart are recovered because
the subscription replays every project on resync and the watcher state
machine re-enqueues anything that is not IDLE with the current manifest tag.
"""

from __future__ import annotations

import asyncio
import logging
import time

from .catalog_provisioner import CatalogProvisioner
from .config import Config
from .events import Event, EventKind
from .extensions_provisioner import ExtensionsProvisioner
from .harbor_provisioner import HarborProvisioner
from .plugins import PluginRegistry
from .watcher import ProjectHandle, ProjectSubscription, WatcherHook

logger = logging.getLogger(__name__)


class ProvisioningTimeoutError(Exception):
    """Raised when an event keeps failing past the retry budget."""

    pass


def describe_error(error: BaseException) -> str:
    """Render an exception for status messages, including empty ones."""
    return str(error) or type(error).__name__


class Manager:
    """Owns the event queue, the worker tasks and the plugin registry."""

    def __init__(self, config: Config, registry: PluginRegistry | None = None) -> None:
        """Initialize the manager.

        Args:
            config: Validated controller configuration.
            registry: Pre-built plugin registry. When omitted the Harbor,
                Catalog and Extensions plugins are registered on start.
        """
        self._config = config
        self._registry = registry
        self._hook = WatcherHook(self)
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._shutdown_event = asyncio.Event()
        self._ready = False

    @property
    def config(self) -> Config:
        return self._config

    @property
    def hook(self) -> WatcherHook:
        return self._hook

    @property
    def manifest_tag(self) -> str:
        return self._config.manifest_tag

    @property
    def ready(self) -> bool:
        """True once all plugins are initialized and workers are running."""
        return self._ready

    def create_project(
        self, organization: str, name: str, uuid: str, project: ProjectHandle | None = None
    ) -> None:
        """Queue a CREATE event. Safe to call from any thread."""
        self._enqueue(Event(EventKind.CREATE, organization, name, uuid, project))

    def delete_project(
        self, organization: str, name: str, uuid: str, project: ProjectHandle | None = None
    ) -> None:
        """Queue a DELETE event. Safe to call from any thread."""
        self._enqueue(Event(EventKind.DELETE, organization, name, uuid, project))

    def _enqueue(self, event: Event) -> None:
        logger.info("Queueing event %s", event)
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is None or running is self._loop:
            self._queue.put_nowait(event)
        else:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def _build_registry(self) -> PluginRegistry:
        registry = PluginRegistry()
        registry.register(HarborProvisioner(self._config))
        registry.register(CatalogProvisioner(self._config))
        registry.register(ExtensionsProvisioner(self._config))
        return registry

    async def start(self) -> None:
        """Initialize plugins and spawn the worker tasks.

        Raises:
            Exception: Any plugin initialization failure, unchanged.
        """
        self._loop = asyncio.get_running_loop()
        if self._registry is None:
            self._registry = self._build_registry()

        await self._registry.initialize()

        for index in range(self._config.number_worker_threads):
            task = asyncio.create_task(self._worker(index), name=f"event-worker-{index}")
            self._workers.append(task)

        self._ready = True
        logger.info(
            "Manager started",
            extra={
                "workers": self._config.number_worker_threads,
                "manifest_tag": self.manifest_tag,
            },
        )

    async def run(self, subscription: ProjectSubscription | None = None) -> None:
        """Start, subscribe to project notifications and run until shutdown."""
        await self.start()
        if subscription is not None:
            self._hook.subscribe(subscription)

        await self._shutdown_event.wait()
        await self.stop()

    def shutdown(self) -> None:
        """Signal the manager to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def stop(self) -> None:
        """Cancel the worker tasks. In-flight events are abandoned."""
        self._ready = False
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Manager stopped", extra={"pending_events": self._queue.qsize()})

    async def join(self) -> None:
        """Wait until every queued event has been processed."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        logger.info("Worker %d started", index)
        while True:
            event = await self._queue.get()
            try:
                await self._process(event)
            finally:
                self._queue.task_done()

    async def _process(self, event: Event) -> None:
        try:
            await self.handle_project_event(event)
        except ProvisioningTimeoutError as e:
            cause = e.__cause__ if e.__cause__ is not None else e
            logger.error(
                "Giving up on event %s",
                event,
                extra={"error": describe_error(cause), "error_type": type(cause).__name__},
            )
            self._hook.set_status_error(event.project, describe_error(cause))
            return
        except Exception as e:
            logger.exception("Unexpected error processing event %s", event)
            self._hook.set_status_error(event.project, describe_error(e))
            return

        if event.kind is EventKind.CREATE:
            self._hook.set_status_idle(event.project, manifest_tag=self.manifest_tag)
        else:
            self._hook.set_status_idle(event.project)
            self._hook.stop_watching(event.project)
        logger.info("Finished event %s", event)

    async def handle_project_event(self, event: Event) -> None:
        """Dispatch one event, retrying at a fixed interval within the budget.

        Raises:
            ProvisioningTimeoutError: When an attempt fails after the retry
                budget is spent. ``__cause__`` is the last attempt's error.
        """
        if self._registry is None:
            raise RuntimeError("Manager has not been started")

        interval = self._config.initial_sleep_interval_seconds
        max_wait = self._config.max_wait_time_seconds
        started = time.monotonic()
        attempt = 0

        while True:
            attempt += 1
            try:
                await asyncio.wait_for(
                    self._registry.dispatch(event, self._hook),
                    timeout=self._config.attempt_timeout,
                )
                return
            except Exception as e:
                elapsed = time.monotonic() - started
                if elapsed > max_wait:
                    raise ProvisioningTimeoutError(
                        f"Event {event} failed after {attempt} attempts "
                        f"in {elapsed:.1f}s: {describe_error(e)}"
                    ) from e

                logger.warning(
                    "Event %s failed, retrying",
                    event,
                    extra={
                        "attempt": attempt,
                        "elapsed_seconds": round(elapsed, 3),
                        "wait_seconds": interval,
                        "error": describe_error(e),
                    },
                )
                self._hook.set_status_in_progress(
                    event.project,
                    f"Retry backoff for project {event.name}. Last error was {describe_error(e)}",
                )
                await asyncio.sleep(interval)
