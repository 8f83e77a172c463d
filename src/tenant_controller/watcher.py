"""Per-project watcher records and the project lifecycle hook.

Every tenant project carries at most one active-watcher record owned by this
controller. The record is the only durable state: its status tells whether
provisioning is running, finished or failed, and its manifest-tag annotation
tells which extension manifest the project was last provisioned with.

State machine for a project notification::

    no record                  -> create IN_PROGRESS "Creating", enqueue CREATE
    IDLE, tag == configured    -> no-op (already provisioned)
    IDLE, tag != configured    -> enqueue CREATE (upgrade)
    IN_PROGRESS or ERROR       -> enqueue CREATE (resume after restart or retry)
    project deleted            -> enqueue DELETE

Watcher store failures never block the enqueue; they are logged and the
event proceeds.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)

APP_NAME = "config-provisioner"
APP_DESCRIPTION = "Tenant project configuration provisioner"
MANIFEST_TAG_ANNOTATION = "app-orch-tenant-controller/manifest-tag"

MESSAGE_CREATING = "Creating"
MESSAGE_CREATED = "Created"

MAX_NAME_LENGTH = 63
MAX_UUID_LENGTH = 36


class WatcherStatus(str, Enum):
    """Processing status published on the watcher record."""

    IN_PROGRESS = "StatusIndicationInProgress"
    IDLE = "StatusIndicationIdle"
    ERROR = "StatusIndicationError"


@dataclass
class WatcherRecord:
    """Status of this controller's processing for one project."""

    name: str = APP_NAME
    status: WatcherStatus = WatcherStatus.IN_PROGRESS
    message: str = ""
    timestamp: int = 0
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def manifest_tag(self) -> str | None:
        return self.annotations.get(MANIFEST_TAG_ANNOTATION)


class WatcherError(Exception):
    """Raised by a watcher store when a record operation fails."""

    pass


class WatcherExistsError(WatcherError):
    """Raised when creating a watcher record that already exists."""

    pass


class WatcherNotFoundError(WatcherError):
    """Raised when a watcher record does not exist."""

    pass


class InvalidProjectError(Exception):
    """Raised when a project's identifying names cannot be provisioned."""

    pass


class ActiveWatcher(Protocol):
    """Handle to a stored watcher record."""

    @property
    def record(self) -> WatcherRecord: ...

    def update(self, record: WatcherRecord) -> None: ...


class OrganizationHandle(Protocol):
    @property
    def display_name(self) -> str: ...


class FolderHandle(Protocol):
    def get_parent(self) -> OrganizationHandle: ...


class ProjectHandle(Protocol):
    """A tenant project as seen through the resource graph."""

    @property
    def display_name(self) -> str: ...

    @property
    def uid(self) -> str: ...

    @property
    def is_deleted(self) -> bool: ...

    def get_parent(self) -> FolderHandle: ...

    def get_active_watcher(self, name: str) -> ActiveWatcher: ...

    def add_active_watcher(self, record: WatcherRecord) -> ActiveWatcher: ...

    def delete_active_watcher(self, name: str) -> None: ...


class ProjectSubscription(Protocol):
    """Source of project add/update notifications."""

    def ensure_project_watcher(self, name: str, description: str) -> None: ...

    def on_project_added(self, callback: Callable[[ProjectHandle], None]) -> None: ...

    def on_project_updated(self, callback: Callable[[ProjectHandle], None]) -> None: ...


class ProjectManager(Protocol):
    """Event sink the hook enqueues into."""

    @property
    def manifest_tag(self) -> str: ...

    def create_project(
        self, organization: str, name: str, uuid: str, project: ProjectHandle
    ) -> None: ...

    def delete_project(
        self, organization: str, name: str, uuid: str, project: ProjectHandle
    ) -> None: ...


def safe_timestamp() -> int:
    """Current epoch seconds, never negative."""
    return max(int(time.time()), 0)


def validate_project_names(organization: str, name: str, uuid: str) -> None:
    """Check that project identifiers can be used to name backend resources.

    Raises:
        InvalidProjectError: With the first violation found.
    """
    for label, value in (("organization name", organization), ("project name", name)):
        if not value:
            raise InvalidProjectError(f"{label} is empty")
        if len(value) > MAX_NAME_LENGTH:
            raise InvalidProjectError(f"{label} exceeds {MAX_NAME_LENGTH} characters")
        if "\n" in value:
            raise InvalidProjectError(f"{label} contains a newline")

    if not uuid:
        raise InvalidProjectError("project UUID is empty")
    if len(uuid) > MAX_UUID_LENGTH:
        raise InvalidProjectError(f"project UUID exceeds {MAX_UUID_LENGTH} characters")


class WatcherHook:
    """Translates project notifications into manager events and keeps the
    watcher record in step with processing."""

    def __init__(self, manager: ProjectManager) -> None:
        self._manager = manager

    def subscribe(self, subscription: ProjectSubscription) -> None:
        """Register this controller with the project subscription."""
        try:
            subscription.ensure_project_watcher(APP_NAME, APP_DESCRIPTION)
            logger.info("Created project watcher %s", APP_NAME)
        except WatcherExistsError:
            logger.warning("Project watcher %s already exists", APP_NAME)

        subscription.on_project_added(self._on_project_added)
        subscription.on_project_updated(self._on_project_updated)
        logger.info("Subscribed to project notifications", extra={"watcher": APP_NAME})

    def _on_project_added(self, project: ProjectHandle) -> None:
        try:
            self.project_created(project)
        except InvalidProjectError as e:
            logger.error("Rejected project %s: %s", project.display_name, e)
        except Exception as e:
            logger.exception("Error handling project add", extra={"error": str(e)})

    def _on_project_updated(self, project: ProjectHandle) -> None:
        try:
            self.project_updated(project)
        except Exception as e:
            logger.exception("Error handling project update", extra={"error": str(e)})

    def project_created(self, project: ProjectHandle) -> None:
        """Handle a project add notification (also sent for every project on resync).

        Raises:
            InvalidProjectError: If the project names fail validation. The
                watcher record is set to ERROR first.
        """
        if project.is_deleted:
            logger.info("Project %s is marked deleted", project.display_name)
            self._dispatch_delete(project)
            return

        organization = self.get_organization_name(project)
        logger.info(
            "Project created: %s/%s (%s)", organization, project.display_name, project.uid
        )

        watcher = self._find_watcher(project)
        if watcher is None:
            record = WatcherRecord(
                status=WatcherStatus.IN_PROGRESS,
                message=MESSAGE_CREATING,
                timestamp=safe_timestamp(),
            )
            try:
                project.add_active_watcher(record)
                logger.info("Created watcher for project %s", project.display_name)
            except WatcherExistsError:
                logger.warning("Watcher for project %s already exists", project.display_name)
            except WatcherError as e:
                logger.warning(
                    "Failed to create watcher for project %s: %s", project.display_name, e
                )
        else:
            record = watcher.record
            if record.status is WatcherStatus.IDLE:
                if record.manifest_tag == self._manager.manifest_tag:
                    logger.info(
                        "Project %s already provisioned with manifest %s",
                        project.display_name,
                        record.manifest_tag,
                    )
                    return
                logger.info(
                    "Upgrading project %s from manifest %s to %s",
                    project.display_name,
                    record.manifest_tag,
                    self._manager.manifest_tag,
                )
            else:
                logger.info(
                    "Project %s has watcher status %s, reprocessing",
                    project.display_name,
                    record.status.value,
                )

        try:
            validate_project_names(organization, project.display_name, project.uid)
        except InvalidProjectError as e:
            self.set_status_error(project, str(e))
            raise

        self._manager.create_project(organization, project.display_name, project.uid, project)

    def project_updated(self, project: ProjectHandle) -> None:
        """Handle a project update notification; only deletion is acted on."""
        if project.is_deleted:
            self._dispatch_delete(project)

    def _dispatch_delete(self, project: ProjectHandle) -> None:
        organization = self.get_organization_name(project)
        logger.info(
            "Project deleted: %s/%s (%s)", organization, project.display_name, project.uid
        )
        self._manager.delete_project(organization, project.display_name, project.uid, project)

    def get_organization_name(self, project: ProjectHandle) -> str:
        """Resolve the owning organization through project -> folder -> org.

        Lookup failures are logged and yield an empty name.
        """
        try:
            return project.get_parent().get_parent().display_name
        except Exception as e:
            logger.warning(
                "Failed to resolve organization of project %s: %s", project.display_name, e
            )
            return ""

    def _find_watcher(self, project: ProjectHandle | None) -> ActiveWatcher | None:
        if project is None:
            return None
        try:
            return project.get_active_watcher(APP_NAME)
        except WatcherNotFoundError:
            return None
        except WatcherError as e:
            logger.warning("Failed to read watcher of project %s: %s", project.display_name, e)
            return None

    def _update(self, project: ProjectHandle, watcher: ActiveWatcher, record: WatcherRecord) -> None:
        try:
            watcher.update(record)
        except WatcherError as e:
            logger.warning(
                "Failed to update watcher of project %s: %s",
                project.display_name,
                e,
                extra={"status": record.status.value},
            )

    def set_status_in_progress(self, project: ProjectHandle | None, message: str) -> None:
        watcher = self._find_watcher(project)
        if watcher is None or project is None:
            return
        record = replace(
            watcher.record,
            status=WatcherStatus.IN_PROGRESS,
            message=message,
            timestamp=safe_timestamp(),
        )
        self._update(project, watcher, record)

    def set_status_idle(
        self, project: ProjectHandle | None, manifest_tag: str | None = None
    ) -> None:
        """Mark provisioning finished, optionally stamping the manifest tag.

        An already IDLE record keeps its message and timestamp.
        """
        watcher = self._find_watcher(project)
        if watcher is None or project is None:
            return

        record = watcher.record
        changed = False
        if record.status is not WatcherStatus.IDLE:
            record = replace(
                record,
                status=WatcherStatus.IDLE,
                message=MESSAGE_CREATED,
                timestamp=safe_timestamp(),
            )
            changed = True
        if manifest_tag is not None and record.manifest_tag != manifest_tag:
            record = replace(
                record, annotations={**record.annotations, MANIFEST_TAG_ANNOTATION: manifest_tag}
            )
            changed = True

        if changed:
            self._update(project, watcher, record)

    def set_status_error(self, project: ProjectHandle | None, message: str) -> None:
        watcher = self._find_watcher(project)
        if watcher is None or project is None:
            return
        record = replace(
            watcher.record,
            status=WatcherStatus.ERROR,
            message=message,
            timestamp=safe_timestamp(),
        )
        self._update(project, watcher, record)

    def stop_watching(self, project: ProjectHandle | None) -> None:
        """Remove this controller's watcher record from the project."""
        if project is None:
            return
        try:
            project.delete_active_watcher(APP_NAME)
            logger.info("Stopped watching project %s", project.display_name)
        except WatcherNotFoundError:
            logger.warning("Watcher for project %s not found", project.display_name)
        except WatcherError as e:
            logger.warning("Failed to delete watcher of project %s: %s", project.display_name, e)
