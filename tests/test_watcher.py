"""Tests for the watcher hook state machine."""

from __future__ import annotations

import pytest

from tenant_controller.events import EventKind
from tenant_controller.watcher import (
    APP_NAME,
    MANIFEST_TAG_ANNOTATION,
    InvalidProjectError,
    WatcherHook,
    WatcherRecord,
    WatcherStatus,
    validate_project_names,
)
from tenant_mock import MockProject, MockSubscription, RecordingProjectManager


def seed_watcher(
    project: MockProject, status: WatcherStatus, tag: str | None = None, message: str = ""
) -> None:
    annotations = {MANIFEST_TAG_ANNOTATION: tag} if tag is not None else {}
    project.add_active_watcher(
        WatcherRecord(status=status, message=message, timestamp=1, annotations=annotations)
    )


@pytest.fixture
def manager() -> RecordingProjectManager:
    return RecordingProjectManager(manifest_tag="v1.3.5")


@pytest.fixture
def hook(manager: RecordingProjectManager) -> WatcherHook:
    return WatcherHook(manager)


class TestValidateProjectNames:
    """Tests for validate_project_names."""

    def test_valid(self) -> None:
        """Test that ordinary names pass."""
        validate_project_names("acme", "web", "6f1c2a9e-0000-4000-8000-000000000001")

    @pytest.mark.parametrize(
        "organization,name,uuid,match",
        [
            ("", "web", "u-1", "organization name is empty"),
            ("acme", "", "u-1", "project name is empty"),
            ("a" * 64, "web", "u-1", "organization name exceeds 63"),
            ("acme", "w" * 64, "u-1", "project name exceeds 63"),
            ("acme", "web\nprod", "u-1", "contains a newline"),
            ("acme", "web", "", "project UUID is empty"),
            ("acme", "web", "u" * 37, "project UUID exceeds 36"),
        ],
    )
    def test_invalid(self, organization: str, name: str, uuid: str, match: str) -> None:
        """Test each rejected name shape."""
        with pytest.raises(InvalidProjectError, match=match):
            validate_project_names(organization, name, uuid)

    def test_boundary_lengths_accepted(self) -> None:
        """Test that names at the maximum length are accepted."""
        validate_project_names("a" * 63, "w" * 63, "u" * 36)


class TestProjectCreated:
    """Tests for WatcherHook.project_created."""

    def test_new_project(self, hook: WatcherHook, manager: RecordingProjectManager) -> None:
        """Test that a project without a record gets IN_PROGRESS and one CREATE."""
        project = MockProject("web")

        hook.project_created(project)

        record = project.record(APP_NAME)
        assert record is not None
        assert record.status is WatcherStatus.IN_PROGRESS
        assert record.message == "Creating"
        assert record.timestamp > 0
        assert len(manager.created) == 1
        event = manager.created[0]
        assert event.kind is EventKind.CREATE
        assert (event.organization, event.name, event.uuid) == ("acme", "web", project.uid)
        assert event.project is project

    def test_idle_same_tag_is_noop(
        self, hook: WatcherHook, manager: RecordingProjectManager
    ) -> None:
        """Test that an already provisioned project is left alone."""
        project = MockProject("web")
        seed_watcher(project, WatcherStatus.IDLE, tag="v1.3.5", message="Created")

        hook.project_created(project)

        assert manager.created == []
        assert len(project.watchers[APP_NAME].history) == 1

    def test_idle_other_tag_upgrades(
        self, hook: WatcherHook, manager: RecordingProjectManager
    ) -> None:
        """Test that a manifest tag change re-enqueues CREATE."""
        project = MockProject("web")
        seed_watcher(project, WatcherStatus.IDLE, tag="v1.2.0", message="Created")

        hook.project_created(project)

        assert len(manager.created) == 1

    def test_idle_without_tag_upgrades(
        self, hook: WatcherHook, manager: RecordingProjectManager
    ) -> None:
        """Test that an IDLE record with no tag annotation is reprocessed."""
        project = MockProject("web")
        seed_watcher(project, WatcherStatus.IDLE)

        hook.project_created(project)

        assert len(manager.created) == 1

    @pytest.mark.parametrize("status", [WatcherStatus.IN_PROGRESS, WatcherStatus.ERROR])
    def test_unfinished_status_reprocessed(
        self, hook: WatcherHook, manager: RecordingProjectManager, status: WatcherStatus
    ) -> None:
        """Test that IN_PROGRESS and ERROR records are re-enqueued."""
        project = MockProject("web")
        seed_watcher(project, status, tag="v1.3.5")

        hook.project_created(project)

        assert len(manager.created) == 1

    def test_deleted_project_enqueues_delete(
        self, hook: WatcherHook, manager: RecordingProjectManager
    ) -> None:
        """Test that an add notification for a deleted project becomes DELETE."""
        project = MockProject("web", deleted=True)

        hook.project_created(project)

        assert manager.created == []
        assert len(manager.deleted) == 1
        assert manager.deleted[0].kind is EventKind.DELETE

    def test_invalid_name_sets_error(
        self, hook: WatcherHook, manager: RecordingProjectManager
    ) -> None:
        """Test that validation failure marks ERROR and enqueues nothing."""
        project = MockProject("w" * 64)

        with pytest.raises(InvalidProjectError):
            hook.project_created(project)

        record = project.record(APP_NAME)
        assert record is not None
        assert record.status is WatcherStatus.ERROR
        assert "exceeds 63" in record.message
        assert manager.created == []

    def test_missing_organization_rejected(
        self, hook: WatcherHook, manager: RecordingProjectManager
    ) -> None:
        """Test that a failed org lookup leads to a validation error."""
        project = MockProject("web", org=None)

        with pytest.raises(InvalidProjectError, match="organization name is empty"):
            hook.project_created(project)

        assert manager.created == []

    def test_watcher_store_failure_does_not_block(
        self, hook: WatcherHook, manager: RecordingProjectManager
    ) -> None:
        """Test that watcher store errors are logged and the event is still enqueued."""
        project = MockProject("web")
        project.fail_watcher_ops = True

        hook.project_created(project)

        assert len(manager.created) == 1
        assert project.watchers == {}


class TestSubscription:
    """Tests for subscribing the hook to notifications."""

    def test_subscribe_creates_project_watcher(self, hook: WatcherHook) -> None:
        """Test that subscribing registers the controller's project watcher."""
        subscription = MockSubscription()

        hook.subscribe(subscription)

        assert APP_NAME in subscription.project_watchers

    def test_subscribe_with_existing_watcher(
        self, hook: WatcherHook, manager: RecordingProjectManager
    ) -> None:
        """Test that an existing project watcher is not an error."""
        subscription = MockSubscription(watcher_exists=True)

        hook.subscribe(subscription)
        subscription.add_project(MockProject("web"))

        assert len(manager.created) == 1

    def test_callback_swallows_invalid_project(
        self, hook: WatcherHook, manager: RecordingProjectManager
    ) -> None:
        """Test that a rejected project does not escape the notification callback."""
        subscription = MockSubscription()
        hook.subscribe(subscription)

        subscription.add_project(MockProject(""))

        assert manager.created == []

    def test_update_only_acts_on_deletion(
        self, hook: WatcherHook, manager: RecordingProjectManager
    ) -> None:
        """Test that update notifications only trigger DELETE."""
        subscription = MockSubscription()
        hook.subscribe(subscription)
        project = MockProject("web")

        subscription.update_project(project)
        assert manager.deleted == []

        project.is_deleted = True
        subscription.update_project(project)
        assert len(manager.deleted) == 1


class TestStatusUpdates:
    """Tests for the status helpers used by the manager."""

    def test_set_status_idle_stamps_tag(self, hook: WatcherHook) -> None:
        """Test that finishing a create stamps the manifest tag."""
        project = MockProject("web")
        seed_watcher(project, WatcherStatus.IN_PROGRESS, message="Creating")

        hook.set_status_idle(project, manifest_tag="v1.3.5")

        record = project.record(APP_NAME)
        assert record is not None
        assert record.status is WatcherStatus.IDLE
        assert record.message == "Created"
        assert record.manifest_tag == "v1.3.5"

    def test_set_status_idle_already_idle_same_tag(self, hook: WatcherHook) -> None:
        """Test that an IDLE record with the same tag is not rewritten."""
        project = MockProject("web")
        seed_watcher(project, WatcherStatus.IDLE, tag="v1.3.5", message="Created")

        hook.set_status_idle(project, manifest_tag="v1.3.5")

        assert len(project.watchers[APP_NAME].history) == 1

    def test_set_status_idle_keeps_message_on_tag_change(self, hook: WatcherHook) -> None:
        """Test that a tag-only change keeps the IDLE message and timestamp."""
        project = MockProject("web")
        seed_watcher(project, WatcherStatus.IDLE, tag="v1.2.0", message="Created")

        hook.set_status_idle(project, manifest_tag="v1.3.5")

        record = project.record(APP_NAME)
        assert record is not None
        assert record.manifest_tag == "v1.3.5"
        assert record.timestamp == 1

    def test_set_status_error(self, hook: WatcherHook) -> None:
        """Test that ERROR carries the message."""
        project = MockProject("web")
        seed_watcher(project, WatcherStatus.IN_PROGRESS)

        hook.set_status_error(project, "harbor unreachable")

        record = project.record(APP_NAME)
        assert record is not None
        assert record.status is WatcherStatus.ERROR
        assert record.message == "harbor unreachable"

    def test_status_without_record_is_noop(self, hook: WatcherHook) -> None:
        """Test that status helpers tolerate a missing record or project."""
        project = MockProject("web")

        hook.set_status_in_progress(project, "working")
        hook.set_status_error(None, "boom")
        hook.set_status_idle(project)

        assert project.watchers == {}

    def test_update_failure_is_logged(self, hook: WatcherHook) -> None:
        """Test that a failing watcher update does not raise."""
        project = MockProject("web")
        seed_watcher(project, WatcherStatus.IN_PROGRESS)
        watcher = project.watchers[APP_NAME]
        project.fail_watcher_ops = True

        hook.set_status_error(project, "boom")

        assert len(watcher.history) == 1

    def test_stop_watching(self, hook: WatcherHook) -> None:
        """Test that stop_watching removes the record."""
        project = MockProject("web")
        seed_watcher(project, WatcherStatus.IDLE)

        hook.stop_watching(project)

        assert project.watchers == {}
        assert project.deleted_watchers == [APP_NAME]

    def test_stop_watching_missing(self, hook: WatcherHook) -> None:
        """Test that removing a missing record is tolerated."""
        project = MockProject("web")

        hook.stop_watching(project)

        assert project.deleted_watchers == []
