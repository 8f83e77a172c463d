"""In-memory doubles for testing the tenant controller.

Provides a project graph with watcher records (the controller's only durable
state), recording backend clients for every plugin, and a fake HTTP response
for exercising the REST clients without a network.

Usage:
    from tenant_mock import MockProject, MockHarbor, RecordingProjectManager

    manager = RecordingProjectManager(manifest_tag="v1.0.0")
    hook = WatcherHook(manager)
    hook.project_created(MockProject("proj", org="acme"))

    assert len(manager.created) == 1
"""

from .backends import MockAppDeployment, MockCatalog, MockHarbor, MockPuller
from .graph import (
    MockActiveWatcher,
    MockFolder,
    MockOrganization,
    MockProject,
    MockSubscription,
    RecordingProjectManager,
)
from .http import FakeResponse, FakeSender, StubAuth

__all__ = [
    "FakeResponse",
    "FakeSender",
    "MockActiveWatcher",
    "MockAppDeployment",
    "MockCatalog",
    "MockFolder",
    "MockHarbor",
    "MockOrganization",
    "MockProject",
    "MockPuller",
    "MockSubscription",
    "RecordingProjectManager",
    "StubAuth",
]
