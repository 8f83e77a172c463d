"""Tests for the Harbor plugin."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from tenant_controller.config import Config
from tenant_controller.events import Event, EventKind, PluginData
from tenant_controller.harbor_provisioner import (
    HARBOR_TOKEN_KEY,
    HARBOR_USERNAME_KEY,
    ROBOT_NAME,
    ROLE_GUEST,
    ROLE_MAINTAINER,
    HarborProvisioner,
    harbor_group_name,
)
from tenant_mock import MockHarbor

UUID = "6f1c2a9e-0000-4000-8000-000000000001"


def make_event(kind: EventKind = EventKind.CREATE) -> Event:
    return Event(kind, "Acme", "Web", UUID)


@pytest.fixture
def harbor() -> MockHarbor:
    return MockHarbor()


@pytest.fixture
def plugin(make_config: Callable[..., Config], harbor: MockHarbor) -> HarborProvisioner:
    return HarborProvisioner(make_config(), client=harbor)


class TestHarborProvisioner:
    """Tests for HarborProvisioner."""

    def test_group_name(self) -> None:
        """Test the member group naming."""
        assert harbor_group_name(make_event(), "Operator") == f"{UUID}_Edge-Operator-Group"

    @pytest.mark.asyncio
    async def test_initialize(self, plugin: HarborProvisioner, harbor: MockHarbor) -> None:
        """Test that initialize pings before configuring OIDC."""
        await plugin.initialize({})

        assert harbor.call_names() == ["ping", "configurations"]
        assert harbor.configured

    @pytest.mark.asyncio
    async def test_create_event(self, plugin: HarborProvisioner, harbor: MockHarbor) -> None:
        """Test project, members and robot creation with lower-cased names."""
        data: PluginData = {}

        await plugin.create_event(make_event(), data)

        assert "catalog-apps-acme-web" in harbor.projects
        assert harbor.members["catalog-apps-acme-web"] == {
            f"{UUID}_Edge-Operator-Group": ROLE_GUEST,
            f"{UUID}_Edge-Manager-Group": ROLE_MAINTAINER,
        }
        assert data[HARBOR_USERNAME_KEY] == f"robot$catalog-apps-acme-web+{ROBOT_NAME}"
        assert data[HARBOR_TOKEN_KEY]
        assert harbor.call_names()[:4] == [
            "create_project",
            "set_member_permissions",
            "set_member_permissions",
            "get_robot",
        ]

    @pytest.mark.asyncio
    async def test_create_event_recreates_robot(
        self, plugin: HarborProvisioner, harbor: MockHarbor
    ) -> None:
        """Test that re-running replaces the robot and publishes a fresh secret."""
        first: PluginData = {}
        second: PluginData = {}

        await plugin.create_event(make_event(), first)
        await plugin.create_event(make_event(), second)

        assert len(harbor.robots) == 1
        assert "delete_robot" in harbor.call_names()
        assert first[HARBOR_TOKEN_KEY] != second[HARBOR_TOKEN_KEY]

    @pytest.mark.asyncio
    async def test_create_event_robot_conflict_retried(
        self, plugin: HarborProvisioner, harbor: MockHarbor
    ) -> None:
        """Test that a robot conflict triggers delete and one retry."""
        harbor.conflict_on_next_robot = True
        data: PluginData = {}

        await plugin.create_event(make_event(), data)

        assert harbor.call_names().count("create_robot") == 2
        assert data[HARBOR_USERNAME_KEY].endswith(ROBOT_NAME)

    @pytest.mark.asyncio
    async def test_delete_event(self, plugin: HarborProvisioner, harbor: MockHarbor) -> None:
        """Test that delete removes the Harbor project."""
        await plugin.create_event(make_event(), {})

        await plugin.delete_event(make_event(EventKind.DELETE), {})

        assert harbor.projects == {}
        assert ("delete_project", "acme", "web") in harbor.calls

    @pytest.mark.asyncio
    async def test_delete_missing_project(
        self, plugin: HarborProvisioner, harbor: MockHarbor
    ) -> None:
        """Test that deleting an unknown project succeeds."""
        await plugin.delete_event(make_event(EventKind.DELETE), {})

        assert harbor.call_names() == ["delete_project"]
