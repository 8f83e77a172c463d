"""Harbor plugin: per-project registry project, member groups and robot."""

from __future__ import annotations

import logging

from azure.core.exceptions import ResourceExistsError

from .config import Config
from .events import Event, PluginData
from .harbor import HarborClient
from .plugins import Plugin, run_blocking, wait_until_ready

logger = logging.getLogger(__name__)

HARBOR_USERNAME_KEY = "harborUsername"
HARBOR_TOKEN_KEY = "harborToken"

ROBOT_NAME = "catalog-apps-read-write"

# Harbor project roles
ROLE_MAINTAINER = 4
ROLE_GUEST = 3


def harbor_group_name(event: Event, kind: str) -> str:
    return f"{event.uuid}_Edge-{kind}-Group"


class HarborProvisioner(Plugin):
    def __init__(self, config: Config, client: HarborClient | None = None) -> None:
        self._config = config
        self._client = client

    @property
    def name(self) -> str:
        return "Harbor Provisioner"

    @property
    def client(self) -> HarborClient:
        if self._client is None:
            self._client = HarborClient.from_secret(
                self._config.harbor_server,
                self._config.keycloak_server,
                self._config.harbor_namespace,
                self._config.harbor_admin_credential,
            )
        return self._client

    async def initialize(self, data: PluginData) -> None:
        client = await run_blocking(lambda: self.client)

        async def ping() -> bool:
            await run_blocking(client.ping)
            return True

        await wait_until_ready(ping, name="Harbor")
        await run_blocking(client.configurations)

    async def create_event(self, event: Event, data: PluginData) -> None:
        organization = event.organization.lower()
        name = event.name.lower()
        client = self.client

        await run_blocking(client.create_project, organization, name)
        await run_blocking(
            client.set_member_permissions,
            ROLE_GUEST,
            organization,
            name,
            harbor_group_name(event, "Operator"),
        )
        await run_blocking(
            client.set_member_permissions,
            ROLE_MAINTAINER,
            organization,
            name,
            harbor_group_name(event, "Manager"),
        )

        # The robot secret is only returned on creation, so always recreate
        await self._delete_robot(organization, name)
        try:
            robot = await run_blocking(client.create_robot, ROBOT_NAME, organization, name)
        except ResourceExistsError:
            logger.info("Robot already exists, trying to delete and recreate")
            await self._delete_robot(organization, name)
            robot = await run_blocking(client.create_robot, ROBOT_NAME, organization, name)

        data[HARBOR_USERNAME_KEY] = robot.name
        data[HARBOR_TOKEN_KEY] = robot.secret

    async def _delete_robot(self, organization: str, name: str) -> None:
        robot = await run_blocking(self.client.get_robot, organization, name, ROBOT_NAME)
        if robot is not None:
            await run_blocking(self.client.delete_robot, robot.id)

    async def delete_event(self, event: Event, data: PluginData) -> None:
        await run_blocking(
            self.client.delete_project, event.organization.lower(), event.name.lower()
        )
