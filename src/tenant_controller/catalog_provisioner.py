"""Catalog plugin: publishes the release-service and Harbor registries into
each project's application catalog and wipes the catalog on delete."""

from __future__ import annotations

import logging

from azure.core.exceptions import ClientAuthenticationError

from .catalog import CatalogClient, RegistryAttributes
from .config import Config
from .events import Event, PluginData
from .harbor import harbor_project_name
from .harbor_provisioner import HARBOR_TOKEN_KEY, HARBOR_USERNAME_KEY
from .plugins import Plugin, run_blocking, wait_until_ready

logger = logging.getLogger(__name__)

DYNAMIC_CACERTS = "use-dynamic-cacert"


class CatalogProvisioner(Plugin):
    def __init__(self, config: Config, client: CatalogClient | None = None) -> None:
        self._config = config
        self._client = client

    @property
    def name(self) -> str:
        return "Catalog Provisioner"

    @property
    def client(self) -> CatalogClient:
        if self._client is None:
            self._client = CatalogClient.from_config(self._config)
        return self._client

    async def initialize(self, data: PluginData) -> None:
        client = self.client

        async def vault_ready() -> bool:
            await run_blocking(client.initialize_client_secret)
            return True

        async def catalog_ready() -> bool:
            try:
                await run_blocking(client.list_registries)
            except ClientAuthenticationError:
                pass
            return True

        await wait_until_ready(vault_ready, name="Vault")
        await run_blocking(client.initialize_client_secret)
        await wait_until_ready(catalog_ready, name="Catalog")
        logger.info("Completed initializing catalog plugin")

    def registries(self, event: Event, data: PluginData) -> list[RegistryAttributes]:
        """The registries every project gets, in creation order."""
        config = self._config
        rs_description = "Repo on registry " + config.release_service_root_url.replace("oci://", "")
        username = data.get(HARBOR_USERNAME_KEY, "")
        token = data.get(HARBOR_TOKEN_KEY, "")

        project_name = harbor_project_name(event.organization, event.name).lower()
        oci_registry = config.harbor_server_external.replace("https://", "oci://")

        return [
            RegistryAttributes(
                name="intel-rs-helm",
                display_name="intel-rs-helm",
                description=rs_description,
                type="HELM",
                project_uuid=event.uuid,
                root_url=config.release_service_proxy_root_url,
            ),
            RegistryAttributes(
                name="intel-rs-images",
                display_name="intel-rs-image",
                description=rs_description,
                type="IMAGE",
                project_uuid=event.uuid,
                root_url=config.release_service_root_url,
            ),
            RegistryAttributes(
                name="harbor-helm-oci",
                display_name="harbor oci helm",
                description="Harbor OCI helm charts registry",
                type="HELM",
                project_uuid=event.uuid,
                root_url=f"{oci_registry}/{project_name}",
                inventory_url=f"{config.harbor_server_external}/api/v2.0/projects/{project_name}",
                username=username,
                cacerts=DYNAMIC_CACERTS,
                auth_token=token,
            ),
            RegistryAttributes(
                name="harbor-docker-oci",
                display_name="harbor oci docker",
                description="Harbor OCI docker images registry",
                type="IMAGE",
                project_uuid=event.uuid,
                root_url=f"{oci_registry}/{project_name}",
                username=username,
                cacerts=DYNAMIC_CACERTS,
                auth_token=token,
            ),
        ]

    async def create_event(self, event: Event, data: PluginData) -> None:
        for attrs in self.registries(event, data):
            try:
                await run_blocking(self.client.create_or_update_registry, attrs)
            except Exception as e:
                logger.error("Error creating registry %s: %s", attrs.name, e)
                raise

    async def delete_event(self, event: Event, data: PluginData) -> None:
        await run_blocking(self.client.wipe_project, event.uuid)
