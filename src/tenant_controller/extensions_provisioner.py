"""Extensions plugin: converges a project onto the release manifest.

For every CREATE event the manifest is loaded, the deployment packages it
lists are uploaded to the project's catalog, and the project's deployments
are diffed against the manifest's deployment list:

    present, already deployed -> skip
    present, not deployed     -> create (already-exists counts as created)
    absent                    -> delete if found

Running the same manifest twice performs no further writes to the
deployment manager, which is what makes re-enqueued events and manifest
upgrades safe.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from azure.core.exceptions import ClientAuthenticationError

from .app_deployment import AppDeploymentClient, Deployment
from .catalog import CatalogClient
from .config import Config
from .events import Event, PluginData
from .manifest import DeploymentDescriptor, DesiredState, Manifest, ManifestError, load_manifest
from .oras import OrasPuller
from .plugins import Plugin, run_blocking, wait_until_ready

logger = logging.getLogger(__name__)

PullerFactory = Callable[[str], OrasPuller]


def read_first_file(directory: Path) -> str:
    """Text of the first file (by name) in a pulled artifact directory.

    Raises:
        ManifestError: If the directory holds no files.
    """
    files = sorted(p for p in directory.iterdir() if p.is_file())
    if not files:
        raise ManifestError(f"No manifest file found in {directory}")
    return files[0].read_text(encoding="utf-8")


class ExtensionsProvisioner(Plugin):
    def __init__(
        self,
        config: Config,
        catalog: CatalogClient | None = None,
        deployments: AppDeploymentClient | None = None,
        puller_factory: PullerFactory = OrasPuller,
    ) -> None:
        self._config = config
        self._catalog = catalog
        self._deployments = deployments
        self._puller_factory = puller_factory

    @property
    def name(self) -> str:
        return "Extensions Provisioner"

    @property
    def catalog(self) -> CatalogClient:
        if self._catalog is None:
            self._catalog = CatalogClient.from_config(self._config)
        return self._catalog

    @property
    def deployments(self) -> AppDeploymentClient:
        if self._deployments is None:
            self._deployments = AppDeploymentClient.from_config(self._config)
        return self._deployments

    async def initialize(self, data: PluginData) -> None:
        if not self._config.adm_server:
            logger.info("No ADM server is set, skipping wait")
            return

        client = self.deployments

        async def adm_ready() -> bool:
            try:
                await run_blocking(client.list_deployment_names, "")
            except ClientAuthenticationError:
                pass
            return True

        await wait_until_ready(adm_ready, name="App deployment manager")

    async def load_manifest(self) -> Manifest:
        """Load the configured manifest (local override first)."""
        config = self._config
        if config.use_local_manifest:
            logger.info("Using local manifest")
            return load_manifest(config.use_local_manifest, source="USE_LOCAL_MANIFEST")

        logger.info("Using remote manifest %s", config.manifest_location)
        puller = self._puller_factory(config.release_service_base)
        try:
            directory = await run_blocking(puller.load, config.manifest_path, config.manifest_tag)
            content = await run_blocking(read_first_file, directory)
        finally:
            puller.close()
        return load_manifest(content, source=config.manifest_location)

    async def create_event(self, event: Event, data: PluginData) -> None:
        manifest = await self.load_manifest()
        logger.info("Manifest release %s", manifest.metadata.release)

        await self.upload_packages(event, manifest)

        if not self._config.adm_server:
            logger.info("No ADM server is set, skipping deployments")
            return
        await self.reconcile_deployments(event, manifest)

    async def upload_packages(self, event: Event, manifest: Manifest) -> None:
        puller = self._puller_factory(self._config.release_service_base)
        try:
            for package in manifest.lpke.deployment_packages:
                if package.desired_state is DesiredState.ABSENT:
                    # TODO: delete absent packages once their deployments are gone
                    logger.info(
                        "Skipping deployment package %s version %s as desiredState is %s",
                        package.dpkg,
                        package.version,
                        package.desired_state.value,
                    )
                    continue

                directory = await run_blocking(puller.load, f"/{package.dpkg}", package.version)
                files = sorted(p for p in directory.iterdir() if p.is_file())
                session_id = ""
                for index, path in enumerate(files):
                    artifact = await run_blocking(path.read_bytes)
                    session_id = await run_blocking(
                        self.catalog.upload_file,
                        event.uuid,
                        path.name,
                        artifact,
                        index == len(files) - 1,
                        session_id,
                    )
                logger.info(
                    "Uploaded deployment package %s version %s",
                    package.dpkg,
                    package.version,
                    extra={"files": len(files), "project_uuid": event.uuid},
                )
        finally:
            puller.close()

    async def reconcile_deployments(self, event: Event, manifest: Manifest) -> None:
        client = self.deployments
        existing: list[Deployment] = await run_blocking(client.list_deployments, event.uuid)
        names = {d.display_name for d in existing}
        keys = {d.key for d in existing}

        for desired in manifest.lpke.deployment_list:
            if desired.desired_state is DesiredState.ABSENT:
                await run_blocking(
                    client.delete_deployment,
                    desired.app_name,
                    desired.display_name,
                    desired.version,
                    desired.profile_name,
                    event.uuid,
                    True,
                )
                continue

            if is_deployed(desired, names, keys):
                logger.info("Deployment %s already exists, skipping creation", desired.display_name)
                continue

            await run_blocking(
                client.create_deployment,
                desired.app_name,
                desired.display_name,
                desired.version,
                desired.profile_name,
                event.uuid,
                desired.target_cluster_labels,
            )

    async def delete_event(self, event: Event, data: PluginData) -> None:
        # Uploaded entities go with the catalog wipe; deployments go with the project
        return None


def is_deployed(
    desired: DeploymentDescriptor, names: set[str], keys: set[tuple[str, str, str]]
) -> bool:
    if desired.display_name and desired.display_name in names:
        return True
    return desired.key in keys
