"""Application catalog REST client.

Project-scoped calls carry an M2M bearer token and the ``ActiveProjectID``
header from ``VaultAuth.project_headers``.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from azure.core.exceptions import AzureError, HttpResponseError, ResourceNotFoundError

from .k8s import SecretReader
from .rest import RestClient
from .vault import KEYCLOAK_ADMIN_USER, VaultAuth

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

API_PREFIX = "/catalog.orchestrator.apis/v3"
REGISTRIES_PATH = f"{API_PREFIX}/registries"
UPLOAD_PATH = f"{API_PREFIX}/upload"

KEYCLOAK_ADMIN_PASSWORD_KEY = "admin-password"

# (list path, response key, has versions); deletion order matters since
# packages reference applications and applications reference registries
WIPE_ORDER: tuple[tuple[str, str, bool], ...] = (
    ("deployment_packages", "deploymentPackages", True),
    ("applications", "applications", True),
    ("artifacts", "artifacts", False),
    ("registries", "registries", False),
)


@dataclass(frozen=True)
class RegistryAttributes:
    """A registry entry as published into a project's catalog."""

    name: str
    display_name: str
    description: str
    type: str
    project_uuid: str
    root_url: str
    inventory_url: str = ""
    username: str = ""
    cacerts: str = ""
    auth_token: str = ""

    def to_body(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "displayName": self.display_name,
            "description": self.description,
            "type": self.type,
            "rootUrl": self.root_url,
            "inventoryUrl": self.inventory_url,
            "username": self.username,
            "cacerts": self.cacerts,
            "authToken": self.auth_token,
        }


class CatalogClient:
    """Registry, upload and wipe calls against the application catalog."""

    def __init__(
        self,
        server: str,
        auth: VaultAuth,
        *,
        keycloak_namespace: str = "",
        keycloak_secret: str = "",
    ) -> None:
        self._client = RestClient(server, service="Catalog")
        self._auth = auth
        self._keycloak_namespace = keycloak_namespace
        self._keycloak_secret = keycloak_secret

    @classmethod
    def from_config(cls, config: Config) -> CatalogClient:
        auth = VaultAuth(config.keycloak_service_base, config.vault_server, config.service_account)
        return cls(
            config.catalog_server,
            auth,
            keycloak_namespace=config.keycloak_namespace,
            keycloak_secret=config.keycloak_secret,
        )

    def initialize_client_secret(self) -> str:
        """Return an M2M token, creating the client secret when missing."""
        logger.info("Initializing client secret")
        try:
            token = self._auth.get_m2m_token()
        except AzureError as e:
            logger.info("Client secret not usable (%s), creating a new one", e)
            token = ""

        if token:
            logger.info("Client secret found")
            return token

        secrets = SecretReader(self._keycloak_namespace)
        try:
            data = secrets.read_secret(self._keycloak_secret)
        finally:
            secrets.close()
        password = data.get(KEYCLOAK_ADMIN_PASSWORD_KEY, b"").decode("utf-8")
        return self._auth.create_client_secret(KEYCLOAK_ADMIN_USER, password)

    def create_or_update_registry(self, attrs: RegistryAttributes) -> None:
        logger.info("Creating or updating registry %s url %s", attrs.name, attrs.root_url)
        headers = self._auth.project_headers(attrs.project_uuid)
        body = attrs.to_body()

        try:
            self._client.request("GET", f"{REGISTRIES_PATH}/{attrs.name}", headers=headers)
        except ResourceNotFoundError:
            self._client.request("POST", REGISTRIES_PATH, json=body, headers=headers)
            logger.info("Registry %s created", attrs.name)
            return

        self._client.request("PUT", f"{REGISTRIES_PATH}/{attrs.name}", json=body, headers=headers)
        logger.info("Registry %s updated", attrs.name)

    def list_registries(self, project_uuid: str = "") -> list[dict[str, Any]]:
        headers = self._auth.project_headers(project_uuid)
        body = self._client.get_json(REGISTRIES_PATH, headers=headers) or {}
        return body.get("registries", [])

    def upload_file(
        self,
        project_uuid: str,
        file_name: str,
        artifact: bytes,
        last_file: bool,
        session_id: str = "",
    ) -> str:
        """Upload one file of a multi-file session; ``last_file`` closes it.

        Args:
            session_id: Session returned by the previous upload of the same
                package, empty for the first file.

        Returns:
            The session id to pass with the next file, empty once closed.
        """
        logger.debug("Uploading file %s to %s last file %s", file_name, project_uuid, last_file)
        headers = self._auth.project_headers(project_uuid)
        response = self._client.request(
            "POST",
            UPLOAD_PATH,
            json={
                "sessionId": session_id,
                "upload": {
                    "fileName": file_name,
                    "artifact": base64.b64encode(artifact).decode("ascii"),
                },
                "lastUpload": last_file,
            },
            headers=headers,
        )
        if last_file:
            return ""
        return response.json().get("sessionId", "")

    def wipe_project(self, project_uuid: str) -> None:
        """Delete every catalog entity of a project.

        All entities are attempted; the first failure is raised afterwards.
        """
        logger.info("Wiping project %s", project_uuid)
        headers = self._auth.project_headers(project_uuid)
        errors: list[HttpResponseError] = []

        for kind, key, versioned in WIPE_ORDER:
            path = f"{API_PREFIX}/{kind}"
            body = self._client.get_json(path, headers=headers) or {}
            for entity in body.get(key, []):
                entity_path = f"{path}/{entity['name']}"
                if versioned:
                    entity_path += f"/versions/{entity['version']}"
                try:
                    self._client.request("DELETE", entity_path, headers=headers)
                except ResourceNotFoundError:
                    pass
                except HttpResponseError as e:
                    logger.warning("Failed to delete %s: %s", entity_path, e)
                    errors.append(e)

        if errors:
            raise errors[0]
        logger.info("Wiped project %s", project_uuid)

    def close(self) -> None:
        self._client.close()
        self._auth.close()
