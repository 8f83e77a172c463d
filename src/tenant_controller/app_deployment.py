"""App deployment manager REST client."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError

from .rest import RestClient
from .vault import VaultAuth

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

DEPLOYMENTS_PATH = "/deployment.orchestrator.apis/v1/deployments"
DEPLOYMENT_TYPE = "auto-scaling"
DELETE_TYPE_PARENT_ONLY = "PARENT_ONLY"


@dataclass(frozen=True)
class Deployment:
    deploy_id: str
    app_name: str
    display_name: str
    version: str
    profile_name: str

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.app_name, self.version, self.profile_name)

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> Deployment:
        return cls(
            deploy_id=body.get("deployId", ""),
            app_name=body.get("appName", ""),
            display_name=body.get("displayName", ""),
            version=body.get("appVersion", ""),
            profile_name=body.get("profileName", ""),
        )


class AppDeploymentClient:
    def __init__(self, server: str, auth: VaultAuth) -> None:
        self._client = RestClient(server, service="ADM")
        self._auth = auth

    @classmethod
    def from_config(cls, config: Config) -> AppDeploymentClient:
        auth = VaultAuth(config.keycloak_service_base, config.vault_server, config.service_account)
        return cls(config.adm_server, auth)

    def list_deployments(self, project_uuid: str) -> list[Deployment]:
        headers = self._auth.project_headers(project_uuid)
        body = self._client.get_json(DEPLOYMENTS_PATH, headers=headers) or {}
        deployments = [Deployment.from_body(d) for d in body.get("deployments", [])]
        logger.info("Found %d deployments in project %s", len(deployments), project_uuid)
        return deployments

    def list_deployment_names(self, project_uuid: str) -> set[str]:
        return {d.display_name for d in self.list_deployments(project_uuid)}

    def create_deployment(
        self,
        app_name: str,
        display_name: str,
        version: str,
        profile_name: str,
        project_uuid: str,
        labels: dict[str, str],
    ) -> None:
        """Create a deployment; one that already exists counts as created."""
        logger.info(
            "Creating deployment %s",
            display_name,
            extra={
                "app_name": app_name,
                "version": version,
                "profile_name": profile_name,
                "project_uuid": project_uuid,
                "labels": labels,
            },
        )
        headers = self._auth.project_headers(project_uuid)
        try:
            response = self._client.request(
                "POST",
                DEPLOYMENTS_PATH,
                json={
                    "displayName": display_name,
                    "appName": app_name,
                    "appVersion": version,
                    "profileName": profile_name,
                    "deploymentType": DEPLOYMENT_TYPE,
                    "allAppTargetClusters": {"labels": labels},
                },
                headers=headers,
            )
        except ResourceExistsError:
            logger.info("Deployment %s already exists", display_name)
            return
        logger.info("Created deployment %s", response.json().get("deploymentId", ""))

    def delete_deployment(
        self,
        app_name: str,
        display_name: str,
        version: str,
        profile_name: str,
        project_uuid: str,
        missing_ok: bool = False,
    ) -> None:
        """Delete the deployment matching all four identifiers.

        Raises:
            ResourceNotFoundError: If nothing matches and ``missing_ok`` is False.
        """
        match = next(
            (
                d
                for d in self.list_deployments(project_uuid)
                if d.display_name == display_name
                and d.app_name == app_name
                and d.version == version
                and d.profile_name == profile_name
            ),
            None,
        )
        if match is None:
            if missing_ok:
                logger.info("Deployment %s not found, skipping deletion", display_name)
                return
            raise ResourceNotFoundError(f"Deployment {display_name} not found")

        headers = self._auth.project_headers(project_uuid)
        self._client.request(
            "DELETE",
            f"{DEPLOYMENTS_PATH}/{match.deploy_id}",
            params={"deleteType": DELETE_TYPE_PARENT_ONLY},
            headers=headers,
        )
        logger.info("Deleted deployment %s (%s)", display_name, match.deploy_id)

    def close(self) -> None:
        self._client.close()
        self._auth.close()
