"""Harbor v2.0 REST client."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError

from .k8s import SecretReader
from .rest import RestClient

logger = logging.getLogger(__name__)

CONFIGURATIONS_PATH = "/api/v2.0/configurations"
PROJECTS_PATH = "/api/v2.0/projects"
ROBOTS_PATH = "/api/v2.0/robots"
PING_PATH = "/api/v2.0/ping"

ADMIN_CREDENTIAL_KEY = "credential"

OIDC_NAME = "Open Edge IAM"
OIDC_CLIENT_ID = "registry-client"
OIDC_SCOPE = "openid,profile,offline_access,email"
OIDC_USER_CLAIM = "preferred_username"
OIDC_GROUPS_CLAIM = "groups"
OIDC_ADMIN_GROUP = "service-admin-group"

# Access granted to project robots, per resource
ROBOT_ACCESS: dict[str, tuple[str, ...]] = {
    "repository": ("list", "pull", "push", "delete"),
    "artifact": ("read", "list", "delete"),
    "artifact-label": ("create", "delete"),
    "tag": ("create", "delete", "list"),
    "scan": ("create", "stop"),
}


def harbor_project_name(organization: str, name: str) -> str:
    return f"catalog-apps-{organization}-{name}"


@dataclass(frozen=True)
class HarborRobot:
    id: int
    name: str
    secret: str = ""


def read_admin_credentials(secrets: SecretReader, secret_name: str) -> tuple[str, str]:
    """Read ``user:password`` from the Harbor admin secret.

    Raises:
        ValueError: If the secret has no usable credential.
    """
    data = secrets.read_secret(secret_name)
    raw = data.get(ADMIN_CREDENTIAL_KEY)
    if not raw:
        raise ValueError(f"no {ADMIN_CREDENTIAL_KEY} found in secret {secret_name}")
    username, sep, password = raw.decode("utf-8").partition(":")
    if not sep:
        raise ValueError(f"{ADMIN_CREDENTIAL_KEY} in secret {secret_name} is not user:password")
    return username, password


class HarborClient:
    """Harbor administration calls made with the admin account."""

    def __init__(self, server: str, oidc_url: str, username: str, password: str) -> None:
        basic = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        self._oidc_url = oidc_url
        self._client = RestClient(
            server,
            service="Harbor",
            headers={
                "Authorization": f"Basic {basic}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    @classmethod
    def from_secret(
        cls, server: str, oidc_url: str, namespace: str, secret_name: str
    ) -> HarborClient:
        secrets = SecretReader(namespace)
        try:
            username, password = read_admin_credentials(secrets, secret_name)
        finally:
            secrets.close()
        return cls(server, oidc_url, username, password)

    def configurations(self) -> None:
        """Point Harbor authentication at the platform OIDC provider."""
        self._client.request(
            "PUT",
            CONFIGURATIONS_PATH,
            json={
                "auth_mode": "oidc_auth",
                "oidc_name": OIDC_NAME,
                "oidc_endpoint": f"{self._oidc_url}/realms/master",
                "oidc_verify_cert": False,
                "oidc_client_id": OIDC_CLIENT_ID,
                "oidc_scope": OIDC_SCOPE,
                "oidc_auto_onboard": True,
                "oidc_user_claim": OIDC_USER_CLAIM,
                "oidc_groups_claim": OIDC_GROUPS_CLAIM,
                "oidc_admin_group": OIDC_ADMIN_GROUP,
            },
        )
        logger.info("Harbor OIDC configuration applied")

    def create_project(self, organization: str, name: str) -> None:
        """Create the private project; an existing project is left as is."""
        project_name = harbor_project_name(organization, name)
        try:
            self._client.request(
                "POST",
                PROJECTS_PATH,
                json={"project_name": project_name, "public": False, "storage_limit": 0},
            )
            logger.info("Created Harbor project %s", project_name)
        except ResourceExistsError:
            logger.info("Harbor project %s already exists", project_name)

    def set_member_permissions(
        self, role_id: int, organization: str, name: str, group_name: str
    ) -> None:
        project_name = harbor_project_name(organization, name)
        try:
            self._client.request(
                "POST",
                f"{PROJECTS_PATH}/{project_name}/members",
                json={"role_id": role_id, "member_group": {"group_name": group_name}},
            )
            logger.info("Granted role %d on %s to %s", role_id, project_name, group_name)
        except ResourceExistsError:
            logger.info("Group %s is already a member of %s", group_name, project_name)

    def get_project_id(self, organization: str, name: str) -> int:
        body = self._client.get_json(
            f"{PROJECTS_PATH}/{harbor_project_name(organization, name)}"
        )
        return int(body["project_id"])

    def create_robot(self, robot_name: str, organization: str, name: str) -> HarborRobot:
        """Create a project robot account.

        Raises:
            ResourceExistsError: If a robot with this name already exists.
        """
        access: list[dict[str, Any]] = [
            {"resource": resource, "action": action}
            for resource, actions in ROBOT_ACCESS.items()
            for action in actions
        ]
        body = self._client.request(
            "POST",
            ROBOTS_PATH,
            json={
                "name": robot_name,
                "disable": False,
                "level": "project",
                "duration": -1,
                "permissions": [
                    {
                        "kind": "project",
                        "namespace": harbor_project_name(organization, name),
                        "access": access,
                    }
                ],
            },
        ).json()
        logger.info("Created Harbor robot %s", body.get("name"))
        return HarborRobot(id=int(body["id"]), name=body["name"], secret=body.get("secret", ""))

    def get_robot(self, organization: str, name: str, robot_name: str) -> HarborRobot | None:
        """Find a project robot by its short name; None when absent."""
        project_name = harbor_project_name(organization, name)
        full_name = f"robot${project_name}+{robot_name}"
        project_id = self.get_project_id(organization, name)

        robots = self._client.get_json(
            ROBOTS_PATH, params={"q": f"Level=project,ProjectID={project_id}"}
        )
        for robot in robots or []:
            if robot.get("name") == full_name:
                return HarborRobot(id=int(robot["id"]), name=robot["name"])
        return None

    def delete_robot(self, robot_id: int) -> None:
        try:
            self._client.request("DELETE", f"{ROBOTS_PATH}/{robot_id}")
            logger.info("Deleted Harbor robot %d", robot_id)
        except ResourceNotFoundError:
            logger.info("Harbor robot %d already deleted", robot_id)

    def delete_project(self, organization: str, name: str) -> None:
        project_name = harbor_project_name(organization, name)
        try:
            self._client.request("DELETE", f"{PROJECTS_PATH}/{project_name}")
            logger.info("Deleted Harbor project %s", project_name)
        except ResourceNotFoundError:
            logger.info("Harbor project %s already deleted", project_name)

    def ping(self) -> None:
        self._client.request("GET", PING_PATH)

    def close(self) -> None:
        self._client.close()
