"""Machine-to-machine tokens via Vault and Keycloak.

The controller's Keycloak client secret is kept in Vault. To call a project
scoped API the controller logs in to Vault with its Kubernetes service
account, reads the client secret, exchanges it at Keycloak for an access
token (client-credentials grant) and logs out of Vault again.

When the secret is missing it is created once at startup with the Keycloak
admin credentials and stored back into Vault.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from azure.core.exceptions import ResourceNotFoundError

from .k8s import SERVICE_ACCOUNT_TOKEN_PATH, read_service_account_token
from .rest import RestClient

logger = logging.getLogger(__name__)

KEYCLOAK_REALM = "master"
KEYCLOAK_ADMIN_CLIENT = "admin-cli"
KEYCLOAK_ADMIN_USER = "admin"

VAULT_LOGIN_PATH = "/v1/auth/kubernetes/login"
VAULT_REVOKE_PATH = "/v1/auth/token/revoke-self"
VAULT_SECRET_PATH = "/v1/secret/data/{client}"

ACTIVE_PROJECT_HEADER = "ActiveProjectID"


class VaultAuth:
    """Obtains M2M access tokens for one Keycloak client."""

    def __init__(
        self,
        keycloak_server: str,
        vault_server: str,
        service_account: str,
        *,
        token_path: Path = SERVICE_ACCOUNT_TOKEN_PATH,
    ) -> None:
        self._client_id = service_account
        self._token_path = token_path
        self._keycloak = RestClient(keycloak_server, service="Keycloak")
        self._vault = RestClient(vault_server, service="Vault")

    def _token_url(self) -> str:
        return f"/realms/{KEYCLOAK_REALM}/protocol/openid-connect/token"

    def login(self) -> str:
        """Log in to Vault with the Kubernetes service account token.

        Returns:
            A Vault token owned by the caller, to be revoked with ``logout``.
        """
        jwt = read_service_account_token(self._token_path)
        body = self._vault.request(
            "POST", VAULT_LOGIN_PATH, json={"role": self._client_id, "jwt": jwt}
        ).json()
        return body["auth"]["client_token"]

    def logout(self, vault_token: str) -> None:
        """Revoke a Vault token obtained from ``login``."""
        self._vault.request("POST", VAULT_REVOKE_PATH, headers={"X-Vault-Token": vault_token})

    @contextmanager
    def vault_session(self) -> Iterator[str]:
        """Vault token scoped to one exchange."""
        vault_token = self.login()
        try:
            yield vault_token
        finally:
            self.logout(vault_token)

    def read_client_secret(self, vault_token: str) -> str:
        """Read the Keycloak client secret stored in Vault.

        Raises:
            ResourceNotFoundError: If no secret is stored yet.
        """
        body = self._vault.get_json(
            VAULT_SECRET_PATH.format(client=self._client_id),
            headers={"X-Vault-Token": vault_token},
        )
        secret = ((body or {}).get("data") or {}).get("data", {}).get("value", "")
        if not secret:
            raise ResourceNotFoundError(f"client secret for {self._client_id} not found in Vault")
        return secret

    def _store_client_secret(self, secret: str, vault_token: str) -> None:
        self._vault.request(
            "POST",
            VAULT_SECRET_PATH.format(client=self._client_id),
            json={"data": {"value": secret}},
            headers={"X-Vault-Token": vault_token},
        )

    def _client_credentials_token(self, secret: str) -> str:
        body = self._keycloak.request(
            "POST",
            self._token_url(),
            data={
                "grant_type": "client_credentials",
                "client_id": self._client_id,
                "client_secret": secret,
            },
        ).json()
        return body.get("access_token", "")

    def get_m2m_token(self) -> str:
        """Access token for this client.

        Raises:
            ResourceNotFoundError: If the client secret is not in Vault.
        """
        with self.vault_session() as vault_token:
            secret = self.read_client_secret(vault_token)
        return self._client_credentials_token(secret)

    def create_client_secret(self, username: str, password: str) -> str:
        """Regenerate the client secret with admin credentials, store it in
        Vault and return a fresh access token."""
        admin = self._keycloak.request(
            "POST",
            self._token_url(),
            data={
                "grant_type": "password",
                "client_id": KEYCLOAK_ADMIN_CLIENT,
                "username": username,
                "password": password,
            },
        ).json()
        admin_headers = {"Authorization": f"Bearer {admin['access_token']}"}

        clients = self._keycloak.get_json(
            f"/admin/realms/{KEYCLOAK_REALM}/clients",
            params={"clientId": self._client_id},
            headers=admin_headers,
        )
        if not clients:
            raise ResourceNotFoundError(f"Keycloak client {self._client_id} not found")

        secret = self._keycloak.request(
            "POST",
            f"/admin/realms/{KEYCLOAK_REALM}/clients/{clients[0]['id']}/client-secret",
            headers=admin_headers,
        ).json()["value"]

        with self.vault_session() as vault_token:
            self._store_client_secret(secret, vault_token)
        logger.info("Stored new client secret for %s", self._client_id)
        return self._client_credentials_token(secret)

    def project_headers(self, project_uuid: str) -> dict[str, str]:
        """Headers for a project-scoped call. Empty when no token is issued."""
        token = self.get_m2m_token()
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}", ACTIVE_PROJECT_HEADER: project_uuid}

    def close(self) -> None:
        self._keycloak.close()
        self._vault.close()
