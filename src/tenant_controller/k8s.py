"""Kubernetes secret reader using the in-cluster service account."""

from __future__ import annotations

import base64
import logging
import os
from pathlib import Path

from .rest import RestClient

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")
SERVICE_ACCOUNT_TOKEN_PATH = SERVICE_ACCOUNT_DIR / "token"
SERVICE_ACCOUNT_CA_PATH = SERVICE_ACCOUNT_DIR / "ca.crt"


class KubernetesConfigError(Exception):
    """Raised when the in-cluster API server or credentials cannot be found."""

    pass


def in_cluster_api_server() -> str:
    """API server URL from the standard in-cluster environment.

    Raises:
        KubernetesConfigError: When not running inside a cluster.
    """
    host = os.environ.get("KUBERNETES_SERVICE_HOST")
    port = os.environ.get("KUBERNETES_SERVICE_PORT")
    if not host or not port:
        raise KubernetesConfigError(
            "KUBERNETES_SERVICE_HOST and KUBERNETES_SERVICE_PORT must be set"
        )
    if ":" in host:
        host = f"[{host}]"
    return f"https://{host}:{port}"


def read_service_account_token(path: Path = SERVICE_ACCOUNT_TOKEN_PATH) -> str:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise KubernetesConfigError(f"Failed to read service account token {path}: {e}") from e


class SecretReader:
    """Reads secrets of one namespace."""

    def __init__(
        self,
        namespace: str,
        *,
        api_server: str | None = None,
        token: str | None = None,
        ca_path: Path | None = SERVICE_ACCOUNT_CA_PATH,
    ) -> None:
        self._namespace = namespace
        server = api_server or in_cluster_api_server()
        bearer = token if token is not None else read_service_account_token()
        verify: bool | str = str(ca_path) if ca_path is not None and ca_path.exists() else True
        self._client = RestClient(
            server,
            service="Kubernetes",
            headers={"Authorization": f"Bearer {bearer}", "Accept": "application/json"},
            connection_verify=verify,
        )

    def read_secret(self, name: str) -> dict[str, bytes]:
        """Return the decoded data of a secret.

        Raises:
            ResourceNotFoundError: If the secret does not exist.
        """
        logger.info("Reading secret %s/%s", self._namespace, name)
        body = self._client.get_json(f"/api/v1/namespaces/{self._namespace}/secrets/{name}")
        data = (body or {}).get("data") or {}
        return {key: base64.b64decode(value) for key, value in data.items()}

    def close(self) -> None:
        self._client.close()
