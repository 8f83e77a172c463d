"""Pull tagged OCI artifacts into a temporary directory.

Implements the subset of the OCI distribution API needed for file
artifacts: fetch the manifest for a tag, then download each layer whose
``org.opencontainers.image.title`` annotation names a file. Anonymous bearer
token challenges are answered once per repository.
"""

from __future__ import annotations

import hashlib
import logging
import re
import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import Any

from azure.core.exceptions import ClientAuthenticationError

from .rest import RestClient

logger = logging.getLogger(__name__)

TITLE_ANNOTATION = "org.opencontainers.image.title"

MANIFEST_MEDIA_TYPES = ", ".join(
    (
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.oci.artifact.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    )
)

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


class OrasError(Exception):
    """Raised when an artifact cannot be pulled."""

    pass


def split_reference(reference: str) -> tuple[str, str]:
    """Split ``host[:port]/repo/path`` (optionally with a scheme) into host and repository."""
    for scheme in ("oci://", "https://", "http://"):
        if reference.startswith(scheme):
            reference = reference[len(scheme) :]
            break
    host, _, repository = reference.partition("/")
    repository = repository.strip("/")
    if not host or not repository:
        raise OrasError(f"Invalid artifact reference: {reference}")
    return host, repository


def parse_bearer_challenge(header: str) -> dict[str, str]:
    """Parameters of a ``WWW-Authenticate: Bearer ...`` header; empty if not Bearer."""
    scheme, _, params = header.partition(" ")
    if scheme.lower() != "bearer":
        return {}
    return dict(_CHALLENGE_PARAM.findall(params))


class OrasPuller:
    """Pulls artifacts from one registry; every ``load`` gets a fresh directory."""

    def __init__(self, registry: str, *, plain_http: bool = True) -> None:
        self._registry = registry.rstrip("/")
        self._scheme = "http" if plain_http else "https"
        self._dirs: list[Path] = []

    def _client(self, host: str) -> RestClient:
        return RestClient(f"{self._scheme}://{host}", service="OCI registry")

    def _authorize(self, client: RestClient, error: ClientAuthenticationError) -> dict[str, str]:
        response = error.response
        header = response.headers.get("WWW-Authenticate", "") if response is not None else ""
        challenge = parse_bearer_challenge(header)
        realm = challenge.pop("realm", "")
        if not realm:
            raise error
        body = client.get_json(realm, params=challenge) or {}
        token = body.get("token") or body.get("access_token")
        if not token:
            raise OrasError(f"No token returned by {realm}") from error
        return {"Authorization": f"Bearer {token}"}

    def load(self, path: str, tag: str) -> Path:
        """Pull ``<registry><path>:<tag>`` and return the directory holding its files.

        Raises:
            OrasError: If the artifact is malformed or a blob fails verification.
            HttpResponseError: On registry errors.
        """
        host, repository = split_reference(self._registry + path)
        dest = Path(tempfile.mkdtemp(prefix="repo"))
        self._dirs.append(dest)
        logger.info("Pulling %s/%s:%s", host, repository, tag)

        client = self._client(host)
        try:
            headers = {"Accept": MANIFEST_MEDIA_TYPES}
            manifest_path = f"/v2/{repository}/manifests/{tag}"
            try:
                manifest = client.get_json(manifest_path, headers=headers)
            except ClientAuthenticationError as e:
                auth = self._authorize(client, e)
                headers.update(auth)
                manifest = client.get_json(manifest_path, headers=headers)

            layers = (manifest or {}).get("layers")
            if layers is None:
                raise OrasError(f"Manifest of {repository}:{tag} has no layers")

            blob_headers = {k: v for k, v in headers.items() if k != "Accept"}
            for layer in layers:
                title = (layer.get("annotations") or {}).get(TITLE_ANNOTATION)
                if not title:
                    logger.debug("Skipping untitled layer %s", layer.get("digest"))
                    continue
                target = dest / PurePosixPath(title).name
                self._download(client, repository, layer, target, blob_headers)
        finally:
            client.close()

        return dest

    def _download(
        self,
        client: RestClient,
        repository: str,
        layer: dict[str, Any],
        target: Path,
        headers: dict[str, str],
    ) -> None:
        digest = layer.get("digest", "")
        content = client.request("GET", f"/v2/{repository}/blobs/{digest}", headers=headers).content

        algorithm, _, expected = digest.partition(":")
        if algorithm == "sha256" and hashlib.sha256(content).hexdigest() != expected:
            raise OrasError(f"Digest mismatch for {target.name}: expected {digest}")

        target.write_bytes(content)
        logger.info("Pulled %s (%d bytes)", target.name, len(content))

    def close(self) -> None:
        """Remove every directory created by ``load``."""
        for directory in self._dirs:
            shutil.rmtree(directory, ignore_errors=True)
        self._dirs.clear()
