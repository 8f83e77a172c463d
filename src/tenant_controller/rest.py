"""Shared REST transport for southbound clients.

Every backend is reached through an azure-core ``PipelineClient`` with the
same policies, and every response goes through the same status mapping so
plugins can catch one exception taxonomy:

    401 -> ClientAuthenticationError
    404 -> ResourceNotFoundError
    409 -> ResourceExistsError
    other non-2xx -> HttpResponseError

Clients are synchronous; plugins run them through ``plugins.run_blocking``.
"""

from __future__ import annotations

import logging
from typing import Any

from azure.core import PipelineClient
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    map_error,
)
from azure.core.pipeline.policies import HeadersPolicy, RedirectPolicy, RetryPolicy
from azure.core.rest import HttpRequest, HttpResponse

logger = logging.getLogger(__name__)

DEFAULT_RETRY_TOTAL = 3
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30

ERROR_MAP: dict[int, type[HttpResponseError]] = {
    401: ClientAuthenticationError,
    404: ResourceNotFoundError,
    409: ResourceExistsError,
}

# Response bodies are truncated in error messages
MAX_ERROR_BODY_CHARS = 512


def build_pipeline_client(
    base_url: str,
    headers: dict[str, str] | None = None,
    retry_total: int = DEFAULT_RETRY_TOTAL,
) -> PipelineClient:
    """Create a pipeline client with the standard policies."""
    policies = [
        HeadersPolicy(base_headers=headers or {}),
        RetryPolicy(retry_total=retry_total),
        RedirectPolicy(),
    ]
    return PipelineClient(base_url=base_url, policies=policies)


def response_text(response: HttpResponse) -> str:
    try:
        text = response.text()
    except Exception:
        return ""
    return text[:MAX_ERROR_BODY_CHARS]


def check_response(response: HttpResponse, service: str = "") -> None:
    """Raise the mapped azure-core error for a non-2xx response."""
    if 200 <= response.status_code < 300:
        return

    map_error(status_code=response.status_code, response=response, error_map=ERROR_MAP)
    prefix = f"{service} " if service else ""
    raise HttpResponseError(
        message=(
            f"{prefix}request failed with status {response.status_code}: "
            f"{response_text(response)}"
        ),
        response=response,
    )


class RestClient:
    """Thin JSON-over-HTTP helper bound to one backend."""

    def __init__(
        self,
        base_url: str,
        *,
        service: str,
        headers: dict[str, str] | None = None,
        retry_total: int = DEFAULT_RETRY_TOTAL,
        connection_verify: bool | str | None = None,
        timeout: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service = service
        self._client = build_pipeline_client(self._base_url, headers, retry_total)
        self._send_kwargs: dict[str, Any] = {"connection_timeout": timeout}
        if connection_verify is not None:
            self._send_kwargs["connection_verify"] = connection_verify

    @property
    def base_url(self) -> str:
        return self._base_url

    def url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}{path}"

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """Send one request and map its status.

        Raises:
            HttpResponseError: Or one of its mapped subclasses on non-2xx.
            azure.core.exceptions.ServiceRequestError: If the backend is unreachable.
        """
        request = HttpRequest(
            method,
            self.url(path),
            json=json,
            data=data,
            params=params,
            headers=headers,
        )
        logger.debug("%s REST request %s %s", self._service, method, request.url)
        response = self._client.send_request(request, **self._send_kwargs)
        logger.debug(
            "%s REST response %s", self._service, response.status_code, extra={"url": request.url}
        )
        check_response(response, self._service)
        return response

    def get_json(self, path: str, **kwargs: Any) -> Any:
        response = self.request("GET", path, **kwargs)
        if not response.content:
            return None
        return response.json()

    def close(self) -> None:
        self._client.close()
