"""Configuration management with validation.

All settings come from environment variables and are validated once at
construction time, so a bad deployment fails before any event is processed.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields


logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Retry loop defaults (seconds)
DEFAULT_INITIAL_SLEEP_INTERVAL_SECONDS = 15.0
DEFAULT_MAX_WAIT_TIME_SECONDS = 600.0
# Per-attempt timeout is this many sleep intervals unless set explicitly
ATTEMPT_TIMEOUT_INTERVALS = 10

DEFAULT_NUMBER_WORKER_THREADS = 2
DEFAULT_HEALTH_PROBE_PORT = 8081

# Fields that must never be logged verbatim
SECRET_FIELDS = frozenset({"use_local_manifest"})


@dataclass(frozen=True)
class Config:
    """Controller configuration loaded from environment variables.

    Service addresses are cluster-internal unless noted otherwise.
    """

    # Release service and manifest location
    release_service_base: str = ""
    release_service_root_url: str = ""
    release_service_proxy_root_url: str = ""
    manifest_path: str = ""
    manifest_tag: str = ""

    # Harbor registry (REST). harbor_server_external is the URL tenants see.
    harbor_server: str = ""
    harbor_server_external: str = ""
    harbor_namespace: str = ""
    harbor_admin_credential: str = ""

    # Application catalog and deployment manager
    catalog_server: str = ""
    adm_server: str = ""

    # Identity services for machine-to-machine tokens
    keycloak_server: str = ""
    keycloak_service_base: str = ""
    keycloak_namespace: str = ""
    keycloak_secret: str = ""
    vault_server: str = ""
    service_account: str = ""

    # Retry loop and worker pool
    initial_sleep_interval_seconds: float = DEFAULT_INITIAL_SLEEP_INTERVAL_SECONDS
    max_wait_time_seconds: float = DEFAULT_MAX_WAIT_TIME_SECONDS
    attempt_timeout_seconds: float | None = None
    number_worker_threads: int = DEFAULT_NUMBER_WORKER_THREADS

    # If non-empty, used as the manifest instead of pulling it from the release service
    use_local_manifest: str = ""

    # Process boundary
    health_probe_port: int = DEFAULT_HEALTH_PROBE_PORT
    subscription_factory: str = ""

    def __post_init__(self) -> None:
        """Validate configuration after initialization (fail-fast)."""
        errors: list[str] = []

        if self.initial_sleep_interval_seconds <= 0:
            errors.append("INITIAL_SLEEP_INTERVAL must be positive")
        if self.max_wait_time_seconds <= 0:
            errors.append("MAX_WAIT_TIME must be positive")
        if self.initial_sleep_interval_seconds > self.max_wait_time_seconds:
            errors.append(
                f"INITIAL_SLEEP_INTERVAL {self.initial_sleep_interval_seconds}s "
                f"must be less than MAX_WAIT_TIME {self.max_wait_time_seconds}s"
            )
        if self.attempt_timeout_seconds is not None and self.attempt_timeout_seconds <= 0:
            errors.append("ATTEMPT_TIMEOUT must be positive")

        if self.number_worker_threads < 1:
            errors.append("NUMBER_WORKER_THREADS must be at least 1")

        if not (1 <= self.health_probe_port <= 65535):
            errors.append("HEALTH_PROBE_PORT must be between 1 and 65535")

        if self.subscription_factory and ":" not in self.subscription_factory:
            errors.append("PROJECT_SUBSCRIPTION_FACTORY must look like 'module:callable'")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def attempt_timeout(self) -> float:
        """Timeout applied to a single dispatch attempt."""
        if self.attempt_timeout_seconds is not None:
            return self.attempt_timeout_seconds
        return self.initial_sleep_interval_seconds * ATTEMPT_TIMEOUT_INTERVALS

    @property
    def manifest_location(self) -> str:
        return f"{self.release_service_base}{self.manifest_path}:{self.manifest_tag}"

    def dump(self) -> None:
        """Log the effective configuration."""
        logger.info("Controller configuration:")
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name in SECRET_FIELDS and value:
                value = "<set>"
            logger.info("   %s: %s", f.name, value)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            RELEASE_SERVICE_BASE: OCI registry base for manifests and packages
            RS_ROOT_URL: Release service root URL (image registry)
            RS_PROXY_ROOT_URL: Release service proxy root URL (Helm registry)
            MANIFEST_PATH: Path of the extension manifest repository
            MANIFEST_TAG: Tag of the extension manifest to provision
            HARBOR_SERVER: Harbor core REST endpoint
            REGISTRY_HOST_EXTERNAL: Harbor URL as seen from outside the cluster
            HARBOR_NAMESPACE: Namespace holding the Harbor admin secret
            HARBOR_ADMIN_CREDENTIAL: Name of the Harbor admin secret
            CATALOG_SERVER: Application catalog endpoint
            ADM_SERVER: App deployment manager endpoint (empty disables deployments)
            KEYCLOAK_SERVER: Keycloak URL used for Harbor OIDC configuration
            KEYCLOAK_SERVICE_BASE: Keycloak in-cluster URL for token requests
            KEYCLOAK_NAMESPACE: Namespace holding the Keycloak admin secret
            KEYCLOAK_SECRET: Name of the Keycloak admin secret
            VAULT_SERVER: Vault endpoint
            SERVICE_ACCOUNT: Service account / client name for M2M tokens
            USE_LOCAL_MANIFEST: Manifest contents overriding the remote manifest
            INITIAL_SLEEP_INTERVAL: Seconds between event retries (default: 15)
            MAX_WAIT_TIME: Retry budget per event in seconds (default: 600)
            ATTEMPT_TIMEOUT: Per-attempt timeout in seconds (default: 10x interval)
            NUMBER_WORKER_THREADS: Concurrent event workers (default: 2)
            HEALTH_PROBE_PORT: Port for /healthz and /readyz (default: 8081)
            PROJECT_SUBSCRIPTION_FACTORY: 'module:callable' returning the
                project subscription
        """

        def get_str(key: str) -> str:
            return os.environ.get(key, "")

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_optional_float(key: str) -> float | None:
            value = os.environ.get(key)
            if value is None or value == "":
                return None
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = get_optional_float(key)
            return default if value is None else value

        return cls(
            release_service_base=get_str("RELEASE_SERVICE_BASE"),
            release_service_root_url=get_str("RS_ROOT_URL"),
            release_service_proxy_root_url=get_str("RS_PROXY_ROOT_URL"),
            manifest_path=get_str("MANIFEST_PATH"),
            manifest_tag=get_str("MANIFEST_TAG"),
            harbor_server=get_str("HARBOR_SERVER"),
            harbor_server_external=get_str("REGISTRY_HOST_EXTERNAL"),
            harbor_namespace=get_str("HARBOR_NAMESPACE"),
            harbor_admin_credential=get_str("HARBOR_ADMIN_CREDENTIAL"),
            catalog_server=get_str("CATALOG_SERVER"),
            adm_server=get_str("ADM_SERVER"),
            keycloak_server=get_str("KEYCLOAK_SERVER"),
            keycloak_service_base=get_str("KEYCLOAK_SERVICE_BASE"),
            keycloak_namespace=get_str("KEYCLOAK_NAMESPACE"),
            keycloak_secret=get_str("KEYCLOAK_SECRET"),
            vault_server=get_str("VAULT_SERVER"),
            service_account=get_str("SERVICE_ACCOUNT"),
            use_local_manifest=get_str("USE_LOCAL_MANIFEST"),
            initial_sleep_interval_seconds=get_float(
                "INITIAL_SLEEP_INTERVAL", DEFAULT_INITIAL_SLEEP_INTERVAL_SECONDS
            ),
            max_wait_time_seconds=get_float("MAX_WAIT_TIME", DEFAULT_MAX_WAIT_TIME_SECONDS),
            attempt_timeout_seconds=get_optional_float("ATTEMPT_TIMEOUT"),
            number_worker_threads=get_int("NUMBER_WORKER_THREADS", DEFAULT_NUMBER_WORKER_THREADS),
            health_probe_port=get_int("HEALTH_PROBE_PORT", DEFAULT_HEALTH_PROBE_PORT),
            subscription_factory=get_str("PROJECT_SUBSCRIPTION_FACTORY"),
        )
