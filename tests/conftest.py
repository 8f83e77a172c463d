"""Pytest configuration and fixtures."""

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for tenant_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from tenant_controller.config import Config  # noqa: E402

SAMPLE_MANIFEST = """\
metadata:
  schemaVersion: 0.2.1
  release: 24.11.0-dev
orchestrator:
  helmcharts: []
lpke:
  deploymentPackages:
    - dpkg: edge-orch/en/file/base-extensions
      version: 0.7.4
    - dpkg: edge-orch/en/file/old-extension
      version: 0.1.0
      desiredState: absent
  deploymentList:
    - dpName: base-extensions
      displayName: base-extensions-baseline
      dpProfileName: baseline
      dpVersion: 0.7.4
      allAppTargetClusters:
        - key: default-extension
          val: baseline
    - dpName: base-extensions
      displayName: base-extensions-privileged
      dpProfileName: privileged
      dpVersion: 0.7.4
      allAppTargetClusters:
        - key: default-extension
          val: privileged
    - dpName: old-extension
      displayName: old-extension
      dpProfileName: default
      dpVersion: 0.1.0
      desiredState: absent
"""


@pytest.fixture
def sample_manifest() -> str:
    return SAMPLE_MANIFEST


@pytest.fixture
def make_config() -> Callable[..., Config]:
    """Build a Config with fast retry timings, overridable per test."""

    def make(**overrides: Any) -> Config:
        values: dict[str, Any] = {
            "release_service_base": "rs-proxy.local:8081",
            "release_service_root_url": "oci://registry-rs.example.com",
            "release_service_proxy_root_url": "oci://rs-proxy.local:8081",
            "manifest_path": "/edge-orch/en/files/manifest",
            "manifest_tag": "v1.0.0",
            "harbor_server": "http://harbor-core.local",
            "harbor_server_external": "https://registry.example.com",
            "catalog_server": "http://catalog.local:8080",
            "adm_server": "http://adm.local:8080",
            "keycloak_server": "https://keycloak.example.com",
            "initial_sleep_interval_seconds": 0.01,
            "max_wait_time_seconds": 0.2,
            "attempt_timeout_seconds": 1.0,
            "number_worker_threads": 2,
        }
        values.update(overrides)
        return Config(**values)

    return make
