"""Tenant controller CLI (tenantctl).

Usage:
    tenantctl run               # Run the controller (same as the container entry point)
    tenantctl config            # Validate and print configuration from the environment
    tenantctl manifest FILE     # Parse a manifest and print what it would provision
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import fields
from pathlib import Path

import click

from .config import SECRET_FIELDS, Config, ConfigurationError
from .manifest import DesiredState, ManifestError, load_manifest_file


@click.group()
@click.version_option(version="0.1.0", prog_name="tenantctl")
def cli() -> None:
    """Tenant controller CLI (tenantctl).

    Provisions registry, catalog and extension resources for tenant projects.

    \b
    Quick Start:
        tenantctl config                 # Check the environment
        tenantctl manifest 24.11.0.yaml  # Inspect a manifest
        tenantctl run                    # Start the controller
    """
    pass


@cli.command()
def run() -> None:
    """Run the controller until SIGTERM/SIGINT."""
    from .main import main

    sys.exit(asyncio.run(main()))


@cli.command("config")
def show_config() -> None:
    """Validate configuration from environment variables and print it."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    for f in fields(config):
        value = getattr(config, f.name)
        if f.name in SECRET_FIELDS and value:
            value = "<set>"
        click.echo(f"{f.name}: {value}")
    click.echo(f"attempt_timeout: {config.attempt_timeout}")
    click.secho("✓ Configuration valid", fg="green")


@cli.command("manifest")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
def show_manifest(path: Path) -> None:
    """Parse a manifest file and list its packages and deployments."""
    try:
        manifest = load_manifest_file(path)
    except ManifestError as e:
        raise click.ClickException(str(e)) from e

    click.echo(
        f"Release {manifest.metadata.release or '-'} "
        f"(schema {manifest.metadata.schema_version or '-'})"
    )

    click.echo("\nDeployment packages:")
    for package in manifest.lpke.deployment_packages:
        marker = "-" if package.desired_state is DesiredState.ABSENT else "+"
        click.echo(f"  {marker} {package.dpkg}:{package.version}")

    click.echo("\nDeployments:")
    for deployment in manifest.lpke.deployment_list:
        marker = "-" if deployment.desired_state is DesiredState.ABSENT else "+"
        labels = ",".join(f"{k}={v}" for k, v in deployment.target_cluster_labels.items())
        click.echo(
            f"  {marker} {deployment.display_name or deployment.app_name} "
            f"({deployment.app_name} {deployment.version} profile "
            f"{deployment.profile_name or '-'}) [{labels}]"
        )


if __name__ == "__main__":
    cli()
