# src/harbormaster/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from harbormaster.config.loader import load_manifest
from harbormaster.deploy.bootstrap import ClusterBootstrapper
from harbormaster.deploy.executor import Executor
from harbormaster.deploy.models import PhaseSelector, ProvisionOptions, UpgradeOptions
from harbormaster.deploy.planner import Planner
from harbormaster.detect.detector import Detector
from harbormaster.errors import FleetUpgradeError, HarbormasterError
from harbormaster.execution.pool import SSHPool
from harbormaster.execution.transfer import distribute_file
from harbormaster.logging.log import init_logging
from harbormaster.provisioner.registry import default_registry
from harbormaster.releases.fetcher import RepositoryFetcher
from harbormaster.upgrade.machine import ServiceUpgrader, UpgradeState, upgrade_all
from harbormaster.utils.execution import RunContext

from harbormaster.cli.helper import (
    PROVISION_TIMEOUT,
    UPGRADE_TIMEOUT,
    banner,
    build_bus,
    fail,
    parse_roles,
)


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Harbormaster cluster deployment CLI")

MANIFEST_OPTION = typer.Option(Path("cluster.yaml"), "--manifest", "-m", help="Cluster manifest YAML")


# ------------------------------------------------------------------------------
# provision
# ------------------------------------------------------------------------------

@app.command()
def provision(
    manifest: Path = MANIFEST_OPTION,
    only: PhaseSelector = typer.Option(PhaseSelector.ALL, "--only", help="Provision a single phase"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without changing anything"),
    force: bool = typer.Option(False, "--force", help="Re-provision even if already running"),
    ignore_validation: bool = typer.Option(False, "--ignore-validation", help="Downgrade failed health checks to warnings"),
    workers: int = typer.Option(1, "--workers", min=1, help="Concurrent tasks per batch"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Provision the cluster described by the manifest, phase by phase."""
    logger, run_id, log_path = init_logging(verbose=debug)
    banner("Harbormaster Provisioning Started", run_id, log_path)

    try:
        cfg = load_manifest(manifest)
    except HarbormasterError as e:
        fail(str(e))

    bus = build_bus(logger, run_id, console=debug)
    options = ProvisionOptions(
        phase=only,
        dry_run=dry_run,
        force=force,
        ignore_validation=ignore_validation,
        max_workers=workers,
    )

    try:
        plan = Planner(cfg, bus=bus, run_id=run_id).plan(options)
    except HarbormasterError as e:
        fail(f"planning failed: {e}")

    typer.echo(plan.describe())
    if dry_run or plan.empty:
        raise typer.Exit(code=0)

    with SSHPool() as pool:
        executor = Executor(
            cfg,
            pool,
            default_registry(),
            options,
            bootstrapper=ClusterBootstrapper(cfg, bus=bus, run_id=run_id),
            bus=bus,
            fetcher=RepositoryFetcher(),
            run_id=run_id,
        )
        try:
            report = executor.execute(plan, RunContext(timeout=PROVISION_TIMEOUT))
        except HarbormasterError as e:
            report = executor.report
            for w in report.warnings:
                typer.secho(f"  warning: {w}", fg=typer.colors.YELLOW, err=True)
            if report.count("ROLLED_BACK") or report.warnings:
                typer.secho("Rollback complete. Cluster may be in inconsistent state.", fg=typer.colors.YELLOW, err=True)
            typer.echo(f"Summary: {report.summary()}")
            fail(str(e))

    for w in report.warnings:
        typer.secho(f"  warning: {w}", fg=typer.colors.YELLOW)
    typer.secho(f"✓ Provisioning complete: {report.summary()}", fg=typer.colors.GREEN)


# ------------------------------------------------------------------------------
# upgrade
# ------------------------------------------------------------------------------

@app.command()
def upgrade(
    service: Optional[str] = typer.Argument(None, help="Service to upgrade"),
    manifest: Path = MANIFEST_OPTION,
    all_services: bool = typer.Option(False, "--all", help="Upgrade every service in dependency order"),
    version: str = typer.Option("", "--version", help="Target version or channel (stable, rc)"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    skip_validation: bool = typer.Option(False, "--skip-validation"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    no_rollback: bool = typer.Option(False, "--no-rollback", help="Leave the new version running if unhealthy"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Upgrade one service (or all of them) with a health-gated rollback."""
    if bool(service) == all_services:
        fail("give exactly one of SERVICE or --all")

    logger, run_id, log_path = init_logging(verbose=debug)
    banner("Harbormaster Upgrade Started", run_id, log_path)

    try:
        cfg = load_manifest(manifest)
    except HarbormasterError as e:
        fail(str(e))

    bus = build_bus(logger, run_id, console=debug)
    options = UpgradeOptions(
        version=version,
        dry_run=dry_run,
        skip_validation=skip_validation,
        assume_yes=yes,
        rollback=not no_rollback,
    )

    with SSHPool() as pool:
        upgrader = ServiceUpgrader(
            cfg,
            manifest,
            pool,
            default_registry(),
            RepositoryFetcher(),
            confirm=lambda q: typer.confirm(q, default=False),
            bus=bus,
            run_id=run_id,
        )
        ctx = RunContext(timeout=UPGRADE_TIMEOUT, dry_run=dry_run)

        if all_services:
            try:
                report = upgrade_all(upgrader, options, ctx, confirm=lambda q: typer.confirm(q, default=False))
            except FleetUpgradeError as e:
                typer.echo(f"  succeeded : {', '.join(e.succeeded) or '-'}")
                typer.echo(f"  failed    : {', '.join(e.failed) or '-'}")
                typer.echo(f"  remaining : {', '.join(e.remaining) or '-'}")
                fail(str(e))
            except HarbormasterError as e:
                fail(str(e))
            if report.cancelled:
                typer.echo("Upgrade cancelled.")
                raise typer.Exit(code=0)
            typer.secho(f"✓ Upgraded {len(report.succeeded)} service(s)", fg=typer.colors.GREEN)
            return

        try:
            result = upgrader.upgrade(service, options, ctx)
        except HarbormasterError as e:
            fail(str(e))

    if result.state is UpgradeState.NOOP:
        typer.echo(f"{service} is already at {result.previous_version}")
    elif result.dry_run:
        typer.echo(f"Would upgrade {service} on {result.host}: {result.previous_version} → {result.target_version}")
    elif result.state is UpgradeState.CANCELLED:
        typer.echo("Upgrade cancelled.")
    else:
        typer.secho(
            f"✓ {service} upgraded {result.previous_version} → {result.target_version}",
            fg=typer.colors.GREEN,
        )


# ------------------------------------------------------------------------------
# detect
# ------------------------------------------------------------------------------

@app.command()
def detect(
    service: str = typer.Argument(..., help="Service id, e.g. bridge or redis-cache"),
    manifest: Path = MANIFEST_OPTION,
    host: Optional[str] = typer.Option(None, "--host", help="Manifest host name (defaults to the service's host)"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Report whether SERVICE is present and running on its host."""
    init_logging(verbose=debug)
    try:
        cfg = load_manifest(manifest)
    except HarbormasterError as e:
        fail(str(e))

    target = host
    if target is None:
        found = cfg.find_service(service)
        if found is None:
            fail(f"service {service} not found in manifest; pass --host")
        target = found[1].primary_host()
    h = cfg.get_host(target)
    if h is None:
        fail(f"host {target} not found in manifest")

    with SSHPool() as pool:
        try:
            state = Detector(pool.runner_for(h)).detect(service)
        except HarbormasterError as e:
            fail(str(e))

    typer.echo(f"{service} on {target}:")
    typer.echo(f"  exists      : {state.exists}")
    typer.echo(f"  running     : {state.running}")
    typer.echo(f"  mode        : {state.mode or '-'}")
    typer.echo(f"  version     : {state.version or '-'}")
    typer.echo(f"  detected by : {state.detected_by or '-'}")


# ------------------------------------------------------------------------------
# distribute
# ------------------------------------------------------------------------------

@app.command()
def distribute(
    local: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload"),
    remote: str = typer.Argument(..., help="Destination path on each host"),
    manifest: Path = MANIFEST_OPTION,
    role: Optional[List[str]] = typer.Option(None, "--role", help="Only hosts with this role (repeatable)"),
    mode: str = typer.Option("0644", "--mode", help="File mode (octal)"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Upload a shared file (e.g. a GeoIP database) to every matching host."""
    init_logging(verbose=debug)
    try:
        cfg = load_manifest(manifest)
    except HarbormasterError as e:
        fail(str(e))

    with SSHPool() as pool:
        try:
            hosts = distribute_file(cfg, pool, str(local), remote, parse_roles(role), mode=int(mode, 8))
        except HarbormasterError as e:
            fail(str(e))

    if not hosts:
        typer.echo("No hosts matched.")
        return
    typer.secho(f"✓ Uploaded {local.name} to {', '.join(hosts)}", fg=typer.colors.GREEN)


if __name__ == "__main__":
    app()
