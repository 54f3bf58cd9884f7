# src/kubeboot/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

import typer
import yaml
from pydantic import ValidationError

from kubeboot.config.loader import load_config
from kubeboot.config.models import BootstrapConfig
from kubeboot.config.settings import load_settings
from kubeboot.deploy.executor import Orchestrator, RunOptions, RunReport
from kubeboot.deploy.phases import PhaseGroup
from kubeboot.deploy.planner import plan as build_plan
from kubeboot.deploy.reset import describe_reset, reset as reset_cluster
from kubeboot.errors import DestructiveActionNotConfirmed, InvalidTopology, StateLocked
from kubeboot.secrets.credentials import SecretLifecycleManager
from kubeboot.state.inventory import stored_endpoint
from kubeboot.state.ledger import ExecutionLedger
from kubeboot.state.store import StateStore
from kubeboot.topology.models import Topology
from kubeboot.utils.execution import ExecutionContext

from kubeboot.cli.helper import (
    format_plan,
    make_executor,
    phase_status,
    playbooks_dir,
    resolve_group,
    resolve_mode,
    split_ids,
    state_dir,
)

from kubeboot.logging.log import init_logging
from kubeboot.observers.console import ConsoleObserver
from kubeboot.observers.dispatcher import EventBus
from kubeboot.observers.jsonfile import JsonFileObserver
from kubeboot.observers.logger import LoggerObserver


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="kubeboot: kubeadm cluster bootstrap orchestrator")

EXIT_OK = 0
EXIT_HALTED = 1
EXIT_INVALID = 2
EXIT_LOCKED = 3

MODE_HELP = "full | tags | verify | dry-run | verbose"


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _load(config: str) -> Tuple[BootstrapConfig, Topology]:
    """Load config and declare the topology; exit 2 on anything invalid."""
    try:
        cfg = load_config(config)
        topo = cfg.to_topology()
        cfg.storage_options(topo)
    except FileNotFoundError as e:
        typer.secho(f"Config not found: {e.filename}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_INVALID)
    except (ValidationError, InvalidTopology, ValueError, yaml.YAMLError) as e:
        typer.secho(f"Invalid configuration: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_INVALID)
    return cfg, topo


def _build_orchestrator(
    config: str,
    cfg: BootstrapConfig,
    topo: Topology,
    *,
    verbose: bool,
    events: bool,
) -> Orchestrator:
    settings = load_settings()
    logger, run_id, log_path = init_logging(base_dir=settings.log_dir, verbose=verbose)

    store = StateStore(state_dir(Path(config), cfg, settings))
    observers: List = [
        LoggerObserver(logger),
        JsonFileObserver(store.events_path(run_id)),
    ]
    if events:
        observers.append(ConsoleObserver())

    typer.echo("")
    typer.secho("kubeboot", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo(f"  State    : {store.root}")
    typer.echo(f"  Topology : {topo.summary()}")
    typer.echo("")

    secrets = SecretLifecycleManager(
        join_token_ttl=cfg.credentials.join_token_ttl,
        certificate_key_ttl=cfg.credentials.certificate_key_ttl,
    )
    executor = make_executor(cfg, playbooks_dir(Path(config), cfg, settings), store.inventory_path)
    return Orchestrator(
        topo,
        executor,
        store,
        secrets,
        storage=cfg.storage_options(topo),
        cluster_name=cfg.cluster_name,
        pod_network_cidr=cfg.pod_network_cidr,
        inventory_vars=cfg.inventory_variables(),
        ping_timeout=cfg.executor.ping_timeout_seconds,
        action_timeout=cfg.executor.timeout_seconds,
        bus=EventBus(observers),
        run_id=run_id,
    )


def _print_report(report: RunReport) -> None:
    for r in report.runs:
        line = f"  {r.outcome.value:<9} {r.phase_id}"
        if r.error:
            line += f"  ({r.error_kind}: {r.error})"
        typer.echo(line)
    typer.echo("")
    color = typer.colors.GREEN if report.ok else typer.colors.RED
    typer.secho(report.summary(), fg=color, bold=True)
    if report.admin_bundle:
        typer.secho(
            f"Admin kubeconfig: {report.admin_bundle} (sensitive: full cluster-admin access)",
            fg=typer.colors.YELLOW,
        )


def _execute(
    orch: Orchestrator,
    opts: RunOptions,
    *,
    yes: bool,
) -> None:
    phases = orch.plan(emit=False)
    typer.echo("Execution order:")
    for line in format_plan(phases, orch.hosts_for):
        typer.echo(line)
    typer.echo("")

    if opts.context.mode.applies_changes and not yes:
        if not typer.confirm("Proceed?", default=False):
            typer.echo("Cancelled.")
            raise typer.Exit(EXIT_OK)

    try:
        report = orch.run(opts)
    except StateLocked as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_LOCKED)
    except (DestructiveActionNotConfirmed, ValueError) as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_INVALID)

    _print_report(report)
    if not report.ok:
        raise typer.Exit(EXIT_HALTED)


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def plan(
    config: str = typer.Argument(..., help="Cluster definition YAML"),
):
    """Print the phase plan for a topology without touching any host."""
    cfg, topo = _load(config)
    phases = build_plan(
        topo,
        cfg.storage_options(topo),
        cluster_name=cfg.cluster_name,
        pod_network_cidr=cfg.pod_network_cidr,
    )
    typer.echo(f"Topology: {topo.summary()}")

    def hosts_for(p):
        return [p.node] if p.node else [n.name for n in topo.hosts_for_roles(p.roles)]

    for line in format_plan(phases, hosts_for):
        typer.echo(line)


@app.command()
def up(
    config: str = typer.Argument(..., help="Cluster definition YAML"),
    mode: str = typer.Option("full", "--mode", help=MODE_HELP),
    tags: Optional[str] = typer.Option(None, "--tags", help="Comma-separated tag subset"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the proceed? prompt"),
    force: List[str] = typer.Option([], "--force", help="Re-run a phase that already succeeded"),
    confirm_destructive: bool = typer.Option(
        False, "--confirm-destructive", help="Required to --force a destructive phase"
    ),
    events: bool = typer.Option(False, "--events", help="Echo lifecycle events to the console"),
):
    """Run the whole plan, resuming after the last successful phase."""
    ctx = resolve_mode(mode, tags)
    cfg, topo = _load(config)
    orch = _build_orchestrator(config, cfg, topo, verbose=ctx.verbosity > 0, events=events)
    _execute(
        orch,
        RunOptions(context=ctx, force=split_ids(force), confirm_destructive=confirm_destructive),
        yes=yes,
    )


@app.command()
def phase(
    group: str = typer.Argument(..., help=" | ".join(g.value for g in PhaseGroup)),
    config: str = typer.Argument(..., help="Cluster definition YAML"),
    mode: str = typer.Option("full", "--mode", help=MODE_HELP),
    tags: Optional[str] = typer.Option(None, "--tags", help="Comma-separated tag subset"),
    only: List[str] = typer.Option([], "--only", help="Restrict to these phase ids"),
    yes: bool = typer.Option(False, "--yes", "-y"),
    force: List[str] = typer.Option([], "--force"),
    confirm_destructive: bool = typer.Option(False, "--confirm-destructive"),
    events: bool = typer.Option(False, "--events"),
):
    """Run one phase group (preconditions must already be satisfied)."""
    grp = resolve_group(group)
    ctx: ExecutionContext = resolve_mode(mode, tags)
    cfg, topo = _load(config)
    orch = _build_orchestrator(config, cfg, topo, verbose=ctx.verbosity > 0, events=events)
    _execute(
        orch,
        RunOptions(
            context=ctx,
            groups=(grp,),
            only=split_ids(only),
            force=split_ids(force),
            confirm_destructive=confirm_destructive,
        ),
        yes=yes,
    )


@app.command()
def status(
    config: str = typer.Argument(..., help="Cluster definition YAML"),
):
    """Show per-phase state from the execution ledger."""
    cfg, topo = _load(config)
    store = StateStore(state_dir(Path(config), cfg, load_settings()))

    previous = stored_endpoint(store.inventory_path)
    current = topo.control_plane_endpoint()
    if previous is not None and previous != current:
        typer.secho(
            f"Stored state is for endpoint {previous}, config declares {current}; "
            "the next run starts a new ledger.",
            fg=typer.colors.YELLOW,
        )
        ledger = ExecutionLedger()
    else:
        try:
            ledger = ExecutionLedger.load(store.ledger_path)
        except ValueError as e:
            typer.secho(str(e), fg=typer.colors.RED, err=True)
            raise typer.Exit(EXIT_INVALID)

    phases = build_plan(topo, cfg.storage_options(topo), cluster_name=cfg.cluster_name)
    width = max(len(p.id) for p in phases)
    typer.echo(f"Topology: {topo.summary()}")
    for p in phases:
        state, detail = phase_status(ledger, p.id)
        typer.echo(f"  {p.id:<{width}}  {state:<8} {detail or ''}".rstrip())

    if store.lock_path.exists():
        typer.secho(f"Locked: {store.lock_path}", fg=typer.colors.YELLOW)
    if store.admin_bundle_path.exists():
        typer.echo(f"Admin kubeconfig: {store.admin_bundle_path}")


@app.command()
def reset(
    config: str = typer.Argument(..., help="Cluster definition YAML"),
    confirm: Optional[str] = typer.Option(
        None, "--confirm", help="Type 'yes' to skip the interactive confirmation"
    ),
    events: bool = typer.Option(False, "--events"),
):
    """Tear the cluster down with kubeadm reset and archive the ledger."""
    cfg, topo = _load(config)
    orch = _build_orchestrator(config, cfg, topo, verbose=False, events=events)

    typer.secho(describe_reset(orch).describe(), fg=typer.colors.RED)
    if confirm is None:
        confirm = typer.prompt("Type 'yes' to destroy the cluster", default="no")

    try:
        reset_cluster(orch, confirm=confirm)
    except DestructiveActionNotConfirmed:
        typer.echo("Cancelled.")
        raise typer.Exit(EXIT_OK)
    except StateLocked as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_LOCKED)
    except Exception as e:
        typer.secho(f"Reset failed: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_HALTED)

    typer.secho("Reset complete.", fg=typer.colors.GREEN)


def main() -> None:
    app()


if __name__ == "__main__":
    app()
