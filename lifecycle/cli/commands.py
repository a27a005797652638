"""Click CLI commands for lifecycle-machines."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from pydantic import ValidationError

from lifecycle.audit import verify_history_chain
from lifecycle.config import AppConfig
from lifecycle.engine import Snapshot, StateMachineError
from lifecycle.registry import MACHINE_KINDS, AnyMachine, MachineKind, get_machine_kind
from lifecycle.utils.logging import correlation_scope, get_logger, setup_logging

_KIND_CHOICE = click.Choice(sorted(MACHINE_KINDS), case_sensitive=False)

log = get_logger("lifecycle.cli")


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Lifecycle machines: guarded state machines for orders, KYC, payments and markets."""
    try:
        cfg = AppConfig()
    except ValidationError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e
    setup_logging(level=cfg.log_level, log_format=cfg.log_format)
    ctx.obj = cfg


def _load(kind: MachineKind, snapshot_file: Path, cfg: AppConfig) -> AnyMachine:
    try:
        snapshot = Snapshot.model_validate_json(snapshot_file.read_text(encoding="utf-8"))
        return kind.restore_from(snapshot, cfg)
    except (StateMachineError, ValidationError) as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.pass_obj
def machines(cfg: AppConfig) -> None:
    """List the machine kinds."""
    for name, kind in MACHINE_KINDS.items():
        machine = kind.example(cfg)
        click.echo(
            f"{name:<12} {len(kind.states):>2} states  "
            f"{len(kind.events):>2} events  initial: {machine.state.value}"
        )


@cli.command()
@click.argument("kind", type=_KIND_CHOICE)
@click.pass_obj
def describe(cfg: AppConfig, kind: str) -> None:
    """Print the transition table for KIND."""
    mk = get_machine_kind(kind)
    machine = mk.example(cfg)

    click.echo(f"=== {mk.name} ===\n")
    click.echo(f"Initial:   {machine.state.value}")
    terminal = sorted(s.value for s in mk.terminal_states)
    click.echo(f"Terminal:  {', '.join(terminal) if terminal else '(none)'}")
    click.echo("")

    for tdef in machine.describe():
        sources = "|".join(s.value for s in tdef.sources)
        line = f"  {tdef.event.value:<20} {sources} -> {tdef.target.value}"
        if tdef.guard_description:
            line += f"  [{tdef.guard_description}]"
        click.echo(line)


@cli.command()
@click.argument("kind", type=_KIND_CHOICE)
@click.argument("snapshot_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def inspect(cfg: AppConfig, kind: str, snapshot_file: Path) -> None:
    """Restore SNAPSHOT_FILE as a KIND machine and show where it stands."""
    mk = get_machine_kind(kind)
    machine = _load(mk, snapshot_file, cfg)

    events = [e.value for e in machine.available_events()]
    click.echo(f"Machine:   {machine.id}")
    click.echo(f"State:     {machine.state.value}")
    click.echo(f"Terminal:  {'yes' if mk.is_terminal(machine.state) else 'no'}")
    click.echo(f"Available: {', '.join(events) if events else '(none)'}")
    click.echo(f"History:   {len(machine.get_history())} records")


@cli.command("verify-history")
@click.argument("kind", type=_KIND_CHOICE)
@click.argument("snapshot_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_obj
def verify_history(cfg: AppConfig, kind: str, snapshot_file: Path) -> None:
    """Check that each history record continues from the one before it."""
    machine = _load(get_machine_kind(kind), snapshot_file, cfg)
    history = machine.get_history()

    with correlation_scope(machine.id):
        broken = verify_history_chain(history)
        if broken is not None:
            prev, rec = history[broken - 1], history[broken]
            log.warning("history_chain_broken", record_index=broken, snapshot=str(snapshot_file))
            click.echo(
                f"Chain broken at record {broken}: "
                f"{rec.event} starts from {rec.from_state}, previous ended at {prev.to_state}"
            )
            sys.exit(1)
        if history and history[-1].to_state != machine.state.value:
            log.warning(
                "history_chain_broken",
                record_index=len(history) - 1,
                snapshot=str(snapshot_file),
            )
            click.echo(
                f"Chain broken at record {len(history) - 1}: "
                f"ends at {history[-1].to_state}, machine is in {machine.state.value}"
            )
            sys.exit(1)

        log.info("history_verified", records=len(history), snapshot=str(snapshot_file))
    click.echo(f"OK: {len(history)} records, chain intact")


@cli.command()
@click.pass_obj
def config(cfg: AppConfig) -> None:
    """Show current configuration."""
    click.echo("=== Lifecycle Configuration ===\n")

    click.echo(f"Log Level:    {cfg.log_level}")
    click.echo(f"Log Format:   {cfg.log_format}")
    click.echo("")

    click.echo("[Engine]")
    click.echo(f"  Max History Size:  {cfg.engine.max_history_size}")
    click.echo("")

    click.echo("[Payments]")
    click.echo(f"  Max Retries:       {cfg.payments.max_retries}")
