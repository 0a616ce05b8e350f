from __future__ import annotations

import json
import logging
from pathlib import Path

import click

from ceremony_monitor import __version__
from ceremony_monitor.bus import EventBus
from ceremony_monitor.config import Environment, RunConfig, load_run_config, save_run_config
from ceremony_monitor.coordinator_config import write_coordinator_config
from ceremony_monitor.errors import CeremonyMonitorError
from ceremony_monitor.events import CeremonyEvent
from ceremony_monitor.membership import check_participants_in_round
from ceremony_monitor.monitor import CoordinatorMonitor
from ceremony_monitor.participants import ParticipantIdentity
from ceremony_monitor.process import CoordinatorProcess
from ceremony_monitor.state_machine import RoundStateMachine

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class EchoEventBus(EventBus):
    def publish(self, event: CeremonyEvent) -> None:
        click.echo(json.dumps(event.to_dict(), ensure_ascii=False))


def _resolve_config_path(base_dir: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = base_dir / config_path
    return config_path.resolve()


def _load_run_config(config_value: str) -> RunConfig:
    base_dir = Path.cwd().resolve()
    try:
        config = load_run_config(_resolve_config_path(base_dir, config_value))
    except CeremonyMonitorError as exc:
        raise click.ClickException(str(exc)) from exc
    return config.resolve_paths(base_dir)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
)
def cli(log_level: str) -> None:
    """Supervise a setup ceremony coordinator and report its round lifecycle."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)


@cli.command("init")
@click.option("--binary", default=None, help="Path to the coordinator binary.")
@click.option(
    "--environment",
    type=click.Choice([environment.value for environment in Environment]),
    default=None,
)
@click.option("--out-dir", default=None, help="Directory for coordinator artifacts.")
@click.option("--config", "config_value", default="ceremony.toml", show_default=True)
def init_command(
    binary: str | None, environment: str | None, out_dir: str | None, config_value: str
) -> None:
    config_path = _resolve_config_path(Path.cwd().resolve(), config_value)
    try:
        config = load_run_config(config_path)
        if binary:
            config.coordinator_bin = Path(binary)
        if environment:
            config.environment = Environment(environment)
        if out_dir:
            config.out_dir = Path(out_dir)
        save_run_config(config_path, config)
    except CeremonyMonitorError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Config: {config_path}")
    click.echo(f"Environment: {config.environment.value}")


@cli.command("write-config")
@click.option("--config", "config_value", default="ceremony.toml", show_default=True)
def write_config_command(config_value: str) -> None:
    config = _load_run_config(config_value)
    try:
        path = write_coordinator_config(config)
    except CeremonyMonitorError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Coordinator config: {path}")


@cli.command("run")
@click.option("--config", "config_value", default="ceremony.toml", show_default=True)
def run_command(config_value: str) -> None:
    config = _load_run_config(config_value)
    process = CoordinatorProcess(config, EchoEventBus())
    try:
        process.start()
        result = process.wait()
    except CeremonyMonitorError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Coordinator exited with status {result.exit_code}", err=True)
    click.echo(f"Final phase: {result.monitor.final_phase}", err=True)
    if result.shutdown_reason is not None:
        click.echo(f"Shutdown requested: {result.shutdown_reason.value}", err=True)


@cli.command("replay")
@click.argument("log_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def replay_command(log_file: Path) -> None:
    """Feed an archived coordinator log through a fresh state machine."""
    machine = RoundStateMachine(EchoEventBus())
    with log_file.open("rb") as stream:
        try:
            result = CoordinatorMonitor(stream, machine).run()
        except CeremonyMonitorError as exc:
            raise click.ClickException(str(exc)) from exc
    click.echo(f"Lines: {result.lines_read}", err=True)
    click.echo(f"Final phase: {result.final_phase}", err=True)


@cli.command("check-round")
@click.argument("round_number", type=int)
@click.option("--contributor", "contributors", multiple=True, help="Expected contributor address.")
@click.option("--verifier", "verifiers", multiple=True, help="Expected verifier address.")
@click.option("--config", "config_value", default="ceremony.toml", show_default=True)
def check_round_command(
    round_number: int,
    contributors: tuple[str, ...],
    verifiers: tuple[str, ...],
    config_value: str,
) -> None:
    config = _load_run_config(config_value)
    try:
        snapshot = check_participants_in_round(
            config,
            round_number,
            [ParticipantIdentity.contributor(address) for address in contributors],
            [ParticipantIdentity.verifier(address) for address in verifiers],
        )
    except CeremonyMonitorError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(
        f"Round {round_number}: {len(snapshot.contributor_ids)} contributors, "
        f"{len(snapshot.verifier_ids)} verifiers"
    )
