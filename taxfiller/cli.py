from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from taxfiller import __version__
from taxfiller.config import Config, load_config
from taxfiller.errors import TaxFillerError
from taxfiller.models.pipeline import ChainRunResult, ExportResult
from taxfiller.pipeline import checkpoint_heights, export_chains, run_chains
from taxfiller.utils.logging import get_logger
from taxfiller.utils.logging import setup as setup_logging

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)
console = Console()
logger = get_logger(__name__)


@dataclass
class CliState:
    home: Path = Path(".")
    password: str | None = None
    output_dir: Path | None = None

    def load(self) -> Config:
        config = load_config(self.home, self.password)
        if self.output_dir is not None:
            general = config.general.model_copy(update={"output_dir": str(self.output_dir)})
            config = config.model_copy(update={"general": general})
        return config


def _build_run_table(results: dict[str, ChainRunResult]) -> Table:
    table = Table(title="Tax Filler Results")
    table.add_column("Chain")
    table.add_column("Start height")
    table.add_column("Rows")
    table.add_column("Events written")
    table.add_column("Report")
    table.add_column("Events exported")

    for chain_id, r in results.items():
        events = str(r.classify.events_written)
        if r.classify.partial:
            events += f" [yellow](partial: workers {r.classify.failed_workers} stopped)[/yellow]"
        table.add_row(
            chain_id,
            str(r.fetch.start_height),
            str(r.fetch.row_count),
            events,
            str(r.export.path),
            str(r.export.event_count),
        )
    return table


def _build_export_table(results: dict[str, ExportResult]) -> Table:
    table = Table(title="Export Results")
    table.add_column("Chain")
    table.add_column("Report")
    table.add_column("Events")
    for chain_id, r in results.items():
        table.add_row(chain_id, str(r.path), str(r.event_count))
    return table


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj if ctx and ctx.obj else CliState()


def _fail(e: TaxFillerError) -> typer.Exit:
    logger.error(str(e))
    console.print(f"[red]Error: {e}[/red]")
    return typer.Exit(1)


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"taxfiller v{__version__}")
        raise typer.Exit()


@app.callback()
def init(
    ctx: typer.Context,
    _version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
    home: Path = typer.Option(
        Path("."),
        "--home",
        help="Directory in which to look for taxes.toml",
    ),
    password: str | None = typer.Option(
        None,
        "--password",
        envvar="PGPASSWORD",
        help="Database password, overrides db_password for every chain",
        show_default=False,
    ),
    output_dir: Path | None = typer.Option(
        None,
        "--out",
        "-o",
        help="Directory for <chain>.csv reports (overrides TOML config)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable verbose (DEBUG) logging",
    ),
) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    setup_logging(level=level)
    ctx.obj = CliState(home=home, password=password, output_dir=output_dir)


@app.command(help="Fetch new bundles, classify them into tax events and export reports")
def run(
    ctx: typer.Context,
    chains: list[str] | None = typer.Option(
        None,
        "--chain",
        "-c",
        help="Chain id to run (repeatable, default: every configured chain)",
    ),
) -> None:
    try:
        config = _state(ctx).load()
        console.log(f"home={_state(ctx).home}, chains={chains or list(config.chains)}")
        results = asyncio.run(run_chains(config, chains))
    except TaxFillerError as e:
        raise _fail(e)

    console.print(_build_run_table(results))
    console.print("Run complete.")


@app.command(help="Write reports from stored events without fetching anything new")
def export(
    ctx: typer.Context,
    chains: list[str] | None = typer.Option(None, "--chain", "-c", help="Chain id to export (repeatable)"),
) -> None:
    try:
        config = _state(ctx).load()
        results = asyncio.run(export_chains(config, chains))
    except TaxFillerError as e:
        raise _fail(e)

    console.print(_build_export_table(results))
    console.print("Export complete.")


@app.command(help="Show the checkpoint height stored for each chain")
def status(
    ctx: typer.Context,
    chains: list[str] | None = typer.Option(None, "--chain", "-c", help="Chain id to show (repeatable)"),
) -> None:
    try:
        config = _state(ctx).load()
        heights = asyncio.run(checkpoint_heights(config, chains))
    except TaxFillerError as e:
        raise _fail(e)

    table = Table(title="Checkpoints")
    table.add_column("Chain")
    table.add_column("Height")
    table.add_column("Workers")
    table.add_column("Auction house")
    for chain_id, height in heights.items():
        chain = config.chains[chain_id]
        table.add_row(chain_id, str(height), str(chain.num_threads), chain.skip_address)
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
