"""Main CLI entry point."""

import asyncio
from decimal import Decimal
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from config import Settings, get_settings
from poolrewards.enums import Mode
from poolrewards.services.schemas import ServerState
from poolrewards.services.state_store import EpochStateStore

app = typer.Typer(
    name="poolrewards",
    help="Stake pool reward engine CLI",
    add_completion=False
)

console = Console()


def load_settings() -> Settings:
    """Settings from the environment, exiting with status 1 when invalid."""
    try:
        return get_settings()
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red]\n{e}")
        raise typer.Exit(code=1)


def load_snapshot(settings: Settings, epoch: Optional[int]) -> ServerState:
    """Stored snapshot for ``epoch``, or the newest one for the configured mode."""
    store = EpochStateStore(settings.resolved_data_dir)
    if epoch is None:
        epochs = store.list_epochs(settings.mode)
        if not epochs:
            console.print(f"[red]No snapshots for mode {settings.mode.value} in {store.data_dir}[/red]")
            raise typer.Exit(code=1)
        epoch = epochs[-1]

    state = asyncio.run(store.load(settings.mode, epoch))
    if state is None:
        console.print(f"[red]No snapshot for epoch {epoch}[/red]")
        raise typer.Exit(code=1)
    return state


def ada(lovelace: int) -> str:
    return f"{Decimal(lovelace) / 1_000_000:,.6f}"


@app.command()
def serve():
    """Run the HTTP API."""
    from app.main import start

    start()


@app.command()
def sync():
    """Load, extend or fully build the snapshot for the current epoch."""
    from poolrewards.services.epoch_sync import EpochSyncController
    from poolrewards.services.ledger_client import LedgerClient
    from poolrewards.services.margins import strategy_for

    settings = load_settings()

    async def _run() -> ServerState:
        async with LedgerClient.from_settings(settings) as client:
            controller = EpochSyncController(
                client=client,
                store=EpochStateStore(settings.resolved_data_dir),
                strategy=strategy_for(settings),
            )
            return await controller.start()

    console.print(f"Syncing pool {settings.pool_id} in mode {settings.mode.value}...")
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console
    ) as progress:
        task = progress.add_task("Fetching ledger data...", total=None)
        state = asyncio.run(_run())
        progress.remove_task(task)

    table = Table(title="Sync Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Mode", state.mode.value)
    table.add_row("Current Epoch", str(state.current_epoch))
    table.add_row("Synced At", state.synced_at)
    table.add_row("Pools Known", str(len(state.pool_list)))
    table.add_row("Epochs Rewarded", str(len(state.reward_data)))
    table.add_row("Owner Rewards", str(len(state.owner_reward_data)))
    table.add_row("Calculator Margin", str(state.calculator_data.margin))

    console.print(table)


@app.command()
def rewards(
    epoch: int = typer.Argument(..., min=0, help="Epoch to show rewards for"),
    snapshot_epoch: Optional[int] = typer.Option(
        None, "--snapshot-epoch", "-s", help="Snapshot to read (default: newest)"
    ),
):
    """Show delegator and owner rewards for one epoch."""
    from poolrewards.services.epoch_sync import epoch_reward_rows

    settings = load_settings()
    state = load_snapshot(settings, snapshot_epoch)
    rows = epoch_reward_rows(state, epoch)

    if not rows:
        console.print(f"[yellow]No rewards for epoch {epoch} in snapshot {state.current_epoch}[/yellow]")
        return

    table = Table(title=f"Rewards for Epoch {epoch}")
    table.add_column("Role", style="cyan")
    table.add_column("Stake Address")
    table.add_column("Stake (ADA)", justify="right")
    table.add_column("Reward (ADA)", justify="right", style="green")

    for row in rows:
        table.add_row(row["role"], row["address"], ada(row["stake"]), ada(row["reward"]))

    console.print(table)
    total = sum(row["reward"] for row in rows)
    console.print(f"\nTotal distributed: [bold]{ada(total)}[/bold] ADA across {len(rows)} addresses")


@app.command()
def medians(
    last: int = typer.Option(10, "--last", "-n", min=1, help="Number of most recent epochs"),
    snapshot_epoch: Optional[int] = typer.Option(
        None, "--snapshot-epoch", "-s", help="Snapshot to read (default: newest)"
    ),
):
    """Show the median margin of block-producing pools per epoch."""
    settings = load_settings()
    if settings.mode is not Mode.MEDIAN_MARGIN:
        console.print("[yellow]Median margins are only kept in MEDIAN_MARGIN mode[/yellow]")
        raise typer.Exit(code=1)

    state = load_snapshot(settings, snapshot_epoch)
    epochs = sorted(state.median_margins)[-last:]

    table = Table(title="Median Margins")
    table.add_column("Epoch", style="cyan", justify="right")
    table.add_column("Pools", justify="right")
    table.add_column("Median", style="green", justify="right")

    for epoch in epochs:
        value = state.median_margins[epoch]
        pools = len(state.pool_margins.get(epoch, []))
        table.add_row(str(epoch), str(pools), "no data" if value is None else f"{value:.4%}")

    console.print(table)


if __name__ == "__main__":
    app()
