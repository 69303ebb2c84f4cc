"""
Command line interface for the weatherstation gateway.
`run` starts the daemon, the other commands work on the store directly.
"""

import asyncio
from datetime import datetime

import click
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..ble.address import AddressParseError, BluetoothAddress
from ..service.daemon import run_daemon
from ..storage.schema import AddrDbEntry
from ..storage.store import Store, StorageError
from ..utils import timestamp
from ..utils.config import Config, ConfigurationError


console = Console()


class AddressType(click.ParamType):
    """Click parameter parsing a canonical Bluetooth address."""
    name = "address"

    def convert(self, value, param, ctx):
        if isinstance(value, BluetoothAddress):
            return value
        try:
            return BluetoothAddress.parse(value)
        except AddressParseError as e:
            self.fail(str(e), param, ctx)


ADDRESS = AddressType()


def _open_store(config: Config) -> Store:
    try:
        return Store.open(config.db_path)
    except StorageError as e:
        raise click.ClickException(str(e))


@click.group()
@click.version_option(version=__version__, prog_name="weatherstation")
@click.option("--env-file", type=click.Path(dir_okay=False), default=None,
              help="Environment file to load (defaults to .env in the project root)")
@click.pass_context
def cli(ctx, env_file):
    """BLE weatherstation gateway - sensor polling, storage and HTTP/MQTT publishing."""
    ctx.obj = Config(env_file)


@cli.command()
@click.pass_obj
def run(config: Config):
    """Run the gateway daemon."""
    try:
        config.validate_configuration()
    except ConfigurationError as e:
        raise click.ClickException(str(e))
    asyncio.run(run_daemon(config))


@cli.command()
@click.pass_obj
def sensors(config: Config):
    """List registered sensors."""
    store = _open_store(config)
    try:
        with store.read_txn() as txn:
            rows = [(addr, txn.get_addr(addr)) for addr in txn.known_addrs()]
    except StorageError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    if not rows:
        console.print("[yellow]No sensors registered yet[/yellow]")
        return

    table = Table(title="Registered Sensors", show_header=True, header_style="bold magenta")
    table.add_column("Address", style="cyan")
    table.add_column("Label", style="green")
    for addr, entry in rows:
        table.add_row(str(addr), (entry.label if entry else None) or "-")
    console.print(table)


@cli.command()
@click.argument("address", type=ADDRESS)
@click.option("--hours", "-h", default=24, show_default=True, type=click.IntRange(min=1),
              help="How many hours back to show")
@click.pass_obj
def log(config: Config, address: BluetoothAddress, hours: int):
    """Show the logged samples of one sensor."""
    end = timestamp.now() + 1
    start = timestamp.bottoming_sub(end, hours * 60 * 60)

    store = _open_store(config)
    try:
        with store.read_txn() as txn:
            entries = txn.get_log(address, start, end)
    except StorageError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    if entries is None:
        raise click.ClickException(f"No log for {address}")

    table = Table(title=f"Log of {address}", show_header=True, header_style="bold blue")
    table.add_column("Time")
    table.add_column("Temperature", justify="right")
    table.add_column("Humidity", justify="right")
    table.add_column("Pressure", justify="right")
    for ts, values in entries:
        table.add_row(
            datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S"),
            str(values.temperature),
            str(values.humidity),
            str(values.pressure),
        )
    console.print(table)
    console.print(f"[dim]{len(entries)} samples[/dim]")


@cli.command()
@click.argument("address", type=ADDRESS)
@click.argument("label", required=False)
@click.pass_obj
def label(config: Config, address: BluetoothAddress, label):
    """Set (or clear) the label of a sensor."""
    store = _open_store(config)
    try:
        with store.write_txn() as txn:
            txn.put_addr(address, AddrDbEntry(label=label))
            txn.commit()
    except StorageError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    if label:
        console.print(f"[green]Labeled {address} as {label!r}[/green]")
    else:
        console.print(f"[green]Cleared label of {address}[/green]")


@cli.command()
@click.argument("address", type=ADDRESS)
@click.pass_obj
def forget(config: Config, address: BluetoothAddress):
    """Remove a sensor from the registry. Its log is kept."""
    store = _open_store(config)
    try:
        with store.write_txn() as txn:
            removed = txn.delete_addr(address)
            txn.commit()
    except StorageError as e:
        raise click.ClickException(str(e))
    finally:
        store.close()

    if removed:
        console.print(f"[green]Forgot {address}[/green]")
    else:
        console.print(f"[yellow]{address} was not registered[/yellow]")


if __name__ == "__main__":
    cli()
