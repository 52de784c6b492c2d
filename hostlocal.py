#!/usr/bin/env python3
"""
🌐 Host-local IPAM CLI
- One address per (container id, interface), handed out round-robin
- Claims survive crashes and concurrent invocations
- File-backed ledger by default, SQL database when configured
"""

import ipaddress
import json
import logging
import sys

import click
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from allocator import AllocateError, Allocator
from config import ConfigError, NetworkConfig, load_config
from store import LastReservedIPNotFound, MemoryStore, Store, StoreError

CNI_VERSION = "0.4.0"

console = Console()
network: NetworkConfig = None
store: Store = None


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(message: str):
    click.echo(f"❌ {message}", err=True)
    sys.exit(1)


def _parse_ip(value: str):
    try:
        return ipaddress.ip_address(value)
    except ValueError as e:
        _fail(f"Invalid ip: {e}")


def _usage_bar(used: int, total: int) -> str:
    util = (used / total) * 100 if total > 0 else 0
    bar = "█" * min(int(util / 5), 20) + "░" * max(20 - int(util / 5), 0)
    return f"{bar} {util:.1f}%"


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option("0.1.0", "--version", "-v")
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True),
    envvar="HOSTLOCAL_CONFIG",
    help="Path to the network config (YAML or JSON)",
)
@click.option("--verbose", is_flag=True, help="Log every allocation step")
@click.option("--dry-run", is_flag=True, help="Use a throwaway in-memory store")
@click.pass_context
def cli(ctx, config_file, verbose, dry_run):
    """🌐 Host-local IPAM

    Ranges → round-robin candidates → exclusive claims
    """
    global network, store
    _setup_logging(verbose)

    try:
        network = load_config(config_file)
        store = MemoryStore() if dry_run else network.open_store()
    except ConfigError as e:
        _fail(str(e))
    except StoreError as e:
        _fail(f"Cannot open store: {e}")

    ctx.call_on_close(store.close)


def _allocator() -> Allocator:
    return Allocator(network.range_set, store, network.range_id)


# ============ ALLOCATION ============


@cli.command()
@click.option("--id", "-i", "container_id", required=True, envvar="CNI_CONTAINERID")
@click.option("--ifname", "-n", default="eth0", envvar="CNI_IFNAME", show_default=True)
@click.option("--ip", "requested_ip", default=None, help="Ask for a specific address")
def add(container_id, ifname, requested_ip):
    """Allocate an address for a container interface"""
    if requested_ip is not None:
        requested_ip = _parse_ip(requested_ip)

    try:
        ip_config = _allocator().get(container_id, ifname, requested_ip)
    except AllocateError as e:
        _fail(str(e))

    result = {"cniVersion": CNI_VERSION, "ips": [ip_config.to_dict()], "dns": {}}
    click.echo(json.dumps(result, indent=2))


@cli.command(name="del")
@click.option("--id", "-i", "container_id", required=True, envvar="CNI_CONTAINERID")
@click.option("--ifname", "-n", default="eth0", envvar="CNI_IFNAME", show_default=True)
def delete(container_id, ifname):
    """Release every address of a container interface"""
    try:
        _allocator().release(container_id, ifname)
    except AllocateError as e:
        _fail(str(e))
    click.echo(f"✅ Released {container_id}/{ifname}")


@cli.command()
@click.argument("ip")
def release(ip):
    """Release a single address"""
    address = _parse_ip(ip)
    if not network.range_set.contains(address):
        _fail(f"{ip} is not in any configured range")

    try:
        with store:
            store.release(address)
    except StoreError as e:
        _fail(str(e))
    click.echo(f"✅ Released {address}")


# ============ REPORTS ============


@cli.command(name="list")
def list_reservations():
    """List all reservations"""
    try:
        records = store.list_reservations()
    except StoreError as e:
        _fail(str(e))

    if not records:
        click.echo("No reservations found.")
        return

    table = Table("Address", "Container ID", "Interface", box=box.ROUNDED)
    for r in records:
        table.add_row(str(r.ip), r.container_id, r.ifname)
    console.print(table)


@cli.command()
def show():
    """Show ranges and utilization"""
    try:
        records = store.list_reservations()
        last = store.last_reserved_ip(str(network.range_id))
    except LastReservedIPNotFound:
        last = None
    except StoreError as e:
        _fail(str(e))

    console.print(Panel(f"🌐 Network: {network.name}", style="bold cyan"))
    console.print(f"   Config: {network.source}")
    console.print(f"   Store: {store.__class__.__name__}")
    if last is not None:
        console.print(f"   Last reserved: {last}")

    for i, r in enumerate(network.range_set):
        used = sum(1 for rec in records if r.contains(rec.ip))
        total = r.size()
        is_last = i == len(network.range_set) - 1
        prefix = "   └──" if is_last else "   ├──"
        connector = "       " if is_last else "   │   "

        console.print(f"{prefix} 🔢 {r.subnet} {r}")
        console.print(f"{connector} Gateway: {r.gateway}")
        console.print(f"{connector} Used: {used}/{total} IPs {_usage_bar(used, total)}")


if __name__ == "__main__":
    cli()
