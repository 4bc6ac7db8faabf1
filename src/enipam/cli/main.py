"""
enipam CLI entry point.

Usage:
    enipam [OPTIONS] COMMAND [ARGS]...

Every command checks that it runs as root on a cloud instance before doing
anything. Mutating commands additionally take the host-wide lock.
"""

import os
from typing import Annotated

import typer

from enipam import __version__
from enipam.cli.formatters import (
    format_address_table,
    format_allocation_table,
    format_diagnostics_table,
    format_interface_table,
    format_limits_table,
    format_peer_cidr_table,
    format_registry_table,
    format_subnet_table,
    format_vpc_cidr_table,
)
from enipam.cli.output import console, print_error, print_success
from enipam.cloud.base import CloudClient
from enipam.cloud.ec2 import Ec2CloudClient
from enipam.cloud.metadata import MetadataClient
from enipam.config import config, load_config_from_env
from enipam.core.addresses import FIRST_AVAILABLE
from enipam.core.gc import UNLIMITED
from enipam.core.lock import HostLock
from enipam.errors import (
    BatchError,
    IpamError,
    PartialAllocationError,
    PreconditionError,
)
from enipam.models.cloud import Interface
from enipam.models.enums import LogLevel
from enipam.netstate import NetlinkStateReader
from enipam.service import IpamService
from enipam.utils.cli import parse_duration, parse_filter
from enipam.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

app = typer.Typer(
    name="enipam",
    help="Interface with ENI adapters and the secondary addresses handed to containers",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Commands that need neither a cloud instance nor root
NO_PRECONDITIONS = {"version"}


# =============================================================================
# Wiring
# =============================================================================


def build_service() -> IpamService:
    """Construct the service against the real cloud, kernel and files."""
    metadata = MetadataClient(
        config.METADATA_URL,
        timeout=config.METADATA_TIMEOUT_SECONDS,
        token_ttl=config.METADATA_TOKEN_TTL_SECONDS,
    )
    cloud = Ec2CloudClient(metadata, region=config.AWS_REGION)
    return IpamService(
        cloud=cloud,
        netstate=NetlinkStateReader(),
        lock=HostLock(config.LOCK_FILE),
        registry_path=config.REGISTRY_FILE,
    )


def check_preconditions(cloud: CloudClient) -> None:
    """
    Refuse to run off-instance or without root.

    Raises:
        PreconditionError: On either violation.
    """
    if not cloud.is_running_on_cloud_instance():
        raise PreconditionError("This command must be run from a running ec2 instance")
    if config.REQUIRE_ROOT and os.geteuid() != 0:
        raise PreconditionError("This command must be run as root")


def _service(ctx: typer.Context) -> IpamService:
    return ctx.obj


def _report_batch(e: BatchError) -> None:
    for item, error in e.failures.items():
        print_error(f"{item}: {error}")


def _print_removed(interfaces: list[Interface]) -> None:
    for interface in interfaces:
        print_success(f"removed {interface.id} ({interface.local_name})")


def _print_addresses(verb: str, addresses: list[str]) -> None:
    for address in addresses:
        console.print(f"{verb} {address}")


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Annotated[
        LogLevel | None,
        typer.Option("--log-level", "-l", help="Log verbosity (stderr)"),
    ] = None,
):
    """
    Manage ENIs and their secondary private IPs for container networking.
    """
    try:
        load_config_from_env()
    except ValueError as e:
        print_error(f"Invalid ENIPAM_* environment setting: {e}")
        raise typer.Exit(1)

    configure_logging(log_level or config.LOG_LEVEL, config.LOG_FILE or None)

    if ctx.invoked_subcommand in NO_PRECONDITIONS:
        return

    service = build_service()
    try:
        check_preconditions(service.cloud)
    except PreconditionError as e:
        print_error(str(e))
        raise typer.Exit(1)
    ctx.obj = service


@app.command("version")
def version():
    """Show version information."""
    console.print(f"enipam v{__version__}")


# =============================================================================
# Interface Commands
# =============================================================================


@app.command("new-interface")
def new_interface(
    ctx: typer.Context,
    security_groups: Annotated[
        list[str] | None,
        typer.Argument(help="Security group ids to attach"),
    ] = None,
    subnet_filter: Annotated[
        str,
        typer.Option(
            "--subnet_filter",
            help="Comma separated key=value filters to restrict subnets",
        ),
    ] = "",
    ip_batch_size: Annotated[
        int,
        typer.Option(
            "--ip_batch_size",
            help="Number of ips to allocate on the interface. Specify 0 to max out the interface.",
        ),
    ] = 1,
):
    """Create a new interface."""
    try:
        filters = parse_filter(subnet_filter)
        interface = _service(ctx).create_interface(
            security_groups or [], filters, ip_batch_size
        )
        console.print(format_interface_table([interface]))
    except PartialAllocationError as e:
        if e.granted:
            console.print(format_interface_table([e.granted[0].interface]))
        print_error(str(e))
        raise typer.Exit(1)
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("remove-interface")
def remove_interface(
    ctx: typer.Context,
    interface_ids: Annotated[
        list[str] | None,
        typer.Argument(help="Interface ids to remove"),
    ] = None,
):
    """Remove an existing interface."""
    try:
        _print_removed(_service(ctx).remove_interfaces(interface_ids or []))
    except BatchError as e:
        _print_removed(e.done)
        _report_batch(e)
        raise typer.Exit(1)
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("eniif")
def list_interfaces(ctx: typer.Context):
    """List all ENI interfaces and their setup with addresses."""
    try:
        console.print(format_interface_table(_service(ctx).list_interfaces()))
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


# =============================================================================
# Address Commands
# =============================================================================


@app.command("allocate-first-available")
def allocate_first_available(
    ctx: typer.Context,
    index: Annotated[
        int,
        typer.Option(
            "--index",
            help=f"Interface position; {FIRST_AVAILABLE} picks the first with spare capacity",
        ),
    ] = FIRST_AVAILABLE,
    ip_batch_size: Annotated[
        int,
        typer.Option(
            "--ip_batch_size",
            help="Number of ips to allocate on the interface. Specify 0 to max out the interface.",
        ),
    ] = 1,
):
    """Allocate a private IP on the first available interface."""
    try:
        allocations = _service(ctx).allocate(index, ip_batch_size)
        for alloc in allocations:
            console.print(f"allocated {alloc.ip} on {alloc.interface.local_name}")
    except PartialAllocationError as e:
        for alloc in e.granted:
            console.print(f"allocated {alloc.ip} on {alloc.interface.local_name}")
        print_error(str(e))
        raise typer.Exit(1)
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("deallocate")
def deallocate(
    ctx: typer.Context,
    addresses: Annotated[
        list[str] | None,
        typer.Argument(help="Private IPs to release"),
    ] = None,
):
    """Deallocate a private IP."""
    try:
        _print_addresses("deallocated", _service(ctx).deallocate(addresses or []))
    except BatchError as e:
        _print_addresses("deallocated", e.done)
        _report_batch(e)
        raise typer.Exit(1)
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("free-ips")
def free_ips(
    ctx: typer.Context,
    index: Annotated[
        int,
        typer.Option("--index", help="Only consider interfaces at or after this position"),
    ] = 0,
    update_registry: Annotated[
        bool,
        typer.Option(
            "--update-registry",
            help="Track newly free IPs and forget reused ones (takes the lock)",
        ),
    ] = False,
):
    """List all currently unassigned AWS IP addresses."""
    service = _service(ctx)
    try:
        if update_registry:
            free = service.sync_registry(index).free
        else:
            free = service.free_ips(index)
        console.print(format_allocation_table(free))
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("claim-ip")
def claim_ip(
    ctx: typer.Context,
    index: Annotated[
        int,
        typer.Option("--index", help="Only use interfaces at or after this position"),
    ] = 0,
    ip_batch_size: Annotated[
        int,
        typer.Option(
            "--ip_batch_size",
            help="Addresses to allocate when nothing is free. Specify 0 to max out the interface.",
        ),
    ] = 1,
):
    """Hand out one free IP, allocating more when none is free."""
    try:
        alloc = _service(ctx).claim(index, ip_batch_size)
        console.print(f"{alloc.ip} {alloc.interface.local_name}")
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("release-ip")
def release_ip(
    ctx: typer.Context,
    addresses: Annotated[
        list[str] | None,
        typer.Argument(help="IPs no longer used by a container"),
    ] = None,
):
    """Return IPs to the free registry so GC can reap them later."""
    try:
        _print_addresses("released", _service(ctx).release(addresses or []))
    except BatchError as e:
        _print_addresses("released", e.done)
        _report_batch(e)
        raise typer.Exit(1)
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("addr")
def list_addresses(ctx: typer.Context):
    """List all bound IP addresses."""
    try:
        console.print(format_address_table(_service(ctx).assigned_addresses()))
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


# =============================================================================
# Instance Queries
# =============================================================================


@app.command("subnets")
def list_subnets(ctx: typer.Context):
    """Show available subnets for this host."""
    try:
        console.print(format_subnet_table(_service(ctx).list_subnets()))
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("limits")
def show_limits(ctx: typer.Context):
    """Display limits for ENI for this instance type."""
    try:
        console.print(format_limits_table(_service(ctx).instance_limits()))
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("maxpods")
def show_max_pods(
    ctx: typer.Context,
    max_: Annotated[
        int,
        typer.Option("--max", help="Cap the result to this value when positive"),
    ] = 0,
):
    """Maximum number of pod addresses usable on this instance. Limit with --max."""
    try:
        typer.echo(str(_service(ctx).max_pods(max_)))
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("bugs")
def show_bugs(ctx: typer.Context):
    """Show any bugs associated with this instance."""
    try:
        console.print(format_diagnostics_table(_service(ctx).diagnostics()))
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("vpccidr")
def show_vpc_cidrs(ctx: typer.Context):
    """Show the VPC CIDRs associated with current interfaces."""
    try:
        console.print(format_vpc_cidr_table(_service(ctx).vpc_cidrs()))
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("vpcpeercidr")
def show_vpc_peer_cidrs(ctx: typer.Context):
    """Show the peered VPC CIDRs associated with current interfaces."""
    try:
        console.print(format_peer_cidr_table(_service(ctx).vpc_peer_cidrs()))
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


# =============================================================================
# Registry Commands
# =============================================================================


@app.command("registry-list")
def registry_list(ctx: typer.Context):
    """List all known free IPs in the internal registry."""
    try:
        console.print(format_registry_table(_service(ctx).registry_entries()))
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("registry-gc")
def registry_gc(
    ctx: typer.Context,
    free_after: Annotated[
        str,
        typer.Option(
            "--free-after",
            help="Release IPs free for longer than this, e.g. 10m or 1h30m",
        ),
    ] = "",
    max_reap: Annotated[
        int,
        typer.Option(
            "--max-reap",
            help="Max number of ips to reap on a single run. -1 reaps all unused IPs",
        ),
    ] = UNLIMITED,
    jitter: Annotated[
        float | None,
        typer.Option("--jitter", help="Relative +/- jitter applied to --free-after"),
    ] = None,
):
    """Free all IPs that have remained unused for a given time interval."""
    if not free_after:
        print_error(
            "Invalid duration specified. free-after must be > 0 seconds. "
            "Please specify with --free-after=[time]"
        )
        raise typer.Exit(1)

    try:
        window = parse_duration(free_after)
        fraction = config.GC_JITTER_FRACTION if jitter is None else jitter
        report = _service(ctx).gc(window, fraction, max_reap)
    except IpamError as e:
        print_error(str(e))
        raise typer.Exit(1)

    for address in report.released:
        console.print(f"released {address}")
    for address in report.forgotten:
        console.print(f"forgot {address} (in use)")
    if report.failures:
        for address, error in report.failures.items():
            print_error(f"Can't deallocate {address} due to {error}")
        raise typer.Exit(1)


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
