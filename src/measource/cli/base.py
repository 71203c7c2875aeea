import asyncio

import click

from measource.device import SOURCE_TYPES, UNSUPPORTED_TYPES
from measource.server import client
from measource.server.server import start_server
from measource.types import CommsError
from measource.util import DEFAULT_HOST_ADDR, DEFAULT_LOGLEVEL, DEFAULT_PORT


def print_tree(cmd, prefix="", parent_ctx=None):
    """Print command tree starting from given command."""
    ctx = click.Context(cmd, info_name=cmd.name, parent=parent_ctx)

    # Only print root name if no parent
    if not parent_ctx:
        click.echo(cmd.name)

    for sub in sorted(cmd.list_commands(ctx)):
        sub_cmd = cmd.get_command(ctx, sub)
        click.echo(f"{prefix}└── {sub}")
        if isinstance(sub_cmd, click.Group):
            print_tree(sub_cmd, prefix + "    ", ctx)


def tree_option(f):
    """Add --tree option to command."""

    def callback(ctx, param, value):
        if not value or ctx.resilient_parsing:
            return
        print_tree(ctx.command)
        ctx.exit()

    return click.option(
        "--tree",
        is_flag=True,
        help="Show command tree from this point",
        expose_value=False,
        is_eager=True,
        callback=callback,
    )(f)


def connection_options(f):
    """Add --host-address / --msg-port to a command that talks to a server."""
    f = click.option(
        "--msg-port",
        "-mp",
        default=DEFAULT_PORT,
        type=int,
        help=f"Server message port (default: {DEFAULT_PORT})",
    )(f)
    return click.option(
        "--host-address",
        "-ha",
        default=DEFAULT_HOST_ADDR,
        help="Server address to connect to (default: localhost)",
    )(f)


@click.group()
@tree_option
def cli():
    """measource - MEA acquisition data sources.

    Runs a data source (HiDens sample server client, recorded file playback)
    behind a ZeroMQ server and queries it from the command line.
    """
    pass


@cli.command()
@click.option(
    "--source-type",
    "-t",
    required=True,
    type=click.Choice(sorted([*SOURCE_TYPES, *UNSUPPORTED_TYPES]), case_sensitive=False),
    help="Kind of data source to serve",
)
@click.option(
    "--location",
    "-l",
    default="",
    help="Server address (hidens) or recording path (file); default from config",
)
@click.option(
    "--read-interval",
    "-ri",
    default=None,
    type=int,
    help="Milliseconds between sample frames (default from config)",
)
@click.option("--ini-path", "-i", default=None, help="Source configuration INI file")
@click.option(
    "--host",
    "-ha",
    default=DEFAULT_HOST_ADDR,
    help="Network address to bind server to (default: localhost)",
)
@click.option(
    "--msg-port",
    "-mp",
    default=DEFAULT_PORT,
    type=int,
    help=f"Port for command/response messages (default: {DEFAULT_PORT})",
)
@click.option(
    "--notif-port",
    "-np",
    default=None,
    type=int,
    help="Port for notifications (default: msg port + 1)",
)
@click.option(
    "--stream-port",
    "-sp",
    default=None,
    type=int,
    help="Port for sample frames (default: msg port + 2)",
)
@click.option(
    "--log-to-file/--no-log-to-file",
    "-ltf/",
    default=True,
    help="Enable/disable logging to file (default: enabled)",
)
@click.option(
    "--log-to-stdout/--no-log-to-stdout",
    "-lts/",
    default=True,
    help="Enable/disable console logging (default: enabled)",
)
@click.option("--log-path", "-lp", default="", help="Custom path for log file")
@click.option(
    "--clear-prev-log/--no-clear-prev-log",
    "-c/",
    default=True,
    help="Clear previous log file on startup (default: enabled)",
)
@click.option(
    "--log-level",
    "-ll",
    default=DEFAULT_LOGLEVEL,
    help="Logging level (DEBUG, INFO, WARNING, ERROR) (default: INFO)",
)
def serve(**kwargs):
    """Serve one data source until a client asks for shutdown."""
    if kwargs["notif_port"] is None:
        kwargs["notif_port"] = kwargs["msg_port"] + 1
    if kwargs["stream_port"] is None:
        kwargs["stream_port"] = kwargs["msg_port"] + 2
    asyncio.run(start_server(**kwargs))


@cli.command()
@connection_options
def status(host_address, msg_port):
    """Print the status of a running source server."""
    try:
        conn, _ = client.open_connection(host_address, msg_port)
    except CommsError as e:
        raise click.ClickException(str(e))
    try:
        for key, value in client.request_status(conn).items():
            click.echo(f"{key}: {value}")
    finally:
        client.close_connection(conn)


@cli.command()
@connection_options
@click.argument("param")
def get(host_address, msg_port, param):
    """Print one parameter of the served source."""
    try:
        conn, _ = client.open_connection(host_address, msg_port)
    except CommsError as e:
        raise click.ClickException(str(e))
    try:
        click.echo(client.get_param(conn, param))
    except CommsError as e:
        raise click.ClickException(str(e))
    finally:
        client.close_connection(conn)


@cli.command()
@connection_options
def shutdown(host_address, msg_port):
    """Ask a running source server to exit."""
    try:
        conn, _ = client.open_connection(host_address, msg_port)
    except CommsError as e:
        raise click.ClickException(str(e))
    client.shutdown_server(conn)
    click.echo("Server shut down.")
