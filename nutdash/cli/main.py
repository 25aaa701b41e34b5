import json
import logging
from typing import List, Tuple

import click
from rich.console import Console
from rich.table import Table

from nutdash.config import settings
from nutdash.database.store import endpoints_from_settings
from nutdash.nut.manager import NUTConnectionManager
from nutdash.nut.models import PollResult, ServerEndpoint
from nutdash.nut.poller import MultiServerPoller
from nutdash.utils.logging import setup_logging

from .utils import handle_async_command

console = Console()


def _fmt(value, unit: str = "") -> str:
    return "-" if value is None else f"{value}{unit}"


def render_table(result: PollResult) -> Table:
    table = Table(title="UPS devices")
    for column in ("Server", "UPS", "Status", "Charge", "Runtime", "Load", "Input V", "Output V", "Model"):
        table.add_column(column)
    for entry in result.entries:
        device = entry.device
        style = "red" if device.status in ("Error", "Unknown") else None
        table.add_row(
            entry.server,
            device.display_name,
            device.status_label if device.status_label == device.status else f"{device.status_label} ({device.status})",
            _fmt(device.battery_charge, "%"),
            _fmt(device.runtime_remaining, " min"),
            _fmt(device.load, "%"),
            _fmt(device.input_voltage),
            _fmt(device.output_voltage),
            device.model or "-",
            style=style,
        )
    return table


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enables verbose mode.')
@click.option('--quiet', '-q', is_flag=True, help='Enables quiet mode.')
@click.pass_context
def app(ctx, verbose, quiet):
    """
    nutdash UPS dashboard CLI.
    """
    ctx.ensure_object(dict)
    ctx.obj['VERBOSE'] = verbose
    ctx.obj['QUIET'] = quiet

    if verbose:
        setup_logging(level="DEBUG")
    elif quiet:
        setup_logging(level="ERROR")
    else:
        setup_logging(level="WARNING")


@app.command()
@click.option('--server', '-s', 'servers', multiple=True, help='NUT server as host[:port]. Repeatable.')
@click.option('--username', help='NUT username for every --server.')
@click.option('--password', help='NUT password for every --server.')
@click.option('--json', 'as_json', is_flag=True, help='Print the poll result as JSON.')
@handle_async_command
async def poll(servers: Tuple[str, ...], username: str, password: str, as_json: bool) -> None:
    """Polls NUT servers once and prints every UPS found."""
    endpoints: List[ServerEndpoint]
    if servers:
        endpoints = [
            ServerEndpoint.parse(value, id=index, username=username, password=password)
            for index, value in enumerate(servers, start=1)
        ]
    else:
        endpoints = endpoints_from_settings()
    if not endpoints:
        raise click.UsageError("No NUT servers given; use --server or set NUTDASH_SERVERS.")

    manager = NUTConnectionManager()
    try:
        result = await MultiServerPoller(manager).poll_all(endpoints)
    finally:
        await manager.close_all()

    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
        return
    if not result.entries:
        console.print("[yellow]No UPS devices found.[/yellow]")
        return
    console.print(render_table(result))


@app.command()
@click.option('--host', default='127.0.0.1', help='Bind address.')
@click.option('--port', default=8000, help='Bind port.')
def serve(host: str, port: int) -> None:
    """Runs the HTTP API."""
    import uvicorn

    logging.getLogger(__name__).info("Serving on %s:%s (db=%s)", host, port, settings.DB_PATH or "none")
    uvicorn.run("nutdash.app:app", host=host, port=port)


if __name__ == '__main__':
    app()
