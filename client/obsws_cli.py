#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import json
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from client.config import ClientConfig, ConfigError, load_config
from client.session import ObsClient
from shared.envelope import Event, ObsWsError, RequestBatchResponse
from shared.log import configure_root_logging, get_logger
from shared.opcodes import RequestBatchExecutionType
from shared.utils import is_valid_port

app = typer.Typer(help="OBS WebSocket v5 client")
console = Console()
logger = get_logger(__name__)


class _Options:
    config: ClientConfig = ClientConfig()


_options = _Options()


@app.callback()
def main_options(
    host: Optional[str] = typer.Option(None, help="Server host (overrides config/OBSWS_HOST)"),
    port: Optional[int] = typer.Option(None, help="Server port (overrides config/OBSWS_PORT)"),
    password: Optional[str] = typer.Option(None, help="Server password (overrides config/OBSWS_PASSWORD)"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML config file"),
    log_level: str = typer.Option("WARNING", help="Log level"),
):
    """Connection options shared by all commands."""
    configure_root_logging(log_level)
    try:
        cfg = load_config(config)
    except ConfigError as e:
        console.print(f"[red]Config error[/]: {e}")
        raise typer.Exit(code=2)
    if port is not None and not is_valid_port(port):
        console.print(f"[red]Invalid port[/]: {port}")
        raise typer.Exit(code=2)
    overrides = {k: v for k, v in {"host": host, "port": port, "password": password}.items() if v is not None}
    _options.config = replace(cfg, auto_reconnect=False, **overrides)


async def _connect(cfg: ClientConfig) -> ObsClient:
    client = ObsClient.from_config(cfg)
    try:
        await client.connect()
        await client.wait_for_initialization()
    except BaseException:
        await client.close()
        raise
    return client


def _run(coro: Any) -> None:
    try:
        asyncio.run(coro)
    except ObsWsError as e:
        console.print(f"[red]Error[/]: {e}")
        raise typer.Exit(code=1)


@app.command()
def request(
    request_type: str = typer.Argument(..., help="Request type, e.g. GetVersion"),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="requestData as a JSON object"),
):
    """Send one request and print the response."""
    request_data = None
    if data is not None:
        try:
            request_data = json.loads(data)
        except json.JSONDecodeError as e:
            console.print(f"[red]--data is not valid JSON[/]: {e}")
            raise typer.Exit(code=2)

    ok = True

    async def main_loop() -> None:
        nonlocal ok
        client = await _connect(_options.config)
        try:
            response = await client.send_request(request_type, request_data)
        finally:
            await client.close()
        ok = response.ok
        console.print_json(json.dumps(response.raw))

    _run(main_loop())
    if not ok:
        raise typer.Exit(code=1)


@app.command()
def batch(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="YAML/JSON list of {requestType, requestData}"),
    halt_on_failure: bool = typer.Option(False, help="Stop the batch at the first failed request"),
    execution_type: int = typer.Option(int(RequestBatchExecutionType.SERIAL_REALTIME), help="-1 none, 0 serial realtime, 1 serial frame, 2 parallel"),
):
    """Send a request batch read from FILE and print a summary table."""
    try:
        requests = yaml.safe_load(file.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        console.print(f"[red]Cannot parse {file}[/]: {e}")
        raise typer.Exit(code=2)
    if not isinstance(requests, list):
        console.print(f"[red]{file} must contain a list of requests[/]")
        raise typer.Exit(code=2)

    ok = True

    async def main_loop() -> None:
        nonlocal ok
        client = await _connect(_options.config)
        try:
            response = await client.send_batch_request(requests, halt_on_failure, execution_type)
        finally:
            await client.close()
        ok = response.ok
        console.print(_batch_table(response))

    _run(main_loop())
    if not ok:
        raise typer.Exit(code=1)


def _batch_table(response: RequestBatchResponse) -> Table:
    table = Table(title=f"Batch {response.request_id[:8]}")
    table.add_column("#", justify="right")
    table.add_column("Request")
    table.add_column("Result")
    table.add_column("Code", justify="right")
    table.add_column("Comment")
    for i, result in enumerate(response.results):
        status = result.request_status
        table.add_row(
            str(i),
            result.request_type,
            "[green]ok[/]" if status.result else "[red]failed[/]",
            str(status.code),
            status.comment or "",
        )
    return table


@app.command()
def listen(
    event: List[str] = typer.Option([], "--event", "-e", help="Only print these event types (repeatable)"),
    subscriptions: Optional[int] = typer.Option(None, help="Event subscription bitmask (default: config)"),
):
    """Print events until interrupted."""
    cfg = _options.config
    if subscriptions is not None:
        cfg = replace(cfg, event_subscriptions=subscriptions)
    # listen keeps reconnecting; the one-shot commands do not
    cfg = replace(cfg, auto_reconnect=True)

    def print_event(evt: Event) -> None:
        console.print(f"[bold cyan]{evt.event_type}[/] {json.dumps(evt.event_data, separators=(',', ':'))}")

    async def main_loop() -> None:
        client = ObsClient.from_config(cfg)
        if event:
            for name in event:
                client.add_event_listener(name, print_event)
        else:
            client.add_event_listener(None, print_event)
        await client.connect()
        await client.wait_for_initialization()
        console.print(f"[bold green]Listening[/] on {client.url}")
        try:
            await asyncio.Future()  # Run forever
        finally:
            await client.close()

    try:
        _run(main_loop())
    except KeyboardInterrupt:
        console.print("[dim]bye[/]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
