"""hostagent CLI.

`hostagent serve` runs the agent. `hostagent ps` asks a running agent for its
process table. `hostagent id` prints (and creates) this host's instance ID.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import orjson
import typer
from rich.console import Console

from hostagent import __version__
from hostagent.config import settings

console = Console()

app = typer.Typer(
    name="hostagent",
    help="hostagent -- run commands on this host, report their output upstream.",
    no_args_is_help=True,
)


@app.command("serve")
def serve(
    port: int = typer.Option(None, "--port", "-p", help="Command endpoint port"),
    server_url: str = typer.Option(None, "--server-url", help="Controller base URL"),
    interval: float = typer.Option(None, "--interval", help="Seconds between reports"),
):
    """Run the agent: command endpoint + reporting loop."""
    from hostagent.serve import configure_logging, main

    overrides = {
        k: v for k, v in {
            "port": port,
            "server_url": server_url,
            "report_interval_seconds": interval,
        }.items()
        if v is not None
    }
    config = settings.model_copy(update=overrides)
    configure_logging(config.log_level)
    asyncio.run(main(config))


@app.command("id")
def instance_id(
    path: Path = typer.Option(None, "--file", help="Instance ID file"),
):
    """Print this host's instance ID, creating it on first use."""
    from hostagent.identity import get_or_create_instance_id

    console.print(get_or_create_instance_id(path or settings.instance_id_file))


@app.command("ps")
def ps(
    agent_url: str = typer.Option(
        f"http://127.0.0.1:{settings.port}", "--agent-url", help="Agent base URL",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
):
    """List processes registered on a running agent."""
    from rich.table import Table

    try:
        resp = httpx.post(f"{agent_url.rstrip('/')}/command", json={"action": "list"}, timeout=10.0)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        console.print(f"[red]Agent unreachable:[/red] {e}")
        raise typer.Exit(1)

    data = resp.json()
    if as_json:
        typer.echo(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())
        return

    processes = data.get("processes", [])
    if not processes:
        console.print("[dim]No processes registered.[/dim]")
        return

    table = Table(title=f"Processes ({data.get('count', len(processes))})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("PID", style="dim")
    table.add_column("Exit", style="dim")
    table.add_column("Started", style="dim", no_wrap=True, max_width=19)
    table.add_column("Command", style="white")

    for p in processes:
        status = p.get("status", "")
        color = "green" if status == "running" else "yellow"
        exit_code = p.get("exitCode")
        table.add_row(
            p.get("processId", ""),
            f"[{color}]{status}[/{color}]",
            str(p.get("pid") or ""),
            "" if exit_code is None else str(exit_code),
            str(p.get("startTime", ""))[:19],
            p.get("command", "")[:120],
        )

    console.print(table)


@app.command("version")
def version():
    """Show the hostagent version."""
    console.print(f"hostagent {__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
