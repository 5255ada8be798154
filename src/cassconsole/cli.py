"""Cassandra Console CLI.

Talks to a running console API over HTTP and renders the results.
"""

from __future__ import annotations

from typing import Annotated, Any, Optional

import requests
import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config import load_config
from .utils import format_bytes

# Initialize Typer app and Rich console
app = typer.Typer(help="Cassandra Console: node metrics from the command line")
console = Console()
error_console = Console(stderr=True, style="bold red")

REQUEST_TIMEOUT = 30

STATE_STYLES = {
    "connected": ("✓", "green"),
    "connecting": ("…", "yellow"),
    "disconnected": ("-", "dim"),
    "failed": ("❌", "red"),
}
HEALTH_STYLES = {
    "healthy": "green",
    "warning": "yellow",
    "degraded": "dark_orange",
    "critical": "red",
    "unknown": "dim",
}


@app.callback()
def context_callback(
    ctx: typer.Context,
    api: Annotated[Optional[str], typer.Option("--api", help="Console API base URL")] = None,
):
    """Initialize global context."""
    try:
        config = load_config()
    except Exception as e:
        error_console.print(f"Failed to load configuration: {e}")
        raise typer.Exit(code=1)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["api"] = (api or f"http://localhost:{config.api.port}").rstrip("/")


def _call(ctx: typer.Context, method: str, path: str) -> dict[str, Any]:
    url = f"{ctx.obj['api']}/api/v1{path}"
    try:
        response = requests.request(method, url, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        error_console.print(f"Request to {url} failed: {e}")
        raise typer.Exit(code=1)
    return response.json()


def _fmt(value: Any, suffix: str = "") -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.2f}{suffix}"
    return f"{value}{suffix}"


@app.command()
def status(ctx: typer.Context):
    """Show aggregated cluster metrics and per-node health."""
    report = _call(ctx, "GET", "/jmx/cluster-metrics")

    console.print("\n📊 Cluster Metrics", style="bold blue")
    console.print("=" * 60)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Node")
    table.add_column("Result")
    table.add_column("Health")
    table.add_column("Score", justify="right")
    table.add_column("Notes")

    for node in report.get("nodes", []):
        if node.get("success"):
            health = node.get("health") or {}
            status_name = health.get("status", "unknown")
            notes = "; ".join(health.get("issues", [])) or "-"
            table.add_row(
                node["host"],
                Text("✓ ok", style="green"),
                Text(status_name, style=HEALTH_STYLES.get(status_name, "white")),
                _fmt(health.get("score")),
                notes,
            )
        else:
            table.add_row(node["host"], Text("❌ error", style="red"), "-", "-", node.get("error") or "-")

    console.print(table)

    aggregated = report.get("aggregated")
    if not aggregated:
        console.print("\n⚠ Insufficient data: no node contributed metrics", style="bold yellow")
        return

    summary = Table(show_header=False, box=None)
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", justify="right")
    summary.add_row("Contributing nodes", str(aggregated["contributing_nodes"]))
    summary.add_row("Read latency mean", _fmt(aggregated.get("read_latency_mean_ms"), " ms"))
    summary.add_row("Read latency p99 (worst node)", _fmt(aggregated.get("read_latency_p99_ms"), " ms"))
    summary.add_row("Write latency mean", _fmt(aggregated.get("write_latency_mean_ms"), " ms"))
    summary.add_row("Write latency p99 (worst node)", _fmt(aggregated.get("write_latency_p99_ms"), " ms"))
    summary.add_row("Timeouts / Unavailables / Failures", " / ".join(
        _fmt(aggregated.get(key)) for key in ("total_timeouts", "total_unavailables", "total_failures")
    ))
    summary.add_row("Key cache hit rate", _fmt(aggregated.get("key_cache_hit_rate")))
    summary.add_row("Heap used", format_bytes(aggregated.get("heap_used_bytes")))
    summary.add_row("Storage load", format_bytes(aggregated.get("storage_load_bytes")))
    summary.add_row("Pending compactions", _fmt(aggregated.get("pending_compactions")))
    console.print()
    console.print(summary)

    if report.get("unavailable_nodes"):
        console.print(f"\nUnavailable: {', '.join(report['unavailable_nodes'])}", style="yellow")


@app.command()
def nodes(ctx: typer.Context):
    """List known nodes and their connection state."""
    payload = _call(ctx, "GET", "/cluster/nodes")

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Node")
    table.add_column("Port", justify="right")
    table.add_column("State")
    table.add_column("Backoff", justify="right")
    table.add_column("Last Error")

    for node in payload.get("nodes", []):
        symbol, style = STATE_STYLES.get(node["state"], ("?", "white"))
        table.add_row(
            node["host"],
            str(node["port"]),
            Text(f"{symbol} {node['state']}", style=style),
            str(node.get("backoff_attempt", 0)),
            node.get("last_error") or "-",
        )
    console.print(table)


@app.command()
def node(
    ctx: typer.Context,
    host: Annotated[str, typer.Argument(help="Node address")],
):
    """Show sampled metric groups for one node."""
    payload = _call(ctx, "GET", f"/jmx/metrics/{host}")
    if not payload.get("success"):
        error_console.print(f"{host}: {payload.get('error')}")
        raise typer.Exit(code=1)

    metrics = payload["metrics"]
    console.print(f"\n🔍 {host} sampled at {metrics['captured_at']}", style="bold blue")
    for group, values in metrics["groups"].items():
        console.print(f"\n[bold]{group}[/bold]" + (" (degraded)" if values.get("degraded") else ""))
        for key, value in values.items():
            if key != "degraded":
                console.print(f"  {key}: {value}")
    for group, note in metrics.get("failures", {}).items():
        console.print(f"  ⚠ {group}: {note}", style="yellow")


@app.command()
def probe(
    ctx: typer.Context,
    host: Annotated[str, typer.Argument(help="Node address")],
):
    """Run a lightweight health probe against one node."""
    payload = _call(ctx, "GET", f"/jmx/health/{host}")
    if payload.get("reachable"):
        console.print(f"✓ {host} reachable", style="green")
    else:
        error_console.print(f"❌ {host} unreachable: {payload.get('last_error')}")
        raise typer.Exit(code=1)


@app.command()
def reset(
    ctx: typer.Context,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
):
    """Force-disconnect every node and clear cached metrics."""
    if not yes:
        typer.confirm("Disconnect all management connections?", abort=True)
    payload = _call(ctx, "POST", "/jmx/force-disconnect")
    console.print(f"✓ Reset {payload.get('nodes_reset', 0)} node connections", style="green")


@app.command()
def serve(ctx: typer.Context):
    """Run the console API (run from the repository root)."""
    import uvicorn

    config = ctx.obj["config"]
    uvicorn.run("apps.api.main:create_app", factory=True, host=config.api.host, port=config.api.port)


def main():
    app()


if __name__ == "__main__":
    main()
