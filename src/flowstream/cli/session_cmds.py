"""Session commands: connect, disconnect, abandon, status, watch."""

import json

import httpx
import typer
from rich.live import Live
from rich.table import Table

from . import session_app, console, daemon_url


def render_snapshot(data: dict) -> Table:
    table = Table(title=f"Session: {data.get('status', '?')}")
    table.add_column("Field")
    table.add_column("Value", justify="right")

    refund = data.get("refund_display")
    balance = data.get("wallet_balance_display")
    rows = [
        ("Charger", data.get("charger_id") or "-"),
        ("Session", data.get("session_account_id") or "-"),
        ("Merchant", data.get("merchant_id") or "-"),
        ("Connected", "yes" if data.get("connected") else "no"),
        ("Usage", f"{data.get('total_usage_display', 0):.3f} / {data.get('target_usage_display', 0):.3f}"),
        ("Writes", str(data.get("update_count", 0))),
        ("Deposit", f"{data.get('deposit_display', 0):.9f}"),
        ("Accrued cost", f"{data.get('accrued_cost_display', 0):.9f}"),
        ("Refund", "-" if refund is None else f"{refund:.9f}"),
        ("Wallet", "-" if balance is None else f"{balance:.9f}"),
    ]
    for name, value in rows:
        table.add_row(name, value)
    if data.get("log_tail"):
        table.caption = data["log_tail"]
    return table


def _request(method: str, path: str, port: int | None, timeout: float = 10.0, **kwargs) -> dict:
    try:
        r = httpx.request(method, f"{daemon_url(port)}{path}", timeout=timeout, **kwargs)
    except httpx.ConnectError:
        console.print("[red]Cannot connect to daemon. Is it running?[/red]")
        raise typer.Exit(1)
    if r.status_code >= 400:
        try:
            detail = r.json().get("detail", r.text)
        except ValueError:
            detail = r.text
        console.print(f"[red]{r.status_code}: {detail}[/red]")
        raise typer.Exit(1)
    return r.json()


@session_app.command("connect")
def connect(
    deposit: str = typer.Argument(..., help="Deposit in currency units, e.g. 5.0"),
    port: int = typer.Option(None, help="Daemon port"),
):
    """Open, fund and delegate a session; streaming starts immediately."""
    data = _request("POST", "/api/session/connect", port, timeout=120.0, json={"deposit": deposit})
    console.print(render_snapshot(data))


@session_app.command("disconnect")
def disconnect(port: int = typer.Option(None, help="Daemon port")):
    """Stop streaming and wait for settlement."""
    # Settlement waits on the commitment proof, so allow a long time
    data = _request("POST", "/api/session/disconnect", port, timeout=600.0)
    console.print(render_snapshot(data))


@session_app.command("abandon")
def abandon(port: int = typer.Option(None, help="Daemon port")):
    """Drop a failed session so a new one can be opened."""
    data = _request("POST", "/api/session/abandon", port)
    console.print("[yellow]Session abandoned; on-ledger state may need manual cleanup.[/yellow]")
    console.print(render_snapshot(data))


@session_app.command("status")
def status(port: int = typer.Option(None, help="Daemon port")):
    """Show the current session snapshot."""
    console.print(render_snapshot(_request("GET", "/api/session", port)))


@session_app.command("watch")
def watch(port: int = typer.Option(None, help="Daemon port")):
    """Follow the live snapshot stream until interrupted."""
    url = f"{daemon_url(port)}/events"
    try:
        with httpx.stream("GET", url, timeout=httpx.Timeout(10.0, read=None)) as response:
            if response.status_code != 200:
                console.print(f"[red]Daemon returned {response.status_code}[/red]")
                raise typer.Exit(1)
            with Live(console=console, refresh_per_second=8) as live:
                for line in response.iter_lines():
                    if not line.startswith("data: "):
                        continue
                    live.update(render_snapshot(json.loads(line[6:])))
    except httpx.ConnectError:
        console.print("[red]Cannot connect to daemon. Is it running?[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass
