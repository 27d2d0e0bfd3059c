"""Flowstream CLI: modular command package."""

import os
from pathlib import Path

import typer
from rich.console import Console

from .. import __version__

# ── Shared state ────────────────────────────────────────────────────────────

app = typer.Typer(help="Flowstream - metered two-tier ledger sessions")
console = Console()

daemon_app = typer.Typer()
session_app = typer.Typer()

app.add_typer(daemon_app, name="daemon", help="Manage the Flowstream daemon process")
app.add_typer(session_app, name="session", help="Connect, stop and watch the metered session")

# ── Path constants ──────────────────────────────────────────────────────────

FLOWSTREAM_DIR = Path.home() / ".flowstream"
PID_FILE = FLOWSTREAM_DIR / "flowstream.pid"
LOG_DIR = FLOWSTREAM_DIR / "logs"
CONFIG_DIR = FLOWSTREAM_DIR / "config"
CONFIG_FILE = CONFIG_DIR / "flowstream.yaml"

DEFAULT_PORT = 8080


# ── Shared helpers ──────────────────────────────────────────────────────────

def get_daemon_pid():
    if PID_FILE.exists():
        try:
            return int(PID_FILE.read_text().strip())
        except ValueError:
            return None
    return None


def daemon_url(port: int | None = None) -> str:
    raw = (os.getenv("FLOWSTREAM_URL") or "").strip().rstrip("/")
    if raw:
        return raw
    return f"http://127.0.0.1:{port or DEFAULT_PORT}"


DEFAULT_CONFIG_YAML = """version: 1

session:
  interval_ms: 10
  duration_ms: 120000
  increment: 1
  unit: 1
  usage_decimals: 3
  currency_decimals: 9
  rate: "0.007"

ledger:
  mode: memory
  base_url: http://127.0.0.1:8899
  accelerated_url: http://127.0.0.1:7799
  owner_id: payer
  merchant_id: merchant
  request_timeout_seconds: 30
  proof_timeout_seconds: 60
  proof_poll_interval_ms: 250
  initial_balance: 10000000000
"""


# ── Top-level commands ──────────────────────────────────────────────────────

@app.command("init")
def init_flowstream():
    """Create local runtime folders and a default flowstream.yaml."""
    console.print(f"[bold]Initializing Flowstream runtime in {FLOWSTREAM_DIR}...[/bold]")

    FLOWSTREAM_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    if CONFIG_FILE.exists():
        console.print(f"[yellow]Keeping existing {CONFIG_FILE}[/yellow]")
    else:
        CONFIG_FILE.write_text(DEFAULT_CONFIG_YAML)
        console.print(f"Created {CONFIG_FILE}")

    console.print("[green]Flowstream initialized.[/green]")


@app.command("version")
def version():
    """Print the Flowstream version."""
    console.print(__version__)


# ── Register submodule commands (import triggers decorator registration) ────

from . import daemon_cmds   # noqa: E402, F401
from . import session_cmds  # noqa: E402, F401
