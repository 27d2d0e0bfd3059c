"""Daemon lifecycle commands: start, stop, status."""

import os
import signal
import subprocess
import sys

import typer

from . import daemon_app, console, FLOWSTREAM_DIR, PID_FILE, LOG_DIR, CONFIG_DIR, DEFAULT_PORT, get_daemon_pid


@daemon_app.command("start")
def start_daemon(
    port: int = DEFAULT_PORT,
    host: str = "127.0.0.1",
    deposit: str = typer.Option("", help="Connect a session with this deposit as soon as the daemon is up"),
    strict: bool = typer.Option(False, help="Exit if config loading or the initial connect fails"),
):
    """Start the Flowstream daemon."""
    FLOWSTREAM_DIR.mkdir(parents=True, exist_ok=True)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    pid = get_daemon_pid()
    if pid:
        try:
            os.kill(pid, 0)
            console.print(f"[red]Daemon already running (PID {pid})[/red]")
            return
        except ProcessLookupError:
            console.print("[yellow]Stale PID file found, removing...[/yellow]")
            PID_FILE.unlink()

    console.print(f"[green]Starting Flowstream daemon on {host}:{port}...[/green]")

    env = os.environ.copy()
    env["FLOWSTREAM_LOG_DIR"] = str(LOG_DIR)
    env["FLOWSTREAM_CONFIG_DIR"] = str(CONFIG_DIR)
    if deposit:
        env["FLOWSTREAM_AUTOCONNECT_DEPOSIT"] = deposit
    if strict:
        env["FLOWSTREAM_STARTUP_STRICT"] = "1"

    cmd = [
        sys.executable, "-m", "uvicorn",
        "flowstream.daemon.app:app",
        "--host", host,
        "--port", str(port),
    ]

    log_file = open(LOG_DIR / "daemon.out", "a")
    proc = subprocess.Popen(cmd, env=env, stdout=log_file, stderr=subprocess.STDOUT)

    PID_FILE.write_text(str(proc.pid))

    console.print(f"Daemon started with PID {proc.pid}")
    console.print(f"Logs: {LOG_DIR}/daemon.out")


@daemon_app.command("stop")
def stop_daemon():
    """Stop the Flowstream daemon (a live session is settled first)."""
    pid = get_daemon_pid()
    if not pid:
        console.print("[red]Daemon not running (PID file not found)[/red]")
        return

    try:
        os.kill(pid, signal.SIGTERM)
        console.print(f"[green]Stopped daemon (PID {pid})[/green]")
        if PID_FILE.exists():
            PID_FILE.unlink()
    except ProcessLookupError:
        console.print("[yellow]Daemon process not found, cleaning up PID file[/yellow]")
        if PID_FILE.exists():
            PID_FILE.unlink()


@daemon_app.command("status")
def status_daemon():
    """Check daemon status."""
    pid = get_daemon_pid()
    if pid:
        try:
            os.kill(pid, 0)
            console.print(f"[green]Daemon is running (PID {pid})[/green]")
            console.print(f"Configuration: {CONFIG_DIR}")
            return
        except ProcessLookupError:
            pass

    console.print("[red]Daemon is NOT running[/red]")
