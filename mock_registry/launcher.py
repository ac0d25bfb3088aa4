"""
launcher.py
-----------
A CLI to manage the mock_registry daemon.

Starts it in the background with Python subprocess and finds it again
with psutil, no PID file needed. Every command prints one JSON line.
"""

import json
import logging
import os
import signal
import subprocess
import sys
import time

import httpx
import psutil
import typer

from common.app_setup import print_and_log, print_error, setup_logging

DAEMON_MODULE = "mock_registry.daemon"

logger = logging.getLogger("mock_registry.launcher")

app = typer.Typer(
    add_completion=False,
    help="Manage the mock_registry daemon. If no port is passed to start, an automatic port will be selected. "
    "If no command is given, status is shown.",
)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    setup_logging(app_name="mock_registry_launcher")
    if ctx.invoked_subcommand is None:
        ctx.invoke(status)


def _start_daemon(port=None):
    """Start the daemon, optionally with a specific port. Returns (pid, port)."""
    cmd = [sys.executable, "-m", DAEMON_MODULE, "--port", str(port or 0)]
    proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL, text=True, close_fds=True)
    selected_port = None
    assert proc.stdout is not None
    for _ in range(10):
        line = proc.stdout.readline()
        if not line:
            break
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            continue
        if msg.get("event") in ("port_selected", "port_used"):
            selected_port = int(msg["port"])
            break
    time.sleep(0.5)
    if proc.poll() is not None:
        print_error(f"Failed to start daemon. Process exited with code {proc.returncode}.")
        raise typer.Exit(1)
    return proc.pid, selected_port or port


@app.command()
def start(port: int | None = typer.Option(None, help="Port to start the daemon on (auto if not set)")):
    """Start the mock registry daemon as a background process.
    Fails if one is already running. Prints JSON in any case.
    """
    try:
        daemon_pid = _find_daemon_pid()
    except psutil.NoSuchProcess:
        pid, used_port = _start_daemon(port)
        _emit({"returncode": 0, "msg": "Started daemon", "pid": pid, "port": used_port})
        return
    running_port = _get_listening_port_of_pid(daemon_pid)
    _emit({
        "returncode": 1,
        "msg": "A mock_registry daemon is already running",
        "pid": daemon_pid,
        "port": running_port or "unknown",
    })
    raise typer.Exit(1)


@app.command()
def stop():
    """Stop the daemon through /shutdown, falling back to SIGTERM."""
    try:
        pid = _find_daemon_pid()
    except psutil.NoSuchProcess:
        _emit({"returncode": 1, "msg": "Daemon not running."})
        raise typer.Exit(1)
    port = _get_listening_port_of_pid(pid)
    if port:
        try:
            httpx.post(f"http://127.0.0.1:{port}/shutdown", timeout=2)
        except httpx.HTTPError as exc:
            logger.info(f"Graceful shutdown failed: {exc}")
    time.sleep(2)
    if not _pid_running(pid):
        _emit({"returncode": 0, "msg": f"Stopped daemon (PID {pid}) via /shutdown"})
        return
    try:
        os.kill(pid, signal.SIGTERM)
    except OSError as exc:
        logger.info(f"SIGTERM to {pid} failed: {exc}")
    time.sleep(1)
    if not _pid_running(pid):
        _emit({"returncode": 0, "msg": f"Stopped daemon (PID {pid}) via SIGTERM"})
        return
    _emit({"returncode": 1, "msg": f"Failed to stop daemon (PID {pid})"})
    raise typer.Exit(1)


@app.command()
def status():
    """Show whether the daemon runs, and what its REST API reports."""
    result = {
        "returncode": 1,
        "msg": "Daemon not running.",
        "running": False,
        "pid": None,
        "port": None,
        "api_status": None,
    }
    try:
        pid = _find_daemon_pid()
    except psutil.NoSuchProcess:
        _emit(result)
        return
    port = _get_listening_port_of_pid(pid)
    result.update(pid=pid, port=port or "unknown")
    try:
        resp = httpx.get(f"http://127.0.0.1:{port}/status", timeout=2)
        if resp.status_code == 200:
            result.update(api_status=resp.json(), msg=f"Daemon running with PID {pid}", running=True, returncode=0)
        else:
            result.update(api_status={"error": resp.text}, msg=f"Daemon running with PID {pid}, but REST API error")
    except httpx.HTTPError as exc:
        result.update(api_status={"error": str(exc)}, msg=f"Error checking daemon status: {exc}")
    _emit(result)


@app.command()
def register(
    name: str = typer.Argument(..., help="Crate name"),
    version: str = typer.Argument(..., help="Version to register"),
    delay: float = typer.Option(0.0, help="Seconds before the version becomes visible"),
    port: int | None = typer.Option(None, help="Daemon port (found automatically if not set)"),
):
    """Register a crate version in the running daemon, as 'cargo publish' would."""
    if port is None:
        try:
            port = _get_listening_port_of_pid(_find_daemon_pid())
        except psutil.NoSuchProcess:
            port = None
    if not port:
        print_error("No running mock_registry daemon found.")
        raise typer.Exit(1)
    payload = {"name": name, "version": version, "visible_after": delay}
    try:
        resp = httpx.post(f"http://127.0.0.1:{port}/admin/crates", json=payload, timeout=5)
    except httpx.HTTPError as exc:
        print_error(f"Error contacting daemon at 127.0.0.1:{port}: {exc}")
        raise typer.Exit(1)
    if resp.status_code != 201:
        print_error(f"Failed to register {name} {version}: {resp.status_code} {resp.text}")
        raise typer.Exit(1)
    print_and_log(f"Registered {name} {version} (visible in {delay}s)")


def _emit(result: dict) -> None:
    # one unwrapped line, parsed by scripts
    line = json.dumps(result)
    print(line, flush=True)
    logger.info(line)


def _pid_running(pid):
    try:
        os.kill(pid, 0)
        return True
    except OSError:
        return False


def _find_daemon_pid():
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            if proc.info["cmdline"] and DAEMON_MODULE in " ".join(proc.info["cmdline"]):
                return proc.pid
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    logger.debug("Daemon not running.")
    raise psutil.NoSuchProcess(0, msg="Daemon not running.")


def _get_listening_port_of_pid(pid: int | None) -> int | None:
    try:
        proc = psutil.Process(pid)
        for c in proc.net_connections(kind="inet"):
            if c.status == psutil.CONN_LISTEN:
                return c.laddr.port
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        pass
    return None


if __name__ == "__main__":
    app()
