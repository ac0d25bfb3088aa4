"""
This file is the entry point for the 'cratepub' command-line tool.
Run 'cratepub --help' in your shell to use the CLI.
"""

from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from common.app_setup import print_and_log, print_error, print_warning, setup_logging
from connectors import connections_manager
from connectors.cargo_publisher import CargoPublisher
from orchestrator.errors import CratepubError, RunCancelledError, RunError
from orchestrator.models import PollPolicy, PublishOptions, coerce_options
from orchestrator.pipeline import plan, publish_workspace
from orchestrator.publisher import RunReport

app = typer.Typer(add_completion=False, help="Publish the packages of a Cargo workspace in dependency order.")

EXIT_CANCELLED = 130

_STATE_STYLES = {
    "confirmed": "green",
    "published": "green",
    "skipped": "dim",
    "dry-run": "yellow",
    "failed": "bold red",
    "timed-out": "bold red",
    "publishing": "red",
    "pending": "dim",
}


@app.callback()
def main(
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Log file (default ~/.cratepub/log.txt)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug messages"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not echo log messages to stderr"),
):
    """Configure logging for every command."""
    setup_logging(
        app_name="cratepub",
        loglevel=logging.DEBUG if verbose else logging.INFO,
        logfile=str(log_file) if log_file else None,
        console=not quiet,
    )


def _build_options(
    config: Optional[Path],
    *,
    path: Optional[Path],
    poll_timeout: Optional[float] = None,
    poll_interval: Optional[float] = None,
    **values,
) -> PublishOptions:
    """Parse CLI and config file inputs once into PublishOptions."""
    base = coerce_options(config) if config is not None else None
    options = coerce_options(base, path=path, **values)
    if poll_timeout is not None or poll_interval is not None:
        poll = options.poll.model_dump()
        if poll_timeout is not None:
            poll["timeout"] = poll_timeout
        if poll_interval is not None:
            poll["initial_delay"] = poll_interval
            poll["backoff"] = 1.0
        options = options.model_copy(update={"poll": PollPolicy.model_validate(poll)})
    return options


def _options_or_exit(config: Optional[Path], **kwargs) -> PublishOptions:
    try:
        return _build_options(config, **kwargs)
    except (ValueError, OSError) as exc:
        print_error(f"Invalid configuration: {exc}")
        raise typer.Exit(2)


@contextmanager
def _cancel_on_signals() -> Iterator[threading.Event]:
    """Set the yielded event on SIGINT/SIGTERM; the current publish is never interrupted."""
    cancel = threading.Event()

    def handler(signum, frame):
        if not cancel.is_set():
            print_warning("Cancellation requested, stopping before the next package...")
        cancel.set()

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, handler)
    try:
        yield cancel
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def _print_report(report: RunReport) -> None:
    table = Table(title="Publish summary")
    table.add_column("package")
    table.add_column("version")
    table.add_column("state")
    table.add_column("detail")
    for outcome in report.outcomes:
        style = _STATE_STYLES.get(outcome.state.value, "")
        table.add_row(
            escape(outcome.name), outcome.version, f"[{style}]{outcome.state.value}[/{style}]", escape(outcome.detail)
        )
    Console().print(table)


@app.command()
def publish(
    path: Optional[Path] = typer.Argument(None, envvar="CRATEPUB_PATH", help="Workspace root (default: current directory)"),
    args: Optional[str] = typer.Option(None, "--args", envvar="CRATEPUB_ARGS", help="Extra arguments for 'cargo publish'"),
    registry: Optional[str] = typer.Option(None, "--registry", envvar="CRATEPUB_REGISTRY", help="Named registry to publish to"),
    registry_token: Optional[str] = typer.Option(None, "--registry-token", envvar="CARGO_REGISTRY_TOKEN", help="Registry token", show_default=False),
    dry_run: Optional[bool] = typer.Option(None, "--dry-run/--no-dry-run", envvar="CRATEPUB_DRY_RUN", help="Only show what would be published"),
    wait: Optional[bool] = typer.Option(None, "--wait/--no-wait", envvar="CRATEPUB_WAIT", help="Wait for each package to show up in the registry"),
    github_token: Optional[str] = typer.Option(None, "--github-token", envvar="GITHUB_TOKEN", help="GitHub token for repository checks", show_default=False),
    check_repo: Optional[bool] = typer.Option(None, "--check-repo/--no-check-repo", envvar="CRATEPUB_CHECK_REPO", help="Warn about packages changed since their last release"),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Registry web API used to confirm versions"),
    index_url: Optional[str] = typer.Option(None, "--index-url", help="Sparse index used to confirm versions (instead of the web API)"),
    poll_timeout: Optional[float] = typer.Option(None, "--poll-timeout", help="Seconds to wait for a version to show up"),
    poll_interval: Optional[float] = typer.Option(None, "--poll-interval", help="Fixed seconds between registry queries"),
    config: Optional[Path] = typer.Option(None, "--config", exists=True, dir_okay=False, help="YAML file with publish options"),
):
    """Publish every unpublished package in dependency order."""
    options = _options_or_exit(
        config,
        path=path,
        args=args,
        registry=registry,
        registry_token=registry_token,
        dry_run=dry_run,
        wait=wait,
        github_token=github_token,
        check_repo=check_repo,
        api_url=api_url,
        index_url=index_url,
        poll_timeout=poll_timeout,
        poll_interval=poll_interval,
    )
    oracle = connections_manager.get_oracle(options)
    source_host = connections_manager.get_source_host(options)
    report: RunReport | None = None
    try:
        with _cancel_on_signals() as cancel:
            _, report = publish_workspace(
                options,
                oracle=oracle,
                publish_fn=CargoPublisher(),
                source_host=source_host,
                cancel=cancel,
            )
    except CratepubError as exc:
        if isinstance(exc, RunError) and exc.report is not None:
            _print_report(exc.report)
        print_error(str(exc))
        raise typer.Exit(EXIT_CANCELLED if isinstance(exc, RunCancelledError) else 1)
    finally:
        connections_manager.close_all()
    _print_report(report)
    if options.dry_run:
        print_and_log(f"Dry run finished, {len(report.outcomes)} package(s) planned")
    else:
        print_and_log("All packages published")


@app.command()
def check(
    path: Optional[Path] = typer.Argument(None, envvar="CRATEPUB_PATH", help="Workspace root (default: current directory)"),
    registry: Optional[str] = typer.Option(None, "--registry", envvar="CRATEPUB_REGISTRY", help="Named registry"),
    github_token: Optional[str] = typer.Option(None, "--github-token", envvar="GITHUB_TOKEN", help="GitHub token for repository checks", show_default=False),
    api_url: Optional[str] = typer.Option(None, "--api-url", help="Registry web API"),
    index_url: Optional[str] = typer.Option(None, "--index-url", help="Sparse index"),
    offline: bool = typer.Option(False, "--offline", help="Do not query the registry"),
    config: Optional[Path] = typer.Option(None, "--config", exists=True, dir_okay=False, help="YAML file with publish options"),
):
    """Validate the workspace and show which packages still need publishing."""
    options = _options_or_exit(
        config, path=path, registry=registry, github_token=github_token, api_url=api_url, index_url=index_url
    )
    oracle = None if offline else connections_manager.get_oracle(options)
    source_host = None if offline else connections_manager.get_source_host(options)
    try:
        workspace = plan(options, oracle, source_host)
    except CratepubError as exc:
        print_error(str(exc))
        raise typer.Exit(1)
    finally:
        connections_manager.close_all()
    for name in workspace.order:
        package = workspace.packages[name]
        state = "published" if package.published else "pending"
        print_and_log(f"{package.name} {package.version}: {state}")
    print_and_log(
        f"Consistency check passed with {len(workspace.warnings)} warning(s), "
        f"{len(workspace.pending())} package(s) to publish"
    )


@app.command()
def order(
    path: Optional[Path] = typer.Argument(None, envvar="CRATEPUB_PATH", help="Workspace root (default: current directory)"),
    registry: Optional[str] = typer.Option(None, "--registry", envvar="CRATEPUB_REGISTRY", help="Named registry"),
):
    """Print the publish order, one package per line, without querying the registry."""
    options = _options_or_exit(None, path=path, registry=registry)
    try:
        workspace = plan(options)
    except CratepubError as exc:
        print_error(str(exc))
        raise typer.Exit(1)
    for name in workspace.order:
        print_and_log(name)


if __name__ == "__main__":
    app()
