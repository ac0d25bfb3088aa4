"""
Reusable logging and print setup for all parts of the project.

Functions:
    setup_logging      - Configure and return the root logger.
    set_print_logger   - Set the logger for print_and_log and print_error.
    print_and_log      - Print and log an info message.
    print_warning      - Print and log a warning message.
    print_error        - Print and log an error message.
"""

import logging
import logging.handlers
import os
import sys
from typing import Optional

from rich import print as rich_print
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

# Module-level variable to hold the logger for print_and_log and print_error
_print_logger: Optional[logging.Logger] = None


def setup_logging(
    app_name: str = "cratepub",
    loglevel: int = logging.INFO,
    logfile: Optional[str] = None,
    console: bool = False,
) -> logging.Logger:
    """
    Set up logging for the application.
    - Logs to a file in ~/.<app_name>/log.txt or to a custom logfile.
    - If console=True, also logs to stderr through rich.
    Returns the configured logger.
    """
    logger = logging.getLogger()
    logger.setLevel(loglevel)

    if logfile is None:
        log_dir = os.path.expanduser(f"~/.{app_name}")
        os.makedirs(log_dir, exist_ok=True)
        logfile = os.path.join(log_dir, "log.txt")
    file_handler = logging.FileHandler(logfile)
    file_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(process)d [%(name)s] %(message)s'))

    # Remove any existing handlers
    for h in logger.handlers[:]:
        logger.removeHandler(h)
        h.close()

    logger.addHandler(file_handler)
    if console:
        rich_handler = RichHandler(console=Console(file=sys.stderr), show_path=False, markup=False)
        rich_handler.setFormatter(logging.Formatter('%(message)s'))
        logger.addHandler(rich_handler)

    # printed messages are already on the terminal, send them to the file only
    print_logger = logging.getLogger(f"{app_name}.print")
    print_logger.propagate = False
    for h in print_logger.handlers[:]:
        print_logger.removeHandler(h)
    print_logger.addHandler(file_handler)
    set_print_logger(print_logger)
    logger.debug("Logger initialized for %s", app_name)
    return logger


def set_print_logger(logger: Optional[logging.Logger]):
    """
    Set the logger to be used by print_and_log and print_error.
    Called by setup_logging.
    """
    global _print_logger
    _print_logger = logger


def print_and_log(message: str, **kwargs):
    """
    Print to console and log as info.
    """
    rich_print(escape(message), **kwargs)
    if _print_logger is not None:
        _print_logger.info(message)


def print_warning(message: str, **kwargs):
    """
    Print a warning to stderr and log it at warning level.
    """
    rich_print(f'[yellow]{escape(message)}[/yellow]', file=sys.stderr, **kwargs)
    if _print_logger is not None:
        _print_logger.warning(message)


def print_error(message: str, **kwargs):
    """
    Print and log an error message (stderr and error level), using the logger set by set_print_logger.
    """
    rich_print(f'[bold red]{escape(message)}[/bold red]', file=sys.stderr, **kwargs)
    if _print_logger is not None:
        _print_logger.error(message)
