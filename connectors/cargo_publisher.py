"""
cargo_publisher.py
------------------
Runs ``cargo publish`` for one package.

The registry token is placed only in the environment handed to the child
process. The parent's os.environ is never modified.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from typing import Mapping

from connectors.registry_interface import PublishCommandError
from orchestrator.models import Package, PublishOptions

logger = logging.getLogger(__name__)


def child_env(options: PublishOptions, base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Environment for one publish invocation: a copy of ``base`` plus the token."""
    env = dict(os.environ if base is None else base)
    if options.registry_token is not None:
        key = options.token_env_var
        logger.info("Setting environment variable %s for cargo", key)
        env[key] = options.registry_token.get_secret_value()
    return env


class CargoPublisher:
    """Publish invocation backed by the cargo CLI.

    Args:
        cargo (str): cargo executable to run.
        base_env (Mapping): environment the child env is derived from,
            os.environ when not set.
    """

    def __init__(self, cargo: str = "cargo", base_env: Mapping[str, str] | None = None):
        self.cargo = cargo
        self.base_env = base_env

    def command(self, package: Package, options: PublishOptions) -> list[str]:
        cmd = [self.cargo, "publish", *options.args]
        if options.registry:
            cmd += ["--registry", options.registry]
        return cmd

    def describe(self, package: Package, options: PublishOptions) -> str:
        return shlex.join(self.command(package, options))

    def __call__(self, package: Package, options: PublishOptions) -> None:
        cmd = self.command(package, options)
        if options.registry:
            logger.info("Publishing to registry %s", options.registry)
        logger.info("Running '%s' in '%s'", shlex.join(cmd), package.path)
        try:
            proc = subprocess.run(cmd, cwd=str(package.path), env=child_env(options, self.base_env))
        except OSError as exc:
            raise PublishCommandError(f"cannot run {cmd[0]}: {exc}") from exc
        if proc.returncode != 0:
            raise PublishCommandError(
                f"command failed ({proc.returncode}): {shlex.join(cmd)}", returncode=proc.returncode
            )


__all__ = ["CargoPublisher", "child_env"]
