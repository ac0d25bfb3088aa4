# connections_manager.py
"""
connections_manager.py
----------------------
Builds the registry and source-host connectors a run needs.

Holds in-memory registry sessions, one per (kind, base URL) pair,
so repeated runs in the same process reuse HTTP connections.
"""

from __future__ import annotations

import httpx

from connectors.github_connector import GitHubSourceHost
from connectors.registry_connector import (
    CratesIoOracle,
    RegistrySession,
    SparseIndexOracle,
    normalize_index_url,
)
from connectors.registry_interface import SourceHost, VersionOracle
from orchestrator.models import PublishOptions

######################### Sessions #########################

# key: (oracle kind, base URL)
_active_sessions: dict[tuple[str, str], RegistrySession] = {}
# closed together with the sessions
_source_hosts: list[GitHubSourceHost] = []


def get_session(kind: str, base_URL: str, client: httpx.Client | None = None) -> RegistrySession:
    """
    Get or create a registry session for the given endpoint.
    Reuses an existing session if one matches the (kind, base URL) pair.
    """
    key = (kind, base_URL.rstrip("/"))
    if key in _active_sessions:
        return _active_sessions[key]
    session = RegistrySession(base_URL, client=client)
    _active_sessions[key] = session
    return session


def get_oracle(options: PublishOptions, client: httpx.Client | None = None) -> VersionOracle:
    """Sparse index oracle when ``index_url`` is set, crates.io API oracle otherwise."""
    if options.index_url:
        return SparseIndexOracle(get_session("sparse", normalize_index_url(options.index_url), client))
    return CratesIoOracle(get_session("api", options.api_url, client))


def get_source_host(options: PublishOptions) -> SourceHost | None:
    """GitHub source host when a token is configured and repository checks are on."""
    if options.github_token is None or not options.check_repo:
        return None
    host = GitHubSourceHost.from_env(options.github_token.get_secret_value(), repo_root=None)
    if host is not None:
        _source_hosts.append(host)
    return host


def close_all() -> None:
    """Close every registry session and source host handed out so far."""
    while _active_sessions:
        _, session = _active_sessions.popitem()
        session.close()
    while _source_hosts:
        _source_hosts.pop().close()


__all__ = ["close_all", "get_oracle", "get_session", "get_source_host"]
