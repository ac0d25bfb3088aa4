"""Source host backed by the GitHub REST API.

Only one question is asked: when was ``path`` last changed? The consistency
checker compares that with the registry's publish date.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path

import httpx

from connectors.registry_interface import SourceHost, SourceHostError

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


class GitHubSourceHost(SourceHost):
    """
    Args:
        token (str): API token, sent as a bearer token.
        repository (str): "owner/repo".
        repo_root (Path): local checkout root; paths are made relative to it.
        api_url (str): API base URL (GitHub Enterprise uses another one).
        client (httpx.Client): optional preconfigured client.
    """

    def __init__(
        self,
        token: str,
        repository: str,
        repo_root: Path | str = ".",
        api_url: str = GITHUB_API_URL,
        client: httpx.Client | None = None,
    ):
        if "/" not in repository:
            raise ValueError(f"repository must be 'owner/repo', got {repository!r}")
        self.repository = repository
        self.repo_root = Path(repo_root).resolve()
        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.Client(timeout=10.0)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    @classmethod
    def from_env(cls, token: str, repo_root: Path | str | None = None) -> GitHubSourceHost | None:
        """Build from the GitHub Actions environment; None outside of it."""
        repository = os.environ.get("GITHUB_REPOSITORY", "").strip()
        if not repository:
            logger.info("GITHUB_REPOSITORY is not set, repository checks disabled")
            return None
        root = repo_root or os.environ.get("GITHUB_WORKSPACE") or "."
        api_url = os.environ.get("GITHUB_API_URL") or GITHUB_API_URL
        return cls(token, repository, repo_root=root, api_url=api_url)

    def _relative(self, path: Path) -> str:
        resolved = Path(path).resolve()
        try:
            return resolved.relative_to(self.repo_root).as_posix()
        except ValueError as exc:
            raise SourceHostError(f"{resolved} is outside the repository root {self.repo_root}") from exc

    def last_change(self, path: Path) -> datetime | None:
        rel = self._relative(path)
        url = f"{self.api_url}/repos/{self.repository}/commits"
        params = {"per_page": 1}
        if rel not in ("", "."):
            params["path"] = rel
        try:
            r = self._client.get(url, params=params, headers=self._headers)
            r.raise_for_status()
            commits = r.json()
        except httpx.HTTPError as exc:
            raise SourceHostError(f"GitHub commits query for '{rel}' failed: {exc}") from exc
        except ValueError as exc:
            raise SourceHostError(f"GitHub commits query for '{rel}' returned invalid JSON") from exc
        if not isinstance(commits, list) or not commits:
            return None
        try:
            date = commits[0]["commit"]["committer"]["date"]
            return datetime.fromisoformat(date)
        except (KeyError, TypeError, ValueError) as exc:
            raise SourceHostError(f"unexpected commit payload for '{rel}'") from exc

    def close(self) -> None:
        self._client.close()


__all__ = ["GITHUB_API_URL", "GitHubSourceHost"]
