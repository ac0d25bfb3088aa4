from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

import httpx

from connectors.registry_interface import OracleError, VersionOracle
from orchestrator.versioning import Version

logger = logging.getLogger(__name__)

USER_AGENT = "cratepub (https://github.com/cratepub/cratepub)"


##### Sessions #####
class RegistrySession:
    """
    HTTP session against a registry endpoint.

    Args:
        base_URL (str): Base URL of the endpoint, including scheme.
            Examples: "https://crates.io/api/v1", "https://index.crates.io"
        client (httpx.Client): Optional preconfigured client (tests pass a
            TestClient or a client with a MockTransport).
        timeout (float): Per-request timeout in seconds.
    """
    def __init__(self, base_URL: str, client: httpx.Client | None = None, timeout: float = 10.0):
        self.base_URL = base_URL.rstrip("/")
        self._client = client or httpx.Client(
            headers={"User-Agent": USER_AGENT},
            timeout=timeout,
            follow_redirects=True,
        )

    def request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        """
        Make an HTTP request to the registry.
        Unlike a plain client, status codes are left to the caller
        (a 404 is an answer here), but transport failures raise OracleError.

        example: session.request("GET", "/crates/serde/1.0.0")
        """
        url = f"{self.base_URL}/{endpoint.lstrip('/')}"
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise OracleError(f"{method} {url} failed: {exc}") from exc

    def close(self) -> None:
        self._client.close()


##### Oracles #####

class CratesIoOracle(VersionOracle):
    """Version oracle using the crates.io web API (``/crates/{name}/{version}``).

    Version documents that were found are kept, so ``published_at`` after a
    positive ``is_published`` costs no extra request. Misses are never kept.
    """

    def __init__(self, session: RegistrySession):
        self.session = session
        self._found: dict[tuple[str, str], dict[str, Any]] = {}

    def _version_doc(self, name: str, version: Version) -> dict[str, Any] | None:
        key = (name, str(version))
        if key in self._found:
            return self._found[key]
        r = self.session.request("GET", f"/crates/{name}/{version}")
        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise OracleError(f"registry API returned HTTP {r.status_code} for {name} {version}")
        try:
            doc = r.json()
        except json.JSONDecodeError as exc:
            raise OracleError(f"registry API returned invalid JSON for {name} {version}") from exc
        entry = doc.get("version") if isinstance(doc, dict) else None
        if not isinstance(entry, dict):
            raise OracleError(f"registry API response for {name} {version} has no 'version' object")
        self._found[key] = entry
        return entry

    def is_published(self, name: str, version: Version) -> bool:
        entry = self._version_doc(name, version)
        if entry is None:
            return False
        try:
            return Version.parse(entry.get("num")) == version
        except ValueError:
            return False

    def published_at(self, name: str, version: Version) -> datetime | None:
        entry = self._version_doc(name, version)
        if entry is None:
            return None
        created = entry.get("created_at")
        if not isinstance(created, str):
            return None
        try:
            return datetime.fromisoformat(created)
        except ValueError:
            logger.debug("Unparseable created_at for %s %s: %r", name, version, created)
            return None


class SparseIndexOracle(VersionOracle):
    """Version oracle reading a sparse registry index (one file per crate)."""

    def __init__(self, session: RegistrySession):
        self.session = session

    def versions(self, name: str) -> list[Version]:
        r = self.session.request("GET", index_path(name), headers={"Cache-Control": "no-cache"})
        if r.status_code in (404, 410):
            return []
        if r.status_code != 200:
            raise OracleError(f"index returned HTTP {r.status_code} for {name}")
        out: list[Version] = []
        for line in r.text.splitlines():
            if not line.strip():
                continue
            try:
                record = json.loads(line)
                out.append(Version.parse(record["vers"]))
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
                raise OracleError(f"malformed index entry for {name}: {line[:80]!r}") from exc
        return out

    def is_published(self, name: str, version: Version) -> bool:
        return version in self.versions(name)

    def published_at(self, name: str, version: Version) -> datetime | None:
        # the index format carries no timestamps
        return None


# ---------------------------------------------------------------------------
# helpers


def index_path(name: str) -> str:
    """Path of a crate's file in a sparse index, following cargo's layout."""
    name = name.lower()
    if len(name) == 1:
        return f"1/{name}"
    if len(name) == 2:
        return f"2/{name}"
    if len(name) == 3:
        return f"3/{name[0]}/{name}"
    return f"{name[0:2]}/{name[2:4]}/{name}"


def normalize_index_url(raw: str) -> str:
    url = raw.strip()
    if url.startswith("sparse+"):
        url = url[len("sparse+"):]
    return url.rstrip("/")


__all__ = [
    "CratesIoOracle",
    "RegistrySession",
    "SparseIndexOracle",
    "USER_AGENT",
    "index_path",
    "normalize_index_url",
]
