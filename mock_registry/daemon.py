"""
mock_registry.daemon
--------------------
This module implements a mock crate registry using FastAPI.
It serves the read side of crates.io (web API and sparse index) from an
in-memory store, plus an admin endpoint that registers versions with an
optional visibility delay to imitate a registry's propagation lag.
Intended for local end-to-end runs and tests.
"""
import json
import logging
import socket
import sys
import time
from datetime import datetime, timezone

import typer
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from common.app_setup import setup_logging


# Pydantic model for a version registration
class CrateVersionIn(BaseModel):
    name: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9_-]+$")
    version: str = Field(..., min_length=1)
    visible_after: float = Field(0.0, ge=0, description="Seconds before the version can be seen")
    yanked: bool = False


# Stored version (extends the registration)
class CrateVersionModel(CrateVersionIn):
    created_at: datetime
    visible_at: float


logger = logging.getLogger("mock_registry")

# In-memory registry: crate name (lowercase) -> version -> record
mock_crates: dict[str, dict[str, CrateVersionModel]] = {}

app = FastAPI()


def _visible(name: str) -> list[CrateVersionModel]:
    now = time.time()
    versions = mock_crates.get(name.lower(), {})
    return [v for v in versions.values() if v.visible_at <= now]


def _version_json(v: CrateVersionModel) -> dict:
    return {
        "crate": v.name,
        "num": v.version,
        "yanked": v.yanked,
        "created_at": v.created_at.isoformat(),
        "updated_at": v.created_at.isoformat(),
    }


def get_server():
    # Helper to get the running server instance
    return getattr(app.state, "uvicorn_server", None)


@app.post("/shutdown")
def shutdown():
    """Shutdown the server gracefully."""
    logger.info("Shutdown requested via /shutdown endpoint.")
    server = get_server()
    if server:
        server.should_exit = True
    return {"message": "Server shutting down"}


@app.get("/status")
def status():
    """Health/status endpoint for the mock registry."""
    server = get_server()
    state = "shutting_down" if server and server.should_exit else "ok"
    return {"status": state, "crates": len(mock_crates)}


@app.post("/admin/crates", response_model=CrateVersionModel, status_code=201)
def register_version(entry: CrateVersionIn) -> CrateVersionModel:
    """Register a version, as if 'cargo publish' had uploaded it."""
    versions = mock_crates.setdefault(entry.name.lower(), {})
    if entry.version in versions:
        logger.warning(f"Duplicate version: {entry.name} {entry.version}")
        raise HTTPException(status_code=409, detail=f"crate version `{entry.version}` is already uploaded")
    record = CrateVersionModel(
        **entry.model_dump(),
        created_at=datetime.now(timezone.utc),
        visible_at=time.time() + entry.visible_after,
    )
    versions[entry.version] = record
    logger.info(f"Registered crate: {entry.name} {entry.version} (visible in {entry.visible_after}s)")
    return record


@app.delete("/admin/crates", status_code=204)
def reset():
    """Forget every crate."""
    mock_crates.clear()
    logger.info("Registry reset")


@app.get("/api/v1/crates/{name}")
def get_crate(name: str):
    """crates.io-style crate document with the visible versions."""
    visible = _visible(name)
    if not visible:
        raise HTTPException(status_code=404, detail=f"crate `{name}` does not exist")
    return {"crate": {"name": visible[0].name}, "versions": [_version_json(v) for v in visible]}


@app.get("/api/v1/crates/{name}/{version}")
def get_crate_version(name: str, version: str):
    """crates.io-style single version document."""
    for v in _visible(name):
        if v.version == version:
            return {"version": _version_json(v)}
    logger.debug(f"Version not visible: {name} {version}")
    raise HTTPException(status_code=404, detail=f"crate `{name}` does not have a version `{version}`")


@app.get("/index/config.json")
def index_config(request: Request):
    base = str(request.base_url).rstrip("/")
    return {"dl": f"{base}/api/v1/crates", "api": base}


@app.get("/index/{prefix:path}/{name}", response_class=PlainTextResponse)
def index_entry(prefix: str, name: str):
    """Sparse index file: one JSON record per line."""
    visible = _visible(name)
    if not visible:
        raise HTTPException(status_code=404, detail="not found")
    lines = [
        json.dumps({"name": v.name, "vers": v.version, "deps": [], "cksum": "", "features": {}, "yanked": v.yanked})
        for v in visible
    ]
    return "\n".join(lines) + "\n"


app_cli = typer.Typer()


@app_cli.command()
def run(port: int = typer.Option(None, help="Port to run the server on (auto if not set)")):
    """Run the FastAPI app using Uvicorn on localhost, reporting the actual port used."""
    setup_logging(app_name="mock_registry", console=True)
    if port is None or port == 0:
        # Bind to port 0 to get a free port, then close and reuse
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(('127.0.0.1', 0))
            port = s.getsockname()[1]
        logger.info(f"Selected port: {port}")
        print(json.dumps({"event": "port_selected", "port": port}), flush=True)
    else:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            try:
                s.bind(('127.0.0.1', port))
            except OSError:
                logger.error(f"ERROR: Port {port} is already in use.")
                sys.exit(98)  # 98 = EADDRINUSE
        logger.info(f"Using port: {port}")
        print(json.dumps({"event": "port_used", "port": port}), flush=True)
    config = uvicorn.Config(app, host="127.0.0.1", port=port, log_level="info")
    server = uvicorn.Server(config)
    app.state.uvicorn_server = server  # Store server instance for shutdown
    logger.info(f"Starting Uvicorn server on port {port}")
    try:
        server.run()
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt in main thread")
    logger.info("Server stopped")


if __name__ == "__main__":
    app_cli()
