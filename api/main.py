from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum
from pydantic import BaseModel, Field

from wardscan.config import ConfigurationError
from wardscan.directory import ChainDirectory
from wardscan.graph import Edge
from wardscan.snapshot import SnapshotDiffer
from wardscan.store import CacheStore
from wardscan.tree import FORWARD, REVERSE, as_tree, render_tree

_LOGGER = logging.getLogger("wardscan.api")
_LOGGER.setLevel(logging.INFO)


def _store() -> CacheStore:
    return CacheStore(
        Path(os.getenv("WARDSCAN_CACHE_DIR", "cached")),
        Path(os.getenv("WARDSCAN_GRAPH_DIR", "graph")),
    )


def _snapshots() -> SnapshotDiffer:
    return SnapshotDiffer(Path(os.getenv("WARDSCAN_REPORT_DIR", ".")))


def _checked_name(value: str, kind: str) -> str:
    """Reject identifiers that would address files outside the cache or report roots."""

    if not value or "/" in value or "\\" in value or ".." in value or value.startswith("."):
        raise HTTPException(status_code=400, detail=f"Invalid {kind} name {value!r}")
    return value


def _directory(store: CacheStore) -> ChainDirectory:
    return ChainDirectory(store.load_directory() or {})


class TreeRequest(BaseModel):
    graph: str = Field(
        description="Cached graph name (chainlog name, address, 'oracles' or 'full').",
    )
    root: str = Field(
        description="Root contract, as an address or chainlog name.",
    )
    direction: str = Field(
        default=FORWARD,
        description="'forward' for who controls root, 'reverse' for what root controls.",
    )
    depth: Optional[int] = Field(
        default=None,
        ge=0,
        description="Maximum tree depth (0 or empty = unbounded).",
    )


class TreeResponse(BaseModel):
    root: str
    direction: str
    text: str
    tree: dict[str, Any]


app = FastAPI(
    title="wardscan API",
    version="0.1",
    root_path=os.getenv("WARDSCAN_ROOT_PATH", ""),
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_http_request(request, call_next):
    _LOGGER.info("http request method=%s path=%s", request.method, request.url.path)
    response = await call_next(request)
    _LOGGER.info("http response status=%s path=%s", response.status_code, request.url.path)
    return response


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/reports/{category}/latest")
def latest_report(category: str) -> dict:
    text = _snapshots().latest(_checked_name(category, "report category"))
    if not text:
        raise HTTPException(status_code=404, detail=f"No report recorded for {category}")
    return {"category": category, "text": text}


@app.get("/graphs/{name}")
def graph_export(name: str) -> dict:
    document = _store().load_export(_checked_name(name, "graph"))
    if document is None:
        raise HTTPException(status_code=404, detail=f"Graph not found for {name}")
    return document


@app.post("/tree", response_model=TreeResponse)
def tree(req: TreeRequest) -> TreeResponse:
    if req.direction not in (FORWARD, REVERSE):
        raise HTTPException(status_code=400, detail=f"Unknown direction {req.direction}")
    store = _store()
    cached = store.load_graph(_checked_name(req.graph, "graph"))
    if cached is None:
        raise HTTPException(status_code=404, detail=f"Graph not found for {req.graph}")
    directory = _directory(store)
    try:
        root = directory.resolve(req.root)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    graph = [Edge.from_dict(item) for item in cached]
    nested = render_tree(graph, root, directory, req.direction, req.depth)
    _LOGGER.info("tree graph=%s root=%s direction=%s edges=%d", req.graph, root, req.direction, len(graph))
    return TreeResponse(
        root=directory.name_of(root),
        direction=req.direction,
        text=directory.name_of(root) + "\n" + as_tree(nested),
        tree=nested,
    )


handler = Mangum(app)
