"""Authority graph: edges, merging and the breadth-first builder."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from .contracts import Present
from .directory import ChainDirectory
from .harvest import CancelToken, HarvestSession
from .probes import AuthorityProber, AuthorityProfile


_LOGGER = logging.getLogger("wardscan.graph")


class Relation(str, Enum):
    OWNER = "owner"
    AUTHORITY = "authority"
    WARD = "ward"
    BUD = "bud"
    EOA = "externally owned account"


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    label: Relation
    timestamp: str

    @property
    def key(self) -> Tuple[str, str, Relation]:
        return (self.source, self.target, self.label)

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "target": self.target,
            "label": self.label.value,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, item: dict) -> "Edge":
        return cls(
            source=item["source"],
            target=item["target"],
            label=Relation(item["label"]),
            timestamp=item.get("timestamp") or "",
        )


def merge_graphs(a: Iterable[Edge], b: Iterable[Edge]) -> List[Edge]:
    """Edges of ``b`` followed by those of ``a`` it lacks, compared by (source, target, label)."""

    merged = list(b)
    seen = {edge.key for edge in merged}
    for edge in a:
        if edge.key not in seen:
            seen.add(edge.key)
            merged.append(edge)
    return merged


def graph_nodes(graph: Iterable[Edge]) -> List[str]:
    nodes: Dict[str, None] = {}
    edges = list(graph)
    for edge in edges:
        nodes.setdefault(edge.source, None)
    for edge in edges:
        nodes.setdefault(edge.target, None)
    return list(nodes)


def export_graph(graph: Iterable[Edge], directory: ChainDirectory, include_directory: bool = False) -> dict:
    """Display-name document: ``{"nodes": [{"id"}], "links": [...]}``."""

    links = [
        {
            "source": directory.name_of(edge.source),
            "target": directory.name_of(edge.target),
            "label": edge.label.value,
            "timestamp": edge.timestamp,
        }
        for edge in graph
    ]
    names: Dict[str, None] = {}
    for link in links:
        names.setdefault(link["source"], None)
    for link in links:
        names.setdefault(link["target"], None)
    if include_directory:
        for name in directory.names():
            names.setdefault(name, None)
    return {"links": links, "nodes": [{"id": name} for name in names]}


def profile_edges(profile: AuthorityProfile, timestamp: str) -> List[Edge]:
    target = profile.address
    edges: List[Edge] = []
    if profile.is_eoa:
        edges.append(Edge(target, target, Relation.EOA, timestamp))
    if isinstance(profile.owner, Present):
        edges.append(Edge(profile.owner.value, target, Relation.OWNER, timestamp))
    if isinstance(profile.authority, Present):
        edges.append(Edge(profile.authority.value, target, Relation.AUTHORITY, timestamp))
    for ward in profile.wards:
        edges.append(Edge(ward, target, Relation.WARD, timestamp))
    for bud in profile.buds:
        edges.append(Edge(bud, target, Relation.BUD, timestamp))
    return edges


@dataclass
class Frontier:
    all: Set[str] = field(default_factory=set)
    current: List[str] = field(default_factory=list)
    new: List[str] = field(default_factory=list)

    def advance(self) -> List[str]:
        self.current = list(dict.fromkeys(self.new))
        self.all.update(self.current)
        self.new = []
        return self.current

    def discover(self, address: str) -> None:
        self.new.append(address)

    def settle(self) -> None:
        self.new = [address for address in self.new if address not in self.all]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class AuthorityGraphBuilder:
    """Expands a frontier of addresses level by level into authority edges."""

    def __init__(
        self,
        prober: AuthorityProber,
        session: HarvestSession,
        max_depth: Optional[int] = None,
        clock: Callable[[], str] = _now,
        cancel_token: Optional[CancelToken] = None,
    ) -> None:
        self.prober = prober
        self.session = session
        self.max_depth = max_depth or None
        self.clock = clock
        self.cancel_token = cancel_token

    def build(self, root: str) -> List[Edge]:
        return self.build_many([root])

    def build_many(self, roots: Iterable[str]) -> List[Edge]:
        frontier = Frontier(new=list(roots))
        edges: List[Edge] = []
        seen: Set[Tuple[str, str, Relation]] = set()
        level = 0
        while frontier.new and (self.max_depth is None or level < self.max_depth):
            level += 1
            current = frontier.advance()
            _LOGGER.info("level %d: expanding %d addresses", level, len(current))
            self.session.prefetch(current)
            for target in current:
                if self.cancel_token is not None:
                    self.cancel_token.raise_if_cancelled(f"profiling of {target}")
                profile = self.prober.profile(target)
                for edge in profile_edges(profile, self.clock()):
                    if edge.key in seen:
                        continue
                    seen.add(edge.key)
                    edges.append(edge)
                    if edge.source != target:
                        frontier.discover(edge.source)
            frontier.settle()
        return edges
