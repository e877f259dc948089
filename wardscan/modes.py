"""Run modes: full system, oracles, single-contract trees and reverse permissions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .config import ConfigurationError
from .contracts import LP_ORACLE, Present, read_address
from .directory import ChainDirectory
from .etherscan import DeployerLookup
from .graph import AuthorityGraphBuilder, Edge, export_graph, graph_nodes, merge_graphs
from .harvest import HarvestSession, LogHarvester
from .probes import AuthorityProber
from .snapshot import SnapshotDiffer, SnapshotResult
from .store import CacheStore
from .tree import draw_permissions, draw_tree, draw_trees


_LOGGER = logging.getLogger("wardscan.modes")

VAT_NAME = "MCD_VAT"
ORACLE_PREFIX = "PIP_"
MODES = ("full", "oracles", "authorities", "permissions")


@dataclass
class RunOptions:
    depth: Optional[int] = None
    reuse_logs: bool = False
    reuse_graphs: bool = False


@dataclass
class ModeResult:
    text: str
    snapshot: Optional[SnapshotResult] = None


@dataclass
class Workspace:
    """Everything one run shares: transport, caches, directory and the log session."""

    client: object
    store: CacheStore
    directory: ChainDirectory
    harvester: LogHarvester
    snapshots: SnapshotDiffer
    options: RunOptions = field(default_factory=RunOptions)
    deployers: Optional[DeployerLookup] = None
    session: HarvestSession = field(init=False)
    graphs: Dict[str, List[Edge]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.session = HarvestSession(self.harvester, reuse_logs=self.options.reuse_logs)

    def builder(self) -> AuthorityGraphBuilder:
        prober = AuthorityProber(self.client, self.directory, self.session, self.deployers)
        return AuthorityGraphBuilder(
            prober,
            self.session,
            max_depth=self.options.depth,
            cancel_token=self.harvester.cancel_token,
        )

    def who(self, address: str) -> str:
        return self.directory.name_of(address)


def get_oracle_addresses(ws: Workspace) -> List[str]:
    """``PIP_*`` oracles plus their LP legs (``orb0``/``orb1``) or price source (``src``)."""

    _LOGGER.info("getting oracle addresses...")
    oracles: List[str] = []
    aliases: Dict[str, str] = {}
    for address, who in ws.directory.items():
        if not who.startswith(ORACLE_PREFIX):
            continue
        oracles.append(address)
        orb0 = read_address(ws.client, address, LP_ORACLE["orb0"])
        orb1 = read_address(ws.client, address, LP_ORACLE["orb1"])
        if isinstance(orb0, Present) and isinstance(orb1, Present):
            oracles.extend([orb0.value, orb1.value])
            aliases[orb0.value] = who + "_ORB0"
            aliases[orb1.value] = who + "_ORB1"
            _LOGGER.info("%s (%s) orbs: %s, %s", who, address, orb0.value, orb1.value)
            continue
        source = read_address(ws.client, address, LP_ORACLE["src"])
        if isinstance(source, Present):
            oracles.append(source.value)
            aliases[source.value] = who + "_SRC"
            _LOGGER.info("%s (%s) source: %s", who, address, source.value)
        else:
            _LOGGER.info("%s (%s) has no orbs and no source", who, address)
    # registry names win over derived aliases
    aliases = {address: alias for address, alias in aliases.items() if address not in ws.directory}
    ws.directory = ws.directory.extend(aliases)
    oracles = list(dict.fromkeys(oracles))
    _LOGGER.info("found %d oracle addresses", len(oracles))
    return oracles


def read_graph(ws: Workspace, name: str) -> Optional[List[Edge]]:
    cached = ws.store.load_graph(name)
    if cached is None:
        return None
    return [Edge.from_dict(item) for item in cached]


def write_graph(ws: Workspace, name: str, graph: Sequence[Edge]) -> None:
    ws.store.save_graph(name, [edge.to_dict() for edge in graph])
    path = ws.store.save_export(name, export_graph(graph, ws.directory, include_directory=name == "full"))
    _LOGGER.info("wrote graph %s", path)


def _graph_for(ws: Workspace, address: str) -> List[Edge]:
    who = ws.who(address)
    if ws.options.reuse_graphs:
        cached = read_graph(ws, who)
        if cached is not None:
            return cached
        _LOGGER.info("no cached graph found for %s", who)
    graph = ws.builder().build(address)
    write_graph(ws, who, graph)
    return graph


def collect_graphs(ws: Workspace, addresses: Sequence[str]) -> List[Edge]:
    """Per-root graphs (cached or built) merged into one."""

    ws.session.prefetch(addresses)
    merged: List[Edge] = []
    token = ws.harvester.cancel_token
    for count, address in enumerate(addresses, start=1):
        if token is not None:
            token.raise_if_cancelled(f"graph collection ({count - 1} of {len(addresses)} done)")
        _LOGGER.info("address %d of %d", count, len(addresses))
        merged = merge_graphs(_graph_for(ws, address), merged)
    return merged


def _vat_address(ws: Workspace) -> str:
    address = ws.directory.address_of(VAT_NAME)
    if not address:
        raise ConfigurationError(f"{VAT_NAME} is missing from the chainlog")
    return address


def full_mode(ws: Workspace) -> ModeResult:
    _LOGGER.info("performing full system lookup...")
    vat = _vat_address(ws)
    roots = list(dict.fromkeys([vat, *get_oracle_addresses(ws)]))
    full_graph = read_graph(ws, "full") if ws.options.reuse_graphs else None
    if full_graph is None:
        graph = collect_graphs(ws, roots)
        known = set(graph_nodes(graph))
        extra = [address for address in ws.directory if address not in known]
        full_graph = merge_graphs(graph, collect_graphs(ws, extra))
    write_graph(ws, "full", full_graph)
    trees = draw_trees(full_graph, roots, ws.directory, ws.options.depth)
    return ModeResult(trees, ws.snapshots.record(trees, "full"))


def oracles_mode(ws: Workspace) -> ModeResult:
    addresses = get_oracle_addresses(ws)
    graph = collect_graphs(ws, addresses)
    write_graph(ws, "oracles", graph)
    trees = draw_trees(graph, addresses, ws.directory, ws.options.depth)
    return ModeResult(trees, ws.snapshots.record(trees, "oracles"))


def contract_mode(ws: Workspace, address: str) -> str:
    graph = _graph_for(ws, address)
    return draw_tree(graph, address, ws.directory, ws.options.depth)


def permissions_mode(ws: Workspace, address: str) -> str:
    _LOGGER.info("performing permissions lookup for %s...", ws.who(address))
    graph = ws.graphs.get("permissions")
    if graph is None and ws.options.reuse_graphs:
        vat_graph = read_graph(ws, VAT_NAME)
        oracle_graph = read_graph(ws, "oracles")
        if vat_graph is not None and oracle_graph is not None:
            graph = merge_graphs(vat_graph, oracle_graph)
    if graph is None:
        vat_graph = ws.builder().build(_vat_address(ws))
        oracles = get_oracle_addresses(ws)
        oracle_graph = collect_graphs(ws, oracles)
        write_graph(ws, VAT_NAME, vat_graph)
        write_graph(ws, "oracles", oracle_graph)
        graph = merge_graphs(vat_graph, oracle_graph)
    ws.graphs["permissions"] = graph
    return draw_permissions(graph, address, ws.directory, ws.options.depth)


def targets_mode(ws: Workspace, mode: str, identifiers: Sequence[str]) -> ModeResult:
    """Forward trees (``authorities``) or reverse trees (``permissions``) per target."""

    addresses = [ws.directory.resolve(identifier) for identifier in identifiers]
    if len(addresses) > 1:
        ws.session.prefetch(addresses)
    sections = []
    for address in addresses:
        if mode == "permissions":
            sections.append(permissions_mode(ws, address))
        else:
            sections.append(contract_mode(ws, address))
    text = "\n\n".join(sections)
    return ModeResult(text, ws.snapshots.record(text, mode))


def run_mode(ws: Workspace, mode: str, identifiers: Sequence[str] = ()) -> ModeResult:
    if mode not in MODES:
        raise ConfigurationError(f"unknown mode: {mode}")
    if mode == "full":
        return full_mode(ws)
    if mode == "oracles":
        return oracles_mode(ws)
    if not identifiers:
        raise ConfigurationError(f"mode '{mode}' needs at least one contract")
    return targets_mode(ws, mode, identifiers)
