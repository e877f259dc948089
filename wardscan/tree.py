"""Forward ("who controls X") and reverse ("what X controls") trees."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Set

from .directory import ChainDirectory
from .graph import Edge


Tree = Dict[str, "Tree"]

FORWARD = "forward"
REVERSE = "reverse"


def _sub_tree(
    graph: Sequence[Edge],
    directory: ChainDirectory,
    ancestors: Set[str],
    root: str,
    level: int,
    max_depth: Optional[int],
    direction: str,
) -> Tree:
    if max_depth and level == max_depth:
        return {}
    forward = direction == FORWARD
    path = ancestors | {root}
    tree: Tree = {}
    for edge in graph:
        near, far = (edge.target, edge.source) if forward else (edge.source, edge.target)
        if near != root or far in ancestors:
            continue
        if forward:
            card = f"{edge.label.value}: {directory.name_of(far)}"
        else:
            card = f"{edge.label.value} of {directory.name_of(far)}"
        tree[card] = _sub_tree(graph, directory, path, far, level + 1, max_depth, direction)
    return tree


def render_tree(
    graph: Iterable[Edge],
    root: str,
    directory: ChainDirectory,
    direction: str = FORWARD,
    max_depth: Optional[int] = None,
) -> Tree:
    """Nested ``label -> subtree`` mapping rooted at ``root``.

    Edges whose far endpoint already appears on the path from the root are
    skipped, so authority cycles terminate. ``max_depth`` of ``0`` or
    ``None`` means unbounded.
    """

    if direction not in (FORWARD, REVERSE):
        raise ValueError(f"unknown tree direction: {direction}")
    return _sub_tree(list(graph), directory, set(), root, 0, max_depth, direction)


def as_tree(tree: Tree, prefix: str = "") -> str:
    lines: List[str] = []
    keys = list(tree)
    for index, key in enumerate(keys):
        last = index == len(keys) - 1
        lines.append(f"{prefix}{'└─ ' if last else '├─ '}{key}\n")
        lines.append(as_tree(tree[key], prefix + ("   " if last else "│  ")))
    return "".join(lines)


def draw_tree(graph: Iterable[Edge], root: str, directory: ChainDirectory, max_depth: Optional[int] = None) -> str:
    return directory.name_of(root) + "\n" + as_tree(render_tree(graph, root, directory, FORWARD, max_depth))


def draw_permissions(
    graph: Iterable[Edge], root: str, directory: ChainDirectory, max_depth: Optional[int] = None
) -> str:
    return directory.name_of(root) + "\n" + as_tree(render_tree(graph, root, directory, REVERSE, max_depth))


def draw_trees(
    graph: Iterable[Edge], roots: Iterable[str], directory: ChainDirectory, max_depth: Optional[int] = None
) -> str:
    edges = list(graph)
    return "".join(draw_tree(edges, root, directory, max_depth) + "\n" for root in roots)
