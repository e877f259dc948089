"""Tests for edge merging and the breadth-first graph builder."""

import signal

import pytest

from conftest import FakeChain, FakeContract, addr, rely_log
from wardscan.contracts import Absent, Present
from wardscan.directory import ChainDirectory
from wardscan.graph import (
    AuthorityGraphBuilder,
    Edge,
    Frontier,
    Relation,
    export_graph,
    graph_nodes,
    merge_graphs,
    profile_edges,
)
from wardscan.harvest import (
    CancelToken,
    HarvestSession,
    LogHarvester,
    RunCancelled,
    install_signal_handlers,
)
from wardscan.probes import AuthorityProber, AuthorityProfile


A = addr(0xA1)
B = addr(0xB1)
C = addr(0xC1)
KEY = addr(0xE1)


def _edge(source, target, label=Relation.WARD, timestamp="t0") -> Edge:
    return Edge(source, target, label, timestamp)


def _builder(chain: FakeChain, store, max_depth=None, cancel_token=None):
    chain.latest = 100
    session = HarvestSession(LogHarvester(chain, store, sleep=lambda _: None))
    prober = AuthorityProber(chain, ChainDirectory({A: "A", B: "B"}), session)
    profiled = []
    inner = prober.profile

    def profile(address):
        profiled.append(address)
        return inner(address)

    prober.profile = profile
    builder = AuthorityGraphBuilder(
        prober, session, max_depth=max_depth, clock=lambda: "now", cancel_token=cancel_token
    )
    return builder, profiled


class TestMerge:
    def test_no_duplicates_regardless_of_order(self):
        a = [_edge(A, B), _edge(B, C, Relation.OWNER)]
        b = [_edge(A, B, timestamp="t1"), _edge(C, A, Relation.AUTHORITY)]

        for merged in (merge_graphs(a, b), merge_graphs(b, a)):
            keys = [edge.key for edge in merged]
            assert len(keys) == len(set(keys)) == 3

        assert {e.key for e in merge_graphs(a, b)} == {e.key for e in merge_graphs(b, a)}

    def test_idempotent(self):
        a = [_edge(A, B), _edge(B, C, Relation.BUD)]
        assert merge_graphs(a, a) == a

    def test_inputs_not_mutated_and_order_kept(self):
        a = [_edge(A, B)]
        b = [_edge(B, C)]
        merged = merge_graphs(a, b)
        assert merged == [_edge(B, C), _edge(A, B)]
        assert b == [_edge(B, C)]

    def test_label_distinguishes_edges(self):
        merged = merge_graphs([_edge(A, B, Relation.OWNER)], [_edge(A, B, Relation.AUTHORITY)])
        assert len(merged) == 2


class TestFrontier:
    def test_new_filtered_against_all(self):
        frontier = Frontier(new=[A, A, B])
        assert frontier.advance() == [A, B]
        frontier.discover(B)
        frontier.discover(C)
        frontier.settle()
        assert frontier.new == [C]
        assert frontier.all == {A, B}


class TestProfileEdges:
    def test_edges_point_from_party_to_probed_address(self):
        profile = AuthorityProfile(
            address=A, is_eoa=False, owner=Present(B), authority=Absent(), wards=[C], buds=[KEY]
        )
        edges = profile_edges(profile, "now")
        assert [(e.source, e.target, e.label) for e in edges] == [
            (B, A, Relation.OWNER),
            (C, A, Relation.WARD),
            (KEY, A, Relation.BUD),
        ]

    def test_eoa_self_edge(self):
        edges = profile_edges(AuthorityProfile(address=KEY, is_eoa=True), "now")
        assert edges == [Edge(KEY, KEY, Relation.EOA, "now")]


class TestBuilder:
    def test_authority_cycle_terminates(self, chain: FakeChain, store):
        chain.contracts[A] = FakeContract(authority=B)
        chain.contracts[B] = FakeContract(authority=A)
        builder, profiled = _builder(chain, store)

        edges = builder.build(A)

        assert profiled == [A, B]
        assert [(e.source, e.target, e.label) for e in edges] == [
            (B, A, Relation.AUTHORITY),
            (A, B, Relation.AUTHORITY),
        ]

    def test_levels_expand_to_eoa_leaf(self, chain: FakeChain, store):
        chain.contracts[A] = FakeContract(owner=B, wards={C})
        chain.contracts[B] = FakeContract(owner=KEY)
        chain.contracts[C] = FakeContract()
        chain.logs = [rely_log(A, C, 5)]
        builder, profiled = _builder(chain, store)

        edges = builder.build(A)

        assert profiled == [A, B, C, KEY]
        assert (KEY, KEY, Relation.EOA) in [(e.source, e.target, e.label) for e in edges]
        assert all(e.timestamp == "now" for e in edges)

    def test_level_logs_harvested_together(self, chain: FakeChain, store):
        chain.contracts[A] = FakeContract(owner=B, authority=C)
        chain.contracts[B] = FakeContract()
        chain.contracts[C] = FakeContract()
        builder, _ = _builder(chain, store)

        builder.build(A)

        assert [addresses for addresses, _, _ in chain.log_calls] == [(A,), tuple(sorted([B, C]))]

    def test_max_depth_limits_levels(self, chain: FakeChain, store):
        chain.contracts[A] = FakeContract(owner=B)
        chain.contracts[B] = FakeContract(owner=C)
        chain.contracts[C] = FakeContract(owner=KEY)
        builder, profiled = _builder(chain, store, max_depth=2)

        edges = builder.build(A)

        assert profiled == [A, B]
        assert len(edges) == 2

    def test_build_many_seeds_all_roots(self, chain: FakeChain, store):
        chain.contracts[A] = FakeContract(owner=C)
        chain.contracts[B] = FakeContract(owner=C)
        chain.contracts[C] = FakeContract()
        builder, profiled = _builder(chain, store)

        edges = builder.build_many([A, B])

        assert profiled == [A, B, C]
        assert len(edges) == 2


def test_export_uses_display_names():
    directory = ChainDirectory({A: "MCD_VAT", B: "MCD_PAUSE_PROXY"})
    graph = [_edge(B, A), _edge(C, B, Relation.OWNER)]

    document = export_graph(graph, directory, include_directory=True)

    assert document["links"][0] == {"source": "MCD_PAUSE_PROXY", "target": "MCD_VAT", "label": "ward", "timestamp": "t0"}
    assert [node["id"] for node in document["nodes"]] == ["MCD_PAUSE_PROXY", C, "MCD_VAT"]
    assert graph_nodes(graph) == [B, C, A]


class TestCancellation:
    def _cycle(self, chain: FakeChain) -> None:
        chain.contracts[A] = FakeContract(authority=B)
        chain.contracts[B] = FakeContract(authority=A)

    def test_termination_signal_stops_build_before_next_profile(self, chain: FakeChain, store, restore_signals):
        self._cycle(chain)
        token = CancelToken()
        install_signal_handlers(token)
        builder, profiled = _builder(chain, store, cancel_token=token)
        builder.session.prefetch([A, B])

        signal.raise_signal(signal.SIGTERM)

        assert token.cancelled
        with pytest.raises(RunCancelled):
            builder.build(A)
        assert profiled == []
        assert chain.calls == []

    def test_second_signal_aborts(self, restore_signals):
        token = CancelToken()
        install_signal_handlers(token)
        token.cancel()
        with pytest.raises(KeyboardInterrupt):
            signal.raise_signal(signal.SIGINT)

    def test_build_completes_without_cancellation(self, chain: FakeChain, store):
        self._cycle(chain)
        builder, profiled = _builder(chain, store, cancel_token=CancelToken())
        assert len(builder.build(A)) == 2
        assert profiled == [A, B]
