# tests/engine/test_topology.py
"""Tests for the topology graph: link log, live edges, and queries."""

import pytest

from audiotrace.contracts.enums import LinkKind, NodeRole
from audiotrace.engine.topology import TopologyGraph

CTX = "AudioContext#1"


@pytest.fixture
def graph() -> TopologyGraph:
    graph = TopologyGraph()
    graph.add_node(CTX, NodeRole.CONTEXT, context=CTX, timestamp=0.0)
    graph.add_node("Speakers#2", NodeRole.SPEAKER_DESTINATION, context=CTX, timestamp=0.0)
    return graph


def _add(graph: TopologyGraph, identity: str, role: NodeRole, context: str | None = CTX) -> None:
    graph.add_node(identity, role, context=context, timestamp=1.0)


class TestNodes:
    def test_add_node_is_idempotent(self, graph: TopologyGraph) -> None:
        first = graph.add_node("Gain#3", NodeRole.EFFECT, context=CTX, timestamp=1.0)
        again = graph.add_node("Gain#3", NodeRole.ANALYSER, context=CTX, timestamp=2.0)

        assert again is first
        assert graph.node("Gain#3").role is NodeRole.EFFECT  # type: ignore[union-attr]

    def test_nodes_in_creation_order_with_filters(self, graph: TopologyGraph) -> None:
        _add(graph, "Mic#3", NodeRole.CAPTURE_SOURCE)
        _add(graph, "Worker#4", NodeRole.WORKER, context=None)
        _add(graph, "Gain#5", NodeRole.EFFECT)

        assert [n.identity for n in graph.nodes(CTX)] == [CTX, "Speakers#2", "Mic#3", "Gain#5"]
        assert [n.identity for n in graph.nodes(role=NodeRole.WORKER)] == ["Worker#4"]
        assert graph.node_count == 5

    def test_annotate_merges_metadata(self, graph: TopologyGraph) -> None:
        graph.add_node("Analyser#3", NodeRole.ANALYSER, context=CTX, timestamp=1.0, metadata={"fftSize": 2048})

        graph.annotate("Analyser#3", usage="spectrum")

        assert graph.node("Analyser#3").metadata == {"fftSize": 2048, "usage": "spectrum"}  # type: ignore[union-attr]
        assert graph.annotate("Unknown#9", usage="waveform") is None


class TestWiring:
    def test_link_logs_and_adds_live_edge(self, graph: TopologyGraph) -> None:
        _add(graph, "Gain#3", NodeRole.EFFECT)

        record = graph.link("Gain#3", "Speakers#2", timestamp=2.0)

        assert record is not None
        assert record.kind is LinkKind.LINK
        assert record.context == CTX
        assert [(e.source, e.destination) for e in graph.live_edges(CTX)] == [("Gain#3", "Speakers#2")]

    def test_unknown_endpoint_ignored(self, graph: TopologyGraph) -> None:
        _add(graph, "Gain#3", NodeRole.EFFECT)

        assert graph.link("Gain#3", "Ghost#9", timestamp=2.0) is None
        assert graph.link("Ghost#9", "Gain#3", timestamp=2.0) is None
        assert graph.unlink("Ghost#9", timestamp=2.0) is None
        assert graph.log == ()
        assert graph.live_edges() == ()

    def test_duplicate_link_keeps_one_live_edge(self, graph: TopologyGraph) -> None:
        _add(graph, "Gain#3", NodeRole.EFFECT)

        graph.link("Gain#3", "Speakers#2", timestamp=2.0)
        graph.link("Gain#3", "Speakers#2", timestamp=3.0)

        assert len(graph.live_edges(CTX)) == 1
        assert len(graph.log) == 2

    def test_distinct_slots_are_distinct_edges(self, graph: TopologyGraph) -> None:
        _add(graph, "Splitter#3", NodeRole.EFFECT)

        graph.link("Splitter#3", "Speakers#2", output=0, timestamp=2.0)
        graph.link("Splitter#3", "Speakers#2", output=1, timestamp=2.0)

        assert [(e.output, e.input) for e in graph.live_edges(CTX)] == [(0, 0), (1, 0)]

    def test_unlink_forms(self, graph: TopologyGraph) -> None:
        _add(graph, "Splitter#3", NodeRole.EFFECT)
        _add(graph, "Gain#4", NodeRole.EFFECT)
        graph.link("Splitter#3", "Speakers#2", output=0, timestamp=1.0)
        graph.link("Splitter#3", "Speakers#2", output=1, timestamp=1.0)
        graph.link("Splitter#3", "Gain#4", output=1, timestamp=1.0)

        graph.unlink("Splitter#3", output=1, timestamp=2.0)
        assert [(e.destination, e.output) for e in graph.live_edges(CTX)] == [("Speakers#2", 0)]

        graph.unlink("Splitter#3", "Speakers#2", output=0, input=0, timestamp=3.0)
        assert graph.live_edges(CTX) == ()

    def test_unlink_all_outgoing(self, graph: TopologyGraph) -> None:
        _add(graph, "Gain#3", NodeRole.EFFECT)
        _add(graph, "Gain#4", NodeRole.EFFECT)
        graph.link("Gain#3", "Gain#4", timestamp=1.0)
        graph.link("Gain#3", "Speakers#2", timestamp=1.0)

        record = graph.unlink("Gain#3", timestamp=2.0)

        assert record is not None
        assert record.kind is LinkKind.UNLINK
        assert record.destination is None
        assert graph.live_edges(CTX) == ()

    def test_log_is_append_only_history(self, graph: TopologyGraph) -> None:
        _add(graph, "Gain#3", NodeRole.EFFECT)
        graph.link("Gain#3", "Speakers#2", timestamp=1.0)
        graph.unlink("Gain#3", "Speakers#2", timestamp=2.0)
        graph.link("Gain#3", "Speakers#2", timestamp=3.0)

        assert [r.kind for r in graph.log] == [LinkKind.LINK, LinkKind.UNLINK, LinkKind.LINK]
        sequences = [r.sequence for r in graph.log]
        assert sequences == sorted(sequences)

    def test_contexts_are_separate_graphs(self, graph: TopologyGraph) -> None:
        other = "AudioContext#10"
        graph.add_node(other, NodeRole.CONTEXT, context=other, timestamp=0.0)
        graph.add_node("Speakers#11", NodeRole.SPEAKER_DESTINATION, context=other, timestamp=0.0)
        graph.add_node("Gain#12", NodeRole.EFFECT, context=other, timestamp=0.0)
        graph.link("Gain#12", "Speakers#11", timestamp=1.0)

        assert graph.live_edges(CTX) == ()
        assert len(graph.live_edges(other)) == 1
        assert graph.snapshot(CTX).log == ()


class TestQueries:
    def test_shortest_path_fewest_hops(self, graph: TopologyGraph) -> None:
        for identity in ("Mic#3", "A#4", "B#5", "C#6"):
            _add(graph, identity, NodeRole.EFFECT)
        graph.link("Mic#3", "A#4", timestamp=1.0)
        graph.link("A#4", "B#5", timestamp=1.0)
        graph.link("B#5", "Speakers#2", timestamp=1.0)
        graph.link("Mic#3", "C#6", timestamp=1.0)
        graph.link("C#6", "Speakers#2", timestamp=1.0)

        assert graph.shortest_path("Mic#3", "Speakers#2") == ("Mic#3", "C#6", "Speakers#2")

    def test_shortest_path_tie_broken_by_wiring_order(self, graph: TopologyGraph) -> None:
        for identity in ("Mic#3", "Early#4", "Late#5"):
            _add(graph, identity, NodeRole.EFFECT)
        graph.link("Mic#3", "Early#4", timestamp=1.0)
        graph.link("Mic#3", "Late#5", timestamp=1.0)
        graph.link("Late#5", "Speakers#2", timestamp=1.0)
        graph.link("Early#4", "Speakers#2", timestamp=1.0)

        assert graph.shortest_path("Mic#3", "Speakers#2") == ("Mic#3", "Early#4", "Speakers#2")

    def test_no_path(self, graph: TopologyGraph) -> None:
        _add(graph, "Gain#3", NodeRole.EFFECT)

        assert graph.shortest_path("Gain#3", "Speakers#2") is None
        assert graph.shortest_path("Gain#3", "Gain#3") == ("Gain#3",)

    def test_main_chain_prefers_capture_destination(self, graph: TopologyGraph) -> None:
        _add(graph, "Mic#3", NodeRole.CAPTURE_SOURCE)
        _add(graph, "Proc#4", NodeRole.SCRIPT_PROCESSOR)
        _add(graph, "Capture#5", NodeRole.CAPTURE_DESTINATION)
        graph.link("Mic#3", "Speakers#2", timestamp=1.0)
        graph.link("Mic#3", "Proc#4", timestamp=1.0)
        graph.link("Proc#4", "Capture#5", timestamp=1.0)

        assert graph.main_chain(CTX) == ("Mic#3", "Proc#4", "Capture#5")

    def test_main_chain_falls_back_to_speakers(self, graph: TopologyGraph) -> None:
        _add(graph, "Mic#3", NodeRole.CAPTURE_SOURCE)
        _add(graph, "Gain#4", NodeRole.EFFECT)
        graph.link("Mic#3", "Gain#4", timestamp=1.0)
        graph.link("Gain#4", "Speakers#2", timestamp=1.0)

        assert graph.main_chain(CTX) == ("Mic#3", "Gain#4", "Speakers#2")

    def test_main_chain_empty_when_unwired(self, graph: TopologyGraph) -> None:
        _add(graph, "Mic#3", NodeRole.CAPTURE_SOURCE)

        assert graph.main_chain(CTX) == ()

    def test_monitor_taps(self, graph: TopologyGraph) -> None:
        _add(graph, "Mic#3", NodeRole.CAPTURE_SOURCE)
        _add(graph, "Analyser#4", NodeRole.ANALYSER)
        _add(graph, "Worker#5", NodeRole.WORKER, context=None)
        graph.link("Mic#3", "Speakers#2", timestamp=1.0)
        graph.link("Mic#3", "Analyser#4", timestamp=1.0)

        assert graph.monitor_taps(CTX) == ("Analyser#4",)
        assert not graph.has_live_path_to_destination("Analyser#4")
        assert graph.has_live_path_to_destination("Mic#3")

    def test_monitor_becomes_main_chain_member_when_wired_through(self, graph: TopologyGraph) -> None:
        _add(graph, "Mic#3", NodeRole.CAPTURE_SOURCE)
        _add(graph, "Analyser#4", NodeRole.ANALYSER)
        graph.link("Mic#3", "Analyser#4", timestamp=1.0)
        graph.link("Analyser#4", "Speakers#2", timestamp=2.0)

        assert graph.monitor_taps(CTX) == ()

    def test_snapshot(self, graph: TopologyGraph) -> None:
        _add(graph, "Mic#3", NodeRole.CAPTURE_SOURCE)
        graph.link("Mic#3", "Speakers#2", timestamp=1.0)

        snapshot = graph.snapshot(CTX)
        data = snapshot.to_dict()

        assert snapshot.main_chain == ("Mic#3", "Speakers#2")
        assert data["edges"] == [{"source": "Mic#3", "destination": "Speakers#2", "output": 0, "input": 0}]
        assert data["log"][0]["kind"] == "link"
        assert graph.snapshot().main_chain == ()
