# src/audiotrace/engine/topology.py
"""TopologyGraph: live wiring of observed audio nodes.

Two views of the same wiring are kept:

- An append-only log of every link/unlink, tagged with the pipeline-context
  it belongs to. The log is history; it is never rewritten.
- A NetworkX MultiDiGraph per pipeline-context holding only the edges that
  are currently wired. Edges are keyed by their (output, input) slot pair so
  the same pair of nodes may be wired on several slots at once.

Links or unlinks naming an endpoint that was never reported as constructed
are ignored, so the graph never holds an edge to an unknown node.
"""

from __future__ import annotations

import itertools
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

import networkx as nx
import structlog
from networkx import MultiDiGraph

from audiotrace.contracts.enums import LinkKind, NodeRole
from audiotrace.contracts.records import GraphSnapshot, LinkRecord, LiveEdge, ObservedNode

logger = structlog.get_logger(__name__)


class TopologyGraph:
    """Observed nodes, the link log, and live adjacency per pipeline-context.

    Nodes without a context (workers, recorders) are tracked but live in the
    ``None`` context graph, which never carries edges.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, ObservedNode] = {}
        self._graphs: dict[str | None, MultiDiGraph[str]] = {}
        self._log: list[LinkRecord] = []
        # One counter for nodes and log entries so sequences reflect event order
        self._sequence = itertools.count(1)

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def log(self) -> tuple[LinkRecord, ...]:
        return tuple(self._log)

    def contexts(self) -> tuple[str | None, ...]:
        return tuple(self._graphs)

    def _graph_for(self, context: str | None) -> MultiDiGraph[str]:
        graph = self._graphs.get(context)
        if graph is None:
            graph = nx.MultiDiGraph()
            self._graphs[context] = graph
        return graph

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def add_node(
        self,
        identity: str,
        role: NodeRole,
        *,
        context: str | None,
        timestamp: float,
        metadata: dict[str, Any] | None = None,
    ) -> ObservedNode:
        """Record a constructed node. Re-reporting a known identity is a no-op."""
        existing = self._nodes.get(identity)
        if existing is not None:
            return existing
        node = ObservedNode(
            identity=identity,
            role=role,
            context=context,
            sequence=next(self._sequence),
            created_at=timestamp,
            metadata=dict(metadata or {}),
        )
        self._nodes[identity] = node
        self._graph_for(context).add_node(identity)
        logger.debug("Node observed", identity=identity, role=role.value, context=context, diagnostic=True)
        return node

    def annotate(self, identity: str, **metadata: Any) -> ObservedNode | None:
        """Merge metadata into a known node (e.g. how an analyser is read)."""
        node = self._nodes.get(identity)
        if node is None:
            return None
        updated = replace(node, metadata={**node.metadata, **metadata})
        self._nodes[identity] = updated
        return updated

    def node(self, identity: str) -> ObservedNode | None:
        return self._nodes.get(identity)

    def nodes(self, context: str | None = None, *, role: NodeRole | None = None) -> tuple[ObservedNode, ...]:
        """Nodes in creation order, optionally filtered by context and role.

        ``context=None`` returns nodes of every context.
        """
        selected: Iterable[ObservedNode] = self._nodes.values()
        if context is not None:
            selected = (n for n in selected if n.context == context)
        if role is not None:
            selected = (n for n in selected if n.role == role)
        return tuple(sorted(selected, key=lambda n: n.sequence))

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def link(
        self,
        source: str,
        destination: str | None,
        *,
        output: int = 0,
        input: int = 0,
        timestamp: float,
    ) -> LinkRecord | None:
        """Log a link and add the live edge.

        Returns:
            The log record, or None when an endpoint is unknown.
        """
        source_node = self._nodes.get(source)
        destination_node = self._nodes.get(destination) if destination is not None else None
        if source_node is None or destination_node is None:
            logger.debug("Link with unknown endpoint ignored", source=source, destination=destination)
            return None

        context = source_node.context if source_node.context is not None else destination_node.context
        record = LinkRecord(
            kind=LinkKind.LINK,
            source=source,
            destination=destination,
            output=output,
            input=input,
            context=context,
            sequence=next(self._sequence),
            timestamp=timestamp,
        )
        self._log.append(record)

        graph = self._graph_for(context)
        key = (output, input)
        if not graph.has_edge(source, destination, key=key):
            graph.add_edge(source, destination, key=key, sequence=record.sequence)
        return record

    def unlink(
        self,
        source: str,
        destination: str | None = None,
        *,
        output: int | None = None,
        input: int | None = None,
        timestamp: float,
    ) -> LinkRecord | None:
        """Log an unlink and remove every live edge it matches.

        Forms (None matches anything):
            unlink(src)                      all outgoing edges
            unlink(src, output=n)            all edges leaving output n
            unlink(src, dst)                 all edges to dst
            unlink(src, dst, output=n)       edges to dst from output n
            unlink(src, dst, output=n, input=m)  the single slot pair
        """
        source_node = self._nodes.get(source)
        if source_node is None or (destination is not None and destination not in self._nodes):
            logger.debug("Unlink with unknown endpoint ignored", source=source, destination=destination)
            return None

        context = source_node.context
        record = LinkRecord(
            kind=LinkKind.UNLINK,
            source=source,
            destination=destination,
            output=output,
            input=input,
            context=context,
            sequence=next(self._sequence),
            timestamp=timestamp,
        )
        self._log.append(record)

        graph = self._graph_for(context)
        if not graph.has_node(source):
            return record
        doomed = [
            (u, v, key)
            for u, v, key in graph.out_edges(source, keys=True)
            if (destination is None or v == destination)
            and (output is None or key[0] == output)
            and (input is None or key[1] == input)
        ]
        graph.remove_edges_from(doomed)
        return record

    def live_edges(self, context: str | None = None) -> tuple[LiveEdge, ...]:
        """Currently wired edges in the order they were (last) wired."""
        if context is None:
            graphs = list(self._graphs.values())
        else:
            graphs = [g for c, g in self._graphs.items() if c == context]
        wired = [
            (data["sequence"], LiveEdge(source=u, destination=v, output=key[0], input=key[1]))
            for graph in graphs
            for u, v, key, data in graph.edges(keys=True, data=True)
        ]
        return tuple(edge for _, edge in sorted(wired, key=lambda item: item[0]))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def shortest_path(self, source: str, destination: str) -> tuple[str, ...] | None:
        """Fewest-hop path over live edges.

        Ties are broken by discovery order of a breadth-first search that
        visits successors in the order their edges were first wired.
        """
        node = self._nodes.get(source)
        if node is None or destination not in self._nodes:
            return None
        if source == destination:
            return (source,)
        graph = self._graphs.get(node.context)
        if graph is None or not graph.has_node(source):
            return None

        parents: dict[str, str] = {}
        for parent, child in nx.bfs_edges(graph, source):
            parents[child] = parent
            if child == destination:
                path = [child]
                while path[-1] != source:
                    path.append(parents[path[-1]])
                return tuple(reversed(path))
        return None

    def has_live_path_to_destination(self, identity: str) -> bool:
        """True when the node currently reaches any destination node."""
        node = self._nodes.get(identity)
        if node is None:
            return False
        if node.role.is_destination:
            return True
        graph = self._graphs.get(node.context)
        if graph is None or not graph.has_node(identity):
            return False
        return any(self._nodes[d].role.is_destination for d in nx.descendants(graph, identity))

    def main_chain(self, context: str) -> tuple[str, ...]:
        """Current main processing chain of a context.

        The shortest live path from a capture source to a destination.
        Capture-stream destinations are preferred over speakers; among equal
        lengths the earlier capture source wins, then the earlier destination.
        Returns an empty tuple when nothing is wired through.
        """
        sources = self.nodes(context, role=NodeRole.CAPTURE_SOURCE)
        for role in (NodeRole.CAPTURE_DESTINATION, NodeRole.SPEAKER_DESTINATION):
            best: tuple[str, ...] | None = None
            destinations = self.nodes(context, role=role)
            for source in sources:
                for destination in destinations:
                    path = self.shortest_path(source.identity, destination.identity)
                    if path is not None and (best is None or len(path) < len(best)):
                        best = path
            if best is not None:
                return best
        return ()

    def monitor_taps(self, context: str | None = None) -> tuple[str, ...]:
        """Nodes with no live path to any destination, in creation order."""
        return tuple(
            n.identity
            for n in self.nodes(context)
            if n.context is not None
            and n.role != NodeRole.CONTEXT
            and not n.role.is_destination
            and not self.has_live_path_to_destination(n.identity)
        )

    def snapshot(self, context: str | None = None) -> GraphSnapshot:
        """Point-in-time copy for one context, or for everything when None."""
        log = tuple(r for r in self._log if context is None or r.context == context)
        return GraphSnapshot(
            context=context,
            nodes=self.nodes(context),
            edges=self.live_edges(context),
            log=log,
            main_chain=self.main_chain(context) if context is not None else (),
            monitors=self.monitor_taps(context),
        )
