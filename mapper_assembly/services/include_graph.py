from __future__ import annotations

import importlib.util
import logging
from dataclasses import dataclass

from mapper_assembly.services.fragment_model import ContentNode, FragmentRef
from mapper_assembly.services.namespace_index import NamespaceIndex

logger = logging.getLogger(__name__)

GRAPH_VERSION = "1.0.0"


@dataclass(frozen=True)
class GraphOptions:
    include_statements: bool = True
    max_nodes: int = 500
    max_edges: int = 2000


def build_include_graph(index: NamespaceIndex, options: GraphOptions) -> dict[str, object]:
    errors: list[dict[str, str]] = []
    logger.info(
        "build_include_graph: namespaces=%s include_statements=%s",
        len(index),
        options.include_statements,
    )

    node_entries: list[dict[str, str]] = []
    node_ids: set[str] = set()
    sources: list[tuple[str, str, tuple[ContentNode, ...]]] = []

    for document in index.documents():
        for fragment_id, fragment in sorted(document.fragments.items()):
            node_id = f"{document.namespace}.{fragment_id}"
            node_entries.append(
                {
                    "id": node_id,
                    "namespace": document.namespace,
                    "name": fragment_id,
                    "kind": "fragment",
                }
            )
            node_ids.add(node_id)
            sources.append((node_id, document.namespace, fragment.content))
        if not options.include_statements:
            continue
        for statement_id, statement in sorted(document.statements.items()):
            node_id = statement.qualified_id
            if node_id in node_ids:
                continue
            node_entries.append(
                {
                    "id": node_id,
                    "namespace": document.namespace,
                    "name": statement_id,
                    "kind": statement.statement_type,
                }
            )
            node_ids.add(node_id)
            sources.append((node_id, document.namespace, statement.content))

    edge_counts: dict[tuple[str, str], int] = {}
    unresolved: set[tuple[str, str]] = set()

    for from_id, namespace, content in sources:
        for ref in _iter_refs(content):
            target_namespace = ref.explicit_namespace or namespace
            document = index.lookup_namespace(target_namespace)
            if document is None or document.find_fragment(ref.refid) is None:
                key = (from_id, ref.written_refid)
                if key not in unresolved:
                    unresolved.add(key)
                    written = ref.written_refid or "(no refid)"
                    errors.append(
                        {
                            "id": "UNRESOLVED_INCLUDE",
                            "message": f"Include {written} cannot be resolved.",
                            "object": from_id,
                        }
                    )
                continue
            to_id = f"{target_namespace}.{ref.refid}"
            edge_counts[(from_id, to_id)] = edge_counts.get((from_id, to_id), 0) + 1

    node_entries.sort(key=lambda item: item["id"])

    truncated = False
    if len(node_entries) > options.max_nodes:
        node_entries = node_entries[: options.max_nodes]
        node_ids = {node["id"] for node in node_entries}
        truncated = True
        errors.append(
            {
                "id": "NODE_LIMIT_EXCEEDED",
                "message": f"Node limit exceeded. max_nodes={options.max_nodes}.",
            }
        )

    edges = [
        {"from": from_id, "to": to_id, "count": count}
        for (from_id, to_id), count in edge_counts.items()
        if from_id in node_ids and to_id in node_ids
    ]
    edges.sort(key=lambda item: (item["from"], item["to"]))

    if len(edges) > options.max_edges:
        edges = edges[: options.max_edges]
        truncated = True
        errors.append(
            {
                "id": "EDGE_LIMIT_EXCEEDED",
                "message": f"Edge limit exceeded. max_edges={options.max_edges}.",
            }
        )

    topology = _build_topology(node_entries, edges)
    has_cycles, cycle_error = _detect_cycles(edges)
    if cycle_error:
        errors.append(cycle_error)

    return {
        "version": GRAPH_VERSION,
        "summary": {
            "namespace_count": len(index),
            "node_count": len(node_entries),
            "edge_count": len(edges),
            "has_cycles": has_cycles,
            "truncated": truncated,
        },
        "graph": {
            "nodes": node_entries,
            "edges": edges,
        },
        "topology": topology,
        "errors": errors,
    }


def _iter_refs(content: tuple[ContentNode, ...]):
    for node in content:
        if isinstance(node, FragmentRef):
            yield node


def _build_topology(
    nodes: list[dict[str, str]],
    edges: list[dict[str, object]],
) -> dict[str, object]:
    in_degree = {node["id"]: 0 for node in nodes}
    out_degree = {node["id"]: 0 for node in nodes}

    for edge in edges:
        out_degree[edge["from"]] += 1
        in_degree[edge["to"]] += 1

    roots = sorted(node_id for node_id, degree in in_degree.items() if degree == 0)
    leaves = sorted(node_id for node_id, degree in out_degree.items() if degree == 0)

    return {
        "roots": roots,
        "leaves": leaves,
        "in_degree": in_degree,
        "out_degree": out_degree,
    }


def _detect_cycles(edges: list[dict[str, object]]) -> tuple[bool, dict[str, str] | None]:
    if importlib.util.find_spec("networkx") is None:
        return False, {
            "id": "CYCLE_DETECTION_UNAVAILABLE",
            "message": "networkx is not available; cycle detection skipped.",
        }

    import networkx as nx

    graph = nx.DiGraph()
    graph.add_edges_from([(edge["from"], edge["to"]) for edge in edges])
    return (not nx.is_directed_acyclic_graph(graph)), None
