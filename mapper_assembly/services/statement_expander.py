from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from mapper_assembly.services.assembly_errors import MalformedContentError
from mapper_assembly.services.fragment_model import (
    AssemblyResult,
    CircularReference,
    NodeKey,
    StatementInfo,
)
from mapper_assembly.services.fragment_resolver import (
    DEFAULT_MAX_DEPTH,
    FragmentResolver,
    ResolutionContext,
    load_max_visits,
)
from mapper_assembly.services.mapper_xml import parse_content
from mapper_assembly.services.namespace_index import (
    NamespaceIndex,
    NamespaceIndexHolder,
    get_default_holder,
)
from mapper_assembly.services.safe_sql import summarize_nodes, summarize_sql

logger = logging.getLogger(__name__)

IndexSource = Union[NamespaceIndex, NamespaceIndexHolder]


@dataclass(frozen=True)
class ExpandOptions:
    max_visits: int = field(default_factory=load_max_visits)
    max_depth: int = DEFAULT_MAX_DEPTH


class StatementExpander:
    """Assembles statements by substituting every include with its resolved text.

    Each call reads exactly one index snapshot and keeps its recursion path and
    visit budget local, so concurrent calls never share state.
    """

    def __init__(self, index_source: IndexSource) -> None:
        self._index_source = index_source

    def expand(
        self, statement: StatementInfo, options: ExpandOptions | None = None
    ) -> AssemblyResult:
        options = options or ExpandOptions()
        _check_statement(statement)

        node_summary = summarize_nodes(statement.content)
        logger.info(
            "expand: statement=%s nodes=%s refs=%s",
            statement.qualified_id,
            node_summary["nodes"],
            node_summary["refs"],
        )

        context = ResolutionContext(
            statement_id=statement.qualified_id,
            max_visits=options.max_visits,
            max_depth=options.max_depth,
        )
        resolver = FragmentResolver(self._snapshot())
        expanded = resolver.expand_nodes(statement.content, statement.namespace, [], context)

        result = AssemblyResult(
            statement_info=statement,
            assembled_sql=expanded.text,
            replaced_include_count=expanded.replaced_count,
            missing_fragments=list(expanded.missing),
            circular_references=_unique_cycles(expanded.cycles),
        )

        sql_summary = summarize_sql(result.assembled_sql)
        logger.info(
            "expand: statement=%s replaced=%s missing=%s cycles=%s sql_len=%s sql_hash=%s",
            statement.qualified_id,
            result.replaced_include_count,
            len(result.missing_fragments),
            len(result.circular_references),
            sql_summary["len"],
            sql_summary["sha256_8"],
        )
        return result

    def expand_content(
        self,
        raw_content: str,
        owning_file: str | Path | None,
        current_namespace: str,
        options: ExpandOptions | None = None,
    ) -> str:
        options = options or ExpandOptions()
        if not isinstance(current_namespace, str) or not current_namespace.strip():
            raise MalformedContentError("Current namespace is required to expand content.")

        source = str(owning_file) if owning_file is not None else None
        nodes = parse_content(raw_content, source=source)
        context = ResolutionContext(
            statement_id=current_namespace,
            max_visits=options.max_visits,
            max_depth=options.max_depth,
        )
        resolver = FragmentResolver(self._snapshot())
        expanded = resolver.expand_nodes(nodes, current_namespace, [], context)

        sql_summary = summarize_sql(expanded.text)
        logger.info(
            "expand_content: namespace=%s source=%s replaced=%s sql_len=%s sql_hash=%s",
            current_namespace,
            source,
            expanded.replaced_count,
            sql_summary["len"],
            sql_summary["sha256_8"],
        )
        return expanded.text

    def _snapshot(self) -> NamespaceIndex:
        if isinstance(self._index_source, NamespaceIndex):
            return self._index_source
        return self._index_source.snapshot()


class ExpandStatementUseCase:
    """Entry point shared by the HTTP routes and MCP tools."""

    def __init__(self, holder: NamespaceIndexHolder | None = None) -> None:
        self._holder = holder or get_default_holder()
        self._expander = StatementExpander(self._holder)

    @property
    def expander(self) -> StatementExpander:
        return self._expander

    def execute(
        self, statement: StatementInfo, options: ExpandOptions | None = None
    ) -> AssemblyResult:
        return self._expander.expand(statement, options)

    def execute_by_id(
        self, namespace: str, statement_id: str, options: ExpandOptions | None = None
    ) -> AssemblyResult | None:
        snapshot = self._holder.snapshot()
        document = snapshot.lookup_namespace(namespace)
        if document is None:
            logger.warning("execute_by_id: mapper not found namespace=%s", namespace)
            return None
        statement = document.find_statement(statement_id)
        if statement is None:
            logger.warning(
                "execute_by_id: statement not found namespace=%s statement=%s",
                namespace,
                statement_id,
            )
            return None
        # expand against the same snapshot the statement came from
        return StatementExpander(snapshot).expand(statement, options)

    def expand_content(
        self,
        raw_content: str,
        owning_file: str | Path | None,
        current_namespace: str,
        options: ExpandOptions | None = None,
    ) -> str:
        return self._expander.expand_content(raw_content, owning_file, current_namespace, options)


def _check_statement(statement: StatementInfo) -> None:
    if not isinstance(statement, StatementInfo):
        raise MalformedContentError("Expected a StatementInfo.")
    if not isinstance(statement.namespace, str) or not statement.namespace.strip():
        raise MalformedContentError(
            f"Statement {statement.statement_id!r} has no owning namespace."
        )
    if not isinstance(statement.content, (tuple, list)):
        raise MalformedContentError(
            f"Statement {statement.qualified_id} content must be a node sequence."
        )


def _unique_cycles(cycles: tuple[CircularReference, ...]) -> list[CircularReference]:
    seen: set[tuple[NodeKey, ...]] = set()
    ordered: list[CircularReference] = []
    for cycle in cycles:
        key = _canonical_loop(cycle.cycle_path)
        if key in seen:
            continue
        seen.add(key)
        ordered.append(cycle)
    return ordered


def _canonical_loop(cycle_path: tuple[NodeKey, ...]) -> tuple[NodeKey, ...]:
    # a -> b -> a and b -> a -> b are the same loop entered at different nodes
    ring = cycle_path[:-1]
    if not ring:
        return cycle_path
    start = ring.index(min(ring))
    return ring[start:] + ring[:start]
