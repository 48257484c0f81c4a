from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Union

from mapper_assembly.services.assembly_errors import (
    ExpansionDepthExceededError,
    ExpansionLimitExceededError,
    MalformedContentError,
)
from mapper_assembly.services.fragment_model import (
    CircularReference,
    ContentNode,
    FragmentRef,
    MissingFragmentInfo,
    MissingReason,
    NodeKey,
    TextNode,
)
from mapper_assembly.services.namespace_index import NamespaceIndex

logger = logging.getLogger(__name__)

DEFAULT_MAX_VISITS = 10_000
# each nesting level costs two interpreter frames (resolve + expand_nodes)
DEFAULT_MAX_DEPTH = 200


@dataclass(frozen=True)
class Expanded:
    text: str
    replaced_count: int = 0
    missing: tuple[MissingFragmentInfo, ...] = ()
    cycles: tuple[CircularReference, ...] = ()


@dataclass(frozen=True)
class Missing:
    info: MissingFragmentInfo


@dataclass(frozen=True)
class Cycle:
    reference: CircularReference


ResolutionOutcome = Union[Expanded, Missing, Cycle]


@dataclass
class ResolutionContext:
    """Per top-level call state: owning statement id, visit budget and depth bound."""

    statement_id: str = ""
    max_visits: int = DEFAULT_MAX_VISITS
    max_depth: int = DEFAULT_MAX_DEPTH
    visits: int = field(default=0, init=False)

    def visit(self) -> None:
        self.visits += 1
        if self.visits > self.max_visits:
            raise ExpansionLimitExceededError(self.max_visits)

    def enter(self, path: list[NodeKey], key: NodeKey) -> None:
        if len(path) >= self.max_depth:
            raise ExpansionDepthExceededError(self.max_depth, key)
        path.append(key)


class FragmentResolver:
    """Resolves `<include>` references against one namespace index snapshot.

    Missing fragments and cycles are returned as outcomes, never raised. Only a
    structurally broken node stream or an exhausted visit budget raises.
    """

    def __init__(self, index: NamespaceIndex) -> None:
        self._index = index

    def resolve(
        self,
        ref: FragmentRef,
        current_namespace: str,
        path: list[NodeKey],
        context: ResolutionContext | None = None,
    ) -> ResolutionOutcome:
        if context is None:
            context = ResolutionContext()
        _check_ref(ref)

        if not ref.refid.strip():
            logger.debug("resolve: include without refid statement=%s", context.statement_id)
            return Missing(
                MissingFragmentInfo(
                    refid=ref.written_refid,
                    statement_id=context.statement_id,
                    expected_namespace=ref.explicit_namespace,
                    reason=MissingReason.NOT_FOUND_IN_NAMESPACE,
                )
            )

        target_namespace = ref.explicit_namespace or current_namespace
        expected_namespace = ref.explicit_namespace

        document = self._index.lookup_namespace(target_namespace)
        if document is None:
            logger.debug(
                "resolve: namespace not indexed refid=%s namespace=%s",
                ref.refid,
                target_namespace,
            )
            return Missing(
                MissingFragmentInfo(
                    refid=ref.written_refid,
                    statement_id=context.statement_id,
                    expected_namespace=expected_namespace,
                    reason=MissingReason.NAMESPACE_NOT_INDEXED,
                )
            )

        fragment = document.find_fragment(ref.refid)
        if fragment is None:
            logger.debug(
                "resolve: fragment not found refid=%s namespace=%s",
                ref.refid,
                target_namespace,
            )
            return Missing(
                MissingFragmentInfo(
                    refid=ref.written_refid,
                    statement_id=context.statement_id,
                    expected_namespace=expected_namespace,
                    reason=MissingReason.NOT_FOUND_IN_NAMESPACE,
                )
            )

        key = NodeKey(target_namespace, ref.refid)
        if key in path:
            start = path.index(key)
            cycle = CircularReference(cycle_path=(*path[start:], key))
            logger.debug("resolve: cycle detected length=%s at=%s", len(path) - start, key)
            return Cycle(cycle)

        context.enter(path, key)
        try:
            return self.expand_nodes(fragment.content, target_namespace, path, context)
        finally:
            path.pop()

    def expand_nodes(
        self,
        nodes: tuple[ContentNode, ...] | list[ContentNode],
        current_namespace: str,
        path: list[NodeKey],
        context: ResolutionContext,
    ) -> Expanded:
        parts: list[str] = []
        replaced = 0
        missing: list[MissingFragmentInfo] = []
        cycles: list[CircularReference] = []

        for node in nodes:
            context.visit()
            if isinstance(node, TextNode):
                if not isinstance(node.value, str):
                    raise MalformedContentError("Text node value must be a string.")
                parts.append(node.value)
                continue
            if not isinstance(node, FragmentRef):
                raise MalformedContentError(
                    f"Unexpected content node type: {type(node).__name__}."
                )

            outcome = self.resolve(node, current_namespace, path, context)
            if isinstance(outcome, Expanded):
                parts.append(outcome.text)
                replaced += 1 + outcome.replaced_count
                missing.extend(outcome.missing)
                cycles.extend(outcome.cycles)
            elif isinstance(outcome, Missing):
                parts.append(node.marker)
                missing.append(outcome.info)
            else:
                parts.append(node.marker)
                cycles.append(outcome.reference)

        return Expanded(
            text="".join(parts),
            replaced_count=replaced,
            missing=tuple(missing),
            cycles=tuple(cycles),
        )


def load_max_visits() -> int:
    env_value = os.getenv("FRAGMENT_MAX_VISITS", "").strip()
    if not env_value:
        return DEFAULT_MAX_VISITS
    try:
        value = int(env_value)
    except ValueError:
        logger.warning("load_max_visits: ignoring invalid FRAGMENT_MAX_VISITS")
        return DEFAULT_MAX_VISITS
    return value if value > 0 else DEFAULT_MAX_VISITS


def _check_ref(ref: FragmentRef) -> None:
    if not isinstance(ref.refid, str):
        raise MalformedContentError("Include reference refid must be a string.")
    if ref.explicit_namespace is not None and not isinstance(ref.explicit_namespace, str):
        raise MalformedContentError("Include reference namespace must be a string.")
