from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from html import escape
from typing import Union

CYCLE_ARROW = " -> "


@dataclass(frozen=True)
class TextNode:
    value: str


@dataclass(frozen=True)
class FragmentRef:
    """A reference to a reusable `<sql>` fragment.

    `refid` is always the local fragment id. When the mapper wrote the reference as
    `namespace.localId`, the namespace part lives in `explicit_namespace`.
    """

    refid: str
    explicit_namespace: str | None = None
    source_text: str | None = None

    @classmethod
    def from_written(cls, written: str, source_text: str | None = None) -> FragmentRef:
        written = written.strip()
        namespace, dot, local_id = written.rpartition(".")
        if dot and namespace and local_id:
            return cls(refid=local_id, explicit_namespace=namespace, source_text=source_text)
        return cls(refid=written, source_text=source_text)

    @property
    def written_refid(self) -> str:
        if self.explicit_namespace:
            return f"{self.explicit_namespace}.{self.refid}"
        return self.refid

    @property
    def marker(self) -> str:
        if self.source_text is not None:
            return self.source_text
        return f'<include refid="{escape(self.written_refid, quote=True)}"/>'


ContentNode = Union[TextNode, FragmentRef]


@dataclass(frozen=True, order=True)
class NodeKey:
    namespace: str
    fragment_id: str

    def __str__(self) -> str:
        return f"{self.namespace}.{self.fragment_id}"


@dataclass(frozen=True)
class StatementInfo:
    namespace: str
    statement_id: str
    content: tuple[ContentNode, ...]
    source: str | None = None
    statement_type: str = "select"

    @property
    def qualified_id(self) -> str:
        return f"{self.namespace}.{self.statement_id}"


@dataclass(frozen=True)
class SqlFragmentDefinition:
    namespace: str
    fragment_id: str
    content: tuple[ContentNode, ...]

    @property
    def key(self) -> NodeKey:
        return NodeKey(self.namespace, self.fragment_id)


class MissingReason(str, Enum):
    NOT_FOUND_IN_NAMESPACE = "not_found_in_namespace"
    NAMESPACE_NOT_INDEXED = "namespace_not_indexed"


@dataclass(frozen=True)
class MissingFragmentInfo:
    refid: str
    statement_id: str
    expected_namespace: str | None
    reason: MissingReason

    def describe(self) -> str:
        if self.reason is MissingReason.NAMESPACE_NOT_INDEXED:
            return f"Namespace '{self.expected_namespace or '?'}' is not indexed."
        return f"Fragment '{self.refid}' not found in namespace."


@dataclass(frozen=True)
class CircularReference:
    """A closed include loop; the first and last entries of `cycle_path` are equal."""

    cycle_path: tuple[NodeKey, ...]

    def format_description(self) -> tuple[str, list[str]]:
        """Render the loop as short labels plus the label legend.

        Each distinct key gets a label in first-seen order, so the path
        ``ns.a -> ns.b -> ns.a`` becomes ``("A -> B -> A", ["A = ns.a", "B = ns.b"])``.
        """
        labels: dict[NodeKey, str] = {}
        for key in self.cycle_path:
            if key not in labels:
                labels[key] = _label_for(len(labels))
        simplified = CYCLE_ARROW.join(labels[key] for key in self.cycle_path)
        mappings = [f"{label} = {key}" for key, label in labels.items()]
        return simplified, mappings

    @property
    def distinct_nodes(self) -> int:
        return len(set(self.cycle_path))


@dataclass(frozen=True)
class AssemblyResult:
    statement_info: StatementInfo
    assembled_sql: str
    replaced_include_count: int
    missing_fragments: list[MissingFragmentInfo] = field(default_factory=list)
    circular_references: list[CircularReference] = field(default_factory=list)

    def is_fully_successful(self) -> bool:
        return not self.missing_fragments and not self.circular_references

    def has_circular_reference(self) -> bool:
        return bool(self.circular_references)

    @property
    def status(self) -> str:
        return "success" if self.is_fully_successful() else "warning"


def _label_for(index: int) -> str:
    # 0 -> A, 25 -> Z, 26 -> AA
    label = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        label = chr(ord("A") + remainder) + label
    return label
