from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from mapper_assembly.services.fragment_model import SqlFragmentDefinition, StatementInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MapperDocument:
    namespace: str
    source: str | None = None
    fragments: Mapping[str, SqlFragmentDefinition] = field(default_factory=dict)
    statements: Mapping[str, StatementInfo] = field(default_factory=dict)

    def find_fragment(self, fragment_id: str) -> SqlFragmentDefinition | None:
        return self.fragments.get(fragment_id)

    def find_statement(self, statement_id: str) -> StatementInfo | None:
        return self.statements.get(statement_id)


class NamespaceIndex:
    """Immutable namespace -> mapper document snapshot.

    A snapshot is never mutated after construction; rebuilding produces a new
    instance, so a resolution that holds one keeps a consistent view.
    """

    def __init__(self, documents: Iterable[MapperDocument] = ()) -> None:
        by_namespace: dict[str, MapperDocument] = {}
        for document in documents:
            existing = by_namespace.get(document.namespace)
            if existing is not None:
                logger.warning(
                    "namespace_index: duplicate namespace=%s kept=%s ignored=%s",
                    document.namespace,
                    existing.source,
                    document.source,
                )
                continue
            by_namespace[document.namespace] = document
        self._documents: Mapping[str, MapperDocument] = MappingProxyType(by_namespace)

    def lookup_namespace(self, name: str) -> MapperDocument | None:
        return self._documents.get(name)

    def namespaces(self) -> list[str]:
        return sorted(self._documents)

    def documents(self) -> list[MapperDocument]:
        return [self._documents[name] for name in self.namespaces()]

    def mapper_files(self) -> list[str]:
        return sorted(doc.source for doc in self._documents.values() if doc.source)

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, name: object) -> bool:
        return name in self._documents


@dataclass(frozen=True)
class RebuildReport:
    mapper_file_count: int
    namespace_count: int
    namespaces: list[str]
    errors: list[dict[str, str]]


class NamespaceIndexHolder:
    """Holds the current snapshot and swaps it atomically on rebuild."""

    def __init__(self, index: NamespaceIndex | None = None) -> None:
        self._index = index if index is not None else NamespaceIndex()
        self._rebuild_lock = threading.Lock()

    def snapshot(self) -> NamespaceIndex:
        return self._index

    def replace(self, index: NamespaceIndex) -> None:
        self._index = index

    def clear(self) -> None:
        self._index = NamespaceIndex()
        logger.info("namespace_index: cache cleared")

    def rebuild(self, roots: Iterable[str] | None = None) -> RebuildReport:
        from mapper_assembly.services.mapper_xml import load_mapper_files

        root_list = list(roots) if roots is not None else load_mapper_roots()
        with self._rebuild_lock:
            logger.info("namespace_index: rebuilding roots=%s", len(root_list))
            documents, errors = load_mapper_files(root_list)
            index = NamespaceIndex(documents)
            self._index = index

        logger.info(
            "namespace_index: built mapper_files=%s namespaces=%s errors=%s",
            len(documents),
            len(index),
            len(errors),
        )
        return RebuildReport(
            mapper_file_count=len(documents),
            namespace_count=len(index),
            namespaces=index.namespaces(),
            errors=errors,
        )


def load_mapper_roots() -> list[str]:
    env_value = os.getenv("MAPPER_ROOTS", "").strip()
    if not env_value:
        return []
    return [item.strip() for item in env_value.split(",") if item.strip()]


_default_holder = NamespaceIndexHolder()


def get_default_holder() -> NamespaceIndexHolder:
    return _default_holder
