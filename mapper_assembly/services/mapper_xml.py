from __future__ import annotations

import copy
import logging
import re
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from html import escape
from pathlib import Path

from mapper_assembly.services.assembly_errors import MalformedContentError, MapperParseError
from mapper_assembly.services.fragment_model import (
    ContentNode,
    FragmentRef,
    SqlFragmentDefinition,
    StatementInfo,
    TextNode,
)
from mapper_assembly.services.namespace_index import MapperDocument

logger = logging.getLogger(__name__)

MAPPER_TAG = "mapper"
FRAGMENT_TAG = "sql"
INCLUDE_TAG = "include"
STATEMENT_TAGS = ("select", "insert", "update", "delete")
CONTENT_WRAPPER_TAG = "content"

# comments and CDATA are matched only so that includes inside them are skipped
_INCLUDE_SOURCE_PATTERN = re.compile(
    r"<!--.*?-->"
    r"|<!\[CDATA\[.*?\]\]>"
    r"|<include(?=[\s/>])(?:[^>\"']|\"[^\"]*\"|'[^']*')*?(?:/>|>.*?</include\s*>)",
    re.DOTALL,
)

IncludeMarkers = dict[ET.Element, str]


def parse_mapper(xml_text: str, source: str | None = None) -> MapperDocument:
    root = _parse_root(xml_text, source)
    return _build_document(root, xml_text, source)


def parse_content(raw_content: str, source: str | None = None) -> tuple[ContentNode, ...]:
    """Turn a statement body (text plus tags) into a node stream."""
    wrapped = f"<{CONTENT_WRAPPER_TAG}>{raw_content}</{CONTENT_WRAPPER_TAG}>"
    try:
        root = ET.fromstring(wrapped)
    except ET.ParseError as exc:
        location = f"{source}: " if source else ""
        raise MalformedContentError(f"{location}content is not well-formed ({exc}).") from exc
    return flatten_element(root, _include_markers(root, raw_content, source))


def flatten_element(
    element: ET.Element, markers: IncludeMarkers | None = None
) -> tuple[ContentNode, ...]:
    nodes: list[ContentNode] = []
    _flatten_into(element, nodes, markers or {})
    return tuple(nodes)


def load_mapper_files(
    roots: Iterable[str],
) -> tuple[list[MapperDocument], list[dict[str, str]]]:
    documents: list[MapperDocument] = []
    errors: list[dict[str, str]] = []

    for root in roots:
        root_path = Path(root)
        if not root_path.exists() or not root_path.is_dir():
            errors.append(
                {
                    "id": "ROOT_NOT_FOUND",
                    "message": f"Mapper root is not a directory: {root}",
                    "source": str(root),
                }
            )
            continue

        for path in sorted(root_path.rglob("*.xml")):
            source = str(path)
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
                root_element = _parse_root(text, source)
                namespace = (root_element.get("namespace") or "").strip()
                if root_element.tag != MAPPER_TAG or not namespace:
                    continue
                documents.append(_build_document(root_element, text, source))
            except OSError as exc:
                logger.warning(
                    "load_mapper_files: unreadable source=%s error=%s",
                    path,
                    exc.__class__.__name__,
                )
                errors.append(
                    {
                        "id": "MAPPER_READ_ERROR",
                        "message": f"Cannot read mapper file: {path} ({exc.__class__.__name__}).",
                        "source": source,
                    }
                )
            except MapperParseError as exc:
                logger.warning("load_mapper_files: skipped source=%s error=%s", path, exc.error_id)
                errors.append({**exc.as_error(), "source": source})

    logger.info("load_mapper_files: documents=%s errors=%s", len(documents), len(errors))
    return documents, errors


def _parse_root(xml_text: str, source: str | None) -> ET.Element:
    try:
        return ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise MapperParseError(f"XML is not well-formed ({exc}).", source) from exc


def _build_document(root: ET.Element, xml_text: str, source: str | None) -> MapperDocument:
    if root.tag != MAPPER_TAG:
        raise MapperParseError(f"Root element is <{root.tag}>, expected <mapper>.", source)
    namespace = (root.get("namespace") or "").strip()
    if not namespace:
        raise MapperParseError("Mapper has no namespace attribute.", source)

    markers = _include_markers(root, xml_text, source)
    fragments: dict[str, SqlFragmentDefinition] = {}
    statements: dict[str, StatementInfo] = {}

    for element in root:
        if not isinstance(element.tag, str):
            continue
        element_id = (element.get("id") or "").strip()
        if element.tag == FRAGMENT_TAG:
            if not element_id:
                logger.warning("parse_mapper: sql fragment without id source=%s", source)
                continue
            if element_id in fragments:
                logger.warning(
                    "parse_mapper: duplicate fragment namespace=%s id=%s", namespace, element_id
                )
                continue
            fragments[element_id] = SqlFragmentDefinition(
                namespace=namespace,
                fragment_id=element_id,
                content=flatten_element(element, markers),
            )
        elif element.tag in STATEMENT_TAGS:
            if not element_id:
                logger.warning("parse_mapper: %s without id source=%s", element.tag, source)
                continue
            if element_id in statements:
                logger.warning(
                    "parse_mapper: duplicate statement namespace=%s id=%s", namespace, element_id
                )
                continue
            statements[element_id] = StatementInfo(
                namespace=namespace,
                statement_id=element_id,
                content=flatten_element(element, markers),
                source=source,
                statement_type=element.tag,
            )

    logger.info(
        "parse_mapper: namespace=%s fragments=%s statements=%s",
        namespace,
        len(fragments),
        len(statements),
    )
    return MapperDocument(
        namespace=namespace,
        source=source,
        fragments=fragments,
        statements=statements,
    )


def _include_markers(root: ET.Element, text: str, source: str | None) -> IncludeMarkers:
    """Map every parsed <include> element to its exact text in the source."""
    elements = list(root.iter(INCLUDE_TAG))
    if not elements:
        return {}
    written = [
        match.group(0)
        for match in _INCLUDE_SOURCE_PATTERN.finditer(text)
        if match.group(0).startswith("<include")
    ]
    if len(written) != len(elements):
        logger.warning(
            "_include_markers: source scan mismatch source=%s parsed=%s scanned=%s",
            source,
            len(elements),
            len(written),
        )
        return {}
    return dict(zip(elements, written))


def _flatten_into(element: ET.Element, nodes: list[ContentNode], markers: IncludeMarkers) -> None:
    _append_text(nodes, element.text)
    for child in element:
        _flatten_child(child, nodes, markers)
        _append_text(nodes, child.tail)


def _flatten_child(child: ET.Element, nodes: list[ContentNode], markers: IncludeMarkers) -> None:
    if not isinstance(child.tag, str):
        # comments and processing instructions carry no SQL
        return
    if child.tag == INCLUDE_TAG:
        marker = markers.get(child) or _serialize(child)
        nodes.append(FragmentRef.from_written(child.get("refid") or "", marker))
        return

    # dynamic tags stay opaque; only their nested includes are exposed
    attributes = "".join(
        f' {name}="{escape(value, quote=True)}"' for name, value in child.attrib.items()
    )
    if child.text is None and len(child) == 0:
        _append_text(nodes, f"<{child.tag}{attributes}/>")
        return
    _append_text(nodes, f"<{child.tag}{attributes}>")
    _flatten_into(child, nodes, markers)
    _append_text(nodes, f"</{child.tag}>")


def _append_text(nodes: list[ContentNode], text: str | None) -> None:
    if not text:
        return
    if nodes and isinstance(nodes[-1], TextNode):
        nodes[-1] = TextNode(nodes[-1].value + text)
        return
    nodes.append(TextNode(text))


def _serialize(element: ET.Element) -> str:
    detached = copy.copy(element)
    detached.tail = None
    return ET.tostring(detached, encoding="unicode")
