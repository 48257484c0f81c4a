# [파일 설명]
# - 목적: MCP API 라우트를 정의하고 요청/응답 모델을 제공한다.
# - 제공 기능: Statement 조립, 본문 조립, include 그래프, 인덱스 재구축 POST 엔드포인트를 제공한다.
# - 입력/출력: Pydantic 모델로 요청을 수신하고 표준화된 응답 구조를 반환한다.
# - 주의 사항: 조립된 SQL은 응답으로만 반환하고 로그에는 요약 정보만 남긴다.
# - 연관 모듈: mapper_assembly.services.* 조립/인덱스 서비스와 연결된다.
from __future__ import annotations

import logging
from typing import Literal

from fastapi import APIRouter
from pydantic import BaseModel, Field, model_validator

from mapper_assembly.services.assembly_errors import AssemblyError, MapperParseError
from mapper_assembly.services.fragment_model import AssemblyResult
from mapper_assembly.services.fragment_resolver import DEFAULT_MAX_DEPTH
from mapper_assembly.services.include_graph import GraphOptions, build_include_graph
from mapper_assembly.services.mapper_xml import parse_mapper
from mapper_assembly.services.namespace_index import (
    NamespaceIndex,
    NamespaceIndexHolder,
    get_default_holder,
)
from mapper_assembly.services.statement_expander import ExpandOptions, ExpandStatementUseCase

logger = logging.getLogger(__name__)

router = APIRouter()

ASSEMBLY_VERSION = "1.0.0"
INDEX_VERSION = "1.0.0"


# [클래스 설명]
# - 역할: MapperSource Pydantic 스키마 모델을 정의한다.
# - 사용 위치: 요청 단위 인덱스를 구성할 때 매퍼 XML 원문을 전달한다.
# - 핵심 동작: name은 출처 표시용, xml은 매퍼 문서 원문이다.
# - 제약/주의: xml은 비어 있을 수 없다.
class MapperSource(BaseModel):
    name: str
    xml: str = Field(..., min_length=1)


# [클래스 설명]
# - 역할: AssemblyOptions Pydantic 스키마 모델을 정의한다.
# - 사용 위치: 조립 요청의 옵션으로 사용된다.
# - 핵심 동작: max_visits로 방문 노드 수를, max_depth로 include 중첩 깊이를 제한한다.
# - 제약/주의: max_visits가 없으면 FRAGMENT_MAX_VISITS 환경 변수 또는 기본값을 사용한다.
#   max_depth는 기본값보다 크게 지정할 수 없다.
class AssemblyOptions(BaseModel):
    max_visits: int | None = Field(None, ge=1)
    max_depth: int | None = Field(None, ge=1, le=DEFAULT_MAX_DEPTH)


# [클래스 설명]
# - 역할: ExpandRequest Pydantic 스키마 모델을 정의한다.
# - 사용 위치: /assembly/expand 요청 본문으로 사용된다.
# - 핵심 동작: namespace와 statement_id로 조립 대상 Statement를 지정한다.
# - 제약/주의: mappers가 없으면 서버 공용 인덱스 스냅샷을 사용한다.
class ExpandRequest(BaseModel):
    namespace: str = Field(..., min_length=1)
    statement_id: str = Field(..., min_length=1)
    mappers: list[MapperSource] | None = None
    options: AssemblyOptions = Field(default_factory=AssemblyOptions)


# [클래스 설명]
# - 역할: StatementRef Pydantic 스키마 모델을 정의한다.
# - 사용 위치: 조립 응답에서 대상 Statement를 식별한다.
# - 핵심 동작: qualified_id는 "namespace.statement_id" 형식이다.
# - 제약/주의: source는 매퍼 출처가 없으면 None이다.
class StatementRef(BaseModel):
    namespace: str
    statement_id: str
    qualified_id: str
    statement_type: str
    source: str | None = None


# [클래스 설명]
# - 역할: AssemblySummary Pydantic 스키마 모델을 정의한다.
# - 사용 위치: 조립 응답의 통계 요약으로 사용된다.
# - 핵심 동작: 치환된 include 수와 진단 건수, 성공 여부를 제공한다.
# - 제약/주의: replaced_include_count는 중첩 치환을 포함한 발생 단위 집계이다.
class AssemblySummary(BaseModel):
    replaced_include_count: int
    missing_fragment_count: int
    circular_reference_count: int
    fully_successful: bool
    has_circular_reference: bool


# [클래스 설명]
# - 역할: MissingFragmentItem Pydantic 스키마 모델을 정의한다.
# - 사용 위치: 조립 응답의 누락 fragment 목록 항목이다.
# - 핵심 동작: refid, 참조 위치, 예상 namespace, 원인을 표현한다.
# - 제약/주의: expected_namespace는 refid에 namespace가 명시된 경우에만 채워진다.
class MissingFragmentItem(BaseModel):
    refid: str
    statement_id: str
    expected_namespace: str | None
    reason: Literal["not_found_in_namespace", "namespace_not_indexed"]


# [클래스 설명]
# - 역할: CircularReferenceItem Pydantic 스키마 모델을 정의한다.
# - 사용 위치: 조립 응답의 순환 참조 목록 항목이다.
# - 핵심 동작: 전체 경로와 A -> B -> A 형태의 단순화 문자열, 라벨 매핑을 제공한다.
# - 제약/주의: path의 첫 항목과 마지막 항목은 동일하다.
class CircularReferenceItem(BaseModel):
    path: list[str]
    simplified: str
    label_mappings: list[str]


# [클래스 설명]
# - 역할: AssemblyErrorItem Pydantic 스키마 모델을 정의한다.
# - 사용 위치: 조립/인덱스 응답의 errors 항목이다.
# - 핵심 동작: 안정적인 오류 id와 메시지를 제공한다.
# - 제약/주의: source는 매퍼 출처가 있을 때만 채워진다.
class AssemblyErrorItem(BaseModel):
    id: str
    message: str
    source: str | None = None


# [클래스 설명]
# - 역할: ExpandResponse Pydantic 스키마 모델을 정의한다.
# - 사용 위치: /assembly/expand 응답으로 사용된다.
# - 핵심 동작: status는 success, warning, failed 중 하나이다.
# - 제약/주의: failed인 경우 statement 외 결과 필드는 None 또는 빈 목록이다.
class ExpandResponse(BaseModel):
    version: str
    status: Literal["success", "warning", "failed"]
    statement: StatementRef | None
    summary: AssemblySummary | None
    assembled_sql: str | None
    missing_fragments: list[MissingFragmentItem]
    circular_references: list[CircularReferenceItem]
    errors: list[AssemblyErrorItem]


# [클래스 설명]
# - 역할: ExpandContentRequest Pydantic 스키마 모델을 정의한다.
# - 사용 위치: /assembly/expand-content 요청 본문으로 사용된다.
# - 핵심 동작: 임의의 Statement 본문을 현재 namespace 기준으로 조립한다.
# - 제약/주의: owning_file은 오류 메시지 출처 표시용이다.
class ExpandContentRequest(BaseModel):
    content: str
    namespace: str = Field(..., min_length=1)
    owning_file: str | None = None
    mappers: list[MapperSource] | None = None
    options: AssemblyOptions = Field(default_factory=AssemblyOptions)


# [클래스 설명]
# - 역할: ExpandContentResponse Pydantic 스키마 모델을 정의한다.
# - 사용 위치: /assembly/expand-content 응답으로 사용된다.
# - 핵심 동작: 조립된 본문 문자열만 반환하고 진단 정보는 반환하지 않는다.
# - 제약/주의: failed인 경우 content는 None이다.
class ExpandContentResponse(BaseModel):
    version: str
    status: Literal["success", "failed"]
    content: str | None
    errors: list[AssemblyErrorItem]


# [클래스 설명]
# - 역할: IncludeGraphOptions Pydantic 스키마 모델을 정의한다.
# - 사용 위치: /assembly/include-graph 요청 옵션으로 사용된다.
# - 핵심 동작: Statement 노드 포함 여부와 노드/엣지 상한을 지정한다.
# - 제약/주의: 상한은 1 이상이어야 한다.
class IncludeGraphOptions(BaseModel):
    include_statements: bool = True
    max_nodes: int = Field(500, ge=1)
    max_edges: int = Field(2000, ge=1)


# [클래스 설명]
# - 역할: IncludeGraphRequest Pydantic 스키마 모델을 정의한다.
# - 사용 위치: /assembly/include-graph 요청 본문으로 사용된다.
# - 핵심 동작: mappers가 주어지면 요청 단위 인덱스로 그래프를 만든다.
# - 제약/주의: mappers가 없으면 서버 공용 인덱스 스냅샷을 사용한다.
class IncludeGraphRequest(BaseModel):
    mappers: list[MapperSource] | None = None
    options: IncludeGraphOptions = Field(default_factory=IncludeGraphOptions)


# [클래스 설명]
# - 역할: IncludeGraphSummary Pydantic 스키마 모델을 정의한다.
# - 사용 위치: include 그래프 응답의 요약으로 사용된다.
# - 핵심 동작: 노드/엣지 수, 순환 여부, 절단 여부를 제공한다.
# - 제약/주의: has_cycles는 networkx가 없으면 항상 False이다.
class IncludeGraphSummary(BaseModel):
    namespace_count: int
    node_count: int
    edge_count: int
    has_cycles: bool
    truncated: bool


# [클래스 설명]
# - 역할: IncludeGraphNode Pydantic 스키마 모델을 정의한다.
# - 사용 위치: include 그래프 노드 항목이다.
# - 핵심 동작: kind는 fragment 또는 Statement 태그명(select 등)이다.
# - 제약/주의: id는 "namespace.name" 형식이다.
class IncludeGraphNode(BaseModel):
    id: str
    namespace: str
    name: str
    kind: str


# [클래스 설명]
# - 역할: IncludeGraphEdge Pydantic 스키마 모델을 정의한다.
# - 사용 위치: include 그래프 엣지 항목이다.
# - 핵심 동작: from 노드가 to fragment를 count회 include 한다.
# - 제약/주의: from은 예약어이므로 alias로 직렬화한다.
class IncludeGraphEdge(BaseModel):
    from_: str = Field(..., alias="from")
    to: str
    count: int


# [클래스 설명]
# - 역할: IncludeGraph Pydantic 스키마 모델을 정의한다.
# - 사용 위치: include 그래프 응답의 graph 필드이다.
# - 핵심 동작: 노드와 엣지 목록을 묶는다.
# - 제약/주의: 목록은 id 순으로 정렬되어 있다.
class IncludeGraph(BaseModel):
    nodes: list[IncludeGraphNode]
    edges: list[IncludeGraphEdge]


# [클래스 설명]
# - 역할: IncludeGraphTopology Pydantic 스키마 모델을 정의한다.
# - 사용 위치: include 그래프 응답의 topology 필드이다.
# - 핵심 동작: 루트/리프와 진입/진출 차수를 제공한다.
# - 제약/주의: 절단된 그래프 기준으로 계산된다.
class IncludeGraphTopology(BaseModel):
    roots: list[str]
    leaves: list[str]
    in_degree: dict[str, int]
    out_degree: dict[str, int]


# [클래스 설명]
# - 역할: IncludeGraphError Pydantic 스키마 모델을 정의한다.
# - 사용 위치: include 그래프 응답의 errors 항목이다.
# - 핵심 동작: 오류 id와 메시지, 관련 노드를 제공한다.
# - 제약/주의: object는 관련 노드가 있을 때만 채워진다.
class IncludeGraphError(BaseModel):
    id: str
    message: str
    object: str | None = None


# [클래스 설명]
# - 역할: IncludeGraphResponse Pydantic 스키마 모델을 정의한다.
# - 사용 위치: /assembly/include-graph 응답으로 사용된다.
# - 핵심 동작: 요약, 그래프, 토폴로지, 오류를 묶는다.
# - 제약/주의: 결정론적 정렬 순서를 유지한다.
class IncludeGraphResponse(BaseModel):
    version: str
    summary: IncludeGraphSummary
    graph: IncludeGraph
    topology: IncludeGraphTopology
    errors: list[IncludeGraphError]


# [클래스 설명]
# - 역할: IndexRebuildRequest Pydantic 스키마 모델을 정의한다.
# - 사용 위치: /index/rebuild 요청 본문으로 사용된다.
# - 핵심 동작: 매퍼 XML을 찾을 루트 디렉터리 목록을 지정한다.
# - 제약/주의: roots가 없으면 MAPPER_ROOTS 환경 변수를 사용한다.
class IndexRebuildRequest(BaseModel):
    roots: list[str] | None = None

    # [함수 설명]
    # - 목적: 빈 문자열 루트를 거부한다.
    # - 입력: self
    # - 출력: 검증된 요청 모델
    # - 에러 처리: 빈 루트가 있으면 ValueError를 발생시킨다.
    # - 결정론: 입력 순서를 유지한다.
    # - 보안: 경로 값은 검증만 하고 로그에 전체를 남기지 않는다.
    @model_validator(mode="after")
    def validate_roots(self) -> IndexRebuildRequest:
        if self.roots is not None and any(not root.strip() for root in self.roots):
            raise ValueError("Mapper roots must not be empty.")
        return self


# [클래스 설명]
# - 역할: IndexRebuildSummary Pydantic 스키마 모델을 정의한다.
# - 사용 위치: 인덱스 재구축 응답의 요약으로 사용된다.
# - 핵심 동작: 매퍼 파일 수와 namespace 수를 제공한다.
# - 제약/주의: 중복 namespace는 하나로 집계된다.
class IndexRebuildSummary(BaseModel):
    mapper_file_count: int
    namespace_count: int


# [클래스 설명]
# - 역할: IndexRebuildResponse Pydantic 스키마 모델을 정의한다.
# - 사용 위치: /index/rebuild 응답으로 사용된다.
# - 핵심 동작: 요약, 인덱싱된 namespace 목록, 파일별 오류를 제공한다.
# - 제약/주의: 파싱 실패 파일은 건너뛰고 errors에 기록된다.
class IndexRebuildResponse(BaseModel):
    version: str
    summary: IndexRebuildSummary
    namespaces: list[str]
    errors: list[AssemblyErrorItem]


# [함수 설명]
# - 목적: /assembly/expand 엔드포인트 요청을 처리한다.
# - 입력: namespace, statement_id, 선택적 매퍼 목록과 옵션을 수신한다.
# - 출력: 응답 모델의 주요 필드는 version, status, statement, summary, assembled_sql, errors이다.
# - 에러 처리: 누락/순환은 진단 목록으로, 입력 오류는 status=failed로 반환한다.
# - 결정론: 진단 목록은 문서 순서(깊이 우선, 좌→우)로 반환된다.
# - 보안: 조립된 SQL은 로그에 요약 정보로만 기록한다.
@router.post("/assembly/expand", response_model=ExpandResponse)
def assembly_expand(request: ExpandRequest) -> ExpandResponse:
    holder, errors = _resolve_holder(request.mappers)
    use_case = ExpandStatementUseCase(holder)
    try:
        result = use_case.execute_by_id(
            request.namespace, request.statement_id, _expand_options(request.options)
        )
    except AssemblyError as exc:
        logger.warning(
            "assembly_expand: failed statement=%s.%s error=%s",
            request.namespace,
            request.statement_id,
            exc.error_id,
        )
        return _failed_expand_response([*errors, AssemblyErrorItem(**exc.as_error())])

    if result is None:
        errors.append(
            AssemblyErrorItem(
                id="STATEMENT_NOT_FOUND",
                message=f"Statement {request.namespace}.{request.statement_id} not found.",
            )
        )
        return _failed_expand_response(errors)

    return _build_expand_response(result, errors)


# [함수 설명]
# - 목적: /assembly/expand-content 엔드포인트 요청을 처리한다.
# - 입력: Statement 본문, 현재 namespace, 선택적 매퍼 목록과 옵션을 수신한다.
# - 출력: 응답 모델의 주요 필드는 version, status, content, errors이다.
# - 에러 처리: 본문 파싱 실패 등은 status=failed와 errors로 반환한다.
# - 결정론: 동일 입력에 대해 동일 문자열을 반환한다.
# - 보안: 본문은 로그에 요약 정보로만 기록한다.
@router.post("/assembly/expand-content", response_model=ExpandContentResponse)
def assembly_expand_content(request: ExpandContentRequest) -> ExpandContentResponse:
    holder, errors = _resolve_holder(request.mappers)
    use_case = ExpandStatementUseCase(holder)
    try:
        content = use_case.expand_content(
            request.content,
            request.owning_file,
            request.namespace,
            _expand_options(request.options),
        )
    except AssemblyError as exc:
        return ExpandContentResponse(
            version=ASSEMBLY_VERSION,
            status="failed",
            content=None,
            errors=[*errors, AssemblyErrorItem(**exc.as_error())],
        )
    return ExpandContentResponse(
        version=ASSEMBLY_VERSION, status="success", content=content, errors=errors
    )


# [함수 설명]
# - 목적: /assembly/include-graph 엔드포인트 요청을 처리한다.
# - 입력: 선택적 매퍼 목록과 그래프 옵션을 수신한다.
# - 출력: 응답 모델의 주요 필드는 version, summary, graph, topology, errors이다.
# - 에러 처리: 매퍼 파싱 오류와 미해결 include는 errors 목록에 기록한다.
# - 결정론: 노드/엣지는 id 순으로 정렬되고 상한 정책을 따른다.
# - 보안: SQL 본문은 응답에 포함하지 않는다.
@router.post("/assembly/include-graph", response_model=IncludeGraphResponse)
def assembly_include_graph(request: IncludeGraphRequest) -> IncludeGraphResponse:
    holder, parse_errors = _resolve_holder(request.mappers)
    service_options = GraphOptions(
        include_statements=request.options.include_statements,
        max_nodes=request.options.max_nodes,
        max_edges=request.options.max_edges,
    )
    result = build_include_graph(holder.snapshot(), service_options)
    result["errors"] = [
        {"id": item.id, "message": item.message, "object": item.source} for item in parse_errors
    ] + result["errors"]
    return IncludeGraphResponse(**result)


# [함수 설명]
# - 목적: /index/rebuild 엔드포인트 요청을 처리한다.
# - 입력: 선택적 루트 디렉터리 목록을 수신한다.
# - 출력: 응답 모델의 주요 필드는 version, summary, namespaces, errors이다.
# - 에러 처리: 파싱 실패 파일과 없는 루트는 errors 목록에 기록한다.
# - 결정론: namespace 목록은 정렬되어 반환된다.
# - 보안: 매퍼 원문은 응답에 포함하지 않는다.
@router.post("/index/rebuild", response_model=IndexRebuildResponse)
def index_rebuild(request: IndexRebuildRequest) -> IndexRebuildResponse:
    report = get_default_holder().rebuild(request.roots)
    return IndexRebuildResponse(
        version=INDEX_VERSION,
        summary=IndexRebuildSummary(
            mapper_file_count=report.mapper_file_count,
            namespace_count=report.namespace_count,
        ),
        namespaces=report.namespaces,
        errors=[AssemblyErrorItem(**item) for item in report.errors],
    )


# [함수 설명]
# - 목적: 요청 단위 또는 서버 공용 인덱스 홀더를 결정한다.
# - 입력: mappers: list[MapperSource] | None
# - 출력: 인덱스 홀더와 매퍼 파싱 오류 목록
# - 에러 처리: 파싱 실패 매퍼는 건너뛰고 오류 목록에 기록한다.
# - 결정론: 입력 순서대로 문서를 등록하며 중복 namespace는 먼저 온 문서를 사용한다.
# - 보안: 매퍼 원문은 로그에 남기지 않는다.
def _resolve_holder(
    mappers: list[MapperSource] | None,
) -> tuple[NamespaceIndexHolder, list[AssemblyErrorItem]]:
    if mappers is None:
        return get_default_holder(), []

    documents = []
    errors: list[AssemblyErrorItem] = []
    for mapper in mappers:
        try:
            documents.append(parse_mapper(mapper.xml, source=mapper.name))
        except MapperParseError as exc:
            errors.append(AssemblyErrorItem(**exc.as_error(), source=mapper.name))
    return NamespaceIndexHolder(NamespaceIndex(documents)), errors


# [함수 설명]
# - 목적: 요청 옵션을 서비스 옵션으로 변환한다.
# - 입력: options: AssemblyOptions
# - 출력: ExpandOptions
# - 에러 처리: 값이 없으면 환경 변수 기반 기본값을 사용한다.
# - 결정론: 동일 입력에 대해 동일 옵션을 반환한다.
# - 보안: 해당 없음.
def _expand_options(options: AssemblyOptions) -> ExpandOptions:
    overrides: dict[str, int] = {}
    if options.max_visits is not None:
        overrides["max_visits"] = options.max_visits
    if options.max_depth is not None:
        overrides["max_depth"] = options.max_depth
    return ExpandOptions(**overrides)


# [함수 설명]
# - 목적: 조립 결과를 응답 모델로 변환한다.
# - 입력: result: AssemblyResult, errors: list[AssemblyErrorItem]
# - 출력: ExpandResponse
# - 에러 처리: 진단 정보는 그대로 목록으로 옮긴다.
# - 결정론: 진단 순서를 유지한다.
# - 보안: 조립된 SQL은 응답 필드로만 전달한다.
def _build_expand_response(
    result: AssemblyResult, errors: list[AssemblyErrorItem]
) -> ExpandResponse:
    statement = result.statement_info
    circular_items = []
    for circular in result.circular_references:
        simplified, label_mappings = circular.format_description()
        circular_items.append(
            CircularReferenceItem(
                path=[str(key) for key in circular.cycle_path],
                simplified=simplified,
                label_mappings=label_mappings,
            )
        )

    return ExpandResponse(
        version=ASSEMBLY_VERSION,
        status=result.status,
        statement=StatementRef(
            namespace=statement.namespace,
            statement_id=statement.statement_id,
            qualified_id=statement.qualified_id,
            statement_type=statement.statement_type,
            source=statement.source,
        ),
        summary=AssemblySummary(
            replaced_include_count=result.replaced_include_count,
            missing_fragment_count=len(result.missing_fragments),
            circular_reference_count=len(result.circular_references),
            fully_successful=result.is_fully_successful(),
            has_circular_reference=result.has_circular_reference(),
        ),
        assembled_sql=result.assembled_sql,
        missing_fragments=[
            MissingFragmentItem(
                refid=item.refid,
                statement_id=item.statement_id,
                expected_namespace=item.expected_namespace,
                reason=item.reason.value,
            )
            for item in result.missing_fragments
        ],
        circular_references=circular_items,
        errors=errors,
    )


# [함수 설명]
# - 목적: 실패한 조립 요청의 응답을 구성한다.
# - 입력: errors: list[AssemblyErrorItem]
# - 출력: status=failed인 ExpandResponse
# - 에러 처리: 부분 결과는 포함하지 않는다.
# - 결정론: 동일 입력에 대해 동일 응답을 반환한다.
# - 보안: 민감 정보는 포함하지 않는다.
def _failed_expand_response(
    errors: list[AssemblyErrorItem],
) -> ExpandResponse:
    return ExpandResponse(
        version=ASSEMBLY_VERSION,
        status="failed",
        statement=None,
        summary=None,
        assembled_sql=None,
        missing_fragments=[],
        circular_references=[],
        errors=errors,
    )
