# [파일 설명]
# - 목적: /mcp/assembly/* 및 /mcp/index/rebuild 엔드포인트의 응답 구조를 검증한다.
# - 제공 기능: 요청 단위 매퍼 조립, 누락/순환 진단, 실패 응답, 인덱스 재구축을 테스트한다.
# - 입력/출력: 고정 매퍼 XML을 사용하며 JSON 응답 필드를 단언한다.
# - 주의 사항: 파일 시스템 접근은 tmp_path 범위로 제한한다.
# - 연관 모듈: mapper_assembly.main/mapper_assembly.api.mcp와 연동된다.
from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from mapper_assembly.main import app


def _mappers(*pairs: tuple[str, str]) -> list[dict[str, str]]:
    return [{"name": name, "xml": xml} for name, xml in pairs]


# [함수 설명]
# - 목적: 중첩 include가 모두 치환되고 성공 상태가 반환되는지 확인한다.
# - 입력: A.Mapper.list Statement
# - 출력: assembled_sql과 summary 확인
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: SQL 원문은 테스트 내부에서만 사용한다.
def test_expand_nested_includes(order_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand",
        json={
            "namespace": "A.Mapper",
            "statement_id": "list",
            "mappers": _mappers(("OrderMapper.xml", order_mapper_xml)),
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["version"] == "1.0.0"
    assert payload["status"] == "success"
    assert payload["assembled_sql"] == "SELECT * FROM t WHERE 1=1"
    assert payload["statement"] == {
        "namespace": "A.Mapper",
        "statement_id": "list",
        "qualified_id": "A.Mapper.list",
        "statement_type": "select",
        "source": "OrderMapper.xml",
    }
    assert payload["summary"] == {
        "replaced_include_count": 2,
        "missing_fragment_count": 0,
        "circular_reference_count": 0,
        "fully_successful": True,
        "has_circular_reference": False,
    }
    assert payload["errors"] == []


# [함수 설명]
# - 목적: 순환 참조가 경로/단순화 문자열로 보고되는지 확인한다.
# - 입력: A.Mapper.loop Statement (a -> b -> a)
# - 출력: circular_references 항목 확인
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: 민감 정보는 포함하지 않는다.
def test_expand_reports_circular_reference(order_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand",
        json={
            "namespace": "A.Mapper",
            "statement_id": "loop",
            "mappers": _mappers(("OrderMapper.xml", order_mapper_xml)),
        },
    )

    payload = response.json()
    assert payload["status"] == "warning"
    assert payload["circular_references"] == [
        {
            "path": ["A.Mapper.a", "A.Mapper.b", "A.Mapper.a"],
            "simplified": "A -> B -> A",
            "label_mappings": ["A = A.Mapper.a", "B = A.Mapper.b"],
        }
    ]
    assert payload["assembled_sql"] == '<include refid="a"/>'
    assert payload["summary"]["replaced_include_count"] == 2
    assert payload["summary"]["has_circular_reference"] is True


# [함수 설명]
# - 목적: 누락 fragment가 원래 include 태그를 유지한 채 보고되는지 확인한다.
# - 입력: A.Mapper.broken Statement
# - 출력: missing_fragments 항목 확인
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: 민감 정보는 포함하지 않는다.
def test_expand_reports_missing_fragment(order_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand",
        json={
            "namespace": "A.Mapper",
            "statement_id": "broken",
            "mappers": _mappers(("OrderMapper.xml", order_mapper_xml)),
        },
    )

    payload = response.json()
    assert payload["status"] == "warning"
    assert payload["assembled_sql"] == 'SELECT 1 <include refid="nope"/>'
    assert payload["missing_fragments"] == [
        {
            "refid": "nope",
            "statement_id": "A.Mapper.broken",
            "expected_namespace": None,
            "reason": "not_found_in_namespace",
        }
    ]


# [함수 설명]
# - 목적: 다른 namespace의 fragment를 정규화된 refid로 조립하는지 확인한다.
# - 입력: UserMapper와 CommonMapper
# - 출력: 치환된 SQL 및 동적 태그 보존 확인
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: 민감 정보는 포함하지 않는다.
def test_expand_cross_namespace(common_mapper_xml: str, user_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand",
        json={
            "namespace": "com.example.UserMapper",
            "statement_id": "selectActive",
            "mappers": _mappers(
                ("UserMapper.xml", user_mapper_xml),
                ("CommonMapper.xml", common_mapper_xml),
            ),
        },
    )

    payload = response.json()
    assert payload["status"] == "success"
    assert payload["summary"]["replaced_include_count"] == 2
    sql = payload["assembled_sql"]
    assert "SELECT id, name, status" in sql
    assert "AND status = 'ACTIVE'" in sql
    assert '<if test="name != null">AND name = #{name}</if>' in sql
    assert "<include" not in sql


# [함수 설명]
# - 목적: 인덱싱되지 않은 namespace 참조가 원인과 함께 보고되는지 확인한다.
# - 입력: CommonMapper 없이 UserMapper만 전달
# - 출력: namespace_not_indexed 원인 확인
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: 민감 정보는 포함하지 않는다.
def test_expand_reports_unindexed_namespace(user_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand",
        json={
            "namespace": "com.example.UserMapper",
            "statement_id": "selectActive",
            "mappers": _mappers(("UserMapper.xml", user_mapper_xml)),
        },
    )

    payload = response.json()
    assert payload["status"] == "warning"
    assert [item["reason"] for item in payload["missing_fragments"]] == [
        "namespace_not_indexed",
        "namespace_not_indexed",
    ]
    assert payload["missing_fragments"][0]["refid"] == "com.example.CommonMapper.columns"
    assert payload["missing_fragments"][0]["expected_namespace"] == "com.example.CommonMapper"


# [함수 설명]
# - 목적: 존재하지 않는 Statement가 failed 상태로 반환되는지 확인한다.
# - 입력: 없는 statement_id
# - 출력: STATEMENT_NOT_FOUND 오류 확인
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: 민감 정보는 포함하지 않는다.
def test_expand_unknown_statement_fails(order_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand",
        json={
            "namespace": "A.Mapper",
            "statement_id": "doesNotExist",
            "mappers": _mappers(("OrderMapper.xml", order_mapper_xml)),
        },
    )

    payload = response.json()
    assert response.status_code == 200
    assert payload["status"] == "failed"
    assert payload["assembled_sql"] is None
    assert payload["summary"] is None
    assert [error["id"] for error in payload["errors"]] == ["STATEMENT_NOT_FOUND"]


# [함수 설명]
# - 목적: 방문 상한 초과 시 failed 상태와 오류 id가 반환되는지 확인한다.
# - 입력: max_visits=1 옵션
# - 출력: EXPANSION_LIMIT_EXCEEDED 오류 확인
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: 민감 정보는 포함하지 않는다.
def test_expand_visit_limit_fails(order_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand",
        json={
            "namespace": "A.Mapper",
            "statement_id": "list",
            "mappers": _mappers(("OrderMapper.xml", order_mapper_xml)),
            "options": {"max_visits": 1},
        },
    )

    payload = response.json()
    assert payload["status"] == "failed"
    assert [error["id"] for error in payload["errors"]] == ["EXPANSION_LIMIT_EXCEEDED"]


def _chain_mapper(length: int) -> str:
    fragments = "".join(
        f'<sql id="f{position}"><include refid="f{position + 1}"/></sql>'
        for position in range(length - 1)
    )
    return (
        '<mapper namespace="chain.Mapper">'
        f'{fragments}<sql id="f{length - 1}">x</sql>'
        '<select id="deep">SELECT <include refid="f0"/></select>'
        "</mapper>"
    )


# [함수 설명]
# - 목적: 순환 없는 깊은 include 체인이 500 대신 failed 상태로 반환되는지 확인한다.
# - 입력: 600단계 include 체인 매퍼
# - 출력: EXPANSION_DEPTH_EXCEEDED 오류 확인
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: 민감 정보는 포함하지 않는다.
def test_expand_deep_include_chain_fails() -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand",
        json={
            "namespace": "chain.Mapper",
            "statement_id": "deep",
            "mappers": _mappers(("ChainMapper.xml", _chain_mapper(600))),
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "failed"
    assert payload["assembled_sql"] is None
    assert [error["id"] for error in payload["errors"]] == ["EXPANSION_DEPTH_EXCEEDED"]


def test_expand_max_depth_option() -> None:
    client = TestClient(app)
    request = {
        "namespace": "chain.Mapper",
        "statement_id": "deep",
        "mappers": _mappers(("ChainMapper.xml", _chain_mapper(10))),
    }

    shallow = client.post("/mcp/assembly/expand", json={**request, "options": {"max_depth": 5}})
    enough = client.post("/mcp/assembly/expand", json={**request, "options": {"max_depth": 10}})
    too_deep = client.post("/mcp/assembly/expand", json={**request, "options": {"max_depth": 201}})

    assert [error["id"] for error in shallow.json()["errors"]] == ["EXPANSION_DEPTH_EXCEEDED"]
    assert enough.json()["assembled_sql"] == "SELECT x"
    assert too_deep.status_code == 422


# [함수 설명]
# - 목적: 요청 매퍼 중 파싱 실패 문서는 errors로 보고되고 조립은 계속되는지 확인한다.
# - 입력: 정상 매퍼와 깨진 매퍼
# - 출력: MAPPER_PARSE_ERROR 오류와 성공 상태 확인
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: 민감 정보는 포함하지 않는다.
def test_expand_reports_mapper_parse_errors(order_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand",
        json={
            "namespace": "A.Mapper",
            "statement_id": "list",
            "mappers": _mappers(
                ("OrderMapper.xml", order_mapper_xml),
                ("Broken.xml", "<mapper namespace='x'><sql>"),
            ),
        },
    )

    payload = response.json()
    assert payload["status"] == "success"
    assert payload["assembled_sql"] == "SELECT * FROM t WHERE 1=1"
    assert len(payload["errors"]) == 1
    assert payload["errors"][0]["id"] == "MAPPER_PARSE_ERROR"
    assert payload["errors"][0]["source"] == "Broken.xml"


# [함수 설명]
# - 목적: 필수 필드가 비어 있는 요청이 422로 거부되는지 확인한다.
# - 입력: 빈 namespace
# - 출력: HTTP 422 응답
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: 민감 정보는 포함하지 않는다.
def test_expand_rejects_empty_namespace() -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand", json={"namespace": "", "statement_id": "list"}
    )

    assert response.status_code == 422


def test_expand_content_route(order_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand-content",
        json={
            "content": 'SELECT id FROM t <include refid="cond"/>',
            "namespace": "A.Mapper",
            "owning_file": "OrderMapper.xml",
            "mappers": _mappers(("OrderMapper.xml", order_mapper_xml)),
        },
    )

    payload = response.json()
    assert payload == {
        "version": "1.0.0",
        "status": "success",
        "content": "SELECT id FROM t WHERE 1=1",
        "errors": [],
    }


def test_expand_content_route_malformed(order_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/expand-content",
        json={
            "content": "SELECT <if test='x'>",
            "namespace": "A.Mapper",
            "mappers": _mappers(("OrderMapper.xml", order_mapper_xml)),
        },
    )

    payload = response.json()
    assert payload["status"] == "failed"
    assert payload["content"] is None
    assert [error["id"] for error in payload["errors"]] == ["MALFORMED_INPUT"]


def test_include_graph_route(order_mapper_xml: str) -> None:
    client = TestClient(app)

    response = client.post(
        "/mcp/assembly/include-graph",
        json={
            "mappers": _mappers(
                ("OrderMapper.xml", order_mapper_xml),
                ("Broken.xml", "<mapper"),
            ),
            "options": {"include_statements": False},
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["summary"]["node_count"] == 4
    assert payload["summary"]["has_cycles"] is True
    assert {"from": "A.Mapper.base", "to": "A.Mapper.cond", "count": 1} in payload["graph"][
        "edges"
    ]
    assert payload["errors"][0]["id"] == "MAPPER_PARSE_ERROR"
    assert payload["errors"][0]["object"] == "Broken.xml"


# [함수 설명]
# - 목적: 인덱스 재구축 후 mappers 없이 공용 인덱스로 조립되는지 확인한다.
# - 입력: tmp_path에 기록한 매퍼 XML 파일
# - 출력: 재구축 요약과 조립 결과 확인
# - 에러 처리: 실패 시 pytest assertion으로 보고한다.
# - 결정론: 동일 입력에 대해 동일 결과를 검증한다.
# - 보안: 파일 시스템 접근은 tmp_path로 제한한다.
def test_index_rebuild_then_expand(
    tmp_path: Path, common_mapper_xml: str, user_mapper_xml: str
) -> None:
    (tmp_path / "CommonMapper.xml").write_text(common_mapper_xml, encoding="utf-8")
    (tmp_path / "UserMapper.xml").write_text(user_mapper_xml, encoding="utf-8")
    client = TestClient(app)

    rebuild = client.post("/mcp/index/rebuild", json={"roots": [str(tmp_path)]})

    assert rebuild.status_code == 200
    rebuild_payload = rebuild.json()
    assert rebuild_payload["summary"] == {"mapper_file_count": 2, "namespace_count": 2}
    assert rebuild_payload["namespaces"] == [
        "com.example.CommonMapper",
        "com.example.UserMapper",
    ]
    assert rebuild_payload["errors"] == []

    health = client.get("/health")
    assert health.json() == {"status": "ok", "namespaces": 2}

    expand = client.post(
        "/mcp/assembly/expand",
        json={"namespace": "com.example.UserMapper", "statement_id": "selectActive"},
    )
    payload = expand.json()
    assert payload["status"] == "success"
    assert payload["statement"]["source"].endswith("UserMapper.xml")


def test_index_rebuild_rejects_blank_root() -> None:
    client = TestClient(app)

    response = client.post("/mcp/index/rebuild", json={"roots": ["  "]})

    assert response.status_code == 422
