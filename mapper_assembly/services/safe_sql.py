# [파일 설명]
# - 목적: 조립된 SQL/매퍼 본문의 요약 정보를 계산해 안전한 로그 출력에 활용한다.
# - 제공 기능: 길이/해시 요약과 노드 시퀀스 요약을 생성한다.
# - 입력/출력: 원문 SQL 또는 ContentNode 시퀀스를 받아 요약 dict를 반환한다.
# - 주의 사항: 원문 SQL 자체는 반환하거나 로그에 남기지 않는다.
# - 연관 모듈: fragment_resolver/statement_expander 로그 요약에 사용된다.
from __future__ import annotations

import hashlib
from collections.abc import Iterable

from mapper_assembly.services.fragment_model import ContentNode, FragmentRef


# [함수 설명]
# - 목적: SQL 문자열의 길이와 해시 앞 8자리를 계산한다.
# - 입력: sql: str
# - 출력: len, sha256_8 키를 가진 dict
# - 에러 처리: 예외 없이 항상 요약을 반환한다.
# - 결정론: 동일 입력에 대해 동일 해시를 반환한다.
# - 보안: 원문 SQL 대신 요약만 로그에 남기도록 한다.
def summarize_sql(sql: str) -> dict[str, int | str]:
    sql_hash = hashlib.sha256(sql.encode("utf-8")).hexdigest()[:8]
    return {"len": len(sql), "sha256_8": sql_hash}


# [함수 설명]
# - 목적: ContentNode 시퀀스의 구조 요약(노드 수, include 수, 텍스트 길이)을 계산한다.
# - 입력: nodes: Iterable[ContentNode]
# - 출력: nodes, refs, text_len 키를 가진 dict
# - 에러 처리: 알 수 없는 노드는 텍스트 길이에 포함하지 않는다.
# - 결정론: 입력 순서와 무관하게 동일한 합계를 반환한다.
# - 보안: 텍스트 내용은 포함하지 않는다.
def summarize_nodes(nodes: Iterable[ContentNode]) -> dict[str, int]:
    node_count = 0
    ref_count = 0
    text_len = 0
    for node in nodes:
        node_count += 1
        if isinstance(node, FragmentRef):
            ref_count += 1
            continue
        value = getattr(node, "value", None)
        if isinstance(value, str):
            text_len += len(value)
    return {"nodes": node_count, "refs": ref_count, "text_len": text_len}
