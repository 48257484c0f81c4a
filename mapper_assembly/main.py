# [파일 설명]
# - 목적: FastAPI 애플리케이션을 생성하고 라우터를 조립한다.
# - 제공 기능: /health 엔드포인트, 조립 API 라우터, Streamable HTTP MCP 엔드포인트를 등록한다.
# - 입력/출력: HTTP 요청에 대해 상태 정보 및 조립 결과를 반환한다.
# - 주의 사항: 기동 시 MAPPER_ROOTS가 설정되어 있으면 공용 인덱스를 미리 구축한다.
# - 연관 모듈: mapper_assembly.api.mcp 라우터와 mcp_streamable_http와 연동된다.
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response

from mapper_assembly.api.mcp import router as mcp_router
from mapper_assembly.mcp_streamable_http import mcp_get, mcp_post
from mapper_assembly.services.namespace_index import get_default_holder, load_mapper_roots

logger = logging.getLogger(__name__)


# [함수 설명]
# - 목적: 애플리케이션 기동 시 매퍼 인덱스를 준비한다.
# - 입력: FastAPI 애플리케이션
# - 출력: 수명 주기 컨텍스트
# - 에러 처리: 루트가 없으면 빈 인덱스로 기동한다.
# - 결정론: 동일 환경 입력에 대해 동일 인덱스를 구성한다.
# - 보안: 경로 목록은 개수만 로그에 남긴다.
@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    roots = load_mapper_roots()
    if roots:
        report = get_default_holder().rebuild(roots)
        logger.info(
            "startup: mapper_files=%s namespaces=%s errors=%s",
            report.mapper_file_count,
            report.namespace_count,
            len(report.errors),
        )
    yield


app = FastAPI(lifespan=lifespan)


# [함수 설명]
# - 목적: 서비스 상태 확인을 위한 헬스 체크 응답을 제공한다.
# - 입력: 요청 바디 없이 호출된다.
# - 출력: status와 인덱싱된 namespace 수를 포함한 상태 응답을 반환한다.
# - 에러 처리: 내부 예외 없이 즉시 성공 응답을 반환한다.
# - 결정론: 동일 인덱스 상태에서 항상 동일한 값을 반환한다.
# - 보안: 민감 정보는 응답에 포함하지 않는다.
@app.get("/health")
def health() -> dict[str, str | int]:
    return {"status": "ok", "namespaces": len(get_default_holder().snapshot())}


app.include_router(mcp_router, prefix="/mcp")


@app.post("/mcp")
async def mcp_post_route(request: Request) -> Response:
    return await mcp_post(request)


@app.get("/mcp")
def mcp_get_route() -> Response:
    return mcp_get()
