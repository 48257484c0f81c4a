# [파일 설명]
# - 목적: API 및 서비스 테스트가 공유하는 경로 설정과 픽스처를 제공한다.
# - 제공 기능: 저장소 루트 경로 등록, 샘플 매퍼 XML, 공용 인덱스 초기화를 포함한다.
# - 입력/출력: 고정 매퍼 XML을 사용하며 테스트마다 공용 인덱스를 비운다.
# - 주의 사항: 원문 SQL이나 비밀 값은 로그/출력에 포함하지 않는다.
# - 연관 모듈: mapper_assembly.main/mapper_assembly.api.mcp 및 서비스 레이어와 연동된다.
from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from mapper_assembly.services.namespace_index import get_default_holder  # noqa: E402

ORDER_MAPPER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<mapper namespace="A.Mapper">
  <sql id="base">SELECT * FROM t <include refid="cond"/></sql>
  <sql id="cond">WHERE 1=1</sql>
  <sql id="a"><include refid="b"/></sql>
  <sql id="b"><include refid="a"/></sql>
  <select id="list"><include refid="base"/></select>
  <select id="loop"><include refid="a"/></select>
  <select id="broken">SELECT 1 <include refid="nope"/></select>
</mapper>
"""

COMMON_MAPPER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<mapper namespace="com.example.CommonMapper">
  <sql id="columns">id, name, status</sql>
  <sql id="activeOnly">status = 'ACTIVE'</sql>
</mapper>
"""

USER_MAPPER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<mapper namespace="com.example.UserMapper">
  <select id="selectActive">
    SELECT <include refid="com.example.CommonMapper.columns"/>
    FROM users
    <where>
      <if test="name != null">AND name = #{name}</if>
      AND <include refid="com.example.CommonMapper.activeOnly"/>
    </where>
  </select>
</mapper>
"""


@pytest.fixture
def order_mapper_xml() -> str:
    return ORDER_MAPPER_XML


@pytest.fixture
def common_mapper_xml() -> str:
    return COMMON_MAPPER_XML


@pytest.fixture
def user_mapper_xml() -> str:
    return USER_MAPPER_XML


@pytest.fixture(autouse=True)
def reset_default_holder() -> Iterator[None]:
    get_default_holder().clear()
    yield
    get_default_holder().clear()
