# [파일 설명]
# - 목적: 프로시저 정의 요약과 CALL 문 생성을 안전하게 처리한다.
# - 제공 기능: 길이/해시 요약 데이터와 식별자 인용이 적용된 CALL 문을 생성한다.
# - 입력/출력: 원문 SQL 또는 프로시저 이름을 입력으로 받아 요약 dict/SQL 문자열을 반환한다.
# - 주의 사항: 원문 정의 자체는 반환하거나 로그에 남기지 않는다.
# - 연관 모듈: app.services.proc_metadata, app.services.mysql_database에서 사용된다.
from __future__ import annotations

import hashlib

from sqlglot import exp


# [함수 설명]
# - 목적: summarize_sql 처리 로직을 수행한다.
# - 입력: sql: str
# - 출력: 구조화된 dict 결과를 반환한다.
# - 에러 처리: 예외 없이 요약 값을 계산한다.
# - 결정론: 동일 입력에 대해 동일 해시를 반환한다.
# - 보안: 원문 SQL 등 민감 정보는 로그에 직접 남기지 않도록 요약한다.
def summarize_sql(sql: str) -> dict[str, int | str]:
    sql_hash = hashlib.sha256(sql.encode("utf-8")).hexdigest()[:8]
    return {"len": len(sql), "sha256_8": sql_hash}


# [함수 설명]
# - 목적: 프로시저 이름을 인용한 CALL 문을 생성한다.
# - 입력: name: str, arg_count: int, dialect: str
# - 출력: 위치 기반 placeholder(%s)를 포함한 CALL 문 문자열
# - 에러 처리: 음수 인자 개수는 ValueError로 거부한다.
# - 결정론: 동일 입력에 대해 동일 문자열을 반환한다.
# - 보안: 이름은 항상 식별자 인용을 거치며 값은 placeholder로만 전달한다.
def render_call(name: str, arg_count: int, dialect: str = "mysql") -> str:
    if arg_count < 0:
        raise ValueError("arg_count must not be negative")
    identifier = exp.to_identifier(name, quoted=True).sql(dialect=dialect)
    placeholders = ", ".join(["%s"] * arg_count)
    return f"CALL {identifier}({placeholders})"
