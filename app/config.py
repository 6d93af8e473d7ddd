# [파일 설명]
# - 목적: 환경 변수에서 서버 설정을 읽어 불변 Settings 객체로 제공한다.
# - 제공 기능: DB 접속, 프로시저 접두사, 훅/검증기 디렉터리, JWT, 로그 수준 설정을 제공한다.
# - 입력/출력: os 환경 변수를 입력으로 받아 Settings 데이터클래스를 반환한다.
# - 주의 사항: 비밀 값(DB_PASS, JWT_SECRET)은 로그에 남기지 않는다.
# - 연관 모듈: app.main, app.services.mysql_database에서 사용된다.
from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_JWT_ALGORITHMS = ("HS256",)
TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    db_host: str = "localhost"
    db_port: int = 3306
    db_user: str = "root"
    db_password: str = ""
    db_name: str = ""
    db_pool_size: int = 10
    procedure_prefix: str = "api_"
    hooks_dir: str | None = "hooks"
    validators_dir: str | None = "validators"
    jwt_secret: str | None = None
    jwt_algorithms: tuple[str, ...] = DEFAULT_JWT_ALGORITHMS
    strict_metadata: bool = True
    log_level: str = "INFO"

    # [함수 설명]
    # - 목적: 환경 변수로부터 Settings를 구성한다.
    # - 입력: DB_HOST, DB_PORT, DB_USER, DB_PASS, DB_NAME, DB_POOL_SIZE, PROC_PREFIX,
    #   HOOKS_DIR, VALIDATORS_DIR, JWT_SECRET, JWT_ALGORITHMS, STRICT_METADATA, LOG_LEVEL
    # - 출력: 불변 Settings 인스턴스
    # - 에러 처리: 숫자 변환 실패는 ValueError로 즉시 기동을 중단한다.
    # - 결정론: 동일 환경 입력에 대해 동일한 설정을 반환한다.
    # - 보안: 비밀 값은 검증하거나 출력하지 않는다.
    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            db_host=os.getenv("DB_HOST", "localhost"),
            db_port=int(os.getenv("DB_PORT", "3306")),
            db_user=os.getenv("DB_USER", "root"),
            db_password=os.getenv("DB_PASS", ""),
            db_name=os.getenv("DB_NAME", ""),
            db_pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
            procedure_prefix=os.getenv("PROC_PREFIX", "api_"),
            hooks_dir=os.getenv("HOOKS_DIR", "hooks") or None,
            validators_dir=os.getenv("VALIDATORS_DIR", "validators") or None,
            jwt_secret=os.getenv("JWT_SECRET") or None,
            jwt_algorithms=_split_list(os.getenv("JWT_ALGORITHMS", "")) or DEFAULT_JWT_ALGORITHMS,
            strict_metadata=os.getenv("STRICT_METADATA", "true").strip().lower() in TRUE_VALUES,
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )


def _split_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())
