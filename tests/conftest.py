# [파일 설명]
# - 목적: API 및 서비스의 기대 동작을 자동으로 검증한다.
# - 제공 기능: 저장소 루트 경로 등록, 메모리 기반 가짜 DB, 앱/클라이언트 생성 픽스처를 제공한다.
# - 입력/출력: 고정 입력을 사용하며 테스트 통과 여부로 결과를 확인한다.
# - 주의 사항: 실제 MySQL에 접속하지 않으며 비밀 값은 테스트 전용 값만 사용한다.
# - 연관 모듈: app.main/app.api.procedures 및 서비스 레이어와 연동된다.
from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import jwt  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.config import Settings  # noqa: E402
from app.main import create_app  # noqa: E402
from app.services.proc_database import CallStatus  # noqa: E402

JWT_SECRET = "test-secret-key-with-at-least-32-bytes"


class FakeProcedureDatabase:
    """In-memory catalog; ``responses`` maps a procedure name to its result sets,
    a callable taking the bound arguments, or an exception to raise."""

    def __init__(self, procedures, responses=None) -> None:
        self.procedures = list(procedures)
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, list]] = []
        self.closed = False

    async def fetch_catalog(self):
        return list(self.procedures)

    async def call(self, procedure, args):
        self.calls.append((procedure, list(args)))
        response = self.responses.get(procedure, [])
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(list(args))
        return [*response, CallStatus(affected_rows=0)]

    async def close(self) -> None:
        self.closed = True


def make_token(expires_in: int = 600, **claims) -> str:
    payload = {"sub": "user-1", "exp": int(time.time()) + expires_in, **claims}
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def build_settings(**overrides) -> Settings:
    values = {
        "hooks_dir": str(ROOT_DIR / "hooks"),
        "validators_dir": str(ROOT_DIR / "validators"),
        "jwt_secret": JWT_SECRET,
        "log_level": "WARNING",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def fake_database():
    return FakeProcedureDatabase


@pytest.fixture
def token():
    return make_token


@pytest.fixture
def settings():
    return build_settings()


@pytest.fixture
def make_client():
    opened: list[TestClient] = []

    def factory(procedures, responses=None, *, settings=None, guards=None):
        database = FakeProcedureDatabase(procedures, responses)
        app = create_app(settings or build_settings(), database=database, guards=guards)
        client = TestClient(app)
        client.__enter__()
        opened.append(client)
        return client, database

    yield factory

    for client in opened:
        client.__exit__(None, None, None)
