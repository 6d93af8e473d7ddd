from app.config import Settings


def test_defaults(monkeypatch) -> None:
    for name in (
        "DB_HOST",
        "DB_PORT",
        "PROC_PREFIX",
        "HOOKS_DIR",
        "JWT_SECRET",
        "JWT_ALGORITHMS",
        "STRICT_METADATA",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_host == "localhost"
    assert settings.db_port == 3306
    assert settings.procedure_prefix == "api_"
    assert settings.hooks_dir == "hooks"
    assert settings.jwt_secret is None
    assert settings.jwt_algorithms == ("HS256",)
    assert settings.strict_metadata is True
    assert settings.log_level == "INFO"


def test_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("DB_PORT", "3307")
    monkeypatch.setenv("DB_POOL_SIZE", "4")
    monkeypatch.setenv("PROC_PREFIX", "rest_")
    monkeypatch.setenv("HOOKS_DIR", "")
    monkeypatch.setenv("JWT_SECRET", "s3cret")
    monkeypatch.setenv("JWT_ALGORITHMS", "HS256, HS512")
    monkeypatch.setenv("STRICT_METADATA", "false")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.db_port == 3307
    assert settings.db_pool_size == 4
    assert settings.procedure_prefix == "rest_"
    assert settings.hooks_dir is None
    assert settings.jwt_secret == "s3cret"
    assert settings.jwt_algorithms == ("HS256", "HS512")
    assert settings.strict_metadata is False
    assert settings.log_level == "DEBUG"
