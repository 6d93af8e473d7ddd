import pytest

from app.services.proc_errors import (
    ApplicationError,
    DatabaseCallError,
    ProcedureCallError,
    ProcedureCompileError,
    classify_application_error,
    parse_application_error,
)


def test_parse_general_application_error() -> None:
    parsed = parse_application_error("404|general|USER_NOT_FOUND|User does not exist")

    assert parsed == ApplicationError(
        status_code=404, error_type="general", code="USER_NOT_FOUND", message="User does not exist"
    )
    assert parsed.payload() == {
        "error": True,
        "success": False,
        "code": "USER_NOT_FOUND",
        "message": "User does not exist",
    }


def test_parse_field_application_error() -> None:
    parsed = parse_application_error("409|field|EMAIL_TAKEN|Email already registered|user.email")

    assert parsed.field_path == "user.email"
    assert parsed.payload()["field"] == "user.email"
    assert parsed.message == "Email already registered"


def test_general_message_may_contain_pipes() -> None:
    parsed = parse_application_error("400|general|BAD|left|right")

    assert parsed.message == "left|right"


@pytest.mark.parametrize(
    "text",
    [
        "plain database error",
        "404|general|MISSING",
        "abc|general|CODE|message",
        "700|general|CODE|message",
        "400|warning|CODE|message",
        "409|field|CODE|message",
    ],
)
def test_malformed_application_errors(text: str) -> None:
    assert parse_application_error(text) is None


def test_only_signal_states_are_classified() -> None:
    text = "403|general|DENIED|Not yours"

    assert classify_application_error(DatabaseCallError("45000", text)).status_code == 403
    assert classify_application_error(DatabaseCallError("45001", text)).code == "DENIED"
    assert classify_application_error(DatabaseCallError("HY000", text)) is None
    assert classify_application_error(RuntimeError(text)) is None


def test_procedure_call_error_carries_application_error() -> None:
    cause = DatabaseCallError("45000", "422|general|INVALID|Bad input", 1644)

    error = ProcedureCallError("api_post_orders", cause)

    assert error.procedure == "api_post_orders"
    assert error.cause is cause
    assert error.application_error.status_code == 422


def test_compile_error_message_names_subject() -> None:
    error = ProcedureCompileError("api_get_me", "guard is not registered", guard="superuser")

    assert str(error) == "Procedure 'api_get_me' guard 'superuser': guard is not registered"
