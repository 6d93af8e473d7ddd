from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

APPLICATION_ERROR_STATE_CLASS = "45"
APPLICATION_ERROR_TYPES = ("general", "field")


class ProcedureCompileError(Exception):
    """Fatal problem found while turning a procedure into a route."""

    def __init__(
        self,
        procedure: str,
        reason: str,
        *,
        parameter: str | None = None,
        guard: str | None = None,
        hook: str | None = None,
    ) -> None:
        subject = ""
        if parameter is not None:
            subject = f" parameter '{parameter}'"
        elif guard is not None:
            subject = f" guard '{guard}'"
        elif hook is not None:
            subject = f" hook '{hook}'"
        super().__init__(f"Procedure '{procedure}'{subject}: {reason}")
        self.procedure = procedure
        self.reason = reason
        self.parameter = parameter
        self.guard = guard
        self.hook = hook


class BindingError(RuntimeError):
    def __init__(self, procedure: str, parameter: str) -> None:
        super().__init__(
            f"No parameter binding for '{parameter}' of procedure '{procedure}'"
        )
        self.procedure = procedure
        self.parameter = parameter


class DatabaseCallError(Exception):
    """Structured failure raised by a database adapter."""

    def __init__(self, state: str, message: str, code: int | None = None) -> None:
        super().__init__(f"[{state}] {message}")
        self.state = state
        self.message = message
        self.code = code


@dataclass(frozen=True)
class ApplicationError:
    status_code: int
    error_type: str
    code: str
    message: str
    field_path: str | None = None

    def payload(self) -> dict[str, object]:
        body: dict[str, object] = {
            "error": True,
            "success": False,
            "code": self.code,
            "message": self.message,
        }
        if self.field_path is not None:
            body["field"] = self.field_path
        return body


class ProcedureCallError(Exception):
    def __init__(self, procedure: str, cause: Exception) -> None:
        super().__init__(f"Call to procedure '{procedure}' failed: {cause}")
        self.procedure = procedure
        self.cause = cause
        self.application_error = classify_application_error(cause)


def classify_application_error(error: Exception) -> ApplicationError | None:
    if not isinstance(error, DatabaseCallError):
        return None
    if not str(error.state).startswith(APPLICATION_ERROR_STATE_CLASS):
        return None
    parsed = parse_application_error(error.message)
    if parsed is None:
        logger.warning("classify_application_error: malformed signal state=%s", error.state)
    return parsed


def parse_application_error(text: str) -> ApplicationError | None:
    """Parse ``statusCode|errorType|code|message[|fieldPath]``."""
    parts = text.split("|")
    if len(parts) < 4:
        return None

    status_text, error_type, code = (part.strip() for part in parts[:3])
    if not status_text.isdigit() or not 100 <= int(status_text) <= 599:
        return None
    if error_type not in APPLICATION_ERROR_TYPES:
        return None

    if error_type == "field":
        if len(parts) < 5:
            return None
        return ApplicationError(
            status_code=int(status_text),
            error_type=error_type,
            code=code,
            message="|".join(parts[3:-1]).strip(),
            field_path=parts[-1].strip(),
        )

    return ApplicationError(
        status_code=int(status_text),
        error_type=error_type,
        code=code,
        message="|".join(parts[3:]).strip(),
    )
