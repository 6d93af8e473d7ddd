import pytest
from pydantic import ValidationError

from app.services.proc_errors import ProcedureCompileError
from app.services.proc_metadata import ParamTag
from app.services.schema_compiler import (
    CompiledSchema,
    SchemaExpressionError,
    UnknownValidatorError,
    ValidatorRegistry,
    compile_expression,
    compile_param_schema,
    compile_request_schema,
    tokenize,
)
from app.services.schema_nodes import (
    ArrayNode,
    CustomNode,
    EnumNode,
    NumberNode,
    ObjectNode,
    StringNode,
    z,
)


def _validate(expression: str, value, registry: ValidatorRegistry | None = None):
    node = ObjectNode().extend({"value": compile_expression(expression, registry)})
    model = node.build_model("Sample")
    return node.dump(model.model_validate({"value": value}))["value"]


def test_empty_expression_defaults_to_string() -> None:
    assert compile_expression("") == StringNode()
    assert compile_expression("   ") == StringNode()


def test_chained_string_constraints() -> None:
    node = compile_expression("z.string().min(3).max(20)")

    assert isinstance(node, StringNode)
    assert [step.kind for step in node.steps] == ["min_length", "max_length"]
    assert _validate("z.string().min(3).max(20)", "alice") == "alice"
    with pytest.raises(ValidationError):
        _validate("z.string().min(3).max(20)", "al")


def test_custom_error_message_is_reported() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _validate("z.string().min(5, 'Too short')", "abc")

    assert excinfo.value.errors()[0]["msg"] == "Too short"


def test_coerce_number_accepts_numeric_strings() -> None:
    node = compile_expression("z.coerce.number().int().positive()")

    assert isinstance(node, NumberNode)
    assert node.coerce and node.integer
    assert _validate("z.coerce.number().int().positive()", "42") == 42
    with pytest.raises(ValidationError):
        _validate("z.coerce.number().int().positive()", "0")


def test_negative_number_literals() -> None:
    assert _validate("z.number().gte(-10)", -3) == -3
    with pytest.raises(ValidationError):
        _validate("z.number().gte(-10)", -11)


def test_object_array_and_optional() -> None:
    expression = """z.object({
        displayName: z.string(),
        tags: z.array(z.string()).max(2).optional(),
    })"""
    node = compile_expression(expression)

    assert isinstance(node, ObjectNode)
    assert isinstance(node.shape["tags"], ArrayNode)
    assert node.shape["tags"].is_optional
    assert _validate(expression, {"displayName": "Kim"}) == {"displayName": "Kim"}
    with pytest.raises(ValidationError):
        _validate(expression, {"displayName": "Kim", "tags": ["a", "b", "c"]})


def test_enum_literal_and_union() -> None:
    assert isinstance(compile_expression("z.enum(['asc', 'desc'])"), EnumNode)
    assert _validate("z.enum(['asc', 'desc'])", "desc") == "desc"
    with pytest.raises(ValidationError):
        _validate("z.enum(['asc', 'desc'])", "up")

    assert _validate("z.union([z.literal('all'), z.number().int()])", 3) == 3
    assert _validate("z.union([z.literal('all'), z.number().int()])", "all") == "all"


def test_regex_literal_with_flags() -> None:
    expression = "z.string().regex(/^[a-z]+$/i)"

    assert _validate(expression, "AbC") == "AbC"
    with pytest.raises(ValidationError):
        _validate(expression, "ab1")


def test_default_and_nullable() -> None:
    node = compile_expression("z.number().int().default(10)")

    assert not node.is_required
    assert _validate("z.string().nullable()", None) is None
    wrapper = ObjectNode().extend({"limit": node})
    assert wrapper.dump(wrapper.build_model("Sample").model_validate({})) == {"limit": 10}


def test_trim_runs_before_length_check() -> None:
    assert _validate("z.string().trim().min(2)", "  ab  ") == "ab"
    with pytest.raises(ValidationError):
        _validate("z.string().trim().min(2)", "  a ")


@pytest.mark.parametrize(
    "expression",
    [
        "z.__class__",
        "z.string().__init__()",
        "z.string()._step('min_length', 1)",
        "__import__('os')",
        "open('x')",
        "z.string().steps",
    ],
)
def test_rejects_non_whitelisted_access(expression: str) -> None:
    with pytest.raises(SchemaExpressionError):
        compile_expression(expression)


@pytest.mark.parametrize(
    "expression",
    [
        "z.string(",
        "z.string())",
        "z.string() z.number()",
        "z.string;",
        "z.object({ a z.string() })",
        "'unterminated",
        "z.string().min('x')",
        "z.string().min(1, 2, 3)",
        "z.array('x')",
        "z.string",
        "42",
    ],
)
def test_rejects_malformed_expressions(expression: str) -> None:
    with pytest.raises(SchemaExpressionError):
        compile_expression(expression)


def test_rejects_deep_nesting() -> None:
    expression = "z.array(" * 40 + "z.string()" + ")" * 40

    with pytest.raises(SchemaExpressionError, match="nested too deeply"):
        compile_expression(expression)


def test_tokenize_positions() -> None:
    tokens = tokenize("z.string().min(2)")

    assert [token.kind for token in tokens][:3] == ["name", "punct", "name"]
    assert tokens[-1].kind == "end"
    assert tokens[-1].position == len("z.string().min(2)")


def test_custom_validator_call() -> None:
    registry = ValidatorRegistry()
    registry.register("Password", lambda: z.string().min(5, "Password too short"))

    node = compile_expression("v.Password().nullable()", registry)

    assert isinstance(node, CustomNode)
    assert node.name == "Password"
    assert node.is_nullable
    assert _validate("v.Password()", "secret", registry) == "secret"
    with pytest.raises(ValidationError) as excinfo:
        _validate("v.Password()", "abc", registry)
    assert excinfo.value.errors()[0]["msg"] == "Password too short"


def test_unknown_custom_validator() -> None:
    with pytest.raises(UnknownValidatorError) as excinfo:
        compile_expression("v.Missing()", ValidatorRegistry())

    assert excinfo.value.validator == "Missing"


def test_custom_validator_takes_no_arguments() -> None:
    registry = ValidatorRegistry()
    registry.register("Password", lambda: z.string())

    with pytest.raises(SchemaExpressionError):
        compile_expression("v.Password(5)", registry)


def test_param_schema_error_names_procedure_and_parameter() -> None:
    tag = ParamTag(name="p_secret", alias="secret", source="body", expression="v.Nope()")

    with pytest.raises(ProcedureCompileError) as excinfo:
        compile_param_schema("api_post_login", tag, ValidatorRegistry())

    message = str(excinfo.value)
    assert "api_post_login" in message
    assert "p_secret" in message
    assert "Nope" in message
    assert excinfo.value.parameter == "p_secret"


def test_request_schema_merges_fields_per_section() -> None:
    tags = [
        ParamTag("p_id", "id", "params", "z.coerce.number().int()"),
        ParamTag("p_name", "name", "body", "z.string()"),
        ParamTag("p_email", "email", "body", "z.string().email()"),
        ParamTag("p_lang", "X-Lang", "headers", "z.string().optional()"),
        ParamTag("p_user", "uuid", "user", ""),
        ParamTag("p_data", "testdata", "request", ""),
    ]

    schema = compile_request_schema("api_post_user.id.", tags)

    assert isinstance(schema, CompiledSchema)
    assert [name for name, _node in schema.sections] == ["params", "body", "headers"]
    assert list(schema.section("body").shape) == ["name", "email"]
    assert list(schema.section("headers").shape) == ["x-lang"]
    assert schema.section("querystring") is None


def test_request_schema_rejects_unknown_source() -> None:
    tags = [ParamTag("p_id", "id", "cookies", "z.string()")]

    with pytest.raises(ProcedureCompileError, match="unknown parameter source"):
        compile_request_schema("api_get_x", tags)


def test_no_op_sources_are_still_compiled() -> None:
    tags = [ParamTag("p_user", "uuid", "user", "z.string(")]

    with pytest.raises(ProcedureCompileError):
        compile_request_schema("api_get_x", tags)


def test_compiled_schema_validate_and_json_schema() -> None:
    tags = [
        ParamTag("p_name", "name", "querystring", "z.string().min(2)"),
        ParamTag("p_page", "page", "querystring", "z.coerce.number().int().default(1)"),
    ]
    schema = compile_request_schema("api_get_users", tags)

    assert schema.validate("querystring", {"name": "Kim", "other": "x"}) == {"name": "Kim", "page": 1}
    assert schema.validate("body", {"free": "form"}) == {"free": "form"}
    with pytest.raises(ValidationError):
        schema.validate("querystring", {"name": "K"})

    published = schema.json_schema()["querystring"]
    assert published["required"] == ["name"]
    assert published["properties"]["name"] == {"type": "string", "minLength": 2}
    assert published["properties"]["page"]["default"] == 1


def test_compilation_is_deterministic() -> None:
    tags = [ParamTag("p_name", "name", "querystring", "z.string().min(2)")]

    assert compile_request_schema("api_get_users", tags) == compile_request_schema(
        "api_get_users", tags
    )


@pytest.mark.parametrize(
    ("expression", "value"),
    [
        ("z.string().email()", "a..b@c..d"),
        ("z.string().email()", ".@-.-"),
        ("z.string().url()", "http://exa mple.com"),
        ("z.string().url()", "foo://[bad"),
        ("z.string().uuid()", "not-a-uuid"),
        ("z.string().datetime()", "yesterday"),
    ],
)
def test_format_checks_reject_malformed_values(expression: str, value: str) -> None:
    with pytest.raises(ValidationError) as excinfo:
        _validate(expression, value)

    error = excinfo.value.errors()[0]
    kind = expression.split(".")[-1].rstrip("()")
    assert error["type"] == f"invalid_{kind}"
    assert error["msg"] == f"Invalid {kind}"


def test_format_checks_keep_valid_values_unchanged() -> None:
    assert _validate("z.string().email()", "kim@example.com") == "kim@example.com"
    assert _validate("z.string().url()", "https://example.com/a?b=1") == "https://example.com/a?b=1"
    uuid_text = "123e4567-e89b-12d3-a456-426614174000"
    assert _validate("z.string().uuid()", uuid_text) == uuid_text
    assert _validate("z.string().datetime()", "2024-05-01T10:00:00Z") == "2024-05-01T10:00:00Z"


def test_format_check_uses_custom_message() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _validate("z.string().email('Email looks wrong')", "nobody")

    assert excinfo.value.errors()[0]["msg"] == "Email looks wrong"


def test_number_errors_point_at_the_field() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _validate("z.number()", "abc")

    assert [error["loc"] for error in excinfo.value.errors()] == [("value",)]
    assert _validate("z.number()", "2.5") == 2.5
    assert _validate("z.number()", 4) == 4


def test_union_errors_collapse_to_the_field() -> None:
    with pytest.raises(ValidationError) as excinfo:
        _validate("z.union([z.literal('user'), z.literal('admin')])", "root")

    errors = excinfo.value.errors()
    assert [(error["loc"], error["type"]) for error in errors] == [(("value",), "invalid_union")]


def test_absent_nested_optional_keys_are_left_out() -> None:
    tags = [
        ParamTag(
            "p_meta",
            "meta",
            "body",
            """z.object({
                created_at: z.string().nullable(),
                updated_at: z.optional(z.string()),
                source: z.string().default('api'),
            })""",
        )
    ]
    schema = compile_request_schema("api_post_events", tags)

    validated = schema.validate("body", {"meta": {"created_at": None}})

    assert validated == {"meta": {"created_at": None, "source": "api"}}
