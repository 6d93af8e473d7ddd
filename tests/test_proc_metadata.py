import pytest

from app.services.proc_errors import ProcedureCompileError
from app.services.proc_metadata import (
    GuardTag,
    HooksTag,
    MetadataParseError,
    ParamTag,
    ParsedTag,
    extract_tags,
    interpret_tags,
    split_alias,
)

DEFINITION = """
BEGIN
    /**
     * Update a user profile.
     *
     * @param {params} p_id<id> z.coerce.number().int()
     * @param {body} p_profile<profile> z.object({
     *     displayName: z.string().min(1),
     *     tags: z.array(z.string()).optional()
     * })
     * @guard role admin, editor
     * @hooks pre_handler set_greeting_target, tag_response
     */
    UPDATE users SET profile = p_profile WHERE id = p_id;
END
"""


def test_extract_tags_reads_type_name_and_description() -> None:
    tags = extract_tags("api_post_user.id.__update_profile", DEFINITION)

    assert [tag.tag for tag in tags] == ["param", "param", "guard", "hooks"]
    assert tags[0] == ParsedTag(
        tag="param", type="params", name="p_id<id>", description="z.coerce.number().int()"
    )
    assert tags[2] == ParsedTag(tag="guard", type="", name="role", description="admin, editor")


def test_extract_tags_keeps_multiline_descriptions() -> None:
    tags = extract_tags("api_post_user.id.__update_profile", DEFINITION)

    body = tags[1].description
    assert body.startswith("z.object({")
    assert "displayName: z.string().min(1)," in body
    assert body.endswith("})")
    assert "\n" in body


def test_extract_tags_without_comment_returns_nothing() -> None:
    assert extract_tags("api_get_ping", "BEGIN SELECT 1; END") == []
    assert extract_tags("api_get_ping", None) == []


def test_extract_tags_ignores_plain_block_comments() -> None:
    definition = "BEGIN /* @param {body} p_x z.string() */ SELECT 1; END"

    assert extract_tags("api_get_ping", definition) == []


def test_extract_tags_reads_every_doc_block() -> None:
    definition = """
    /** @param {querystring} p_a z.string() */
    BEGIN
    /**
     * @param {querystring} p_b z.string()
     */
    END
    """

    tags = extract_tags("api_get_pair", definition)

    assert [tag.name for tag in tags] == ["p_a", "p_b"]


def test_unterminated_comment_is_fatal_in_strict_mode() -> None:
    definition = "BEGIN /** @param {body} p_x z.string() SELECT 1; END"

    with pytest.raises(MetadataParseError) as excinfo:
        extract_tags("api_post_broken", definition)

    assert isinstance(excinfo.value, ProcedureCompileError)
    assert "api_post_broken" in str(excinfo.value)


def test_unterminated_comment_is_ignored_when_not_strict() -> None:
    definition = "BEGIN /** @param {body} p_x z.string() SELECT 1; END"

    assert extract_tags("api_post_broken", definition, strict=False) == []


def test_unclosed_type_braces_are_rejected() -> None:
    definition = "/** @param {body p_x z.string() */"

    with pytest.raises(MetadataParseError, match="unclosed type braces"):
        extract_tags("api_post_broken", definition)


def test_param_tag_requires_a_name() -> None:
    with pytest.raises(MetadataParseError, match="missing a name"):
        extract_tags("api_post_broken", "/** @param {body} */")


def test_split_alias() -> None:
    assert split_alias("p_name<name>") == ("p_name", "name")
    assert split_alias("p_lang<X-Lang>") == ("p_lang", "X-Lang")
    assert split_alias("p_name") == ("p_name", "p_name")


def test_interpret_tags() -> None:
    procedure = "api_post_user.id.__update_profile"
    tags = interpret_tags(procedure, extract_tags(procedure, DEFINITION))

    assert tags[0] == ParamTag(
        name="p_id", alias="id", source="params", expression="z.coerce.number().int()"
    )
    assert tags[2] == GuardTag(name="role", args=("admin", "editor"))
    assert tags[3] == HooksTag(
        phase="pre_handler", functions=("set_greeting_target", "tag_response")
    )


def test_interpret_tags_accepts_braced_hook_phase() -> None:
    tags = interpret_tags(
        "api_get_x",
        [ParsedTag(tag="hooks", type="on_send", name="tag_response", description="wrap_payload")],
    )

    assert tags == [HooksTag(phase="on_send", functions=("tag_response", "wrap_payload"))]


def test_interpret_tags_skips_unknown_tags() -> None:
    tags = interpret_tags(
        "api_get_x", [ParsedTag(tag="deprecated", type="", name="", description="")]
    )

    assert tags == []


def test_guard_without_arguments_has_empty_args() -> None:
    procedure = "api_get_me"
    tags = interpret_tags(procedure, extract_tags(procedure, "/** @guard auth */"))

    assert tags == [GuardTag(name="auth", args=())]
