from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from app.services.proc_errors import ProcedureCompileError
from app.services.safe_sql import summarize_sql

logger = logging.getLogger(__name__)

DOC_BLOCK_PATTERN = re.compile(r"/\*\*(?!/)(.*?)\*/", re.DOTALL)
DOC_BLOCK_START_PATTERN = re.compile(r"/\*\*(?!/)")
GUTTER_PATTERN = re.compile(r"^\s*\*(?!/) ?")
TAG_LINE_PATTERN = re.compile(r"^@(?P<tag>[\w-]*)(?P<rest>.*)$", re.DOTALL)
TYPE_PATTERN = re.compile(r"^\{(?P<type>[^{}]*)\}")
ALIAS_PATTERN = re.compile(r"^(\w+)<([\w-]+)>$")
FUNCTION_LIST_PATTERN = re.compile(r"[\s,]+")

PARAM_TAG = "param"
GUARD_TAG = "guard"
HOOKS_TAG = "hooks"


class MetadataParseError(ProcedureCompileError):
    def __init__(self, procedure: str, reason: str) -> None:
        super().__init__(procedure, f"cannot parse documentation comment: {reason}")
        self.reason = reason


@dataclass(frozen=True)
class ParsedTag:
    tag: str
    type: str
    name: str
    description: str


@dataclass(frozen=True)
class ParamTag:
    name: str
    alias: str
    source: str
    expression: str


@dataclass(frozen=True)
class GuardTag:
    name: str
    args: tuple[str, ...]


@dataclass(frozen=True)
class HooksTag:
    phase: str
    functions: tuple[str, ...]


ProcedureTag = ParamTag | GuardTag | HooksTag


def extract_tags(procedure: str, definition: str | None, *, strict: bool = True) -> list[ParsedTag]:
    """Parse the ``/** ... */`` documentation blocks of a procedure definition.

    Tags follow ``@tag {type} name description``; the description runs until
    the next tag line or the end of the block, line breaks included.
    """
    text = definition or ""
    summary = summarize_sql(text)
    logger.info(
        "extract_tags: procedure=%s sql_len=%s sql_hash=%s",
        procedure,
        summary["len"],
        summary["sha256_8"],
    )

    try:
        blocks = _doc_blocks(procedure, text)
        tags: list[ParsedTag] = []
        for block in blocks:
            tags.extend(_parse_block(procedure, block))
    except MetadataParseError as exc:
        if strict:
            raise
        logger.warning("extract_tags: procedure=%s ignored_metadata reason=%s", procedure, exc.reason)
        return []

    return tags


def interpret_tags(procedure: str, tags: list[ParsedTag]) -> list[ProcedureTag]:
    interpreted: list[ProcedureTag] = []
    for tag in tags:
        if tag.tag == PARAM_TAG:
            name, alias = split_alias(tag.name)
            interpreted.append(
                ParamTag(name=name, alias=alias, source=tag.type, expression=tag.description)
            )
        elif tag.tag == GUARD_TAG:
            interpreted.append(GuardTag(name=tag.name, args=split_list(tag.description)))
        elif tag.tag == HOOKS_TAG:
            # "@hooks {phase} fn1, fn2" keeps the first function in the name slot
            if tag.type:
                phase = tag.type
                listed = f"{tag.name} {tag.description}"
            else:
                phase = tag.name
                listed = tag.description
            functions = tuple(item for item in FUNCTION_LIST_PATTERN.split(listed) if item)
            interpreted.append(HooksTag(phase=phase, functions=functions))
        else:
            logger.debug("interpret_tags: procedure=%s skipped_tag=%s", procedure, tag.tag)
    return interpreted


def split_alias(raw_name: str) -> tuple[str, str]:
    match = ALIAS_PATTERN.match(raw_name)
    if match:
        return match.group(1), match.group(2)
    return raw_name, raw_name


def split_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _doc_blocks(procedure: str, text: str) -> list[str]:
    blocks = [match.group(1) for match in DOC_BLOCK_PATTERN.finditer(text)]
    opened = len(DOC_BLOCK_START_PATTERN.findall(text))
    if opened != len(blocks):
        raise MetadataParseError(procedure, "unterminated documentation comment")
    return blocks


def _parse_block(procedure: str, block: str) -> list[ParsedTag]:
    chunks: list[list[str]] = []
    for raw_line in block.splitlines():
        line = GUTTER_PATTERN.sub("", raw_line, count=1).rstrip()
        if line.lstrip().startswith("@"):
            chunks.append([line.lstrip()])
        elif chunks:
            chunks[-1].append(line)

    return [_parse_tag(procedure, "\n".join(lines).strip()) for lines in chunks]


def _parse_tag(procedure: str, source: str) -> ParsedTag:
    match = TAG_LINE_PATTERN.match(source)
    if match is None or not match.group("tag"):
        raise MetadataParseError(procedure, f"malformed tag ({len(source)} chars)")

    tag = match.group("tag")
    rest = match.group("rest").strip()

    tag_type = ""
    if rest.startswith("{"):
        type_match = TYPE_PATTERN.match(rest)
        if type_match is None:
            raise MetadataParseError(procedure, f"unclosed type braces on @{tag}")
        tag_type = type_match.group("type").strip()
        rest = rest[type_match.end() :].strip()

    parts = rest.split(None, 1)
    name = parts[0] if parts else ""
    description = parts[1].strip() if len(parts) > 1 else ""

    if tag in (PARAM_TAG, GUARD_TAG, HOOKS_TAG) and not name:
        raise MetadataParseError(procedure, f"@{tag} is missing a name")

    return ParsedTag(tag=tag, type=tag_type, name=name, description=description)
