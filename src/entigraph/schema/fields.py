"""Field-definition parser.

Turns the compact field grammar into immutable ``FieldDescriptor`` objects::

    <prompt>? <op>? Type[(<threshold>)]? ['.'<backref>]? ['[]']? '?'?

where ``<op>`` is one of ``->``, ``~>``, ``<-``, ``<~`` and ``Type`` may be a
``|``-joined union. A single-element list (``['Tag']``) means "array of the
inner definition".

Parsing is total over valid input: every downstream consumer dispatches on
``operator`` / ``direction`` / ``match_mode`` instead of re-inspecting the
definition string. Syntax checks live in ``validate_definition`` so the
parser itself stays usable on fragments of a schema.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Operator(str, Enum):
    """Relationship operators, in scan priority order."""

    forward_fuzzy = "~>"
    backward_fuzzy = "<~"
    forward_exact = "->"
    backward_exact = "<-"


class Direction(str, Enum):
    """Which side of a relationship declares it."""

    forward = "forward"
    backward = "backward"


class MatchMode(str, Enum):
    """How a relationship target is located."""

    exact = "exact"
    fuzzy = "fuzzy"


PRIMITIVE_TYPES = frozenset(
    {
        "string",
        "number",
        "boolean",
        "date",
        "datetime",
        "json",
        "markdown",
        "url",
    }
)

TEXT_TYPES = frozenset({"string", "markdown", "url"})

_PASCAL_CASE_RE = re.compile(r"^[A-Z][A-Za-z0-9_]*$")
_ENTITY_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_FIELD_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_MAX_NAME_LENGTH = 64

# ``Type(0.8)rest`` -> ("Type", "0.8", "rest")
_THRESHOLD_RE = re.compile(r"^([^(]+)\(([0-9.]+)\)(.*)$")
# ``Type(0.8`` with the closing paren missing
_UNCLOSED_THRESHOLD_RE = re.compile(r"\([0-9.]*$")
_MALFORMED_OPERATOR_RE = re.compile(r"<>|><|~~>|-->|<~~|<--")

_SQL_TYPE_SUGGESTIONS = {
    "int": "number",
    "integer": "number",
    "real": "number",
    "float": "number",
    "double": "number",
    "varchar": "string",
    "text": "string",
    "blob": "string",
}
_FOREIGN_TYPES = frozenset(
    {"object", "array", "function", "symbol", "bigint", "undefined", "null"}
)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class SchemaValidationError(ValueError):
    """Raised when a schema or field definition is invalid.

    ``code`` is a stable machine-readable category and ``path`` points at the
    offending ``Entity`` or ``Entity.field``.
    """

    def __init__(self, message: str, *, code: str, path: str) -> None:
        super().__init__(message)
        self.code = code
        self.path = path


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


class OperatorParse(BaseModel):
    """Result of scanning one definition for a relationship operator."""

    model_config = {"frozen": True}

    prompt: str | None = Field(
        default=None,
        description="Natural-language text preceding the operator.",
    )
    operator: Operator
    direction: Direction
    match_mode: MatchMode
    target_type: str = Field(
        description="Type text after the operator, threshold removed.",
    )
    threshold: float | None = None


class FieldDescriptor(BaseModel):
    """Structured, immutable description of one entity field."""

    model_config = {"frozen": True}

    name: str
    base_type: str = Field(
        description="Primitive name, prompt text, or primary related type.",
    )
    is_array: bool = False
    is_optional: bool = False
    is_relation: bool = False
    related_type: str | None = None
    backref: str | None = Field(
        default=None,
        description="Field name on the related entity pointing back here.",
    )
    operator: Operator | None = None
    direction: Direction | None = None
    match_mode: MatchMode | None = None
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    union_types: tuple[str, ...] | None = None
    prompt: str | None = Field(
        default=None,
        description="Generation prompt found before the operator.",
    )

    @property
    def is_prompt_field(self) -> bool:
        """True for scalar fields whose type is a natural-language prompt."""
        if self.is_relation:
            return False
        return any(ch.isspace() for ch in self.base_type) or any(
            ch in self.base_type for ch in "/?"
        )

    @property
    def is_union(self) -> bool:
        return bool(self.union_types) and len(self.union_types) > 1

    @property
    def target_types(self) -> tuple[str, ...]:
        """Every entity type this relation may point at."""
        if self.union_types:
            return self.union_types
        if self.related_type:
            return (self.related_type,)
        return ()

    @property
    def effective_direction(self) -> Direction:
        return self.direction or Direction.forward

    @property
    def effective_match_mode(self) -> MatchMode:
        return self.match_mode or MatchMode.exact

    def to_definition(self) -> str | list[str]:
        """Render the descriptor back into the field grammar."""
        if not self.is_relation:
            text = self.base_type
            if self.is_optional and not self.is_prompt_field:
                text += "?"
            return [text] if self.is_array else text

        text = "|".join(self.target_types)
        if self.backref:
            text += f".{self.backref}"
        if self.threshold is not None:
            text += f"({self.threshold})"
        if self.operator is not None:
            text = f"{self.operator.value}{text}"
            if self.prompt:
                text = f"{self.prompt} {text}"
        if self.is_array:
            text += "[]"
        if self.is_optional:
            text += "?"
        return text


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_operator(definition: str) -> OperatorParse | None:
    """Detect a relationship operator in *definition*.

    Returns ``None`` when the definition carries no operator.
    """
    for operator in Operator:
        index = definition.find(operator.value)
        if index == -1:
            continue

        prompt = definition[:index].strip() or None
        target = definition[index + len(operator.value) :].strip()
        threshold: float | None = None

        match = _THRESHOLD_RE.match(target)
        if match is not None:
            try:
                value = float(match.group(2))
            except ValueError:
                value = None
            if value is not None and 0.0 <= value <= 1.0:
                threshold = value
            target = (match.group(1) + match.group(3)).strip()
        else:
            target = _UNCLOSED_THRESHOLD_RE.sub("", target).strip()

        return OperatorParse(
            prompt=prompt,
            operator=operator,
            direction=(
                Direction.backward
                if operator.value.startswith("<")
                else Direction.forward
            ),
            match_mode=(
                MatchMode.fuzzy if "~" in operator.value else MatchMode.exact
            ),
            target_type=target,
            threshold=threshold,
        )
    return None


def _looks_like_prompt(text: str) -> bool:
    return any(ch.isspace() for ch in text) or "/" in text


def _split_union(text: str) -> list[str]:
    members = []
    for raw in text.split("|"):
        member = raw.strip().partition(".")[0].strip()
        if member:
            members.append(member)
    return members


def parse_field(name: str, definition: str | list[Any]) -> FieldDescriptor:
    """Parse a single field definition into a ``FieldDescriptor``."""
    if isinstance(definition, list):
        if len(definition) != 1 or not isinstance(definition[0], str):
            msg = f"Array definition for field {name!r} must hold exactly one string"
            raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=name)
        inner = parse_field(name, definition[0])
        return inner.model_copy(update={"is_array": True})
    if not isinstance(definition, str):
        msg = f"Definition for field {name!r} must be a string or a list"
        raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=name)

    text = definition.strip()
    parsed = parse_operator(text)
    if parsed is not None:
        text = parsed.target_type

    is_optional = False
    is_array = False
    if text.endswith("?") and not any(ch.isspace() for ch in text):
        is_optional = True
        text = text[:-1]
    if text.endswith("[]"):
        is_array = True
        text = text[:-2]
        # ``Type?[]`` is accepted as well as ``Type[]?``
        if text.endswith("?"):
            is_optional = True
            text = text[:-1]

    related_type: str | None = None
    backref: str | None = None
    union_types: tuple[str, ...] | None = None
    is_relation = False

    if parsed is None and _looks_like_prompt(text):
        # Natural-language prompt, generated as a string value
        pass
    elif "|" in text and (
        parsed is not None
        or all(_PASCAL_CASE_RE.match(m) for m in _split_union(text))
    ):
        members = _split_union(text)
        if members:
            related_type = members[0]
            is_relation = True
            if len(members) > 1:
                union_types = tuple(members)
    elif "." in text:
        related_type, _, backref = (part.strip() for part in text.partition("."))
        backref = backref or None
        is_relation = True
    elif parsed is not None:
        related_type = text
        is_relation = bool(text)
    elif _PASCAL_CASE_RE.match(text) and text not in PRIMITIVE_TYPES:
        related_type = text
        is_relation = True

    return FieldDescriptor(
        name=name,
        base_type=related_type if is_relation and related_type else text,
        is_array=is_array,
        is_optional=is_optional,
        is_relation=is_relation,
        related_type=related_type,
        backref=backref,
        operator=parsed.operator if parsed else None,
        direction=parsed.direction if parsed else None,
        match_mode=parsed.match_mode if parsed else None,
        threshold=parsed.threshold if parsed else None,
        union_types=union_types,
        prompt=parsed.prompt if parsed else None,
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_entity_name(name: str) -> None:
    if len(name) > _MAX_NAME_LENGTH or not _ENTITY_NAME_RE.match(name):
        msg = (
            f"Invalid entity name {name!r}: must start with a letter, contain "
            f"only letters, digits and underscores, and be at most "
            f"{_MAX_NAME_LENGTH} characters"
        )
        raise SchemaValidationError(msg, code="INVALID_ENTITY_NAME", path=name)


def validate_field_name(entity_name: str, field_name: str) -> None:
    if len(field_name) > _MAX_NAME_LENGTH or not _FIELD_NAME_RE.match(field_name):
        path = f"{entity_name}.{field_name}"
        msg = (
            f"Invalid field name {field_name!r} in {entity_name!r}: must start "
            f"with a letter or underscore"
        )
        raise SchemaValidationError(msg, code="INVALID_FIELD_NAME", path=path)


def validate_definition(entity_name: str, field_name: str, definition: Any) -> None:
    """Reject malformed field definitions before parsing."""
    path = f"{entity_name}.{field_name}"
    validate_field_name(entity_name, field_name)

    if isinstance(definition, list):
        if len(definition) != 1 or not isinstance(definition[0], str):
            msg = f"Invalid array definition for {path!r}: expected exactly one string element"
            raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=path)
        definition = definition[0]
    if not isinstance(definition, str):
        msg = f"Invalid definition for {path!r}: expected a string or a list"
        raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=path)

    text = definition.strip()
    if not text:
        msg = f"Invalid field type for {path!r}: empty definition"
        raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=path)
    if _MALFORMED_OPERATOR_RE.search(text):
        msg = f"Invalid operator in {text!r} for {path!r}"
        raise SchemaValidationError(msg, code="INVALID_OPERATOR", path=path)
    if "??" in text:
        msg = f"Invalid field type {text!r} for {path!r}: double optional modifier"
        raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=path)

    parsed = parse_operator(text)
    if parsed is not None:
        target = parsed.target_type.rstrip("?").removesuffix("[]").rstrip("?")
        members = target.split("|") if target else []
        for member in members:
            member_type = member.strip().partition(".")[0]
            if not _ENTITY_NAME_RE.match(member_type):
                msg = f"Invalid operator target {target!r} for field {path!r}"
                raise SchemaValidationError(msg, code="INVALID_OPERATOR", path=path)
        if not members:
            msg = f"Missing operator target for field {path!r}"
            raise SchemaValidationError(msg, code="INVALID_OPERATOR", path=path)
        return

    if _looks_like_prompt(text) or "?" in text.rstrip("?"):
        return

    base = text.rstrip("?").removesuffix("[]").rstrip("?")
    if "." in base:
        parts = base.split(".")
        if len(parts) > 2:
            msg = f"Invalid field type {text!r} for {path!r}: multiple dots in backref"
            raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=path)
        base, backref = parts
        if not _FIELD_NAME_RE.match(backref):
            msg = f"Invalid backref field name {backref!r} in {text!r} for {path!r}"
            raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=path)

    for member in base.split("|"):
        _validate_base_type(member.strip(), path)


def _validate_base_type(base: str, path: str) -> None:
    lowered = base.lower()
    valid = ", ".join(sorted(PRIMITIVE_TYPES))
    if lowered in _SQL_TYPE_SUGGESTIONS and base not in PRIMITIVE_TYPES:
        suggestion = _SQL_TYPE_SUGGESTIONS[lowered]
        msg = (
            f"Invalid field type {base!r} for {path!r}: SQL types are not "
            f"supported. Did you mean {suggestion!r}? Valid types are: {valid}"
        )
        raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=path)
    if lowered in _FOREIGN_TYPES:
        msg = f"Invalid field type {base!r} for {path!r}. Valid types are: {valid}"
        raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=path)
    if base not in PRIMITIVE_TYPES and not _PASCAL_CASE_RE.match(base):
        msg = (
            f"Invalid field type {base!r} for {path!r}: unknown type. Valid "
            f"types are: {valid}, or a PascalCase entity reference"
        )
        raise SchemaValidationError(msg, code="INVALID_FIELD_TYPE", path=path)
