"""
Validation schema abstraction.

The dispatcher and the OpenAPI generator only ever talk to a schema through
two capabilities:

- ``parse(value)`` turns an untyped value into a ``ParseResult`` (or an
  awaitable resolving to one). Invalid input is reported as a list of
  ``ValidationFailure`` values, never raised.
- ``describe()`` returns a JSON-Schema description of the accepted input.

``PydanticSchema`` is the stock implementation; any object with those two
methods can stand in for it.
"""

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Dict,
    FrozenSet,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
    runtime_checkable,
)

from pydantic import TypeAdapter, ValidationError
from pydantic.json_schema import JsonSchemaMode

from .error_models import ValidationFailure

logger = logging.getLogger(__name__)

# Nested model definitions are emitted under "$defs" and referenced where the
# OpenAPI generator will hoist them.
REF_TEMPLATE = "#/components/schemas/{model}"


@dataclass(frozen=True)
class ParseResult:
    """Outcome of ``Schema.parse``: a typed value or the failures found."""

    value: Any = None
    failures: Tuple[ValidationFailure, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures

    @classmethod
    def success(cls, value: Any) -> "ParseResult":
        return cls(value=value)

    @classmethod
    def failure(cls, failures: Sequence[ValidationFailure]) -> "ParseResult":
        if not failures:
            raise ValueError("A failed ParseResult needs at least one failure")
        return cls(failures=tuple(failures))


@runtime_checkable
class Schema(Protocol):
    """Capability interface every validation schema satisfies."""

    def parse(self, value: Any) -> Union[ParseResult, Awaitable[ParseResult]]:
        ...

    def describe(self) -> Dict[str, Any]:
        ...


class PydanticSchema:
    """Schema backed by a pydantic ``TypeAdapter``.

    Accepts anything pydantic can validate: ``BaseModel`` subclasses,
    ``List[Model]``, ``Optional[int]``, ``Dict[str, Any]`` and so on. Lax-mode
    coercion means ``"42"`` parses as ``42`` for an ``int`` field, which is
    how string-only path and query inputs become typed values.

    Args:
        annotation: The type to validate against.
        description: Optional human description, reused as the OpenAPI
            response description.
    """

    def __init__(self, annotation: Any, description: Optional[str] = None):
        self.annotation = annotation
        self.description = description
        self._adapter = TypeAdapter(annotation)

    def parse(self, value: Any) -> ParseResult:
        try:
            return ParseResult.success(self._adapter.validate_python(value))
        except ValidationError as e:
            return ParseResult.failure(
                ValidationFailure.from_pydantic_errors(e.errors(include_url=False))
            )

    def describe(self, mode: JsonSchemaMode = "validation") -> Dict[str, Any]:
        """JSON Schema for this type.

        ``mode="serialization"`` describes what the type dumps to, including
        computed fields and serialization aliases; responses use it.
        """
        schema = self._adapter.json_schema(ref_template=REF_TEMPLATE, mode=mode)
        if self.description:
            schema["description"] = self.description
        return schema

    def __repr__(self) -> str:
        name = getattr(self.annotation, "__name__", repr(self.annotation))
        return f"PydanticSchema({name})"


def as_schema(obj: Any, description: Optional[str] = None) -> Optional[Schema]:
    """Return *obj* as a ``Schema``, wrapping plain types in ``PydanticSchema``."""
    if obj is None:
        return None
    if not isinstance(obj, type) and isinstance(obj, Schema):
        return obj
    return PydanticSchema(obj, description=description)


def _resolve_root(description: Dict[str, Any]) -> Dict[str, Any]:
    """Follow a top-level ``$ref`` into ``$defs`` (recursive models emit one)."""
    ref = description.get("$ref")
    if not ref:
        return description
    name = ref.rsplit("/", 1)[-1]
    return description.get("$defs", {}).get(name, description)


def schema_fields(schema: Schema) -> Tuple[Tuple[str, ...], FrozenSet[str]]:
    """Return the property names and required names of an object schema.

    Property names keep declaration order. Non-object schemas have no fields.
    """
    root = _resolve_root(schema.describe())
    properties = root.get("properties") or {}
    return tuple(properties), frozenset(root.get("required") or ())
