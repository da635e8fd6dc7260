"""
Output shapes: the factory handed to generated code, readable descriptions
used in prompts and fingerprints, and validation backed by pydantic.

A shape is anything pydantic can validate against: builtin types, typing
generics (``list[int]``, ``Optional[str]``, ``Literal['a', 'b']``) and
``BaseModel`` subclasses.
"""
from __future__ import annotations

import types
import logging
from typing import Any, Dict, List, Literal, Optional, Union, Annotated, get_args, get_origin

from pydantic import BaseModel, TypeAdapter, create_model
from pydantic import ValidationError as PydanticValidationError
from pydantic.errors import PydanticUserError, PydanticUndefinedAnnotation

from vibe.vibe_datatypes import ValidationError

logger = logging.getLogger(__name__)

_NONE_TYPE = type(None)

_PRIMITIVE_NAMES = {
    str: "string",
    float: "number",
    int: "integer",
    bool: "boolean",
    bytes: "bytes",
    _NONE_TYPE: "null",
}


class ShapeFactory:
    """Builds shapes from inside generated code (bound as ``shape``)."""

    string = str
    number = float
    integer = int
    boolean = bool
    any = Any

    def list(self, item=Any):
        return List[item]

    def dict(self, value=Any):
        return Dict[str, value]

    def optional(self, inner):
        return Optional[inner]

    def union(self, *options):
        if not options:
            raise TypeError("union() needs at least one option")
        if len(options) == 1:
            return options[0]
        return Union[options]

    def literal(self, *values):
        if not values:
            raise TypeError("literal() needs at least one value")
        return Literal[values]

    def object(self, _name: str = "Shape", **fields):
        """An object shape; each field is a shape or a ``(shape, default)`` tuple."""
        definitions = {}
        for key, value in fields.items():
            definitions[key] = value if isinstance(value, tuple) else (value, ...)
        return create_model(_name, **definitions)


def _is_model(shape) -> bool:
    return isinstance(shape, type) and issubclass(shape, BaseModel)


def describe_shape(shape: Any) -> str:
    """Readable, deterministic description of a shape (e.g. ``{ sum: number }``)."""
    if shape is None or shape is Any:
        return "any"
    if isinstance(shape, type) and shape in _PRIMITIVE_NAMES:
        return _PRIMITIVE_NAMES[shape]
    if _is_model(shape):
        props = ", ".join(
            f"{key}: {describe_shape(info.annotation)}"
            for key, info in shape.model_fields.items()
        )
        return f"{{ {props} }}"

    origin = get_origin(shape)
    args = get_args(shape)
    match origin:
        case None:
            pass
        case _ if origin is Annotated:
            return describe_shape(args[0])
        case _ if origin is Literal:
            return " | ".join(repr(a) for a in args)
        case _ if origin is Union or origin is types.UnionType:
            rest = [a for a in args if a is not _NONE_TYPE]
            if len(rest) == 1 and len(rest) != len(args):
                return f"{describe_shape(rest[0])}?"
            return " | ".join(describe_shape(a) for a in args)
        case _ if origin in (list, set, frozenset):
            return f"{describe_shape(args[0] if args else Any)}[]"
        case _ if origin is tuple:
            return "[" + ", ".join(describe_shape(a) for a in args) + "]"
        case _ if origin is dict:
            value = args[1] if len(args) == 2 else Any
            return f"{{ [key: string]: {describe_shape(value)} }}"

    match shape:
        case _ if shape is list or shape is tuple:
            return "any[]"
        case _ if shape is dict:
            return "object"
    return getattr(shape, "__name__", None) or repr(shape)


def shape_identity(shape: Any) -> Optional[str]:
    """The part of a fingerprint contributed by an output shape."""
    if shape is None:
        return None
    return describe_shape(shape)


class ShapeValidator:
    """Validates results against shapes using pydantic's own coercion rules.

    In strict mode a mismatch raises ``ValidationError``. Otherwise the raw,
    unvalidated value is handed back unchanged.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict

    def validate(self, value: Any, shape: Any) -> Any:
        if shape is None:
            return value
        try:
            adapter = TypeAdapter(shape)
            validated = adapter.validate_python(value)
            # Models go back to plain dicts so results stay JSON-friendly
            return adapter.dump_python(validated)
        except (PydanticValidationError, PydanticUserError, PydanticUndefinedAnnotation) as e:
            if self.strict:
                raise ValidationError(f"Output type validation failed: {e}", value) from e
            logger.debug("lenient validation kept raw value for shape %s: %s", describe_shape(shape), e)
            return value


__all__ = [
    "ShapeFactory",
    "ShapeValidator",
    "describe_shape",
    "shape_identity",
]
