"""
Fingerprints decide whether a call needs synthesis.

Policy: type-kind. A fingerprint is built from the call name, the coarse kind
of each argument (never its value) and the identity of the output shape, so a
cached implementation is reusable logic: ``add(1, 2)`` and ``add(3, 4)`` share
one synthesized body.
"""
import json
import hashlib
import inspect
import collections.abc
from typing import Any, Sequence

from vibe.vibe_shape import shape_identity


def kind_of(value: Any) -> str:
    """Coarse runtime kind of a value."""
    match value:
        case None:
            return "null"
        # bool before numbers: bool is an int subclass
        case bool():
            return "boolean"
        case int() | float() | complex():
            return "number"
        case str():
            return "string"
        case bytes() | bytearray() | memoryview():
            return "bytes"
        case collections.abc.Mapping():
            return "object"
        case list() | tuple() | set() | frozenset():
            return "array"
    if inspect.isclass(value) or callable(value):
        return "function"
    return "object"


def fingerprint(name: str, args: Sequence[Any], shape: Any = None) -> str:
    """Deterministic, order-sensitive key for (name, argument kinds, shape)."""
    key = {
        "name": name,
        "params": "|".join(kind_of(a) for a in args),
        "output": shape_identity(shape),
    }
    return json.dumps(key, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def cache_key(fp: str) -> str:
    """Bounded-length storage key for a fingerprint."""
    return hashlib.sha256(fp.encode("utf-8")).hexdigest()


__all__ = ["kind_of", "fingerprint", "cache_key"]
