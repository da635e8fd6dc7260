"""
Defines the core data types for the vibe runtime.

This module holds the records that flow through a dynamic call (the call
itself, the synthesized unit that the cache stores, the activity record that
the log stores, the generator request/response pair) and the error taxonomy
raised by the engine.
"""

import time
import dataclasses
import collections.abc
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

# =================================================================
# Errors
# =================================================================

class VibeError(Exception):
    """Base class for all errors raised by the vibe engine."""
    pass


class GenerationError(VibeError):
    """The generator failed to produce code for a call."""
    pass


class ExecutionError(VibeError):
    """Synthesized code failed to compile or raised while running."""
    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class RecursionLimitError(ExecutionError):
    """A re-entrant call chain went past the configured depth ceiling."""
    pass


class ValidationError(VibeError):
    """A result did not satisfy its declared shape (strict mode only)."""
    def __init__(self, message: str, value: Any = None):
        super().__init__(message)
        self.value = value


class CacheIOError(VibeError):
    """Storage failure in the cache or the activity log. Never fatal to a call."""
    pass


# =================================================================
# Call records
# =================================================================

@dataclass(frozen=True)
class Call:
    """A single dispatched invocation."""
    name: str
    args: Tuple[Any, ...] = ()
    shape: Any = None
    depth: int = 0

    def __post_init__(self):
        if self.depth < 0:
            raise ValueError("call depth must be >= 0")


@dataclass
class SynthesizedUnit:
    """A code fragment the cache holds for one fingerprint."""
    fingerprint: str
    code: str
    created_at: float = field(default_factory=time.time)
    name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "name": self.name,
            "code": self.code,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SynthesizedUnit":
        return cls(
            fingerprint=data["fingerprint"],
            code=data["code"],
            created_at=float(data.get("created_at", 0.0)),
            name=data.get("name", ""),
        )


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class GeneratorRequest:
    """What the orchestrator asks the generator for."""
    name: str
    args: Tuple[Any, ...]
    shape: Any = None
    is_terminal_hop: bool = False


@dataclass
class GeneratorResult:
    """Code produced by the generator plus the metadata of the exchange."""
    code: str
    model: str = ""
    temperature: float = 0.0
    max_tokens: int = 0
    system_prompt: str = ""
    user_prompt: str = ""
    raw_content: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None

    def request_metadata(self) -> Dict[str, Any]:
        return {
            "system_prompt": self.system_prompt,
            "user_prompt": self.user_prompt,
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    def response_metadata(self) -> Dict[str, Any]:
        return {
            "raw_content": self.raw_content,
            "finish_reason": self.finish_reason,
            "usage": dataclasses.asdict(self.usage) if self.usage else None,
        }


def to_jsonable(value: Any) -> Any:
    """Best-effort conversion of a call value into JSON-native types."""
    match value:
        case None | bool() | int() | float() | str():
            return value
        case bytes() | bytearray():
            return value.decode("utf-8", errors="replace")
        case collections.abc.Mapping():
            return {str(k): to_jsonable(v) for k, v in value.items()}
        case list() | tuple() | set() | frozenset():
            return [to_jsonable(v) for v in value]
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(dataclasses.asdict(value))
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        try:
            return to_jsonable(dump())
        except Exception:
            pass
    return repr(value)


@dataclass
class ActivityRecord:
    """One entry of the append-only activity log. Written once per resolved call."""
    name: str
    args: List[Any]
    timestamp: float = field(default_factory=time.time)
    output_shape: Optional[str] = None
    from_cache: bool = False
    code: Optional[str] = None
    result: Any = None
    success: bool = True
    error: Optional[str] = None
    error_kind: Optional[str] = None
    duration_ms: float = 0.0
    depth: int = 0
    fingerprint: Optional[str] = None
    generator_request: Optional[Dict[str, Any]] = None
    generator_response: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        # asdict() would deep-copy arbitrary argument objects
        out = {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}
        out["args"] = to_jsonable(self.args)
        out["result"] = to_jsonable(self.result)
        return out


__all__ = [
    "VibeError",
    "GenerationError",
    "ExecutionError",
    "RecursionLimitError",
    "ValidationError",
    "CacheIOError",
    "Call",
    "SynthesizedUnit",
    "TokenUsage",
    "GeneratorRequest",
    "GeneratorResult",
    "ActivityRecord",
    "to_jsonable",
]
