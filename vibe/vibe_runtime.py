# vibe_runtime.py

import time
import asyncio
import logging
import functools
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple

from vibe.vibe_config import VibeSettings
from vibe.vibe_datatypes import (
    Call, SynthesizedUnit, ActivityRecord, GeneratorRequest, GeneratorResult,
    VibeError, GenerationError,
)
from vibe.vibe_fingerprint import fingerprint, cache_key
from vibe.vibe_shape import ShapeValidator, shape_identity
from vibe.vibe_cache import SynthesisCache, FileCache
from vibe.vibe_log import ActivityLog, FileActivityLog
from vibe.vibe_generator import Generator, ChatCompletionGenerator
from vibe.vibe_executor import Executor

logger = logging.getLogger(__name__)

# ===================================================================
# 1. Dispatch handle and deferred calls
# ===================================================================


class DeferredCall:
    """A captured, not-yet-resolved call.

    Resolve it with ``await call``, ``await call(shape)`` or
    ``await call.with_shape(shape)``. Each distinct shape is resolved at most
    once; awaiting again returns the same settled outcome.
    """

    def __init__(self, vibe: 'Vibe', name: str, args: Tuple[Any, ...], depth: int = 0):
        self._vibe = vibe
        self.name = name
        self.args = args
        self.depth = depth
        # shape key -> (shape, task); the shape is kept alive so its id stays unique
        self._outcomes: Dict[Optional[int], Tuple[Any, asyncio.Task]] = {}

    def _resolve(self, shape: Any = None) -> asyncio.Task:
        key = None if shape is None else id(shape)
        entry = self._outcomes.get(key)
        if entry is None:
            call = Call(self.name, self.args, shape, self.depth)
            task = asyncio.ensure_future(self._vibe.handle_call(call))
            self._outcomes[key] = (shape, task)
            return task
        return entry[1]

    def __await__(self):
        # Abandoning the await must not cancel work already started
        return asyncio.shield(self._resolve(None)).__await__()

    async def with_shape(self, shape: Any) -> Any:
        return await asyncio.shield(self._resolve(shape))

    def __call__(self, shape: Any = None):
        return self.with_shape(shape)

    def __repr__(self):
        return f"DeferredCall({self.name!r}, args={self.args!r}, depth={self.depth})"


class VibeHandle:
    """The root dispatch handle: any attribute or key is a callable function name."""

    __slots__ = ("_vibe", "_depth")

    def __init__(self, vibe: 'Vibe', depth: int = 0):
        object.__setattr__(self, "_vibe", vibe)
        object.__setattr__(self, "_depth", depth)

    def invoke(self, name: str, *args) -> DeferredCall:
        if not isinstance(name, str) or name == "":
            raise TypeError("function name must be a non-empty string")
        return DeferredCall(self._vibe, name, tuple(args), self._depth)

    def at_depth(self, depth: int) -> 'VibeHandle':
        return VibeHandle(self._vibe, depth)

    @property
    def depth(self) -> int:
        return self._depth

    def __getattr__(self, name: str):
        # Leave private and dunder lookups to Python; use handle["_name"] for those
        if name.startswith("_"):
            raise AttributeError(name)
        return functools.partial(self.invoke, name)

    def __getitem__(self, name: str):
        return functools.partial(self.invoke, name)

    def __setattr__(self, name, value):
        raise AttributeError("VibeHandle is read-only")

    def __repr__(self):
        return f"VibeHandle(depth={self._depth})"


def vibe_of(handle: VibeHandle) -> 'Vibe':
    """The orchestrator behind a handle."""
    return object.__getattribute__(handle, "_vibe")


# ===================================================================
# 2. Class binding
# ===================================================================

VIBE_ATTR = "_vibe_handle"


def bind_vibe(obj, handle: VibeHandle):
    """Inject a handle into an object whose methods are marked with @vibe_fn."""
    setattr(obj, VIBE_ATTR, handle)
    return obj


def vibe_fn(func=None, *, name: Optional[str] = None, shape: Any = None):
    """Replace a method body with a named call through the instance's handle.

    ``obj.multiply(6, 7)`` becomes ``handle.multiply(6, 7)`` (with ``shape``
    applied when given).
    """
    def decorate(f):
        call_name = name or f.__name__

        @functools.wraps(f)
        def wrapper(self, *args):
            handle = getattr(self, VIBE_ATTR, None)
            if handle is None:
                raise TypeError(
                    f"{call_name}() has no vibe handle; decorate the class with @vibe_class "
                    f"or call bind_vibe() on the instance"
                )
            call = handle.invoke(call_name, *args)
            return call if shape is None else call.with_shape(shape)

        wrapper._vibe_name = call_name
        return wrapper

    if func is not None:
        return decorate(func)
    return decorate


def vibe_class(target=None):
    """Class decorator giving every instance a handle.

    ``target`` may be a handle, a ``VibeSettings`` instance or ``None`` (a
    handle is then built from the environment when the class is decorated).
    """
    def decorate(cls, source):
        handle = source if isinstance(source, VibeHandle) else create_vibe(source)
        original_init = cls.__init__

        @functools.wraps(original_init)
        def __init__(self, *args, **kwargs):
            original_init(self, *args, **kwargs)
            if getattr(self, VIBE_ATTR, None) is None:
                setattr(self, VIBE_ATTR, handle)

        cls.__init__ = __init__
        return cls

    # Bare @vibe_class
    if isinstance(target, type):
        return decorate(target, None)
    return lambda cls: decorate(cls, target)


# ===================================================================
# 3. Call orchestration
# ===================================================================

@dataclass
class CallResult:
    """The structured, non-raising result of a call."""
    status: Literal['success', 'error']
    value: Any = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None

    def format_error(self) -> str:
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        return f"{self.error_kind}: {msg}" if self.error_kind else msg


class Vibe:
    """Resolves dynamic calls: cache lookup, synthesis, execution, validation, persistence."""

    def __init__(self, settings: Optional[VibeSettings] = None, *,
                 generator: Optional[Generator] = None,
                 cache: Optional[SynthesisCache] = None,
                 log: Optional[ActivityLog] = None,
                 executor: Optional[Executor] = None,
                 validator: Optional[ShapeValidator] = None):
        self.settings = settings if settings is not None else VibeSettings()
        self.generator = generator if generator is not None else ChatCompletionGenerator.from_settings(self.settings)
        self.cache = cache if cache is not None else FileCache(self.settings.cache_dir)
        self.log = log if log is not None else FileActivityLog(self.settings.resolved_log_dir)
        self.executor = executor if executor is not None else Executor(self.settings.max_depth, self.settings.enforce_depth)
        self.validator = validator if validator is not None else ShapeValidator(self.settings.strict)
        # In-flight synthesis per cache key, so concurrent misses share one generator request
        self._inflight: Dict[str, asyncio.Task] = {}

    def handle(self, depth: int = 0) -> VibeHandle:
        return VibeHandle(self, depth)

    async def _lookup(self, key: str) -> Optional[SynthesizedUnit]:
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning("cache read failed for %s, treating as miss: %s", key, e)
            return None

    async def _store(self, key: str, unit: SynthesizedUnit) -> None:
        try:
            await self.cache.put(key, unit)
        except Exception as e:
            logger.warning("cache write failed for %s: %s", key, e)

    async def _append(self, record: ActivityRecord) -> None:
        try:
            await self.log.append(record)
        except Exception as e:
            logger.warning("activity log write failed for %r: %s", record.name, e)

    async def _generate(self, request: GeneratorRequest) -> GeneratorResult:
        try:
            return await self.generator.generate(request)
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"code generation failed for {request.name!r}: {e}") from e

    async def _synthesize(self, call: Call, key: str) -> Tuple[GeneratorResult, bool]:
        """Returns (result, shared); ``shared`` is True when another call did the work."""
        terminal = self.executor.is_terminal_hop(call.depth)
        flight_key = f"{key}:{int(terminal)}"
        task = self._inflight.get(flight_key)
        shared = task is not None
        if task is None:
            request = GeneratorRequest(call.name, call.args, call.shape, terminal)
            task = asyncio.ensure_future(self._generate(request))
            self._inflight[flight_key] = task

            def _release(t, k=flight_key):
                if self._inflight.get(k) is t:
                    del self._inflight[k]

            task.add_done_callback(_release)
        else:
            logger.debug("joining in-flight synthesis for %r", call.name)
        return await asyncio.shield(task), shared

    async def handle_call(self, call: Call) -> Any:
        """Resolve one call end to end. Raises on generation, execution or strict validation failure."""
        start = time.perf_counter()
        fp = fingerprint(call.name, call.args, call.shape)
        key = cache_key(fp)
        record = ActivityRecord(
            name=call.name,
            args=list(call.args),
            output_shape=shape_identity(call.shape),
            depth=call.depth,
            fingerprint=fp,
        )
        state = "init"
        try:
            self.executor.check_depth(call.depth, call.name)
            state = "cache-lookup"
            unit = await self._lookup(key)
            shared = False
            if unit is not None:
                logger.debug("cache hit for %r", call.name)
                record.from_cache = True
                code = unit.code
            else:
                logger.debug("cache miss for %r", call.name)
                state = "synthesize"
                synthesized, shared = await self._synthesize(call, key)
                code = synthesized.code
                if shared:
                    record.from_cache = True
                else:
                    record.generator_request = synthesized.request_metadata()
                    record.generator_response = synthesized.response_metadata()
            record.code = code

            state = "execute"
            result = await self.executor.execute(code, call.args, self.handle(call.depth), call.depth, call.name)

            state = "validate"
            value = self.validator.validate(result, call.shape)

            state = "persist"
            # on a shared synthesis the first call to succeed persists the code
            if unit is None and not (shared and await self._lookup(key) is not None):
                await self._store(key, SynthesizedUnit(fp, code, name=call.name))
            record.result = value
            record.success = True
            return value
        except BaseException as e:
            record.success = False
            record.error = str(e)
            record.error_kind = type(e).__name__
            logger.debug("call %r failed during %s: %s", call.name, state, e)
            raise
        finally:
            record.duration_ms = (time.perf_counter() - start) * 1000.0
            await self._append(record)

    async def run_call(self, name: str, *args, shape: Any = None) -> CallResult:
        """Like ``handle_call`` for a top-level call, but reports failures as a result."""
        try:
            value = await self.handle_call(Call(name, tuple(args), shape, 0))
        except VibeError as e:
            return CallResult(status='error', error_message=str(e), error_kind=type(e).__name__)
        return CallResult(status='success', value=value)

    async def clear_cache(self) -> None:
        await self.cache.clear()

    async def read_logs(self, date: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.log.read(date)

    async def clear_logs(self) -> None:
        await self.log.clear()


def create_vibe(settings: Optional[VibeSettings] = None, *,
                generator: Optional[Generator] = None,
                cache: Optional[SynthesisCache] = None,
                log: Optional[ActivityLog] = None,
                **overrides) -> VibeHandle:
    """Build an orchestrator and return its root handle.

    Keyword overrides are settings fields, e.g. ``create_vibe(strict=True)``.
    """
    if settings is None:
        settings = VibeSettings(**overrides)
    elif overrides:
        settings = settings.model_copy(update=overrides)
    return Vibe(settings, generator=generator, cache=cache, log=log).handle()


# ===================================================================
# 4. Utilities
# ===================================================================

async def clear_cache(settings: Optional[VibeSettings] = None) -> None:
    settings = settings if settings is not None else VibeSettings()
    await FileCache(settings.cache_dir).clear()


async def read_logs(date: Optional[str] = None, settings: Optional[VibeSettings] = None) -> List[Dict[str, Any]]:
    settings = settings if settings is not None else VibeSettings()
    return await FileActivityLog(settings.resolved_log_dir).read(date)


async def clear_logs(settings: Optional[VibeSettings] = None) -> None:
    settings = settings if settings is not None else VibeSettings()
    await FileActivityLog(settings.resolved_log_dir).clear()
