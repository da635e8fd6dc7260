"""
Sandboxed execution of synthesized code.

A code fragment is compiled as the body of an ``async def`` whose only
parameters are the binding set handed to generated code:

  - ``args``  -- the call arguments, as a list
  - ``v``     -- the re-entrant dispatch handle, pre-bound to ``depth + 1``
  - ``shape`` -- the shape factory, for declaring shapes of nested calls

The body runs with ordinary builtins and no filesystem or network
restriction; the trust boundary is the generator's output.
"""
import io
import os
import inspect
import logging
import tokenize
from typing import Any, Sequence, Set

from vibe.vibe_datatypes import ExecutionError, RecursionLimitError
from vibe.vibe_shape import ShapeFactory

logger = logging.getLogger(__name__)

IMPL_NAME = "__vibe_impl__"
IMPL_PARAMS = ("args", "v", "shape")
DEFAULT_MAX_DEPTH = 5


def string_continuation_lines(code: str) -> Set[int]:
    """1-based numbers of the lines that continue a multi-line string literal."""
    inside: Set[int] = set()
    opened = []
    try:
        for tok in tokenize.generate_tokens(io.StringIO(code).readline):
            kind = tokenize.tok_name.get(tok.type, "")
            # f-strings (3.12+) arrive as START ... END token runs
            if kind.endswith("STRING_START"):
                opened.append(tok.start[0])
            elif kind.endswith("STRING_END") and opened:
                inside.update(range(opened.pop() + 1, tok.end[0] + 1))
            elif tok.type == tokenize.STRING:
                inside.update(range(tok.start[0] + 1, tok.end[0] + 1))
    except (tokenize.TokenError, SyntaxError):
        # compile() reports the real problem
        pass
    return inside


def build_source(code: str) -> str:
    """Wrap a function body into the source of the implementation coroutine.

    Code lines are dedented and re-indented under the ``async def`` header;
    lines inside multi-line string literals are left untouched.
    """
    lines = code.strip("\n").splitlines()
    literal = string_continuation_lines("\n".join(lines) + "\n")
    code_lines = [ln for n, ln in enumerate(lines, 1) if n not in literal and ln.strip()]
    header = f"async def {IMPL_NAME}({', '.join(IMPL_PARAMS)}):\n"
    if not code_lines:
        return header + "    pass\n"

    margin = os.path.commonprefix([ln[:len(ln) - len(ln.lstrip())] for ln in code_lines])
    out = []
    for n, ln in enumerate(lines, 1):
        if n in literal:
            out.append(ln)
        elif not ln.strip():
            out.append("")
        else:
            out.append("    " + ln[len(margin):])
    return header + "\n".join(out) + "\n"


def compile_unit(code: str, filename: str = "<vibe>"):
    """Compile a body into an async callable taking (args, v, shape)."""
    source = build_source(code)
    namespace = {"__name__": "vibe.generated", "__builtins__": __builtins__}
    try:
        exec(compile(source, filename, "exec"), namespace)
    except Exception as e:
        raise ExecutionError(f"Code compilation failed: {type(e).__name__}: {e}", code) from e
    return namespace[IMPL_NAME]


class Executor:
    """Runs synthesized code with a depth-bound re-entrant handle."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, enforce_depth: bool = True):
        if max_depth < 1:
            raise ValueError("max_depth must be >= 1")
        self.max_depth = max_depth
        self.enforce_depth = enforce_depth
        self.shape_factory = ShapeFactory()

    def is_terminal_hop(self, depth: int) -> bool:
        """True when a call at this depth is the last permitted hop."""
        return depth >= self.max_depth - 1

    def check_depth(self, depth: int, name: str = "") -> None:
        if self.enforce_depth and depth >= self.max_depth:
            raise RecursionLimitError(
                f"call depth {depth} exceeds the limit of {self.max_depth}"
                + (f" (in {name!r})" if name else "")
            )

    async def execute(self, code: str, args: Sequence[Any], handle, depth: int, name: str = "") -> Any:
        """Compile and await ``code`` with ``handle`` re-bound one level deeper."""
        self.check_depth(depth, name)
        fn = compile_unit(code, filename=f"<vibe:{name}>" if name else "<vibe>")
        nested = handle.at_depth(depth + 1) if handle is not None else None
        logger.debug("executing %r at depth %d", name, depth)
        try:
            result = await fn(list(args), nested, self.shape_factory)
            # a body may hand back a nested call without awaiting it
            while inspect.isawaitable(result):
                result = await result
            return result
        except ExecutionError:
            # already carries the failing code (including RecursionLimitError)
            raise
        except Exception as e:
            raise ExecutionError(f"Code execution failed: {type(e).__name__}: {e}", code) from e


__all__ = [
    "Executor",
    "build_source",
    "compile_unit",
    "IMPL_NAME",
    "DEFAULT_MAX_DEPTH",
]
