"""
The generator: turns a call description into a Python function body.

``ChatCompletionGenerator`` talks to any OpenAI-compatible
``/chat/completions`` endpoint. Prompts are Mustache templates rendered with
pystache.
"""
from __future__ import annotations

import re
import json
import asyncio
import textwrap
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
import pystache

from vibe.vibe_datatypes import GeneratorRequest, GeneratorResult, GenerationError, TokenUsage, to_jsonable
from vibe.vibe_shape import describe_shape

logger = logging.getLogger(__name__)

ARGS_PREVIEW_LIMIT = 1000

SYSTEM_TEMPLATE = """\
You are the code engine of 'vibe'. You write the BODY of a Python async function that implements a call.

BINDINGS available to the body:
1. args: list of the call's positional arguments.
2. shape: factory for the expected result type of nested calls:
   shape.string, shape.number, shape.integer, shape.boolean, shape.any,
   shape.list(item), shape.dict(value), shape.optional(inner),
   shape.object(field=shape.string, ...)
3. v: the vibe handle.
 - Syntax: await v[prompt]()(shape.string)
 - ALWAYS apply a shape when calling v!

STRATEGY - CHOOSE ONE PATH:

PATH A: PURE LOGIC / PLAIN PYTHON (use this whenever possible)
 - Math, list and dict manipulation, string handling, randomness.
 - GOOD: return args[0] + args[1]

PATH B: DIRECT KNOWLEDGE (only if there are NO args or the args are configuration)
 - The call name ITSELF is the prompt (e.g. v["Tell a joke"]()).
 - Return the content directly. Be creative.

PATH C: DYNAMIC DELEGATION (for "Explain X", "Translate Y")
 - The task needs model intelligence applied to specific args.
 - DO NOT write the content yourself; build a prompt string and delegate to v.
 - ALWAYS declare the expected result with shape.
 GOOD:
   prompt = f"Explain {args[0]} in {args[1]} style"
   return await v[prompt]()(shape.string)
 GOOD (object result):
   prompt = f"Analyze {args[0]}"
   return await v[prompt]()(shape.object(sentiment=shape.string, score=shape.number))

CONSTRAINT: Return ONLY the function body. No def line, no markdown fences, no explanations.
"""

TASK_TEMPLATE = """\
Task: Implement "{{name}}"
{{args_info}}
Expected Return Type: {{shape}}

DECISION GUIDE:
1. Is "{{name}}" a specific command requiring model knowledge about args[0]?
 -> YES: use PATH C.
 -> Build the prompt dynamically: f"{{name}} {args[0]}..."
 -> Delegate with a shape: await v[prompt]()({{delegate_shape}})

2. Is "{{name}}" a complete prompt by itself (args are empty)?
 -> YES: use PATH B. Return the content directly.

3. Is it simple logic?
 -> YES: use PATH A.
"""

TERMINAL_TEMPLATE = """\
MAX RECURSION.
- Answer the specific question "{{name}}" DIRECTLY.
{{args_info}}
- Return a value matching type: {{shape}}
- DO NOT use v again.
"""


# Prompts are plain text, not HTML
_renderer = pystache.Renderer(escape=lambda u: u)


def describe_args(args) -> str:
    if not args:
        return "Arguments: None"
    preview = json.dumps(to_jsonable(list(args)), ensure_ascii=False)[:ARGS_PREVIEW_LIMIT]
    return f"Current Argument Values (FOR CONTEXT ONLY, DO NOT HARDCODE): {preview}"


def build_prompts(request: GeneratorRequest) -> tuple[str, str]:
    """Render the (system, user) prompt pair for a request."""
    shape_desc = describe_shape(request.shape)
    view = {
        "name": request.name,
        "args_info": describe_args(request.args),
        "shape": shape_desc,
        "delegate_shape": "shape.string" if shape_desc == "any" else f"a shape matching {shape_desc}",
    }
    template = TERMINAL_TEMPLATE if request.is_terminal_hop else TASK_TEMPLATE
    return SYSTEM_TEMPLATE, _renderer.render(template, view)


_FENCE_OPEN = re.compile(r"^```[ \t]*(?:python3?|py)?[ \t]*\n", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```[ \t]*$")
_DEF_HEADER = re.compile(r"^(?:async[ \t]+)?def[ \t]+\w*[ \t]*\([^)]*\)[^\n]*:[ \t]*\n")


def clean_code(text: str) -> str:
    """Strip Markdown fences and a wrapping function header from model output."""
    code = (text or "").strip()
    code = _FENCE_OPEN.sub("", code, count=1)
    code = _FENCE_CLOSE.sub("", code, count=1).strip("\n")

    m = _DEF_HEADER.match(code)
    if m:
        rest = code[m.end():]
        lines = [ln for ln in rest.splitlines() if ln.strip()]
        # only unwrap when everything after the header is its indented body
        if lines and all(ln[:1] in (" ", "\t") for ln in lines):
            return textwrap.dedent(rest).strip()
    return textwrap.dedent(code).strip()


class Generator(ABC):
    """Produces a code fragment implementing a call."""

    @abstractmethod
    async def generate(self, request: GeneratorRequest) -> GeneratorResult: raise NotImplementedError


class ChatCompletionGenerator(Generator):
    """Generator backed by an OpenAI-compatible chat completion endpoint."""

    def __init__(self, api_key: str, base_url: str, model: str, *,
                 temperature: float = 0.6,
                 max_tokens: int = 2000,
                 timeout: float = 60.0,
                 retries: int = 2,
                 backoff: float = 0.5,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.transport = transport

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ChatCompletionGenerator":
        return cls(
            settings.api_key,
            settings.base_url,
            settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            timeout=settings.timeout,
            **kwargs,
        )

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            last_exc: Optional[Exception] = None
            for attempt in range(self.retries + 1):
                try:
                    resp = await client.post(url, json=payload, headers=headers)
                except httpx.TransportError as e:
                    last_exc = e
                else:
                    if 200 <= resp.status_code < 300:
                        try:
                            return resp.json()
                        except ValueError as e:
                            raise GenerationError(f"invalid JSON from {url}: {e}") from e
                    preview = (resp.text or "")[:200]
                    last_exc = GenerationError(f"HTTP {resp.status_code} from {url}: {preview}")
                    # client errors other than rate limiting will not improve on retry
                    if resp.status_code < 500 and resp.status_code != 429:
                        raise last_exc
                if attempt < self.retries:
                    logger.debug("generator request failed (attempt %d): %s", attempt + 1, last_exc)
                    await asyncio.sleep(self.backoff * (2 ** attempt))
            if isinstance(last_exc, GenerationError):
                raise last_exc
            raise GenerationError(f"generator request to {url} failed: {last_exc}") from last_exc

    async def generate(self, request: GeneratorRequest) -> GeneratorResult:
        system_prompt, user_prompt = build_prompts(request)
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        data = await self._post(payload)

        try:
            choice = data["choices"][0]
            raw = (choice.get("message") or {}).get("content") or ""
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationError(f"malformed completion response: {e}") from e
        raw = raw.strip()
        code = clean_code(raw)
        if not code:
            raise GenerationError(f"generator returned no code for {request.name!r}")

        usage = None
        u = data.get("usage")
        if isinstance(u, dict):
            usage = TokenUsage(
                prompt_tokens=int(u.get("prompt_tokens", 0)),
                completion_tokens=int(u.get("completion_tokens", 0)),
                total_tokens=int(u.get("total_tokens", 0)),
            )
        return GeneratorResult(
            code=code,
            model=data.get("model") or self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            raw_content=raw,
            finish_reason=choice.get("finish_reason"),
            usage=usage,
        )


__all__ = [
    "Generator",
    "ChatCompletionGenerator",
    "build_prompts",
    "describe_args",
    "clean_code",
]
