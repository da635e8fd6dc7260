"""
Command-line surface: one-shot calls, cache/log maintenance and a REPL.

    python vibe.py add 5 3
    python vibe.py createPerson Alice 25
    python vibe.py --logs 2026-10-17
    python vibe.py                      # interactive
"""
import sys
import json
import shlex
import asyncio
from typing import Any, List, Optional, Tuple

import yaml

from vibe.vibe_config import VibeSettings, configure_logging
from vibe.vibe_datatypes import VibeError, to_jsonable
from vibe.vibe_runtime import Vibe

USAGE = """\
usage: vibe.py <name> [args...]
       vibe.py --clear-cache | --clear-logs | --logs [YYYY-MM-DD]
       vibe.py                          (interactive)"""


# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)


def parse_value(token: str) -> Any:
    """YAML scalar/flow parsing for a command-line token: ``5`` -> 5, ``[1, 2]`` -> [1, 2]."""
    try:
        return yaml.safe_load(token)
    except yaml.YAMLError:
        return token


def parse_call(line: str) -> Tuple[str, List[Any]]:
    parts = shlex.split(line)
    if not parts:
        raise ValueError("empty call")
    return parts[0], [parse_value(p) for p in parts[1:]]


def format_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(to_jsonable(value), ensure_ascii=False, indent=2)


async def run_call(vibe: Vibe, name: str, args: List[Any]) -> int:
    result = await vibe.run_call(name, *args)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return 1
    if result.value is not None:
        print(format_value(result.value))
    return 0


async def run_command(vibe: Vibe, command: str, rest: List[str]) -> int:
    """Maintenance commands, shared by flags (--logs) and REPL (:logs)."""
    match command:
        case "clear-cache":
            await vibe.clear_cache()
            print("cache cleared")
        case "clear-logs":
            await vibe.clear_logs()
            print("logs cleared")
        case "logs":
            records = await vibe.read_logs(rest[0] if rest else None)
            for r in records:
                status = "ok" if r.get("success") else f"error: {r.get('error')}"
                origin = "cache" if r.get("from_cache") else "generated"
                print(f"{r.get('name')} ({origin}, {r.get('duration_ms', 0):.0f} ms) -> {status}")
            print(f"{len(records)} record(s)")
        case _:
            print(f"Unknown command: {command}\n{USAGE}", file=sys.stderr)
            return 2
    return 0


async def repl(vibe: Vibe) -> int:
    print("vibe REPL v0.1")
    print("Type 'name arg...' to call, ':logs', ':clear-cache', ':clear-logs', or 'exit'.")
    while True:
        try:
            raw = await ainput(">> ")
            if raw == "":
                raise EOFError
            line = raw.strip()
            if not line:
                continue
            if line == "exit":
                break
            if line.startswith(":"):
                parts = line[1:].split()
                await run_command(vibe, parts[0] if parts else "", parts[1:])
                continue
            name, args = parse_call(line)
            await run_call(vibe, name, args)
        except EOFError:
            print("\nExiting.")
            break
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
        except VibeError as e:
            print(f"{type(e).__name__}: {e}", file=sys.stderr)
    return 0


async def main(argv: Optional[List[str]] = None, vibe: Optional[Vibe] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    settings = vibe.settings if vibe is not None else VibeSettings()
    configure_logging(settings.log_level)
    vibe = vibe if vibe is not None else Vibe(settings)

    if not argv:
        return await repl(vibe)
    first = argv[0]
    if first in ("-h", "--help"):
        print(USAGE)
        return 0
    if first.startswith("--"):
        try:
            return await run_command(vibe, first[2:], argv[1:])
        except VibeError as e:
            print(f"{type(e).__name__}: {e}", file=sys.stderr)
            return 1
    return await run_call(vibe, first, [parse_value(a) for a in argv[1:]])
