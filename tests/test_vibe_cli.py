import pytest

from vibe.vibe_cli import main, parse_call, parse_value, format_value
from vibe.vibe_config import VibeSettings
from vibe.vibe_runtime import Vibe
from vibe.vibe_cache import MemoryCache
from vibe.vibe_log import MemoryActivityLog
from vibe.vibe_generator import Generator
from vibe.vibe_datatypes import GeneratorResult, CacheIOError


class CannedGenerator(Generator):
    def __init__(self, codes):
        self.codes = codes

    async def generate(self, request):
        return GeneratorResult(code=self.codes[request.name])


@pytest.fixture
def vibe():
    codes = {
        "add": "return args[0] + args[1]",
        "createPerson": "return {'name': args[0], 'age': args[1]}",
        "boom": "return 1 / 0",
    }
    return Vibe(VibeSettings(log_level="WARNING"), generator=CannedGenerator(codes),
                cache=MemoryCache(), log=MemoryActivityLog())


@pytest.mark.parametrize("token, value", [
    ("5", 5),
    ("2.5", 2.5),
    ("true", True),
    ("hello", "hello"),
    ("[1, 2]", [1, 2]),
    ("{a: 1}", {"a": 1}),
    ("[unclosed", "[unclosed"),
])
def test_parse_value(token, value):
    assert parse_value(token) == value


def test_parse_call_handles_quotes():
    assert parse_call('translate "good morning" fr') == ("translate", ["good morning", "fr"])
    with pytest.raises(ValueError):
        parse_call("   ")


def test_format_value():
    assert format_value("plain") == "plain"
    assert format_value({"a": 1}) == '{\n  "a": 1\n}'


@pytest.mark.asyncio
async def test_one_shot_call_prints_result(vibe, capsys):
    assert await main(["add", "5", "3"], vibe=vibe) == 0
    assert capsys.readouterr().out.strip() == "8"


@pytest.mark.asyncio
async def test_one_shot_object_result(vibe, capsys):
    assert await main(["createPerson", "Alice", "25"], vibe=vibe) == 0
    out = capsys.readouterr().out
    assert '"name": "Alice"' in out
    assert '"age": 25' in out


@pytest.mark.asyncio
async def test_failed_call_reports_error(vibe, capsys):
    assert await main(["boom"], vibe=vibe) == 1
    err = capsys.readouterr().err
    assert err.startswith("ExecutionError: Code execution failed: ZeroDivisionError")


@pytest.mark.asyncio
async def test_logs_and_maintenance_commands(vibe, capsys):
    await main(["add", "1", "2"], vibe=vibe)
    capsys.readouterr()

    assert await main(["--logs"], vibe=vibe) == 0
    out = capsys.readouterr().out
    assert "add (generated" in out
    assert "1 record(s)" in out

    assert await main(["--clear-logs"], vibe=vibe) == 0
    assert await main(["--clear-cache"], vibe=vibe) == 0
    out = capsys.readouterr().out
    assert "logs cleared" in out and "cache cleared" in out
    assert await vibe.read_logs() == []


@pytest.mark.asyncio
async def test_unknown_flag(vibe, capsys):
    assert await main(["--bogus"], vibe=vibe) == 2
    assert "Unknown command: bogus" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_help(vibe, capsys):
    assert await main(["--help"], vibe=vibe) == 0
    assert "usage:" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_repl_session(vibe, capsys, monkeypatch):
    lines = iter(["add 2 2\n", ":logs\n", "\n", "exit\n"])

    async def fake_input(prompt):
        return next(lines)

    monkeypatch.setattr("vibe.vibe_cli.ainput", fake_input)
    assert await main([], vibe=vibe) == 0
    out = capsys.readouterr().out
    assert "4" in out
    assert "1 record(s)" in out


class UnclearableCache(MemoryCache):
    async def clear(self):
        raise CacheIOError("permission denied")


@pytest.fixture
def stuck_vibe(vibe):
    vibe.cache = UnclearableCache()
    return vibe


@pytest.mark.asyncio
async def test_clear_cache_failure_is_reported(stuck_vibe, capsys):
    assert await main(["--clear-cache"], vibe=stuck_vibe) == 1
    assert "CacheIOError: permission denied" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_repl_survives_command_failures(stuck_vibe, capsys, monkeypatch):
    lines = iter([":clear-cache\n", "add 1 2\n", "exit\n"])

    async def fake_input(prompt):
        return next(lines)

    monkeypatch.setattr("vibe.vibe_cli.ainput", fake_input)
    assert await main([], vibe=stuck_vibe) == 0
    captured = capsys.readouterr()
    assert "CacheIOError: permission denied" in captured.err
    assert "3" in captured.out
