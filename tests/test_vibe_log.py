import os
import json
import time

import pytest

from vibe.vibe_log import FileActivityLog, MemoryActivityLog, day_of, today, log_filename
from vibe.vibe_datatypes import ActivityRecord, CacheIOError

EPOCH_DAY = "1970-01-02"
EPOCH_TS = 86400.0 + 3600.0


def record(name="add", ts=None, **kw):
    return ActivityRecord(name=name, args=[5, 3], timestamp=time.time() if ts is None else ts, **kw)


def test_day_partitioning_is_utc():
    assert day_of(EPOCH_TS) == EPOCH_DAY
    assert log_filename(EPOCH_DAY) == "vibe-1970-01-02.jsonl"


@pytest.mark.asyncio
async def test_append_and_read_today(tmp_path):
    log = FileActivityLog(str(tmp_path / "logs"))
    await log.append(record(result=8, code="return args[0] + args[1]"))
    await log.append(record(name="mul", result=15))
    records = await log.read()
    assert [r["name"] for r in records] == ["add", "mul"]
    assert records[0]["args"] == [5, 3]
    assert records[0]["result"] == 8
    assert records[0]["success"] is True
    assert (tmp_path / "logs" / log_filename(today())).is_file()


@pytest.mark.asyncio
async def test_read_specific_day(tmp_path):
    log = FileActivityLog(str(tmp_path))
    await log.append(record(ts=EPOCH_TS))
    await log.append(record())
    old = await log.read(EPOCH_DAY)
    assert len(old) == 1
    assert old[0]["timestamp"] == EPOCH_TS


@pytest.mark.asyncio
async def test_read_missing_day_is_empty(tmp_path):
    log = FileActivityLog(str(tmp_path / "nowhere"))
    assert await log.read() == []
    assert await log.read("2001-01-01") == []


@pytest.mark.asyncio
async def test_undecodable_lines_are_skipped(tmp_path):
    log = FileActivityLog(str(tmp_path))
    await log.append(record(ts=EPOCH_TS))
    with open(os.path.join(str(tmp_path), log_filename(EPOCH_DAY)), "a", encoding="utf-8") as f:
        f.write("{truncated\n\n")
    await log.append(record(name="after", ts=EPOCH_TS))
    records = await log.read(EPOCH_DAY)
    assert [r["name"] for r in records] == ["add", "after"]


@pytest.mark.asyncio
async def test_non_json_values_are_recorded_readably(tmp_path):
    log = FileActivityLog(str(tmp_path))
    marker = object()
    await log.append(record(ts=EPOCH_TS, result={"k": marker, "b": b"hi"}))
    line = (tmp_path / log_filename(EPOCH_DAY)).read_text(encoding="utf-8")
    data = json.loads(line)
    assert data["result"]["b"] == "hi"
    assert data["result"]["k"] == repr(marker)


@pytest.mark.asyncio
async def test_clear_removes_all_days(tmp_path):
    root = tmp_path / "logs"
    log = FileActivityLog(str(root))
    await log.append(record(ts=EPOCH_TS))
    await log.append(record())
    await log.clear()
    assert not root.exists()
    assert await log.read(EPOCH_DAY) == []


@pytest.mark.asyncio
async def test_append_failure_raises_cache_io_error(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    log = FileActivityLog(str(blocker))
    with pytest.raises(CacheIOError):
        await log.append(record())


@pytest.mark.asyncio
async def test_memory_log_partitions_by_day():
    log = MemoryActivityLog()
    await log.append(record(ts=EPOCH_TS))
    await log.append(record(name="now"))
    assert [r["name"] for r in await log.read()] == ["now"]
    assert [r["name"] for r in await log.read(EPOCH_DAY)] == ["add"]
    assert [r["name"] for r in log.records] == ["add", "now"]
    await log.clear()
    assert log.records == []


@pytest.mark.asyncio
async def test_invalid_utf8_lines_are_skipped(tmp_path):
    log = FileActivityLog(str(tmp_path))
    await log.append(record(ts=EPOCH_TS))
    with open(os.path.join(str(tmp_path), log_filename(EPOCH_DAY)), "ab") as f:
        f.write(b"\xff\xfe{broken\n")
    await log.append(record(name="after", ts=EPOCH_TS))
    records = await log.read(EPOCH_DAY)
    assert [r["name"] for r in records] == ["add", "after"]
