import asyncio

import aiofiles
import pytest

from logworker.jobs.cancellation import CancellationToken
from logworker.processing.scanner import FileScanner, read_lines


class FakeClock:
    def __init__(self, step=0.0):
        self.now = 0.0
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


class ProgressRecorder:
    def __init__(self):
        self.checkpoints = []

    async def __call__(self, percent, lines):
        self.checkpoints.append((percent, lines))

    @property
    def percents(self):
        return [p for p, _ in self.checkpoints]


def _scanner(**kwargs):
    kwargs.setdefault("memory_sampler", lambda: 0.0)
    return FileScanner(**kwargs)


async def test_progress_is_monotonic_and_ends_at_ceiling(write_log):
    path = write_log([f"[2024-01-01T00:00:00Z] INFO request {i} handled" for i in range(10_000)])
    progress = ProgressRecorder()

    stats = await _scanner(batch_size=1000).scan(path, ["error"], progress)

    assert stats.total_entries == 10_000
    assert progress.percents, "expected at least one checkpoint"
    assert progress.percents == sorted(progress.percents)
    assert all(20 <= p <= 99 for p in progress.percents)
    assert progress.percents[-1] >= 99


async def test_checkpoints_follow_batch_size(write_log):
    # 200-byte lines make the line estimate exact
    line = "[t] INFO " + "x" * 190
    path = write_log([line] * 5000)
    progress = ProgressRecorder()

    await _scanner(batch_size=1000).scan(path, [], progress)

    lines = [n for _, n in progress.checkpoints]
    assert lines == [1000, 2000, 3000, 4000, 5000]
    assert progress.percents == [36, 52, 68, 84, 99]


async def test_small_steps_are_not_reported(write_log):
    line = "[t] INFO " + "x" * 190
    path = write_log([line] * 1000)
    progress = ProgressRecorder()

    # each batch of 10 lines advances the estimate by less than 1 point
    await _scanner(batch_size=10).scan(path, [], progress)

    # the final jump into the 99 ceiling may be smaller
    steps = [b - a for a, b in zip(progress.percents, progress.percents[1:]) if b < 99]
    assert steps
    assert all(step >= 5 for step in steps)


async def test_time_threshold_forces_checkpoint(write_log):
    path = write_log([f"[t] INFO line {i}" for i in range(5)])
    progress = ProgressRecorder()

    await _scanner(batch_size=1000, clock=FakeClock(step=6.0)).scan(path, [], progress)

    assert len(progress.checkpoints) == 5


async def test_cancellation_returns_partial_statistics(write_log):
    path = write_log([f"[t] INFO line {i}" for i in range(5000)])
    token = CancellationToken()

    async def cancel_at_first_checkpoint(percent, lines):
        token.cancel("stop")

    stats = await _scanner(batch_size=100).scan(path, [], cancel_at_first_checkpoint, token)

    assert stats.total_entries == 100


async def test_pre_cancelled_token_scans_nothing(write_log):
    path = write_log(["[t] ERROR boom"] * 10)
    token = CancellationToken()
    token.cancel()

    stats = await _scanner().scan(path, ["boom"], token=token)

    assert stats.total_entries == 0
    assert stats.keyword_matches == {"boom": 0}


async def test_high_memory_inserts_pause(write_log, monkeypatch):
    path = write_log([f"[t] INFO line {i}" for i in range(3)])
    pauses = []

    async def fake_sleep(delay):
        pauses.append(delay)

    monkeypatch.setattr("logworker.processing.scanner.asyncio.sleep", fake_sleep)
    scanner = _scanner(
        memory_sampler=lambda: 95.0,
        memory_threshold_percent=80.0,
        backpressure_pause=0.5,
        memory_check_interval=5.0,
        clock=FakeClock(step=6.0),
    )
    await scanner.scan(path, [])

    assert pauses.count(0.5) == 3


async def test_processing_time_is_recorded(write_log):
    path = write_log(["[t] INFO a", "[t] INFO b"])
    stats = await _scanner(clock=FakeClock(step=0.25)).scan(path, [])
    assert stats.processing_time_ms > 0


async def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        await _scanner().scan(str(tmp_path / "missing.log"), [])


def test_line_estimate_has_a_floor():
    assert _scanner().estimate_lines(0) == 100
    assert _scanner().estimate_lines(2_000_000) == 10_000


async def test_read_lines_joins_lines_split_across_chunks(tmp_path):
    path = tmp_path / "crlf.log"
    path.write_bytes(b"first line\r\nsecond\r\n\r\nlast without newline")

    async with aiofiles.open(path, mode="r", encoding="utf-8", newline=None) as fh:
        lines = [line async for line in read_lines(fh, chunk_size=3)]

    assert lines == ["first line", "second", "", "last without newline"]


async def test_scan_yields_to_the_event_loop_between_reads(write_log):
    path = write_log([f"[t] INFO request {i} handled" for i in range(20_000)])
    ticks = 0
    done = False

    async def ticker():
        nonlocal ticks
        while not done:
            ticks += 1
            await asyncio.sleep(0)

    task = asyncio.create_task(ticker())
    # no batch boundary is ever reached, so only file reads can yield
    stats = await _scanner(batch_size=10**9).scan(path, [])
    seen = ticks
    done = True
    await task

    assert stats.total_entries == 20_000
    assert seen > 0
