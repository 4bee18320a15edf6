"""Unit tests for the FFmpeg media engine.

Subprocess creation is mocked, so no FFmpeg binary is needed.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from reel_agent.errors import (
    EngineExecutionFailed,
    EngineInitFailed,
    EngineStagingFailed,
    ReadbackFailed,
)
from reel_agent.media_engine import FFmpegMediaEngine, parse_progress_line


class FakeProcess:
    """Stand-in for asyncio.subprocess.Process."""

    def __init__(self, stdout_lines: list[str], returncode: int = 0, stderr: bytes = b""):
        self.stdout = asyncio.StreamReader()
        for line in stdout_lines:
            self.stdout.feed_data(f"{line}\n".encode())
        self.stdout.feed_eof()
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr)
        self.stderr.feed_eof()
        self.returncode = returncode

    async def wait(self):
        return self.returncode

    def kill(self):
        pass


class HangingProcess(FakeProcess):
    """Process whose progress stream stays open until it is killed."""

    def __init__(self):
        super().__init__([])
        self.stdout = asyncio.StreamReader()
        self.stdout.feed_data(b"out_time_us=1000000\n")
        self.returncode = None
        self.killed = False

    async def wait(self):
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9


@pytest_asyncio.fixture
async def engine(temp_dir):
    """Open engine whose binary check is bypassed."""
    engine = FFmpegMediaEngine(work_dir=temp_dir / "work")
    with patch("reel_agent.media_engine.shutil.which", return_value="/usr/bin/ffmpeg"), \
            patch.object(FFmpegMediaEngine, "_check_binary", new=AsyncMock()):
        await engine.open()
    yield engine
    await engine.close()


@pytest.mark.unit
class TestParseProgressLine:
    def test_out_time_scaled_by_duration(self):
        assert parse_progress_line("out_time_us=2500000", 10.0) == pytest.approx(0.25)

    def test_out_time_ms_is_microseconds(self):
        assert parse_progress_line("out_time_ms=5000000", 10.0) == pytest.approx(0.5)

    def test_clamped_to_one(self):
        assert parse_progress_line("out_time_us=99000000", 10.0) == 1.0

    def test_progress_end(self):
        assert parse_progress_line("progress=end", None) == 1.0

    def test_progress_continue_ignored(self):
        assert parse_progress_line("progress=continue", 10.0) is None

    @pytest.mark.parametrize("line", ["frame=10", "out_time_us=N/A", "garbage", ""])
    def test_irrelevant_lines(self, line):
        assert parse_progress_line(line, 10.0) is None

    def test_unknown_duration(self):
        assert parse_progress_line("out_time_us=1000000", None) is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestLifecycle:
    async def test_open_fails_without_binary(self):
        engine = FFmpegMediaEngine(ffmpeg_binary="no-such-ffmpeg")

        with patch("reel_agent.media_engine.shutil.which", return_value=None):
            with pytest.raises(EngineInitFailed, match="not found"):
                await engine.open()

        assert not engine.is_open

    async def test_open_is_idempotent(self, temp_dir):
        engine = FFmpegMediaEngine()
        check = AsyncMock()
        with patch("reel_agent.media_engine.shutil.which", return_value="/usr/bin/ffmpeg"), \
                patch.object(FFmpegMediaEngine, "_check_binary", new=check):
            await engine.open()
            work_dir = engine.work_dir
            await engine.open()

        assert check.await_count == 1
        assert engine.work_dir == work_dir
        await engine.close()
        assert not work_dir.exists()
        assert not engine.is_open

    async def test_operations_require_open_engine(self):
        engine = FFmpegMediaEngine()

        with pytest.raises(EngineInitFailed):
            await engine.stage("a.srt", "text")


@pytest.mark.unit
@pytest.mark.asyncio
class TestWorkingSet:
    async def test_stage_read_release(self, engine):
        await engine.stage("run_audio.mp3", b"audio")
        await engine.stage("run_subtitles.srt", "1\n00:00:00,000 --> 00:00:01,000\nhi\n")

        assert await engine.read("run_audio.mp3") == b"audio"
        assert (engine.work_dir / "run_subtitles.srt").read_text().startswith("1\n")

        failures = await engine.release(["run_audio.mp3", "run_subtitles.srt", "never_staged.mp4"])

        assert failures == {}
        assert list(engine.work_dir.iterdir()) == []

    async def test_stage_rejects_path_names(self, engine):
        with pytest.raises(EngineStagingFailed):
            await engine.stage("../escape.mp4", b"x")

    async def test_read_missing_raises(self, engine):
        with pytest.raises(ReadbackFailed):
            await engine.read("missing.mp4")

    async def test_release_reports_failures(self, engine):
        failures = await engine.release(["../bad"])

        assert list(failures) == ["../bad"]


@pytest.mark.unit
@pytest.mark.asyncio
class TestExecute:
    async def test_reports_progress_and_runs_in_work_dir(self, engine):
        process = FakeProcess(["frame=1", "out_time_us=1000000", "out_time_us=2000000", "progress=end"])
        fractions: list[float] = []

        with patch(
            "reel_agent.media_engine.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ) as create:
            await engine.execute(["-i", "in.mp4", "out.mp4"], on_progress=fractions.append, expected_duration=4.0)

        cmd = create.await_args.args
        assert cmd[1:6] == ("-y", "-hide_banner", "-nostats", "-progress", "pipe:1")
        assert cmd[-3:] == ("-i", "in.mp4", "out.mp4")
        assert create.await_args.kwargs["cwd"] == str(engine.work_dir)
        assert fractions == [0.25, 0.5, 1.0, 1.0]

    async def test_non_zero_exit_raises_with_diagnostics(self, engine):
        process = FakeProcess([], returncode=1, stderr=b"Invalid data found when processing input")

        with patch(
            "reel_agent.media_engine.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(EngineExecutionFailed) as exc_info:
                await engine.execute(["-i", "in.mp4", "out.mp4"])

        error = exc_info.value
        assert error.instruction == ["-i", "in.mp4", "out.mp4"]
        assert "Invalid data" in error.diagnostics

    async def test_spawn_failure_raises(self, engine):
        with patch(
            "reel_agent.media_engine.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=OSError("exec format error")),
        ):
            with pytest.raises(EngineExecutionFailed, match="could not be started"):
                await engine.execute(["-version"])

    async def test_timeout_kills_process(self, engine):
        process = HangingProcess()
        engine.timeout = 0.01

        with patch(
            "reel_agent.media_engine.asyncio.create_subprocess_exec",
            new=AsyncMock(return_value=process),
        ):
            with pytest.raises(EngineExecutionFailed, match="timed out") as exc_info:
                await engine.execute(["-i", "in.mp4", "out.mp4"], expected_duration=4.0)

        assert process.killed
        assert isinstance(exc_info.value.cause, asyncio.TimeoutError)
        assert exc_info.value.instruction == ["-i", "in.mp4", "out.mp4"]
