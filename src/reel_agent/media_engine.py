"""Media engine adapter: FFmpeg working set, execution and readback.

The engine owns a flat working set of named files. Callers stage inputs
into it, run one FFmpeg command at a time against those names, read the
outputs back and release everything they staged. An engine is opened
once and reused across runs; runs serialize on ``engine.lock``.
"""

import asyncio
import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Union

from reel_agent.errors import (
    EngineExecutionFailed,
    EngineInitFailed,
    EngineStagingFailed,
    ReadbackFailed,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

DEFAULT_EXECUTE_TIMEOUT = 600.0
VERSION_CHECK_TIMEOUT = 30.0
DIAGNOSTICS_TAIL_CHARS = 2000


class MediaEngine(ABC):
    """Abstract transcoding engine used by the reel orchestrator."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether ``open`` has completed successfully."""

    @abstractmethod
    async def open(self) -> None:
        """Initialize the engine. Safe to call more than once.

        Raises:
            EngineInitFailed: If the engine cannot be started.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release everything the engine holds."""

    @abstractmethod
    async def stage(self, name: str, data: Union[bytes, str]) -> None:
        """Copy a named resource into the working set.

        Raises:
            EngineStagingFailed: If the resource cannot be written.
        """

    @abstractmethod
    async def execute(
        self,
        args: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
        expected_duration: Optional[float] = None,
    ) -> None:
        """Run one transcoding command.

        Args:
            args: Ordered command arguments referring to working-set names.
            on_progress: Called with fractions in [0, 1] while running.
            expected_duration: Output length in seconds, used to scale progress.

        Raises:
            EngineExecutionFailed: On non-zero completion status or timeout.
        """

    @abstractmethod
    async def read(self, name: str) -> bytes:
        """Read a named output resource.

        Raises:
            ReadbackFailed: If the resource cannot be read.
        """

    @abstractmethod
    async def release(self, names: Iterable[str]) -> dict[str, str]:
        """Delete named resources, best effort.

        Returns:
            Map of resource name to error message for deletions that failed.
        """

    async def __aenter__(self) -> "MediaEngine":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class FFmpegMediaEngine(MediaEngine):
    """Media engine backed by the ``ffmpeg`` binary and a private temp directory."""

    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        work_dir: Optional[Path] = None,
        timeout: float = DEFAULT_EXECUTE_TIMEOUT,
    ):
        super().__init__()
        self.ffmpeg_binary = ffmpeg_binary
        self.timeout = timeout
        self._requested_work_dir = Path(work_dir) if work_dir else None
        self._work_dir: Optional[Path] = None
        self._binary_path: Optional[str] = None
        self._open_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._work_dir is not None

    @property
    def work_dir(self) -> Path:
        if self._work_dir is None:
            raise EngineInitFailed("Media engine is not open")
        return self._work_dir

    async def open(self) -> None:
        async with self._open_lock:
            if self._work_dir is not None:
                return

            binary_path = shutil.which(self.ffmpeg_binary)
            if binary_path is None:
                raise EngineInitFailed(f"FFmpeg binary not found: {self.ffmpeg_binary}")
            await self._check_binary(binary_path)

            try:
                if self._requested_work_dir:
                    self._requested_work_dir.mkdir(parents=True, exist_ok=True)
                    work_dir = self._requested_work_dir
                else:
                    work_dir = Path(tempfile.mkdtemp(prefix="reel_engine_"))
            except OSError as e:
                raise EngineInitFailed(f"Cannot create engine working directory: {e}", cause=e) from e

            self._binary_path = binary_path
            self._work_dir = work_dir
            logger.info(f"Media engine ready: {binary_path} (working set {work_dir})")

    async def _check_binary(self, binary_path: str) -> None:
        """Run ``ffmpeg -version`` to make sure the binary is usable."""
        try:
            proc = await asyncio.create_subprocess_exec(
                binary_path, "-version",
                stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout=VERSION_CHECK_TIMEOUT
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise EngineInitFailed(f"FFmpeg could not be started: {e}", cause=e) from e

        if proc.returncode != 0:
            raise EngineInitFailed(
                f"FFmpeg version check failed (exit {proc.returncode}): "
                f"{stderr.decode(errors='replace')[:500]}"
            )
        first_line = stdout.decode(errors="replace").splitlines()[:1]
        if first_line:
            logger.debug(first_line[0])

    async def close(self) -> None:
        async with self._open_lock:
            if self._work_dir is None:
                return
            work_dir = self._work_dir
            self._work_dir = None
            if self._requested_work_dir is None:
                shutil.rmtree(work_dir, ignore_errors=True)
                logger.debug(f"Removed engine working set: {work_dir}")
            logger.info("Media engine closed")

    def _resolve(self, name: str) -> Path:
        if not name or Path(name).name != name or name in (".", ".."):
            raise ValueError(f"Invalid working-set name: {name!r}")
        return self.work_dir / name

    async def stage(self, name: str, data: Union[bytes, str]) -> None:
        try:
            path = self._resolve(name)
            payload = data.encode("utf-8") if isinstance(data, str) else data
            await asyncio.to_thread(path.write_bytes, payload)
        except EngineInitFailed:
            raise
        except (OSError, ValueError) as e:
            raise EngineStagingFailed(f"Failed to stage {name}: {e}", cause=e) from e
        logger.debug(f"Staged {name} ({len(payload)} bytes)")

    async def execute(
        self,
        args: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
        expected_duration: Optional[float] = None,
    ) -> None:
        cmd = [
            self._binary_path or self.ffmpeg_binary,
            "-y", "-hide_banner", "-nostats",
            "-progress", "pipe:1",
            *args,
        ]
        logger.debug(f"Command: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.work_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineExecutionFailed(
                f"FFmpeg could not be started: {e}", args=args, cause=e
            ) from e

        async def run_to_completion() -> None:
            await self._pump_progress(proc.stdout, on_progress, expected_duration)
            await proc.wait()

        stderr_task = asyncio.create_task(proc.stderr.read())
        try:
            await asyncio.wait_for(run_to_completion(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
            stderr_task.cancel()
            raise EngineExecutionFailed(
                f"FFmpeg timed out after {self.timeout:.0f}s", args=args, cause=e
            ) from e

        stderr = (await stderr_task).decode(errors="replace")
        if proc.returncode != 0:
            diagnostics = stderr[-DIAGNOSTICS_TAIL_CHARS:]
            logger.error(f"FFmpeg stderr: {diagnostics[-1000:]}")
            raise EngineExecutionFailed(
                f"FFmpeg failed (exit {proc.returncode}): {stderr.strip()[-500:]}",
                args=args,
                diagnostics=diagnostics,
            )

        if on_progress:
            on_progress(1.0)

    @staticmethod
    async def _pump_progress(
        stream: asyncio.StreamReader,
        on_progress: Optional[ProgressCallback],
        expected_duration: Optional[float],
    ) -> None:
        while True:
            line = await stream.readline()
            if not line:
                return
            fraction = parse_progress_line(line.decode(errors="replace"), expected_duration)
            if fraction is not None and on_progress:
                on_progress(fraction)

    async def read(self, name: str) -> bytes:
        try:
            path = self._resolve(name)
            return await asyncio.to_thread(path.read_bytes)
        except EngineInitFailed:
            raise
        except (OSError, ValueError) as e:
            raise ReadbackFailed(f"Failed to read {name}: {e}", cause=e) from e

    async def release(self, names: Iterable[str]) -> dict[str, str]:
        failures: dict[str, str] = {}
        if self._work_dir is None:
            return failures

        async def remove(name: str) -> None:
            try:
                path = self._resolve(name)
                await asyncio.to_thread(path.unlink, missing_ok=True)
            except (OSError, ValueError) as e:
                failures[name] = str(e)
                logger.warning(f"Failed to release {name}: {e}")

        await asyncio.gather(*(remove(name) for name in names))
        return failures


def parse_progress_line(line: str, expected_duration: Optional[float]) -> Optional[float]:
    """Turn one ``-progress`` key=value line into a completion fraction.

    Returns None for lines that carry no usable progress.
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    if key == "progress":
        return 1.0 if value == "end" else None
    # out_time_ms is reported in microseconds as well
    if key not in ("out_time_us", "out_time_ms") or not expected_duration:
        return None
    try:
        seconds = int(value) / 1_000_000
    except ValueError:
        return None
    return max(0.0, min(seconds / expected_duration, 1.0))
