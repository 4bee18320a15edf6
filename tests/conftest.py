"""Shared pytest fixtures for reelforge tests."""

import asyncio
import io
import sys
import tempfile
import wave
from pathlib import Path
from typing import Dict, Generator, Optional

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from reel_agent.errors import EngineExecutionFailed, EngineStagingFailed  # noqa: E402
from reel_agent.media_engine import MediaEngine  # noqa: E402
from reel_agent.models import AssetCategory  # noqa: E402
from services.voice_service import VoiceServiceError  # noqa: E402


def make_wav_bytes(duration: float, framerate: int = 8000) -> bytes:
    """Create a silent mono WAV payload of the given duration."""
    output = io.BytesIO()
    with wave.open(output, "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(framerate)
        wav_file.writeframes(b"\x00\x00" * int(duration * framerate))
    return output.getvalue()


class FakeVoiceService:
    """Voice client returning a fixed payload in two chunks."""

    def __init__(self, audio: bytes = b"", error: Optional[Exception] = None):
        self.audio = audio or make_wav_bytes(5.0)
        self.error = error
        self.calls: list[str] = []

    async def synthesize(self, text, on_progress=None):
        self.calls.append(text)
        if self.error:
            raise self.error
        half = len(self.audio) // 2
        if on_progress:
            on_progress(half, len(self.audio))
            on_progress(len(self.audio), len(self.audio))
        return self.audio

    async def close(self):
        pass


class FakeMediaEngine(MediaEngine):
    """In-memory media engine that records every call.

    ``execute`` copies the staged video into the output name given as the
    last argument, reporting progress halfway and at the end.
    """

    def __init__(
        self,
        fail_stage: Optional[str] = None,
        fail_execute: bool = False,
        fail_release: bool = False,
    ):
        super().__init__()
        self.fail_stage = fail_stage
        self.fail_execute = fail_execute
        self.fail_release = fail_release
        self.files: dict[str, bytes] = {}
        self.open_calls = 0
        self.staged: list[str] = []
        self.executed: list[list[str]] = []
        self.released: list[str] = []
        # (operation, resource name) in call order
        self.calls: list[tuple[str, str]] = []
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self.open_calls += 1
        self._open = True

    async def close(self) -> None:
        self._open = False

    async def stage(self, name, data):
        await asyncio.sleep(0)
        if self.fail_stage and self.fail_stage in name:
            raise EngineStagingFailed(f"Failed to stage {name}: disk full")
        self.files[name] = data.encode("utf-8") if isinstance(data, str) else data
        self.staged.append(name)
        self.calls.append(("stage", name))

    async def execute(self, args, on_progress=None, expected_duration=None):
        self.executed.append(list(args))
        self.calls.append(("execute", args[-1]))
        await asyncio.sleep(0)
        if self.fail_execute:
            raise EngineExecutionFailed("FFmpeg failed (exit 1)", args=args, diagnostics="boom")
        if on_progress:
            on_progress(0.5)
            on_progress(1.0)
        video_name = args[args.index("-i") + 1]
        self.files[args[-1]] = b"RENDERED:" + self.files[video_name]

    async def read(self, name):
        return self.files[name]

    async def release(self, names):
        names = list(names)
        self.released.extend(names)
        self.calls.extend(("release", name) for name in names)
        await asyncio.sleep(0)
        if self.fail_release:
            return {name: "permission denied" for name in names}
        for name in names:
            self.files.pop(name, None)
        return {}


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def assets_dir(temp_dir) -> Path:
    """Asset tree with two satisfying clips and one minecraft clip."""
    root = temp_dir / "assets"
    (root / "satisfying").mkdir(parents=True)
    (root / "minecraft").mkdir(parents=True)
    (root / "satisfying" / "soap.mp4").write_bytes(b"soap-video")
    (root / "satisfying" / "sand.mp4").write_bytes(b"sand-video")
    (root / "satisfying" / "notes.txt").write_text("not a clip")
    (root / "minecraft" / "parkour.mp4").write_bytes(b"parkour-video")
    return root


@pytest.fixture
def sample_catalog() -> Dict[AssetCategory, list[str]]:
    return {
        AssetCategory.SATISFYING: ["A", "B", "C", "D"],
        AssetCategory.MINECRAFT: ["M1", "M2"],
        AssetCategory.GTA: [],
    }


@pytest.fixture
def sample_config(temp_dir) -> Dict:
    """Sample configuration for testing."""
    return {
        "elevenlabs_api_key": "test_key",
        "elevenlabs_voice_id": "voice123",
        "elevenlabs_api_base": "https://api.elevenlabs.io/v1",
        "voice_stability": 0.5,
        "voice_similarity_boost": 0.5,
        "tts_timeout_seconds": 30.0,
        "assets_dir": str(temp_dir / "assets"),
        "output_dir": str(temp_dir / "output"),
        "ffmpeg_binary": "ffmpeg",
        "engine_timeout_seconds": 60.0,
        "video_preset": "ultrafast",
        "video_crf": 23,
        "caption_style": "FontSize=24",
        "log_level": "INFO",
        "log_json": False,
    }


@pytest.fixture
def fake_voice() -> FakeVoiceService:
    return FakeVoiceService()


@pytest.fixture
def failing_voice() -> FakeVoiceService:
    return FakeVoiceService(error=VoiceServiceError("HTTP 401 unauthorized", status_code=401))


@pytest.fixture
def fake_engine() -> FakeMediaEngine:
    return FakeMediaEngine()
