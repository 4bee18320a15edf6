"""Data models for the reel generation pipeline."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from reel_agent.errors import CleanupWarning, ReelPipelineError


class AssetCategory(str, Enum):
    """Background footage categories."""

    SATISFYING = "satisfying"
    MINECRAFT = "minecraft"
    SUBWAY = "subway"
    GTA = "gta"
    FORTNITE = "fortnite"

    @property
    def display_name(self) -> str:
        return CATEGORY_DISPLAY_NAMES[self]


CATEGORY_DISPLAY_NAMES = {
    AssetCategory.SATISFYING: "Satisfying",
    AssetCategory.MINECRAFT: "Minecraft",
    AssetCategory.SUBWAY: "Subway Surfers",
    AssetCategory.GTA: "GTA",
    AssetCategory.FORTNITE: "Fortnite",
}


class PipelineStage(str, Enum):
    """States of one pipeline run, in execution order."""

    IDLE = "idle"
    SELECTING_ASSET = "selecting_asset"
    SYNTHESIZING = "synthesizing"
    PROBING_DURATION = "probing_duration"
    SYNTHESIZING_SUBTITLES = "synthesizing_subtitles"
    STAGING_RESOURCES = "staging_resources"
    ENCODING = "encoding"
    READING_OUTPUT = "reading_output"
    CLEANING_UP = "cleaning_up"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStage.SUCCEEDED, PipelineStage.FAILED)


@dataclass(frozen=True)
class CaptionCue:
    """One timed caption entry. Times are seconds from the start of the audio."""

    index: int
    start: float
    end: float
    text: str

    @property
    def words(self) -> list[str]:
        return self.text.split()

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class CustomAsset:
    """A user-supplied background video that bypasses rotation."""

    filename: str
    data: bytes = field(repr=False)
    content_type: str = "video/mp4"

    @property
    def is_video(self) -> bool:
        return self.content_type.lower().startswith("video/")

    @classmethod
    def from_path(cls, path: Path) -> "CustomAsset":
        """Load a custom asset from disk, guessing the content type from the suffix."""
        path = Path(path)
        content_type = VIDEO_CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream")
        return cls(filename=path.name, data=path.read_bytes(), content_type=content_type)


VIDEO_CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
    ".avi": "video/x-msvideo",
}


@dataclass
class ReelRequest:
    """Input for one pipeline run."""

    script: str
    category: AssetCategory = AssetCategory.SATISFYING
    custom_asset: Optional[CustomAsset] = None
    # Caller-edited SRT text; replaces the synthesized cues when set
    captions: Optional[str] = None


@dataclass
class ReelResult:
    """Output of a successful run."""

    video: bytes = field(repr=False)
    captions: str
    cues: list[CaptionCue]
    audio_duration: float
    background: str

    def save(self, video_path: Path) -> tuple[Path, Path]:
        """Write the video and a sibling ``.srt`` caption file.

        Returns:
            (video_path, captions_path)
        """
        video_path = Path(video_path)
        video_path.parent.mkdir(parents=True, exist_ok=True)
        video_path.write_bytes(self.video)
        captions_path = video_path.with_suffix(".srt")
        captions_path.write_text(self.captions, encoding="utf-8")
        return video_path, captions_path


@dataclass(frozen=True)
class ProgressEvent:
    """Progress notification emitted while a run is in flight."""

    progress: int
    stage: PipelineStage
    message: Optional[str] = None


@dataclass
class PipelineRun:
    """State of a single pipeline invocation.

    Owned by the orchestrator while the run is in flight. Once the run
    reaches ``SUCCEEDED`` or ``FAILED`` it is frozen: every mutator raises
    ``RuntimeError``.
    """

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    stage: PipelineStage = PipelineStage.IDLE
    progress: int = 0
    logs: list[str] = field(default_factory=list)
    warnings: list[CleanupWarning] = field(default_factory=list)
    result: Optional[ReelResult] = None
    error: Optional[ReelPipelineError] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.stage is PipelineStage.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.stage is PipelineStage.FAILED

    def _check_open(self) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Run {self.run_id} already finished ({self.stage.value})")

    def advance(self, stage: PipelineStage, progress: Optional[float] = None) -> None:
        """Move to ``stage`` and raise progress, never lowering it.

        Non-terminal progress is capped at 99; only ``succeed`` reaches 100.
        """
        self._check_open()
        if stage.is_terminal:
            raise ValueError("Use succeed() or fail() for terminal transitions")
        self.stage = stage
        if progress is not None:
            self.progress = max(self.progress, min(int(progress), 99))

    def log(self, message: str) -> None:
        self._check_open()
        self.logs.append(f"{datetime.now().strftime('%H:%M:%S')}: {message}")

    def warn(self, warning: CleanupWarning) -> None:
        self._check_open()
        self.warnings.append(warning)
        self.log(f"Warning: {warning}")

    def succeed(self, result: ReelResult) -> None:
        self._check_open()
        self.result = result
        self.progress = 100
        self.stage = PipelineStage.SUCCEEDED

    def fail(self, error: ReelPipelineError) -> None:
        self._check_open()
        if error.stage is None:
            error.stage = self.stage.value
        self.log(f"Error: {error.user_message}")
        self.error = error
        self.stage = PipelineStage.FAILED
