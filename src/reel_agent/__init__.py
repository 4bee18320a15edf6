"""Reel Agent - script-to-short-video generation pipeline."""

from .models import (
    AssetCategory,
    CaptionCue,
    CustomAsset,
    PipelineRun,
    PipelineStage,
    ProgressEvent,
    ReelRequest,
    ReelResult,
)
from .errors import (
    AssetFetchFailed,
    AudioDecodeFailed,
    CaptionTrackInvalid,
    CleanupWarning,
    EmptyScript,
    EngineExecutionFailed,
    EngineInitFailed,
    EngineStagingFailed,
    NoAssetsAvailable,
    ReadbackFailed,
    ReelPipelineError,
    SynthesisFailed,
)
from .subtitle_engine import SubtitleEngine, format_timestamp, parse_timestamp
from .asset_rotation import AssetRotationSelector, discover_catalog
from .audio_probe import probe_duration
from .media_engine import FFmpegMediaEngine, MediaEngine
from .orchestrator import ReelOrchestrator, build_encode_args

__all__ = [
    "AssetCategory",
    "CaptionCue",
    "CustomAsset",
    "PipelineRun",
    "PipelineStage",
    "ProgressEvent",
    "ReelRequest",
    "ReelResult",
    "ReelPipelineError",
    "EmptyScript",
    "NoAssetsAvailable",
    "AssetFetchFailed",
    "SynthesisFailed",
    "AudioDecodeFailed",
    "CaptionTrackInvalid",
    "EngineInitFailed",
    "EngineStagingFailed",
    "EngineExecutionFailed",
    "ReadbackFailed",
    "CleanupWarning",
    "SubtitleEngine",
    "format_timestamp",
    "parse_timestamp",
    "AssetRotationSelector",
    "discover_catalog",
    "probe_duration",
    "MediaEngine",
    "FFmpegMediaEngine",
    "ReelOrchestrator",
    "build_encode_args",
]
