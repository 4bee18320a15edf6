"""Error taxonomy for the reel generation pipeline.

Every stage failure is raised as a ``ReelPipelineError`` subclass. The
orchestrator stamps the failing stage onto the error before the run is
marked failed, so callers get one terminal error with both the stage and
the underlying cause.
"""

from dataclasses import dataclass
from typing import Optional, Sequence


class ReelPipelineError(Exception):
    """Base class for all pipeline failures."""

    code = "reel.pipeline_failed"
    default_message = "Failed to generate video"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        stage: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message or self.default_message)
        self.stage = stage
        self.cause = cause

    @property
    def user_message(self) -> str:
        """Human-readable message suitable for display."""
        return str(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, stage={self.stage!r}, message={str(self)!r})"


class EmptyScript(ReelPipelineError):
    code = "reel.script.empty"
    default_message = "Please enter a script"


class NoAssetsAvailable(ReelPipelineError):
    code = "reel.asset.none_available"
    default_message = "No background videos available"


class AssetFetchFailed(ReelPipelineError):
    code = "reel.asset.fetch_failed"
    default_message = "Failed to load background video"


class SynthesisFailed(ReelPipelineError):
    code = "reel.voice.synthesis_failed"
    default_message = "Voiceover generation failed"


class AudioDecodeFailed(ReelPipelineError):
    code = "reel.audio.decode_failed"
    default_message = "Could not decode the generated voiceover"


class CaptionTrackInvalid(ReelPipelineError):
    code = "reel.captions.invalid"
    default_message = "Edited caption track contains no usable cues"


class EngineInitFailed(ReelPipelineError):
    code = "reel.engine.init_failed"
    default_message = "Video processing engine could not be started"


class EngineStagingFailed(ReelPipelineError):
    code = "reel.engine.staging_failed"
    default_message = "Failed to prepare files for video processing"


class EngineExecutionFailed(ReelPipelineError):
    """Raised when a transcoding command completes with a non-zero status."""

    code = "reel.engine.execution_failed"
    default_message = "Video processing failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        args: Sequence[str] = (),
        diagnostics: str = "",
        stage: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, stage=stage, cause=cause)
        self.instruction = list(args)
        self.diagnostics = diagnostics


class ReadbackFailed(ReelPipelineError):
    code = "reel.engine.readback_failed"
    default_message = "Failed to read the rendered video"


@dataclass(frozen=True)
class CleanupWarning:
    """A working-set resource that could not be released after a run."""

    resource: str
    message: str

    def __str__(self) -> str:
        return f"Failed to release {self.resource}: {self.message}"
