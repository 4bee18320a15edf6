"""Reel generation pipeline.

Turns a script into a captioned vertical video:

1. Select a background clip (rotation or custom upload)
2. Synthesize narration
3. Measure the narration length
4. Time captions against it
5. Stage video, audio and captions into the media engine
6. Encode once with burned-in captions
7. Read the result back
8. Release everything staged, on success and failure alike

Each run is a fresh ``PipelineRun``. ``run`` streams ``ProgressEvent``s and
ends with the terminal run; ``generate`` is the callback flavour.
"""

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Union

from reel_agent.asset_rotation import AssetRotationSelector
from reel_agent.audio_probe import detect_audio_format, probe_duration
from reel_agent.errors import (
    AssetFetchFailed,
    AudioDecodeFailed,
    CaptionTrackInvalid,
    CleanupWarning,
    EmptyScript,
    EngineExecutionFailed,
    EngineInitFailed,
    EngineStagingFailed,
    ReadbackFailed,
    ReelPipelineError,
    SynthesisFailed,
)
from reel_agent.media_engine import MediaEngine
from reel_agent.models import (
    CaptionCue,
    PipelineRun,
    PipelineStage,
    ProgressEvent,
    ReelRequest,
    ReelResult,
)
from reel_agent.subtitle_engine import SubtitleEngine
from services.voice_service import VoiceService, VoiceServiceError
from utils.config import DEFAULT_CAPTION_STYLE
from utils.logging import clear_run_context, set_run_context, set_run_stage
from utils.progress import ProgressSlice

logger = logging.getLogger(__name__)

STAGE_SLICES = {
    PipelineStage.SELECTING_ASSET: ProgressSlice(5, 10),
    PipelineStage.SYNTHESIZING: ProgressSlice(10, 30),
    PipelineStage.PROBING_DURATION: ProgressSlice(30, 35),
    PipelineStage.SYNTHESIZING_SUBTITLES: ProgressSlice(35, 40),
    PipelineStage.STAGING_RESOURCES: ProgressSlice(40, 50),
    PipelineStage.ENCODING: ProgressSlice(50, 95),
    PipelineStage.READING_OUTPUT: ProgressSlice(95, 98),
    PipelineStage.CLEANING_UP: ProgressSlice(98, 99),
}

AUDIO_BITRATE = "192k"
DEFAULT_PRESET = "ultrafast"
DEFAULT_CRF = 23

AUDIO_EXTENSIONS = {"wav": "wav", "mp3": "mp3", "ogg": "ogg"}

# Keep references to in-flight runs so they finish even if the caller stops listening
_background_tasks: set = set()

_RUN_FINISHED = object()

EventSink = Callable[[object], None]


# Taxonomy class used when a collaborator raises something unexpected
STAGE_ERRORS = {
    PipelineStage.SELECTING_ASSET: AssetFetchFailed,
    PipelineStage.SYNTHESIZING: SynthesisFailed,
    PipelineStage.PROBING_DURATION: AudioDecodeFailed,
    PipelineStage.SYNTHESIZING_SUBTITLES: CaptionTrackInvalid,
    PipelineStage.ENCODING: EngineExecutionFailed,
    PipelineStage.READING_OUTPUT: ReadbackFailed,
}


def wrap_unexpected(error: Exception, stage: PipelineStage) -> ReelPipelineError:
    """Turn a non-pipeline exception into the failing stage's pipeline error."""
    if stage is PipelineStage.STAGING_RESOURCES:
        # Opening the engine and staging share this stage
        error_class = EngineInitFailed if isinstance(error, OSError) else EngineStagingFailed
    else:
        error_class = STAGE_ERRORS.get(stage, ReelPipelineError)
    return error_class(
        f"{error_class.default_message}: {error}",
        stage=stage.value,
        cause=error,
    )


def build_encode_args(
    video: str,
    audio: str,
    subtitles: str,
    output: str,
    caption_style: str = DEFAULT_CAPTION_STYLE,
    preset: str = DEFAULT_PRESET,
    crf: int = DEFAULT_CRF,
) -> list[str]:
    """Single-pass encode: background video, narration and burned-in captions.

    Takes the first video stream of the background and the narration audio,
    truncates to the shorter of the two and moves the index to the front of
    the MP4 for streaming playback.
    """
    return [
        "-i", video,
        "-i", audio,
        "-c:v", "libx264",
        "-preset", preset,
        "-crf", str(crf),
        "-c:a", "aac",
        "-b:a", AUDIO_BITRATE,
        "-vf", f"subtitles={subtitles}:force_style='{caption_style}'",
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-shortest",
        "-movflags", "+faststart",
        output,
    ]


class _ResourceNames:
    """Working-set names for one run, prefixed with the run id."""

    def __init__(self, run_id: str, video_suffix: str, audio_extension: str):
        self.video = f"{run_id}_input{video_suffix}"
        self.audio = f"{run_id}_audio.{audio_extension}"
        self.subtitles = f"{run_id}_subtitles.srt"
        self.output = f"{run_id}_output.mp4"


class ReelOrchestrator:
    """Runs the reel pipeline against injected collaborators.

    The media engine is owned by the caller and may be shared by many
    orchestrators and runs. It is opened lazily on first use, and runs hold
    ``engine.lock`` from staging through cleanup so their working sets never
    interleave.
    """

    def __init__(
        self,
        selector: AssetRotationSelector,
        voice: VoiceService,
        engine: MediaEngine,
        subtitle_engine: Optional[SubtitleEngine] = None,
        caption_style: str = DEFAULT_CAPTION_STYLE,
        video_preset: str = DEFAULT_PRESET,
        video_crf: int = DEFAULT_CRF,
    ):
        self.selector = selector
        self.voice = voice
        self.engine = engine
        self.subtitles = subtitle_engine or SubtitleEngine()
        self.caption_style = caption_style
        self.video_preset = video_preset
        self.video_crf = video_crf

    @classmethod
    def from_config(
        cls,
        config: dict,
        selector: AssetRotationSelector,
        voice: VoiceService,
        engine: MediaEngine,
    ) -> "ReelOrchestrator":
        return cls(
            selector,
            voice,
            engine,
            caption_style=config["caption_style"],
            video_preset=config["video_preset"],
            video_crf=config["video_crf"],
        )

    async def run(self, request: ReelRequest) -> AsyncIterator[Union[ProgressEvent, PipelineRun]]:
        """Run the pipeline, yielding progress events and finally the terminal run.

        There is no cancellation: once started the run proceeds to a terminal
        state even if the caller stops iterating.
        """
        pipeline_run = PipelineRun()
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(self._drive(request, pipeline_run, queue.put_nowait))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

        while True:
            event = await queue.get()
            if event is _RUN_FINISHED:
                break
            yield event

        # Re-raises anything that is not a pipeline failure
        await task
        yield pipeline_run

    async def generate(
        self,
        request: ReelRequest,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> PipelineRun:
        """Run the pipeline to completion and return the terminal run."""
        finished: Optional[PipelineRun] = None
        async for item in self.run(request):
            if isinstance(item, PipelineRun):
                finished = item
            elif on_progress:
                on_progress(item)
        return finished

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _drive(self, request: ReelRequest, run: PipelineRun, emit: EventSink) -> None:
        set_run_context(run.run_id, run.stage.value)
        try:
            try:
                result = await self._execute(request, run, emit)
            except ReelPipelineError as e:
                self._fail(run, e, emit)
            except Exception as e:
                logger.exception(f"Unexpected error during {run.stage.value}")
                self._fail(run, wrap_unexpected(e, run.stage), emit)
            else:
                self._log(run, "Video generation completed successfully")
                run.succeed(result)
                emit(ProgressEvent(run.progress, run.stage, "Video generation completed successfully"))
        finally:
            emit(_RUN_FINISHED)
            clear_run_context()

    @staticmethod
    def _fail(run: PipelineRun, error: ReelPipelineError, emit: EventSink) -> None:
        logger.error(f"Run {run.run_id} failed during {error.stage or run.stage.value}: {error}")
        run.fail(error)
        emit(ProgressEvent(run.progress, run.stage, error.user_message))

    async def _execute(self, request: ReelRequest, run: PipelineRun, emit: EventSink) -> ReelResult:
        def advance(stage: PipelineStage, message: Optional[str] = None) -> None:
            run.advance(stage, STAGE_SLICES[stage].start)
            set_run_stage(stage.value)
            if message:
                self._log(run, message)
            emit(ProgressEvent(run.progress, stage, message))

        def report(stage: PipelineStage, progress: float) -> None:
            before = run.progress
            run.advance(stage, progress)
            if run.progress != before:
                emit(ProgressEvent(run.progress, stage))

        script = (request.script or "").strip()
        if not script:
            raise EmptyScript()

        # Asset selection
        advance(PipelineStage.SELECTING_ASSET, "Initializing video generation process")
        background, video_bytes = await self._select_background(request)
        report(PipelineStage.SELECTING_ASSET, STAGE_SLICES[PipelineStage.SELECTING_ASSET].end)
        self._log(run, f"Background video selected: {background}")

        # Narration
        advance(PipelineStage.SYNTHESIZING, "Generating voiceover audio")
        synthesis = STAGE_SLICES[PipelineStage.SYNTHESIZING]
        try:
            audio = await self.voice.synthesize(
                script,
                on_progress=lambda done, total: report(
                    PipelineStage.SYNTHESIZING, synthesis.scale_ratio(done, total)
                ),
            )
        except VoiceServiceError as e:
            raise SynthesisFailed(str(e), cause=e) from e

        # Duration
        advance(PipelineStage.PROBING_DURATION, "Processing audio metadata")
        duration = await asyncio.to_thread(probe_duration, audio)

        # Captions
        advance(PipelineStage.SYNTHESIZING_SUBTITLES)
        cues = self._build_cues(script, duration, request.captions)
        captions = self.subtitles.to_srt(cues)
        self._log(run, f"Subtitle file generated ({len(cues)} cues)")

        # Engine work
        advance(PipelineStage.STAGING_RESOURCES, "Initializing video processing engine")
        if not self.engine.is_open:
            await self.engine.open()

        names = _ResourceNames(
            run.run_id,
            Path(background).suffix.lower() or ".mp4",
            AUDIO_EXTENSIONS.get(detect_audio_format(audio), "mp3"),
        )
        staged: list[str] = []

        async with self.engine.lock:
            try:
                await self._stage_resources(
                    {
                        names.video: video_bytes,
                        names.audio: audio,
                        names.subtitles: captions,
                    },
                    staged,
                    lambda fraction: report(
                        PipelineStage.STAGING_RESOURCES,
                        STAGE_SLICES[PipelineStage.STAGING_RESOURCES].scale(fraction),
                    ),
                )

                advance(PipelineStage.ENCODING, "Processing video with audio and subtitles")
                staged.append(names.output)
                encoding = STAGE_SLICES[PipelineStage.ENCODING]
                await self.engine.execute(
                    build_encode_args(
                        names.video,
                        names.audio,
                        names.subtitles,
                        names.output,
                        caption_style=self.caption_style,
                        preset=self.video_preset,
                        crf=self.video_crf,
                    ),
                    on_progress=lambda fraction: report(
                        PipelineStage.ENCODING, encoding.scale(fraction)
                    ),
                    expected_duration=duration,
                )

                advance(PipelineStage.READING_OUTPUT, "Finalizing video output")
                video = await self.engine.read(names.output)
            except BaseException as e:
                error = e
                if isinstance(e, Exception) and not isinstance(e, ReelPipelineError):
                    logger.exception(f"Unexpected error during {run.stage.value}")
                    error = wrap_unexpected(e, run.stage)
                if isinstance(error, ReelPipelineError) and error.stage is None:
                    error.stage = run.stage.value
                await self._cleanup(run, staged, emit, failed=True)
                if error is e:
                    raise
                raise error from e
            await self._cleanup(run, staged, emit, failed=False)

        return ReelResult(
            video=video,
            captions=captions,
            cues=cues,
            audio_duration=duration,
            background=background,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _select_background(self, request: ReelRequest) -> tuple[str, bytes]:
        """Return (display name, video bytes) for the run's background."""
        custom = request.custom_asset
        if custom is not None:
            if not custom.is_video:
                raise AssetFetchFailed("Please upload a video file")
            if not custom.data:
                raise AssetFetchFailed(f"Uploaded video {custom.filename} is empty")
            return custom.filename, custom.data

        reference = self.selector.select(request.category)
        path = Path(reference)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise AssetFetchFailed(f"Failed to load background video {path.name}: {e}", cause=e) from e
        return path.name, data

    def _build_cues(self, script: str, duration: float, edited: Optional[str]) -> list[CaptionCue]:
        if edited is None:
            return self.subtitles.synthesize(script, duration)
        try:
            return self.subtitles.parse_srt(edited, audio_duration=duration)
        except ValueError as e:
            raise CaptionTrackInvalid(str(e), cause=e) from e

    async def _stage_resources(
        self,
        resources: dict[str, Union[bytes, str]],
        staged: list[str],
        on_progress: Callable[[float], None],
    ) -> None:
        """Stage independent resources concurrently.

        Names that were written successfully are appended to ``staged`` so
        cleanup can release them even when a sibling fails.
        """

        async def put(name: str, data: Union[bytes, str]) -> None:
            await self.engine.stage(name, data)
            staged.append(name)
            on_progress(len(staged) / len(resources))

        results = await asyncio.gather(
            *(put(name, data) for name, data in resources.items()),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if not failures:
            return

        first = failures[0]
        if isinstance(first, ReelPipelineError) or not isinstance(first, Exception):
            raise first
        raise EngineStagingFailed(f"Failed to stage resources: {first}", cause=first) from first

    async def _cleanup(
        self,
        run: PipelineRun,
        names: list[str],
        emit: EventSink,
        failed: bool,
    ) -> None:
        """Release staged resources. Problems become warnings, never failures."""
        set_run_stage(PipelineStage.CLEANING_UP.value)
        # A failing run keeps its last progress value
        run.advance(
            PipelineStage.CLEANING_UP,
            None if failed else STAGE_SLICES[PipelineStage.CLEANING_UP].start,
        )
        emit(ProgressEvent(run.progress, PipelineStage.CLEANING_UP))
        if not names:
            return

        try:
            failures = await self.engine.release(names)
        except Exception as e:
            failures = {name: str(e) for name in names}

        for name, message in failures.items():
            warning = CleanupWarning(resource=name, message=message)
            logger.warning(str(warning))
            run.warn(warning)

    @staticmethod
    def _log(run: PipelineRun, message: str) -> None:
        logger.info(message)
        run.log(message)
