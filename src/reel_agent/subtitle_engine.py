"""Caption timing for narrated reels.

Spreads the words of a script evenly over the narration and groups them
into three-word cues. Cue boundaries are carried forward from one cue to
the next so adjacent cues share the exact same boundary value. The SRT
serialization here is the caption track consumed by the FFmpeg
``subtitles`` filter.
"""

import logging
import re

import pysubs2

from reel_agent.models import CaptionCue

logger = logging.getLogger(__name__)

WORDS_PER_CUE = 3

# Largest time representable as HH:MM:SS,mmm with two-digit hours
MAX_TIMESTAMP_SECONDS = 359999.999

TIMESTAMP_PATTERN = re.compile(r"^(\d{2,}):([0-5]\d):([0-5]\d),(\d{3})$")


class SubtitleEngine:
    """Builds, serializes and parses caption cues."""

    def __init__(self, words_per_cue: int = WORDS_PER_CUE) -> None:
        if words_per_cue < 1:
            raise ValueError("words_per_cue must be positive")
        self.words_per_cue = words_per_cue

    def synthesize(self, text: str, audio_duration: float) -> list[CaptionCue]:
        """Split ``text`` into timed cues covering ``audio_duration`` seconds.

        Groups that would serialize to less than one millisecond are folded
        into the following cue (or the previous one at the end of the script),
        so very dense scripts get fewer, wider cues.

        Args:
            text: Narration script. Words are split on any whitespace.
            audio_duration: Measured length of the narration in seconds.

        Returns:
            Cues numbered from 1. Empty when the text has no words.

        Raises:
            ValueError: If ``audio_duration`` is not positive.
        """
        if audio_duration <= 0:
            raise ValueError(f"audio_duration must be positive, got {audio_duration}")

        words = text.split()
        if not words:
            return []

        words_per_second = len(words) / audio_duration
        cues: list[CaptionCue] = []
        pending: list[str] = []
        start = 0.0
        for i in range(0, len(words), self.words_per_cue):
            pending.extend(words[i : i + self.words_per_cue])
            end = min((i + self.words_per_cue) / words_per_second, audio_duration)
            is_last = i + self.words_per_cue >= len(words)

            # A cue must span at least one serialized millisecond
            if _to_ms(end) <= _to_ms(start):
                if not is_last:
                    continue
                if cues:
                    previous = cues.pop()
                    pending = previous.words + pending
                    start = previous.start

            cues.append(
                CaptionCue(
                    index=len(cues) + 1,
                    start=start,
                    end=end,
                    text=" ".join(pending),
                )
            )
            pending = []
            start = end

        logger.debug(
            "Synthesized %d cues for %d words over %.3fs",
            len(cues), len(words), audio_duration,
        )
        return cues

    # ------------------------------------------------------------------
    # SRT serialization
    # ------------------------------------------------------------------

    def to_srt(self, cues: list[CaptionCue]) -> str:
        """Serialize cues as SRT text (blank line between cues)."""
        blocks = [
            f"{cue.index}\n"
            f"{format_timestamp(cue.start)} --> {format_timestamp(cue.end)}\n"
            f"{cue.text}\n"
            for cue in cues
        ]
        return "\n".join(blocks)

    def parse_srt(self, content: str, audio_duration: float | None = None) -> list[CaptionCue]:
        """Parse an edited SRT track back into cues.

        Cues are renumbered from 1 in time order. When ``audio_duration`` is
        given, cue ends are clamped to it and cues left empty are dropped.

        Raises:
            ValueError: If the content cannot be parsed or has no cues.
        """
        try:
            subs = pysubs2.SSAFile.from_string(content, format_="srt")
        except Exception as e:
            raise ValueError(f"Unparsable caption track: {e}") from e

        limit_ms = None if audio_duration is None else round(audio_duration * 1000)
        cues: list[CaptionCue] = []
        for event in sorted(subs.events, key=lambda ev: (ev.start, ev.end)):
            text = " ".join(event.plaintext.split())
            end_ms = event.end if limit_ms is None else min(event.end, limit_ms)
            if not text or event.start >= end_ms:
                continue
            cues.append(
                CaptionCue(
                    index=len(cues) + 1,
                    start=event.start / 1000,
                    end=end_ms / 1000,
                    text=text,
                )
            )

        if not cues:
            raise ValueError("Caption track contains no cues")
        return cues


def format_timestamp(seconds: float) -> str:
    """Format seconds as ``HH:MM:SS,mmm``, rounded to the nearest millisecond."""
    if seconds < 0:
        raise ValueError(f"Timestamp cannot be negative: {seconds}")
    total_ms = _to_ms(seconds)
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def parse_timestamp(value: str) -> float:
    """Parse ``HH:MM:SS,mmm`` into seconds."""
    match = TIMESTAMP_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid timestamp: {value!r}")
    hours, minutes, secs, millis = (int(part) for part in match.groups())
    total_ms = ((hours * 60 + minutes) * 60 + secs) * 1000 + millis
    return total_ms / 1000


def _to_ms(seconds: float) -> int:
    return round(seconds * 1000)
