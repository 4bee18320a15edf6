"""Measure the duration of synthesized narration."""

import io
import logging
import wave

import mutagen
from mutagen.mp3 import MP3

from reel_agent.errors import AudioDecodeFailed

logger = logging.getLogger(__name__)


def detect_audio_format(audio_bytes: bytes) -> str:
    """Detect audio format from magic bytes."""
    if len(audio_bytes) >= 12 and audio_bytes[:4] == b"RIFF" and audio_bytes[8:12] == b"WAVE":
        return "wav"
    if audio_bytes[:3] == b"ID3" or (
        len(audio_bytes) >= 2
        and audio_bytes[0] == 0xFF
        and (audio_bytes[1] & 0xE0) == 0xE0
    ):
        return "mp3"
    if audio_bytes[:4] == b"OggS":
        return "ogg"
    return "bin"


def probe_duration(audio_bytes: bytes) -> float:
    """Return the duration of an audio payload in seconds.

    WAV is read with the ``wave`` module, MP3 with mutagen's MPEG parser
    (bare frame streams carry no tag for format sniffing to go on) and
    anything else through ``mutagen.File``.

    Raises:
        AudioDecodeFailed: If the payload cannot be decoded or has no length.
    """
    if not audio_bytes:
        raise AudioDecodeFailed("Voiceover audio is empty")

    audio_format = detect_audio_format(audio_bytes)
    try:
        if audio_format == "wav":
            duration = _wav_duration(audio_bytes)
        elif audio_format == "mp3":
            duration = MP3(io.BytesIO(audio_bytes)).info.length
        else:
            duration = _mutagen_duration(audio_bytes)
    except AudioDecodeFailed:
        raise
    except Exception as e:
        raise AudioDecodeFailed(
            f"Could not decode {audio_format} voiceover: {e}", cause=e
        ) from e

    if duration <= 0:
        raise AudioDecodeFailed(f"Voiceover has no playable length ({duration:.3f}s)")

    logger.info("Measured %s voiceover duration: %.3fs", audio_format, duration)
    return duration


def _wav_duration(audio_bytes: bytes) -> float:
    with wave.open(io.BytesIO(audio_bytes), "rb") as wav_file:
        framerate = wav_file.getframerate()
        if framerate <= 0:
            return 0.0
        return wav_file.getnframes() / framerate


def _mutagen_duration(audio_bytes: bytes) -> float:
    audio = mutagen.File(io.BytesIO(audio_bytes))
    if audio is None or audio.info is None:
        raise AudioDecodeFailed("Unrecognized voiceover audio format")
    return float(audio.info.length)
