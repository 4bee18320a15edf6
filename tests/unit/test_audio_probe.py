"""Unit tests for narration duration probing."""

from unittest.mock import Mock, patch

import pytest

from conftest import make_wav_bytes
from reel_agent.audio_probe import detect_audio_format, probe_duration
from reel_agent.errors import AudioDecodeFailed


@pytest.mark.unit
class TestDetectAudioFormat:
    def test_wav(self):
        assert detect_audio_format(make_wav_bytes(0.1)) == "wav"

    def test_mp3_with_id3(self):
        assert detect_audio_format(b"ID3" + b"\x00" * 20) == "mp3"

    def test_mp3_frame_sync(self):
        assert detect_audio_format(b"\xff\xfb\x90\x00") == "mp3"

    def test_ogg(self):
        assert detect_audio_format(b"OggS\x00\x02") == "ogg"

    def test_unknown(self):
        assert detect_audio_format(b"hello") == "bin"


@pytest.mark.unit
class TestProbeDuration:
    def test_wav_duration(self):
        assert probe_duration(make_wav_bytes(5.0)) == pytest.approx(5.0)

    def test_wav_duration_other_rate(self):
        assert probe_duration(make_wav_bytes(1.25, framerate=16000)) == pytest.approx(1.25)

    def test_empty_payload_fails(self):
        with pytest.raises(AudioDecodeFailed, match="empty"):
            probe_duration(b"")

    def test_zero_length_wav_fails(self):
        with pytest.raises(AudioDecodeFailed, match="no playable length"):
            probe_duration(make_wav_bytes(0.0))

    def test_truncated_wav_fails(self):
        payload = make_wav_bytes(1.0)[:20]

        with pytest.raises(AudioDecodeFailed) as exc_info:
            probe_duration(payload)

        assert exc_info.value.cause is not None

    def test_ogg_uses_mutagen_sniffing(self):
        fake_audio = Mock()
        fake_audio.info.length = 4.2

        with patch("reel_agent.audio_probe.mutagen.File", return_value=fake_audio) as mutagen_file:
            duration = probe_duration(b"OggS" + b"\x00" * 64)

        assert duration == pytest.approx(4.2)
        mutagen_file.assert_called_once()

    def test_unrecognized_format_fails(self):
        with patch("reel_agent.audio_probe.mutagen.File", return_value=None):
            with pytest.raises(AudioDecodeFailed, match="Unrecognized"):
                probe_duration(b"definitely not audio")


def make_mp3_bytes(frames: int) -> bytes:
    """Bare MPEG-1 Layer III stream: 128 kbps, 44.1 kHz, 417-byte frames."""
    return (b"\xff\xfb\x90\x00" + b"\x00" * 413) * frames


# Empty ID3v2.4 tag holding 10 bytes of padding
ID3_HEADER = b"ID3\x04\x00\x00\x00\x00\x00\x0a" + b"\x00" * 10


@pytest.mark.unit
class TestProbeMp3:
    """Real MPEG decoding, the format the voice provider returns."""

    def test_bare_frame_stream(self):
        audio = make_mp3_bytes(383)

        assert detect_audio_format(audio) == "mp3"
        assert probe_duration(audio) == pytest.approx(10.0, abs=0.1)

    def test_stream_with_id3_tag(self):
        audio = ID3_HEADER + make_mp3_bytes(383)

        assert detect_audio_format(audio) == "mp3"
        assert probe_duration(audio) == pytest.approx(10.0, abs=0.1)

    def test_duration_scales_with_frames(self):
        short = probe_duration(make_mp3_bytes(100))
        long = probe_duration(make_mp3_bytes(400))

        assert long == pytest.approx(short * 4, rel=0.05)

    def test_id3_tag_without_frames_fails(self):
        with pytest.raises(AudioDecodeFailed) as exc_info:
            probe_duration(ID3_HEADER)

        assert exc_info.value.cause is not None
