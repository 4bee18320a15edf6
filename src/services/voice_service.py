"""Voice Service - HTTP client for ElevenLabs text-to-speech."""

import logging
from typing import Callable, Optional

import httpx

logger = logging.getLogger(__name__)

ELEVENLABS_API_BASE = "https://api.elevenlabs.io/v1"
DEFAULT_STABILITY = 0.5
DEFAULT_SIMILARITY_BOOST = 0.5
DEFAULT_TIMEOUT = 120.0
ERROR_BODY_EXCERPT_CHARS = 300

# (bytes_received, total_bytes); total_bytes is 0 when the server sends no Content-Length
DownloadProgress = Callable[[int, int], None]


class VoiceServiceError(Exception):
    """Error from the voice synthesis provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class VoiceService:
    """Streams narration audio from the ElevenLabs text-to-speech endpoint."""

    def __init__(
        self,
        api_key: str,
        voice_id: str,
        api_base: str = ELEVENLABS_API_BASE,
        stability: float = DEFAULT_STABILITY,
        similarity_boost: float = DEFAULT_SIMILARITY_BOOST,
        timeout: float = DEFAULT_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize voice service.

        Args:
            api_key: ElevenLabs API key, sent as ``xi-api-key``.
            voice_id: Voice to synthesize with.
            api_base: API root, without trailing slash.
            stability: ElevenLabs voice stability setting.
            similarity_boost: ElevenLabs similarity boost setting.
            timeout: Per-request timeout in seconds.
            client: Optional pre-built client (tests inject a mock transport).
        """
        self.api_key = api_key
        self.voice_id = voice_id
        self.api_base = api_base.rstrip("/")
        self.stability = stability
        self.similarity_boost = similarity_boost
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config: dict) -> "VoiceService":
        return cls(
            api_key=config["elevenlabs_api_key"] or "",
            voice_id=config["elevenlabs_voice_id"] or "",
            api_base=config["elevenlabs_api_base"],
            stability=config["voice_stability"],
            similarity_boost=config["voice_similarity_boost"],
            timeout=config["tts_timeout_seconds"],
        )

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/text-to-speech/{self.voice_id}"

    def build_payload(self, text: str) -> dict:
        return {
            "text": text,
            "voice_settings": {
                "stability": self.stability,
                "similarity_boost": self.similarity_boost,
            },
        }

    async def synthesize(
        self,
        text: str,
        on_progress: Optional[DownloadProgress] = None,
    ) -> bytes:
        """Generate narration audio for ``text``.

        Args:
            text: Script to narrate.
            on_progress: Called after every received chunk.

        Returns:
            The complete audio payload (MP3 from ElevenLabs).

        Raises:
            VoiceServiceError: On a non-2xx response or transport failure.
                Bytes received before the failure are discarded.
        """
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        logger.info(f"Requesting voiceover ({len(text)} chars, voice={self.voice_id})")

        try:
            async with self.client.stream(
                "POST", self.endpoint, json=self.build_payload(text), headers=headers
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode(errors="replace")
                    raise VoiceServiceError(
                        f"Voiceover generation failed: HTTP {response.status_code} "
                        f"{body[:ERROR_BODY_EXCERPT_CHARS]}",
                        status_code=response.status_code,
                    )

                total = _content_length(response)
                received = 0
                chunks: list[bytes] = []
                async for chunk in response.aiter_bytes():
                    chunks.append(chunk)
                    received += len(chunk)
                    if on_progress:
                        on_progress(received, total)
        except httpx.TimeoutException as e:
            raise VoiceServiceError(f"Voiceover request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise VoiceServiceError(f"Voiceover request failed: {e}") from e

        audio = b"".join(chunks)
        if not audio:
            raise VoiceServiceError("Voiceover response was empty")

        logger.info(f"Voiceover received: {len(audio)} bytes")
        return audio

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()


def _content_length(response: httpx.Response) -> int:
    try:
        return int(response.headers.get("Content-Length", "0"))
    except ValueError:
        return 0
