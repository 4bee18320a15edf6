"""Configuration loading and validation for reelforge."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Get the project root directory (parent of src)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Load environment variables from .env file in project root
load_dotenv(PROJECT_ROOT / ".env")

DEFAULT_CAPTION_STYLE = (
    "FontName=Arial,FontSize=24,PrimaryColour=&HFFFFFF,"
    "OutlineColour=&H000000,Outline=2,BorderStyle=3,Alignment=2"
)


def load_config() -> dict:
    """Load configuration from environment variables."""

    # Helper function to resolve paths relative to project root
    def resolve_path(path: str | None, default_relative: str) -> str:
        if not path:
            return str(PROJECT_ROOT / default_relative)
        if Path(path).is_absolute():
            return path
        return str(PROJECT_ROOT / path)

    config = {
        # Voice synthesis (ElevenLabs)
        "elevenlabs_api_key": os.getenv("ELEVENLABS_API_KEY"),
        "elevenlabs_voice_id": os.getenv("ELEVENLABS_VOICE_ID"),
        "elevenlabs_api_base": os.getenv("ELEVENLABS_API_BASE", "https://api.elevenlabs.io/v1"),
        "voice_stability": float(os.getenv("VOICE_STABILITY", "0.5")),
        "voice_similarity_boost": float(os.getenv("VOICE_SIMILARITY_BOOST", "0.5")),
        "tts_timeout_seconds": float(os.getenv("TTS_TIMEOUT_SECONDS", "120")),
        # Background footage: <assets_dir>/<category>/*.mp4
        "assets_dir": resolve_path(os.getenv("ASSETS_DIR"), "assets"),
        "output_dir": resolve_path(os.getenv("OUTPUT_DIR"), "output"),
        # Media engine
        "ffmpeg_binary": os.getenv("FFMPEG_BINARY", "ffmpeg"),
        "engine_timeout_seconds": float(os.getenv("ENGINE_TIMEOUT_SECONDS", "600")),
        "video_preset": os.getenv("VIDEO_PRESET", "ultrafast"),
        "video_crf": int(os.getenv("VIDEO_CRF", "23")),
        "caption_style": os.getenv("CAPTION_STYLE", DEFAULT_CAPTION_STYLE),
        # Logging
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "log_json": os.getenv("LOG_JSON", "false").lower() == "true",
    }

    return config


def validate_config(config: dict) -> list[str]:
    """Validate configuration and return list of errors."""
    errors = []

    if not config.get("elevenlabs_api_key"):
        errors.append("ELEVENLABS_API_KEY is required")
    if not config.get("elevenlabs_voice_id"):
        errors.append("ELEVENLABS_VOICE_ID is required")

    assets_dir = config.get("assets_dir")
    if not assets_dir or not Path(assets_dir).is_dir():
        errors.append(f"Background assets directory not found: {assets_dir}")

    output_dir = Path(config.get("output_dir") or PROJECT_ROOT / "output")
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except Exception as e:
        errors.append(f"Cannot create output folder: {e}")

    if not 0 <= config.get("video_crf", 23) <= 51:
        errors.append("VIDEO_CRF must be between 0 and 51")

    return errors
