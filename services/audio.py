import logging

import requests

from services.config import Config

_logger = logging.getLogger("audio")

DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"
DEEPGRAM_MODEL = "nova-2"


def _extract_transcript(payload):
    try:
        return payload["results"]["channels"][0]["alternatives"][0]["transcript"] or ""
    except (KeyError, IndexError, TypeError):
        return ""


def transcribe(audio_buffer, mime_type="audio/webm", language="en", api_key=None):
    """
    Speech to text via Deepgram. Returns the transcript, or "" when the
    service is unconfigured, fails, or hears nothing.
    """
    key = api_key or Config.deepgram_api_key
    if not key:
        _logger.warning("Deepgram API key not configured")
        return ""
    if not audio_buffer:
        return ""

    try:
        response = requests.post(
            DEEPGRAM_LISTEN_URL,
            params={"model": DEEPGRAM_MODEL, "language": "hi" if language == "hi" else "en"},
            headers={"Authorization": f"Token {key}", "Content-Type": mime_type or "audio/webm"},
            data=audio_buffer,
            timeout=Config.http_timeout,
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        _logger.error("Error transcribing audio: %s", exc)
        return ""

    return _extract_transcript(response.json()).strip()
