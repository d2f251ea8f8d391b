import logging
from typing import Optional

import openai
from openai import OpenAI

from lib.config import Settings
from lib.error_handler import PermanentExternalError, TransientExternalError

logger = logging.getLogger(__name__)

class WhisperClient:
    def __init__(self, client: OpenAI, model: str = "whisper-1", language: Optional[str] = "en"):
        self.client = client
        self.model = model
        self.language = language

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[OpenAI] = None) -> "WhisperClient":
        if client is None:
            client = OpenAI(api_key=settings.openai_api_key, timeout=settings.http_timeout_seconds, max_retries=0)
        return cls(client, model=settings.whisper_model, language=settings.transcription_language or None)

    def transcribe_file(self, audio_file_path: str) -> str:
        """
        Transcribe audio file using OpenAI Whisper API
        """
        options = {
            "model": self.model,
            "response_format": "text",
            "temperature": 0.2,
        }
        if self.language:
            options["language"] = self.language

        try:
            with open(audio_file_path, 'rb') as audio_file:
                transcript = self.client.audio.transcriptions.create(file=audio_file, **options)
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise PermanentExternalError(f"OpenAI rejected the API key: {str(e)}", kind="unauthorized") from e
        except (openai.APIConnectionError, openai.RateLimitError, openai.InternalServerError) as e:
            # APITimeoutError is a subclass of APIConnectionError
            raise TransientExternalError(f"Transcription request failed: {str(e)}", kind="provider_unavailable") from e
        except openai.APIStatusError as e:
            if e.status_code >= 500:
                raise TransientExternalError(f"Transcription request failed: {str(e)}", kind="provider_unavailable") from e
            raise PermanentExternalError(f"Transcription rejected: {str(e)}", kind="rejected") from e

        # response_format="text" returns a plain string; keep objects with .text working too
        text = transcript if isinstance(transcript, str) else getattr(transcript, "text", "")
        return (text or "").strip()
