import asyncio
import logging
import os
import re
import tempfile
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional, Tuple

import aiohttp

from lib.config import Settings
from lib.error_handler import (
    ExternalServiceError,
    PermanentExternalError,
    TranscriptionError,
    TransientExternalError,
)
from lib.openai_client import WhisperClient
from lib.retry import with_retry

logger = logging.getLogger(__name__)

class TranscriptionService:
    """Downloads a voice attachment and turns it into text with Whisper.

    The download (fetch phase) and the Whisper call (transcribe phase) are
    retried separately on transient failures. The downloaded audio lives in a
    private temp file that is removed on every exit path.
    """

    def __init__(
        self,
        whisper: WhisperClient,
        twilio_auth: Optional[Tuple[str, str]] = None,
        whatsapp_api_url: str = 'https://graph.facebook.com/v18.0',
        whatsapp_access_token: str = '',
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        sleep: Optional[Callable] = None,
    ):
        self.whisper = whisper
        self.twilio_auth = twilio_auth
        self.whatsapp_api_url = whatsapp_api_url.rstrip('/')
        self.whatsapp_access_token = whatsapp_access_token
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep
        logger.info(f"Transcription service initialized (model: {whisper.model}, retries: {max_retries})")

    @classmethod
    def from_settings(cls, settings: Settings, whisper: WhisperClient) -> "TranscriptionService":
        return cls(
            whisper,
            twilio_auth=settings.twilio_auth if settings.twilio_account_sid else None,
            whatsapp_api_url=settings.whatsapp_api_url,
            whatsapp_access_token=settings.whatsapp_access_token,
            timeout_seconds=settings.http_timeout_seconds,
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay,
        )

    def _retrying(self, func):
        return with_retry(self.max_retries, self.base_delay, sleep=self.sleep)(func)

    async def transcribe(self, media_ref: str, content_type: Optional[str] = None) -> str:
        """Return the transcript for a media URL or WhatsApp media id.

        Raises TranscriptionError carrying the failing phase and error kind.
        """
        if not media_ref:
            raise TranscriptionError("No media reference provided", kind="missing_media", phase="fetch")

        extension = self._get_extension_from_content_type(content_type)
        with self._temp_audio_file(media_ref, extension) as path:
            try:
                timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    await self._retrying(self._fetch_once)(session, media_ref, path)
            except ExternalServiceError as e:
                logger.error(f"Fetching media {media_ref} failed ({e.kind}): {e.message}")
                raise TranscriptionError(e.message, kind=e.kind, phase="fetch", retryable=e.retryable) from e

            size = os.path.getsize(path)
            logger.info(f"Audio file downloaded: {size} bytes")
            if size == 0:
                raise TranscriptionError("Downloaded audio file is empty", kind="empty_audio", phase="transcribe")

            try:
                text = await self._retrying(self._transcribe_once)(path)
            except ExternalServiceError as e:
                logger.error(f"Transcribing media {media_ref} failed ({e.kind}): {e.message}")
                raise TranscriptionError(e.message, kind=e.kind, phase="transcribe", retryable=e.retryable) from e

        if not text:
            raise TranscriptionError("Transcription returned no text", kind="empty_transcript", phase="transcribe")

        logger.info(f"Transcription complete: {text[:50]}...")
        return text

    @contextmanager
    def _temp_audio_file(self, media_ref: str, extension: str):
        name_part = re.sub(r'[^A-Za-z0-9_-]', '', media_ref.rstrip('/').rsplit('/', 1)[-1])[:64] or 'media'
        temp_file = tempfile.NamedTemporaryFile(
            prefix=f"journal_audio_{name_part}_{int(time.time() * 1000)}_",
            suffix=f".{extension}",
            delete=False,
        )
        temp_file.close()
        try:
            yield temp_file.name
        finally:
            try:
                os.unlink(temp_file.name)
            except FileNotFoundError:
                pass
            logger.debug(f"Removed temp audio file {temp_file.name}")

    async def _fetch_once(self, session: aiohttp.ClientSession, media_ref: str, path: str) -> None:
        try:
            url, request_kwargs = await self._resolve_media_url(session, media_ref)
            await self._download_to(session, url, path, **request_kwargs)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientExternalError(f"Network error fetching media: {str(e) or type(e).__name__}", kind="network") from e

    async def _transcribe_once(self, path: str) -> str:
        # The OpenAI SDK call blocks, keep it off the event loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.whisper.transcribe_file, path)

    async def _resolve_media_url(self, session: aiohttp.ClientSession, media_ref: str) -> Tuple[str, Dict[str, Any]]:
        """Turn a media reference into a downloadable URL plus the auth to fetch it with."""
        if media_ref.startswith(('http://', 'https://')):
            if self.twilio_auth:
                login, password = self.twilio_auth
                return media_ref, {'auth': aiohttp.BasicAuth(login=login, password=password)}
            return media_ref, {}

        if not self.whatsapp_access_token:
            raise PermanentExternalError("Missing WHATSAPP_ACCESS_TOKEN setting", kind="misconfigured")

        headers = {'Authorization': f"Bearer {self.whatsapp_access_token}"}
        async with session.get(f"{self.whatsapp_api_url}/{media_ref}", headers=headers) as response:
            self._raise_for_status(response.status, "media lookup")
            try:
                data = await response.json()
            except (aiohttp.ContentTypeError, ValueError) as e:
                # Non-JSON lookup replies are permanent
                raise PermanentExternalError(
                    f"Media lookup for {media_ref} did not return JSON", kind="malformed_media"
                ) from e

        url = data.get('url') if isinstance(data, dict) else None
        if not url:
            raise PermanentExternalError(f"No download URL for media {media_ref}", kind="malformed_media")
        return url, {'headers': headers}

    async def _download_to(self, session: aiohttp.ClientSession, url: str, path: str, **request_kwargs) -> None:
        logger.info("Downloading audio file...")
        async with session.get(url, allow_redirects=True, **request_kwargs) as response:
            self._raise_for_status(response.status, "audio download")
            audio_data = await response.read()

        # Overwrites whatever a failed earlier attempt left behind
        with open(path, 'wb') as audio_file:
            audio_file.write(audio_data)

    @staticmethod
    def _raise_for_status(status: int, what: str) -> None:
        if status == 200:
            return
        if status in (401, 403):
            raise PermanentExternalError(f"{what} was not authorized ({status})", kind="unauthorized")
        if status in (408, 429) or status >= 500:
            raise TransientExternalError(f"{what} failed with {status}", kind="provider_unavailable")
        raise PermanentExternalError(f"{what} failed with {status}", kind="rejected")

    def _get_extension_from_content_type(self, content_type: Optional[str]) -> str:
        """Convert content type to file extension"""
        content_type_map = {
            'audio/amr': 'amr',
            'audio/amr-wb': 'amr',
            'audio/mp3': 'mp3',
            'audio/mpeg': 'mp3',
            'audio/ogg': 'ogg',
            'audio/wav': 'wav',
            'audio/x-wav': 'wav',
            'audio/webm': 'webm',
            'audio/aac': 'aac',
            'audio/m4a': 'm4a',
            'audio/mp4': 'm4a',
        }

        if not content_type:
            return 'ogg'  # WhatsApp voice notes are ogg/opus

        # Strip parameters such as "; codecs=opus"
        extension = content_type_map.get(content_type.split(';')[0].strip().lower())
        if not extension:
            logger.warning(f"Unknown content type: {content_type}, defaulting to ogg")
            return 'ogg'

        return extension
