from typing import Optional
import logging

logger = logging.getLogger(__name__)

class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, user_message: Optional[str] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.user_message = user_message or "An error occurred. Please try again later."
        super().__init__(self.message)

class ValidationError(AppError):
    """Bad or empty input. Raised before any side effect."""
    status_code = 400

class NotFoundError(AppError):
    status_code = 404

class PersistenceError(AppError):
    """A write against the store failed."""
    status_code = 500

class ExternalServiceError(AppError):
    """Failure talking to a provider (Twilio, WhatsApp media, Whisper)."""
    retryable = False

    def __init__(self, message: str, kind: str = "external", **kwargs):
        self.kind = kind
        super().__init__(message, **kwargs)

class TransientExternalError(ExternalServiceError):
    """Network errors, timeouts, 429 and 5xx responses."""
    status_code = 503
    retryable = True

class PermanentExternalError(ExternalServiceError):
    """Bad credentials, malformed or empty media, other 4xx responses."""
    status_code = 502
    retryable = False

class TranscriptionError(AppError):
    status_code = 502

    def __init__(self, message: str, kind: str, phase: str, retryable: bool = False):
        self.kind = kind
        self.phase = phase
        self.retryable = retryable
        super().__init__(message, user_message=ErrorHandler.TRANSCRIPTION_RETRY)

def is_retryable(error: BaseException) -> bool:
    return isinstance(error, ExternalServiceError) and error.retryable

class ErrorHandler:
    TRANSCRIPTION_RETRY = "Sorry, we couldn't transcribe your audio message. Please try sending text instead."
    EMPTY_CONTENT = "Your message was empty. Please try again with some content."
    SAVE_FAILED = "Sorry, we could not save your journal entry. Please try again later."

    @staticmethod
    def handle_transcription_error(error: Exception) -> str:
        logger.error(f"Transcription error: {str(error)}")
        return ErrorHandler.TRANSCRIPTION_RETRY

    @staticmethod
    def handle_storage_error(error: Exception) -> str:
        logger.error(f"Storage error: {str(error)}")
        return ErrorHandler.SAVE_FAILED
