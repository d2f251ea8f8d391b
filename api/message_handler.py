import logging
from typing import Optional, Tuple

from twilio.twiml.messaging_response import MessagingResponse

from api.models import InboundMessage, OwnerRef
from api.services.audio import TranscriptionService
from api.services.identity import IdentityResolver, normalize_phone
from api.services.journal import JournalService
from lib.error_handler import ErrorHandler, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

HELP_COMMAND = '/help'

HELP_MESSAGE = (
    "Welcome to MicroJournal! 📝\n\n"
    "Here's how to use me:\n"
    "1. Send any text message to create a journal entry\n"
    "2. Send a voice message to create a voice journal entry\n"
    "3. Use /help anytime to see these instructions again\n\n"
    "Your messages will be automatically saved and organized in your journal. Happy journaling! ✨"
)

SAVED_MESSAGE = "Your journal entry has been saved. Thank you for sharing your thoughts!"

HANDSHAKE_MISSING_PARAMS = 'Missing required verification parameters'
HANDSHAKE_INVALID_TOKEN = 'Invalid verification token'

def create_twiml_response(message: Optional[str] = None) -> str:
    """TwiML reply; without a message this is the empty acknowledgment."""
    resp = MessagingResponse()
    if message:
        resp.message(message)
    return str(resp)

class MessageHandler:
    """Turns inbound SMS and WhatsApp messages into journal entries."""

    def __init__(
        self,
        identity: IdentityResolver,
        journal: JournalService,
        transcription: TranscriptionService,
        verify_token: str = '',
    ):
        self.identity = identity
        self.journal = journal
        self.transcription = transcription
        self.verify_token = verify_token

    def verify_handshake(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Tuple[int, str]:
        """Check a webhook subscription request. Returns (status, body)."""
        if not mode or not token or not challenge:
            logger.warning(HANDSHAKE_MISSING_PARAMS)
            return 400, HANDSHAKE_MISSING_PARAMS

        if mode == 'subscribe' and self.verify_token and token == self.verify_token:
            logger.info("WEBHOOK_VERIFIED")
            return 200, challenge

        logger.warning(f"VERIFICATION_FAILED (mode: {mode}, token: {token[:3]}...)")
        return 403, HANDSHAKE_INVALID_TOKEN

    async def handle_incoming_message(self, message: InboundMessage) -> str:
        """Process one inbound message and return the TwiML reply.

        Never raises: anything unexpected is logged and answered with an
        empty acknowledgment so the provider does not retry the delivery.
        """
        try:
            return await self._process(message)
        except Exception as e:
            logger.error(f"Error processing inbound message {message.message_sid}: {str(e)}", exc_info=True)
            return create_twiml_response()

    async def _process(self, message: InboundMessage) -> str:
        phone = normalize_phone(message.sender)
        logger.info(f"Inbound {message.channel} message {message.message_sid} from {phone}")

        user_id = self.identity.resolve_user(phone)
        if not user_id:
            logger.info(f"User not found for phone number {phone}, acknowledging without reply")
            return create_twiml_response()

        if not message.has_audio and message.body.strip().lower() == HELP_COMMAND:
            return create_twiml_response(HELP_MESSAGE)

        content = message.body
        if message.has_audio:
            try:
                content = await self.transcription.transcribe(message.media_url, message.media_content_type)
                logger.info(f"Audio transcribed for user {user_id} ({len(content)} chars)")
            except Exception as e:
                return create_twiml_response(ErrorHandler.handle_transcription_error(e))

        if not content or not content.strip():
            logger.info(f"Empty message received from user {user_id}, ignoring")
            return create_twiml_response(ErrorHandler.EMPTY_CONTENT)

        prompt = None
        try:
            prompt = self.journal.latest_sent_prompt(user_id)
        except Exception as e:
            logger.warning(f"Could not look up the latest prompt for user {user_id}: {str(e)}")

        try:
            self.journal.create_entry(
                content,
                OwnerRef(user_id=user_id, phone_number=phone),
                message.channel,
                prompt_ref=prompt['id'] if prompt else None,
            )
        except ValidationError:
            return create_twiml_response(ErrorHandler.EMPTY_CONTENT)
        except PersistenceError as e:
            return create_twiml_response(ErrorHandler.handle_storage_error(e))

        return create_twiml_response(SAVED_MESSAGE)
