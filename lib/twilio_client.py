from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
from typing import Optional
import asyncio
import requests
import logging
from lib.config import Settings
from lib.error_handler import AppError, PermanentExternalError, TransientExternalError

logger = logging.getLogger(__name__)

CHANNELS = ('sms', 'whatsapp')
WHATSAPP_SCHEME = 'whatsapp:'

class TwilioClient:
    """Outbound messaging over Twilio for the SMS and WhatsApp channels."""

    def __init__(self, client: Client, phone_number: str = '', whatsapp_from: str = ''):
        self.client = client
        self.phone_number = phone_number
        self.whatsapp_from = whatsapp_from
        logger.info(f"Twilio client initialized (sms from: {phone_number or '-'}, whatsapp from: {whatsapp_from or '-'})")

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[Client] = None) -> "TwilioClient":
        if client is None:
            client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
        return cls(
            client,
            phone_number=settings.twilio_phone_number,
            whatsapp_from=settings.twilio_whatsapp_from,
        )

    @staticmethod
    def format_address(number: str, channel: str) -> str:
        """Add the WhatsApp scheme for the WhatsApp channel, leave SMS numbers alone."""
        if channel == 'whatsapp' and not number.startswith(WHATSAPP_SCHEME):
            return f"{WHATSAPP_SCHEME}{number}"
        return number

    def _sender_for(self, channel: str) -> str:
        if channel not in CHANNELS:
            raise AppError(f"Unsupported channel: {channel}", status_code=400)
        sender = self.whatsapp_from if channel == 'whatsapp' else self.phone_number
        if not sender:
            env_var = 'TWILIO_WHATSAPP_FROM' if channel == 'whatsapp' else 'TWILIO_PHONE_NUMBER'
            raise PermanentExternalError(f"Missing {env_var} setting", kind="misconfigured")
        return self.format_address(sender, channel)

    def send_message_sync(self, to_number: str, body: str, channel: str = 'whatsapp') -> str:
        """Send a message and return the message SID."""
        from_ = self._sender_for(channel)
        try:
            message = self.client.messages.create(
                body=body,
                from_=from_,
                to=self.format_address(to_number, channel)
            )
        except TwilioRestException as e:
            logger.error(f"Twilio error sending {channel} message to {to_number}: {str(e)}")
            if e.status is not None and e.status >= 500:
                raise TransientExternalError(f"Twilio unavailable: {e.msg}", kind="provider_unavailable") from e
            if e.code == 21608:  # Unverified number
                raise PermanentExternalError("This phone number is not verified with our account.", kind="unverified_number") from e
            elif e.code == 21211:  # Invalid phone number
                raise PermanentExternalError("Invalid phone number format.", kind="invalid_number") from e
            elif e.status in (401, 403):
                raise PermanentExternalError("Twilio rejected our credentials.", kind="unauthorized") from e
            raise PermanentExternalError(f"Failed to send message: {e.msg}", kind="rejected") from e
        except requests.RequestException as e:
            logger.error(f"Network error sending {channel} message to {to_number}: {str(e)}")
            raise TransientExternalError(f"Network error sending message: {str(e)}", kind="network") from e

        logger.info(f"{channel} message sent to {to_number}: {message.sid}")
        return message.sid

    async def send_message(self, to_number: str, body: str, channel: str = 'whatsapp') -> str:
        """Send a message without blocking the event loop."""
        # Run Twilio API call in an executor to prevent blocking
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.send_message_sync(to_number, body, channel)
        )
