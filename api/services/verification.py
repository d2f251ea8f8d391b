import logging
import secrets
import uuid
from datetime import timedelta

from api.models import VerificationCode
from api.services.identity import IdentityResolver, normalize_phone
from lib.database import USERS_TABLE, VERIFICATION_CODES_TABLE, first_row, utc_now, utc_now_iso
from lib.error_handler import PersistenceError, ValidationError
from lib.twilio_client import TwilioClient

logger = logging.getLogger(__name__)

VERIFICATION_MESSAGE = "Your MicroJournal verification code is: {code}. It will expire in {minutes} minutes."

def generate_code() -> str:
    return str(secrets.randbelow(900000) + 100000)

class VerificationService:
    """WhatsApp phone verification with short-lived six digit codes."""

    def __init__(self, supabase_client, messaging: TwilioClient, identity: IdentityResolver, ttl_minutes: int = 10):
        self.supabase = supabase_client
        self.messaging = messaging
        self.identity = identity
        self.ttl_minutes = ttl_minutes

    async def start_verification(self, user_id: str, phone: str) -> str:
        """Store a fresh code and send it over WhatsApp. Returns the message SID."""
        phone_number = normalize_phone(phone)
        if not user_id or not phone_number:
            raise ValidationError("User id and phone number are required")

        code = generate_code()
        record = VerificationCode(
            id=str(uuid.uuid4()),
            user_id=user_id,
            phone_number=phone_number,
            code=code,
            expires_at=utc_now() + timedelta(minutes=self.ttl_minutes),
        )
        try:
            self.supabase.table(VERIFICATION_CODES_TABLE).insert(record.model_dump(mode='json')).execute()
        except Exception as e:
            logger.error(f"Error storing verification code for {phone_number}: {str(e)}")
            raise PersistenceError(f"Failed to store verification code: {str(e)}") from e

        message_id = await self.messaging.send_message(
            phone_number,
            VERIFICATION_MESSAGE.format(code=code, minutes=self.ttl_minutes),
            'whatsapp',
        )
        logger.info(f"WhatsApp verification started for {phone_number}: {message_id}")
        return message_id

    def complete_verification(self, user_id: str, phone: str, code: str) -> bool:
        """Consume a matching unexpired code and mark the phone as verified.

        Returns False when no such code exists.
        """
        phone_number = normalize_phone(phone)
        code = (code or '').strip()
        if not user_id or not phone_number or not code:
            raise ValidationError("User id, phone number and code are required")

        result = (
            self.supabase.table(VERIFICATION_CODES_TABLE)
            .select('*')
            .eq('user_id', user_id)
            .eq('phone_number', phone_number)
            .eq('code', code)
            .gt('expires_at', utc_now_iso())
            .limit(1)
            .execute()
        )
        row = first_row(result)
        if row is None:
            logger.warning(f"Invalid or expired verification code for {phone_number}")
            return False

        self.identity.associate(phone_number, user_id)
        try:
            self.supabase.table(USERS_TABLE).update({
                'phone_number': phone_number,
                'whatsapp_verified': True,
            }).eq('id', user_id).execute()
        except Exception as e:
            logger.error(f"Failed to mark user {user_id} as verified: {str(e)}")
            raise PersistenceError(f"Failed to update user: {str(e)}") from e

        try:
            self.supabase.table(VERIFICATION_CODES_TABLE).delete().eq('id', row['id']).execute()
        except Exception as e:
            # Already verified here, a leftover code simply expires
            logger.warning(f"Verified {phone_number} but could not delete code {row['id']}: {str(e)}")
        logger.info(f"WhatsApp verification completed for {phone_number}")
        return True
