import logging
from typing import Optional

from lib.database import PHONE_MAPPINGS_TABLE, first_row, utc_now_iso
from lib.error_handler import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

CHANNEL_PREFIXES = ('whatsapp:', 'sms:')

def normalize_phone(phone: Optional[str]) -> str:
    """Strip channel scheme tags and surrounding whitespace from a phone identifier.

    Applying it twice gives the same result as applying it once.
    """
    value = (phone or '').strip()
    stripped = True
    while stripped:
        stripped = False
        for prefix in CHANNEL_PREFIXES:
            if value.lower().startswith(prefix):
                value = value[len(prefix):].strip()
                stripped = True
    return value

class IdentityResolver:
    """Maps phone identifiers to internal user ids through the phone_mappings table."""

    def __init__(self, supabase_client):
        self.supabase = supabase_client
        self.table = PHONE_MAPPINGS_TABLE

    def resolve_user(self, phone: str) -> Optional[str]:
        key = normalize_phone(phone)
        if not key:
            return None
        result = (
            self.supabase.table(self.table)
            .select('user_id')
            .eq('phone_number', key)
            .limit(1)
            .execute()
        )
        row = first_row(result)
        if row is None:
            logger.info(f"No user mapped to phone {key}")
            return None
        return row['user_id']

    def resolve_phone(self, user_id: str) -> Optional[str]:
        if not user_id:
            return None
        result = (
            self.supabase.table(self.table)
            .select('phone_number')
            .eq('user_id', user_id)
            .order('updated_at', desc=True)
            .limit(1)
            .execute()
        )
        row = first_row(result)
        return row['phone_number'] if row else None

    def associate(self, phone: str, user_id: str) -> None:
        """Map a phone identifier to a user.

        This is an upsert keyed by the phone identifier: a phone already mapped
        to another user is silently re-pointed at ``user_id`` (last writer wins).
        """
        key = normalize_phone(phone)
        if not key or not user_id:
            raise ValidationError("Phone number and user id are required")

        try:
            self.supabase.table(self.table).upsert(
                {'phone_number': key, 'user_id': user_id, 'updated_at': utc_now_iso()},
                on_conflict='phone_number',
            ).execute()
        except Exception as e:
            logger.error(f"Failed to map phone {key} to user {user_id}: {str(e)}")
            raise PersistenceError(f"Failed to save phone mapping: {str(e)}") from e

        logger.info(f"Mapped phone {key} to user {user_id}")
