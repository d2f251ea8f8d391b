from datetime import datetime, timezone
from typing import Any, Dict, Optional
import logging

from supabase import create_client, Client

from lib.config import Settings

logger = logging.getLogger(__name__)

USERS_TABLE = 'users'
PHONE_MAPPINGS_TABLE = 'phone_mappings'
JOURNAL_ENTRIES_TABLE = 'journal_entries'
SENT_PROMPTS_TABLE = 'sent_prompts'
VERIFICATION_CODES_TABLE = 'verification_codes'

def create_supabase_client(settings: Settings) -> Client:
    """Create the service-role Supabase client shared by every service."""
    logger.info("Initializing Supabase client...")
    client = create_client(settings.supabase_url, settings.supabase_key)
    logger.info("Supabase client initialized successfully")
    return client

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def utc_now_iso() -> str:
    # Same shape pydantic uses when dumping an aware UTC datetime
    return utc_now().isoformat().replace('+00:00', 'Z')

def first_row(result) -> Optional[Dict[str, Any]]:
    """First row of a query result, or None when nothing matched."""
    data = getattr(result, 'data', None) if result is not None else None
    if not data:
        return None
    return data[0]
