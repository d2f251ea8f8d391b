import logging
import uuid
from typing import Any, Dict, List, Optional

from api.models import CHANNELS, JournalEntry, OwnerRef
from lib.database import JOURNAL_ENTRIES_TABLE, SENT_PROMPTS_TABLE, first_row, utc_now, utc_now_iso
from lib.error_handler import NotFoundError, PersistenceError, ValidationError

logger = logging.getLogger(__name__)

class JournalService:
    def __init__(self, supabase_client, strict_prompt_correlation: bool = False):
        self.supabase = supabase_client
        self.entries_table = JOURNAL_ENTRIES_TABLE
        self.prompts_table = SENT_PROMPTS_TABLE
        self.strict_prompt_correlation = strict_prompt_correlation
        logger.info(f"Journal service initialized (strict prompt correlation: {strict_prompt_correlation})")

    @staticmethod
    def _validate_content(content: Optional[str]) -> str:
        if content is None or not content.strip():
            raise ValidationError("Journal entry content cannot be empty")
        return content.strip()

    def create_entry(self, content: str, owner: OwnerRef, channel: str, prompt_ref: Optional[str] = None) -> str:
        """Persist a journal entry and return its id.

        When ``prompt_ref`` is given the referenced sent prompt is marked as
        answered afterwards. That update is best effort: a failure there is
        logged and the entry stays written.
        """
        text = self._validate_content(content)
        if channel not in CHANNELS:
            raise ValidationError(f"Unknown channel: {channel}")
        if owner is None or owner.is_empty:
            raise ValidationError("Journal entry needs a user id or phone number")

        now = utc_now()
        entry = JournalEntry(
            id=str(uuid.uuid4()),
            user_id=owner.user_id,
            phone_number=owner.phone_number,
            content=text,
            channel=channel,
            prompt_id=prompt_ref,
            created_at=now,
            updated_at=now,
        ).model_dump(mode='json')

        try:
            self.supabase.table(self.entries_table).insert(entry).execute()
        except Exception as e:
            logger.error(f"Failed to store journal entry for {owner.user_id or owner.phone_number}: {str(e)}")
            raise PersistenceError(f"Failed to store journal entry: {str(e)}") from e

        logger.info(f"Stored {channel} journal entry {entry['id']} ({len(text)} chars)")

        if prompt_ref:
            try:
                self.mark_prompt_answered(prompt_ref, text)
            except Exception as e:
                logger.warning(f"Entry {entry['id']} saved but prompt {prompt_ref} was not updated: {str(e)}")

        return entry['id']

    def mark_prompt_answered(self, prompt_id: str, response_text: str) -> bool:
        """Move a sent prompt to answered. Returns False if it was already answered."""
        result = (
            self.supabase.table(self.prompts_table)
            .update({
                'status': 'answered',
                'response_text': response_text,
                'response_at': utc_now_iso(),
            })
            .eq('id', prompt_id)
            .eq('status', 'sent')
            .execute()
        )
        if first_row(result) is None:
            logger.info(f"Prompt {prompt_id} was already answered, leaving response untouched")
            return False
        logger.info(f"Prompt {prompt_id} marked as answered")
        return True

    def latest_sent_prompt(self, user_id: str, require_unanswered: Optional[bool] = None) -> Optional[Dict[str, Any]]:
        """Most recently sent prompt for a user.

        By default the answered status is ignored, so a second reply is linked
        to the same prompt. With strict correlation only prompts still in
        ``sent`` are considered.
        """
        if require_unanswered is None:
            require_unanswered = self.strict_prompt_correlation

        query = (
            self.supabase.table(self.prompts_table)
            .select('id, prompt_text, status, created_at')
            .eq('user_id', user_id)
        )
        if require_unanswered:
            query = query.eq('status', 'sent')
        result = query.order('created_at', desc=True).limit(1).execute()
        return first_row(result)

    def update_entry(self, entry_id: str, content: str) -> Dict[str, Any]:
        text = self._validate_content(content)
        try:
            result = (
                self.supabase.table(self.entries_table)
                .update({'content': text, 'updated_at': utc_now_iso()})
                .eq('id', entry_id)
                .execute()
            )
        except Exception as e:
            logger.error(f"Failed to update journal entry {entry_id}: {str(e)}")
            raise PersistenceError(f"Failed to update journal entry: {str(e)}") from e

        row = first_row(result)
        if row is None:
            raise NotFoundError(f"Journal entry {entry_id} not found")
        return row

    def delete_entry(self, entry_id: str) -> None:
        try:
            result = self.supabase.table(self.entries_table).delete().eq('id', entry_id).execute()
        except Exception as e:
            logger.error(f"Failed to delete journal entry {entry_id}: {str(e)}")
            raise PersistenceError(f"Failed to delete journal entry: {str(e)}") from e

        if first_row(result) is None:
            raise NotFoundError(f"Journal entry {entry_id} not found")
        logger.info(f"Deleted journal entry {entry_id}")

    def list_entries(self, owner: OwnerRef, limit: int = 50) -> List[Dict[str, Any]]:
        if owner is None or owner.is_empty:
            raise ValidationError("Listing entries needs a user id or phone number")

        query = self.supabase.table(self.entries_table).select('*')
        if owner.user_id:
            query = query.eq('user_id', owner.user_id)
        else:
            query = query.eq('phone_number', owner.phone_number)
        result = query.order('created_at', desc=True).limit(limit).execute()
        return result.data or []
