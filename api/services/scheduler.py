import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from api.models import PromptDispatchError, SentPrompt, TickResult, User
from api.services.identity import IdentityResolver
from api.services.prompts import PromptCatalog
from lib.database import SENT_PROMPTS_TABLE, USERS_TABLE, utc_now
from lib.error_handler import ValidationError
from lib.twilio_client import TwilioClient

logger = logging.getLogger(__name__)

TIME_REGEX = re.compile(r'^([0-1][0-9]|2[0-3]):([0-5][0-9])$')

PROMPT_MESSAGE = (
    "🌟 Your daily MicroJournal prompt:\n\n"
    "{prompt}\n\n"
    "Reply to this message with your thoughts to save it to your journal."
)

USER_COLUMNS = 'id, phone_number, timezone, notifications_enabled, prompt_time, prompt_categories, whatsapp_verified'

def is_valid_time(value: Optional[str]) -> bool:
    return bool(value) and TIME_REGEX.match(value) is not None

def _hhmm(value: Optional[str]) -> Optional[str]:
    # The store may hand back "09:00:00" for a time column
    return value[:5] if value else None

class PromptScheduler:
    """Sends the daily prompt to every user whose delivery time matches a tick.

    Each recipient is handled on its own: a send or record failure for one
    user ends up in the error list and the batch carries on.
    """

    def __init__(
        self,
        supabase_client,
        messaging: TwilioClient,
        catalog: PromptCatalog,
        identity: Optional[IdentityResolver] = None,
        channel: str = 'whatsapp',
        default_timezone: str = 'UTC',
    ):
        self.supabase = supabase_client
        self.messaging = messaging
        self.catalog = catalog
        self.identity = identity
        self.channel = channel
        self.default_timezone = default_timezone

    def _enabled_users(self) -> List[User]:
        result = (
            self.supabase.table(USERS_TABLE)
            .select(USER_COLUMNS)
            .eq('notifications_enabled', True)
            .execute()
        )
        users = []
        for row in result.data or []:
            try:
                users.append(User(**{k: v for k, v in row.items() if v is not None}))
            except ValueError as e:
                logger.error(f"Ignoring malformed user row {row.get('id')}: {str(e)}")
        return users

    def _zone_for(self, user: User) -> ZoneInfo:
        name = user.timezone or self.default_timezone
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {name!r} for user {user.id}, using {self.default_timezone}")
            return ZoneInfo(self.default_timezone)

    def find_users_for_time(self, current_time: str) -> List[User]:
        """Users whose delivery time equals ``current_time`` as given, no conversion."""
        if not is_valid_time(current_time):
            raise ValidationError(f"Invalid time {current_time!r}, expected HH:MM")
        return [u for u in self._enabled_users() if _hhmm(u.prompt_time) == current_time]

    def find_users_due_at(self, now: datetime) -> List[User]:
        """Users whose delivery time equals ``now`` read in their own timezone."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        due = []
        for user in self._enabled_users():
            local_time = now.astimezone(self._zone_for(user)).strftime('%H:%M')
            if _hhmm(user.prompt_time) == local_time:
                due.append(user)
        return due

    async def run_tick(self, current_time: str) -> TickResult:
        users = self.find_users_for_time(current_time)
        logger.info(f"Found {len(users)} users for daily prompts at {current_time}")
        return await self.send_daily_prompts(users, current_time)

    async def run_tick_at(self, now: Optional[datetime] = None) -> TickResult:
        now = now or datetime.now(timezone.utc)
        users = self.find_users_due_at(now)
        label = now.astimezone(timezone.utc).strftime('%H:%M') if now.tzinfo else now.strftime('%H:%M')
        logger.info(f"Found {len(users)} users due for daily prompts at {label} UTC")
        return await self.send_daily_prompts(users, label)

    async def send_daily_prompts(self, users: Iterable[User], label: str = '') -> TickResult:
        result = TickResult(time=label)
        for user in users:
            result.count += 1
            try:
                phone = user.phone_number
                if not phone and self.identity is not None:
                    phone = self.identity.resolve_phone(user.id)

                if not user.whatsapp_verified or not phone:
                    logger.info(f"Skipping user {user.id} without WhatsApp verification")
                    result.skipped += 1
                    continue

                await self._dispatch(user, phone)
                result.sent_count += 1
            except Exception as e:
                logger.error(f"Error sending prompt to user {user.id}: {str(e)}", exc_info=True)
                result.errors.append(PromptDispatchError(user_id=user.id, error=str(e) or type(e).__name__))

        logger.info(
            f"Daily prompts at {label}: {result.sent_count} sent, {result.skipped} skipped, "
            f"{len(result.errors)} failed"
        )
        return result

    async def _dispatch(self, user: User, phone: str) -> None:
        prompt = self.catalog.generate_prompt(user.prompt_categories)
        message_id = await self.messaging.send_message(phone, PROMPT_MESSAGE.format(prompt=prompt), self.channel)
        logger.info(f"Daily prompt sent to user {user.id}: {message_id}")

        record = SentPrompt(
            id=str(uuid.uuid4()),
            user_id=user.id,
            prompt_text=prompt,
            message_id=message_id,
            status='sent',
            created_at=utc_now(),
        )
        self.supabase.table(SENT_PROMPTS_TABLE).insert(record.model_dump(mode='json', exclude_none=True)).execute()
