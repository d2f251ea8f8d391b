from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

CHANNELS = ('web', 'sms', 'whatsapp')

class User(BaseModel):
    id: str
    phone_number: Optional[str] = None
    timezone: Optional[str] = None
    notifications_enabled: bool = False
    prompt_time: Optional[str] = None
    prompt_categories: List[str] = Field(default_factory=list)
    whatsapp_verified: bool = False

    @property
    def reachable(self) -> bool:
        """Verified and has somewhere to send a prompt to."""
        return self.whatsapp_verified and bool(self.phone_number)

class OwnerRef(BaseModel):
    """Who an entry belongs to: an internal user id, a phone identifier, or both."""
    user_id: Optional[str] = None
    phone_number: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.user_id and not self.phone_number

class JournalEntry(BaseModel):
    id: str
    content: str
    channel: str
    user_id: Optional[str] = None
    phone_number: Optional[str] = None
    prompt_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class SentPrompt(BaseModel):
    id: str
    user_id: str
    prompt_text: str
    status: str = 'sent'
    message_id: Optional[str] = None
    response_text: Optional[str] = None
    response_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

class VerificationCode(BaseModel):
    id: Optional[str] = None
    user_id: str
    phone_number: str
    code: str
    expires_at: datetime

class InboundMessage(BaseModel):
    """A Twilio message webhook payload, reduced to what the pipeline reads."""
    message_sid: str
    sender: str
    body: str = ''
    num_media: int = 0
    media_url: Optional[str] = None
    media_content_type: Optional[str] = None

    @classmethod
    def from_form(cls, form: Dict[str, Any]) -> Optional["InboundMessage"]:
        """Parse the form fields, or return None when MessageSid or From is missing."""
        message_sid = (form.get('MessageSid') or '').strip()
        sender = (form.get('From') or '').strip()
        if not message_sid or not sender:
            return None

        try:
            num_media = int(form.get('NumMedia') or 0)
        except (TypeError, ValueError):
            num_media = 0

        return cls(
            message_sid=message_sid,
            sender=sender,
            body=form.get('Body') or '',
            num_media=max(num_media, 0),
            media_url=form.get('MediaUrl0') or None,
            media_content_type=form.get('MediaContentType0') or None,
        )

    @property
    def channel(self) -> str:
        return 'whatsapp' if self.sender.lower().startswith('whatsapp:') else 'sms'

    @property
    def has_audio(self) -> bool:
        if self.num_media <= 0 or not self.media_url:
            return False
        # Attachments without a declared type are treated as voice notes
        return not self.media_content_type or self.media_content_type.lower().startswith('audio/')

class PromptDispatchError(BaseModel):
    user_id: str
    error: str

class TickResult(BaseModel):
    time: str
    count: int = 0
    sent_count: int = 0
    skipped: int = 0
    errors: List[PromptDispatchError] = Field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        if self.count == 0:
            message = 'No users to send prompts to at this time'
        else:
            message = 'Daily prompts processed'
        return {
            'message': message,
            'time': self.time,
            'count': self.count,
            'sentCount': self.sent_count,
            'skipped': self.skipped,
            'errors': len(self.errors),
            'failures': [error.model_dump() for error in self.errors],
        }
