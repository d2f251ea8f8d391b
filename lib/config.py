from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra='ignore')

    # OpenAI settings
    openai_api_key: str = ''
    whisper_model: str = 'whisper-1'
    transcription_language: str = 'en'

    # Twilio settings
    twilio_account_sid: str = ''
    twilio_auth_token: str = ''
    twilio_phone_number: str = ''
    twilio_whatsapp_from: str = ''

    # WhatsApp Cloud API (media id lookups only)
    whatsapp_api_url: str = 'https://graph.facebook.com/v18.0'
    whatsapp_access_token: str = ''

    # Supabase settings
    supabase_url: str = ''
    supabase_key: str = ''

    # Shared secrets
    whatsapp_verify_token: str = ''
    cron_api_key: str = ''

    # Network and retry tuning
    http_timeout_seconds: float = 30.0
    retry_max_retries: int = 3
    retry_base_delay: float = 1.0

    # Journaling behaviour
    verification_code_ttl_minutes: int = 10
    default_timezone: str = 'UTC'
    # Only correlate replies with prompts still in the "sent" state
    strict_prompt_correlation: bool = False

    log_level: str = 'INFO'

    @property
    def twilio_auth(self) -> tuple:
        return (self.twilio_account_sid, self.twilio_auth_token)

def get_settings() -> Settings:
    return Settings()
