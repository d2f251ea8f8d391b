from flask import Flask, request, Response, jsonify
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from api.message_handler import MessageHandler
from api.models import InboundMessage
from api.services.audio import TranscriptionService
from api.services.identity import IdentityResolver
from api.services.journal import JournalService
from api.services.prompts import PromptCatalog
from api.services.scheduler import PromptScheduler, is_valid_time
from api.services.verification import VerificationService
from lib.config import Settings, get_settings
from lib.database import create_supabase_client
from lib.error_handler import AppError
from lib.openai_client import WhisperClient
from lib.twilio_client import TwilioClient

# Configure detailed logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
    force=True  # Ensure our config takes precedence
)

# Create logger for this file
logger = logging.getLogger(__name__)

def create_app(
    settings: Optional[Settings] = None,
    *,
    supabase_client=None,
    twilio_client=None,
    openai_client=None,
) -> Flask:
    """Build the Flask app with every service wired to explicit clients."""
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    logger.info("Initializing services...")
    supabase = supabase_client or create_supabase_client(settings)
    messaging = TwilioClient.from_settings(settings, client=twilio_client)
    whisper = WhisperClient.from_settings(settings, client=openai_client)

    identity = IdentityResolver(supabase)
    journal = JournalService(supabase, strict_prompt_correlation=settings.strict_prompt_correlation)
    transcription = TranscriptionService.from_settings(settings, whisper)
    catalog = PromptCatalog()
    handler = MessageHandler(identity, journal, transcription, verify_token=settings.whatsapp_verify_token)
    scheduler = PromptScheduler(
        supabase,
        messaging,
        catalog,
        identity=identity,
        channel='whatsapp',
        default_timezone=settings.default_timezone,
    )
    verification = VerificationService(
        supabase,
        messaging,
        identity,
        ttl_minutes=settings.verification_code_ttl_minutes,
    )
    logger.info("All services initialized successfully")

    app = Flask(__name__)
    app.extensions['microjournal'] = {
        'settings': settings,
        'identity': identity,
        'journal': journal,
        'transcription': transcription,
        'catalog': catalog,
        'handler': handler,
        'scheduler': scheduler,
        'verification': verification,
    }

    @app.route('/', methods=['GET'])
    def root():
        """Basic health check"""
        return {'status': 'healthy'}

    @app.route('/api/whatsapp/webhook', methods=['GET'])
    def webhook_handshake():
        status, body = handler.verify_handshake(
            request.args.get('hub.mode'),
            request.args.get('hub.verify_token'),
            request.args.get('hub.challenge'),
        )
        if status == 200:
            return Response(body, status=200, mimetype='text/plain')
        return jsonify({'error': body}), status

    async def receive_message():
        form_data = request.form.to_dict()
        message = InboundMessage.from_form(form_data)
        if message is None:
            logger.error(f"Invalid webhook payload (MessageSid: {form_data.get('MessageSid')}, From: {form_data.get('From')})")
            return jsonify({'error': 'Invalid payload'}), 400

        twiml = await handler.handle_incoming_message(message)
        return Response(twiml, mimetype='text/xml')

    app.add_url_rule('/api/whatsapp/webhook', 'whatsapp_webhook', receive_message, methods=['POST'])
    app.add_url_rule('/api/sms/webhook', 'sms_webhook', receive_message, methods=['POST'])

    @app.route('/api/cron/daily-prompts', methods=['GET'])
    async def daily_prompts():
        api_key = request.args.get('key')
        if not api_key or not settings.cron_api_key or api_key != settings.cron_api_key:
            logger.warning(f"Unauthorized attempt to trigger daily prompts from {request.remote_addr or 'unknown'}")
            return jsonify({'error': 'Unauthorized'}), 401

        time_param = request.args.get('time')
        if time_param is not None and not is_valid_time(time_param):
            return jsonify({'error': 'Invalid time parameter. Expected format: HH:MM'}), 400

        try:
            if time_param:
                result = await scheduler.run_tick(time_param)
            else:
                result = await scheduler.run_tick_at(datetime.now(timezone.utc))
        except Exception as e:
            logger.error(f"Error processing daily prompts: {str(e)}", exc_info=True)
            return jsonify({'error': 'Error processing daily prompts'}), 500

        return jsonify(result.to_response())

    @app.route('/api/whatsapp/verify', methods=['POST'])
    async def whatsapp_verify():
        user_id = request.headers.get('X-User-Id')
        if not user_id:
            return jsonify({'error': 'Unauthorized'}), 401

        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
        phone_number = data.get('phone_number')
        if not phone_number or not isinstance(phone_number, str):
            return jsonify({'error': 'Invalid data', 'details': 'phone_number is required'}), 400

        try:
            code = data.get('verification_code')
            if code:
                if not verification.complete_verification(user_id, phone_number, str(code)):
                    return jsonify({'error': 'Invalid or expired verification code'}), 400
                return jsonify({'success': True, 'message': 'WhatsApp verified successfully'})

            verification_id = await verification.start_verification(user_id, phone_number)
            return jsonify({
                'success': True,
                'verificationId': verification_id,
                'message': 'Verification code sent to WhatsApp'
            })
        except AppError as e:
            logger.error(f"WhatsApp verification failed for user {user_id}: {e.message}")
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Exception in WhatsApp verification: {str(e)}", exc_info=True)
            return jsonify({'error': 'An unexpected error occurred'}), 500

    return app
