import random
from datetime import datetime, timezone

import pytest

from api.services.identity import IdentityResolver
from api.services.prompts import PROMPT_TEMPLATES, PromptCatalog
from api.services.scheduler import PROMPT_MESSAGE, PromptScheduler, is_valid_time
from lib.error_handler import ValidationError

def add_user(store, user_id, phone="+15550100", prompt_time="09:00", verified=True, enabled=True,
             tz="UTC", categories=None):
    store.tables['users'].append({
        'id': user_id,
        'phone_number': phone,
        'timezone': tz,
        'notifications_enabled': enabled,
        'prompt_time': prompt_time,
        'prompt_categories': categories if categories is not None else ['gratitude'],
        'whatsapp_verified': verified,
    })

@pytest.fixture
def scheduler(fake_supabase, fake_messaging):
    return PromptScheduler(
        fake_supabase,
        fake_messaging,
        PromptCatalog(rng=random.Random(0)),
        identity=IdentityResolver(fake_supabase),
    )

@pytest.mark.asyncio
async def test_tick_sends_to_verified_users_and_skips_unverified(scheduler, fake_supabase, fake_messaging):
    add_user(fake_supabase, "u1", phone="+15550101")
    add_user(fake_supabase, "u2", phone="+15550102")
    add_user(fake_supabase, "u3", phone="+15550103", verified=False)

    result = await scheduler.run_tick("09:00")

    assert len(fake_messaging.sent) == 2
    assert {m['to'] for m in fake_messaging.sent} == {"+15550101", "+15550102"}
    assert all(m['channel'] == 'whatsapp' for m in fake_messaging.sent)
    assert result.count == 3
    assert result.sent_count == 2
    assert result.skipped == 1
    assert result.errors == []

@pytest.mark.asyncio
async def test_sent_prompts_are_recorded(scheduler, fake_supabase, fake_messaging):
    add_user(fake_supabase, "u1", categories=['learning'])

    await scheduler.run_tick("09:00")

    [record] = fake_supabase.rows('sent_prompts')
    [message] = fake_messaging.sent
    assert record['user_id'] == "u1"
    assert record['status'] == 'sent'
    assert record['message_id'] == "SM0001"
    assert record['prompt_text'] in PROMPT_TEMPLATES['learning']
    assert message['body'] == PROMPT_MESSAGE.format(prompt=record['prompt_text'])

@pytest.mark.asyncio
async def test_only_matching_time_and_enabled_users(scheduler, fake_supabase, fake_messaging):
    add_user(fake_supabase, "early", prompt_time="08:00")
    add_user(fake_supabase, "off", enabled=False)
    add_user(fake_supabase, "seconds", phone="+15550199", prompt_time="09:00:00")

    result = await scheduler.run_tick("09:00")

    assert result.count == 1
    assert [m['to'] for m in fake_messaging.sent] == ["+15550199"]

@pytest.mark.asyncio
async def test_send_failure_is_isolated(scheduler, fake_supabase, fake_messaging):
    add_user(fake_supabase, "u1", phone="+15550101")
    add_user(fake_supabase, "u2", phone="+15550102")
    add_user(fake_supabase, "u3", phone="+15550103")
    fake_messaging.fail_for.add("+15550102")

    result = await scheduler.run_tick("09:00")

    assert result.sent_count == 2
    assert [e.user_id for e in result.errors] == ["u2"]
    assert "+15550102" in result.errors[0].error
    assert {r['user_id'] for r in fake_supabase.rows('sent_prompts')} == {"u1", "u3"}

@pytest.mark.asyncio
async def test_record_failure_counts_as_error(scheduler, fake_supabase, fake_messaging):
    add_user(fake_supabase, "u1")
    fake_supabase.fail_on.add(('sent_prompts', 'insert'))

    result = await scheduler.run_tick("09:00")

    assert result.sent_count == 0
    assert [e.user_id for e in result.errors] == ["u1"]

@pytest.mark.asyncio
async def test_missing_phone_falls_back_to_mapping(scheduler, fake_supabase, fake_messaging):
    add_user(fake_supabase, "u1", phone=None)
    add_user(fake_supabase, "u2", phone=None)
    IdentityResolver(fake_supabase).associate("+15550111", "u1")

    result = await scheduler.run_tick("09:00")

    assert [m['to'] for m in fake_messaging.sent] == ["+15550111"]
    assert result.skipped == 1
    assert result.errors == []

@pytest.mark.asyncio
async def test_tick_at_uses_each_users_timezone(scheduler, fake_supabase, fake_messaging):
    add_user(fake_supabase, "ny", phone="+15550201", tz="America/New_York")
    add_user(fake_supabase, "london", phone="+15550202", tz="Europe/London")
    add_user(fake_supabase, "utc", phone="+15550203", tz="UTC")

    # 13:00 UTC is 09:00 in New York during daylight saving time
    result = await scheduler.run_tick_at(datetime(2026, 7, 1, 13, 0, tzinfo=timezone.utc))

    assert [m['to'] for m in fake_messaging.sent] == ["+15550201"]
    assert result.count == 1
    assert result.time == "13:00"

@pytest.mark.asyncio
async def test_tick_at_unknown_timezone_uses_default(fake_supabase, fake_messaging):
    add_user(fake_supabase, "u1", tz="Mars/Olympus_Mons")
    scheduler = PromptScheduler(fake_supabase, fake_messaging, PromptCatalog(), default_timezone="Asia/Tokyo")

    result = await scheduler.run_tick_at(datetime(2026, 1, 15, 0, 0, tzinfo=timezone.utc))

    assert result.sent_count == 1

def test_invalid_time_is_rejected(scheduler):
    with pytest.raises(ValidationError):
        scheduler.find_users_for_time("9:00")

@pytest.mark.parametrize("value, valid", [
    ("00:00", True),
    ("09:30", True),
    ("23:59", True),
    ("24:00", False),
    ("9:00", False),
    ("09:60", False),
    ("", False),
    (None, False),
])
def test_is_valid_time(value, valid):
    assert is_valid_time(value) is valid

# Trigger route

def test_cron_requires_key(test_client):
    response = test_client.get('/api/cron/daily-prompts', query_string={'time': '09:00', 'key': 'nope'})
    assert response.status_code == 401
    assert response.get_json() == {'error': 'Unauthorized'}

def test_cron_rejects_bad_time(test_client):
    response = test_client.get('/api/cron/daily-prompts', query_string={'time': '25:00', 'key': 'cron-secret'})
    assert response.status_code == 400

def test_cron_reports_counts(test_client, fake_supabase, twilio_rest):
    add_user(fake_supabase, "u1", phone="+15550101")
    add_user(fake_supabase, "u2", phone="+15550102", verified=False)

    response = test_client.get('/api/cron/daily-prompts', query_string={'time': '09:00', 'key': 'cron-secret'})

    assert response.status_code == 200
    body = response.get_json()
    assert body['message'] == 'Daily prompts processed'
    assert body['time'] == '09:00'
    assert body['count'] == 2
    assert body['sentCount'] == 1
    assert body['skipped'] == 1
    assert body['errors'] == 0
    assert twilio_rest.messages.create.call_args.kwargs['to'] == 'whatsapp:+15550101'
    assert twilio_rest.messages.create.call_args.kwargs['from_'] == 'whatsapp:+15559999999'

def test_cron_without_matches(test_client):
    response = test_client.get('/api/cron/daily-prompts', query_string={'time': '03:00', 'key': 'cron-secret'})
    assert response.status_code == 200
    assert response.get_json()['message'] == 'No users to send prompts to at this time'
