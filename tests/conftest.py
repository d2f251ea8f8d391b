import copy
import pytest
from collections import defaultdict
from unittest.mock import MagicMock
import sys
from pathlib import Path

# Add project root to Python path
project_root = str(Path(__file__).parent.parent)
sys.path.append(project_root)

from api.routes import create_app
from lib.config import Settings
from lib.error_handler import PermanentExternalError

class FakeResult:
    def __init__(self, data):
        self.data = data

class FakeQuery:
    """Just enough of the supabase-py query builder for the services under test."""

    def __init__(self, store, table):
        self.store = store
        self.table = table
        self.op = 'select'
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.order_by = None
        self.limit_n = None

    def select(self, columns='*'):
        self.op = 'select'
        return self

    def insert(self, payload):
        self.op, self.payload = 'insert', payload
        return self

    def update(self, values):
        self.op, self.payload = 'update', values
        return self

    def upsert(self, payload, on_conflict=None):
        self.op, self.payload, self.on_conflict = 'upsert', payload, on_conflict
        return self

    def delete(self):
        self.op = 'delete'
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def gt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) > value)
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        self.store.calls.append((self.table, self.op))
        if (self.table, self.op) in self.store.fail_on:
            raise Exception(f"simulated {self.op} failure on {self.table}")

        rows = self.store.tables[self.table]
        if self.op == 'select':
            found = [copy.deepcopy(r) for r in rows if self._matches(r)]
            if self.order_by:
                column, desc = self.order_by
                found.sort(key=lambda r: r.get(column) or '', reverse=desc)
            if self.limit_n is not None:
                found = found[:self.limit_n]
            return FakeResult(found)

        if self.op == 'insert':
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            rows.extend(copy.deepcopy(r) for r in new_rows)
            return FakeResult(copy.deepcopy(new_rows))

        if self.op == 'upsert':
            key = self.on_conflict or 'id'
            for existing in rows:
                if existing.get(key) == self.payload.get(key):
                    existing.update(self.payload)
                    return FakeResult([copy.deepcopy(existing)])
            rows.append(copy.deepcopy(self.payload))
            return FakeResult([copy.deepcopy(self.payload)])

        if self.op == 'update':
            updated = []
            for row in rows:
                if self._matches(row):
                    row.update(self.payload)
                    updated.append(copy.deepcopy(row))
            return FakeResult(updated)

        if self.op == 'delete':
            removed = [r for r in rows if self._matches(r)]
            self.store.tables[self.table] = [r for r in rows if not self._matches(r)]
            return FakeResult(copy.deepcopy(removed))

        raise AssertionError(f"unexpected operation {self.op}")

class FakeSupabase:
    def __init__(self):
        self.tables = defaultdict(list)
        self.fail_on = set()
        self.calls = []

    def table(self, name):
        return FakeQuery(self, name)

    def rows(self, name):
        return self.tables[name]

class FakeMessaging:
    """Records outbound messages instead of calling Twilio."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def send_message(self, to_number, body, channel='whatsapp'):
        if to_number in self.fail_for:
            raise PermanentExternalError(f"Failed to send message to {to_number}", kind="rejected")
        self.sent.append({'to': to_number, 'body': body, 'channel': channel})
        return f"SM{len(self.sent):04d}"

@pytest.fixture
def fake_supabase():
    return FakeSupabase()

@pytest.fixture
def fake_messaging():
    return FakeMessaging()

@pytest.fixture
def settings():
    return Settings(
        openai_api_key='sk-test',
        twilio_account_sid='ACtest',
        twilio_auth_token='token',
        twilio_phone_number='+15550000000',
        twilio_whatsapp_from='+15559999999',
        supabase_url='https://example.supabase.co',
        supabase_key='service-key',
        whatsapp_verify_token='verify-secret',
        cron_api_key='cron-secret',
        retry_base_delay=0,
    )

@pytest.fixture
def twilio_rest():
    client = MagicMock()
    client.messages.create.return_value = MagicMock(sid='SM123')
    return client

@pytest.fixture
def openai_rest():
    client = MagicMock()
    client.audio.transcriptions.create.return_value = "transcribed text"
    return client

@pytest.fixture
def app(settings, fake_supabase, twilio_rest, openai_rest):
    app = create_app(
        settings,
        supabase_client=fake_supabase,
        twilio_client=twilio_rest,
        openai_client=openai_rest,
    )
    app.config['TESTING'] = True
    return app

@pytest.fixture
def test_client(app):
    return app.test_client()
