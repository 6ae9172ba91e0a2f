import re
from datetime import date

import pytest
from postgrest.exceptions import APIError

import app as app_module
import config
import zoho_auth
from deals import DealStore

TEAM = ['agent@brokerage.in', 'other@brokerage.in', 'boss@brokerage.in']
ADMIN = 'boss@brokerage.in'
TODAY = date(2025, 6, 15)


def _like_to_regex(pattern):
    out, chars = [], iter(pattern)
    for ch in chars:
        if ch == '\\':
            out.append(re.escape(next(chars, '\\')))
        elif ch == '%':
            out.append('.*')
        elif ch == '_':
            out.append('.')
        else:
            out.append(re.escape(ch))
    return ''.join(out)


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Just enough of the postgrest builder for DealStore."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = 'select'
        self.payload = None
        self.filters = []
        self._limit = None
        self._order = None

    def select(self, *_cols, count=None):
        self.op = 'select'
        return self

    def insert(self, row):
        self.op, self.payload = 'insert', row
        return self

    def update(self, values):
        self.op, self.payload = 'update', values
        return self

    def delete(self):
        self.op = 'delete'
        return self

    def eq(self, col, val):
        self.filters.append(lambda r: r.get(col) == val)
        return self

    def ilike(self, col, pattern):
        rx = re.compile(_like_to_regex(pattern), re.IGNORECASE)
        self.filters.append(lambda r: r.get(col) is not None and rx.fullmatch(r.get(col)) is not None)
        return self

    def gte(self, col, val):
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) >= val)
        return self

    def lte(self, col, val):
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) <= val)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def order(self, col, desc=False):
        self._order = (col, desc)
        return self

    def _matches(self):
        return [r for r in self.db.tables.setdefault(self.table, []) if all(f(r) for f in self.filters)]

    def execute(self):
        if self.db.fail:
            raise APIError({'message': 'connection refused', 'code': '503'})
        rows = self.db.tables.setdefault(self.table, [])
        if self.op == 'insert':
            self.db.seq += 1
            row = {**self.payload, 'id': f'deal-{self.db.seq}', 'created_at': f'2025-06-{self.db.seq:02d}T10:00:00'}
            rows.append(row)
            return FakeResponse([dict(row)])
        matched = self._matches()
        if self.op in ('update', 'delete') and self.db.reject_writes:
            # row-level security filters the row out without an error
            return FakeResponse([])
        if self.op == 'update':
            for r in matched:
                r.update(self.payload)
            return FakeResponse([dict(r) for r in matched])
        if self.op == 'delete':
            for r in matched:
                rows.remove(r)
            return FakeResponse([dict(r) for r in matched])
        if self._order:
            col, desc = self._order
            matched = sorted(matched, key=lambda r: r.get(col) or '', reverse=desc)
        if self._limit is not None:
            matched = matched[:self._limit]
        return FakeResponse([dict(r) for r in matched], count=len(matched))


class FakeRpc:
    def __init__(self, db, name, params):
        self.db, self.name, self.params = db, name, params

    def execute(self):
        self.db.rpc_calls.append((self.name, self.params))
        return FakeResponse(None)


class FakeSupabase:
    def __init__(self, team=None):
        self.tables = {'team': [{'email': e} for e in (team or [])], 'deals': []}
        self.rpc_calls = []
        self.seq = 0
        self.fail = False
        self.reject_writes = False

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params):
        return FakeRpc(self, name, params)


@pytest.fixture(autouse=True)
def _settings(monkeypatch):
    monkeypatch.setattr(config, 'SESSION_SECRET', 'test-secret')
    monkeypatch.setattr(config, 'ADMIN_EMAIL', ADMIN)
    monkeypatch.setattr(config, 'ZOHO_CLIENT_ID', 'client-123')
    monkeypatch.setattr(config, 'ZOHO_CLIENT_SECRET', 'shh')
    monkeypatch.setattr(config, 'ZOHO_REDIRECT_URI', 'http://localhost:5001/api/auth/callback')
    monkeypatch.setattr(config, 'ZOHO_ACCOUNTS_SERVER', 'https://accounts.zoho.com')
    monkeypatch.setattr(config, 'COOKIE_SECURE', False)


@pytest.fixture
def fake_sb():
    return FakeSupabase(team=TEAM)


@pytest.fixture
def store(fake_sb):
    def make(email):
        return DealStore(email, client=fake_sb, today=TODAY)
    return make


@pytest.fixture
def client(monkeypatch, fake_sb):
    monkeypatch.setattr(app_module, 'deal_store_for',
                        lambda email: DealStore(email, client=fake_sb, today=TODAY))
    app_module.app.config['TESTING'] = True
    return app_module.app.test_client()


@pytest.fixture
def login(client):
    def as_user(email='agent@brokerage.in'):
        client.set_cookie('accessToken', 'zoho-access')
        client.set_cookie('session', zoho_auth.issue_session(email))
        return client
    return as_user
