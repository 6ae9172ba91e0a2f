from urllib.parse import parse_qs, urlparse

import pytest
import requests

import zoho_auth


class FakeHTTP:
    def __init__(self, payload=None, status=200):
        self._payload = payload if payload is not None else {}
        self.status_code = status
        self.ok = status < 400

    def json(self):
        return self._payload


@pytest.fixture
def zoho(monkeypatch):
    """Stub Zoho's token and user-info endpoints; returns the call log."""
    calls = {'post': [], 'get': [], 'profile': {'Email': 'Agent@Brokerage.in'}, 'revoke_fails': False}

    def fake_post(url, data=None, timeout=None):
        calls['post'].append((url, data))
        if url.endswith('/token/revoke'):
            if calls['revoke_fails']:
                raise requests.ConnectionError('zoho down')
            return FakeHTTP({})
        if data.get('code') == 'bad-code':
            return FakeHTTP({'error': 'invalid_code'})
        return FakeHTTP({'access_token': 'at-1', 'refresh_token': 'rt-1', 'expires_in': 3600})

    def fake_get(url, headers=None, timeout=None):
        calls['get'].append((url, headers))
        return FakeHTTP(calls['profile'])

    monkeypatch.setattr(zoho_auth.requests, 'post', fake_post)
    monkeypatch.setattr(zoho_auth.requests, 'get', fake_get)
    return calls


def _set_cookies(resp):
    out = {}
    for header in resp.headers.getlist('Set-Cookie'):
        name = header.split('=', 1)[0]
        out[name] = header
    return out


def _login(client, server=None):
    url = '/api/auth/login' + (f'?accounts-server={server}' if server else '')
    resp = client.get(url)
    assert resp.status_code == 302
    return resp, parse_qs(urlparse(resp.headers['Location']).query)['state'][0]


def test_login_redirects_to_zoho_with_state(client):
    resp, state = _login(client)
    location = urlparse(resp.headers['Location'])
    params = parse_qs(location.query)

    assert location.netloc == 'accounts.zoho.com'
    assert location.path == '/oauth/v2/auth'
    assert params['client_id'] == ['client-123']
    assert params['access_type'] == ['offline']
    assert state
    assert 'HttpOnly' in _set_cookies(resp)['oauthState']


def test_login_ignores_foreign_accounts_server(client):
    resp, _ = _login(client, 'https://evil.example.com')
    assert urlparse(resp.headers['Location']).netloc == 'accounts.zoho.com'


def test_callback_sets_session_cookies(client, zoho):
    _, state = _login(client, 'https://accounts.zoho.in')
    resp = client.get(f'/api/auth/callback?code=abc&state={state}&accounts-server=https://accounts.zoho.in')

    assert resp.status_code == 302
    assert resp.headers['Location'].endswith('/dashboard')
    cookies = _set_cookies(resp)
    assert 'HttpOnly' in cookies['accessToken']
    assert 'HttpOnly' in cookies['refreshToken']
    assert 'HttpOnly' in cookies['session']
    assert 'HttpOnly' not in cookies['zohoUserEmail']
    assert 'agent@brokerage.in' in cookies['zohoUserEmail']
    assert zoho['post'][0][0] == 'https://accounts.zoho.in/oauth/v2/token'
    assert zoho['get'][0][1] == {'Authorization': 'Bearer at-1'}

    me = client.get('/api/auth/me')
    assert me.status_code == 200
    assert me.get_json() == {'email': 'agent@brokerage.in'}


def test_callback_without_email_sets_no_cookies(client, zoho):
    zoho['profile'] = {'First_Name': 'Nomail'}
    _, state = _login(client)
    resp = client.get(f'/api/auth/callback?code=abc&state={state}')

    assert resp.status_code == 502
    assert 'Email' in resp.get_json()['error']
    assert not {'accessToken', 'refreshToken', 'zohoUserEmail', 'session'} & set(_set_cookies(resp))


def test_callback_failed_exchange(client, zoho):
    _, state = _login(client)
    resp = client.get(f'/api/auth/callback?code=bad-code&state={state}')
    assert resp.status_code == 502
    assert 'session' not in _set_cookies(resp)
    assert zoho['get'] == []


def test_callback_requires_code(client):
    resp = client.get('/api/auth/callback?state=x')
    assert resp.status_code == 400
    assert resp.get_json() == {'error': 'Missing code parameter'}


def test_callback_rejects_state_mismatch(client, zoho):
    _login(client)
    resp = client.get('/api/auth/callback?code=abc&state=forged')
    assert resp.status_code == 400
    assert zoho['post'] == []


def test_callback_rejects_missing_state_cookie(client, zoho):
    resp = client.get('/api/auth/callback?code=abc&state=whatever')
    assert resp.status_code == 400


def test_me_requires_signed_session(client):
    client.set_cookie('accessToken', 'anything')
    client.set_cookie('zohoUserEmail', 'boss@brokerage.in')
    assert client.get('/api/auth/me').status_code == 401

    client.set_cookie('session', 'forged.token.value')
    assert client.get('/api/auth/me').status_code == 401


def test_me_requires_access_token(client):
    client.set_cookie('session', zoho_auth.issue_session('agent@brokerage.in'))
    assert client.get('/api/auth/me').status_code == 401


def test_logout_clears_cookies_even_if_revoke_fails(login, zoho):
    client = login()
    client.set_cookie('refreshToken', 'rt-1')
    zoho['revoke_fails'] = True

    resp = client.get('/api/auth/logout')

    assert resp.status_code == 200
    assert resp.get_json()['message'] == 'Logged out successfully'
    cookies = _set_cookies(resp)
    for name in ('accessToken', 'refreshToken', 'zohoUserEmail', 'accountsServer', 'session'):
        assert 'Max-Age=0' in cookies[name]
    assert client.get('/api/auth/me').status_code == 401


def test_logout_revokes_refresh_token(login, zoho):
    client = login()
    client.set_cookie('refreshToken', 'rt-9')
    client.get('/api/auth/logout')
    assert zoho['post'] == [('https://accounts.zoho.com/oauth/v2/token/revoke', {'token': 'rt-9'})]


def test_refresh_sets_new_access_token(login, zoho):
    client = login()
    client.set_cookie('refreshToken', 'rt-1')
    resp = client.post('/api/auth/refresh')
    assert resp.status_code == 200
    assert 'at-1' in _set_cookies(resp)['accessToken']
    assert zoho['post'][0][1]['grant_type'] == 'refresh_token'


def test_session_token_roundtrip_and_tamper():
    token = zoho_auth.issue_session('agent@brokerage.in')
    assert zoho_auth.read_session(token) == 'agent@brokerage.in'
    assert zoho_auth.read_session(token[:-2] + 'xx') is None
    # a state token is not a session
    assert zoho_auth.read_session(zoho_auth.sign_state('abc')) is None


def test_normalize_accounts_server():
    assert zoho_auth.normalize_accounts_server('https://accounts.zoho.eu/') == 'https://accounts.zoho.eu'
    assert zoho_auth.normalize_accounts_server('http://accounts.zoho.eu') == 'https://accounts.zoho.com'
    assert zoho_auth.normalize_accounts_server(None) == 'https://accounts.zoho.com'
