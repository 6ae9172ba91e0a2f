"""
Zoho OAuth helpers: authorization URL, token exchange/refresh/revoke,
profile lookup, plus the signed tokens the app keeps in cookies.
"""

import logging
import re
import secrets
import time
from urllib.parse import urlencode

import jwt as pyjwt
import requests

import config

log = logging.getLogger(__name__)

ACCOUNTS_SERVER_RE = re.compile(r'^https://accounts\.zoho\.[a-z.]{2,10}$')
SESSION_ISSUER = 'brokerage-dashboard'


class OAuthError(Exception):
    """Any failed step of the authorization-code flow."""


# ─────────────────────────────────────────────
# Provider endpoints
# ─────────────────────────────────────────────
def normalize_accounts_server(value):
    """Accept only Zoho accounts hosts; anything else falls back to the default."""
    value = (value or '').strip().rstrip('/')
    if value and ACCOUNTS_SERVER_RE.match(value):
        return value
    return config.ZOHO_ACCOUNTS_SERVER


def authorization_url(state, accounts_server=None):
    server = normalize_accounts_server(accounts_server)
    params = {
        'response_type': 'code',
        'client_id': config.ZOHO_CLIENT_ID,
        'scope': config.ZOHO_SCOPES,
        'redirect_uri': config.ZOHO_REDIRECT_URI,
        'access_type': 'offline',
        'prompt': 'consent',
        'state': state,
    }
    return f'{server}/oauth/v2/auth?{urlencode(params)}'


def _post_token(server, data, what):
    try:
        resp = requests.post(f'{server}/oauth/v2/token', data=data, timeout=config.ZOHO_HTTP_TIMEOUT)
    except requests.RequestException as e:
        raise OAuthError(f'Failed to {what}: {e}') from e
    if not resp.ok:
        raise OAuthError(f'Failed to {what} (HTTP {resp.status_code})')
    try:
        payload = resp.json()
    except ValueError as e:
        raise OAuthError(f'Failed to {what}: response was not JSON') from e
    # Zoho answers 200 with {"error": "invalid_code"} for bad codes
    if payload.get('error'):
        raise OAuthError(f"Failed to {what}: {payload['error']}")
    return payload


def exchange_code(code, accounts_server=None):
    tokens = _post_token(normalize_accounts_server(accounts_server), {
        'grant_type': 'authorization_code',
        'client_id': config.ZOHO_CLIENT_ID,
        'client_secret': config.ZOHO_CLIENT_SECRET,
        'redirect_uri': config.ZOHO_REDIRECT_URI,
        'code': code,
    }, 'exchange code for tokens')
    if not tokens.get('access_token'):
        raise OAuthError('No access_token returned from token exchange')
    return tokens


def refresh_access_token(refresh_token, accounts_server=None):
    tokens = _post_token(normalize_accounts_server(accounts_server), {
        'grant_type': 'refresh_token',
        'client_id': config.ZOHO_CLIENT_ID,
        'client_secret': config.ZOHO_CLIENT_SECRET,
        'refresh_token': refresh_token,
    }, 'refresh access token')
    if not tokens.get('access_token'):
        raise OAuthError('No access_token returned from token refresh')
    return tokens


def revoke_token(token, accounts_server=None):
    server = normalize_accounts_server(accounts_server)
    try:
        resp = requests.post(f'{server}/oauth/v2/token/revoke', data={'token': token},
                             timeout=config.ZOHO_HTTP_TIMEOUT)
    except requests.RequestException as e:
        raise OAuthError(f'Failed to revoke token: {e}') from e
    if not resp.ok:
        raise OAuthError(f'Failed to revoke token (HTTP {resp.status_code})')


def get_user_info(access_token, accounts_server=None):
    server = normalize_accounts_server(accounts_server)
    try:
        resp = requests.get(f'{server}/oauth/user/info',
                            headers={'Authorization': f'Bearer {access_token}'},
                            timeout=config.ZOHO_HTTP_TIMEOUT)
    except requests.RequestException as e:
        raise OAuthError(f'Failed to get user info: {e}') from e
    if not resp.ok:
        raise OAuthError(f'Failed to get user info (HTTP {resp.status_code})')
    try:
        return resp.json()
    except ValueError as e:
        raise OAuthError('Failed to get user info: response was not JSON') from e


def profile_email(profile):
    email = (profile or {}).get('Email') or ''
    if not email.strip():
        raise OAuthError('User info does not contain Email')
    return email.strip().lower()


# ─────────────────────────────────────────────
# Signed cookies
# ─────────────────────────────────────────────
def _sign(claims, ttl):
    now = int(time.time())
    payload = {**claims, 'iss': SESSION_ISSUER, 'iat': now, 'exp': now + ttl}
    return pyjwt.encode(payload, config.SESSION_SECRET, algorithm='HS256')


def _verify(token, kind):
    if not token:
        return None
    try:
        payload = pyjwt.decode(token, config.SESSION_SECRET, algorithms=['HS256'], issuer=SESSION_ISSUER)
    except pyjwt.PyJWTError as e:
        log.info('Rejected %s token: %s', kind, e)
        return None
    if payload.get('kind') != kind:
        return None
    return payload


def new_state():
    return secrets.token_urlsafe(24)


def sign_state(state):
    return _sign({'kind': 'state', 'state': state}, config.STATE_TTL_SECONDS)


def verify_state(signed, state):
    payload = _verify(signed, 'state')
    if not payload or not state:
        return False
    return secrets.compare_digest(payload.get('state', '').encode(), state.encode())


def issue_session(email):
    return _sign({'kind': 'session', 'sub': email}, config.SESSION_TTL_SECONDS)


def read_session(token):
    """Email carried by a valid session token, else None."""
    payload = _verify(token, 'session')
    return payload.get('sub') if payload else None
