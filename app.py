#!/usr/bin/env python3
"""
Brokerage Dashboard — Flask Backend (Zoho OAuth + Google Sheets + Supabase)
============================================================================
Run: python3 app.py
Open: http://localhost:5001
"""

from datetime import datetime, timezone
from functools import wraps

from flask import Flask, g, jsonify, redirect, request

import config
import sheets
import zoho_auth
from client_dedupe import client_directory, dedupe, inquiry_view, property_view, sort_newest_first
from deals import DealError, DealStore, NotOnTeam
from zoho_auth import OAuthError

app = Flask(__name__)

THIRTY_DAYS = 60 * 60 * 24 * 30
IDENTITY_COOKIES = ('accessToken', 'refreshToken', 'zohoUserEmail', 'accountsServer', 'session')


def _now():
    return datetime.now(timezone.utc).isoformat()


# ─────────────────────────────────────────────
# COOKIE HELPERS
# ─────────────────────────────────────────────
def _set_cookie(resp, name, value, max_age, httponly=True):
    resp.set_cookie(name, value, max_age=max_age, path='/', httponly=httponly,
                    secure=config.COOKIE_SECURE, samesite='Lax')


def _clear_cookie(resp, name, httponly=True):
    resp.delete_cookie(name, path='/', httponly=httponly, secure=config.COOKIE_SECURE, samesite='Lax')


def current_email():
    """Caller email from a verified session; the plaintext email cookie is display-only."""
    if not request.cookies.get('accessToken'):
        return None
    return zoho_auth.read_session(request.cookies.get('session'))


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        email = current_email()
        if not email:
            return jsonify({'error': 'Not authenticated'}), 401
        g.user_email = email
        return f(*args, **kwargs)
    return decorated


# ─────────────────────────────────────────────
# AUTH — Zoho OAuth
# ─────────────────────────────────────────────
@app.route('/api/auth/login', methods=['GET'])
def login():
    server = zoho_auth.normalize_accounts_server(request.args.get('accounts-server'))
    state = zoho_auth.new_state()
    resp = redirect(zoho_auth.authorization_url(state, server))
    _set_cookie(resp, 'oauthState', zoho_auth.sign_state(state), config.STATE_TTL_SECONDS)
    return resp


@app.route('/api/auth/callback', methods=['GET'])
def callback():
    code = request.args.get('code', '').strip()
    if not code:
        return jsonify({'error': 'Missing code parameter'}), 400
    if not zoho_auth.verify_state(request.cookies.get('oauthState'), request.args.get('state', '')):
        app.logger.warning('OAuth callback rejected: state mismatch')
        return jsonify({'error': 'Invalid OAuth state'}), 400

    server = zoho_auth.normalize_accounts_server(request.args.get('accounts-server'))
    try:
        tokens = zoho_auth.exchange_code(code, server)
        profile = zoho_auth.get_user_info(tokens['access_token'], server)
        email = zoho_auth.profile_email(profile)
    except OAuthError as e:
        app.logger.error('OAuth callback error: %s', e)
        return jsonify({'error': str(e)}), 502

    resp = redirect('/dashboard')
    _set_cookie(resp, 'accessToken', tokens['access_token'], int(tokens.get('expires_in') or 3600))
    if tokens.get('refresh_token'):
        _set_cookie(resp, 'refreshToken', tokens['refresh_token'], THIRTY_DAYS)
    _set_cookie(resp, 'zohoUserEmail', email, THIRTY_DAYS, httponly=False)
    _set_cookie(resp, 'accountsServer', server, THIRTY_DAYS)
    _set_cookie(resp, 'session', zoho_auth.issue_session(email), config.SESSION_TTL_SECONDS)
    _clear_cookie(resp, 'oauthState')
    app.logger.info('Session established for %s', email)
    return resp


@app.route('/api/auth/me', methods=['GET'])
@login_required
def me():
    return jsonify({'email': g.user_email})


@app.route('/api/auth/refresh', methods=['POST'])
def refresh():
    email = zoho_auth.read_session(request.cookies.get('session'))
    token = request.cookies.get('refreshToken')
    if not email or not token:
        return jsonify({'error': 'Not authenticated'}), 401
    try:
        tokens = zoho_auth.refresh_access_token(token, request.cookies.get('accountsServer'))
    except OAuthError as e:
        app.logger.error('Token refresh failed for %s: %s', email, e)
        return jsonify({'error': str(e)}), 502
    resp = jsonify({'ok': True, 'email': email})
    _set_cookie(resp, 'accessToken', tokens['access_token'], int(tokens.get('expires_in') or 3600))
    return resp


@app.route('/api/auth/logout', methods=['GET'])
def logout():
    token = request.cookies.get('refreshToken')
    if token and config.REVOKE_ON_LOGOUT:
        try:
            zoho_auth.revoke_token(token, request.cookies.get('accountsServer'))
        except OAuthError as e:
            # local cookies are cleared regardless
            app.logger.warning('Error revoking Zoho refresh token: %s', e)

    resp = jsonify({'message': 'Logged out successfully', 'timestamp': _now()})
    for name in IDENTITY_COOKIES:
        _clear_cookie(resp, name, httponly=(name != 'zohoUserEmail'))
    return resp


# ─────────────────────────────────────────────
# SHEET DATA — properties, inquiries, clients
# ─────────────────────────────────────────────
def _sheet_failure(message, kind='unknown'):
    return jsonify({'success': False, 'error': 'Failed to fetch sheet data',
                    'message': message, 'kind': kind}), 500


def _read_sheet():
    try:
        return sheets.read_sheet(), None
    except Exception as e:
        app.logger.exception('Error in sheets-data API')
        return None, _sheet_failure(str(e))


@app.route('/api/sheets-data', methods=['GET'])
@login_required
def sheets_data():
    result, failure = _read_sheet()
    if failure:
        return failure
    if not result.ok:
        return _sheet_failure(result.message, result.error_kind)
    return jsonify({'success': True, 'data': result.data, 'timestamp': _now(), 'source': result.source})


@app.route('/api/properties', methods=['GET'])
@login_required
def list_properties():
    result, failure = _read_sheet()
    if failure:
        return failure
    if not result.ok:
        return _sheet_failure(result.message, result.error_kind)
    rows = sort_newest_first([property_view(p) for p in result.data['properties']])
    return jsonify({'success': True, 'properties': rows, 'clients': result.data['clients']})


@app.route('/api/inquiries', methods=['GET'])
@login_required
def list_inquiries():
    result, failure = _read_sheet()
    if failure:
        return failure
    if not result.ok:
        return _sheet_failure(result.message, result.error_kind)
    rows = sort_newest_first([inquiry_view(i) for i in result.data['inquiries']])
    return jsonify({'success': True, 'inquiries': rows, 'clients': result.data['clients']})


@app.route('/api/clients', methods=['GET'])
@login_required
def list_clients():
    result, failure = _read_sheet()
    if failure:
        return failure
    if not result.ok:
        return _sheet_failure(result.message, result.error_kind)
    q = request.args.get('q', '').strip().lower()
    clients = client_directory(result.data['properties'])
    if q:
        clients = [c for c in clients
                   if q in c['name'].lower() or q in c['email'].lower() or q in c['phone']]
    return jsonify({'success': True, 'clients': clients})


# ─────────────────────────────────────────────
# DEALS
# ─────────────────────────────────────────────
def deal_store_for(email):
    return DealStore(email)


def _deal_error(e):
    body = {'error': str(e)}
    if isinstance(e, NotOnTeam):
        body['redirect'] = '/dashboard'
    return jsonify(body), e.status_code


@app.route('/api/deals', methods=['GET'])
@login_required
def list_deals():
    status = request.args.get('status', '').strip()
    try:
        data = deal_store_for(g.user_email).list(status=None if status in ('', 'All') else status)
    except DealError as e:
        return _deal_error(e)
    return jsonify(data)


@app.route('/api/deals', methods=['POST'])
@login_required
def create_deal():
    d = request.get_json(silent=True) or {}
    try:
        deal = deal_store_for(g.user_email).create(d)
    except DealError as e:
        return _deal_error(e)
    return jsonify({'ok': True, 'deal': deal}), 201


@app.route('/api/deals/<deal_id>', methods=['GET'])
@login_required
def get_deal(deal_id):
    try:
        return jsonify(deal_store_for(g.user_email).get(deal_id))
    except DealError as e:
        return _deal_error(e)


@app.route('/api/deals/<deal_id>', methods=['PUT'])
@login_required
def update_deal(deal_id):
    d = request.get_json(silent=True) or {}
    try:
        deal = deal_store_for(g.user_email).update(deal_id, d)
    except DealError as e:
        return _deal_error(e)
    return jsonify({'ok': True, 'deal': deal})


@app.route('/api/deals/<deal_id>', methods=['DELETE'])
@login_required
def delete_deal(deal_id):
    try:
        deal_store_for(g.user_email).delete(deal_id)
    except DealError as e:
        return _deal_error(e)
    return jsonify({'ok': True})


# ─────────────────────────────────────────────
# DASHBOARD
# ─────────────────────────────────────────────
@app.route('/api/dashboard', methods=['GET'])
@login_required
def dashboard():
    out = {'properties': None, 'inquiries': None, 'uniqueClients': None}
    result, failure = _read_sheet()
    if failure is None and result.ok:
        out.update({
            'properties': len(result.data['properties']),
            'inquiries': len(result.data['inquiries']),
            'uniqueClients': len(dedupe(result.data['clients'])),
        })
    else:
        out['sheetError'] = result.message if result else 'Failed to fetch sheet data'

    try:
        out.update(deal_store_for(g.user_email).dashboard_stats())
    except NotOnTeam:
        out.update({'activeDeals': 0, 'revenueActive': 0, 'revenueClosed': 0, 'authorized': False})
    except DealError as e:
        return _deal_error(e)
    return jsonify(out)


# ─────────────────────────────────────────────
# STARTUP
# ─────────────────────────────────────────────
if __name__ == '__main__':
    config.configure_logging()
    print("\n" + "="*50)
    print("  Brokerage Dashboard API")
    print(f"  Open: http://localhost:{config.PORT}")
    print(f"  Sheet source: {'google-sheets' if sheets.has_service_account() else 'excel-file'}")
    print("="*50 + "\n")
    app.run(host='0.0.0.0', port=config.PORT, debug=config.FLASK_DEBUG)
