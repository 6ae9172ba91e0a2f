"""
Runtime settings for the brokerage dashboard, read from the environment.
A local .env file is loaded first when present.
"""

import os
import secrets
import logging
import sys

from dotenv import load_dotenv

load_dotenv()


def _flag(name, default):
    return os.environ.get(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


# ─────────────────────────────────────────────
# Supabase (deal store)
# ─────────────────────────────────────────────
SUPABASE_URL = os.environ.get('SUPABASE_URL', '')
SUPABASE_ANON_KEY = os.environ.get('SUPABASE_ANON_KEY', '')
DEALS_TABLE = os.environ.get('DEALS_TABLE', 'deals')
TEAM_TABLE = os.environ.get('TEAM_TABLE', 'team')
ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', '').strip().lower()

# ─────────────────────────────────────────────
# Google Sheets (listings + inquiries)
# ─────────────────────────────────────────────
GOOGLE_SHEET_ID = os.environ.get('GOOGLE_SHEET_ID', '')
GOOGLE_SHEET_NAME = os.environ.get('GOOGLE_SHEET_NAME', 'Sheet1')
GOOGLE_SHEET_RANGE = os.environ.get('GOOGLE_SHEET_RANGE', 'A:Z')
GOOGLE_SERVICE_ACCOUNT_EMAIL = os.environ.get('GOOGLE_SERVICE_ACCOUNT_EMAIL', '')
# Keys pasted into .env usually carry literal "\n" sequences
GOOGLE_PRIVATE_KEY = os.environ.get('GOOGLE_PRIVATE_KEY', '').replace('\\n', '\n')
EXCEL_FALLBACK_PATH = os.environ.get('EXCEL_FALLBACK_PATH', 'enoshinfra.xlsx')

# ─────────────────────────────────────────────
# Zoho OAuth
# ─────────────────────────────────────────────
ZOHO_CLIENT_ID = os.environ.get('ZOHO_CLIENT_ID', '')
ZOHO_CLIENT_SECRET = os.environ.get('ZOHO_CLIENT_SECRET', '')
ZOHO_REDIRECT_URI = os.environ.get('ZOHO_REDIRECT_URI', 'http://localhost:5001/api/auth/callback')
ZOHO_ACCOUNTS_SERVER = os.environ.get('ZOHO_ACCOUNTS_SERVER', 'https://accounts.zoho.com')
ZOHO_SCOPES = os.environ.get(
    'ZOHO_SCOPES',
    'ZohoMail.accounts.READ ZohoMail.messages.READ profile.userinfo.read email'
)
ZOHO_HTTP_TIMEOUT = float(os.environ.get('ZOHO_HTTP_TIMEOUT', '10'))
REVOKE_ON_LOGOUT = _flag('REVOKE_ON_LOGOUT', True)

# ─────────────────────────────────────────────
# Session cookies
# ─────────────────────────────────────────────
SESSION_SECRET = os.environ.get('SESSION_SECRET') or secrets.token_hex(32)
SESSION_TTL_SECONDS = int(os.environ.get('SESSION_TTL_SECONDS', str(60 * 60 * 24 * 30)))
STATE_TTL_SECONDS = 600
COOKIE_SECURE = _flag('COOKIE_SECURE', os.environ.get('FLASK_ENV') == 'production')

# ─────────────────────────────────────────────
# Server
# ─────────────────────────────────────────────
PORT = int(os.environ.get('PORT', 5001))
FLASK_DEBUG = _flag('FLASK_DEBUG', True)
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()


def configure_logging(level=None):
    """Route every logger through one stdout handler at LOG_LEVEL."""
    level = (level or LOG_LEVEL).upper()
    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
    root.addHandler(handler)
