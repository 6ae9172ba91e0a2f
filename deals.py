"""
Deal records kept in Supabase.

Every DealStore is bound to one caller email. Reads and writes are scoped to
rows the caller created, except for the configured admin. Any call first
checks the caller against the team allowlist table and fails closed.
"""

import logging
import math
from datetime import date

from postgrest.exceptions import APIError
from supabase import ClientOptions, create_client

import config

log = logging.getLogger(__name__)

STATUSES = ('Active', 'Closed', 'Payment Pending', 'Cancelled')
SERVICE_TYPES = ('Owner', 'Tenant')
NUMERIC_FIELDS = ('size', 'cost_or_budget', 'revenue_from_owner', 'revenue_from_tenant')
TEXT_FIELDS = ('customer', 'location', 'notes')
DATE_FIELDS = ('start_date', 'payment_date', 'closed_date')
EDITABLE_FIELDS = ('status', 'service_type') + TEXT_FIELDS + NUMERIC_FIELDS + DATE_FIELDS
REQUIRED_FIELDS = ('customer', 'location')


# ─────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────
class DealError(Exception):
    status_code = 400


class DealValidationError(DealError):
    status_code = 400


class NotOnTeam(DealError):
    status_code = 403


class DealAccessDenied(DealError):
    status_code = 403


class DealNotFound(DealError):
    status_code = 404


class DealStoreError(DealError):
    status_code = 502


# ─────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────
def coerce_number(field, value):
    if value is None or (isinstance(value, str) and not value.strip()):
        return 0.0
    if isinstance(value, bool):
        raise DealValidationError(f'{field} must be a number')
    try:
        num = float(str(value).strip().replace(',', ''))
    except ValueError:
        raise DealValidationError(f'{field} must be a number')
    if not math.isfinite(num):
        raise DealValidationError(f'{field} must be a number')
    return num


def coerce_date(field, value):
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10]).isoformat()
    except ValueError:
        raise DealValidationError(f'{field} must be a YYYY-MM-DD date')


def normalize_deal(payload, partial=False, today=None):
    """Clean a client-supplied deal body.

    With ``partial`` only the fields present are returned; otherwise missing
    fields get their defaults. ``created_by`` and ``total_revenue`` are never
    taken from the caller.
    """
    today = today or date.today()
    payload = payload or {}
    out = {}

    if 'status' in payload or not partial:
        status = str(payload.get('status') or 'Active').strip()
        if status not in STATUSES:
            raise DealValidationError(f"Invalid status '{status}'")
        out['status'] = status
    if 'service_type' in payload or not partial:
        service_type = str(payload.get('service_type') or 'Owner').strip()
        if service_type not in SERVICE_TYPES:
            raise DealValidationError(f"Invalid service_type '{service_type}'")
        out['service_type'] = service_type

    for f in TEXT_FIELDS:
        if f in payload or not partial:
            out[f] = str(payload.get(f) or '').strip()
    for f in NUMERIC_FIELDS:
        if f in payload or not partial:
            out[f] = coerce_number(f, payload.get(f))
    for f in DATE_FIELDS:
        if f in payload or not partial:
            out[f] = coerce_date(f, payload.get(f))

    if not partial and not out['start_date']:
        out['start_date'] = today.isoformat()
    return out


def require_fields(deal):
    if any(not deal.get(f) for f in REQUIRED_FIELDS):
        raise DealValidationError('Customer and Location are required fields.')


def apply_status_dates(deal, today=None):
    """Fill or clear payment_date / closed_date to match the deal's status.

    A date already present is never overwritten.
    """
    stamp = (today or date.today()).isoformat()
    status = deal.get('status')
    if status == 'Active':
        deal['payment_date'] = None
        deal['closed_date'] = None
    elif status == 'Payment Pending':
        deal['payment_date'] = deal.get('payment_date') or stamp
        deal['closed_date'] = None
    elif status == 'Closed':
        deal['closed_date'] = deal.get('closed_date') or stamp
    elif status == 'Cancelled':
        deal['closed_date'] = deal.get('closed_date') or stamp
        deal['payment_date'] = None
    return deal


def financial_year(today=None):
    """April 1 – March 31 window containing ``today``."""
    today = today or date.today()
    year = today.year - 1 if today.month < 4 else today.year
    return date(year, 4, 1).isoformat(), date(year + 1, 3, 31).isoformat()


# ─────────────────────────────────────────────
# Store
# ─────────────────────────────────────────────
def user_client(email):
    """Supabase client that tags every request with the caller's email."""
    if not config.SUPABASE_URL or not config.SUPABASE_ANON_KEY:
        raise DealStoreError('Supabase is not configured')
    return create_client(
        config.SUPABASE_URL,
        config.SUPABASE_ANON_KEY,
        options=ClientOptions(headers={'x-app-user-email': email}),
    )


class DealStore:
    def __init__(self, email, client=None, today=None):
        self.email = (email or '').strip().lower()
        if not self.email:
            raise NotOnTeam('No caller email')
        self.sb = client if client is not None else user_client(self.email)
        self.today = today

    @property
    def is_admin(self):
        return bool(config.ADMIN_EMAIL) and self.email == config.ADMIN_EMAIL

    def _run(self, query, what):
        try:
            return query.execute()
        except APIError as e:
            log.error('Supabase error while %s for %s: %s', what, self.email, e)
            raise DealStoreError(f'Supabase error while {what}: {e.message}') from e

    # ── access checks ──
    def is_team_member(self):
        res = self._run(
            self.sb.table(config.TEAM_TABLE).select('email').eq('email', self.email).limit(1),
            'checking team membership')
        return bool(res.data)

    def _enter(self):
        if not self.is_team_member():
            log.warning('Deal access denied, %s is not on the team allowlist', self.email)
            raise NotOnTeam('Access denied: Your email is not authorized to access this application.')
        self._run(self.sb.rpc('set_user_context', {'p_email': self.email}), 'setting user context')

    def _scoped(self, query):
        if self.is_admin:
            return query
        # created_by may hold mixed case from older rows; match it the way _check_owner does
        pattern = self.email.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
        return query.ilike('created_by', pattern)

    def _owned_row(self, query, deal):
        return query if self.is_admin else query.eq('created_by', deal.get('created_by'))

    def _check_owner(self, deal, action='modify'):
        if self.is_admin:
            return
        if (deal.get('created_by') or '').lower() != self.email:
            log.warning('%s tried to %s deal %s owned by %s', self.email, action, deal.get('id'), deal.get('created_by'))
            if action == 'view':
                raise DealAccessDenied('You can only view deals you created.')
            raise DealAccessDenied('You can only modify deals you created.')

    def _fetch(self, deal_id):
        res = self._run(self.sb.table(config.DEALS_TABLE).select('*').eq('id', deal_id).limit(1), 'loading deal')
        if not res.data:
            raise DealNotFound(f'Deal {deal_id} not found')
        return res.data[0]

    # ── CRUD ──
    def list(self, status=None):
        self._enter()
        q = self._scoped(self.sb.table(config.DEALS_TABLE).select('*'))
        if status:
            q = q.eq('status', status)
        return self._run(q.order('created_at', desc=True), 'listing deals').data or []

    def get(self, deal_id):
        self._enter()
        deal = self._fetch(deal_id)
        self._check_owner(deal, action='view')
        return deal

    def create(self, payload):
        self._enter()
        deal = normalize_deal(payload, today=self.today)
        require_fields(deal)
        apply_status_dates(deal, self.today)
        deal['created_by'] = self.email
        res = self._run(self.sb.table(config.DEALS_TABLE).insert(deal), 'creating deal')
        log.info('Deal created by %s', self.email)
        return res.data[0] if res.data else deal

    def update(self, deal_id, payload):
        self._enter()
        existing = self._fetch(deal_id)
        self._check_owner(existing)
        merged = {f: existing.get(f) for f in EDITABLE_FIELDS}
        merged.update(normalize_deal(payload, partial=True, today=self.today))
        require_fields(merged)
        apply_status_dates(merged, self.today)
        q = self._owned_row(self.sb.table(config.DEALS_TABLE).update(merged).eq('id', deal_id), existing)
        res = self._run(q, 'updating deal')
        if not res.data:
            log.warning('Update of deal %s by %s matched no rows', deal_id, self.email)
            raise DealAccessDenied(f'Deal {deal_id} was not updated.')
        return res.data[0]

    def delete(self, deal_id):
        self._enter()
        deal = self._fetch(deal_id)
        self._check_owner(deal)
        res = self._run(self._owned_row(self.sb.table(config.DEALS_TABLE).delete().eq('id', deal_id), deal),
                        'deleting deal')
        if not res.data:
            log.warning('Delete of deal %s by %s matched no rows', deal_id, self.email)
            raise DealAccessDenied(f'Deal {deal_id} was not deleted.')
        log.info('Deal %s deleted by %s', deal_id, self.email)

    def dashboard_stats(self):
        self._enter()
        start, end = financial_year(self.today)
        table = config.DEALS_TABLE

        active = self._run(
            self._scoped(self.sb.table(table).select('total_revenue').eq('status', 'Active')),
            'loading active deals').data or []
        closed = self._run(
            self._scoped(self.sb.table(table).select('total_revenue').eq('status', 'Closed')
                         .gte('closed_date', start).lte('closed_date', end)),
            'loading closed deals').data or []

        return {
            'activeDeals': len(active),
            'revenueActive': sum(d.get('total_revenue') or 0 for d in active),
            'revenueClosed': sum(d.get('total_revenue') or 0 for d in closed),
            'financialYear': {'start': start, 'end': end},
        }
