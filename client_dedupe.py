"""
Listing transforms shared by the properties, inquiries, clients and dashboard
endpoints: client directory dedup, location formatting and time ordering.
"""

import re
from datetime import datetime

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
INDIA_RE = re.compile(r'(India),?\s*')
HSPACE_RE = re.compile(r'[ \t]+')

PLACEHOLDER_COMPANY = 'Not provided'
PLACEHOLDER_NAME = 'Unknown'
MIN_PHONE_DIGITS = 6

TIME_FORMATS = (
    '%d/%m/%Y %H:%M:%S',
    '%d/%m/%Y %H:%M',
    '%d/%m/%Y',
    '%m/%d/%Y %H:%M:%S',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d',
)


def _digits(value):
    return re.sub(r'\D', '', value or '')


def valid_email(value):
    return bool(value) and bool(EMAIL_RE.match(value.strip()))


def valid_phone(value):
    return len(_digits(value)) >= MIN_PHONE_DIGITS


# ─────────────────────────────────────────────
# Client directory
# ─────────────────────────────────────────────
def client_from_property(row):
    """Client candidate from one ingested property row."""
    email = (row.get('Email') or row.get('clientEmail') or '').strip()
    phone = (row.get('Phone') or row.get('clientPhone') or '').strip()
    company = (row.get('Company') or '').strip()
    return {
        'id': row.get('id'),
        'name': (row.get('Client') or row.get('clientName') or '').strip() or PLACEHOLDER_NAME,
        'email': email if valid_email(email) else '',
        'phone': phone if valid_phone(phone) else '',
        'company': company if company != PLACEHOLDER_COMPANY else '',
        'city': (row.get('Client City') or '').strip(),
    }


def completeness(record):
    """Score 0-5: one point each for a usable email, phone, company, city and name."""
    score = 0
    if valid_email(record.get('email')):
        score += 1
    if valid_phone(record.get('phone')):
        score += 1
    company = record.get('company')
    if company and company != PLACEHOLDER_COMPANY:
        score += 1
    if record.get('city'):
        score += 1
    name = record.get('name')
    if name and name != PLACEHOLDER_NAME:
        score += 1
    return score


def dedupe_key(record):
    return f"{(record.get('name') or '').strip().lower()}|{_digits(record.get('phone'))}"


def dedupe(records):
    """Collapse records sharing a name+phone key.

    The first record seen holds its slot; a later duplicate takes it over only
    with a strictly higher completeness score.
    """
    seen = {}
    for rec in records:
        key = dedupe_key(rec)
        kept = seen.get(key)
        if kept is None or completeness(rec) > completeness(kept):
            seen[key] = rec
    return list(seen.values())


def client_directory(properties):
    unique = dedupe([client_from_property(p) for p in properties])
    for i, c in enumerate(unique, start=1):
        c['uniqueKey'] = f"client-{i}-{c['id']}"
    return unique


# ─────────────────────────────────────────────
# Listings
# ─────────────────────────────────────────────
def format_location(raw):
    # One address per line: break after every "India"
    location = INDIA_RE.sub(r'\1\n', raw or '')
    location = HSPACE_RE.sub(' ', location)
    location = '\n'.join(line.strip() for line in location.split('\n')).lstrip('\n')
    return location if location.strip() else 'N/A'


def parse_time_ist(value):
    value = (value or '').strip()
    if not value:
        return None
    try:
        return datetime.fromisoformat(value).replace(tzinfo=None)
    except ValueError:
        pass
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def sort_newest_first(items):
    """Newest ``timeIST`` first; rows without a parseable time go last."""
    dated = [(parse_time_ist(i.get('timeIST')), i) for i in items]
    with_time = sorted((p for p in dated if p[0] is not None), key=lambda p: p[0], reverse=True)
    without = [i for t, i in dated if t is None]
    return [i for _, i in with_time] + without


def property_view(prop):
    details = prop.get('details') or {}
    return {
        'id': prop.get('id'),
        'location': format_location(details.get('col_D')),
        'description': details.get('col_E', ''),
        'clientName': prop.get('clientName', ''),
        'clientEmail': prop.get('clientEmail', ''),
        'email': prop.get('Email') or 'N/A',
        'phone': prop.get('Phone') or 'N/A',
        'clientCity': prop.get('Client City') or 'N/A',
        'timeIST': prop.get('Time IST', ''),
    }


def inquiry_view(inq):
    details = inq.get('details') or {}
    raw_location = details.get('col_D') or inq.get('Preferred Location') or inq.get('Location') or ''
    return {
        'id': inq.get('id'),
        'clientName': inq.get('Name') or inq.get('Client Name') or inq.get('clientName') or 'N/A',
        'propertyType': inq.get('Property Type') or inq.get('Requirement') or inq.get('Space Type') or 'N/A',
        'location': format_location(raw_location),
        'description': details.get('col_E') or inq.get('Description') or '',
        'clientEmail': inq.get('clientEmail') or inq.get('Client Email') or '',
        'email': inq.get('Email') or inq.get('Client Email') or 'N/A',
        'phone': inq.get('Phone') or inq.get('Contact') or 'N/A',
        'clientCity': inq.get('Client City') or inq.get('City') or 'N/A',
        'timeIST': inq.get('Time IST') or inq.get('Date') or '',
    }
