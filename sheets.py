"""
Spreadsheet ingestion: turns the raw listing sheet into property, inquiry
and client records.

The sheet has one header row followed by data rows. Identity and
classification fields are read by fixed column position (see SheetLayout);
every other column is passed through under its header name.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import gspread
import pandas as pd
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials
from requests.exceptions import RequestException

import config

log = logging.getLogger(__name__)

SHEETS_SCOPES = ['https://www.googleapis.com/auth/spreadsheets.readonly']

PROPERTY_MARKERS = ('findtenant', 'find tenant', 'finding tenant')
INQUIRY_MARKERS = ('findspace', 'find space', 'finding space')


# ─────────────────────────────────────────────
# Column layout
# ─────────────────────────────────────────────
@dataclass(frozen=True)
class SheetLayout:
    """Zero-based column positions of the fields the pipeline relies on.

    Bump ``version`` whenever the source sheet's column order changes.
    """
    version: int = 2
    name: int = 0              # A
    requirement_type: int = 1  # B
    col_c: int = 2             # C
    location: int = 3          # D
    description: int = 4       # E
    email: int = 5             # F
    phone: int = 6             # G
    company: int = 7           # H
    city: int = 10             # K

    def positions(self):
        return {
            'name': self.name,
            'requirement_type': self.requirement_type,
            'col_C': self.col_c,
            'col_D': self.location,
            'col_E': self.description,
            'email': self.email,
            'phone': self.phone,
            'company': self.company,
            'city': self.city,
        }

    def validate(self, headers):
        """Return the field names whose column lies beyond the header row."""
        width = len(headers or [])
        return sorted(f for f, idx in self.positions().items() if idx >= width)


DEFAULT_LAYOUT = SheetLayout()


def _cell(row, idx):
    if idx < len(row) and row[idx] is not None:
        return str(row[idx])
    return ''


def _is_blank(row):
    return not row or all(not str(c or '').strip() for c in row)


# ─────────────────────────────────────────────
# Classification
# ─────────────────────────────────────────────
def is_property(requirement_type):
    text = (requirement_type or '').lower()
    return any(m in text for m in PROPERTY_MARKERS)


def is_inquiry(requirement_type):
    text = (requirement_type or '').lower()
    return any(m in text for m in INQUIRY_MARKERS)


def empty_result():
    return {'properties': [], 'inquiries': [], 'clients': []}


# ─────────────────────────────────────────────
# Row → records
# ─────────────────────────────────────────────
def ingest_rows(rows, layout=DEFAULT_LAYOUT):
    """Split sheet rows (header first) into properties, inquiries and clients.

    A row whose requirement type matches both the tenant and the space
    markers is emitted into both lists. Rows matching neither still feed
    the client directory. ids are 1-based per list and only meaningful
    within one ingestion pass.
    """
    if not rows:
        return empty_result()

    headers = [str(h) for h in rows[0]]
    missing = layout.validate(headers)
    if missing:
        log.warning('Sheet header has %d columns; layout v%d fields past it: %s',
                    len(headers), layout.version, ', '.join(missing))

    properties, inquiries = [], []
    clients = {}

    for row in rows[1:]:
        if _is_blank(row):
            continue

        row_data = {h: _cell(row, i) for i, h in enumerate(headers)}

        client_name = _cell(row, layout.name)
        client_email = _cell(row, layout.email)
        client_phone = _cell(row, layout.phone)
        requirement_type = _cell(row, layout.requirement_type)
        details = {
            'col_C': _cell(row, layout.col_c),
            'col_D': _cell(row, layout.location),
            'col_E': _cell(row, layout.description),
        }
        normalized = {
            'clientName': client_name,
            'clientEmail': client_email,
            'clientPhone': client_phone,
            'details': details,
            'requirementType': requirement_type,
        }

        if is_property(requirement_type):
            properties.append({**row_data, 'id': len(properties) + 1, 'type': 'property', **normalized})
        if is_inquiry(requirement_type):
            inquiries.append({**row_data, 'id': len(inquiries) + 1, 'type': 'inquiry', **normalized})

        key = f'{client_name}_{client_email}'.lower()
        if client_name and client_email and key not in clients:
            clients[key] = {
                'id': len(clients) + 1,
                'name': client_name,
                'email': client_email,
                'phone': client_phone,
                'city': _cell(row, layout.city),
                'company': _cell(row, layout.company),
                'uniqueKey': key,
            }

    log.info('Ingested %d properties, %d inquiries, %d clients',
             len(properties), len(inquiries), len(clients))
    return {'properties': properties, 'inquiries': inquiries, 'clients': list(clients.values())}


# ─────────────────────────────────────────────
# Sources
# ─────────────────────────────────────────────
class SheetSourceError(Exception):
    """Reading the upstream sheet failed. ``kind`` says how."""

    def __init__(self, kind, message):
        super().__init__(message)
        self.kind = kind


def has_service_account():
    return bool(config.GOOGLE_SERVICE_ACCOUNT_EMAIL and config.GOOGLE_PRIVATE_KEY)


def gs_client():
    creds = Credentials.from_service_account_info({
        'type': 'service_account',
        'client_email': config.GOOGLE_SERVICE_ACCOUNT_EMAIL,
        'private_key': config.GOOGLE_PRIVATE_KEY,
        'token_uri': 'https://oauth2.googleapis.com/token',
    }, scopes=SHEETS_SCOPES)
    return gspread.authorize(creds)


def read_google_rows():
    if not config.GOOGLE_SHEET_ID:
        raise SheetSourceError('missing_source', 'GOOGLE_SHEET_ID is not set')
    try:
        ws = gs_client().open_by_key(config.GOOGLE_SHEET_ID).worksheet(config.GOOGLE_SHEET_NAME)
        return ws.get_values(config.GOOGLE_SHEET_RANGE)
    except (ValueError, GoogleAuthError) as e:
        raise SheetSourceError('credentials', str(e)) from e
    except gspread.SpreadsheetNotFound as e:
        raise SheetSourceError('missing_source', f'Spreadsheet not found: {config.GOOGLE_SHEET_ID}') from e
    except gspread.WorksheetNotFound as e:
        raise SheetSourceError('missing_source', f'Worksheet not found: {e}') from e
    except gspread.exceptions.APIError as e:
        raise SheetSourceError('network', str(e)) from e
    except RequestException as e:
        raise SheetSourceError('network', str(e)) from e
    except gspread.exceptions.GSpreadException as e:
        raise SheetSourceError('malformed', str(e) or type(e).__name__) from e


def read_excel_rows(path=None):
    path = path or config.EXCEL_FALLBACK_PATH
    try:
        df = pd.read_excel(path, sheet_name=0, header=None, dtype=str)
    except FileNotFoundError as e:
        raise SheetSourceError('missing_source', f'Workbook not found: {path}') from e
    except ValueError as e:
        raise SheetSourceError('malformed', str(e)) from e
    return df.fillna('').values.tolist()


def load_rows():
    """Return ``(rows, source)`` from Google Sheets, or the local workbook when
    no service account is configured."""
    if has_service_account():
        log.info('Fetching from Google Sheets with service account')
        return read_google_rows(), 'google-sheets'
    log.info('No service account credentials found, using Excel file %s', config.EXCEL_FALLBACK_PATH)
    return read_excel_rows(), 'excel-file'


@dataclass
class SheetResult:
    ok: bool
    data: dict = field(default_factory=empty_result)
    source: Optional[str] = None
    error_kind: Optional[str] = None
    message: str = ''


def read_sheet(loader=None, layout=DEFAULT_LAYOUT):
    """Ingest the sheet, keeping upstream failures distinguishable from an empty sheet."""
    try:
        rows, source = (loader or load_rows)()
    except SheetSourceError as e:
        log.error('Sheet source failed (%s): %s', e.kind, e)
        return SheetResult(ok=False, error_kind=e.kind, message=str(e))
    if not isinstance(rows, list) or any(not isinstance(r, (list, tuple)) for r in rows):
        log.error('Sheet source returned malformed rows: %r', type(rows))
        return SheetResult(ok=False, error_kind='malformed', message='Rows must be a list of lists')
    return SheetResult(ok=True, data=ingest_rows(rows, layout), source=source)


def fetch_sheet_data(loader=None, layout=DEFAULT_LAYOUT):
    """Ingest the sheet, answering an empty result on any failure.

    Callers cannot tell a fetch failure from an empty sheet here; use
    read_sheet() when that matters.
    """
    try:
        result = read_sheet(loader, layout)
    except Exception:
        log.exception('Error fetching sheet data')
        return empty_result()
    return result.data if result.ok else empty_result()
