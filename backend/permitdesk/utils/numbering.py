"""Human-readable document numbers: ``<PREFIX> <MON> <YYYY> - <NNNN>``.

The serial restarts every calendar month and is one past the highest serial
already issued for that prefix and month. The owning column is unique; two
writers that read the same highest serial build the same number and the
second insert is turned into a Conflict by ``claim_number``.
"""
from __future__ import annotations
import re
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from permitdesk.errors import Conflict
from permitdesk.utils.timeutil import utcnow

PERMIT_PREFIX = 'RGDGTLWP'
REQUEST_PREFIX = 'RGDGTLRQ'
GUEST_PASS_PREFIX = 'RGDGTLGP'

MONTHS = ('JAN', 'FEB', 'MAR', 'APR', 'MAY', 'JUN', 'JUL', 'AUG', 'SEP', 'OCT', 'NOV', 'DEC')

NUMBER_RE = re.compile(r'^(RGDGTL[A-Z]{2}) ([A-Z]{3}) (\d{4}) - (\d{4,})$')


def format_number(prefix: str, when: datetime, serial: int) -> str:
    return f"{prefix} {MONTHS[when.month - 1]} {when.year} - {serial:04d}"


def parse_number(value: str) -> Optional[dict]:
    m = NUMBER_RE.match(value or '')
    if not m or m.group(2) not in MONTHS:
        return None
    return {'prefix': m.group(1), 'month': m.group(2), 'year': int(m.group(3)), 'serial': int(m.group(4))}


def next_number(session, column, prefix: str, now: Optional[datetime] = None) -> str:
    """Allocate the next number for column (e.g. Permit.permit_number)."""
    now = now or utcnow()
    stem = f"{prefix} {MONTHS[now.month - 1]} {now.year} - "
    highest = 0
    for value in session.execute(select(column).where(column.like(stem + '%'))).scalars():
        parsed = parse_number(value)
        if parsed and parsed['serial'] > highest:
            highest = parsed['serial']
    return format_number(prefix, now, highest + 1)


def claim_number(session, number: str) -> None:
    """Flush the pending insert that carries number; caller commits."""
    try:
        session.flush()
    except IntegrityError:
        session.rollback()
        raise Conflict('Document number already issued, please retry', extra={'number': number})


def qr_url(service_url: str, data: str, size: int) -> str:
    """URL of a third-party QR image encoding data; never fetched server side."""
    return f"{service_url}?{urlencode({'data': data, 'size': f'{size}x{size}'})}"
