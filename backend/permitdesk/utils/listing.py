"""List endpoint plumbing: pagination, payload envelope and HTTP caching.

Every collection route returns

    {"data": [...], "pagination": {"total", "limit", "offset", "returned"}}

with an ETag derived from the page contents and, when the newest row
timestamp is known, a Last-Modified header. Clients replaying either
validator via If-None-Match / If-Modified-Since get an empty 304.
"""
from __future__ import annotations
from typing import Iterable, Optional, Tuple
from flask import request, make_response
from sqlalchemy.orm import Query
from permitdesk.config.pagination import normalize_pagination
from permitdesk.errors import ValidationError
import hashlib
from datetime import datetime, timezone, timedelta
from email.utils import parsedate_to_datetime, format_datetime

TIMESTAMP_TOLERANCE = timedelta(seconds=1)


def canonicalize_timestamp(dt: datetime) -> datetime:
    """Return UTC tz-aware timestamp truncated to whole seconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0)


def read_pagination() -> Tuple[int, int]:
    try:
        return normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        raise ValidationError(str(e))


def apply_pagination(q: Query) -> Tuple[Query, int, int, int]:
    limit, offset = read_pagination()
    total = q.order_by(None).count()
    return q.offset(offset).limit(limit), total, limit, offset


def compute_etag(ids: Iterable, total: int, limit: int, offset: int, latest_ts: Optional[str] = '') -> str:
    seed = f"{list(ids)}|{total}|{limit}|{offset}|{latest_ts or ''}"
    return hashlib.sha256(seed.encode()).hexdigest()[:32]


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }


def _http_date(dt: datetime) -> str:
    return format_datetime(dt, usegmt=True)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace('+00:00', 'Z')


def _parse_if_modified_since(header_val: str) -> Optional[datetime]:
    if not header_val:
        return None
    try:
        dt = datetime.fromisoformat(header_val.replace('Z', '+00:00'))
    except ValueError:
        try:
            dt = parsedate_to_datetime(header_val)
        except (TypeError, ValueError):
            return None
    if dt is not None and dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _not_modified(etag_value: str, latest_c: Optional[datetime]):
    resp = make_response('', 304)
    resp.headers['ETag'] = etag_value
    if latest_c:
        resp.headers['Last-Modified'] = _http_date(latest_c)
        resp.headers['X-Last-Modified-ISO'] = _iso(latest_c)
    return resp


def handle_conditional(etag_value: str, latest_ts: Optional[datetime]):
    """Return a 304 response if the client's cached copy is current, else None.

    If-None-Match takes precedence over If-Modified-Since.
    """
    latest_c = canonicalize_timestamp(latest_ts) if latest_ts else None
    inm = request.headers.get('If-None-Match')
    if inm:
        if inm.strip('"') == etag_value:
            return _not_modified(etag_value, latest_c)
        return None
    ims_dt = _parse_if_modified_since(request.headers.get('If-Modified-Since', ''))
    if ims_dt and latest_c and latest_c <= canonicalize_timestamp(ims_dt) + TIMESTAMP_TOLERANCE:
        return _not_modified(etag_value, latest_c)
    return None


def make_cached_list_response(rows: list, total: int, limit: int, offset: int, latest_ts: Optional[datetime] = None):
    """Build the list response, or a 304 when the client validators match."""
    latest_c = canonicalize_timestamp(latest_ts) if isinstance(latest_ts, datetime) else None
    etag = compute_etag([r.get('id') for r in rows], total, limit, offset, _iso(latest_c) if latest_c else '')
    cached = handle_conditional(etag, latest_c)
    if cached is not None:
        return cached
    resp = make_response(build_list_payload(rows, total, limit, offset))
    resp.headers['ETag'] = etag
    if latest_c:
        resp.headers['Last-Modified'] = _http_date(latest_c)
        resp.headers['X-Last-Modified-ISO'] = _iso(latest_c)
    return resp


def latest_timestamp(rows: list, attr: str = 'updated_at') -> Optional[datetime]:
    stamps = [canonicalize_timestamp(getattr(r, attr)) for r in rows if getattr(r, attr, None) is not None]
    return max(stamps) if stamps else None

__all__ = ['apply_pagination', 'read_pagination', 'make_cached_list_response', 'handle_conditional', 'compute_etag', 'latest_timestamp']
