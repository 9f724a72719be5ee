from __future__ import annotations
from flask import Blueprint, request, Response, jsonify
from permitdesk import get_db
from permitdesk.decorators.auth import require_permissions
from permitdesk.decorators.audit import audit_log
from permitdesk.errors import Unauthorized
from permitdesk.models.meter import MeterReading
from permitdesk.services import meters as svc
from permitdesk.services.policy import current_user_id, has_permissions
from permitdesk.utils.listing import make_cached_list_response, apply_pagination, latest_timestamp
from permitdesk.utils.sorting import apply_multi_sort

meters_bp = Blueprint('meters', __name__)

SORTABLE = {
    'reading_date': MeterReading.reading_date,
    'meter_type': MeterReading.meter_type,
    'meter_name': MeterReading.meter_name,
    'reading_value': MeterReading.reading_value,
    'updated_at': MeterReading.updated_at,
    'id': MeterReading.id,
}


def _engineer_scope():
    """None when the caller may see every engineer's readings."""
    return None if has_permissions('meters.view_all') else current_user_id()


@meters_bp.get('/types')
@require_permissions('meters.view')
def meter_types():
    return {'meter_types': svc.METER_TYPES}


@meters_bp.get('/readings')
@require_permissions('meters.view')
def list_readings():
    session = get_db()
    q = session.query(MeterReading)
    criteria = svc.build_filter(
        request.args.get('meter_type'),
        request.args.get('start_date'),
        request.args.get('end_date'),
        _engineer_scope(),
    )
    if criteria:
        q = q.filter(*criteria)
    verified = request.args.get('verified')
    if verified in ('true', 'false'):
        q = q.filter(MeterReading.is_verified.is_(verified == 'true'))
    q = apply_multi_sort(q, request.args.get('sort'), SORTABLE, MeterReading.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return make_cached_list_response([svc.serialize_reading(r) for r in rows], total, limit, offset, latest_timestamp(rows))


@meters_bp.post('/readings')
@require_permissions('meters.create')
@audit_log('METER.READING.CREATE', entity='MeterReading', entity_id_key='id', meta_keys=['meter_type', 'meter_name', 'consumption'])
def create_reading():
    reading = svc.create_reading(get_db(), request.json or {}, current_user_id())
    return svc.serialize_reading(reading), 201


@meters_bp.get('/readings/<int:reading_id>')
@require_permissions('meters.view')
def get_reading(reading_id: int):
    reading = svc.get_reading(get_db(), reading_id)
    scope = _engineer_scope()
    if scope is not None and reading.site_engineer_id != scope:
        raise Unauthorized('Reading belongs to another engineer')
    return svc.serialize_reading(reading)


@meters_bp.post('/readings/<int:reading_id>/verify')
@require_permissions('meters.verify')
@audit_log('METER.READING.VERIFY', entity='MeterReading', entity_id_key='id', meta_keys=['is_verified'])
def verify_reading(reading_id: int):
    data = request.get_json(silent=True) or {}
    reading = svc.verify_reading(get_db(), reading_id, current_user_id(), data.get('notes'))
    return svc.serialize_reading(reading)


@meters_bp.get('/export')
@require_permissions('meters.export')
def export_readings():
    filters = {
        'meter_type': request.args.get('meter_type'),
        'start_date': request.args.get('start_date'),
        'end_date': request.args.get('end_date'),
    }
    body, mimetype, filename = svc.export_readings(get_db(), filters, request.args.get('format', 'csv'), _engineer_scope())
    if mimetype == 'application/json':
        resp = jsonify(body)
    else:
        resp = Response(body, mimetype=mimetype)
    resp.headers['Content-Disposition'] = f'attachment; filename="{filename}"'
    return resp


@meters_bp.get('/analytics')
@require_permissions('meters.view')
def analytics():
    return svc.analytics(
        get_db(),
        period=request.args.get('period', '30d'),
        meter_type=request.args.get('meter_type'),
        engineer_id=_engineer_scope(),
    )
