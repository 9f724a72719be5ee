"""Meter readings: capture, verification, export and analytics.

All arithmetic stays in ``decimal.Decimal`` quantized to cents, so
45678.50 - 45234.00 is exactly 444.50 end to end (model, JSON, CSV).
"""
from __future__ import annotations
import csv
import io
from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import select, update, func

from permitdesk.errors import InvalidTransition, NotFound, ValidationError
from permitdesk.models.meter import MeterReading
from permitdesk.utils.timeutil import utcnow, as_utc, isoformat
from permitdesk.utils.validation import require_fields, parse_decimal, parse_datetime, TWO_PLACES

METER_TYPES: List[Dict[str, str]] = [
    {'value': 'electricity', 'label': 'Electricity Meter', 'unit': 'kWh'},
    {'value': 'water', 'label': 'Water Meter', 'unit': 'm³'},
    {'value': 'gas', 'label': 'Gas Meter', 'unit': 'm³'},
    {'value': 'transmitter', 'label': 'Transmitter', 'unit': 'dBm'},
    {'value': 'temperature', 'label': 'Temperature Sensor', 'unit': '°C'},
    {'value': 'pressure', 'label': 'Pressure Gauge', 'unit': 'PSI'},
    {'value': 'fuel', 'label': 'Fuel Meter', 'unit': 'L'},
    {'value': 'flow', 'label': 'Flow Meter', 'unit': 'L/min'},
    {'value': 'voltage', 'label': 'Voltage Meter', 'unit': 'V'},
    {'value': 'current', 'label': 'Current Meter', 'unit': 'A'},
    {'value': 'power', 'label': 'Power Meter', 'unit': 'W'},
    {'value': 'frequency', 'label': 'Frequency Meter', 'unit': 'Hz'},
    {'value': 'humidity', 'label': 'Humidity Sensor', 'unit': '%'},
    {'value': 'custom', 'label': 'Custom/Other', 'unit': ''},
]
METER_TYPE_VALUES = tuple(t['value'] for t in METER_TYPES)
DEFAULT_UNITS = {t['value']: t['unit'] for t in METER_TYPES}

CSV_HEADERS = ['Date', 'Meter Type', 'Meter Name', 'Serial', 'Location', 'Reading', 'Unit',
               'Previous', 'Consumption', 'Verified', 'Notes']

PERIODS = {'7d': timedelta(days=7), '30d': timedelta(days=30), '90d': timedelta(days=90), '1y': timedelta(days=365)}
# change relative to the previous reading, in percent
ALERT_HIGH = Decimal('50')
ALERT_LOW = Decimal('-30')

EXPORT_FORMATS = ('csv', 'json')


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value.quantize(TWO_PLACES)) if value is not None else None


def find_previous_reading(session, meter_type: str, meter_name: str, meter_serial: Optional[str], before: datetime) -> Optional[MeterReading]:
    stmt = select(MeterReading).where(
        MeterReading.meter_type == meter_type,
        MeterReading.meter_name == meter_name,
        MeterReading.reading_date <= before,
    )
    if meter_serial:
        stmt = stmt.where(MeterReading.meter_serial == meter_serial)
    stmt = stmt.order_by(MeterReading.reading_date.desc(), MeterReading.id.desc()).limit(1)
    return session.execute(stmt).scalar_one_or_none()


def compute_consumption(reading_value: Decimal, previous: Optional[Decimal]) -> Optional[Decimal]:
    if previous is None:
        return None
    return (reading_value - previous).quantize(TWO_PLACES)


def create_reading(session, data: Dict[str, Any], engineer_id: int) -> MeterReading:
    require_fields(data, 'meter_type', 'meter_name', 'reading_value')
    meter_type = str(data['meter_type']).strip().lower()
    if meter_type not in METER_TYPE_VALUES:
        raise ValidationError('meter_type invalid', extra={'allowed': list(METER_TYPE_VALUES)})
    value = parse_decimal(data['reading_value'], 'reading_value')
    reading_date = parse_datetime(data.get('reading_date'), 'reading_date', required=False) or utcnow()
    meter_name = str(data['meter_name']).strip()
    meter_serial = data.get('meter_serial') or None

    if data.get('previous_reading') not in (None, ''):
        previous = parse_decimal(data['previous_reading'], 'previous_reading')
    else:
        prior = find_previous_reading(session, meter_type, meter_name, meter_serial, reading_date)
        previous = prior.reading_value if prior else None

    reading = MeterReading(
        meter_type=meter_type,
        meter_name=meter_name,
        meter_serial=meter_serial,
        location=data.get('location'),
        reading_value=value,
        unit=data.get('unit') or DEFAULT_UNITS.get(meter_type) or None,
        previous_reading=previous,
        consumption=compute_consumption(value, previous),
        reading_date=reading_date,
        notes=data.get('notes'),
        site_engineer_id=engineer_id,
        is_verified=False,
    )
    session.add(reading)
    session.commit()
    current_app.logger.info('Meter reading %s recorded for %s/%s', reading.id, meter_type, meter_name)
    return reading


def get_reading(session, reading_id: int) -> MeterReading:
    reading = session.get(MeterReading, reading_id)
    if not reading:
        raise NotFound('Reading not found')
    return reading


def verify_reading(session, reading_id: int, verifier_id: int, notes: Optional[str] = None) -> MeterReading:
    reading = get_reading(session, reading_id)
    values: Dict[str, Any] = {'is_verified': True, 'verified_by': verifier_id, 'verified_at': utcnow()}
    if notes:
        values['notes'] = notes
    res = session.execute(
        update(MeterReading)
        .where(MeterReading.id == reading_id, MeterReading.is_verified.is_(False))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        session.rollback()
        raise InvalidTransition('Reading already verified')
    session.commit()
    session.refresh(reading)
    return reading


def build_filter(meter_type: Optional[str] = None, start_date: Any = None, end_date: Any = None, engineer_id: Optional[int] = None) -> List[Any]:
    criteria = []
    if meter_type:
        criteria.append(MeterReading.meter_type == meter_type)
    start = parse_datetime(start_date, 'start_date', required=False)
    end = parse_datetime(end_date, 'end_date', required=False)
    if start and end and end < start:
        raise ValidationError('end_date must not be before start_date')
    if start:
        criteria.append(MeterReading.reading_date >= start)
    if end:
        if isinstance(end_date, str) and len(end_date.strip()) == 10:
            # bare date means the whole day
            end = end + timedelta(days=1)
            criteria.append(MeterReading.reading_date < end)
        else:
            criteria.append(MeterReading.reading_date <= end)
    if engineer_id is not None:
        criteria.append(MeterReading.site_engineer_id == engineer_id)
    return criteria


def fetch_for_export(session, criteria: List[Any], max_rows: int) -> List[MeterReading]:
    total = session.execute(select(func.count()).select_from(MeterReading).where(*criteria)).scalar_one()
    if total > max_rows:
        raise ValidationError(
            f'Export matches {total} readings, above the limit of {max_rows}; narrow the filter',
            extra={'matched': total, 'limit': max_rows},
        )
    stmt = select(MeterReading).where(*criteria).order_by(MeterReading.reading_date.asc(), MeterReading.id.asc())
    return list(session.execute(stmt).scalars())


def summarize_by_type(readings: List[MeterReading]) -> Dict[str, Dict[str, Any]]:
    """count / sum / avg of consumption per meter type (avg over rows that have one)."""
    groups: Dict[str, Dict[str, Any]] = OrderedDict()
    for r in readings:
        g = groups.setdefault(r.meter_type, {'count': 0, 'with_consumption': 0, 'sum': Decimal('0.00')})
        g['count'] += 1
        if r.consumption is not None:
            g['with_consumption'] += 1
            g['sum'] += r.consumption
    out = {}
    for meter_type, g in groups.items():
        avg = (g['sum'] / g['with_consumption']).quantize(TWO_PLACES) if g['with_consumption'] else None
        out[meter_type] = {
            'count': g['count'],
            'total_consumption': _money(g['sum']),
            'avg_consumption': _money(avg),
        }
    return out


def reading_row(r: MeterReading) -> Dict[str, Any]:
    return {
        'Date': isoformat(r.reading_date),
        'Meter Type': r.meter_type,
        'Meter Name': r.meter_name,
        'Serial': r.meter_serial or '',
        'Location': r.location or '',
        'Reading': _money(r.reading_value),
        'Unit': r.unit or '',
        'Previous': _money(r.previous_reading) or '',
        'Consumption': _money(r.consumption) or '',
        'Verified': 'Yes' if r.is_verified else 'No',
        'Notes': r.notes or '',
    }


def render_csv(readings: List[MeterReading]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_HEADERS)
    writer.writeheader()
    for r in readings:
        writer.writerow(reading_row(r))
    return buf.getvalue()


def render_json(readings: List[MeterReading], filters: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'generated_at': isoformat(utcnow()),
        'filters': filters,
        'count': len(readings),
        'summary': summarize_by_type(readings),
        'readings': [serialize_reading(r) for r in readings],
    }


def export_readings(session, filters: Dict[str, Any], fmt: str = 'csv', engineer_id: Optional[int] = None):
    """Return (body, mimetype, filename) for the filtered reading set."""
    fmt = (fmt or 'csv').lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError('format must be csv or json', extra={'allowed': list(EXPORT_FORMATS)})
    criteria = build_filter(filters.get('meter_type'), filters.get('start_date'), filters.get('end_date'), engineer_id)
    readings = fetch_for_export(session, criteria, current_app.config['EXPORT_MAX_ROWS'])
    stamp = utcnow().strftime('%Y%m%d')
    current_app.logger.info('Exporting %d meter readings as %s', len(readings), fmt)
    if fmt == 'csv':
        return render_csv(readings), 'text/csv', f'meter-readings-{stamp}.csv'
    return render_json(readings, {k: v for k, v in filters.items() if v}), 'application/json', f'meter-readings-{stamp}.json'


def change_percent(r: MeterReading) -> Optional[Decimal]:
    if r.consumption is None or not r.previous_reading:
        return None
    return (r.consumption / r.previous_reading * 100).quantize(TWO_PLACES)


def detect_alerts(readings: List[MeterReading]) -> List[Dict[str, Any]]:
    alerts = []
    for r in readings:
        pct = change_percent(r)
        if pct is None or ALERT_LOW <= pct <= ALERT_HIGH:
            continue
        alerts.append({
            'id': r.id,
            'type': 'HIGH_CONSUMPTION' if pct > ALERT_HIGH else 'LOW_CONSUMPTION',
            'meter_name': r.meter_name,
            'location': r.location,
            'consumption': _money(r.consumption),
            'change_percent': str(pct),
            'date': isoformat(r.reading_date),
        })
    return alerts


def analytics(session, period: str = '30d', meter_type: Optional[str] = None, engineer_id: Optional[int] = None) -> Dict[str, Any]:
    window = PERIODS.get(period)
    if window is None:
        raise ValidationError('period invalid', extra={'allowed': list(PERIODS)})
    criteria = [MeterReading.reading_date >= utcnow() - window]
    if meter_type:
        criteria.append(MeterReading.meter_type == meter_type)
    if engineer_id is not None:
        criteria.append(MeterReading.site_engineer_id == engineer_id)
    readings = list(session.execute(
        select(MeterReading).where(*criteria).order_by(MeterReading.reading_date.asc(), MeterReading.id.asc())
    ).scalars())

    consumptions = [r.consumption for r in readings if r.consumption is not None]
    total = sum(consumptions, Decimal('0.00'))
    values = [r.reading_value for r in readings]
    by_date: Dict[str, Dict[str, Any]] = OrderedDict()
    for r in readings:
        key = as_utc(r.reading_date).date().isoformat()
        day = by_date.setdefault(key, {'date': key, 'total_readings': 0, 'total_consumption': Decimal('0.00')})
        day['total_readings'] += 1
        day['total_consumption'] += r.consumption or Decimal('0.00')
    return {
        'period': period,
        'stats': {
            'total_readings': len(readings),
            'total_consumption': _money(total),
            'avg_consumption': _money(total / len(consumptions)) if consumptions else None,
            'max_reading': _money(max(values)) if values else None,
            'min_reading': _money(min(values)) if values else None,
            'verified_count': sum(1 for r in readings if r.is_verified),
            'pending_verification': sum(1 for r in readings if not r.is_verified),
        },
        'by_meter_type': summarize_by_type(readings),
        'chart_data': [dict(d, total_consumption=_money(d['total_consumption'])) for d in by_date.values()],
        'alerts': detect_alerts(readings),
    }


def serialize_reading(r: MeterReading) -> Dict[str, Any]:
    return {
        'id': r.id,
        'meter_type': r.meter_type,
        'meter_name': r.meter_name,
        'meter_serial': r.meter_serial,
        'location': r.location,
        'reading_value': _money(r.reading_value),
        'unit': r.unit,
        'previous_reading': _money(r.previous_reading),
        'consumption': _money(r.consumption),
        'reading_date': isoformat(r.reading_date),
        'notes': r.notes,
        'site_engineer_id': r.site_engineer_id,
        'is_verified': r.is_verified,
        'verified_by': r.verified_by,
        'verified_at': isoformat(r.verified_at),
    }
