from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from permitdesk.models.authz import User, Role, Permission
from permitdesk.models.audit import AuditLog
from sqlalchemy import select
from permitdesk import get_db
from permitdesk.errors import ValidationError, NotFound, Conflict
from permitdesk.constants.permissions import WILDCARD
from permitdesk.services.policy import compute_effective_permissions, build_claims
from permitdesk.utils.listing import make_cached_list_response, apply_pagination, latest_timestamp
from permitdesk.utils.sorting import apply_multi_sort
from permitdesk.utils.timeutil import isoformat
from permitdesk.decorators.audit import audit_log
from permitdesk.decorators.auth import require_permissions

iam_bp = Blueprint('iam', __name__)


def _role_json(r: Role):
    return {
        'id': r.id,
        'name': r.name,
        'display_name': r.display_name,
        'description': r.description,
        'is_system': r.is_system,
        'permissions': sorted(r.permissions or []),
    }


def _user_json(u: User):
    return {
        'id': u.id,
        'name': u.name,
        'email': u.email,
        'phone': u.phone,
        'is_active': u.is_active,
        'role_id': u.role_id,
        'role': u.role.name if u.role else None,
        'company_id': u.company_id,
    }


def _get_role(session, role_id: int) -> Role:
    role = session.get(Role, role_id)
    if not role:
        raise NotFound('Role not found')
    return role


def _validated_keys(session, keys):
    if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
        raise ValidationError('permissions must be a list of keys')
    known = set(session.execute(select(Permission.key)).scalars())
    missing = sorted(set(keys) - known - {WILDCARD})
    if missing:
        raise ValidationError(f'Unknown permission keys: {missing}', extra={'unknown': missing})
    return sorted(set(keys))


@iam_bp.post('/auth/login')
def login():
    data = request.json or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        raise ValidationError('email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(password):
        abort(401, description='invalid credentials')
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=build_claims(user))
    return {'access_token': token, 'user': _user_json(user)}


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    user_id = int(get_jwt_identity())
    session = get_db()
    user = session.get(User, user_id)
    if not user:
        raise NotFound('User not found')
    eff = compute_effective_permissions(user.id)
    return dict(_user_json(user), perms=eff['perms'])


@iam_bp.get('/permissions')
@require_permissions('roles.view')
def list_permissions():
    session = get_db()
    q = session.query(Permission)
    module = request.args.get('module')
    if module:
        q = q.filter(Permission.module == module)
    q = q.order_by(Permission.id.asc())
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    data = [{'id': p.id, 'key': p.key, 'module': p.module, 'action': p.action, 'description': p.description} for p in rows]
    return make_cached_list_response(data, total, limit, offset, latest_timestamp(rows))


@iam_bp.get('/roles')
@require_permissions('roles.view')
def list_roles():
    session = get_db()
    q = session.query(Role)
    q = apply_multi_sort(q, request.args.get('sort'), {'name': Role.name, 'id': Role.id}, Role.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return make_cached_list_response([_role_json(r) for r in rows], total, limit, offset, latest_timestamp(rows))


@iam_bp.post('/roles')
@require_permissions('roles.manage')
@audit_log('ROLE.CREATE', entity='Role', entity_id_key='id', meta_keys=['name'])
def create_role():
    data = request.json or {}
    name = (data.get('name') or '').strip().upper()
    if not name:
        raise ValidationError('name required')
    session = get_db()
    if session.execute(select(Role).where(Role.name == name)).scalar_one_or_none():
        raise Conflict('role exists')
    role = Role(
        name=name,
        display_name=data.get('display_name') or name,
        description=data.get('description'),
        is_system=False,
        permissions=_validated_keys(session, data.get('permissions') or []),
    )
    session.add(role)
    session.commit()
    return _role_json(role), 201


def _role_snapshot(kw):
    role = get_db().get(Role, kw.get('role_id'))
    return _role_json(role) if role else {}


@iam_bp.put('/roles/<int:role_id>')
@require_permissions('roles.manage')
@audit_log('ROLE.UPDATE', entity='Role', entity_id_key='id', diff_keys=['display_name', 'description'], pre_fetch=lambda a, kw: _role_snapshot(kw))
def update_role(role_id: int):
    session = get_db()
    role = _get_role(session, role_id)
    data = request.json or {}
    if 'display_name' in data:
        if not data['display_name']:
            raise ValidationError('display_name cannot be empty')
        role.display_name = data['display_name']
    if 'description' in data:
        role.description = data['description']
    session.commit()
    return _role_json(role)


@iam_bp.put('/roles/<int:role_id>/permissions')
@require_permissions('roles.manage')
@audit_log(
    'ROLE.PERM.REPLACE',
    entity='Role',
    entity_id_key='id',
    meta_builder=lambda data, rv, a, kw: {'count': len(data.get('permissions', []))},
)
def replace_role_permissions(role_id: int):
    session = get_db()
    role = _get_role(session, role_id)
    data = request.json or {}
    role.permissions = _validated_keys(session, data.get('permissions'))
    session.commit()
    return _role_json(role)


@iam_bp.delete('/roles/<int:role_id>')
@require_permissions('roles.manage')
@audit_log('ROLE.DELETE', entity='Role', entity_id_key='id', meta_keys=['name'])
def delete_role(role_id: int):
    session = get_db()
    role = _get_role(session, role_id)
    if role.is_system:
        raise ValidationError('system roles cannot be deleted')
    in_use = session.execute(select(User.id).where(User.role_id == role.id).limit(1)).first()
    if in_use:
        raise Conflict('role is assigned to users')
    payload = {'id': role.id, 'name': role.name, 'deleted': True}
    session.delete(role)
    session.commit()
    return payload


@iam_bp.get('/users')
@require_permissions('users.view')
def list_users():
    session = get_db()
    q = session.query(User)
    role = request.args.get('role')
    if role:
        q = q.join(Role, User.role_id == Role.id).filter(Role.name == role)
    search = request.args.get('q')
    if search:
        q = q.filter(User.name.ilike(f"%{search}%") | User.email.ilike(f"%{search}%"))
    q = apply_multi_sort(q, request.args.get('sort'), {'name': User.name, 'email': User.email, 'id': User.id}, User.id)
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    return make_cached_list_response([_user_json(u) for u in rows], total, limit, offset, latest_timestamp(rows))


def _user_snapshot(kw):
    user = get_db().get(User, kw.get('user_id'))
    return _user_json(user) if user else {}


@iam_bp.put('/users/<int:user_id>/role')
@require_permissions('users.assign_role')
@audit_log('USER.ROLE.SET', entity='User', entity_id_key='id', diff_keys=['role'], pre_fetch=lambda a, kw: _user_snapshot(kw))
def set_user_role(user_id: int):
    session = get_db()
    user = session.get(User, user_id)
    if not user:
        raise NotFound('User not found')
    data = request.json or {}
    role_id = data.get('role_id')
    if not isinstance(role_id, int) or isinstance(role_id, bool):
        raise ValidationError('role_id must be an integer')
    role = _get_role(session, role_id)
    user.role_id = role.id
    if 'company_id' in data:
        user.company_id = data['company_id']
    session.commit()
    session.refresh(user)
    return _user_json(user)


@iam_bp.get('/audit/logs')
@require_permissions('audit.view')
def list_audit_logs():
    session = get_db()
    q = session.query(AuditLog)
    actor = request.args.get('actor_user_id')
    action = request.args.get('action')
    entity = request.args.get('entity')
    entity_id = request.args.get('entity_id')
    if actor:
        try:
            q = q.filter(AuditLog.actor_user_id == int(actor))
        except ValueError:
            raise ValidationError('actor_user_id must be int')
    if action:
        q = q.filter(AuditLog.action == action)
    if entity:
        q = q.filter(AuditLog.entity == entity)
    if entity_id:
        q = q.filter(AuditLog.entity_id == entity_id)
    q = q.order_by(AuditLog.id.desc())
    paged_q, total, limit, offset = apply_pagination(q)
    rows = paged_q.all()
    data = [
        {
            'id': r.id,
            'actor_user_id': r.actor_user_id,
            'actor_role': r.actor_role,
            'action': r.action,
            'entity': r.entity,
            'entity_id': r.entity_id,
            'meta': r.meta,
            'created_at': isoformat(r.created_at),
        } for r in rows
    ]
    return make_cached_list_response(data, total, limit, offset, latest_timestamp(rows, 'created_at'))
