from sqlalchemy import select, func
from permitdesk.constants.permissions import ROLE_PRESETS, ALL_PERMISSION_KEYS, WILDCARD
from permitdesk.models.authz import Permission, Role
from permitdesk.services.seeding import seed, role_permission_map, roles_checksum, validate_seeded


def _counts(session):
    return (
        session.execute(select(func.count()).select_from(Permission)).scalar_one(),
        session.execute(select(func.count()).select_from(Role)).scalar_one(),
    )


def test_reseed_changes_nothing(session):
    before_counts = _counts(session)
    before_map = role_permission_map(session)
    report = seed(session)
    session.commit()
    assert report['permissions_created'] == 0 and report['permissions_updated'] == 0
    assert report['roles_created'] == 0 and report['roles_updated'] == 0
    assert report['warnings'] == []
    assert _counts(session) == before_counts
    after_map = role_permission_map(session)
    assert after_map == before_map
    assert roles_checksum(after_map) == roles_checksum(before_map)


def test_seeded_payloads_match_presets(session):
    stored = role_permission_map(session)
    for name, spec in ROLE_PRESETS.items():
        assert stored[name] == sorted(set(spec['permissions'])), name
    keys = set(session.execute(select(Permission.key)).scalars())
    assert set(ALL_PERMISSION_KEYS) <= keys
    assert stored['ADMIN'] == [WILDCARD]


def test_reseed_restores_a_drifted_role(session):
    role = session.execute(select(Role).where(Role.name == 'VMS_GUARD')).scalar_one()
    role.permissions = ['vms.checkin.view']
    session.commit()
    report = seed(session)
    session.commit()
    assert report['roles_updated'] == 1
    session.refresh(role)
    assert role.permissions == sorted(ROLE_PRESETS['VMS_GUARD']['permissions'])


def test_bad_entries_are_warned_and_skipped(session):
    table = {
        'SEED_PROBE': {'display_name': 'Probe', 'permissions': ['permits.view', 'permits.teleport']},
        'SEED_BROKEN': {'permissions': 'permits.view'},
    }
    report = seed(session, role_table=table, module_actions={'Bad Module': ['x'], 'permits': ['view']})
    session.commit()
    warnings = report['warnings']
    assert any("'Bad Module.x'" in w for w in warnings)
    assert any("'permits.teleport'" in w for w in warnings)
    assert any('SEED_BROKEN' in w for w in warnings)
    stored = role_permission_map(session)
    assert stored['SEED_PROBE'] == ['permits.view']
    assert 'SEED_BROKEN' not in stored
    assert validate_seeded(session) == []


def test_checksum_is_order_independent():
    a = {'B': ['x.y'], 'A': ['a.b', 'c.d']}
    b = {'A': ['a.b', 'c.d'], 'B': ['x.y']}
    assert roles_checksum(a) == roles_checksum(b)
    assert roles_checksum(a) != roles_checksum({'A': ['a.b'], 'B': ['x.y']})
