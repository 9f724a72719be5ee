#!/usr/bin/env python
"""Idempotent seed script for permissions & roles.

Usage:
    python backend/scripts/seed_authz.py               # seed normally
    python backend/scripts/seed_authz.py --show-roles  # print role -> permission counts (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run     # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --validate    # exit 2 on malformed keys or dangling role references

The initial administrator comes from SEED_ADMIN_EMAIL / SEED_ADMIN_PASSWORD.
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from permitdesk import create_app, get_db  # type: ignore
from permitdesk.services.seeding import seed, ensure_user, role_permission_map, roles_checksum, validate_seeded


def ensure_schema(session):
    try:
        session.execute(text('SELECT 1 FROM permissions LIMIT 1'))
    except SQLAlchemyError:
        # Bootstrap fallback; in a real environment run `alembic upgrade head`
        session.rollback()
        from permitdesk.models.authz import Base
        from permitdesk.models import audit, permit, visitor, meter  # noqa: F401
        Base.metadata.create_all(session.get_bind())
    session.commit()


def ensure_initial_admin(session):
    admin_email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com')
    user = ensure_user(session, admin_email, os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'), 'ADMIN', name='Administrator')
    if user is None:
        print('[WARN] ADMIN role missing; skipping admin user creation')
    else:
        print(f"[INFO] Admin user ready: {admin_email}")


def print_role_summary(mapping):
    if not mapping:
        print("[INFO] No roles present.")
        return
    name_w = max(len(name) for name in mapping)
    print(f"{'Role'.ljust(name_w)} | Count | Sample (up to 8)")
    print('-' * (name_w + 40))
    for name, keys in mapping.items():
        print(f"{name.ljust(name_w)} | {str(len(keys)).rjust(5)} | {', '.join(keys[:8])}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed permission keys & system roles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role permission counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role->permissions JSON (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Validate stored keys & role references; exits 2 on problems')
    p.add_argument('--fail-if-changed', metavar='CHECKSUM', help='Exit 4 if computed roles checksum differs from provided value')
    p.add_argument('--skip-admin', action='store_true', help='Do not create the initial admin user')
    return p.parse_args(argv)


def run(args) -> int:
    app = create_app()
    with app.app_context():
        session = get_db()
        ensure_schema(session)
        try:
            report = seed(session)
            for warning in report['warnings']:
                print(f"[WARN] {warning}")
            if not args.skip_admin:
                ensure_initial_admin(session)
            session.flush()
            mapping = role_permission_map(session)

            if args.validate:
                problems = validate_seeded(session)
                if problems:
                    print('\n[VALIDATION] FAIL:')
                    for problem in problems:
                        print(' -', problem)
                    session.rollback()
                    return 2
                print('[VALIDATION] OK: All permission keys & role references valid.')

            checksum = roles_checksum(mapping)
            if args.fail_if_changed and checksum != args.fail_if_changed:
                print(f"[CHECKSUM] MISMATCH: expected {args.fail_if_changed} got {checksum}")
                session.rollback()
                return 4

            summary = (f"Permissions created: {report['permissions_created']}, updated: {report['permissions_updated']}; "
                       f"Roles created: {report['roles_created']}, updated: {report['roles_updated']}")
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) {summary}")
            else:
                session.commit()
                print(f"[DONE] {summary}")

            if args.show_roles:
                print('\nRole Permission Summary:')
                print_role_summary(mapping)

            if args.export_json is not None:
                payload = {
                    'roles': mapping,
                    'meta': {
                        'distinct_permissions': len({k for keys in mapping.values() for k in keys}),
                        'roles_checksum_sha256': checksum,
                        'role_names_sorted': sorted(mapping),
                        'dry_run': args.dry_run,
                    }
                }
                if args.export_json == '-':
                    print(json.dumps(payload, indent=2, sort_keys=True))
                else:
                    with open(args.export_json, 'w', encoding='utf-8') as f:
                        json.dump(payload, f, indent=2, sort_keys=True)
                    print(f"[INFO] Exported JSON to {args.export_json}")
            return 0
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def main():
    args = parse_args()
    try:
        code = run(args)
    except Exception as exc:  # top-level guard: report and exit 1
        print(f"[ERROR] Seed failed: {exc}")
        code = 1
    sys.exit(code)


if __name__ == '__main__':
    main()
