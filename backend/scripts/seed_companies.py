#!/usr/bin/env python
"""Seed visitor-management companies.

Usage:
    python backend/scripts/seed_companies.py                    # seed the built-in tenant list
    python backend/scripts/seed_companies.py --file names.json  # JSON array of company names
    python backend/scripts/seed_companies.py --dry-run

Companies are created active with require_approval enabled. Existing codes are skipped.
"""
from __future__ import annotations
import os, sys, argparse, json

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from permitdesk import create_app, get_db  # type: ignore
from permitdesk.services.companies import seed_companies

DEFAULT_COMPANIES = [
    'Adani Enterprises',
    'Azelis',
    'Clariant Chemicals',
    'Covestro',
    'Godrej',
    'HCL Technologies',
    'Lupin',
    'Maersk Global Service Centre',
    'RBL Bank',
    'Sulzer Tech',
    'Vodafone Idea',
    'Yes Bank',
]


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Seed VMS companies")
    p.add_argument('--file', metavar='FILE', help='JSON file holding an array of company names')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    return p.parse_args(argv)


def load_names(path):
    if not path:
        return list(DEFAULT_COMPANIES)
    with open(path, encoding='utf-8') as f:
        names = json.load(f)
    if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
        raise ValueError(f"{path} must contain a JSON array of strings")
    return names


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            result = seed_companies(session, load_names(args.file))
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Companies would create: {result['created']}, skipped: {result['skipped']}")
            else:
                session.commit()
                print(f"[DONE] Companies created: {result['created']}, skipped: {result['skipped']}")
        except Exception as exc:
            session.rollback()
            print(f"[ERROR] Company seed failed: {exc}")
            sys.exit(1)
        finally:
            session.close()


if __name__ == '__main__':
    main()
