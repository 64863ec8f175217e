"""
Seed script for the Civic Pulse store (Firestore or the in-memory mock).

Usage:
  - Dry run (default): python scripts/seed_db.py
  - Apply to configured DB: python scripts/seed_db.py --apply
  - Also create sample reports from a JSON file: python scripts/seed_db.py --apply --reports sample_reports.json

Behavior:
  - Registers the default department directory (existing codes are kept).
  - Optionally submits each entry of the reports file through ReportService,
    so numbers, audit entries and trust effects are created as in production.
    Each entry is a ReportCreate body plus a "reporter_id".

NOTE: When applying to real Firestore, ensure FIREBASE_CREDENTIALS_PATH is set
and USE_MOCK_DB=false in `.env`.
"""

import argparse
import json
import logging
import os

from app.models.report import ReportCreate
from app.services.department_service import DEFAULT_DEPARTMENTS, get_department_service
from app.services.report_service import get_report_service

logger = logging.getLogger("seed_db")


def seed_departments(apply: bool = False) -> int:
    service = get_department_service()
    created = 0
    for department in DEFAULT_DEPARTMENTS:
        exists = service.store.get_department(department.code) is not None
        logger.info(f"{'Keeping' if exists else 'Preparing'}: departments/{department.code}")
        if apply and not exists:
            service.register_department(department)
            created += 1
    return created


def seed_reports(path: str, apply: bool = False) -> int:
    with open(path, "r", encoding="utf-8") as f:
        entries = json.load(f)

    service = get_report_service()
    created = 0
    for entry in entries:
        reporter_id = entry.pop("reporter_id", "seed-script")
        data = ReportCreate.model_validate(entry)
        logger.info(f"Preparing report: {data.title} ({data.category.value})")
        if not apply:
            continue
        report = service.create_report(data, reporter_id=reporter_id)
        logger.info(f"Wrote: reports/{report.id} ({report.report_number})")
        created += 1
    return created


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    parser = argparse.ArgumentParser()
    parser.add_argument("--apply", action="store_true", help="Write to the DB instead of dry-run")
    parser.add_argument("--reports", help="JSON file with a list of sample reports")
    args = parser.parse_args()

    departments = seed_departments(apply=args.apply)
    reports = 0
    if args.reports:
        if not os.path.exists(args.reports):
            logger.error(f"Reports file not found: {args.reports}")
            return
        reports = seed_reports(args.reports, apply=args.apply)

    mode = "Applied" if args.apply else "Dry run"
    logger.info(f"{mode}: {departments} department(s), {reports} report(s) created")


if __name__ == "__main__":
    main()
