"""
Data Loader Script - Loads seed_data.json (test templates and applications) into the database.

Each test entry is validated as a TestDefinition before it is written, so a
malformed template fails here rather than when a candidate starts the test.
Existing rows with the same id / application number are replaced.

Usage:
    python load_data.py                       # Uses ../seed_data.json
    python load_data.py path/to/seed.json     # Custom file
"""

import json
import os
import sys

from pydantic import ValidationError

from exam_session.database import SessionLocal, create_tables
from exam_session.logging_config import setup_logging
from exam_session.models.application import Application
from exam_session.services.catalog import definition_to_template
from exam_session.services.domain import TestDefinition


def load(data: dict, db) -> tuple:
    """Write the tests and applications from a seed document; returns (tests, applications)."""
    tests = [TestDefinition.model_validate(t) for t in data.get("tests", [])]
    for definition in tests:
        db.merge(definition_to_template(definition))

    applications = data.get("applications", [])
    for entry in applications:
        existing = db.query(Application).filter(
            Application.application_number == entry["application_number"]
        ).first()
        if existing is None:
            existing = Application(application_number=entry["application_number"])
            db.add(existing)
        existing.full_name = entry["full_name"]
        existing.unique_id = entry.get("unique_id")
        existing.test_mode = entry.get("test_mode", "online")
        existing.payment_verified = bool(entry.get("payment_verified", False))

    db.commit()
    return len(tests), len(applications)


def main():
    setup_logging()

    # Locate the data file
    data_file = sys.argv[1] if len(sys.argv) > 1 else os.path.join(
        os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "seed_data.json")
    if not os.path.exists(data_file):
        print(f"Error: Could not find {data_file}")
        sys.exit(1)

    print(f"Loading data from: {data_file}")
    with open(data_file, 'r') as f:
        data = json.load(f)

    create_tables()
    db = SessionLocal()
    try:
        test_count, application_count = load(data, db)
    except (ValidationError, KeyError) as e:
        db.rollback()
        print(f"Invalid seed data: {e}")
        sys.exit(1)
    finally:
        db.close()

    print("=" * 60)
    print("SEED SUMMARY")
    print("=" * 60)
    print(f"  Test templates:  {test_count}")
    print(f"  Applications:    {application_count}")
    print("=" * 60)


if __name__ == "__main__":
    main()
