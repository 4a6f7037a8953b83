"""
Repair class bindings on existing student data.
Re-points active students at the current class advisor; --backfill derives missing class ids first.

Idempotent. Nothing is written with --dry-run.
Usage: python -m app.scripts.repair_faculty_bindings [--dry-run] [--backfill] [--check] [--department CSE]
"""

import argparse
import asyncio
import sys
from typing import Optional

from app.api.v1.students.repair import (
    backfill_student_class_ids,
    detect_orphans,
    repair_student_bindings,
)
from app.core.exceptions import OrphanedRecordDetected
from app.db.session import AsyncSessionLocal


async def run(department: Optional[str], dry_run: bool, backfill: bool, check: bool) -> int:
    async with AsyncSessionLocal() as session:
        if backfill:
            report = await backfill_student_class_ids(session, department=department, dry_run=dry_run)
            print(f"Class ids: scanned {report.scanned}, updated {report.updated}, invalid {len(report.invalid)}")
            for item in report.invalid:
                print(f"  SKIP: student {item['student_id']} ({item['roll_number']}): {item['error']}", file=sys.stderr)

        if check:
            try:
                orphans = await detect_orphans(session, department=department, strict=True)
            except OrphanedRecordDetected as e:
                print(f"Orphans found: {e.message}", file=sys.stderr)
                for kind, ids in e.record_ids.items():
                    for record_id in ids:
                        print(f"  {kind}: {record_id}", file=sys.stderr)
                return 1
            print(f"No orphans. {len(orphans.students_without_faculty)} active student(s) have no advisor.")
            return 0

        report = await repair_student_bindings(session, department=department, dry_run=dry_run)
        action = "Would repair" if dry_run else "Repaired"
        print(f"{action} {report.students_repaired} student(s) across {report.classes_checked} class(es).")
        for source, count in sorted(report.by_source.items()):
            print(f"  via {source}: {count}")
        for item in report.unresolved:
            print(f"  UNRESOLVED: {item}", file=sys.stderr)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--department", help="Limit to one department code")
    parser.add_argument("--dry-run", action="store_true", help="Report changes without writing")
    parser.add_argument("--backfill", action="store_true", help="Derive class ids on student rows first")
    parser.add_argument("--check", action="store_true", help="Only report orphans; exit 1 if any")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args.department, args.dry_run, args.backfill, args.check)))


if __name__ == "__main__":
    main()
