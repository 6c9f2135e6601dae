#!/usr/bin/env python3
"""
Audit, repair and align check-in links from the command line.

Replaces the one-off migration fix scripts: every run is parameterised,
idempotent, and a dry run unless --execute is given.

Usage:
    python scripts/repair_links.py audit [--client CLIENT_ID]
    python scripts/repair_links.py repair [--client CLIENT_ID] [--execute]
    python scripts/repair_links.py align --client CLIENT_ID --form FORM_ID \
        (--reference-client OTHER_ID | --target-date 2026-01-12)

Requires:
    - .env file with Snowflake credentials (or SNOWFLAKE_MOCK_MODE=true)
"""

import sys
from datetime import date
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def print_audit(report) -> None:
    print(f"Scanned {report.slots_scanned} slots and {report.responses_scanned} responses")
    print(f"Consistent links: {report.consistent_links}")
    
    if report.is_clean:
        print("\nNo findings.")
        return
    
    print(f"\nFindings ({len(report.findings)}):")
    for kind, count in report.counts_by_kind.items():
        print(f"  {kind}: {count}")
    print()
    for finding in report.findings:
        print(f"  [{finding.reason.value}] {finding.finding_id}")


def print_repair(summary) -> None:
    mode = "DRY RUN" if summary.dry_run else "EXECUTED"
    print(f"Repair ({mode}): {len(summary.actions)} findings")
    for action in summary.actions:
        print(f"  {action.outcome.value:>24}  {action.action.value:<16} {action.finding_id}")
        if action.reason:
            print(f"  {'':>24}  {action.reason}")
    
    print(
        f"\napplied={summary.applied} planned={summary.planned} skipped={summary.skipped} "
        f"manual_review={summary.manual_review} failed={summary.failed}"
    )
    if summary.dry_run and summary.planned:
        print("\nRe-run with --execute to apply.")


def print_align(summary) -> None:
    if summary.already_aligned:
        print(f"{summary.series_key}: already aligned at {summary.new_anchor_due_at.isoformat()}")
        return
    
    print(
        f"{summary.series_key}: shifted {summary.offset_days:+d} days, "
        f"slot 1 {summary.previous_anchor_due_at.isoformat()} -> {summary.new_anchor_due_at.isoformat()}"
    )
    print(f"  updated {len(summary.updated_slot_ids)} of {summary.total_slots} slots")
    for skipped in summary.skipped:
        print(f"  skipped slot {skipped.sequence_number} ({skipped.slot_id}): {skipped.reason}")
    for failure in summary.chunk_failures:
        print(f"  FAILED chunk {failure.chunk_index} ({len(failure.slot_ids)} slots): {failure.error}")


def run(args, lifecycle) -> bool:
    from checkins.core.lifecycle import AlignmentReference
    
    if args.command == 'audit':
        print_audit(lifecycle.audit(args.client))
        return True
    
    if args.command == 'repair':
        summary = lifecycle.repair(args.client, dry_run=not args.execute)
        print_repair(summary)
        return summary.failed == 0
    
    reference = AlignmentReference(
        reference_client_id=args.reference_client,
        reference_form_id=args.reference_form,
        target_date=date.fromisoformat(args.target_date) if args.target_date else None,
    )
    summary = lifecycle.align(args.client, args.form, reference)
    print_align(summary)
    return summary.success


def main():
    import argparse
    import logging
    
    from checkins.api.dependencies import snowflake_config_from
    from checkins.config.settings import get_settings
    from checkins.core.lifecycle import CheckInLifecycle, LifecycleError
    from checkins.infrastructure.documents import InMemoryDocumentStore
    from checkins.infrastructure.snowflake import SnowflakeDocumentStore, create_snowflake_connection
    
    parser = argparse.ArgumentParser(description='Audit and repair check-in slot/response links')
    parser.add_argument('--verbose', action='store_true', help='Log every repair action')
    subparsers = parser.add_subparsers(dest='command', required=True)
    
    audit_parser = subparsers.add_parser('audit', help='Report broken links (read-only)')
    audit_parser.add_argument('--client', help='Client id; omit for every client')
    
    repair_parser = subparsers.add_parser('repair', help='Fix broken links (dry run by default)')
    repair_parser.add_argument('--client', help='Client id; omit for every client')
    repair_parser.add_argument('--execute', action='store_true', help='Apply the repairs')
    
    align_parser = subparsers.add_parser('align', help='Shift a series onto a reference date')
    align_parser.add_argument('--client', required=True, help='Client whose series moves')
    align_parser.add_argument('--form', required=True, help='Form id of the series')
    align_parser.add_argument('--reference-client', help='Client whose slot 1 is the reference')
    align_parser.add_argument('--reference-form', help='Reference form; defaults to --form')
    align_parser.add_argument('--target-date', help='Reference date (YYYY-MM-DD)')
    
    args = parser.parse_args()
    
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.INFO if args.verbose else logging.WARNING,
    )
    
    settings = get_settings()
    missing = settings.validate_required_fields()
    if missing:
        print(f"ERROR: Missing configuration: {', '.join(missing)}")
        sys.exit(1)
    
    try:
        if settings.snowflake_mock_mode:
            print("Using in-memory store (SNOWFLAKE_MOCK_MODE)")
            store = InMemoryDocumentStore(max_batch_size=settings.batch_write_limit)
            success = run(args, CheckInLifecycle(store, settings.lifecycle_config()))
        else:
            with create_snowflake_connection(snowflake_config_from(settings)) as conn:
                store = SnowflakeDocumentStore(
                    conn,
                    table=settings.snowflake_documents_table,
                    max_batch_size=settings.batch_write_limit,
                )
                success = run(args, CheckInLifecycle(store, settings.lifecycle_config()))
    except (LifecycleError, ValueError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    
    sys.exit(0 if success else 1)


if __name__ == '__main__':
    main()
