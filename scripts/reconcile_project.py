#!/usr/bin/env python3
"""
Repair interrupted extension acceptances and stale delegation status for one
project, or for every project of a tenant.

Usage:
  python3 scripts/reconcile_project.py --tenant TENANT [--project PROJECT]
      [--db-url URL] [--config PATH] [--dry-run]

The database URL defaults to ``database_url`` from the active config. With
--dry-run the script only lists accepted extension requests whose phase
update never completed.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from budget_config import get_active_config
from budget_kernel.db import SqlDocumentStore
from budget_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from budget_kernel.domain.dtos import UserRole
from budget_kernel.exceptions import BudgetKernelError
from budget_kernel.logging_config import configure_logging
from budget_services.identity import StaticIdentityResolver
from budget_services.reconciliation_service import SYSTEM_ACTOR, ReconciliationService


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Reconcile budget documents left mid-workflow")
    p.add_argument("--tenant", required=True, help="Tenant id")
    p.add_argument("--project", help="Project id (default: every project of the tenant)")
    p.add_argument("--db-url", help="Database URL (default: database_url from config)")
    p.add_argument("--config", help="Config YAML (default: BUDGET_CONFIG_PATH or bundled default)")
    p.add_argument("--dry-run", action="store_true", help="Report only, write nothing")
    return p.parse_args()


def main() -> int:
    args = _parse_args()
    config = get_active_config(args.config)
    configure_logging(level=config.log_level)

    db_url = args.db_url or config.database_url
    if not db_url:
        print("  ERROR: no database URL (use --db-url or set database_url)", file=sys.stderr)
        return 2

    init_engine_from_url(db_url)
    create_tables()
    store = SqlDocumentStore(get_session_factory())
    identity = StaticIdentityResolver(SYSTEM_ACTOR, args.tenant, role=UserRole.BUSINESSHEAD)
    service = ReconciliationService(store, identity)

    try:
        if args.dry_run:
            projects = [args.project] if args.project else [
                p.project_id for p in service.projects()
            ]
            for project_id in projects:
                for request in service.find_unapplied_extensions(project_id):
                    print(
                        f"  {project_id}  phase={request.phase_id}  "
                        f"request={request.request_id}  extendedDate={request.extended_date}"
                    )
            return 0

        reports = [service.repair(args.project)] if args.project else service.sweep()
    except BudgetKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1

    failed = False
    for report in reports:
        status = "clean" if report.clean else "repaired"
        if report.failures:
            status = "FAILED"
            failed = True
        print(
            f"  {report.project_id}: {status}  "
            f"extensions={len(report.extensions_repaired)}  "
            f"delegations={len(report.delegations_reconciled)}  "
            f"failures={len(report.failures)}"
        )
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
