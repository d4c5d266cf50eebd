"""
Tenant administration commands.

Usage:
    # Create the tenants table and apply shared migrations
    cashtrail-tenants init-db

    # Provision a tenant (a new id is generated when omitted)
    cashtrail-tenants provision [<tenant_id>]

    # Drop a tenant's namespace (keep the record for audit, or purge it)
    cashtrail-tenants deprovision <tenant_id> [--purge]
    cashtrail-tenants purge <tenant_id>

    # Show tenant records
    cashtrail-tenants status [--tenant-id <id>] [--state active] [--json]

    # Show the migration ledger of a tenant (or of the shared namespace)
    cashtrail-tenants history [--tenant-id <id>] [--json]

    # Apply pending tenant migrations (dry-run shows what would be done)
    cashtrail-tenants migrate [--dry-run] [--tenant-id <id>] [--json]

    # List tenant namespaces that no live tenant owns
    cashtrail-tenants orphans

Every command exits with status 0 on success and 1 on error.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from .models.tenant import TenantState
from .schemas import (
    migration_records_schema,
    migration_results_schema,
    tenant_response_schema,
    tenants_response_schema,
)
from .services.tenant_service import TenantService
from .utils.database import tenant_db_manager

logger = logging.getLogger(__name__)


def _print_banner(title: str):
    print(f"\n{'='*80}")
    print(title)
    print(f"{'='*80}")


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def cmd_init_db(args) -> int:
    _print_banner("Shared namespace initialization")
    applied = tenant_db_manager.migrate_shared()

    if applied:
        print(f"✓ Applied {len(applied)} shared migration(s): {', '.join(f'v{v}' for v in applied)}")
    else:
        print("✓ Shared namespace already up to date")
    return 0


def cmd_provision(args) -> int:
    tenant, error = TenantService.create_tenant(args.tenant_id)

    if error:
        print(f"✗ Provisioning failed: {error}")
        return 1

    if args.json:
        _print_json(tenant_response_schema.dump(tenant))
    else:
        print(f"✓ Tenant {tenant.id} active in {tenant.schema_name}")
    return 0


def cmd_deprovision(args) -> int:
    success, error = TenantService.delete_tenant(args.tenant_id, purge=args.purge)

    if not success:
        print(f"✗ Deprovisioning failed: {error}")
        return 1

    print(f"✓ Tenant {args.tenant_id} deprovisioned{' and purged' if args.purge else ''}")
    return 0


def cmd_purge(args) -> int:
    try:
        tenant_db_manager.purge(args.tenant_id)
    except Exception as e:
        print(f"✗ Purge failed: {e}")
        return 1

    print(f"✓ Tenant record {args.tenant_id} purged")
    return 0


def cmd_status(args) -> int:
    if args.tenant_id:
        tenant, error = TenantService.get_tenant(args.tenant_id)
        tenants = [tenant] if tenant else None
    else:
        tenants, error = TenantService.list_tenants(TenantState(args.state) if args.state else None)

    if error:
        print(f"✗ {error}")
        return 1

    if args.json:
        _print_json(tenants_response_schema.dump(tenants))
        return 0

    if not tenants:
        print("No tenants found")
        return 0

    print(f"\n{'Tenant':<38} {'State':<14} {'Schema'}")
    print(f"{'-'*38} {'-'*14} {'-'*40}")
    for tenant in tenants:
        print(f"{str(tenant.id):<38} {str(tenant.state):<14} {tenant.schema_name}")
        if tenant.last_error:
            print(f"{'':<38} last error: {tenant.last_error}")
    return 0


def cmd_history(args) -> int:
    history, error = TenantService.get_migration_history(args.tenant_id)

    if error:
        print(f"✗ {error}")
        return 1

    if args.json:
        _print_json(migration_records_schema.dump(history))
        return 0

    _print_banner(f"Migration history: {args.tenant_id or 'shared namespace'}")

    if not history:
        print("No migration history found")
        return 0

    print(f"\n{'Version':<10} {'Applied At':<25} {'Description'}")
    print(f"{'-'*10} {'-'*25} {'-'*40}")
    for entry in history:
        version = f"v{entry['version']}"
        applied_at = entry['applied_at'].strftime('%Y-%m-%d %H:%M:%S') if entry['applied_at'] else 'N/A'
        print(f"{version:<10} {applied_at:<25} {entry['description'][:40]}")
    return 0


def cmd_migrate(args) -> int:
    results, error = TenantService.migrate_all_tenants(dry_run=args.dry_run, tenant_id=args.tenant_id)

    if error:
        print(f"✗ {error}")
        return 1

    error_count = sum(1 for r in results if r['status'] == 'error')

    if args.json:
        _print_json(migration_results_schema.dump(results))
        return 1 if error_count else 0

    _print_banner("Migration Summary")
    print(f"Mode: {'DRY RUN (no changes will be made)' if args.dry_run else 'LIVE (migrations applied)'}")
    print(f"Total tenants: {len(results)}")
    print(f"  ✓ Up to date: {sum(1 for r in results if r['status'] == 'up_to_date')}")
    print(f"  ✓ Migrated: {sum(1 for r in results if r['status'] == 'migrated')}")

    would_migrate_count = sum(1 for r in results if r['status'] == 'would_migrate')
    if would_migrate_count > 0:
        print(f"  → Would migrate: {would_migrate_count}")

    if error_count > 0:
        print(f"  ✗ Errors: {error_count}")
        for result in results:
            if result['status'] == 'error':
                print(f"\n{result['tenant_id']} ({result['schema']}):")
                print(f"  {result['error']}")

    return 1 if error_count else 0


def cmd_orphans(args) -> int:
    orphans = tenant_db_manager.find_orphaned_schemas()

    if not orphans:
        print("✓ No orphaned tenant schemas")
        return 0

    print(f"Found {len(orphans)} orphaned tenant schema(s):")
    for schema_name in orphans:
        print(f"  - {schema_name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='cashtrail-tenants',
        description='Manage tenant namespaces',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument(
        '--config',
        default=None,
        choices=['development', 'production', 'testing'],
        help='Configuration to use (default: FLASK_ENV or development)'
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    init_db = subparsers.add_parser('init-db', help='Create the tenants table and apply shared migrations')
    init_db.set_defaults(handler=cmd_init_db)

    provision = subparsers.add_parser('provision', help='Provision a tenant namespace')
    provision.add_argument('tenant_id', nargs='?', help='Tenant UUID (generated when omitted)')
    provision.add_argument('--json', action='store_true', help='Print the tenant record as JSON')
    provision.set_defaults(handler=cmd_provision)

    deprovision = subparsers.add_parser('deprovision', help="Drop a tenant's namespace")
    deprovision.add_argument('tenant_id', help='Tenant UUID')
    deprovision.add_argument('--purge', action='store_true', help='Also delete the tenant record')
    deprovision.set_defaults(handler=cmd_deprovision)

    purge = subparsers.add_parser('purge', help='Delete the record of a dropped tenant')
    purge.add_argument('tenant_id', help='Tenant UUID')
    purge.set_defaults(handler=cmd_purge)

    status = subparsers.add_parser('status', help='Show tenant records')
    status.add_argument('--tenant-id', help='Show a single tenant')
    status.add_argument('--state', choices=[state.value for state in TenantState], help='Filter by state')
    status.add_argument('--json', action='store_true', help='Print records as JSON')
    status.set_defaults(handler=cmd_status)

    history = subparsers.add_parser('history', help='Show a migration ledger')
    history.add_argument('--tenant-id', help='Tenant UUID (shared namespace when omitted)')
    history.add_argument('--json', action='store_true', help='Print the ledger as JSON')
    history.set_defaults(handler=cmd_history)

    migrate = subparsers.add_parser('migrate', help='Apply pending tenant migrations')
    migrate.add_argument('--dry-run', action='store_true', help='Show what would be done without applying migrations')
    migrate.add_argument('--tenant-id', help='Migrate only a specific tenant by ID')
    migrate.add_argument('--json', action='store_true', help='Print per-tenant results as JSON')
    migrate.set_defaults(handler=cmd_migrate)

    orphans = subparsers.add_parser('orphans', help='List tenant namespaces no live tenant owns')
    orphans.set_defaults(handler=cmd_orphans)

    return parser


def main(argv: Optional[List[str]] = None, app=None) -> int:
    """
    Run one administration command.

    Args:
        argv: Command-line arguments (default: sys.argv[1:])
        app: Flask application to use (default: create_app(--config))

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)

    if app is None:
        from . import create_app
        app = create_app(args.config)

    with app.app_context():
        try:
            return args.handler(args)
        except Exception as e:
            logger.error(f"Fatal error: {e}", exc_info=True)
            print(f"\n✗ Fatal error: {e}")
            return 1


def run():
    """Console script entry point."""
    sys.exit(main())
