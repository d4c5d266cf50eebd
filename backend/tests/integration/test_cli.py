"""
Integration tests for the tenant administration commands.

Commands run through cli.main() against the test app; output is captured
with capsys.
"""

import json
import uuid

import pytest

from cashtrail.cli import build_parser, main
from cashtrail.models.tenant import Tenant
from cashtrail.tenant_db.migration_set import MigrationScript, MigrationSet
from cashtrail.utils.database import tenant_db_manager


class TestInitDb:

    def test_init_db(self, app, capsys):
        assert main(['init-db'], app=app) == 0
        assert "✓ Applied 3 shared migration(s): v1, v2, v3" in capsys.readouterr().out

        assert main(['init-db'], app=app) == 0
        assert "✓ Shared namespace already up to date" in capsys.readouterr().out


class TestProvisionCommands:
    """Test suite for provision / deprovision / purge commands"""

    def test_provision(self, manager, capsys):
        tenant_id = uuid.uuid4()

        assert main(['provision', str(tenant_id)], app=manager.app) == 0

        output = capsys.readouterr().out
        assert f"✓ Tenant {tenant_id} active in {Tenant.schema_name_for(tenant_id)}" in output

    def test_provision_json(self, manager, capsys):
        tenant_id = uuid.uuid4()

        assert main(['provision', str(tenant_id), '--json'], app=manager.app) == 0

        data = json.loads(capsys.readouterr().out)
        assert data['id'] == str(tenant_id)
        assert data['state'] == 'active'

    def test_provision_invalid_id(self, manager, capsys):
        assert main(['provision', 'not-a-uuid'], app=manager.app) == 1
        assert "✗ Provisioning failed: Invalid tenant id: not-a-uuid" in capsys.readouterr().out

    def test_provision_failure_exit_code(self, app, manager, build_migration_set, capsys):
        tenant_db_manager.init_app(app, tenant_migrations=build_migration_set(4, failing_version=3))

        assert main(['provision', str(uuid.uuid4())], app=app) == 1
        assert "Migration v3 failed" in capsys.readouterr().out

    def test_deprovision_and_purge(self, manager, tenant_id, capsys):
        manager.provision(tenant_id)

        assert main(['deprovision', str(tenant_id)], app=manager.app) == 0
        assert main(['purge', str(tenant_id)], app=manager.app) == 0

        output = capsys.readouterr().out
        assert f"✓ Tenant {tenant_id} deprovisioned" in output
        assert f"✓ Tenant record {tenant_id} purged" in output
        assert manager.get_tenant(tenant_id) is None

    def test_purge_active_tenant_fails(self, manager, tenant_id, capsys):
        manager.provision(tenant_id)

        assert main(['purge', str(tenant_id)], app=manager.app) == 1
        assert "✗ Purge failed" in capsys.readouterr().out


class TestStatusCommands:
    """Test suite for status / history / orphans commands"""

    def test_status_empty(self, manager, capsys):
        assert main(['status'], app=manager.app) == 0
        assert "No tenants found" in capsys.readouterr().out

    def test_status_json(self, manager, tenant_id, capsys):
        manager.provision(tenant_id)

        assert main(['status', '--json'], app=manager.app) == 0

        data = json.loads(capsys.readouterr().out)
        assert [(t['id'], t['state']) for t in data] == [(str(tenant_id), 'active')]

    def test_status_filtered_by_state(self, manager, tenant_id, capsys):
        manager.provision(tenant_id)

        assert main(['status', '--state', 'dropped'], app=manager.app) == 0
        assert "No tenants found" in capsys.readouterr().out

    def test_status_unknown_tenant(self, manager, capsys):
        assert main(['status', '--tenant-id', str(uuid.uuid4())], app=manager.app) == 1
        assert "✗ Tenant not found" in capsys.readouterr().out

    def test_history(self, manager, tenant_id, capsys):
        manager.provision(tenant_id)

        assert main(['history', '--tenant-id', str(tenant_id), '--json'], app=manager.app) == 0

        data = json.loads(capsys.readouterr().out)
        assert [entry['version'] for entry in data] == [1, 2, 3, 4, 5]

    def test_shared_history_table(self, manager, capsys):
        assert main(['history'], app=manager.app) == 0

        output = capsys.readouterr().out
        assert "Migration history: shared namespace" in output
        assert "create_entity_members" in output

    def test_orphans(self, manager, capsys):
        assert main(['orphans'], app=manager.app) == 0
        assert "✓ No orphaned tenant schemas" in capsys.readouterr().out

        stray = Tenant.schema_name_for(uuid.uuid4())
        manager.provisioner.create(stray)

        assert main(['orphans'], app=manager.app) == 0
        output = capsys.readouterr().out
        assert "Found 1 orphaned tenant schema(s):" in output
        assert stray in output


class TestMigrateCommand:
    """Test suite for the migrate command"""

    def test_migrate_dry_run_then_live(self, app, manager, tenant_id, capsys):
        manager.provision(tenant_id)
        scripts = list(manager.tenant_migrations) + [
            MigrationScript(6, 'add_currency_notes', "ALTER TABLE currencies ADD COLUMN notes TEXT;"),
        ]
        tenant_db_manager.init_app(app, tenant_migrations=MigrationSet(scripts))

        assert main(['migrate', '--dry-run', '--json'], app=app) == 0
        dry_run = json.loads(capsys.readouterr().out)
        assert dry_run[0]['status'] == 'would_migrate'
        assert dry_run[0]['current_version'] == 5
        assert dry_run[0]['target_version'] == 6

        assert main(['migrate'], app=app) == 0
        output = capsys.readouterr().out
        assert "Migration Summary" in output
        assert "✓ Migrated: 1" in output

        assert main(['migrate', '--tenant-id', str(tenant_id), '--json'], app=app) == 0
        assert json.loads(capsys.readouterr().out)[0]['status'] == 'up_to_date'

    def test_migrate_reports_errors(self, app, manager, tenant_id, capsys):
        manager.provision(tenant_id)
        scripts = list(manager.tenant_migrations) + [
            MigrationScript(6, 'broken', "THIS IS NOT VALID SQL;"),
        ]
        tenant_db_manager.init_app(app, tenant_migrations=MigrationSet(scripts))

        assert main(['migrate'], app=app) == 1

        output = capsys.readouterr().out
        assert "✗ Errors: 1" in output
        assert "Migration v6 failed" in output


class TestParser:

    def test_subcommand_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])
