from __future__ import annotations

from pathlib import Path

from workspace_guard.storage.db import Base, load_models


CORE_MIGRATION = Path("migrations/versions/20261018_0001_workspace_core.py")
RLS_MIGRATION = Path("migrations/versions/20261018_0002_row_level_security.py")


def test_core_migration_declares_every_mapped_table() -> None:
    source = CORE_MIGRATION.read_text(encoding="utf-8")
    load_models()

    for table_name in sorted(Base.metadata.tables):
        assert f'"{table_name}",' in source, table_name

    assert "uq_workspace_members_workspace_user" in source
    assert "uq_workspace_invitations_token_hash" in source
    assert "uq_workspace_invitations_pending_email" in source
    assert "uq_dm_rooms_workspace_member_key" in source
    assert "ix_audit_records_entity_created_at" in source
    assert "down_revision = None" in source


def test_rls_migration_declares_policies_and_append_only_audit() -> None:
    source = RLS_MIGRATION.read_text(encoding="utf-8")

    assert 'down_revision = "20261018_0001"' in source
    assert "ENABLE ROW LEVEL SECURITY" in source
    assert "FORCE ROW LEVEL SECURITY" in source
    assert "SECURITY DEFINER" in source
    assert "app_current_user_id" in source
    assert "app_current_user_email" in source
    assert "app_is_workspace_member" in source
    assert "app_is_workspace_owner" in source
    assert "audit_records_append_only" in source
    assert "audit_records_reject_mutation" in source


def _policy_call(source: str, table: str, action: str) -> str:
    marker = f'_policy(\n        "{table}",\n        "{action}",'
    if marker in source:
        start = source.index(marker)
    else:
        start = source.index(f'_policy("{table}", "{action}"')
    return source[start : source.index("\n    _policy", start + 1)]


def test_audit_select_policy_lets_writers_and_admins_see_rows() -> None:
    source = RLS_MIGRATION.read_text(encoding="utf-8")
    audit_select = _policy_call(source, "audit_records", "SELECT")

    assert "app_owns_any_workspace()" in audit_select
    assert "actor_id = app_current_user_id()" in audit_select
    assert "app_has_capability('platform_admin')" in audit_select
    assert "app.current_capabilities" in source
    assert '"app_has_capability(text)",' in source


def test_invitation_token_lookup_bypasses_caller_visibility() -> None:
    source = RLS_MIGRATION.read_text(encoding="utf-8")

    assert "CREATE OR REPLACE FUNCTION app_invitation_by_token_hash(lookup_hash text)" in source
    assert "RETURNS SETOF workspace_invitations" in source
    assert '"app_invitation_by_token_hash(text)",' in source
    assert 'FACT_TABLES = ("workspaces", "workspace_members", "workspace_invitations")' in source


def test_member_writable_tables_have_owner_delete_policy() -> None:
    source = RLS_MIGRATION.read_text(encoding="utf-8")
    start = source.index("for table_name in MEMBER_WRITABLE_TABLES:")
    block = source[start : source.index("\n\n", start)]

    assert '_policy(table_name, "DELETE", using="app_is_workspace_owner(workspace_id)")' in block
