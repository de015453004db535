"""row level security and append-only audit

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18

Policies mirror ``workspace_guard.policies``. Membership facts come only from
SECURITY DEFINER helpers that read ``workspaces``, ``workspace_members`` and
``workspace_invitations`` directly, so no policy on those tables evaluates
another policy on them. The helpers run as the table owner; the application
must connect as a different role. Token capabilities reach the policies via
the ``app.current_capabilities`` setting.

"""

from __future__ import annotations

from alembic import op


# revision identifiers, used by Alembic.
revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


FACT_TABLES = ("workspaces", "workspace_members", "workspace_invitations")
WORKSPACE_SCOPED_TABLES = (
    "subscriptions",
    "business_profiles",
    "tasks",
    "crm_items",
    "documents",
    "dm_rooms",
    "dm_room_members",
    "activity_logs",
)
OWNER_MANAGED_TABLES = ("subscriptions", "business_profiles")
RESOURCE_TABLES = ("tasks", "crm_items", "documents")
MEMBER_WRITABLE_TABLES = ("dm_rooms", "dm_room_members")

HELPER_FUNCTIONS = (
    "app_current_user_id()",
    "app_current_user_email()",
    "app_is_workspace_owner(text)",
    "app_is_workspace_member(text)",
    "app_can_join_workspace(text)",
    "app_owns_any_workspace()",
    "app_has_capability(text)",
    "app_invitation_by_token_hash(text)",
)


def _is_postgresql() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def _create_helpers() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app_current_user_id()
        RETURNS text
        LANGUAGE sql
        STABLE
        AS $$
            SELECT NULLIF(current_setting('app.current_user_id', true), '');
        $$;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app_has_capability(capability text)
        RETURNS boolean
        LANGUAGE sql
        STABLE
        AS $$
            SELECT COALESCE(
                capability = ANY (
                    string_to_array(NULLIF(current_setting('app.current_capabilities', true), ''), ',')
                ),
                false
            );
        $$;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app_current_user_email()
        RETURNS text
        LANGUAGE sql
        STABLE
        SECURITY DEFINER
        SET search_path = public
        AS $$
            SELECT lower(email) FROM users
            WHERE id = app_current_user_id() AND email_verified;
        $$;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app_is_workspace_owner(ws_id text)
        RETURNS boolean
        LANGUAGE sql
        STABLE
        SECURITY DEFINER
        SET search_path = public
        AS $$
            SELECT EXISTS (
                SELECT 1 FROM workspaces
                WHERE id = ws_id AND owner_id = app_current_user_id()
            );
        $$;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app_is_workspace_member(ws_id text)
        RETURNS boolean
        LANGUAGE sql
        STABLE
        SECURITY DEFINER
        SET search_path = public
        AS $$
            SELECT EXISTS (
                SELECT 1 FROM workspaces
                WHERE id = ws_id AND owner_id = app_current_user_id()
                UNION ALL
                SELECT 1 FROM workspace_members
                WHERE workspace_id = ws_id AND user_id = app_current_user_id()
            );
        $$;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app_can_join_workspace(ws_id text)
        RETURNS boolean
        LANGUAGE sql
        STABLE
        SECURITY DEFINER
        SET search_path = public
        AS $$
            SELECT EXISTS (
                SELECT 1 FROM workspace_invitations
                WHERE workspace_id = ws_id
                  AND email = app_current_user_email()
                  AND (
                      status = 'pending'
                      OR (status = 'accepted' AND accepted_by = app_current_user_id())
                  )
            );
        $$;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app_owns_any_workspace()
        RETURNS boolean
        LANGUAGE sql
        STABLE
        SECURITY DEFINER
        SET search_path = public
        AS $$
            SELECT EXISTS (
                SELECT 1 FROM workspaces WHERE owner_id = app_current_user_id()
                UNION ALL
                SELECT 1 FROM workspace_members
                WHERE user_id = app_current_user_id() AND role = 'owner'
            );
        $$;
        """
    )
    op.execute(
        """
        CREATE OR REPLACE FUNCTION app_invitation_by_token_hash(lookup_hash text)
        RETURNS SETOF workspace_invitations
        LANGUAGE sql
        STABLE
        SECURITY DEFINER
        SET search_path = public
        AS $$
            SELECT * FROM workspace_invitations WHERE token_hash = lookup_hash;
        $$;
        """
    )


def _policy(table: str, action: str, *, using: str | None = None, check: str | None = None) -> None:
    clauses = ""
    if using is not None:
        clauses += f" USING ({using})"
    if check is not None:
        clauses += f" WITH CHECK ({check})"
    op.execute(f"CREATE POLICY {table}_{action.lower()}_policy ON {table} FOR {action}{clauses};")


def upgrade() -> None:
    if not _is_postgresql():
        return

    _create_helpers()

    for table_name in FACT_TABLES:
        # Not FORCEd: the SECURITY DEFINER helpers read these as the owner,
        # including the token lookup that must find invitations addressed to
        # someone else so the caller gets EmailMismatch, not InvalidToken.
        op.execute(f"ALTER TABLE {table_name} ENABLE ROW LEVEL SECURITY;")
    for table_name in WORKSPACE_SCOPED_TABLES + ("audit_records",):
        op.execute(f"ALTER TABLE {table_name} ENABLE ROW LEVEL SECURITY;")
        op.execute(f"ALTER TABLE {table_name} FORCE ROW LEVEL SECURITY;")

    _policy("workspaces", "SELECT", using="owner_id = app_current_user_id() OR app_is_workspace_member(id)")
    _policy("workspaces", "INSERT", check="owner_id = app_current_user_id()")
    _policy("workspaces", "UPDATE", using="owner_id = app_current_user_id()", check="app_is_workspace_member(id)")
    _policy("workspaces", "DELETE", using="owner_id = app_current_user_id()")

    _policy(
        "workspace_members",
        "SELECT",
        using="user_id = app_current_user_id() OR app_is_workspace_owner(workspace_id)",
    )
    _policy(
        "workspace_members",
        "INSERT",
        check=(
            "app_is_workspace_owner(workspace_id) "
            "OR (user_id = app_current_user_id() AND app_can_join_workspace(workspace_id))"
        ),
    )
    _policy(
        "workspace_members",
        "UPDATE",
        using="app_is_workspace_owner(workspace_id)",
        check="app_is_workspace_owner(workspace_id) OR user_id = app_current_user_id()",
    )
    _policy(
        "workspace_members",
        "DELETE",
        using="app_is_workspace_owner(workspace_id) OR user_id = app_current_user_id()",
    )

    _policy(
        "workspace_invitations",
        "SELECT",
        using="app_is_workspace_member(workspace_id) OR email = app_current_user_email()",
    )
    _policy("workspace_invitations", "INSERT", check="app_is_workspace_owner(workspace_id)")
    _policy(
        "workspace_invitations",
        "UPDATE",
        using="app_is_workspace_owner(workspace_id) OR email = app_current_user_email()",
    )
    _policy("workspace_invitations", "DELETE", using="app_is_workspace_owner(workspace_id)")

    for table_name in OWNER_MANAGED_TABLES:
        _policy(table_name, "SELECT", using="app_is_workspace_member(workspace_id)")
        _policy(table_name, "INSERT", check="app_is_workspace_owner(workspace_id)")
        _policy(table_name, "UPDATE", using="app_is_workspace_owner(workspace_id)")
        _policy(table_name, "DELETE", using="app_is_workspace_owner(workspace_id)")

    resource_writer = (
        "app_is_workspace_owner(workspace_id) OR (app_is_workspace_member(workspace_id) "
        "AND (created_by = app_current_user_id() OR assigned_to = app_current_user_id()))"
    )
    for table_name in RESOURCE_TABLES:
        _policy(table_name, "SELECT", using="app_is_workspace_member(workspace_id)")
        _policy(
            table_name,
            "INSERT",
            check="app_is_workspace_member(workspace_id) AND created_by = app_current_user_id()",
        )
        _policy(table_name, "UPDATE", using=resource_writer, check="app_is_workspace_member(workspace_id)")
        _policy(table_name, "DELETE", using=resource_writer)

    for table_name in MEMBER_WRITABLE_TABLES:
        _policy(table_name, "SELECT", using="app_is_workspace_member(workspace_id)")
        _policy(table_name, "INSERT", check="app_is_workspace_member(workspace_id)")
        _policy(table_name, "DELETE", using="app_is_workspace_owner(workspace_id)")

    _policy(
        "activity_logs",
        "SELECT",
        using="app_is_workspace_member(workspace_id) OR user_id = app_current_user_id()",
    )
    _policy("activity_logs", "INSERT", check="true")

    # Any owner of any workspace reads every record; not scoped to the audited
    # workspace. The actor clause lets INSERT ... RETURNING see its own row.
    _policy(
        "audit_records",
        "SELECT",
        using=(
            "app_owns_any_workspace() OR app_has_capability('platform_admin') "
            "OR actor_id = app_current_user_id()"
        ),
    )
    _policy("audit_records", "INSERT", check="true")

    op.execute(
        """
        CREATE OR REPLACE FUNCTION audit_records_reject_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'audit_records is append-only';
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_records_append_only
        BEFORE UPDATE OR DELETE ON audit_records
        FOR EACH ROW EXECUTE FUNCTION audit_records_reject_mutation();
        """
    )


def downgrade() -> None:
    if not _is_postgresql():
        return

    op.execute("DROP TRIGGER IF EXISTS audit_records_append_only ON audit_records;")
    op.execute("DROP FUNCTION IF EXISTS audit_records_reject_mutation();")

    for table_name in FACT_TABLES + WORKSPACE_SCOPED_TABLES + ("audit_records",):
        for action in ("select", "insert", "update", "delete"):
            op.execute(f"DROP POLICY IF EXISTS {table_name}_{action}_policy ON {table_name};")
        op.execute(f"ALTER TABLE {table_name} NO FORCE ROW LEVEL SECURITY;")
        op.execute(f"ALTER TABLE {table_name} DISABLE ROW LEVEL SECURITY;")

    for signature in reversed(HELPER_FUNCTIONS):
        op.execute(f"DROP FUNCTION IF EXISTS {signature};")
