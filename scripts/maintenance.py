"""Scheduled maintenance for workspace_guard data.

Run with a database role that bypasses row-level security:

    python scripts/maintenance.py backfill-owners
    python scripts/maintenance.py expire-invitations
"""

from __future__ import annotations

import argparse

from workspace_guard.core.logger import get_logger
from workspace_guard.invitations.service import expire_stale_invitations
from workspace_guard.storage.db import get_session_factory, load_models
from workspace_guard.workspaces.service import backfill_owner_memberships


logger = get_logger("workspace_guard.maintenance")


def run(command: str) -> int:
    load_models()
    session = get_session_factory()()
    try:
        if command == "backfill-owners":
            return backfill_owner_memberships(session)
        if command == "expire-invitations":
            return expire_stale_invitations(session)
        raise ValueError(f"Unknown command: {command}")
    finally:
        session.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run workspace_guard maintenance tasks.")
    parser.add_argument("command", choices=["backfill-owners", "expire-invitations"])
    args = parser.parse_args()

    affected = run(args.command)
    logger.info("maintenance_completed", command=args.command, affected=affected)
    print(f"{args.command}: {affected} row(s) updated")


if __name__ == "__main__":
    main()
