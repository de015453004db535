from workspace_guard.audit.recorder import record_activity, record_audit, snapshot

__all__ = ["record_activity", "record_audit", "snapshot"]
