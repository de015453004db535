"""Workspace authorization predicates, facts and SQL visibility filters."""

from workspace_guard.policies.evaluator import (
    CAPABILITY_PLATFORM_ADMIN,
    POLICY_GRAPH,
    Decision,
    Operation,
    PolicyEvaluator,
    ResourceKind,
)
from workspace_guard.policies.facts import WorkspaceFacts, load_workspace_facts

__all__ = [
    "CAPABILITY_PLATFORM_ADMIN",
    "POLICY_GRAPH",
    "Decision",
    "Operation",
    "PolicyEvaluator",
    "ResourceKind",
    "WorkspaceFacts",
    "load_workspace_facts",
]
