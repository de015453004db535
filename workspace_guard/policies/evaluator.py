"""Workspace-scoped policy evaluation.

Predicates are pure functions over ``WorkspaceFacts``. They are wired into
``POLICY_GRAPH`` and only ever see the values of their declared
dependencies. The only I/O lives in the graph's fact loaders, which go through
``PolicyEvaluator``; no predicate ever calls another resource's gated read.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional

from sqlalchemy.orm import Session

from workspace_guard.core.errors import NotFound, Unauthorized
from workspace_guard.core.logger import get_logger
from workspace_guard.core.metrics import record_policy_denied
from workspace_guard.policies.facts import WorkspaceFacts, load_workspace_facts, owns_any_workspace
from workspace_guard.policies.graph import PolicyGraph


logger = get_logger("workspace_guard.policies")

CAPABILITY_PLATFORM_ADMIN = "platform_admin"
AUDIT_POLICY = "audit"


class Operation(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"

    @property
    def is_write(self) -> bool:
        return self is not Operation.READ


class ResourceKind(str, Enum):
    WORKSPACE = "workspace"
    MEMBERSHIP = "membership"
    RESOURCE = "resource"
    OWNER_MANAGED = "owner_managed"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def _allow(reason: str) -> Decision:
    return Decision(allowed=True, reason=reason)


def _deny(reason: str) -> Decision:
    return Decision(allowed=False, reason=reason)


def workspace_visible(facts: WorkspaceFacts) -> bool:
    return facts.is_owner or facts.is_member


def _visible(facts: WorkspaceFacts, visible: Optional[bool]) -> bool:
    return workspace_visible(facts) if visible is None else visible


def workspace_decision(
    facts: WorkspaceFacts,
    operation: Operation,
    *,
    visible: Optional[bool] = None,
) -> Decision:
    if operation is Operation.CREATE:
        return _allow("any_actor_may_create_workspace")
    if not facts.exists:
        return _deny("workspace_not_found")
    if operation is Operation.READ:
        if _visible(facts, visible):
            return _allow("owner" if facts.is_owner else "member")
        return _deny("not_a_member")
    if facts.is_owner:
        return _allow("owner")
    return _deny("owner_required")


def membership_decision(
    facts: WorkspaceFacts,
    operation: Operation,
    *,
    row_user_id: Optional[str] = None,
) -> Decision:
    """Membership rows: own row, or any row of a workspace the actor owns.

    Sibling members are not visible to plain members.
    """

    if not facts.exists:
        return _deny("workspace_not_found")
    is_own_row = row_user_id is not None and row_user_id == facts.actor_id

    if operation is Operation.READ:
        if is_own_row:
            return _allow("own_membership")
        if facts.is_owner:
            return _allow("owner")
        return _deny("not_own_membership")
    if operation is Operation.DELETE and is_own_row and facts.is_member:
        return _allow("leave_workspace")
    if facts.is_owner:
        return _allow("owner")
    return _deny("owner_required")


def resource_decision(
    facts: WorkspaceFacts,
    operation: Operation,
    *,
    created_by: Optional[str] = None,
    assigned_to: Optional[str] = None,
    visible: Optional[bool] = None,
) -> Decision:
    if not facts.exists:
        return _deny("workspace_not_found")
    if not _visible(facts, visible):
        return _deny("not_a_member")
    if operation in (Operation.READ, Operation.CREATE):
        return _allow("owner" if facts.is_owner else "member")
    if facts.is_owner:
        return _allow("owner")
    if created_by is not None and created_by == facts.actor_id:
        return _allow("creator")
    if assigned_to is not None and assigned_to == facts.actor_id:
        return _allow("assignee")
    return _deny("creator_assignee_or_owner_required")


def owner_managed_decision(
    facts: WorkspaceFacts,
    operation: Operation,
    *,
    visible: Optional[bool] = None,
) -> Decision:
    """Business profile, subscription and invitations: members read, owner writes."""

    if not facts.exists:
        return _deny("workspace_not_found")
    if operation is Operation.READ:
        if _visible(facts, visible):
            return _allow("owner" if facts.is_owner else "member")
        return _deny("not_a_member")
    if facts.is_owner:
        return _allow("owner")
    return _deny("owner_required")


def audit_read_decision(owns_any: bool, capabilities: FrozenSet[str] = frozenset()) -> Decision:
    # Not scoped to the audited workspace: an owner of any workspace reads
    # every record. Kept as-is; see DESIGN.md open questions.
    if CAPABILITY_PLATFORM_ADMIN in capabilities:
        return _allow("platform_admin_capability")
    if owns_any:
        return _allow("owner_of_some_workspace")
    return _deny("owner_role_required")


@dataclass(frozen=True)
class PolicyRequest:
    """What is being asked; passed to every node of one evaluation."""

    operation: Operation
    workspace_id: Optional[str] = None
    row_user_id: Optional[str] = None
    created_by: Optional[str] = None
    assigned_to: Optional[str] = None
    capabilities: FrozenSet[str] = frozenset()


def build_default_graph() -> PolicyGraph:
    graph = PolicyGraph()
    graph.add_fact(
        "workspace_facts",
        lambda evaluator, request: evaluator.facts(request.workspace_id),
    )
    graph.add_fact(
        "owner_role_facts",
        lambda evaluator, request: evaluator.owns_any_workspace(),
    )
    graph.add_policy(
        "workspace_visible",
        ["workspace_facts"],
        lambda inputs, request: workspace_visible(inputs["workspace_facts"]),
    )
    graph.add_policy(
        ResourceKind.WORKSPACE.value,
        ["workspace_facts", "workspace_visible"],
        lambda inputs, request: workspace_decision(
            inputs["workspace_facts"],
            request.operation,
            visible=inputs["workspace_visible"],
        ),
    )
    graph.add_policy(
        ResourceKind.MEMBERSHIP.value,
        ["workspace_facts"],
        lambda inputs, request: membership_decision(
            inputs["workspace_facts"],
            request.operation,
            row_user_id=request.row_user_id,
        ),
    )
    graph.add_policy(
        ResourceKind.RESOURCE.value,
        ["workspace_facts", "workspace_visible"],
        lambda inputs, request: resource_decision(
            inputs["workspace_facts"],
            request.operation,
            created_by=request.created_by,
            assigned_to=request.assigned_to,
            visible=inputs["workspace_visible"],
        ),
    )
    graph.add_policy(
        ResourceKind.OWNER_MANAGED.value,
        ["workspace_facts", "workspace_visible"],
        lambda inputs, request: owner_managed_decision(
            inputs["workspace_facts"],
            request.operation,
            visible=inputs["workspace_visible"],
        ),
    )
    graph.add_policy(
        AUDIT_POLICY,
        ["owner_role_facts"],
        # Capabilities come from the request context, not from a table.
        lambda inputs, request: audit_read_decision(inputs["owner_role_facts"], request.capabilities),
    )
    return graph


POLICY_GRAPH = build_default_graph()


class PolicyEvaluator:
    """Request-scoped evaluator for one actor.

    Facts are memoized for the lifetime of the instance only; membership
    facts are never cached across requests. Every decision is computed by
    walking ``graph`` from its base facts.
    """

    def __init__(
        self,
        session: Session,
        actor_id: str,
        *,
        capabilities: FrozenSet[str] = frozenset(),
        graph: Optional[PolicyGraph] = None,
    ) -> None:
        self._session = session
        self.actor_id = actor_id
        self.capabilities = capabilities
        self.graph = graph if graph is not None else POLICY_GRAPH
        self._facts: Dict[str, WorkspaceFacts] = {}

    def facts(self, workspace_id: str) -> WorkspaceFacts:
        cached = self._facts.get(workspace_id)
        if cached is None:
            cached = load_workspace_facts(self._session, self.actor_id, workspace_id)
            self._facts[workspace_id] = cached
        return cached

    def owns_any_workspace(self) -> bool:
        return owns_any_workspace(self._session, self.actor_id)

    def forget(self, workspace_id: str) -> None:
        """Drop memoized facts after this request mutated them."""

        self._facts.pop(workspace_id, None)

    def check(
        self,
        kind: ResourceKind,
        operation: Operation,
        workspace_id: str,
        *,
        row_user_id: Optional[str] = None,
        created_by: Optional[str] = None,
        assigned_to: Optional[str] = None,
    ) -> Decision:
        request = PolicyRequest(
            operation=operation,
            workspace_id=workspace_id,
            row_user_id=row_user_id,
            created_by=created_by,
            assigned_to=assigned_to,
            capabilities=self.capabilities,
        )
        return self.graph.evaluate(kind.value, self, request)

    def require(
        self,
        kind: ResourceKind,
        operation: Operation,
        workspace_id: str,
        **target: Optional[str],
    ) -> WorkspaceFacts:
        """Return facts when allowed; otherwise raise.

        Denied reads raise ``NotFound`` so callers cannot tell "absent" from
        "hidden". Denied writes raise ``Unauthorized``.
        """

        decision = self.check(kind, operation, workspace_id, **target)
        if decision.allowed:
            return self.facts(workspace_id)

        record_policy_denied(kind=kind.value, operation=operation.value)
        logger.info(
            "policy_denied",
            kind=kind.value,
            operation=operation.value,
            workspace_id=workspace_id,
            reason=decision.reason,
        )
        if not operation.is_write:
            raise NotFound()
        raise Unauthorized(f"Not allowed to {operation.value} this {kind.value.replace('_', ' ')}")

    def can_read_audit(self) -> Decision:
        request = PolicyRequest(operation=Operation.READ, capabilities=self.capabilities)
        return self.graph.evaluate(AUDIT_POLICY, self, request)
