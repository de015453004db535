"""Policy dependency graph.

Every predicate declares what it reads. Registration refuses any edge that
would close a cycle, so a policy that depends (transitively) on itself is an
import-time error instead of unbounded recursive evaluation at request time.
Evaluation walks the graph leaves-first and hands each predicate only the
values of its declared dependencies.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Tuple


FactLoader = Callable[[Any, Any], Any]
Predicate = Callable[[Mapping[str, Any], Any], Any]


class PolicyGraphError(ValueError):
    """Raised for malformed policy graphs."""


class PolicyCycleError(PolicyGraphError):
    def __init__(self, path: List[str]):
        self.path = path
        super().__init__("Policy dependency cycle: " + " -> ".join(path))


@dataclass
class PolicyGraph:
    _dependencies: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    _leaves: set[str] = field(default_factory=set)
    _functions: Dict[str, Callable[..., Any]] = field(default_factory=dict)

    def add_fact(self, name: str, loader: FactLoader) -> None:
        """Register a base-table fact; facts have no dependencies."""

        if name in self._dependencies:
            raise PolicyGraphError(f"Node already registered: {name}")
        self._dependencies[name] = ()
        self._leaves.add(name)
        self._functions[name] = loader

    def add_policy(self, name: str, depends_on: Iterable[str], predicate: Predicate) -> None:
        if name in self._dependencies:
            raise PolicyGraphError(f"Node already registered: {name}")

        dependencies = tuple(depends_on)
        if not dependencies:
            raise PolicyGraphError(f"Policy {name} must depend on at least one fact or policy")
        for dependency in dependencies:
            if dependency == name:
                raise PolicyCycleError([name, name])
            if dependency not in self._dependencies:
                # Forward references are how cycles sneak in; require
                # dependencies to exist first.
                raise PolicyGraphError(f"Policy {name} depends on unknown node {dependency}")
        self._dependencies[name] = dependencies
        self._functions[name] = predicate
        self.topological_order()

    def dependencies(self, name: str) -> Tuple[str, ...]:
        return self._dependencies[name]

    def is_fact(self, name: str) -> bool:
        return name in self._leaves

    def _visit(self, node: str, path: List[str], state: Dict[str, int], ordered: List[str]) -> None:
        marker = state.get(node, 0)
        if marker == 2:
            return
        if marker == 1:
            start = path.index(node)
            raise PolicyCycleError(path[start:] + [node])
        state[node] = 1
        for dependency in self._dependencies.get(node, ()):
            self._visit(dependency, path + [node], state, ordered)
        state[node] = 2
        ordered.append(node)

    def topological_order(self) -> List[str]:
        """Leaves-first order of the whole graph."""

        ordered: List[str] = []
        state: Dict[str, int] = {}
        for node in sorted(self._dependencies):
            self._visit(node, [], state, ordered)
        return ordered

    def evaluation_order(self, name: str) -> List[str]:
        """Leaves-first order of ``name`` and everything it depends on."""

        if name not in self._dependencies:
            raise PolicyGraphError(f"Unknown policy: {name}")
        ordered: List[str] = []
        self._visit(name, [], {}, ordered)
        return ordered

    def evaluate(self, name: str, context: Any, request: Any) -> Any:
        """Evaluate ``name``; facts outside its dependency closure are never loaded."""

        values: Dict[str, Any] = {}
        for node in self.evaluation_order(name):
            function = self._functions[node]
            if node in self._leaves:
                values[node] = function(context, request)
            else:
                inputs = {dependency: values[dependency] for dependency in self._dependencies[node]}
                values[node] = function(inputs, request)
        return values[name]
