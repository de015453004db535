"""Plan catalog loading and seat-count resolution."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

import yaml

from workspace_guard.core.config import get_settings
from workspace_guard.core.errors import InvalidState


@dataclass(frozen=True)
class PlanDefinition:
    name: str
    default_seats: int
    min_seats: int
    max_seats: int

    def resolve_seats(self, requested: Optional[int]) -> int:
        seats = self.default_seats if requested is None else requested
        if seats < self.min_seats:
            raise InvalidState(f"Plan '{self.name}' requires at least {self.min_seats} seat(s)")
        if self.max_seats >= 0 and seats > self.max_seats:
            if requested is None:
                return self.max_seats
            raise InvalidState(f"Plan '{self.name}' allows at most {self.max_seats} seat(s)")
        return seats

    def clamp_seats(self, current: int) -> int:
        """Fit an existing seat count into this plan's bounds."""

        seats = max(current, self.min_seats)
        if self.max_seats >= 0:
            seats = min(seats, self.max_seats)
        return seats


def _resolve_plan_path() -> Path:
    settings = get_settings()
    configured = Path(settings.plans_file_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


@lru_cache(maxsize=1)
def load_plans() -> Dict[str, PlanDefinition]:
    plan_path = _resolve_plan_path()
    with plan_path.open("r", encoding="utf-8") as file:
        content = yaml.safe_load(file) or {}
    if not isinstance(content, dict):
        raise ValueError("Invalid plans file format")

    plans: Dict[str, PlanDefinition] = {}
    for plan_name, limits in content.items():
        if not isinstance(plan_name, str) or not isinstance(limits, dict):
            continue
        plans[plan_name] = PlanDefinition(
            name=plan_name,
            default_seats=int(limits.get("default_seats", 1)),
            min_seats=int(limits.get("min_seats", 1)),
            max_seats=int(limits.get("max_seats", -1)),
        )
    return plans


def get_plan(plan_name: str) -> PlanDefinition:
    plan = load_plans().get(plan_name)
    if plan is None:
        raise InvalidState(f"Plan is not configured: {plan_name}")
    return plan
