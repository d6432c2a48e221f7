# gridpilot/agent/fallback.py
"""
Fallback ladder that decides which plans reach the chooser.

Policies are tried in priority order; the first one that yields plans wins:
  FEASIBLE      every plan that passed the safety validator
  EMERGENCY     plans flagged as emergency (or whose rationale says so)
  SAFETY_FIRST  the second generated plan (the first one if only one exists)

The result is never empty as long as at least one plan was generated.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Sequence, Tuple

from gridpilot.agent.safety import SafetyReport
from gridpilot.core.errors import NoFeasiblePlanError
from gridpilot.core.types import Plan


class FallbackPolicy(str, Enum):
    FEASIBLE = "FEASIBLE"
    EMERGENCY = "EMERGENCY"
    SAFETY_FIRST = "SAFETY_FIRST"


@dataclass(frozen=True)
class Selection:
    policy: FallbackPolicy
    plans: Tuple[Plan, ...]

    @property
    def is_fallback(self) -> bool:
        return self.policy != FallbackPolicy.FEASIBLE


def is_emergency(plan: Plan) -> bool:
    return plan.emergency or "emergency" in plan.rationale.lower()


def _feasible(plans: Sequence[Plan], reports: Sequence[SafetyReport]) -> List[Plan]:
    return [p for p, r in zip(plans, reports) if r.ok]


def _emergency(plans: Sequence[Plan], reports: Sequence[SafetyReport]) -> List[Plan]:
    return [p for p in plans if is_emergency(p)]


def _safety_first(plans: Sequence[Plan], reports: Sequence[SafetyReport]) -> List[Plan]:
    if len(plans) >= 2:
        return [plans[1]]
    return list(plans[:1])


LADDER: Tuple[Tuple[FallbackPolicy, Callable[[Sequence[Plan], Sequence[SafetyReport]], List[Plan]]], ...] = (
    (FallbackPolicy.FEASIBLE, _feasible),
    (FallbackPolicy.EMERGENCY, _emergency),
    (FallbackPolicy.SAFETY_FIRST, _safety_first),
)


def select_candidates(plans: Sequence[Plan], reports: Sequence[SafetyReport]) -> Selection:
    if len(plans) != len(reports):
        raise ValueError(f"got {len(plans)} plans but {len(reports)} safety reports")
    for policy, rule in LADDER:
        chosen = rule(plans, reports)
        if chosen:
            return Selection(policy=policy, plans=tuple(chosen))
    raise NoFeasiblePlanError("no plans were generated; nothing to fall back on")
