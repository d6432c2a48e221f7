# gridpilot/agent/safety.py
"""
Plan safety validator.

Walks a plan's actions with a light-weight projection (not the full step
function) and reports every constraint the plan would breach:

- SOC_TOO_LOW / SOC_TOO_HIGH: projected SOC leaves the safety band at step +i
- GRID_OVER: approximate import (base + assumed HVAC + EV + charging, no solar
  credit) exceeds grid_max + buffer at step +i
- EV deadline (evaluated once per plan):
    EV_DEADLINE_VIOLATION  deadline inside the horizon and the actions before
                           it leave more than epsilon undelivered
    EV_DEADLINE_IMPOSSIBLE deadline within the urgency threshold and the energy
                           left after the plan needs more than max rate * margin
    EV_DEADLINE_RISK       urgent, still possible, but the plan delivers less than
                           risk_fraction of what max-rate charging would in its window

A plan is feasible iff no reasons are reported.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from gridpilot.core.config import SimConfig
from gridpilot.core.types import EnergyState, Plan


class ViolationKind(str, Enum):
    SOC_TOO_LOW = "SOC_TOO_LOW"
    SOC_TOO_HIGH = "SOC_TOO_HIGH"
    GRID_OVER = "GRID_OVER"
    EV_DEADLINE_VIOLATION = "EV_DEADLINE_VIOLATION"
    EV_DEADLINE_IMPOSSIBLE = "EV_DEADLINE_IMPOSSIBLE"
    EV_DEADLINE_RISK = "EV_DEADLINE_RISK"


@dataclass(frozen=True)
class Violation:
    kind: ViolationKind
    offset: Optional[int] = None  # steps ahead of the current state; None for plan-level checks

    def __str__(self) -> str:
        if self.offset is None:
            return self.kind.value
        return f"{self.kind.value} at +{self.offset}"


@dataclass(frozen=True)
class SafetyReport:
    plan_name: str
    reasons: Tuple[Violation, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.reasons

    def kinds(self) -> Tuple[ViolationKind, ...]:
        return tuple(v.kind for v in self.reasons)


def _trajectory_violations(state: EnergyState, plan: Plan, cfg: SimConfig) -> List[Violation]:
    dt = cfg.dt_hours
    eta = cfg.physics.battery_efficiency
    limits = cfg.safety
    grid_limit = state.grid_max_kw + limits.grid_buffer_kw

    out: List[Violation] = []
    soc = state.battery_soc
    for i, action in enumerate(plan.actions):
        p = action.battery_power_kw
        soc += p * dt * (eta if p >= 0.0 else 1.0 / eta) / state.battery_kwh

        if soc < limits.soc_min:
            out.append(Violation(ViolationKind.SOC_TOO_LOW, i))
        elif soc > limits.soc_max:
            out.append(Violation(ViolationKind.SOC_TOO_HIGH, i))

        grid_approx = (
            state.base_load_kw + cfg.planner.assumed_hvac_load_kw + action.ev_charge_kw + max(0.0, p)
        )
        if grid_approx > grid_limit:
            out.append(Violation(ViolationKind.GRID_OVER, i))
    return out


def _ev_deadline_violations(state: EnergyState, plan: Plan, cfg: SimConfig) -> List[Violation]:
    remaining = state.ev_required_kwh
    steps_left = state.steps_to_deadline
    eps = cfg.safety.ev_epsilon_kwh
    if remaining <= eps or steps_left > cfg.total_steps:
        return []

    dt = cfg.dt_hours
    eff = cfg.physics.ev_charge_efficiency
    delivered_per_step = [max(0.0, a.ev_charge_kw) * dt * eff for a in plan.actions]
    window = max(0, min(len(plan.actions), steps_left))
    delivered_before_deadline = sum(delivered_per_step[:window])
    delivered_total = sum(delivered_per_step)

    out: List[Violation] = []
    if steps_left <= plan.horizon_steps and remaining - delivered_before_deadline > eps:
        out.append(Violation(ViolationKind.EV_DEADLINE_VIOLATION))

    if steps_left > cfg.events.ev_urgent_steps:
        return out

    if steps_left <= 0:
        out.append(Violation(ViolationKind.EV_DEADLINE_IMPOSSIBLE))
        return out

    remaining_after_plan = max(0.0, remaining - delivered_total)
    min_rate_kw = remaining_after_plan / (steps_left * dt) / eff
    if min_rate_kw > state.ev_max_charge_kw * cfg.safety.ev_rate_margin:
        out.append(Violation(ViolationKind.EV_DEADLINE_IMPOSSIBLE))
        return out

    achievable = min(remaining, state.ev_max_charge_kw * dt * eff * window)
    if delivered_before_deadline < cfg.safety.ev_risk_fraction * achievable:
        out.append(Violation(ViolationKind.EV_DEADLINE_RISK))
    return out


def check_plan_safety(state: EnergyState, plan: Plan, cfg: SimConfig) -> SafetyReport:
    reasons = _trajectory_violations(state, plan, cfg) + _ev_deadline_violations(state, plan, cfg)
    return SafetyReport(plan_name=plan.name, reasons=tuple(reasons))
