# gridpilot/agent/chooser.py
"""
Score each candidate's first action and pick the cheapest.

score = import cost proxy
      + grid_overage_weight * kW over the import limit
      + EV idle penalty (grows as the deadline nears, only when the action does not charge)
      + flat comfort penalty when indoor temperature is outside the band

Lower is better. Ties go to the earliest plan in the list.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from gridpilot.agent.memory import DecisionMemory
from gridpilot.core.config import SimConfig
from gridpilot.core.errors import NoFeasiblePlanError
from gridpilot.core.types import Action, EnergyState, Plan


@dataclass(frozen=True)
class ScoreBreakdown:
    cost: float
    grid: float
    ev_urgency: float
    comfort: float

    @property
    def total(self) -> float:
        return self.cost + self.grid + self.ev_urgency + self.comfort


@dataclass(frozen=True)
class Choice:
    action: Action
    reasoning: str
    plan_name: Optional[str] = None
    score: Optional[float] = None


def score_action(state: EnergyState, action: Action, cfg: SimConfig) -> ScoreBreakdown:
    w = cfg.chooser
    hvac_kw = cfg.planner.assumed_hvac_load_kw
    load_kw = state.base_load_kw + hvac_kw + action.ev_charge_kw

    cost = max(0.0, load_kw + max(0.0, action.battery_power_kw) - state.solar_kw) * state.tariff
    grid = max(0.0, load_kw - state.grid_max_kw) * w.grid_overage_weight

    ev_urgency = 0.0
    if state.ev_required_kwh > 0.0 and action.ev_charge_kw == 0.0:
        ev_urgency = w.ev_idle_penalty / max(1, state.steps_to_deadline)

    comfort = 0.0 if cfg.comfort.contains(state.indoor_temp_c) else w.comfort_penalty
    return ScoreBreakdown(cost=cost, grid=grid, ev_urgency=ev_urgency, comfort=comfort)


def score_plans(state: EnergyState, plans: Sequence[Plan], cfg: SimConfig) -> Dict[str, float]:
    return {p.name: score_action(state, p.first_action, cfg).total for p in plans}


def choose_action(state: EnergyState, memory: DecisionMemory, plans: Sequence[Plan], cfg: SimConfig) -> Choice:
    if not plans:
        raise NoFeasiblePlanError("choose_action called with no candidate plans")

    best: Optional[Plan] = None
    best_score = float("inf")
    for plan in plans:
        s = score_action(state, plan.first_action, cfg).total
        # strict '<' keeps the first minimum
        if s < best_score:
            best, best_score = plan, s

    assert best is not None
    reasoning = f"Chose {best.first_action.note or best.name} | score={best_score:.2f} | rationale={best.rationale}"
    return Choice(action=best.first_action, reasoning=reasoning, plan_name=best.name, score=best_score)
