# gridpilot/agent/executor.py
"""
Final safety net in front of the step function.

Re-checks the EV deadline on its own, whatever upstream chose:
  - urgent (deadline within the urgency threshold) and the action charges below
    half the EV max rate, or
  - latest start reached (the remaining energy needs every step left at max rate)
    and the action charges below max rate
=> EV charge is forced to max rate, the other fields are kept, and the note is annotated.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Tuple

from gridpilot.core.config import SimConfig
from gridpilot.core.types import Action, EnergyState, StepResult
from gridpilot.sim.simulator import simulate_step


logger = logging.getLogger(__name__)

URGENT_MIN_FRACTION = 0.5
ENERGY_TOL_KWH = 1e-9


def steps_needed_at_max_rate(state: EnergyState, cfg: SimConfig) -> int:
    per_step = state.ev_max_charge_kw * cfg.dt_hours * cfg.physics.ev_charge_efficiency
    if per_step <= 0.0:
        return 0
    # tolerance keeps an exact multiple from rounding up to an extra step
    return int(math.ceil(state.ev_required_kwh / per_step - 1e-9))


def apply_ev_override(state: EnergyState, action: Action, cfg: SimConfig) -> Tuple[Action, bool]:
    if state.ev_required_kwh <= ENERGY_TOL_KWH:
        return action, False

    steps_left = state.steps_to_deadline
    ev_max = state.ev_max_charge_kw
    urgent = steps_left <= cfg.events.ev_urgent_steps and action.ev_charge_kw < ev_max * URGENT_MIN_FRACTION
    latest_start = steps_left <= steps_needed_at_max_rate(state, cfg) and action.ev_charge_kw < ev_max
    if not (urgent or latest_start):
        return action, False

    note = f"{action.note or 'action'} [EV DEADLINE OVERRIDE: {steps_left} steps left]"
    return replace(action, ev_charge_kw=ev_max, note=note), True


def execute_action(state: EnergyState, action: Action, cfg: SimConfig) -> StepResult:
    final, overridden = apply_ev_override(state, action, cfg)
    if overridden:
        logger.warning(
            "step %s: EV override %.2f -> %.2f kW (%.2f kWh left, %s steps to deadline)",
            state.step,
            action.ev_charge_kw,
            final.ev_charge_kw,
            state.ev_required_kwh,
            state.steps_to_deadline,
        )
    result = simulate_step(state, final, cfg)
    return replace(result, overridden=overridden) if overridden else result
