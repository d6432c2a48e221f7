# gridpilot/agent/planner.py
"""
Heuristic plan generator.

propose_plans(state, events, cfg) returns, in this order:
  1. cost_min      - pre-charge before the spike window, discharge during it,
                     opportunistic EV charging when power is cheap
  2. safety_first  - steady EV charging that ramps up near the deadline,
                     conservative battery use
  3. peak_shaving  - size EV charging to the grid headroom, shave with the battery
  4. emergency     - only when the EV deadline is imminent and energy remains

The order is part of the contract: the fallback ladder uses position 2 as its
last resort, and the chooser breaks score ties by list order.

EV precedence rule shared by every plan: once the deadline is within the
urgency threshold, the EV charges at its maximum rate.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

from gridpilot.agent.interpreter import EventKind, ev_is_urgent
from gridpilot.core.config import SimConfig
from gridpilot.core.types import Action, EnergyState, Plan
from gridpilot.sim.simulator import clamp_action


CHEAP_TARIFF = 0.2
MODERATE_TARIFF = 0.3
PREPARE_TARIFF_CEILING = 0.5

SPIKE_DISCHARGE_MIN_SOC = 0.25
PEAK_SHAVE_MIN_SOC = 0.2

# emergency plan is offered this far (as a multiple of the urgency threshold) ahead of the deadline
EMERGENCY_LOOKAHEAD_FACTOR = 1.5

COST_MIN_RATIONALE = (
    "Minimize cost with spike prediction. Prepare battery before spike, "
    "discharge during spike, smart EV timing."
)
SAFETY_FIRST_RATIONALE = (
    "Ensure EV deadline with steady charging. Conservative battery use for safety and modest savings."
)
PEAK_SHAVING_RATIONALE = (
    "Keep grid below limit by using battery to shave peaks and controlling EV charge dynamically."
)


def _repeat(state: EnergyState, action: Action, horizon: int) -> Tuple[Action, ...]:
    clamped = clamp_action(state, action)
    return tuple(clamped for _ in range(horizon))


def hvac_setpoint(state: EnergyState, events: Sequence[EventKind], cfg: SimConfig) -> float:
    """Pre-cool ahead of an expensive window when the battery can carry it, relax during a spike when it can't."""
    p = cfg.planner
    base = p.hvac_default_target_c
    spike = EventKind.PRICE_SPIKE in events
    approaching_spike = state.tariff < MODERATE_TARIFF and p.in_precool_window(state.step)

    if approaching_spike and state.battery_soc > 0.5:
        return base - 1.0
    if spike and state.battery_soc < 0.3:
        return base + 1.0
    return base


def _moderate_urgency(steps_left: int, cfg: SimConfig) -> bool:
    return steps_left <= 2 * cfg.events.ev_urgent_steps


# ----------------------------
# Plan A: cost minimization
# ----------------------------

def _cost_min_ev_kw(state: EnergyState, events: Sequence[EventKind], cfg: SimConfig) -> float:
    if state.ev_required_kwh <= 0.0:
        return 0.0
    ev_max = state.ev_max_charge_kw
    steps_left = state.steps_to_deadline

    if EventKind.EV_URGENT in events or ev_is_urgent(state, cfg):
        return ev_max
    moderate = _moderate_urgency(steps_left, cfg)
    if cfg.planner.in_spike_window(state.step) and not moderate:
        return 0.0
    if state.tariff < CHEAP_TARIFF and EventKind.GRID_OVERLOAD_RISK not in events:
        return ev_max
    if state.tariff < MODERATE_TARIFF or moderate:
        return min(2.5, ev_max)
    if steps_left <= cfg.planner.horizon_steps * 3:
        return min(1.5, ev_max)
    return 0.0


def _cost_min_battery_kw(state: EnergyState, events: Sequence[EventKind], cfg: SimConfig) -> float:
    soc = state.battery_soc
    soon = cfg.planner.spike_expected_soon(state.step)
    prepare = soon and soc < 0.8 and state.tariff < PREPARE_TARIFF_CEILING

    if EventKind.PRICE_SPIKE in events and soc > SPIKE_DISCHARGE_MIN_SOC:
        return -state.battery_max_discharge_kw
    if prepare:
        return min(3.5, state.battery_max_charge_kw)
    if soon and soc < 0.7:
        return 3.0
    if state.tariff < CHEAP_TARIFF and soc < 0.8:
        return 3.0
    if state.solar_kw > 2.5 and soc < 0.9:
        return 2.5
    return 0.0


def cost_min_plan(state: EnergyState, events: Sequence[EventKind], cfg: SimConfig, hvac_c: float) -> Plan:
    action = Action(
        battery_power_kw=_cost_min_battery_kw(state, events, cfg),
        ev_charge_kw=_cost_min_ev_kw(state, events, cfg),
        hvac_target_temp_c=hvac_c,
        note="cost_min",
    )
    horizon = cfg.planner.horizon_steps
    return Plan("cost_min", horizon, _repeat(state, action, horizon), COST_MIN_RATIONALE)


# ----------------------------
# Plan B: safety first
# ----------------------------

def _safety_first_ev_kw(state: EnergyState, cfg: SimConfig) -> float:
    if state.ev_required_kwh <= 0.0:
        return 0.0
    ev_max = state.ev_max_charge_kw
    steps_left = state.steps_to_deadline
    in_spike = cfg.planner.in_spike_window(state.step)

    if ev_is_urgent(state, cfg):
        return ev_max
    if _moderate_urgency(steps_left, cfg):
        return min(1.5 if in_spike else 3.0, ev_max)
    if in_spike:
        return min(1.0, ev_max)
    return min(2.5, ev_max)


def _safety_first_battery_kw(state: EnergyState, events: Sequence[EventKind], cfg: SimConfig) -> float:
    soc = state.battery_soc
    if EventKind.PRICE_SPIKE in events and soc > SPIKE_DISCHARGE_MIN_SOC:
        return -min(3.5, state.battery_max_discharge_kw)
    if cfg.planner.spike_expected_soon(state.step) and soc < 0.75:
        return 3.0
    if state.tariff < CHEAP_TARIFF and soc < 0.8:
        return 3.0
    return 0.0


def safety_first_plan(state: EnergyState, events: Sequence[EventKind], cfg: SimConfig, hvac_c: float) -> Plan:
    action = Action(
        battery_power_kw=_safety_first_battery_kw(state, events, cfg),
        ev_charge_kw=_safety_first_ev_kw(state, cfg),
        hvac_target_temp_c=hvac_c,
        note="safety_first",
    )
    horizon = cfg.planner.horizon_steps
    return Plan("safety_first", horizon, _repeat(state, action, horizon), SAFETY_FIRST_RATIONALE)


# ----------------------------
# Plan C: peak shaving
# ----------------------------

def peak_shaving_plan(state: EnergyState, cfg: SimConfig, hvac_c: float) -> Plan:
    predicted_base = state.base_load_kw + cfg.planner.assumed_hvac_load_kw
    headroom = max(0.0, state.grid_max_kw - predicted_base)

    ev_kw = 0.0
    if state.ev_required_kwh > 0.0:
        if ev_is_urgent(state, cfg):
            ev_kw = state.ev_max_charge_kw
        else:
            ev_kw = max(0.0, min(state.ev_max_charge_kw, headroom - cfg.safety.grid_buffer_kw))

    battery_kw = 0.0
    if predicted_base + ev_kw > state.grid_max_kw and state.battery_soc > PEAK_SHAVE_MIN_SOC:
        battery_kw = -2.5

    action = Action(battery_power_kw=battery_kw, ev_charge_kw=ev_kw, hvac_target_temp_c=hvac_c, note="peak_shaving")
    horizon = cfg.planner.horizon_steps
    return Plan("peak_shaving", horizon, _repeat(state, action, horizon), PEAK_SHAVING_RATIONALE)


# ----------------------------
# Plan D: emergency
# ----------------------------

def needs_emergency_plan(state: EnergyState, cfg: SimConfig) -> bool:
    lookahead = cfg.events.ev_urgent_steps * EMERGENCY_LOOKAHEAD_FACTOR
    return state.ev_required_kwh > cfg.safety.ev_epsilon_kwh and state.steps_to_deadline <= lookahead


def emergency_plan(state: EnergyState, cfg: SimConfig, hvac_c: float) -> Plan:
    action = Action(
        battery_power_kw=0.0,
        ev_charge_kw=state.ev_max_charge_kw,
        hvac_target_temp_c=hvac_c - 1.0,
        note="emergency",
    )
    horizon = cfg.planner.horizon_steps
    rationale = (
        f"EMERGENCY: EV needs {state.ev_required_kwh:.1f} kWh within {state.steps_to_deadline} steps. "
        "Max-rate EV charging, battery idle."
    )
    return Plan("emergency", horizon, _repeat(state, action, horizon), rationale, emergency=True)


def propose_plans(state: EnergyState, events: Sequence[EventKind], cfg: SimConfig) -> List[Plan]:
    hvac_c = hvac_setpoint(state, events, cfg)
    plans = [
        cost_min_plan(state, events, cfg, hvac_c),
        safety_first_plan(state, events, cfg, hvac_c),
        peak_shaving_plan(state, cfg, hvac_c),
    ]
    if needs_emergency_plan(state, cfg):
        plans.append(emergency_plan(state, cfg, hvac_c))
    return plans
