# gridpilot/sim/simulator.py
"""
Physics/economics step function.

simulate_step(state, action, cfg) -> StepResult is pure and deterministic.

Order of operations (all clamps happen before any energy accounting):
  1. Clamp battery power to rate limits, then to the energy the battery can
     actually absorb or deliver this step. Clamp EV power to [0, ev_max].
  2. Battery:  soc_kwh += p * dt * (eta if p >= 0 else 1/eta)
  3. EV:       remaining -= ev * dt * eta_ev   (never below 0)
  4. HVAC:     hvac_kw = clamp(|target - indoor| * k, 0, hvac_max)
               indoor += leak*(outdoor - indoor) + control*(target - indoor)*[hvac_kw > 0]
  5. Net load: base + hvac + ev + charge - solar - discharge
               export disabled: import = max(0, net), export = 0 (surplus curtailed)
               export enabled:  surplus split into solar/battery portions, each gated
  6. cost = import*dt*tariff - export*dt*feed_in
     penalty = max(0, import - grid_max) * dt * multiplier   (kept separate from cost)
  7. comfort violation = distance of the next indoor temp outside the comfort band
"""

from __future__ import annotations

import logging
from typing import Tuple

from gridpilot.core.config import SimConfig
from gridpilot.core.types import Action, EnergyState, StepResult, clamp


logger = logging.getLogger(__name__)


def clamp_action(state: EnergyState, action: Action) -> Action:
    """Clamp an action to the issuing state's rate limits (note preserved)."""
    return Action(
        battery_power_kw=clamp(
            float(action.battery_power_kw), -state.battery_max_discharge_kw, state.battery_max_charge_kw
        ),
        ev_charge_kw=clamp(float(action.ev_charge_kw), 0.0, state.ev_max_charge_kw),
        hvac_target_temp_c=float(action.hvac_target_temp_c),
        note=action.note,
    )


def _battery_step(state: EnergyState, power_kw: float, cfg: SimConfig) -> Tuple[float, float]:
    """
    Returns (applied_power_kw, next_soc).

    Power is limited to what the battery can take (charging) or hold
    (discharging) within one step so SOC stays in [0, 1] without a post-hoc clamp
    eating energy that was already counted on the grid side.
    """
    dt = cfg.dt_hours
    eta = cfg.physics.battery_efficiency
    cap = state.battery_kwh
    soc_kwh = state.battery_soc * cap

    if power_kw >= 0.0:
        headroom_kw = max(0.0, (cap - soc_kwh) / (dt * eta))
        power_kw = min(power_kw, headroom_kw)
        delta_kwh = power_kw * dt * eta
    else:
        available_kw = max(0.0, soc_kwh * eta / dt)
        power_kw = max(power_kw, -available_kw)
        delta_kwh = power_kw * dt / eta

    next_kwh = clamp(soc_kwh + delta_kwh, 0.0, cap)
    return power_kw, next_kwh / cap


def _hvac_step(state: EnergyState, target_c: float, cfg: SimConfig) -> Tuple[float, float]:
    """Returns (hvac_kw, next_indoor_temp_c)."""
    p = cfg.physics
    hvac_kw = clamp(abs(target_c - state.indoor_temp_c) * p.hvac_temp_diff_coefficient, 0.0, p.hvac_max_power_kw)

    leak = (state.outdoor_temp_c - state.indoor_temp_c) * p.thermal_leak_rate
    control = (target_c - state.indoor_temp_c) * p.thermal_control_rate if hvac_kw > 0.0 else 0.0
    return hvac_kw, state.indoor_temp_c + leak + control


def _grid_flows(
    state: EnergyState, hvac_kw: float, ev_kw: float, battery_kw: float, cfg: SimConfig
) -> Tuple[float, float]:
    """Returns (grid_import_kw, grid_export_kw)."""
    charge_kw = max(0.0, battery_kw)
    discharge_kw = max(0.0, -battery_kw)
    demand_kw = state.base_load_kw + hvac_kw + ev_kw + charge_kw
    net_kw = demand_kw - state.solar_kw - discharge_kw

    grid_import = max(0.0, net_kw)
    if not cfg.grid.export_enabled:
        return grid_import, 0.0

    surplus = max(0.0, -net_kw)
    solar_part = min(surplus, max(0.0, state.solar_kw - demand_kw))
    battery_part = surplus - solar_part

    grid_export = 0.0
    if cfg.grid.allow_solar_export:
        grid_export += solar_part
    if cfg.grid.allow_battery_export:
        grid_export += battery_part
    return grid_import, grid_export


def simulate_step(state: EnergyState, action: Action, cfg: SimConfig) -> StepResult:
    dt = cfg.dt_hours
    requested = clamp_action(state, action)

    battery_kw, next_soc = _battery_step(state, requested.battery_power_kw, cfg)
    ev_kw = requested.ev_charge_kw
    # an EV with nothing left to charge draws nothing
    if state.ev_required_kwh <= 0.0:
        ev_kw = 0.0
    ev_remaining = max(0.0, state.ev_required_kwh - ev_kw * dt * cfg.physics.ev_charge_efficiency)

    hvac_kw, next_indoor = _hvac_step(state, requested.hvac_target_temp_c, cfg)
    grid_import, grid_export = _grid_flows(state, hvac_kw, ev_kw, battery_kw, cfg)

    cost = grid_import * dt * state.tariff - grid_export * dt * cfg.grid.feed_in_tariff
    penalty = max(0.0, grid_import - state.grid_max_kw) * dt * cfg.grid.penalty_multiplier

    if not cfg.grid.export_enabled and cost < 0.0:
        logger.warning("step %s: negative cost %.4f with export disabled", state.step, cost)

    applied = Action(
        battery_power_kw=battery_kw,
        ev_charge_kw=ev_kw,
        hvac_target_temp_c=requested.hvac_target_temp_c,
        note=requested.note,
    )
    next_state = state.evolve(
        step=state.step + 1,
        minute=state.minute + cfg.time.step_minutes,
        indoor_temp_c=next_indoor,
        hvac_load_kw=hvac_kw,
        battery_soc=next_soc,
        ev_required_kwh=ev_remaining,
    )

    return StepResult(
        state=state,
        action=applied,
        next_state=next_state,
        cost_usd=cost,
        grid_import_kw=grid_import,
        grid_export_kw=grid_export,
        grid_penalty_usd=penalty,
        comfort_violation=cfg.comfort.violation(next_indoor),
    )
