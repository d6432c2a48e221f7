# gridpilot/sim/baseline.py
"""
Rule-based baseline controller.

No look-ahead, no events, no memory:
  - EV charges at full rate whenever energy is still required
  - HVAC holds a fixed setpoint
  - battery soaks up solar above a threshold until nearly full, otherwise idles
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from gridpilot.core.config import SimConfig
from gridpilot.core.types import Action, EnergyState


@dataclass(frozen=True)
class BaselineParams:
    hvac_target_c: Optional[float] = None  # None => planner default setpoint
    solar_charge_threshold_kw: float = 2.5
    solar_charge_kw: float = 2.0
    soc_charge_ceiling: float = 0.9


def baseline_action(state: EnergyState, cfg: SimConfig, params: BaselineParams = BaselineParams()) -> Action:
    ev_kw = state.ev_max_charge_kw if state.ev_required_kwh > 0.0 else 0.0

    battery_kw = 0.0
    if state.solar_kw > params.solar_charge_threshold_kw and state.battery_soc < params.soc_charge_ceiling:
        battery_kw = min(params.solar_charge_kw, state.battery_max_charge_kw)

    hvac_target = params.hvac_target_c
    if hvac_target is None:
        hvac_target = cfg.planner.hvac_default_target_c

    return Action(
        battery_power_kw=battery_kw,
        ev_charge_kw=ev_kw,
        hvac_target_temp_c=hvac_target,
        note="baseline",
    )
