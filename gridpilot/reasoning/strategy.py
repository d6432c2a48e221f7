# gridpilot/reasoning/strategy.py
"""
Pluggable reasoning strategies.

A strategy turns a textual context into a textual structured (JSON) response:

    strategy.propose(context) -> str

The pipeline never trusts the answer; gridpilot.reasoning.delegate validates
and clamps everything before use. Implementations here:

- NullStrategy: answers nothing, so every delegated stage falls back
- MockReasoningStrategy: deterministic offline stand-in for a model service.
  It reads the "key: value" lines of the context and answers the three
  tasks (interpret / propose / choose) with JSON.
"""

from __future__ import annotations

import json
import random
import re
from typing import Any, Dict, List, Mapping, Protocol


class ReasoningStrategy(Protocol):
    name: str

    def propose(self, context: str) -> str:
        ...


class NullStrategy:
    name = "null"

    def propose(self, context: str) -> str:
        return ""


_LINE = re.compile(r"^\s*([a-z_]+)\s*:\s*(.*?)\s*$")


def parse_context(context: str) -> Dict[str, str]:
    """Collect `key: value` lines; the first occurrence of a key wins."""
    fields: Dict[str, str] = {}
    for line in context.splitlines():
        m = _LINE.match(line)
        if m and m.group(1) not in fields:
            fields[m.group(1)] = m.group(2)
    return fields


def _f(fields: Mapping[str, str], key: str, default: float = 0.0) -> float:
    try:
        return float(fields.get(key, default))
    except ValueError:
        return default


class MockReasoningStrategy:
    """
    Deterministic stand-in for an external reasoning service.

    The seed only varies the wording of summaries and reasoning; numbers
    depend on the context alone, so runs are reproducible.
    """

    name = "mock"

    _SUMMARY_OPENERS = ("Grid snapshot", "Site status", "Telemetry digest")

    def __init__(self, seed: int = 42) -> None:
        self.seed = seed

    def propose(self, context: str) -> str:
        fields = parse_context(context)
        task = fields.get("task", "")
        if task == "interpret":
            return json.dumps(self._interpret(fields))
        if task == "propose":
            return json.dumps(self._plans(fields))
        if task == "choose":
            return json.dumps(self._choose(fields))
        return json.dumps({"error": f"unknown task {task!r}"})

    def _rng(self, fields: Mapping[str, str]) -> random.Random:
        return random.Random(self.seed * 1000 + int(_f(fields, "step")))

    def _urgent(self, fields: Mapping[str, str]) -> bool:
        steps_left = _f(fields, "ev_deadline_step") - _f(fields, "step")
        return _f(fields, "ev_required_kwh") > 0.0 and steps_left <= _f(fields, "ev_urgent_steps", 8)

    # ----------------------------
    # tasks
    # ----------------------------

    def _interpret(self, fields: Mapping[str, str]) -> Dict[str, Any]:
        events: List[str] = []
        tariff = _f(fields, "tariff")
        if tariff >= _f(fields, "price_spike_tariff", 0.6):
            events.append("PRICE_SPIKE")
        if self._urgent(fields):
            events.append("EV_URGENT")
        if _f(fields, "battery_soc") < _f(fields, "battery_low_soc", 0.15):
            events.append("BATTERY_LOW")
        indoor = _f(fields, "indoor_temp_c")
        if not _f(fields, "comfort_min_c", 23.0) <= indoor <= _f(fields, "comfort_max_c", 26.0):
            events.append("COMFORT_DRIFT")

        opener = self._rng(fields).choice(self._SUMMARY_OPENERS)
        summary = (
            f"{opener} t={int(_f(fields, 'step'))}: tariff ${tariff:.2f}, "
            f"SOC {_f(fields, 'battery_soc') * 100:.0f}%, EV {_f(fields, 'ev_required_kwh'):.1f} kWh left"
        )
        return {"events": events, "riskScore": len(events) / 5.0, "summary": summary}

    def _plans(self, fields: Mapping[str, str]) -> Dict[str, Any]:
        horizon = int(_f(fields, "horizon_steps", 6))
        tariff = _f(fields, "tariff")
        soc = _f(fields, "battery_soc")
        base = _f(fields, "base_load_kw")
        grid_max = _f(fields, "grid_max_kw", 6.0)
        ev_max = _f(fields, "ev_max_charge_kw")
        discharge_max = _f(fields, "battery_max_discharge_kw")
        need_ev = _f(fields, "ev_required_kwh") > 0.0
        urgent = self._urgent(fields)
        spike = tariff >= _f(fields, "price_spike_tariff", 0.6)
        hvac = _f(fields, "hvac_default_target_c", 24.5)

        def ev(rate: float) -> float:
            if not need_ev:
                return 0.0
            return ev_max if urgent else min(rate, ev_max)

        cost_battery = -discharge_max if spike and soc > 0.25 else (2.5 if tariff < 0.2 and soc < 0.8 else 0.0)
        cost_ev = ev(2.5 if tariff < 0.3 else 1.0)
        steady_ev = ev(3.0)
        headroom_ev = ev(max(0.0, grid_max - base - 2.5))
        shave_battery = -2.0 if base + 2.0 + headroom_ev > grid_max and soc > 0.2 else 0.0

        def plan(battery: float, ev_kw: float, note: str, rationale: str) -> Dict[str, Any]:
            action = {"batteryPowerKW": battery, "evChargeKW": ev_kw, "hvacTargetTempC": hvac, "note": note}
            return {"rationale": rationale, "actions": [dict(action) for _ in range(horizon)]}

        return {
            "plans": [
                plan(cost_battery, cost_ev, "mock-cost", "Cost-aware: ride cheap power, lean on the battery in spikes."),
                plan(0.0, steady_ev, "mock-steady", "Steady EV charging with an idle battery."),
                plan(shave_battery, headroom_ev, "mock-peak", "Fit EV charging under the grid limit."),
            ]
        }

    def _choose(self, fields: Mapping[str, str]) -> Dict[str, Any]:
        try:
            candidates = json.loads(fields.get("candidates", "[]"))
        except ValueError:
            candidates = []
        if not candidates:
            return {"reasoning": "no candidates"}

        tariff = _f(fields, "tariff")
        base = _f(fields, "base_load_kw")
        solar = _f(fields, "solar_kw")
        urgent = self._urgent(fields)

        def score(c: Mapping[str, Any]) -> float:
            a = c.get("action", {})
            ev_kw = float(a.get("evChargeKW", 0.0))
            grid = max(0.0, base + ev_kw + max(0.0, float(a.get("batteryPowerKW", 0.0))) - solar)
            return grid * tariff - (100.0 * ev_kw if urgent else 0.0)

        best = min(candidates, key=score)
        verb = self._rng(fields).choice(("Picked", "Selected", "Going with"))
        return {"action": best.get("action", {}), "reasoning": f"{verb} {best.get('name', '?')} (mock score {score(best):.2f})"}
