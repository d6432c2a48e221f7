# gridpilot/reasoning/delegate.py
"""
Boundary between the pipeline and an untrusted reasoning strategy.

For each delegated stage this module
  1. renders a plain-text context (one `key: value` per line),
  2. calls strategy.propose(context),
  3. validates the JSON answer and clamps every number to the same bounds the
     heuristic path enforces.

Any structural problem raises DelegateResponseError; the orchestrator catches
it (and anything the strategy itself raises) and uses the heuristic result.
"""

from __future__ import annotations

import json
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from gridpilot.agent.chooser import Choice
from gridpilot.agent.interpreter import EventKind, Interpretation
from gridpilot.agent.memory import DecisionMemory
from gridpilot.agent.planner import emergency_plan, hvac_setpoint, needs_emergency_plan
from gridpilot.core.config import SimConfig
from gridpilot.core.errors import DelegateResponseError
from gridpilot.core.types import Action, EnergyState, Plan, clamp
from gridpilot.reasoning.strategy import ReasoningStrategy


EXPECTED_PLAN_COUNT = 3

_RESPONSE_SHAPES = {
    "interpret": '{"events": [EVENT_KIND, ...], "riskScore": 0..1, "summary": "..."}',
    "propose": '{"plans": [{"rationale": "...", "actions": [ACTION x horizon_steps]} x 3]}',
    "choose": '{"action": ACTION, "reasoning": "..."}',
}
_ACTION_SHAPE = '{"batteryPowerKW": kW, "evChargeKW": kW, "hvacTargetTempC": C, "note": "..."}'


# ----------------------------
# Context rendering
# ----------------------------

def action_to_dict(action: Action) -> Dict[str, Any]:
    return {
        "batteryPowerKW": action.battery_power_kw,
        "evChargeKW": action.ev_charge_kw,
        "hvacTargetTempC": action.hvac_target_temp_c,
        "note": action.note,
    }


def build_context(
    task: str,
    state: EnergyState,
    cfg: SimConfig,
    *,
    memory: Optional[DecisionMemory] = None,
    events: Sequence[EventKind] = (),
    candidates: Sequence[Plan] = (),
) -> str:
    lines = [
        f"task: {task}",
        f"step: {state.step}",
        f"tariff: {state.tariff:.4f}",
        f"solar_kw: {state.solar_kw:.4f}",
        f"base_load_kw: {state.base_load_kw:.4f}",
        f"indoor_temp_c: {state.indoor_temp_c:.3f}",
        f"outdoor_temp_c: {state.outdoor_temp_c:.3f}",
        f"battery_soc: {state.battery_soc:.4f}",
        f"battery_kwh: {state.battery_kwh:.3f}",
        f"battery_max_charge_kw: {state.battery_max_charge_kw:.3f}",
        f"battery_max_discharge_kw: {state.battery_max_discharge_kw:.3f}",
        f"ev_required_kwh: {state.ev_required_kwh:.4f}",
        f"ev_deadline_step: {state.ev_deadline_step}",
        f"ev_max_charge_kw: {state.ev_max_charge_kw:.3f}",
        f"grid_max_kw: {state.grid_max_kw:.3f}",
        f"horizon_steps: {cfg.planner.horizon_steps}",
        f"ev_urgent_steps: {cfg.events.ev_urgent_steps}",
        f"price_spike_tariff: {cfg.events.price_spike_tariff}",
        f"battery_low_soc: {cfg.events.battery_low_soc}",
        f"comfort_min_c: {cfg.comfort.min_c}",
        f"comfort_max_c: {cfg.comfort.max_c}",
        f"hvac_default_target_c: {cfg.planner.hvac_default_target_c}",
    ]
    if memory is not None:
        lines.append(f"memory: {memory.brief()}")
    if events:
        lines.append(f"events: {','.join(e.value for e in events)}")
    if candidates:
        payload = [
            {"name": p.name, "rationale": p.rationale, "action": action_to_dict(p.first_action)} for p in candidates
        ]
        lines.append(f"candidates: {json.dumps(payload, sort_keys=True)}")
    lines.append(f"respond: JSON {_RESPONSE_SHAPES[task]} where ACTION = {_ACTION_SHAPE}")
    return "\n".join(lines)


# ----------------------------
# Response validation
# ----------------------------

def parse_json_object(stage: str, response: Any) -> Dict[str, Any]:
    if isinstance(response, Mapping):
        return dict(response)
    if not isinstance(response, str) or not response.strip():
        raise DelegateResponseError(stage, "empty response")

    text = response.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        data = json.loads(text)
    except ValueError as e:
        raise DelegateResponseError(stage, f"response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise DelegateResponseError(stage, f"expected a JSON object, got {type(data).__name__}")
    return data


def _number(stage: str, raw: Mapping[str, Any], key: str, default: Optional[float]) -> float:
    v = raw.get(key, default)
    if v is None:
        raise DelegateResponseError(stage, f"missing numeric field '{key}'")
    if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(float(v)):
        raise DelegateResponseError(stage, f"field '{key}' must be a finite number, got {v!r}")
    return float(v)


def coerce_action(stage: str, raw: Any, state: EnergyState, cfg: SimConfig, default_note: str) -> Action:
    if not isinstance(raw, Mapping):
        raise DelegateResponseError(stage, f"action must be an object, got {type(raw).__name__}")

    p = cfg.planner
    note = raw.get("note")
    return Action(
        battery_power_kw=clamp(
            _number(stage, raw, "batteryPowerKW", 0.0), -state.battery_max_discharge_kw, state.battery_max_charge_kw
        ),
        ev_charge_kw=clamp(_number(stage, raw, "evChargeKW", 0.0), 0.0, state.ev_max_charge_kw),
        hvac_target_temp_c=clamp(
            _number(stage, raw, "hvacTargetTempC", p.hvac_default_target_c), p.hvac_min_c, p.hvac_max_c
        ),
        note=note if isinstance(note, str) and note else default_note,
    )


def parse_interpretation(response: Any, memory: DecisionMemory) -> Interpretation:
    stage = "interpret"
    data = parse_json_object(stage, response)

    raw_events = data.get("events")
    if not isinstance(raw_events, list):
        raise DelegateResponseError(stage, "'events' must be a list")
    events: List[EventKind] = []
    for e in raw_events:
        try:
            kind = EventKind(e)
        except ValueError as err:
            raise DelegateResponseError(stage, f"unknown event {e!r}") from err
        if kind not in events:
            events.append(kind)

    risk = _number(stage, data, "riskScore", None)
    summary = data.get("summary")
    if not isinstance(summary, str):
        raise DelegateResponseError(stage, "'summary' must be a string")

    return Interpretation(
        events=tuple(events),
        risk_score=clamp(risk, 0.0, 1.0),
        summary=f"{summary} | {memory.brief()}",
    )


def parse_plans(response: Any, state: EnergyState, events: Sequence[EventKind], cfg: SimConfig) -> List[Plan]:
    stage = "propose"
    data = parse_json_object(stage, response)
    horizon = cfg.planner.horizon_steps

    raw_plans = data.get("plans")
    if not isinstance(raw_plans, list) or len(raw_plans) != EXPECTED_PLAN_COUNT:
        raise DelegateResponseError(stage, f"expected exactly {EXPECTED_PLAN_COUNT} plans")

    plans: List[Plan] = []
    for i, raw in enumerate(raw_plans):
        if not isinstance(raw, Mapping):
            raise DelegateResponseError(stage, f"plan {i} must be an object")
        raw_actions = raw.get("actions")
        if not isinstance(raw_actions, list) or len(raw_actions) != horizon:
            raise DelegateResponseError(stage, f"plan {i} must have exactly {horizon} actions")
        rationale = raw.get("rationale")
        actions = tuple(coerce_action(stage, a, state, cfg, default_note="delegate") for a in raw_actions)
        plans.append(
            Plan(
                name=f"delegate_{i + 1}",
                horizon_steps=horizon,
                actions=actions,
                rationale=rationale if isinstance(rationale, str) else "",
            )
        )

    if needs_emergency_plan(state, cfg):
        plans.append(emergency_plan(state, cfg, hvac_setpoint(state, events, cfg)))
    return plans


def parse_choice(response: Any, state: EnergyState, cfg: SimConfig) -> Choice:
    stage = "choose"
    data = parse_json_object(stage, response)
    reasoning = data.get("reasoning")
    if not isinstance(reasoning, str):
        raise DelegateResponseError(stage, "'reasoning' must be a string")
    action = coerce_action(stage, data.get("action"), state, cfg, default_note="delegate")
    return Choice(action=action, reasoning=reasoning)


# ----------------------------
# One call per stage
# ----------------------------

def delegate_interpretation(
    strategy: ReasoningStrategy, state: EnergyState, memory: DecisionMemory, cfg: SimConfig
) -> Interpretation:
    context = build_context("interpret", state, cfg, memory=memory)
    return parse_interpretation(strategy.propose(context), memory)


def delegate_plans(
    strategy: ReasoningStrategy, state: EnergyState, events: Sequence[EventKind], cfg: SimConfig
) -> List[Plan]:
    context = build_context("propose", state, cfg, events=events)
    return parse_plans(strategy.propose(context), state, events, cfg)


def delegate_choice(
    strategy: ReasoningStrategy,
    state: EnergyState,
    memory: DecisionMemory,
    candidates: Sequence[Plan],
    cfg: SimConfig,
) -> Choice:
    context = build_context("choose", state, cfg, memory=memory, candidates=candidates)
    return parse_choice(strategy.propose(context), state, cfg)
