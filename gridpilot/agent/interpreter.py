# gridpilot/agent/interpreter.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

from gridpilot.agent.memory import DecisionMemory
from gridpilot.core.config import SimConfig
from gridpilot.core.types import EnergyState


class EventKind(str, Enum):
    PRICE_SPIKE = "PRICE_SPIKE"
    EV_URGENT = "EV_URGENT"
    GRID_OVERLOAD_RISK = "GRID_OVERLOAD_RISK"
    BATTERY_LOW = "BATTERY_LOW"
    COMFORT_DRIFT = "COMFORT_DRIFT"


# riskScore saturates at this many simultaneous events
RISK_EVENT_SATURATION = 6


@dataclass(frozen=True)
class Interpretation:
    events: Tuple[EventKind, ...]
    risk_score: float
    summary: str

    def has(self, kind: EventKind) -> bool:
        return kind in self.events


def ev_is_urgent(state: EnergyState, cfg: SimConfig) -> bool:
    return state.ev_required_kwh > 0.0 and state.steps_to_deadline <= cfg.events.ev_urgent_steps


def detect_events(state: EnergyState, cfg: SimConfig) -> Tuple[EventKind, ...]:
    thresholds = cfg.events
    events: List[EventKind] = []

    if state.tariff >= thresholds.price_spike_tariff:
        events.append(EventKind.PRICE_SPIKE)
    if ev_is_urgent(state, cfg):
        events.append(EventKind.EV_URGENT)

    projected_kw = state.base_load_kw + thresholds.projected_hvac_kw + state.ev_max_charge_kw
    if projected_kw > state.grid_max_kw:
        events.append(EventKind.GRID_OVERLOAD_RISK)

    if state.battery_soc < thresholds.battery_low_soc:
        events.append(EventKind.BATTERY_LOW)
    if not cfg.comfort.contains(state.indoor_temp_c):
        events.append(EventKind.COMFORT_DRIFT)

    return tuple(events)


def risk_from_events(events: Tuple[EventKind, ...]) -> float:
    return min(1.0, len(events) / float(RISK_EVENT_SATURATION))


def summarize(state: EnergyState, events: Tuple[EventKind, ...], memory: DecisionMemory) -> str:
    event_txt = ",".join(e.value for e in events) if events else "OK"
    return (
        f"t={state.step} tariff=${state.tariff:.2f} SOC={state.battery_soc * 100:.0f}% "
        f"EVremain={state.ev_required_kwh:.1f}kWh indoor={state.indoor_temp_c:.1f}C "
        f"| {event_txt} | {memory.brief()}"
    )


def interpret(state: EnergyState, memory: DecisionMemory, cfg: SimConfig) -> Interpretation:
    events = detect_events(state, cfg)
    return Interpretation(
        events=events,
        risk_score=risk_from_events(events),
        summary=summarize(state, events, memory),
    )
