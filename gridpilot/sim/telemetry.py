# gridpilot/sim/telemetry.py
"""
Telemetry sources.

A source is a finite, ordered, restartable iterable of TelemetryUpdate values,
one per step. Each call to iter() starts over from the first step of the run,
so the baseline and the pipeline run can each consume their own pass.

Fields left as None keep the prior state value (see apply_telemetry).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from gridpilot.core.config import SimConfig, TELEMETRY_SERIES_KEYS
from gridpilot.core.types import EnergyState


@dataclass(frozen=True)
class TelemetryUpdate:
    tariff: Optional[float] = None
    solar_kw: Optional[float] = None
    base_load_kw: Optional[float] = None
    outdoor_temp_c: Optional[float] = None


def apply_telemetry(state: EnergyState, update: TelemetryUpdate) -> EnergyState:
    changes: Dict[str, Any] = {}
    for key in TELEMETRY_SERIES_KEYS:
        value = getattr(update, key)
        if value is not None:
            changes[key] = float(value)
    return state.evolve(**changes) if changes else state


# ----------------------------
# Scripted evening-peak day
# ----------------------------

def scripted_tariff(step: int) -> float:
    if step in (30, 31):
        return 0.75
    if 28 <= step <= 36:
        return 0.42
    if step <= 8:
        return 0.14
    return 0.18


def scripted_solar_kw(step: int) -> float:
    solar = max(0.0, 4.0 * math.exp(-(((step - 24) / 8.0) ** 2)))
    if 26 <= step <= 28:
        solar *= 0.3  # passing cloud
    return solar


def scripted_base_load_kw(step: int) -> float:
    return 1.6 + (1.2 if 30 <= step <= 34 else 0.0)


def scripted_outdoor_temp_c(step: int, total_steps: int = 48) -> float:
    return 29.0 + math.sin(step / float(total_steps) * math.pi) * 3.0


class ScriptedTelemetry:
    """
    Synthetic day with a cheap morning, a midday solar bell and an evening price spike.

    Values are generated for absolute steps start_step .. start_step + total_steps - 1,
    so a run that starts mid-day sees the same tariff at step 30 as a full-day run.
    """

    def __init__(self, total_steps: int = 48, start_step: int = 0) -> None:
        if total_steps <= 0:
            raise ValueError(f"total_steps must be > 0, got {total_steps}")
        if start_step < 0:
            raise ValueError(f"start_step must be >= 0, got {start_step}")
        self.total_steps = total_steps
        self.start_step = start_step

    def __len__(self) -> int:
        return self.total_steps

    def __iter__(self) -> Iterator[TelemetryUpdate]:
        day_steps = self.start_step + self.total_steps
        for step in range(self.start_step, day_steps):
            yield TelemetryUpdate(
                tariff=scripted_tariff(step),
                solar_kw=scripted_solar_kw(step),
                base_load_kw=scripted_base_load_kw(step),
                outdoor_temp_c=scripted_outdoor_temp_c(step, day_steps),
            )


# ----------------------------
# Array replay
# ----------------------------

class SeriesTelemetry:
    """
    Replays per-step arrays, e.g. {"tariff": [...], "solar_kw": [...]}.

    Every array must have exactly total_steps entries. Index i belongs to the
    i-th step of the run (initial_state.step + i), not to absolute step i.
    Missing keys leave the corresponding state field untouched for the whole run.
    """

    def __init__(self, series: Mapping[str, Sequence[float]], total_steps: int) -> None:
        if total_steps <= 0:
            raise ValueError(f"total_steps must be > 0, got {total_steps}")
        clean: Dict[str, List[float]] = {}
        for key, values in series.items():
            if key not in TELEMETRY_SERIES_KEYS:
                raise ValueError(f"unknown telemetry series '{key}' (expected one of {list(TELEMETRY_SERIES_KEYS)})")
            if len(values) != total_steps:
                raise ValueError(f"telemetry series '{key}' has {len(values)} values, expected {total_steps}")
            clean[key] = [float(v) for v in values]
        self.series = clean
        self.total_steps = total_steps

    def __len__(self) -> int:
        return self.total_steps

    def __iter__(self) -> Iterator[TelemetryUpdate]:
        for step in range(self.total_steps):
            yield TelemetryUpdate(**{key: values[step] for key, values in self.series.items()})


def build_telemetry(normalized_cfg: Mapping[str, Any], sim: SimConfig) -> Iterable[TelemetryUpdate]:
    telemetry = normalized_cfg.get("telemetry") or {}
    if telemetry.get("source", "scripted") == "series":
        return SeriesTelemetry(telemetry.get("series") or {}, sim.total_steps)
    start_step = int((normalized_cfg.get("initial_state") or {}).get("step", 0))
    return ScriptedTelemetry(sim.total_steps, start_step=start_step)
