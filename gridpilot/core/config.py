# gridpilot/core/config.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
import copy
import difflib

import yaml

from gridpilot.core.errors import ConfigError
from gridpilot.core.types import EnergyState, TimeIndex


CANONICAL_TOP_LEVEL_KEYS = (
    "scenario",
    "run",
    "physics",
    "comfort",
    "grid",
    "planner",
    "safety",
    "events",
    "chooser",
    "memory",
    "delegation",
    "initial_state",
    "telemetry",
)

TELEMETRY_SERIES_KEYS = ("tariff", "solar_kw", "base_load_kw", "outdoor_temp_c")

MODE_ALIASES = {"llm": "delegated"}

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "scenario": {"seed": 42},
    "run": {"total_steps": 48, "timestep_minutes": 15, "mode": "hybrid", "parallel": False},
    "physics": {
        "battery_efficiency": 0.95,
        "ev_charge_efficiency": 0.92,
        "hvac_max_power_kw": 3.5,
        "hvac_temp_diff_coefficient": 0.6,
        "thermal_leak_rate": 0.05,
        "thermal_control_rate": 0.12,
    },
    "comfort": {"min_c": 23.0, "max_c": 26.0},
    "grid": {
        "penalty_multiplier": 2.0,
        "export_enabled": False,
        "feed_in_tariff": 0.05,
        "allow_battery_export": False,
        "allow_solar_export": True,
    },
    "planner": {
        "horizon_steps": 6,
        "spike_window": [30, 35],
        "spike_lead_steps": 5,
        "hvac_default_target_c": 24.5,
        "hvac_min_c": 22.5,
        "hvac_max_c": 27.0,
        "assumed_hvac_load_kw": 2.0,
    },
    "safety": {
        "soc_min": 0.05,
        "soc_max": 0.98,
        "grid_buffer_kw": 0.5,
        "ev_epsilon_kwh": 0.1,
        "ev_rate_margin": 1.1,
        "ev_risk_fraction": 0.8,
    },
    "events": {
        "price_spike_tariff": 0.6,
        "ev_urgent_steps": 8,
        "battery_low_soc": 0.15,
        "projected_hvac_kw": 2.5,
    },
    "chooser": {"grid_overage_weight": 10.0, "ev_idle_penalty": 8.0, "comfort_penalty": 5.0},
    "memory": {"capacity": 20, "brief_decisions": 5, "brief_constraints": 3},
    "delegation": {"hybrid_cadence_steps": 6},
    "initial_state": {
        "step": 0,
        "tariff": 0.14,
        "solar_kw": 0.0,
        "base_load_kw": 1.8,
        "outdoor_temp_c": 30.0,
        "indoor_temp_c": 25.5,
        "battery_soc": 0.55,
        "battery_kwh": 8.0,
        "battery_max_charge_kw": 3.5,
        "battery_max_discharge_kw": 3.5,
        "ev_required_kwh": 10.0,
        "ev_deadline_step": 28,
        "ev_max_charge_kw": 3.5,
        "grid_max_kw": 6.0,
    },
    "telemetry": {"source": "scripted"},
}


class AgentMode(str, Enum):
    HEURISTIC = "heuristic"
    DELEGATED = "delegated"
    HYBRID = "hybrid"


# ----------------------------
# Immutable run configuration
# ----------------------------

@dataclass(frozen=True)
class PhysicsParams:
    battery_efficiency: float
    ev_charge_efficiency: float
    hvac_max_power_kw: float
    hvac_temp_diff_coefficient: float
    thermal_leak_rate: float
    thermal_control_rate: float


@dataclass(frozen=True)
class ComfortBand:
    min_c: float
    max_c: float

    def contains(self, temp_c: float) -> bool:
        return self.min_c <= temp_c <= self.max_c

    def violation(self, temp_c: float) -> float:
        if temp_c < self.min_c:
            return self.min_c - temp_c
        if temp_c > self.max_c:
            return temp_c - self.max_c
        return 0.0


@dataclass(frozen=True)
class GridParams:
    penalty_multiplier: float
    export_enabled: bool
    feed_in_tariff: float
    allow_battery_export: bool
    allow_solar_export: bool


@dataclass(frozen=True)
class PlannerParams:
    horizon_steps: int
    spike_window_start: int
    spike_window_end: int
    spike_lead_steps: int
    hvac_default_target_c: float
    hvac_min_c: float
    hvac_max_c: float
    assumed_hvac_load_kw: float

    def in_spike_window(self, step: int) -> bool:
        return self.spike_window_start <= step <= self.spike_window_end

    def spike_expected_soon(self, step: int) -> bool:
        return self.spike_window_start - self.spike_lead_steps <= step < self.spike_window_start

    def in_precool_window(self, step: int) -> bool:
        return self.spike_window_start - self.horizon_steps <= step < self.spike_window_start


@dataclass(frozen=True)
class SafetyParams:
    soc_min: float
    soc_max: float
    grid_buffer_kw: float
    ev_epsilon_kwh: float
    ev_rate_margin: float
    ev_risk_fraction: float


@dataclass(frozen=True)
class EventThresholds:
    price_spike_tariff: float
    ev_urgent_steps: int
    battery_low_soc: float
    projected_hvac_kw: float


@dataclass(frozen=True)
class ChooserWeights:
    grid_overage_weight: float
    ev_idle_penalty: float
    comfort_penalty: float


@dataclass(frozen=True)
class MemoryParams:
    capacity: int
    brief_decisions: int
    brief_constraints: int


@dataclass(frozen=True)
class SimConfig:
    """
    Read-only configuration for one run. Built once and passed explicitly to
    the step function, validator, generator, interpreter and chooser.
    """
    time: TimeIndex
    physics: PhysicsParams
    comfort: ComfortBand
    grid: GridParams
    planner: PlannerParams
    safety: SafetyParams
    events: EventThresholds
    chooser: ChooserWeights
    memory: MemoryParams
    mode: AgentMode = AgentMode.HYBRID
    hybrid_cadence_steps: int = 6
    seed: int = 42

    @property
    def dt_hours(self) -> float:
        return self.time.dt_hours

    @property
    def total_steps(self) -> int:
        return self.time.n_steps


# ----------------------------
# Small helpers
# ----------------------------

def _as_dict(obj: Any, path: str) -> Dict[str, Any]:
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ConfigError(path, f"expected a mapping/object, got {type(obj).__name__}")
    return obj


def _require_str(d: Mapping[str, Any], key: str, path: str) -> str:
    v = d.get(key)
    if not isinstance(v, str) or not v.strip():
        raise ConfigError(f"{path}.{key}", "expected a non-empty string")
    return v.strip()


def _require_num(d: Mapping[str, Any], key: str, path: str) -> float:
    v = d.get(key)
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise ConfigError(f"{path}.{key}", f"expected a number, got {type(v).__name__}")
    return float(v)


def _require_int(d: Mapping[str, Any], key: str, path: str) -> int:
    v = d.get(key)
    if isinstance(v, bool) or not isinstance(v, int):
        raise ConfigError(f"{path}.{key}", f"expected int, got {type(v).__name__}")
    return v


def _require_bool(d: Mapping[str, Any], key: str, path: str) -> bool:
    v = d.get(key)
    if not isinstance(v, bool):
        raise ConfigError(f"{path}.{key}", f"expected true/false, got {type(v).__name__}")
    return v


def _require_range(d: Mapping[str, Any], key: str, path: str, lo: float, hi: float) -> float:
    v = _require_num(d, key, path)
    if not lo <= v <= hi:
        raise ConfigError(f"{path}.{key}", f"must be within [{lo}, {hi}] (got {v})")
    return v


def _suggest_key(bad_key: str, allowed: Tuple[str, ...]) -> Optional[str]:
    close = difflib.get_close_matches(bad_key, allowed, n=1, cutoff=0.7)
    return close[0] if close else None


def _reject_unknown_keys(section: Mapping[str, Any], allowed: Tuple[str, ...], path: str) -> None:
    for k in section.keys():
        if k not in allowed:
            suggestion = _suggest_key(str(k), allowed)
            hint = f"did you mean '{suggestion}'?" if suggestion else None
            where = f"{path}.{k}" if path else str(k)
            raise ConfigError(where, f"unknown key '{k}'", hint)


def load_yaml(path: Path) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except Exception as e:
        raise ConfigError("yaml", f"failed to parse YAML: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("yaml", f"top-level YAML must be a mapping/object, got {type(raw).__name__}")
    return raw


def canonical_yaml_dump(data: Mapping[str, Any]) -> str:
    """
    Stable dump: sorted keys + deterministic formatting.
    """
    return yaml.safe_dump(
        data,
        sort_keys=True,
        default_flow_style=False,
        allow_unicode=True,
        width=120,
    )


# ----------------------------
# Normalize -> validate -> build
# ----------------------------

def normalize_config(raw: Mapping[str, Any], *, source_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Accepts "messy but acceptable" YAML and returns a canonical dict:
      - one mapping per canonical section, defaults filled
      - legacy flat shortcuts folded in (scenario_name, seed, mode, total_steps)
      - mode aliases resolved ("llm" -> "delegated")
      - derived fields computed (scenario.name, scenario.output_dir)

    Unknown keys are preserved so validate_config can point at them.
    """
    raw = copy.deepcopy(_as_dict(raw, "yaml"))

    scenario = _as_dict(raw.pop("scenario", None), "scenario")
    run = _as_dict(raw.pop("run", None), "run")

    # --- Gather legacy shortcuts ---
    scenario_name = raw.pop("scenario_name", None) or raw.pop("name", None)
    if scenario_name and "name" not in scenario:
        scenario["name"] = scenario_name
    if "seed" in raw:
        scenario.setdefault("seed", raw.pop("seed"))
    for key in ("mode", "total_steps", "timestep_minutes"):
        if key in raw:
            run.setdefault(key, raw.pop(key))

    # derive scenario.name from filename if missing
    if "name" not in scenario:
        scenario["name"] = source_path.stem if source_path is not None else "scenario"

    normalized: Dict[str, Any] = {"scenario": scenario, "run": run}
    for section in CANONICAL_TOP_LEVEL_KEYS[2:]:
        normalized[section] = _as_dict(raw.pop(section, None), section)

    for section, defaults in DEFAULTS.items():
        target = normalized[section]
        for k, v in defaults.items():
            target.setdefault(k, copy.deepcopy(v))

    mode = run.get("mode")
    if isinstance(mode, str):
        mode = mode.strip().lower()
        run["mode"] = MODE_ALIASES.get(mode, mode)

    # derived output dir (relative, so tests can redirect with cwd)
    scenario["output_dir"] = f"outputs/{scenario['name']}"

    # whatever is left is unknown; keep it so validation can complain
    normalized.update(raw)
    return normalized


def validate_config(cfg: Mapping[str, Any]) -> None:
    """
    Friendly validation. Raises ConfigError naming the dotted path of the
    first problem found.
    """
    cfg = _as_dict(cfg, "cfg")

    for k in cfg.keys():
        if k not in CANONICAL_TOP_LEVEL_KEYS:
            suggestion = _suggest_key(str(k), CANONICAL_TOP_LEVEL_KEYS)
            hint = f"did you mean '{suggestion}'?" if suggestion else None
            raise ConfigError(str(k), f"unknown top-level key '{k}'", hint)

    scenario = _as_dict(cfg.get("scenario"), "scenario")
    _reject_unknown_keys(scenario, ("name", "seed", "output_dir", "description"), "scenario")
    _require_str(scenario, "name", "scenario")
    _require_int(scenario, "seed", "scenario")

    for section in CANONICAL_TOP_LEVEL_KEYS[1:]:
        allowed = tuple(DEFAULTS[section].keys())
        if section == "telemetry":
            allowed = allowed + ("series",)
        _reject_unknown_keys(_as_dict(cfg.get(section), section), allowed, section)

    run = _as_dict(cfg.get("run"), "run")
    if _require_int(run, "total_steps", "run") <= 0:
        raise ConfigError("run.total_steps", "must be a positive integer")
    if _require_num(run, "timestep_minutes", "run") <= 0:
        raise ConfigError("run.timestep_minutes", "must be a positive number")
    _require_bool(run, "parallel", "run")
    modes = tuple(m.value for m in AgentMode)
    if run.get("mode") not in modes:
        suggestion = _suggest_key(str(run.get("mode")), modes)
        hint = f"did you mean '{suggestion}'?" if suggestion else f"choose one of {list(modes)}"
        raise ConfigError("run.mode", f"unsupported mode {run.get('mode')!r}", hint)

    physics = _as_dict(cfg.get("physics"), "physics")
    for key in ("battery_efficiency", "ev_charge_efficiency"):
        eff = _require_num(physics, key, "physics")
        if not 0.0 < eff <= 1.0:
            raise ConfigError(f"physics.{key}", f"must be in (0, 1] (got {eff})")
    for key in ("hvac_max_power_kw", "hvac_temp_diff_coefficient"):
        _require_range(physics, key, "physics", 0.0, float("inf"))
    for key in ("thermal_leak_rate", "thermal_control_rate"):
        _require_range(physics, key, "physics", 0.0, 1.0)

    comfort = _as_dict(cfg.get("comfort"), "comfort")
    if _require_num(comfort, "min_c", "comfort") >= _require_num(comfort, "max_c", "comfort"):
        raise ConfigError("comfort", "min_c must be below max_c")

    grid = _as_dict(cfg.get("grid"), "grid")
    _require_range(grid, "penalty_multiplier", "grid", 0.0, float("inf"))
    _require_range(grid, "feed_in_tariff", "grid", 0.0, float("inf"))
    for key in ("export_enabled", "allow_battery_export", "allow_solar_export"):
        _require_bool(grid, key, "grid")

    planner = _as_dict(cfg.get("planner"), "planner")
    if _require_int(planner, "horizon_steps", "planner") <= 0:
        raise ConfigError("planner.horizon_steps", "must be a positive integer")
    window = planner.get("spike_window")
    if (
        not isinstance(window, (list, tuple))
        or len(window) != 2
        or not all(isinstance(x, int) and not isinstance(x, bool) for x in window)
        or window[0] > window[1]
    ):
        raise ConfigError(
            "planner.spike_window",
            f"expected [start_step, end_step] with start <= end (got {window!r})",
            hint="e.g. spike_window: [30, 35]",
        )
    if _require_int(planner, "spike_lead_steps", "planner") < 0:
        raise ConfigError("planner.spike_lead_steps", "must be >= 0")
    if _require_num(planner, "hvac_min_c", "planner") > _require_num(planner, "hvac_max_c", "planner"):
        raise ConfigError("planner.hvac_min_c", "must not exceed planner.hvac_max_c")
    _require_num(planner, "hvac_default_target_c", "planner")
    _require_range(planner, "assumed_hvac_load_kw", "planner", 0.0, float("inf"))

    safety = _as_dict(cfg.get("safety"), "safety")
    soc_min = _require_range(safety, "soc_min", "safety", 0.0, 1.0)
    soc_max = _require_range(safety, "soc_max", "safety", 0.0, 1.0)
    if soc_min >= soc_max:
        raise ConfigError("safety.soc_min", "must be below safety.soc_max")
    for key in ("grid_buffer_kw", "ev_epsilon_kwh"):
        _require_range(safety, key, "safety", 0.0, float("inf"))
    _require_range(safety, "ev_rate_margin", "safety", 1.0, float("inf"))
    _require_range(safety, "ev_risk_fraction", "safety", 0.0, 1.0)

    events = _as_dict(cfg.get("events"), "events")
    _require_range(events, "price_spike_tariff", "events", 0.0, float("inf"))
    if _require_int(events, "ev_urgent_steps", "events") < 0:
        raise ConfigError("events.ev_urgent_steps", "must be >= 0")
    _require_range(events, "battery_low_soc", "events", 0.0, 1.0)
    _require_range(events, "projected_hvac_kw", "events", 0.0, float("inf"))

    for key in DEFAULTS["chooser"]:
        _require_range(_as_dict(cfg.get("chooser"), "chooser"), key, "chooser", 0.0, float("inf"))

    memory = _as_dict(cfg.get("memory"), "memory")
    if _require_int(memory, "capacity", "memory") <= 0:
        raise ConfigError("memory.capacity", "must be a positive integer")
    for key in ("brief_decisions", "brief_constraints"):
        if _require_int(memory, key, "memory") < 0:
            raise ConfigError(f"memory.{key}", "must be >= 0")

    if _require_int(_as_dict(cfg.get("delegation"), "delegation"), "hybrid_cadence_steps", "delegation") <= 0:
        raise ConfigError("delegation.hybrid_cadence_steps", "must be a positive integer")

    _validate_initial_state(_as_dict(cfg.get("initial_state"), "initial_state"))
    _validate_telemetry(_as_dict(cfg.get("telemetry"), "telemetry"), int(run["total_steps"]))


def _validate_initial_state(init: Mapping[str, Any]) -> None:
    path = "initial_state"
    for key in ("step", "ev_deadline_step"):
        _require_int(init, key, path)
    if init["step"] < 0:
        raise ConfigError(f"{path}.step", "must be >= 0")
    _require_range(init, "battery_soc", path, 0.0, 1.0)
    if _require_num(init, "battery_kwh", path) <= 0:
        raise ConfigError(f"{path}.battery_kwh", "battery capacity must be positive")
    for key in (
        "battery_max_charge_kw",
        "battery_max_discharge_kw",
        "ev_required_kwh",
        "ev_max_charge_kw",
        "grid_max_kw",
        "solar_kw",
        "base_load_kw",
        "tariff",
    ):
        _require_range(init, key, path, 0.0, float("inf"))
    for key in ("indoor_temp_c", "outdoor_temp_c"):
        _require_num(init, key, path)


def _validate_telemetry(telemetry: Mapping[str, Any], total_steps: int) -> None:
    source = telemetry.get("source")
    if source not in ("scripted", "series"):
        raise ConfigError("telemetry.source", f"unsupported telemetry source {source!r}", hint="use 'scripted' or 'series'")
    if source != "series":
        return

    series = _as_dict(telemetry.get("series"), "telemetry.series")
    if not series:
        raise ConfigError("telemetry.series", "source 'series' needs at least one per-step array")
    _reject_unknown_keys(series, TELEMETRY_SERIES_KEYS, "telemetry.series")
    for key, values in series.items():
        if not isinstance(values, list) or not all(
            isinstance(x, (int, float)) and not isinstance(x, bool) for x in values
        ):
            raise ConfigError(f"telemetry.series.{key}", "expected a list of numbers")
        if len(values) != total_steps:
            raise ConfigError(
                f"telemetry.series.{key}",
                f"expected {total_steps} values (run.total_steps), got {len(values)}",
            )


def build_sim_config(cfg: Mapping[str, Any]) -> SimConfig:
    """Turn a normalized + validated config dict into the immutable SimConfig."""
    run = _as_dict(cfg.get("run"), "run")
    physics = _as_dict(cfg.get("physics"), "physics")
    grid = _as_dict(cfg.get("grid"), "grid")
    planner = _as_dict(cfg.get("planner"), "planner")
    safety = _as_dict(cfg.get("safety"), "safety")
    events = _as_dict(cfg.get("events"), "events")
    chooser = cfg["chooser"]
    memory = _as_dict(cfg.get("memory"), "memory")

    return SimConfig(
        time=TimeIndex(n_steps=int(run["total_steps"]), dt_hours=float(run["timestep_minutes"]) / 60.0),
        physics=PhysicsParams(
            battery_efficiency=float(physics["battery_efficiency"]),
            ev_charge_efficiency=float(physics["ev_charge_efficiency"]),
            hvac_max_power_kw=float(physics["hvac_max_power_kw"]),
            hvac_temp_diff_coefficient=float(physics["hvac_temp_diff_coefficient"]),
            thermal_leak_rate=float(physics["thermal_leak_rate"]),
            thermal_control_rate=float(physics["thermal_control_rate"]),
        ),
        comfort=ComfortBand(min_c=float(cfg["comfort"]["min_c"]), max_c=float(cfg["comfort"]["max_c"])),
        grid=GridParams(
            penalty_multiplier=float(grid["penalty_multiplier"]),
            export_enabled=bool(grid["export_enabled"]),
            feed_in_tariff=float(grid["feed_in_tariff"]),
            allow_battery_export=bool(grid["allow_battery_export"]),
            allow_solar_export=bool(grid["allow_solar_export"]),
        ),
        planner=PlannerParams(
            horizon_steps=int(planner["horizon_steps"]),
            spike_window_start=int(planner["spike_window"][0]),
            spike_window_end=int(planner["spike_window"][1]),
            spike_lead_steps=int(planner["spike_lead_steps"]),
            hvac_default_target_c=float(planner["hvac_default_target_c"]),
            hvac_min_c=float(planner["hvac_min_c"]),
            hvac_max_c=float(planner["hvac_max_c"]),
            assumed_hvac_load_kw=float(planner["assumed_hvac_load_kw"]),
        ),
        safety=SafetyParams(
            soc_min=float(safety["soc_min"]),
            soc_max=float(safety["soc_max"]),
            grid_buffer_kw=float(safety["grid_buffer_kw"]),
            ev_epsilon_kwh=float(safety["ev_epsilon_kwh"]),
            ev_rate_margin=float(safety["ev_rate_margin"]),
            ev_risk_fraction=float(safety["ev_risk_fraction"]),
        ),
        events=EventThresholds(
            price_spike_tariff=float(events["price_spike_tariff"]),
            ev_urgent_steps=int(events["ev_urgent_steps"]),
            battery_low_soc=float(events["battery_low_soc"]),
            projected_hvac_kw=float(events["projected_hvac_kw"]),
        ),
        chooser=ChooserWeights(
            grid_overage_weight=float(chooser["grid_overage_weight"]),
            ev_idle_penalty=float(chooser["ev_idle_penalty"]),
            comfort_penalty=float(chooser["comfort_penalty"]),
        ),
        memory=MemoryParams(
            capacity=int(memory["capacity"]),
            brief_decisions=int(memory["brief_decisions"]),
            brief_constraints=int(memory["brief_constraints"]),
        ),
        mode=AgentMode(run["mode"]),
        hybrid_cadence_steps=int(cfg["delegation"]["hybrid_cadence_steps"]),
        seed=int(cfg["scenario"]["seed"]),
    )


def build_initial_state(cfg: Mapping[str, Any], sim: SimConfig) -> EnergyState:
    init = cfg["initial_state"]
    step = int(init["step"])
    return EnergyState(
        step=step,
        minute=step * sim.time.step_minutes,
        tariff=float(init["tariff"]),
        solar_kw=float(init["solar_kw"]),
        base_load_kw=float(init["base_load_kw"]),
        outdoor_temp_c=float(init["outdoor_temp_c"]),
        indoor_temp_c=float(init["indoor_temp_c"]),
        hvac_load_kw=0.0,
        battery_soc=float(init["battery_soc"]),
        battery_kwh=float(init["battery_kwh"]),
        battery_max_charge_kw=float(init["battery_max_charge_kw"]),
        battery_max_discharge_kw=float(init["battery_max_discharge_kw"]),
        ev_required_kwh=float(init["ev_required_kwh"]),
        ev_deadline_step=int(init["ev_deadline_step"]),
        ev_max_charge_kw=float(init["ev_max_charge_kw"]),
        grid_max_kw=float(init["grid_max_kw"]),
    )


def load_config(path: Optional[Path] = None, *, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Read (optional) YAML, normalize, apply dotted overrides, validate.
    Returns the normalized config dict.
    """
    raw = load_yaml(path) if path is not None else {}
    normalized = normalize_config(raw, source_path=path)
    for dotted, value in (overrides or {}).items():
        section, _, key = dotted.partition(".")
        target = _as_dict(normalized.setdefault(section, {}), section)
        target[key] = MODE_ALIASES.get(value, value) if key == "mode" else value
    validate_config(normalized)
    return normalized


def default_config() -> Dict[str, Any]:
    normalized = normalize_config({})
    validate_config(normalized)
    return normalized
