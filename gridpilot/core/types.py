# gridpilot/core/types.py
"""
Shared value types for gridpilot.

Everything here is an immutable dataclass. A new EnergyState is produced for
every simulated step; nothing in the pipeline mutates a state in place.

Conventions:
- Power in kW, energy in kWh, temperature in degrees C, money in $.
- Battery power is signed: + charge, - discharge.
- Margin-first constraint reporting (positive = satisfied, negative = violated)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, is_dataclass, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple


# ----------------------------
# Enums
# ----------------------------

class Severity(str, Enum):
    HARD = "HARD"
    SOFT = "SOFT"


# ----------------------------
# Time utilities
# ----------------------------

@dataclass(frozen=True)
class TimeIndex:
    """
    Discrete simulation timeline.

    - n_steps: number of discrete timesteps in the run
    - dt_hours: timestep size in hours (0.25 for 15 min)
    """
    n_steps: int
    dt_hours: float = 0.25

    def __post_init__(self) -> None:
        if self.n_steps <= 0:
            raise ValueError(f"n_steps must be > 0, got {self.n_steps}")
        if self.dt_hours <= 0:
            raise ValueError(f"dt_hours must be > 0, got {self.dt_hours}")

    @property
    def step_minutes(self) -> int:
        return int(round(self.dt_hours * 60.0))


# ----------------------------
# Microgrid state + decisions
# ----------------------------

@dataclass(frozen=True)
class EnergyState:
    step: int
    minute: int
    tariff: float
    solar_kw: float
    base_load_kw: float
    outdoor_temp_c: float
    indoor_temp_c: float
    hvac_load_kw: float
    battery_soc: float
    battery_kwh: float
    battery_max_charge_kw: float
    battery_max_discharge_kw: float
    ev_required_kwh: float
    ev_deadline_step: int
    ev_max_charge_kw: float
    grid_max_kw: float

    @property
    def steps_to_deadline(self) -> int:
        return self.ev_deadline_step - self.step

    def evolve(self, **changes: Any) -> "EnergyState":
        return replace(self, **changes)


@dataclass(frozen=True)
class Action:
    battery_power_kw: float = 0.0
    ev_charge_kw: float = 0.0
    hvac_target_temp_c: float = 24.5
    note: str = ""


@dataclass(frozen=True)
class Plan:
    """
    A candidate strategy over the next `horizon_steps` steps.

    Only actions[0] is executed; the tail exists for the safety validator.
    """
    name: str
    horizon_steps: int
    actions: Tuple[Action, ...]
    rationale: str
    emergency: bool = False

    def __post_init__(self) -> None:
        if len(self.actions) != self.horizon_steps:
            raise ValueError(
                f"plan '{self.name}' has {len(self.actions)} actions, expected {self.horizon_steps}"
            )
        if not self.actions:
            raise ValueError(f"plan '{self.name}' has no actions")

    @property
    def first_action(self) -> Action:
        return self.actions[0]


@dataclass(frozen=True)
class StepResult:
    """
    One audited transition: prior state, clamped action actually applied,
    next state and the economics of the step.
    """
    state: EnergyState
    action: Action
    next_state: EnergyState
    cost_usd: float
    grid_import_kw: float
    grid_export_kw: float
    grid_penalty_usd: float
    comfort_violation: float
    overridden: bool = False


# ----------------------------
# Constraint reporting
# ----------------------------

@dataclass(frozen=True)
class ConstraintResult:
    """
    Result of evaluating a single constraint.

    Margin convention:
      - margin >= 0  => satisfied
      - margin < 0   => violated
    """
    name: str
    severity: Severity
    margin: float
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def violated(self) -> bool:
        return self.margin < 0.0


@dataclass(frozen=True)
class FeasibilityReport:
    """
    Aggregate feasibility summary across constraints.
    """
    feasible: bool
    worst_hard_margin: Optional[float]
    worst_hard_constraint: Optional[str]
    hard_violations: int
    soft_violations: int
    constraints: Tuple[ConstraintResult, ...] = ()

    @staticmethod
    def from_constraints(constraints: Sequence[ConstraintResult]) -> "FeasibilityReport":
        hard = [c for c in constraints if c.severity == Severity.HARD]
        soft = [c for c in constraints if c.severity == Severity.SOFT]

        hard_violations = sum(1 for c in hard if c.violated)
        soft_violations = sum(1 for c in soft if c.violated)

        worst_hard: Optional[ConstraintResult] = None
        if hard:
            # "worst" is minimum margin (most negative if violated; smallest positive if all satisfied)
            worst_hard = min(hard, key=lambda c: c.margin)

        return FeasibilityReport(
            feasible=hard_violations == 0,
            worst_hard_margin=(worst_hard.margin if worst_hard else None),
            worst_hard_constraint=(worst_hard.name if worst_hard else None),
            hard_violations=hard_violations,
            soft_violations=soft_violations,
            constraints=tuple(constraints),
        )


# ----------------------------
# JSON helpers
# ----------------------------

def to_jsonable(obj: Any) -> Any:
    """
    Convert common Python objects (dataclasses, enums, tuples) into JSON-serializable
    forms. Safe to call on nested structures.
    """
    if obj is None:
        return None

    if isinstance(obj, Enum):
        return obj.value

    if is_dataclass(obj) and not isinstance(obj, type):
        return to_jsonable(asdict(obj))

    if isinstance(obj, Mapping):
        return {str(k): to_jsonable(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]

    if isinstance(obj, (str, int, float, bool)):
        return obj

    return str(obj)


# ----------------------------
# Units helpers (lightweight)
# ----------------------------

def clamp(x: float, lo: float, hi: float) -> float:
    if lo > hi:
        raise ValueError(f"clamp bounds invalid: lo={lo} > hi={hi}")
    return lo if x < lo else hi if x > hi else x
