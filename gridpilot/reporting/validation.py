# gridpilot/reporting/validation.py
"""
Post-run invariant checks.

Each check is a ConstraintResult (margin >= 0 => satisfied). HARD violations
abort the run with InvariantViolationError; SOFT violations are logged.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from gridpilot.core.config import SimConfig
from gridpilot.core.errors import InvariantViolationError
from gridpilot.core.types import ConstraintResult, FeasibilityReport, Severity
from gridpilot.reporting.metrics import EV_DEADLINE_TOL_KWH, ev_state_at_deadline
from gridpilot.runner import RunResult


logger = logging.getLogger(__name__)


def evaluate_run_invariants(run: RunResult, cfg: SimConfig, require_ev_deadline: bool) -> List[ConstraintResult]:
    states = [run.initial_state] + [r.next_state for r in run.results]
    out: List[ConstraintResult] = []

    soc_margin = min(min(s.battery_soc, 1.0 - s.battery_soc) for s in states)
    out.append(
        ConstraintResult(
            name="battery_soc_bounds",
            severity=Severity.HARD,
            margin=soc_margin,
            details={"min_soc": min(s.battery_soc for s in states), "max_soc": max(s.battery_soc for s in states)},
        )
    )

    ev_drops = [r.state.ev_required_kwh - r.next_state.ev_required_kwh for r in run.results]
    out.append(
        ConstraintResult(
            name="ev_required_monotonic",
            severity=Severity.HARD,
            margin=min(ev_drops) if ev_drops else 0.0,
            details={"steps": len(ev_drops)},
        )
    )

    last_step = run.initial_state.step + len(run.results)
    deadline_in_run = run.initial_state.ev_deadline_step <= last_step
    if require_ev_deadline and deadline_in_run and run.initial_state.ev_required_kwh > cfg.safety.ev_epsilon_kwh:
        at_deadline = ev_state_at_deadline(run.initial_state, run.results)
        out.append(
            ConstraintResult(
                name="ev_deadline_met",
                severity=Severity.HARD,
                margin=EV_DEADLINE_TOL_KWH - at_deadline.ev_required_kwh,
                details={"checked_at_step": at_deadline.step, "remaining_kwh": at_deadline.ev_required_kwh},
            )
        )

    if not cfg.grid.export_enabled:
        max_export = max((r.grid_export_kw for r in run.results), default=0.0)
        out.append(
            ConstraintResult(
                name="no_export_when_disabled",
                severity=Severity.HARD,
                margin=-max_export,
                details={"max_export_kw": max_export},
            )
        )
        out.append(
            ConstraintResult(
                name="step_cost_non_negative",
                severity=Severity.SOFT,
                margin=min((r.cost_usd for r in run.results), default=0.0),
            )
        )

    return out


def validate_run(run: RunResult, cfg: SimConfig, require_ev_deadline: bool) -> FeasibilityReport:
    report = FeasibilityReport.from_constraints(evaluate_run_invariants(run, cfg, require_ev_deadline))

    for c in report.constraints:
        if c.severity == Severity.SOFT and c.violated:
            logger.warning("%s: soft invariant %s violated (margin=%.6g)", run.label, c.name, c.margin)

    hard: Sequence[ConstraintResult] = [c for c in report.constraints if c.severity == Severity.HARD and c.violated]
    if hard:
        raise InvariantViolationError(run.label, list(hard))
    return report
