# gridpilot/reporting/metrics.py
"""
Run metrics.

Everything here is derived from StepResult / DecisionLog records and the run
configuration; nothing re-simulates.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from gridpilot.agent.fallback import FallbackPolicy
from gridpilot.agent.orchestrator import DecisionLog
from gridpilot.core.config import SimConfig
from gridpilot.core.types import EnergyState, StepResult
from gridpilot.runner import RunResult


EV_DEADLINE_TOL_KWH = 0.01


@dataclass(frozen=True)
class SystemMetrics:
    total_cost_usd: float
    import_cost_usd: float
    export_revenue_usd: float
    penalty_usd: float
    imported_kwh: float
    exported_kwh: float
    peak_import_kw: float
    comfort_violation_total: float
    ev_deadline_met: bool
    ev_remaining_at_deadline_kwh: float
    ev_delivered_kwh: float
    ev_cost_usd: float
    spike_steps: int
    spike_cost_usd: float
    spike_import_kwh: float
    steps: int


@dataclass(frozen=True)
class SafetyStats:
    plans_generated: int = 0
    plans_rejected: int = 0
    rejections_by_kind: Dict[str, int] = field(default_factory=dict)
    fallback_steps: int = 0
    override_count: int = 0
    delegation_attempted: Dict[str, int] = field(default_factory=dict)
    delegation_used: Dict[str, int] = field(default_factory=dict)
    delegate_fallbacks: int = 0


@dataclass(frozen=True)
class RunComparison:
    savings_usd: float
    savings_percent: Optional[float]
    peak_reduction_kw: float
    comfort_delta: float
    baseline_deadline_met: bool
    pipeline_deadline_met: bool


def ev_state_at_deadline(initial: EnergyState, results: Sequence[StepResult]) -> EnergyState:
    """State observed at the EV deadline step, or the last state when the run ends first."""
    if initial.ev_deadline_step <= initial.step:
        return initial
    for r in results:
        if r.next_state.step >= initial.ev_deadline_step:
            return r.next_state
    return results[-1].next_state if results else initial


def compute_system_metrics(run: RunResult, cfg: SimConfig) -> SystemMetrics:
    dt = cfg.dt_hours
    spike = cfg.events.price_spike_tariff

    import_cost = export_revenue = penalty = 0.0
    imported = exported = peak = comfort = 0.0
    ev_cost = spike_cost = spike_import = 0.0
    spike_steps = 0

    for r in run.results:
        tariff = r.state.tariff
        import_cost += r.grid_import_kw * dt * tariff
        export_revenue += r.grid_export_kw * dt * cfg.grid.feed_in_tariff
        penalty += r.grid_penalty_usd
        imported += r.grid_import_kw * dt
        exported += r.grid_export_kw * dt
        peak = max(peak, r.grid_import_kw)
        comfort += r.comfort_violation
        ev_cost += r.action.ev_charge_kw * dt * tariff
        if tariff >= spike:
            spike_steps += 1
            spike_cost += r.cost_usd + r.grid_penalty_usd
            spike_import += r.grid_import_kw * dt

    at_deadline = ev_state_at_deadline(run.initial_state, run.results)
    return SystemMetrics(
        total_cost_usd=import_cost - export_revenue + penalty,
        import_cost_usd=import_cost,
        export_revenue_usd=export_revenue,
        penalty_usd=penalty,
        imported_kwh=imported,
        exported_kwh=exported,
        peak_import_kw=peak,
        comfort_violation_total=comfort,
        ev_deadline_met=at_deadline.ev_required_kwh <= EV_DEADLINE_TOL_KWH,
        ev_remaining_at_deadline_kwh=at_deadline.ev_required_kwh,
        ev_delivered_kwh=run.initial_state.ev_required_kwh - run.final_state.ev_required_kwh,
        ev_cost_usd=ev_cost,
        spike_steps=spike_steps,
        spike_cost_usd=spike_cost,
        spike_import_kwh=spike_import,
        steps=len(run.results),
    )


def _stage_counts(logs: Sequence[DecisionLog], attr: str) -> Dict[str, int]:
    counts = {"interpreter": 0, "planner": 0, "chooser": 0}
    for log in logs:
        flags = getattr(log, attr)
        for stage in counts:
            counts[stage] += int(getattr(flags, stage))
    return counts


def compute_safety_stats(decisions: Sequence[DecisionLog]) -> SafetyStats:
    if not decisions:
        return SafetyStats()

    # rejection reasons render as "KIND" or "KIND at +i"
    by_kind = Counter(reason.split(" ", 1)[0] for log in decisions for reason in log.rejection_reasons)
    return SafetyStats(
        plans_generated=sum(log.plans_generated for log in decisions),
        plans_rejected=sum(log.plans_rejected for log in decisions),
        rejections_by_kind=dict(sorted(by_kind.items())),
        fallback_steps=sum(1 for log in decisions if log.fallback_policy != FallbackPolicy.FEASIBLE),
        override_count=sum(1 for log in decisions if log.override_applied),
        delegation_attempted=_stage_counts(decisions, "delegation_attempted"),
        delegation_used=_stage_counts(decisions, "delegation_used"),
        delegate_fallbacks=sum(log.delegate_fallbacks for log in decisions),
    )


def compare_runs(baseline: SystemMetrics, pipeline: SystemMetrics) -> RunComparison:
    savings = baseline.total_cost_usd - pipeline.total_cost_usd
    pct = (100.0 * savings / baseline.total_cost_usd) if baseline.total_cost_usd > 0 else None
    return RunComparison(
        savings_usd=savings,
        savings_percent=pct,
        peak_reduction_kw=baseline.peak_import_kw - pipeline.peak_import_kw,
        comfort_delta=pipeline.comfort_violation_total - baseline.comfort_violation_total,
        baseline_deadline_met=baseline.ev_deadline_met,
        pipeline_deadline_met=pipeline.ev_deadline_met,
    )
