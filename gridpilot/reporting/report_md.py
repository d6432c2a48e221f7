# gridpilot/reporting/report_md.py
"""
Render report.md: baseline vs pipeline evidence.

Sections:
- summary (mode, steps, savings, EV deadline)
- cost / peak / comfort side by side
- safety stats (rejections, fallbacks, overrides, delegation)
- invariant checks, worst margin first
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence

from gridpilot.core.types import ConstraintResult
from gridpilot.reporting.metrics import RunComparison, SafetyStats, SystemMetrics


def _fmt_opt(x: Optional[float], digits: int = 6) -> str:
    if x is None:
        return "n/a"
    if x == float("inf"):
        return "inf"
    if x == float("-inf"):
        return "-inf"
    return f"{x:.{digits}g}"


def _yes_no(flag: bool) -> str:
    return "yes" if flag else "no"


def worst_constraints(constraints: Sequence[ConstraintResult], k: int = 10) -> List[ConstraintResult]:
    kk = max(1, int(k))
    return sorted(constraints, key=lambda c: c.margin)[:kk]


def format_constraint_line(label: str, c: ConstraintResult) -> str:
    status = "VIOLATED" if c.violated else "ok"
    return f"- {label} | {c.severity.value:<4} | {status:<8} | margin={c.margin:.6g} | {c.name}"


def render_report_md(
    scenario: Mapping[str, Any],
    mode: str,
    baseline: SystemMetrics,
    pipeline: SystemMetrics,
    comparison: RunComparison,
    safety: SafetyStats,
    invariants: Mapping[str, Sequence[ConstraintResult]],
) -> str:
    name = str(scenario.get("name") or "scenario")

    lines: List[str] = []
    lines.append(f"# GridPilot Report: {name}")
    lines.append("")
    lines.append("## Summary")
    lines.append(f"- **mode:** {mode}")
    lines.append(f"- **steps:** {pipeline.steps}")
    lines.append(f"- **savings:** ${comparison.savings_usd:.2f} ({_fmt_opt(comparison.savings_percent, 3)}%)")
    lines.append(f"- **peak reduction:** {comparison.peak_reduction_kw:.2f} kW")
    lines.append(f"- **EV deadline met (pipeline):** {_yes_no(pipeline.ev_deadline_met)}")
    lines.append(f"- **EV deadline met (baseline):** {_yes_no(baseline.ev_deadline_met)}")
    lines.append("")

    lines.append("## Baseline vs pipeline")
    lines.append("| metric | baseline | pipeline |")
    lines.append("|---|---:|---:|")
    rows = [
        ("total cost ($)", baseline.total_cost_usd, pipeline.total_cost_usd),
        ("import cost ($)", baseline.import_cost_usd, pipeline.import_cost_usd),
        ("export revenue ($)", baseline.export_revenue_usd, pipeline.export_revenue_usd),
        ("grid penalties ($)", baseline.penalty_usd, pipeline.penalty_usd),
        ("imported (kWh)", baseline.imported_kwh, pipeline.imported_kwh),
        ("peak import (kW)", baseline.peak_import_kw, pipeline.peak_import_kw),
        ("comfort violation (C-steps)", baseline.comfort_violation_total, pipeline.comfort_violation_total),
        ("EV delivered (kWh)", baseline.ev_delivered_kwh, pipeline.ev_delivered_kwh),
        ("EV charging cost ($)", baseline.ev_cost_usd, pipeline.ev_cost_usd),
        ("spike-step cost ($)", baseline.spike_cost_usd, pipeline.spike_cost_usd),
        ("spike-step import (kWh)", baseline.spike_import_kwh, pipeline.spike_import_kwh),
    ]
    for label, b, p in rows:
        lines.append(f"| {label} | {b:.3f} | {p:.3f} |")
    lines.append(f"- spike steps: {pipeline.spike_steps}")
    lines.append(f"- comfort delta (pipeline - baseline): {comparison.comfort_delta:+.3f}")
    lines.append("")

    lines.append("## Safety")
    lines.append(f"- **plans generated:** {safety.plans_generated}")
    lines.append(f"- **plans rejected:** {safety.plans_rejected}")
    if safety.rejections_by_kind:
        for kind, n in safety.rejections_by_kind.items():
            lines.append(f"  - {kind}: {n}")
    lines.append(f"- **fallback steps:** {safety.fallback_steps}")
    lines.append(f"- **EV overrides:** {safety.override_count}")
    lines.append(f"- **delegate fallbacks:** {safety.delegate_fallbacks}")
    for stage in ("interpreter", "planner", "chooser"):
        attempted = safety.delegation_attempted.get(stage, 0)
        used = safety.delegation_used.get(stage, 0)
        lines.append(f"- delegation {stage}: {used}/{attempted} used")
    lines.append("")

    lines.append("## Invariants")
    any_line = False
    for label, cons in invariants.items():
        if not cons:
            continue
        for c in worst_constraints(cons, k=len(cons)):
            lines.append(format_constraint_line(label, c))
            any_line = True
    if not any_line:
        lines.append("- (no invariants evaluated)")
    lines.append("")

    return "\n".join(lines)
