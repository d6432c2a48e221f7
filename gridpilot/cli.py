# gridpilot/cli.py
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from gridpilot.core.config import (
    AgentMode,
    SimConfig,
    build_initial_state,
    build_sim_config,
    load_config,
)
from gridpilot.core.errors import ConfigError, InvariantViolationError
from gridpilot.core.output import RunArtifacts, write_output_contract
from gridpilot.core.types import to_jsonable
from gridpilot.reasoning.strategy import MockReasoningStrategy, ReasoningStrategy
from gridpilot.reporting.metrics import compare_runs, compute_safety_stats, compute_system_metrics
from gridpilot.reporting.report_md import render_report_md
from gridpilot.reporting.validation import validate_run
from gridpilot.runner import RunResult, run_comparison
from gridpilot.sim.telemetry import build_telemetry


logger = logging.getLogger(__name__)


def build_traces_rows(pipeline: RunResult, baseline: RunResult) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for i, r in enumerate(pipeline.results):
        b = baseline.results[i] if i < len(baseline.results) else None
        rows.append(
            {
                "step": r.state.step,
                "tariff": r.state.tariff,
                "solar_kw": r.state.solar_kw,
                "base_load_kw": r.state.base_load_kw,
                "battery_power_kw": r.action.battery_power_kw,
                "battery_soc": r.next_state.battery_soc,
                "ev_charge_kw": r.action.ev_charge_kw,
                "ev_required_kwh": r.next_state.ev_required_kwh,
                "hvac_target_temp_c": r.action.hvac_target_temp_c,
                "indoor_temp_c": r.next_state.indoor_temp_c,
                "grid_import_kw": r.grid_import_kw,
                "grid_export_kw": r.grid_export_kw,
                "cost_usd": r.cost_usd,
                "grid_penalty_usd": r.grid_penalty_usd,
                "comfort_violation": r.comfort_violation,
                "overridden": r.overridden,
                "baseline_cost_usd": b.cost_usd if b is not None else None,
                "baseline_grid_import_kw": b.grid_import_kw if b is not None else None,
            }
        )
    return rows


def strategy_for_mode(mode: AgentMode, seed: int) -> Optional[ReasoningStrategy]:
    if mode == AgentMode.HEURISTIC:
        return None
    return MockReasoningStrategy(seed=seed)


def run_scenario(normalized_cfg: Dict[str, Any], *, strategy: Optional[ReasoningStrategy] = None) -> RunArtifacts:
    """
    Baseline + pipeline over the same telemetry, then metrics, invariants and report.
    Raises InvariantViolationError when either run breaks a hard invariant.
    """
    sim: SimConfig = build_sim_config(normalized_cfg)
    scenario = normalized_cfg["scenario"]
    seed = sim.seed
    if strategy is None:
        strategy = strategy_for_mode(sim.mode, seed)

    initial = build_initial_state(normalized_cfg, sim)
    telemetry = build_telemetry(normalized_cfg, sim)

    logger.info(
        "scenario %s: %d steps x %d min, mode=%s",
        scenario["name"],
        sim.total_steps,
        sim.time.step_minutes,
        sim.mode.value,
    )
    baseline, pipeline = run_comparison(
        sim,
        initial,
        telemetry,
        strategy=strategy,
        mode=sim.mode,
        parallel=bool(normalized_cfg["run"].get("parallel", False)),
    )

    baseline_report = validate_run(baseline, sim, require_ev_deadline=False)
    pipeline_report = validate_run(pipeline, sim, require_ev_deadline=True)

    base_m = compute_system_metrics(baseline, sim)
    pipe_m = compute_system_metrics(pipeline, sim)
    comparison = compare_runs(base_m, pipe_m)
    safety = compute_safety_stats(pipeline.decisions)

    traces_rows = build_traces_rows(pipeline, baseline)

    solution = {
        "scenario": scenario["name"],
        "mode": sim.mode.value,
        "seed": seed,
        "strategy": getattr(strategy, "name", None),
        "steps": sim.total_steps,
        "baseline": to_jsonable(base_m),
        "pipeline": to_jsonable(pipe_m),
        "comparison": to_jsonable(comparison),
        "safety": to_jsonable(safety),
        "memory": pipeline.memory,
        "invariants": {
            "baseline": to_jsonable(baseline_report),
            "pipeline": to_jsonable(pipeline_report),
        },
        "traces": {
            "path": "traces.csv",
            "n_rows": len(traces_rows),
            "columns": list(traces_rows[0].keys()) if traces_rows else [],
            "preview": traces_rows[:3],
        },
    }

    report_md = render_report_md(
        scenario,
        sim.mode.value,
        base_m,
        pipe_m,
        comparison,
        safety,
        {"baseline": baseline_report.constraints, "pipeline": pipeline_report.constraints},
    )

    return RunArtifacts(
        normalized_config=normalized_cfg,
        solution=solution,
        report_md=report_md,
        traces_rows=traces_rows,
    )


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.mode is not None:
        overrides["run.mode"] = args.mode
    if args.seed is not None:
        overrides["scenario.seed"] = int(args.seed)
    if args.total_steps is not None:
        overrides["run.total_steps"] = int(args.total_steps)
    if args.parallel:
        overrides["run.parallel"] = True
    return overrides


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(prog="gridpilot", description="Microgrid decision-pipeline simulator")
    ap.add_argument("yaml_path", type=str, nargs="?", default=None, help="Scenario YAML (defaults if omitted)")

    ap.add_argument("--out", type=str, default="outputs", help="Output root directory")
    ap.add_argument("--mode", type=str, default=None, choices=["heuristic", "delegated", "hybrid", "llm"])
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("--total-steps", type=int, default=None)
    ap.add_argument("--parallel", action="store_true", help="Run baseline and pipeline on two threads")
    ap.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    args = ap.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    ypath = Path(args.yaml_path) if args.yaml_path else None

    try:
        normalized = load_config(ypath, overrides=_cli_overrides(args))

        artifacts = run_scenario(normalized)
        out_dir = write_output_contract(Path(args.out), normalized["scenario"]["name"], artifacts)

    except ConfigError as e:
        print(str(e))
        return 2
    except InvariantViolationError as e:
        logger.error("%s", e)
        print(str(e))
        return 3

    cmp = artifacts.solution["comparison"]
    print(f"wrote {out_dir}")
    print(
        f"savings ${cmp['savings_usd']:.2f} | peak reduction {cmp['peak_reduction_kw']:.2f} kW | "
        f"EV deadline met: {'yes' if cmp['pipeline_deadline_met'] else 'no'}"
    )
    return 0
