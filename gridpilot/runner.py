# gridpilot/runner.py
"""
Simulation loop.

Each run owns its state and memory; the baseline and the pipeline share
nothing mutable, so run_comparison can execute them on two threads.
Telemetry sources are restartable, so the same source object feeds both runs.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from gridpilot.agent.executor import execute_action
from gridpilot.agent.orchestrator import DecisionLog, DecisionPipeline, PlanGenerator
from gridpilot.core.config import AgentMode, SimConfig
from gridpilot.core.types import EnergyState, StepResult
from gridpilot.reasoning.strategy import ReasoningStrategy
from gridpilot.sim.baseline import baseline_action
from gridpilot.sim.telemetry import TelemetryUpdate, apply_telemetry


logger = logging.getLogger(__name__)

Controller = Callable[[EnergyState], Tuple[StepResult, Optional[DecisionLog]]]


@dataclass(frozen=True)
class RunResult:
    label: str
    initial_state: EnergyState
    results: Tuple[StepResult, ...]
    decisions: Tuple[DecisionLog, ...] = ()
    memory: Optional[Dict[str, object]] = None  # pipeline runs only: final DecisionMemory.to_dict()

    @property
    def final_state(self) -> EnergyState:
        return self.results[-1].next_state if self.results else self.initial_state


def simulate_run(
    label: str,
    initial_state: EnergyState,
    telemetry: Iterable[TelemetryUpdate],
    controller: Controller,
) -> RunResult:
    state = initial_state
    results: List[StepResult] = []
    decisions: List[DecisionLog] = []

    for update in telemetry:
        state = apply_telemetry(state, update)
        result, log = controller(state)
        if result.next_state.step != state.step + 1:
            raise RuntimeError(f"{label}: step advanced from {state.step} to {result.next_state.step}")
        results.append(result)
        if log is not None:
            decisions.append(log)
        state = result.next_state

    logger.info("%s run finished: %d steps", label, len(results))
    return RunResult(label=label, initial_state=initial_state, results=tuple(results), decisions=tuple(decisions))


def run_baseline(cfg: SimConfig, initial_state: EnergyState, telemetry: Iterable[TelemetryUpdate]) -> RunResult:
    def controller(state: EnergyState) -> Tuple[StepResult, Optional[DecisionLog]]:
        return execute_action(state, baseline_action(state, cfg), cfg), None

    return simulate_run("baseline", initial_state, telemetry, controller)


def run_pipeline(
    cfg: SimConfig,
    initial_state: EnergyState,
    telemetry: Iterable[TelemetryUpdate],
    *,
    strategy: Optional[ReasoningStrategy] = None,
    mode: Optional[AgentMode] = None,
    plan_generator: Optional[PlanGenerator] = None,
) -> RunResult:
    pipeline = DecisionPipeline(cfg=cfg, strategy=strategy, mode=mode)
    if plan_generator is not None:
        pipeline.plan_generator = plan_generator
    logger.info(
        "pipeline run: mode=%s strategy=%s", pipeline.mode.value, getattr(strategy, "name", "none")
    )
    run = simulate_run("pipeline", initial_state, telemetry, pipeline.step)
    return replace(run, memory=pipeline.memory.to_dict())


def run_comparison(
    cfg: SimConfig,
    initial_state: EnergyState,
    telemetry: Iterable[TelemetryUpdate],
    *,
    strategy: Optional[ReasoningStrategy] = None,
    mode: Optional[AgentMode] = None,
    parallel: bool = False,
) -> Tuple[RunResult, RunResult]:
    """Returns (baseline, pipeline)."""
    if not parallel:
        baseline = run_baseline(cfg, initial_state, telemetry)
        return baseline, run_pipeline(cfg, initial_state, telemetry, strategy=strategy, mode=mode)

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="gridpilot-run") as pool:
        baseline_future = pool.submit(run_baseline, cfg, initial_state, telemetry)
        pipeline_future = pool.submit(run_pipeline, cfg, initial_state, telemetry, strategy=strategy, mode=mode)
        return baseline_future.result(), pipeline_future.result()
