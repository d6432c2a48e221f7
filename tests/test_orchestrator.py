# tests/test_orchestrator.py
from __future__ import annotations

import json
import logging

import pytest

from gridpilot.agent.orchestrator import DecisionPipeline
from gridpilot.core.config import AgentMode, build_initial_state, default_config
from gridpilot.core.types import Action, Plan
from gridpilot.reasoning.strategy import MockReasoningStrategy, NullStrategy
from gridpilot.reporting.metrics import ev_state_at_deadline
from gridpilot.reporting.validation import validate_run
from gridpilot.runner import run_pipeline
from gridpilot.sim.telemetry import ScriptedTelemetry


class ExplodingStrategy:
    name = "exploding"

    def propose(self, context: str) -> str:
        raise RuntimeError("service unavailable")


class NoPlansStrategy(MockReasoningStrategy):
    """Valid answers except for planning, which returns the wrong plan count."""

    def propose(self, context: str) -> str:
        if "task: propose" in context:
            return json.dumps({"plans": []})
        return super().propose(context)


class NeverChargeStrategy(MockReasoningStrategy):
    """Always chooses an action that leaves the EV idle."""

    def propose(self, context: str) -> str:
        if "task: choose" in context:
            return json.dumps(
                {"action": {"batteryPowerKW": 0.0, "evChargeKW": 0.0, "hvacTargetTempC": 24.5}, "reasoning": "idle"}
            )
        return super().propose(context)


def never_charge_plans(state, events, cfg):
    horizon = cfg.planner.horizon_steps
    idle = Action(ev_charge_kw=0.0, hvac_target_temp_c=cfg.planner.hvac_default_target_c, note="idle")
    return [Plan("idle", horizon, tuple(idle for _ in range(horizon)), "never charge the EV")]


def _initial(cfg):
    return build_initial_state(default_config(), cfg)


def test_heuristic_step_produces_decision_log(cfg, make_state) -> None:
    pipeline = DecisionPipeline(cfg=cfg, mode=AgentMode.HEURISTIC)
    state = make_state()

    result, log = pipeline.step(state)

    assert result.next_state.step == 1
    assert log.step == 0
    assert log.plans_generated == 3
    assert log.plans_feasible + log.plans_rejected == 3
    assert log.chosen_plan in ("cost_min", "safety_first", "peak_shaving")
    assert not log.delegation_attempted.any()
    assert len(pipeline.memory) == 1
    assert pipeline.memory.entries[0].summary.startswith("t=0 ")
    assert json.dumps(log.to_dict())


def test_delegated_mode_uses_strategy_for_every_stage(cfg, make_state) -> None:
    pipeline = DecisionPipeline(cfg=cfg, strategy=MockReasoningStrategy(seed=1), mode=AgentMode.DELEGATED)

    _, log = pipeline.step(make_state())

    assert log.delegation_used.interpreter
    assert log.delegation_used.planner
    assert log.delegation_used.chooser
    assert log.delegate_fallbacks == 0
    assert log.chosen_plan is None


@pytest.mark.parametrize("strategy", [NullStrategy(), ExplodingStrategy()])
def test_misbehaving_strategy_falls_back_per_stage(cfg, make_state, caplog, strategy) -> None:
    pipeline = DecisionPipeline(cfg=cfg, strategy=strategy, mode=AgentMode.DELEGATED)

    with caplog.at_level(logging.WARNING, logger="gridpilot.agent.orchestrator"):
        result, log = pipeline.step(make_state())

    assert log.delegation_attempted.any()
    assert not log.delegation_used.any()
    assert log.delegate_fallbacks == 3
    assert log.chosen_plan is not None
    assert result.next_state.step == 1
    assert "using heuristic" in caplog.text


def test_wrong_plan_count_only_affects_planning(cfg, make_state) -> None:
    pipeline = DecisionPipeline(cfg=cfg, strategy=NoPlansStrategy(), mode=AgentMode.DELEGATED)

    _, log = pipeline.step(make_state())

    assert log.delegation_used.interpreter
    assert not log.delegation_used.planner
    assert log.delegation_used.chooser
    assert log.delegate_fallbacks == 1
    assert log.plans_generated == 3


def test_hybrid_delegation_triggers(cfg, make_state) -> None:
    pipeline = DecisionPipeline(cfg=cfg, strategy=MockReasoningStrategy(), mode=AgentMode.HYBRID)

    assert pipeline.should_delegate(make_state(step=0))
    assert not pipeline.should_delegate(make_state(step=1))
    assert pipeline.should_delegate(make_state(step=1, tariff=0.75))
    assert pipeline.should_delegate(make_state(step=1, battery_soc=0.1))
    assert pipeline.should_delegate(make_state(step=21))

    no_strategy = DecisionPipeline(cfg=cfg, mode=AgentMode.HYBRID)
    assert not no_strategy.should_delegate(make_state(step=0))


def test_mode_defaults_to_config(cfg) -> None:
    assert DecisionPipeline(cfg=cfg).mode == AgentMode.HYBRID


def test_override_is_logged_and_remembered(cfg, make_state) -> None:
    pipeline = DecisionPipeline(cfg=cfg, mode=AgentMode.HEURISTIC, plan_generator=never_charge_plans)

    result, log = pipeline.step(make_state(step=22))

    assert log.override_applied and result.overridden
    assert log.fallback_policy.value == "SAFETY_FIRST"
    assert "t=22: EV deadline override" in pipeline.memory.notes
    assert any("EV must be charged by step 28" in c for c in pipeline.memory.learned_constraints)


def test_deadline_holds_against_never_charge_generator(cfg) -> None:
    initial = _initial(cfg)
    run = run_pipeline(cfg, initial, ScriptedTelemetry(cfg.total_steps), plan_generator=never_charge_plans)

    ev = [initial.ev_required_kwh] + [r.next_state.ev_required_kwh for r in run.results]
    assert all(b <= a + 1e-9 for a, b in zip(ev, ev[1:]))
    assert ev_state_at_deadline(initial, run.results).ev_required_kwh <= 0.01
    assert any(r.overridden for r in run.results)
    validate_run(run, cfg, require_ev_deadline=True)


def test_deadline_holds_against_never_charge_strategy(cfg) -> None:
    initial = _initial(cfg)
    run = run_pipeline(
        cfg, initial, ScriptedTelemetry(cfg.total_steps), strategy=NeverChargeStrategy(), mode=AgentMode.DELEGATED
    )

    assert ev_state_at_deadline(initial, run.results).ev_required_kwh <= 0.01
    assert all(log.delegation_used.chooser for log in run.decisions)
    assert run.memory is not None and run.memory["size"] == cfg.memory.capacity
