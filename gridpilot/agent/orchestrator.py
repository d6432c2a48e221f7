# gridpilot/agent/orchestrator.py
"""
Decision pipeline coordinator.

One call to DecisionPipeline.step(state) runs, in this fixed order:

    Interpret -> Propose -> Validate -> SelectChosenSet -> Choose -> Execute -> Remember

Interpret, Propose and Choose may be delegated to a reasoning strategy
depending on the mode:
  - heuristic: never
  - delegated: always
  - hybrid:    every `hybrid_cadence_steps` steps, or when a price spike, an
               urgent EV deadline or a low battery is present

A delegated stage that raises or returns something malformed falls back to
the heuristic result for that stage only (no retry). Execute always goes
through the EV hard override.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from gridpilot.agent.chooser import Choice, choose_action, score_plans
from gridpilot.agent.executor import execute_action
from gridpilot.agent.fallback import FallbackPolicy, Selection, select_candidates
from gridpilot.agent.interpreter import EventKind, Interpretation, ev_is_urgent, interpret
from gridpilot.agent.memory import DecisionMemory, DecisionOutcome, MemoryEntry
from gridpilot.agent.planner import propose_plans
from gridpilot.agent.safety import SafetyReport, ViolationKind, check_plan_safety
from gridpilot.core.config import AgentMode, SimConfig
from gridpilot.core.types import Action, EnergyState, Plan, StepResult, to_jsonable
from gridpilot.reasoning.delegate import delegate_choice, delegate_interpretation, delegate_plans
from gridpilot.reasoning.strategy import ReasoningStrategy


logger = logging.getLogger(__name__)

PlanGenerator = Callable[[EnergyState, Sequence[EventKind], SimConfig], List[Plan]]


@dataclass(frozen=True)
class StageDelegation:
    interpreter: bool = False
    planner: bool = False
    chooser: bool = False

    def any(self) -> bool:
        return self.interpreter or self.planner or self.chooser


@dataclass(frozen=True)
class DecisionLog:
    step: int
    interpretation: Interpretation
    plans_generated: int
    plans_feasible: int
    rejection_reasons: Tuple[str, ...]
    fallback_policy: FallbackPolicy
    chosen_plan: Optional[str]
    chosen_action: Action
    reasoning: str
    delegation_attempted: StageDelegation = StageDelegation()
    delegation_used: StageDelegation = StageDelegation()
    delegate_fallbacks: int = 0
    override_applied: bool = False

    @property
    def plans_rejected(self) -> int:
        return self.plans_generated - self.plans_feasible

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


def _learned_constraint(kind: ViolationKind, state: EnergyState, cfg: SimConfig) -> str:
    if kind == ViolationKind.SOC_TOO_LOW:
        return f"keep SOC above {cfg.safety.soc_min:.0%}"
    if kind == ViolationKind.SOC_TOO_HIGH:
        return f"keep SOC below {cfg.safety.soc_max:.0%}"
    if kind == ViolationKind.GRID_OVER:
        return f"keep projected import under {state.grid_max_kw + cfg.safety.grid_buffer_kw:.1f} kW"
    return f"EV must be charged by step {state.ev_deadline_step}"


@dataclass
class DecisionPipeline:
    cfg: SimConfig
    strategy: Optional[ReasoningStrategy] = None
    mode: Optional[AgentMode] = None
    plan_generator: PlanGenerator = propose_plans
    memory: Optional[DecisionMemory] = None

    def __post_init__(self) -> None:
        if self.mode is None:
            self.mode = self.cfg.mode
        if self.memory is None:
            m = self.cfg.memory
            self.memory = DecisionMemory(
                capacity=m.capacity, brief_decisions=m.brief_decisions, brief_constraints=m.brief_constraints
            )

    # ----------------------------
    # Delegation policy
    # ----------------------------

    def should_delegate(self, state: EnergyState) -> bool:
        if self.strategy is None or self.mode == AgentMode.HEURISTIC:
            return False
        if self.mode == AgentMode.DELEGATED:
            return True
        return (
            state.step % self.cfg.hybrid_cadence_steps == 0
            or state.tariff >= self.cfg.events.price_spike_tariff
            or ev_is_urgent(state, self.cfg)
            or state.battery_soc < self.cfg.events.battery_low_soc
        )

    def _fallback(self, stage: str, state: EnergyState, err: Exception) -> None:
        logger.warning(
            "step %s: delegated %s failed (%s: %s); using heuristic",
            state.step,
            stage,
            type(err).__name__,
            err,
        )

    # ----------------------------
    # Stages
    # ----------------------------

    def _interpret(self, state: EnergyState, delegate: bool) -> Tuple[Interpretation, bool, int]:
        heuristic = interpret(state, self.memory, self.cfg)
        if not delegate:
            return heuristic, False, 0
        try:
            return delegate_interpretation(self.strategy, state, self.memory, self.cfg), True, 0
        except Exception as e:  # noqa: BLE001 - any delegate failure degrades to the heuristic
            self._fallback("interpretation", state, e)
            return heuristic, False, 1

    def _propose(self, state: EnergyState, events: Sequence[EventKind], delegate: bool) -> Tuple[List[Plan], bool, int]:
        if delegate:
            try:
                return delegate_plans(self.strategy, state, events, self.cfg), True, 0
            except Exception as e:  # noqa: BLE001
                self._fallback("planning", state, e)
                return self.plan_generator(state, events, self.cfg), False, 1
        return self.plan_generator(state, events, self.cfg), False, 0

    def _choose(self, state: EnergyState, candidates: Sequence[Plan], delegate: bool) -> Tuple[Choice, bool, int]:
        heuristic = choose_action(state, self.memory, candidates, self.cfg)
        if not delegate:
            return heuristic, False, 0
        try:
            return delegate_choice(self.strategy, state, self.memory, candidates, self.cfg), True, 0
        except Exception as e:  # noqa: BLE001
            self._fallback("choice", state, e)
            return heuristic, False, 1

    def _select(self, state: EnergyState, plans: Sequence[Plan]) -> Tuple[Selection, List[SafetyReport]]:
        reports = [check_plan_safety(state, p, self.cfg) for p in plans]
        for report in reports:
            for kind in report.kinds():
                self.memory.add_constraint(_learned_constraint(kind, state, self.cfg))

        selection = select_candidates(plans, reports)
        if selection.is_fallback:
            logger.warning(
                "step %s: no plan passed safety checks; falling back to %s (%s)",
                state.step,
                selection.policy.value,
                ", ".join(p.name for p in selection.plans),
            )
            self.memory.add_note(f"t={state.step}: fallback {selection.policy.value}")
        return selection, reports

    # ----------------------------
    # One pipeline tick
    # ----------------------------

    def step(self, state: EnergyState) -> Tuple[StepResult, DecisionLog]:
        delegate = self.should_delegate(state)

        interpretation, used_interp, fb_interp = self._interpret(state, delegate)
        plans, used_plans, fb_plans = self._propose(state, interpretation.events, delegate)
        selection, reports = self._select(state, plans)
        choice, used_choice, fb_choice = self._choose(state, selection.plans, delegate)

        result = execute_action(state, choice.action, self.cfg)

        reasoning = choice.reasoning
        self.memory.remember(
            MemoryEntry(
                step=state.step,
                summary=f"{interpretation.summary} | {reasoning}",
                action=result.action,
                outcome=DecisionOutcome(
                    cost_usd=result.cost_usd + result.grid_penalty_usd,
                    peak_kw=result.grid_import_kw,
                    comfort_violation=result.comfort_violation,
                ),
            )
        )
        if result.overridden:
            self.memory.add_note(f"t={state.step}: EV deadline override")

        logger.debug(
            "step %s: events=%s plans=%d feasible=%d policy=%s scores=%s chose=%s",
            state.step,
            [e.value for e in interpretation.events],
            len(plans),
            sum(1 for r in reports if r.ok),
            selection.policy.value,
            score_plans(state, selection.plans, self.cfg),
            choice.plan_name or "delegate",
        )

        log = DecisionLog(
            step=state.step,
            interpretation=interpretation,
            plans_generated=len(plans),
            plans_feasible=sum(1 for r in reports if r.ok),
            rejection_reasons=tuple(str(v) for r in reports for v in r.reasons),
            fallback_policy=selection.policy,
            chosen_plan=choice.plan_name,
            chosen_action=result.action,
            reasoning=reasoning,
            delegation_attempted=StageDelegation(delegate, delegate, delegate),
            delegation_used=StageDelegation(used_interp, used_plans, used_choice),
            delegate_fallbacks=fb_interp + fb_plans + fb_choice,
            override_applied=result.overridden,
        )
        return result, log
