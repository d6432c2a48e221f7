# tests/test_delegate.py
from __future__ import annotations

import json

import pytest

from gridpilot.agent.interpreter import EventKind
from gridpilot.agent.memory import DecisionMemory
from gridpilot.core.errors import DelegateResponseError
from gridpilot.reasoning.delegate import (
    build_context,
    coerce_action,
    delegate_plans,
    parse_choice,
    parse_interpretation,
    parse_json_object,
    parse_plans,
)
from gridpilot.reasoning.strategy import MockReasoningStrategy, NullStrategy, parse_context


def _action(battery=0.0, ev=0.0, hvac=24.5, **extra):
    return dict({"batteryPowerKW": battery, "evChargeKW": ev, "hvacTargetTempC": hvac}, **extra)


def _plans_payload(n_plans=3, n_actions=6, action=None):
    a = action if action is not None else _action()
    return {"plans": [{"rationale": f"p{i}", "actions": [a] * n_actions} for i in range(n_plans)]}


def test_context_is_key_value_lines(cfg, make_state) -> None:
    memory = DecisionMemory()
    memory.add_constraint("keep SOC above 5%")
    text = build_context("interpret", make_state(step=3), cfg, memory=memory, events=(EventKind.PRICE_SPIKE,))
    fields = parse_context(text)

    assert fields["task"] == "interpret"
    assert fields["step"] == "3"
    assert fields["events"] == "PRICE_SPIKE"
    assert "keep SOC above 5%" in fields["memory"]
    assert fields["respond"].startswith("JSON")


@pytest.mark.parametrize("response", ["", "   ", "not json", "[1, 2]", None, 42])
def test_malformed_responses_are_rejected(response) -> None:
    with pytest.raises(DelegateResponseError):
        parse_json_object("interpret", response)


def test_code_fenced_json_is_accepted() -> None:
    assert parse_json_object("choose", '```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_object("choose", {"a": 1}) == {"a": 1}


def test_action_values_are_clamped(cfg, make_state) -> None:
    state = make_state()
    action = coerce_action("choose", _action(battery=-50.0, ev=99.0, hvac=10.0), state, cfg, default_note="delegate")

    assert action.battery_power_kw == pytest.approx(-3.5)
    assert action.ev_charge_kw == pytest.approx(3.5)
    assert action.hvac_target_temp_c == pytest.approx(cfg.planner.hvac_min_c)
    assert action.note == "delegate"


def test_missing_hvac_defaults_and_note_is_kept(cfg, make_state) -> None:
    raw = {"batteryPowerKW": 1.0, "evChargeKW": 1.0, "note": "mine"}
    action = coerce_action("choose", raw, make_state(), cfg, default_note="delegate")

    assert action.hvac_target_temp_c == pytest.approx(24.5)
    assert action.note == "mine"


@pytest.mark.parametrize("bad", ["3", True, float("nan"), float("inf")])
def test_non_numeric_fields_are_rejected(cfg, make_state, bad) -> None:
    with pytest.raises(DelegateResponseError):
        coerce_action("choose", _action(ev=bad), make_state(), cfg, default_note="delegate")


def test_plan_count_and_length_are_enforced(cfg, make_state) -> None:
    state = make_state()
    with pytest.raises(DelegateResponseError):
        parse_plans(_plans_payload(n_plans=2), state, (), cfg)
    with pytest.raises(DelegateResponseError):
        parse_plans(_plans_payload(n_actions=5), state, (), cfg)

    plans = parse_plans(json.dumps(_plans_payload()), state, (), cfg)
    assert [p.name for p in plans] == ["delegate_1", "delegate_2", "delegate_3"]
    assert plans[0].rationale == "p0"


def test_emergency_plan_is_appended_to_delegate_plans(cfg, make_state) -> None:
    plans = parse_plans(_plans_payload(), make_state(step=20), (), cfg)

    assert len(plans) == 4
    assert plans[-1].emergency


def test_interpretation_rejects_unknown_events(make_state) -> None:
    memory = DecisionMemory()
    with pytest.raises(DelegateResponseError):
        parse_interpretation({"events": ["ALIENS"], "riskScore": 0.1, "summary": "x"}, memory)

    interp = parse_interpretation(
        {"events": ["PRICE_SPIKE", "PRICE_SPIKE"], "riskScore": 3.0, "summary": "spike"}, memory
    )
    assert interp.events == (EventKind.PRICE_SPIKE,)
    assert interp.risk_score == 1.0
    assert interp.summary.startswith("spike | Recent:")


def test_choice_requires_reasoning(cfg, make_state) -> None:
    with pytest.raises(DelegateResponseError):
        parse_choice({"action": _action()}, make_state(), cfg)
    with pytest.raises(DelegateResponseError):
        parse_choice({"reasoning": "no action"}, make_state(), cfg)


def test_null_strategy_always_fails_validation(cfg, make_state) -> None:
    with pytest.raises(DelegateResponseError):
        delegate_plans(NullStrategy(), make_state(), (), cfg)


def test_mock_strategy_is_deterministic_and_valid(cfg, make_state) -> None:
    state = make_state(step=30, tariff=0.75)
    a = delegate_plans(MockReasoningStrategy(seed=5), state, (EventKind.PRICE_SPIKE,), cfg)
    b = delegate_plans(MockReasoningStrategy(seed=5), state, (EventKind.PRICE_SPIKE,), cfg)

    assert a == b
    assert len(a) >= 3
    # spike with a healthy battery: the cost-aware plan discharges
    assert a[0].first_action.battery_power_kw < 0.0


def test_mock_strategy_answers_unknown_task_with_error() -> None:
    assert "error" in json.loads(MockReasoningStrategy().propose("task: dance"))
