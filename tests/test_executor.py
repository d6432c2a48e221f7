# tests/test_executor.py
from __future__ import annotations

import logging

import pytest

from gridpilot.agent.executor import apply_ev_override, execute_action, steps_needed_at_max_rate
from gridpilot.core.types import Action


def test_urgent_undercharge_is_forced_to_max(cfg, make_state) -> None:
    state = make_state(step=20)
    action = Action(battery_power_kw=-1.0, ev_charge_kw=1.0, hvac_target_temp_c=25.0, note="cost_min")

    final, overridden = apply_ev_override(state, action, cfg)

    assert overridden
    assert final.ev_charge_kw == pytest.approx(3.5)
    assert final.battery_power_kw == -1.0
    assert final.hvac_target_temp_c == 25.0
    assert final.note == "cost_min [EV DEADLINE OVERRIDE: 8 steps left]"


def test_urgent_but_adequate_rate_is_left_alone(cfg, make_state) -> None:
    # 1 kWh left needs 2 steps at max rate; 8 steps remain
    state = make_state(step=20, ev_required_kwh=1.0)
    action = Action(ev_charge_kw=2.0)

    assert apply_ev_override(state, action, cfg) == (action, False)


def test_latest_start_forces_max_before_urgency(cfg, make_state) -> None:
    # 10 kWh at 0.805 kWh/step needs 13 steps; step 15 leaves exactly 13
    state = make_state(step=15)
    assert steps_needed_at_max_rate(state, cfg) == 13

    final, overridden = apply_ev_override(state, Action(ev_charge_kw=3.0), cfg)
    assert overridden
    assert final.ev_charge_kw == pytest.approx(3.5)

    _, early = apply_ev_override(make_state(step=14), Action(ev_charge_kw=3.0), cfg)
    assert not early


def test_exact_multiple_does_not_round_up(cfg, make_state) -> None:
    per_step = 3.5 * 0.25 * 0.92
    assert steps_needed_at_max_rate(make_state(ev_required_kwh=4 * per_step), cfg) == 4


def test_no_override_once_charged(cfg, make_state) -> None:
    state = make_state(step=27, ev_required_kwh=0.0)
    assert not apply_ev_override(state, Action(), cfg)[1]


def test_empty_note_gets_placeholder(cfg, make_state) -> None:
    final, _ = apply_ev_override(make_state(step=25), Action(), cfg)
    assert final.note == "action [EV DEADLINE OVERRIDE: 3 steps left]"


def test_execute_action_marks_and_logs_override(cfg, make_state, caplog) -> None:
    state = make_state(step=22)
    with caplog.at_level(logging.WARNING, logger="gridpilot.agent.executor"):
        res = execute_action(state, Action(ev_charge_kw=0.0), cfg)

    assert res.overridden
    assert res.action.ev_charge_kw == pytest.approx(3.5)
    assert res.next_state.ev_required_kwh == pytest.approx(10.0 - 0.805)
    assert "EV override" in caplog.text


def test_execute_action_passthrough(cfg, make_state) -> None:
    res = execute_action(make_state(), Action(ev_charge_kw=2.0), cfg)
    assert not res.overridden
    assert res.action.ev_charge_kw == pytest.approx(2.0)
