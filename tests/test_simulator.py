# tests/test_simulator.py
from __future__ import annotations

import random
from dataclasses import replace

import pytest

from gridpilot.core.types import Action
from gridpilot.sim.simulator import clamp_action, simulate_step


def test_clamp_action_respects_rate_limits(make_state) -> None:
    state = make_state()
    clamped = clamp_action(state, Action(battery_power_kw=10.0, ev_charge_kw=-1.0, note="x"))

    assert clamped.battery_power_kw == pytest.approx(3.5)
    assert clamped.ev_charge_kw == 0.0
    assert clamped.note == "x"


def test_step_advances_time_and_records_applied_action(cfg, make_state) -> None:
    state = make_state(step=3)
    res = simulate_step(state, Action(ev_charge_kw=9.0, hvac_target_temp_c=24.5, note="plan"), cfg)

    assert res.next_state.step == 4
    assert res.next_state.minute == 60
    assert res.action.ev_charge_kw == pytest.approx(3.5)
    assert res.action.note == "plan"
    assert res.state is state


def test_discharge_is_limited_to_stored_energy(cfg, make_state) -> None:
    state = make_state(battery_soc=0.05)
    res = simulate_step(state, Action(battery_power_kw=-3.5, hvac_target_temp_c=state.indoor_temp_c), cfg)

    # 0.4 kWh stored, delivered through 1/eta over one 15-minute step
    assert res.action.battery_power_kw == pytest.approx(-0.4 * 0.95 / 0.25)
    assert res.next_state.battery_soc == pytest.approx(0.0, abs=1e-12)


def test_charge_is_limited_to_headroom(cfg, make_state) -> None:
    state = make_state(battery_soc=0.99)
    res = simulate_step(state, Action(battery_power_kw=3.5, hvac_target_temp_c=state.indoor_temp_c), cfg)

    assert res.action.battery_power_kw < 3.5
    assert res.next_state.battery_soc == pytest.approx(1.0)
    assert res.next_state.battery_soc <= 1.0


def test_grid_penalty_is_separate_from_cost(cfg, make_state) -> None:
    state = make_state(base_load_kw=8.0, tariff=0.2, ev_required_kwh=0.0)
    res = simulate_step(state, Action(hvac_target_temp_c=state.indoor_temp_c), cfg)

    assert res.grid_import_kw == pytest.approx(8.0)
    assert res.cost_usd == pytest.approx(8.0 * 0.25 * 0.2)
    assert res.grid_penalty_usd == pytest.approx(1.0)


def test_surplus_is_curtailed_when_export_disabled(cfg, make_state) -> None:
    state = make_state(solar_kw=5.0, base_load_kw=1.0, ev_required_kwh=0.0)
    res = simulate_step(state, Action(hvac_target_temp_c=state.indoor_temp_c), cfg)

    assert res.grid_import_kw == 0.0
    assert res.grid_export_kw == 0.0
    assert res.cost_usd == 0.0


def test_export_is_split_by_source_and_gated(cfg, make_state) -> None:
    export_cfg = replace(
        cfg, grid=replace(cfg.grid, export_enabled=True, allow_solar_export=True, allow_battery_export=False)
    )
    state = make_state(solar_kw=5.0, base_load_kw=1.0, battery_soc=0.5, ev_required_kwh=0.0)
    action = Action(battery_power_kw=-2.0, hvac_target_temp_c=state.indoor_temp_c)

    res = simulate_step(state, action, export_cfg)
    # 6 kW surplus: 4 kW from solar (exported), 2 kW from the battery (not allowed)
    assert res.grid_export_kw == pytest.approx(4.0)
    assert res.cost_usd == pytest.approx(-4.0 * 0.25 * 0.05)

    both_cfg = replace(export_cfg, grid=replace(export_cfg.grid, allow_battery_export=True))
    assert simulate_step(state, action, both_cfg).grid_export_kw == pytest.approx(6.0)


def test_ev_energy_accounting(cfg, make_state) -> None:
    res = simulate_step(make_state(), Action(ev_charge_kw=3.5), cfg)
    assert res.next_state.ev_required_kwh == pytest.approx(10.0 - 3.5 * 0.25 * 0.92)

    almost_done = simulate_step(make_state(ev_required_kwh=0.3), Action(ev_charge_kw=3.5), cfg)
    assert almost_done.next_state.ev_required_kwh == 0.0


def test_ev_draws_nothing_once_charged(cfg, make_state) -> None:
    state = make_state(ev_required_kwh=0.0)
    idle = simulate_step(state, Action(hvac_target_temp_c=state.indoor_temp_c), cfg)
    res = simulate_step(state, Action(ev_charge_kw=3.5, hvac_target_temp_c=state.indoor_temp_c), cfg)

    assert res.action.ev_charge_kw == 0.0
    assert res.grid_import_kw == pytest.approx(idle.grid_import_kw)


def test_hvac_and_thermal_model(cfg, make_state) -> None:
    state = make_state(indoor_temp_c=25.5, outdoor_temp_c=30.0)
    res = simulate_step(state, Action(hvac_target_temp_c=24.5), cfg)

    assert res.next_state.hvac_load_kw == pytest.approx(0.6)
    assert res.next_state.indoor_temp_c == pytest.approx(25.5 + 4.5 * 0.05 - 1.0 * 0.12)
    assert res.comfort_violation == 0.0


def test_comfort_violation_measures_distance_outside_band(cfg, make_state) -> None:
    state = make_state(indoor_temp_c=27.0, outdoor_temp_c=30.0)
    res = simulate_step(state, Action(hvac_target_temp_c=27.0), cfg)

    assert res.next_state.hvac_load_kw == 0.0
    assert res.comfort_violation == pytest.approx(27.15 - 26.0)


def test_random_actions_keep_physical_bounds(cfg, make_state) -> None:
    rng = random.Random(0)
    state = make_state()
    for _ in range(200):
        state = state.evolve(
            tariff=rng.uniform(0.05, 0.9),
            solar_kw=rng.uniform(0.0, 5.0),
            base_load_kw=rng.uniform(0.5, 4.0),
        )
        action = Action(
            battery_power_kw=rng.uniform(-6.0, 6.0),
            ev_charge_kw=rng.uniform(-1.0, 6.0),
            hvac_target_temp_c=rng.uniform(21.0, 28.0),
        )
        res = simulate_step(state, action, cfg)

        assert 0.0 <= res.next_state.battery_soc <= 1.0
        assert res.next_state.ev_required_kwh <= state.ev_required_kwh
        assert res.next_state.ev_required_kwh >= 0.0
        assert res.grid_import_kw >= 0.0
        assert res.grid_export_kw == 0.0
        assert res.cost_usd >= 0.0
        assert res.grid_penalty_usd >= 0.0
        state = res.next_state


@pytest.mark.parametrize("rate_kw", [3.5, 50.0])
def test_max_charge_and_discharge_streaks_stay_in_bounds(cfg, make_state, rate_kw) -> None:
    state = make_state(battery_max_charge_kw=rate_kw, battery_max_discharge_kw=rate_kw)
    streaks = [rate_kw] * 20 + [-rate_kw] * 20 + ([rate_kw] * 3 + [-rate_kw] * 3) * 5

    socs = []
    for i, power in enumerate(streaks):
        res = simulate_step(state, Action(battery_power_kw=power), cfg)
        soc = res.next_state.battery_soc

        assert 0.0 <= soc <= 1.0
        assert abs(res.action.battery_power_kw) <= rate_kw
        socs.append(soc)
        state = res.next_state

        if i == 19:
            assert soc == pytest.approx(1.0)
            # a full battery takes nothing more
            assert simulate_step(state, Action(battery_power_kw=rate_kw), cfg).action.battery_power_kw == pytest.approx(0.0)
        if i == 39:
            assert soc == pytest.approx(0.0, abs=1e-9)
            assert simulate_step(state, Action(battery_power_kw=-rate_kw), cfg).action.battery_power_kw == pytest.approx(0.0)

    assert max(socs) <= 1.0 and min(socs) >= 0.0
