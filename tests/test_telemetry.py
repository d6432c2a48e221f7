# tests/test_telemetry.py
from __future__ import annotations

import pytest

from gridpilot.core.config import build_initial_state, build_sim_config, load_config
from gridpilot.runner import run_baseline
from gridpilot.sim.telemetry import ScriptedTelemetry, SeriesTelemetry, build_telemetry


def _mid_day_config():
    return load_config(
        overrides={"initial_state.step": 28, "initial_state.ev_deadline_step": 40, "run.total_steps": 8}
    )


def test_scripted_day_from_step_zero() -> None:
    updates = list(ScriptedTelemetry(48))

    assert len(updates) == 48
    assert updates[0].tariff == 0.14
    assert [u.tariff for u in updates[30:32]] == [0.75, 0.75]


def test_scripted_telemetry_follows_absolute_steps() -> None:
    normalized = _mid_day_config()
    sim = build_sim_config(normalized)
    tariffs = [u.tariff for u in build_telemetry(normalized, sim)]

    # steps 28..35
    assert tariffs == [0.42, 0.42, 0.75, 0.75, 0.42, 0.42, 0.42, 0.42]


def test_mid_day_run_sees_the_spike_at_step_30() -> None:
    normalized = _mid_day_config()
    sim = build_sim_config(normalized)
    initial = build_initial_state(normalized, sim)

    run = run_baseline(sim, initial, build_telemetry(normalized, sim))

    by_step = {r.state.step: r.state.tariff for r in run.results}
    assert run.results[0].state.step == 28
    assert by_step[30] == 0.75
    assert by_step[31] == 0.75
    assert by_step[28] == 0.42


def test_scripted_start_step_must_be_non_negative() -> None:
    with pytest.raises(ValueError):
        ScriptedTelemetry(8, start_step=-1)


def test_series_is_indexed_from_run_start() -> None:
    source = SeriesTelemetry({"tariff": [0.1, 0.2, 0.3]}, total_steps=3)

    assert [u.tariff for u in source] == [0.1, 0.2, 0.3]
    assert [u.solar_kw for u in source] == [None, None, None]
    with pytest.raises(ValueError):
        SeriesTelemetry({"tariff": [0.1]}, total_steps=3)
