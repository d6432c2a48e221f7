# tests/conftest.py
from __future__ import annotations

from typing import Any, Callable

import pytest

from gridpilot.core.config import SimConfig, build_initial_state, build_sim_config, default_config
from gridpilot.core.types import EnergyState


@pytest.fixture
def cfg() -> SimConfig:
    return build_sim_config(default_config())


@pytest.fixture
def make_state(cfg: SimConfig) -> Callable[..., EnergyState]:
    """Default initial state (step 0, SOC 0.55, EV 10 kWh due at step 28) with overrides."""
    base = build_initial_state(default_config(), cfg)

    def _make(**changes: Any) -> EnergyState:
        if "step" in changes and "minute" not in changes:
            changes["minute"] = changes["step"] * cfg.time.step_minutes
        return base.evolve(**changes)

    return _make
