# gridpilot/visualization/dispatch_plots.py
from __future__ import annotations

"""
Dispatch overview plot.

Reads outputs/<scenario>/traces.csv and writes
outputs/<scenario>/plots/dispatch_overview.png with three stacked panels:
  - grid import vs tariff
  - battery SOC and EV energy remaining
  - indoor temperature
"""

import csv
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402


REQUIRED_COLUMNS = (
    "step",
    "tariff",
    "grid_import_kw",
    "battery_soc",
    "ev_required_kwh",
    "indoor_temp_c",
)


def _read_traces_csv(path: Path) -> Tuple[List[str], List[Dict[str, str]]]:
    if not path.exists():
        raise FileNotFoundError(f"traces.csv not found: {path}")

    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            raise ValueError(f"traces.csv has no header: {path}")
        rows = [row for row in reader]
        return list(reader.fieldnames), rows


def _column(rows: List[Dict[str, str]], key: str) -> List[float]:
    out: List[float] = []
    for i, r in enumerate(rows):
        v = r.get(key, "")
        try:
            out.append(float(v))
        except ValueError as e:
            raise ValueError(f"could not parse float at row {i} column '{key}': {v!r}") from e
    return out


def plot_dispatch_overview(traces_csv: Path, out_png: Path, *, title: Optional[str] = None) -> Path:
    header, rows = _read_traces_csv(traces_csv)
    if not rows:
        raise ValueError(f"traces.csv has no rows: {traces_csv}")
    missing = [c for c in REQUIRED_COLUMNS if c not in header]
    if missing:
        raise KeyError(f"traces.csv missing columns {missing}; available: {header}")

    t = _column(rows, "step")

    fig, axes = plt.subplots(3, 1, sharex=True, figsize=(9, 8))

    ax = axes[0]
    ax.plot(t, _column(rows, "grid_import_kw"), label="grid import (kW)")
    if "baseline_grid_import_kw" in header:
        ax.plot(t, _column(rows, "baseline_grid_import_kw"), linestyle="--", label="baseline import (kW)")
    ax.set_ylabel("kW")
    ax.legend(loc="upper left")
    tariff_ax = ax.twinx()
    tariff_ax.step(t, _column(rows, "tariff"), where="post", color="grey", alpha=0.6)
    tariff_ax.set_ylabel("$/kWh")

    ax = axes[1]
    ax.plot(t, _column(rows, "battery_soc"), label="battery SOC")
    ax.set_ylabel("SOC")
    ax.set_ylim(0.0, 1.0)
    ev_ax = ax.twinx()
    ev_ax.plot(t, _column(rows, "ev_required_kwh"), color="tab:green", label="EV remaining (kWh)")
    ev_ax.set_ylabel("EV kWh")

    ax = axes[2]
    ax.plot(t, _column(rows, "indoor_temp_c"), label="indoor (C)")
    ax.set_ylabel("C")
    ax.set_xlabel("step")

    fig.suptitle(title or "Dispatch overview")
    fig.tight_layout()

    out_png.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_png, dpi=150)
    plt.close(fig)

    return out_png


def plot_dispatch_outputs_dir(outputs_dir: Path) -> Path:
    """
    outputs/<scenario>/traces.csv -> outputs/<scenario>/plots/dispatch_overview.png
    """
    return plot_dispatch_overview(
        outputs_dir / "traces.csv",
        outputs_dir / "plots" / "dispatch_overview.png",
        title=f"Dispatch overview: {outputs_dir.name}",
    )
