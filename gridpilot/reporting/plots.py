# gridpilot/reporting/plots.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


def generate_plots(outputs_dir: Path) -> Optional[Path]:
    """
    Write plots/dispatch_overview.png next to traces.csv.

    Returns the plot path, or None when matplotlib is not installed.
    Raises only if outputs_dir is missing (callers may choose to catch anyway).
    """
    outputs_dir = Path(outputs_dir)
    if not outputs_dir.exists():
        raise FileNotFoundError(f"outputs_dir not found: {outputs_dir}")

    # If matplotlib isn't installed, skip quietly (keeps core runnable).
    try:
        import matplotlib  # noqa: F401
    except ImportError:
        logger.info("matplotlib not available; skipping plots")
        return None

    from gridpilot.visualization.dispatch_plots import plot_dispatch_outputs_dir

    return plot_dispatch_outputs_dir(outputs_dir)
