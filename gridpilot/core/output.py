# gridpilot/core/output.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

from gridpilot.core.config import canonical_yaml_dump


logger = logging.getLogger(__name__)


@dataclass
class RunArtifacts:
    normalized_config: Dict[str, Any]
    solution: Dict[str, Any]
    report_md: str
    traces_rows: List[Dict[str, Any]]  # one dict per pipeline step, columns fixed by the first row


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def _csv_cell(v: Any) -> str:
    if v is None:
        s = ""
    elif isinstance(v, bool):
        s = "1" if v else "0"
    elif isinstance(v, float):
        s = f"{v:.10g}"
    else:
        s = str(v)
    if any(ch in s for ch in [",", '"', "\n"]):
        s = '"' + s.replace('"', '""') + '"'
    return s


def _write_csv(path: Path, rows: List[Dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not rows:
        path.write_text("", encoding="utf-8")
        return
    # first row fixes the order; keys only seen later go at the end
    cols = list(rows[0].keys())
    for r in rows[1:]:
        cols.extend(k for k in r.keys() if k not in cols)
    lines = [",".join(cols)]
    for r in rows:
        lines.append(",".join(_csv_cell(r.get(c)) for c in cols))
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def write_output_contract(outputs_root: Path, scenario_name: str, artifacts: RunArtifacts) -> Path:
    """
    Always writes:
      <outputs_root>/<scenario_name>/
        config.yaml
        solution.json
        report.md
        traces.csv
    and, when matplotlib is importable, plots/dispatch_overview.png.
    Returns the scenario output directory.
    """
    out_dir = Path(outputs_root) / scenario_name
    out_dir.mkdir(parents=True, exist_ok=True)

    _write_text(out_dir / "config.yaml", canonical_yaml_dump(artifacts.normalized_config))
    _write_json(out_dir / "solution.json", artifacts.solution)
    _write_text(out_dir / "report.md", artifacts.report_md if artifacts.report_md.endswith("\n") else artifacts.report_md + "\n")
    _write_csv(out_dir / "traces.csv", artifacts.traces_rows)

    try:
        from gridpilot.reporting.plots import generate_plots

        generate_plots(out_dir)
    except Exception as e:  # noqa: BLE001 - plots never fail the run
        logger.warning("plot generation failed: %s: %s", type(e).__name__, e)

    logger.info("wrote outputs to %s", out_dir)
    return out_dir
