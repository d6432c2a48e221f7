# gridpilot/core/errors.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass
class ConfigError(Exception):
    path: str
    message: str
    hint: Optional[str] = None

    def __str__(self) -> str:
        out = [f"Config error at {self.path}:", f"  {self.message}"]
        if self.hint:
            out.append("hint:")
            out.append(f"  {self.hint}")
        return "\n".join(out)


class NoFeasiblePlanError(ValueError):
    """Raised when the chooser is handed an empty plan set."""


class DelegateResponseError(ValueError):
    """A reasoning-strategy response failed structural validation."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message


@dataclass
class InvariantViolationError(RuntimeError):
    run_label: str
    violations: List[Any] = field(default_factory=list)

    def __str__(self) -> str:
        out = [f"Invariant violation in run '{self.run_label}':"]
        for c in self.violations:
            out.append(f"  - {c.name}: margin={c.margin:.6g} {c.details}")
        return "\n".join(out)
