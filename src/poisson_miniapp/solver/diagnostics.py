from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict


@dataclass
class SolveReport:
    backend: str
    iterations: int
    residual_norm: float
    converged: bool
    reason: str = ""


def relative_difference(a: float, b: float) -> float:
    scale = max(abs(a), abs(b))
    return 0.0 if scale == 0.0 else abs(a - b) / scale


@dataclass
class CrossValidation:
    """Norms of the same system assembled by two backends."""
    norms: Dict[str, Dict[str, float]]
    rtol: float
    differences: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        if len(self.norms) != 2:
            raise ValueError(f"need norms from exactly two backends, got {list(self.norms)}")
        first, second = self.norms.values()
        for key in first:
            self.differences[key] = relative_difference(first[key], second[key])

    @property
    def passed(self) -> bool:
        return all(d <= self.rtol for d in self.differences.values())
