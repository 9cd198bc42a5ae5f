"""
Decimation Configuration
========================

Numeric thresholds and switches used by the mesh decimator.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, Dict


@dataclass(frozen=True)
class DecimatorConfig:
    """
    Tunable parameters of the edge collapse loop.

    Attributes:
        determinant_epsilon: Below this absolute determinant the quadric
            system is treated as singular and the endpoint/midpoint
            fallback is used.
        inversion_epsilon: A face whose before/after normal dot product
            drops below ``-inversion_epsilon`` is considered inverted.
        attribute_tolerance: Per-component tolerance under which two
            attribute instances around a vertex are merged.
        window_fraction: Fraction of the live face count kept in the
            best-candidates window.
        window_base: Constant added to the window size.
        hard_edge_error: Error assigned to edges joining two seams. Huge,
            so they go last, but still below ``no_collapse_error``.
        no_collapse_error: Error assigned to edges that must never be
            collapsed while anything else remains (A-shapes).
        debug_checks: Run the full-mesh invariant check every iteration.
        record_history: Keep a record of every accepted collapse.
    """
    determinant_epsilon: float = 0.001
    inversion_epsilon: float = 0.001
    attribute_tolerance: float = 0.001
    window_fraction: float = 0.01
    window_base: int = 100
    hard_edge_error: float = 1e150
    no_collapse_error: float = 1e300
    debug_checks: bool = False
    record_history: bool = False

    def __post_init__(self):
        if self.determinant_epsilon < 0:
            raise ValueError("determinant_epsilon must be non-negative")
        if self.inversion_epsilon < 0:
            raise ValueError("inversion_epsilon must be non-negative")
        if self.attribute_tolerance < 0:
            raise ValueError("attribute_tolerance must be non-negative")
        if self.window_fraction < 0 or self.window_base < 0:
            raise ValueError("Window parameters must be non-negative")
        if not 0 <= self.hard_edge_error < self.no_collapse_error:
            raise ValueError("hard_edge_error must be in [0, no_collapse_error)")

    def with_overrides(self, **overrides: Any) -> "DecimatorConfig":
        """Return a copy with the given fields replaced, ignoring ``None`` values."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown config option(s): {', '.join(sorted(unknown))}")
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values) if values else self

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
