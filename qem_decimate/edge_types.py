"""
Edge Types
==========

Classification of an edge between two positions of a connected mesh.

"A" and "B" always refer to the first and second position of the edge
as it was queried. An endpoint is *hard* when the attribute id changes
while circulating its corners (a normal or uv seam passes through it),
and *bordered* when one of its other edges lies on an open border.
"""

from dataclasses import dataclass
from enum import Enum


class EdgeKind(Enum):
    # Both faces present, no constraint at either end
    SURFACIC = "surfacic"
    SURFACIC_HARD_A = "surfacic_hard_a"
    SURFACIC_HARD_B = "surfacic_hard_b"
    # Hard at both ends and the edge itself is the seam
    SURFACIC_HARD_EDGE = "surfacic_hard_edge"
    # Hard at both ends but the edge crosses two different seams
    SURFACIC_HARD_AB = "surfacic_hard_ab"
    SURFACIC_BORDER_A = "surfacic_border_a"
    SURFACIC_BORDER_B = "surfacic_border_b"
    SURFACIC_BORDER_A_HARD_B = "surfacic_border_a_hard_b"
    SURFACIC_BORDER_B_HARD_A = "surfacic_border_b_hard_a"
    # Inner edge joining two border vertices ("A-shape")
    SURFACIC_BORDER_AB = "surfacic_border_ab"
    # The edge itself lies on the border
    BORDER_AB = "border_ab"
    UNKNOWN = "unknown"


# Kinds for which the merge keeps position A in place
KEEP_A_KINDS = frozenset({
    EdgeKind.SURFACIC_HARD_A,
    EdgeKind.SURFACIC_BORDER_A,
    EdgeKind.SURFACIC_BORDER_A_HARD_B,
})

# Kinds for which the merge keeps position B in place
KEEP_B_KINDS = frozenset({
    EdgeKind.SURFACIC_HARD_B,
    EdgeKind.SURFACIC_BORDER_B,
    EdgeKind.SURFACIC_BORDER_B_HARD_A,
})

# Kinds solved with the full quadric
FREE_KINDS = frozenset({
    EdgeKind.SURFACIC,
    EdgeKind.SURFACIC_HARD_EDGE,
})


@dataclass(frozen=True)
class EdgeType:
    """
    Tagged edge classification.

    Only ``BORDER_AB`` carries a payload: the corners of the border
    neighbors of A and B, used to estimate the curvature of the border
    polyline.
    """
    kind: EdgeKind
    border_node_a: int = -1
    border_node_b: int = -1

    @property
    def is_border(self) -> bool:
        return self.kind is EdgeKind.BORDER_AB

    @property
    def is_collapsible(self) -> bool:
        """False for edges that should only go once nothing else remains."""
        return self.kind not in (EdgeKind.SURFACIC_BORDER_AB, EdgeKind.UNKNOWN)

    def __str__(self) -> str:
        if self.is_border:
            return f"{self.kind.name}({self.border_node_a}, {self.border_node_b})"
        return self.kind.name
