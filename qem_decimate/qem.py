"""
Quadric Error Metrics (QEM) Implementation
==========================================

Vertex error quadrics and collapse position/error evaluation.

The fundamental quadric of a plane ax + by + cz + d = 0 is p * p^T with
p = [a, b, c, d]. Being symmetric, it is stored as its 10 upper
triangle coefficients:

    [0] aa  [1] ab  [2] ac  [3] ad
            [4] bb  [5] bc  [6] bd
                    [7] cc  [8] cd
                            [9] dd

Based on: "Surface Simplification Using Quadric Error Metrics"
by Michael Garland and Paul S. Heckbert (SIGGRAPH 1997)
"""

import math
from typing import Optional, Sequence, Tuple

import numpy as np

from .config import DecimatorConfig
from .edge_types import FREE_KINDS, KEEP_A_KINDS, KEEP_B_KINDS, EdgeKind, EdgeType


class SymmetricMatrix:
    """Symmetric 4x4 matrix stored as 10 coefficients."""

    __slots__ = ("m",)

    def __init__(self, coefficients: Optional[Sequence[float]] = None):
        if coefficients is None:
            self.m = np.zeros(10)
        else:
            self.m = np.asarray(coefficients, dtype=np.float64)
            if self.m.shape != (10,):
                raise ValueError(f"Expected 10 coefficients, got shape {self.m.shape}")

    @classmethod
    def from_plane(cls, a: float, b: float, c: float, d: float) -> "SymmetricMatrix":
        """Fundamental quadric of the plane ax + by + cz + d = 0."""
        return cls([a * a, a * b, a * c, a * d,
                    b * b, b * c, b * d,
                    c * c, c * d,
                    d * d])

    def __getitem__(self, index: int) -> float:
        return self.m[index]

    def __add__(self, other: "SymmetricMatrix") -> "SymmetricMatrix":
        return SymmetricMatrix(self.m + other.m)

    def __iadd__(self, other: "SymmetricMatrix") -> "SymmetricMatrix":
        self.m = self.m + other.m
        return self

    def __eq__(self, other) -> bool:
        if not isinstance(other, SymmetricMatrix):
            return NotImplemented
        return bool(np.array_equal(self.m, other.m))

    def determinant(self, a11: int, a12: int, a13: int,
                    a21: int, a22: int, a23: int,
                    a31: int, a32: int, a33: int) -> float:
        """Determinant of the 3x3 matrix picked from the given coefficient indices."""
        m = self.m
        return float(m[a11] * m[a22] * m[a33] + m[a13] * m[a21] * m[a32]
                     + m[a12] * m[a23] * m[a31] - m[a13] * m[a22] * m[a31]
                     - m[a11] * m[a23] * m[a32] - m[a12] * m[a21] * m[a33])

    def to_matrix(self) -> np.ndarray:
        """Expand to a full 4x4 matrix."""
        m = self.m
        return np.array([[m[0], m[1], m[2], m[3]],
                         [m[1], m[4], m[5], m[6]],
                         [m[2], m[5], m[7], m[8]],
                         [m[3], m[6], m[8], m[9]]])

    def __repr__(self) -> str:
        return f"SymmetricMatrix({np.array2string(self.m, precision=4)})"


def compute_face_plane(v0: np.ndarray, v1: np.ndarray, v2: np.ndarray) -> np.ndarray:
    """
    Compute the plane equation coefficients for a triangle face.

    The plane equation is: ax + by + cz + d = 0
    where [a, b, c] is the unit normal and d = -dot(normal, point_on_plane)

    Args:
        v0, v1, v2: Triangle vertices as 3D points

    Returns:
        Plane coefficients [a, b, c, d], all zero for a degenerate face
    """
    normal = np.cross(v1 - v0, v2 - v0)
    norm_length = np.linalg.norm(normal)

    if norm_length < 1e-12:
        return np.zeros(4)

    normal = normal / norm_length
    d = -np.dot(normal, v0)

    return np.array([normal[0], normal[1], normal[2], d])


def compute_vertex_error(q: SymmetricMatrix, x: float, y: float, z: float) -> float:
    """Evaluate v^T * Q * v for v = [x, y, z, 1]."""
    m = q.m
    return float(m[0] * x * x + 2 * m[1] * x * y + 2 * m[2] * x * z + 2 * m[3] * x
                 + m[4] * y * y + 2 * m[5] * y * z + 2 * m[6] * y
                 + m[7] * z * z + 2 * m[8] * z
                 + m[9])


def compute_lineic_error(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> float:
    """
    Sine of the angle at ``a`` between ``b`` and ``c``.

    Measures how far a border polyline bends at ``a``::

        A |\\
          | \\
          |__\\ B
          |  /
          | /
        C |/
    """
    ab = b - a
    ac = c - a
    denominator = np.linalg.norm(ab) * np.linalg.norm(ac)
    if denominator < 1e-300:
        return 0.0
    cosine = float(np.clip(np.dot(ab, ac) / denominator, -1.0, 1.0))
    return math.sin(math.acos(cosine))


class QuadricErrorMetrics:
    """
    Computes per-position quadrics and edge collapse candidates.

    The collapse target depends on the edge classification: free edges
    use the quadric minimizer, edges constrained at one end keep that end
    in place, border edges follow the border polyline and A-shapes get a
    sentinel error so they go last.
    """

    def __init__(self, config: Optional[DecimatorConfig] = None):
        self.config = config or DecimatorConfig()

    def compute_fundamental_quadric(self, plane: np.ndarray) -> SymmetricMatrix:
        return SymmetricMatrix.from_plane(*plane)

    def compute_position_quadric(self, mesh, position: int) -> Optional[SymmetricMatrix]:
        """
        Sum the plane quadrics of every face around a position.

        Args:
            mesh: ConnectedMesh
            position: Position id

        Returns:
            The quadric, or None if the position has no live corner
        """
        node_index = mesh.position_to_node[position]
        if node_index < 0:
            return None

        quadric = SymmetricMatrix()
        for sibling in mesh.iter_siblings(node_index):
            assert mesh.check_relatives(sibling)
            a, b, c = mesh.get_face_positions(sibling)
            plane = compute_face_plane(mesh.positions[a], mesh.positions[b], mesh.positions[c])
            quadric += self.compute_fundamental_quadric(plane)

        return quadric

    def compute_vertex_quadrics(self, mesh) -> list:
        """Quadrics of all positions, None for positions without corners."""
        return [self.compute_position_quadric(mesh, p) for p in range(len(mesh.positions))]

    def compute_optimal_position(self, q: SymmetricMatrix, p1: np.ndarray,
                                 p2: np.ndarray) -> Tuple[np.ndarray, float]:
        """
        Compute the position minimizing the quadric error.

        Solves the 3x3 gradient system with Cramer's rule. When the
        determinant is too small, falls back to the best of the two
        endpoints and the midpoint (ties favour p1, then p2).

        Args:
            q: Combined quadric of both endpoints
            p1, p2: Edge endpoint positions

        Returns:
            Tuple of (optimal_position, error)
        """
        det = q.determinant(0, 1, 2, 1, 4, 5, 2, 5, 7)

        if abs(det) > self.config.determinant_epsilon:
            x = -1 / det * q.determinant(1, 2, 3, 4, 5, 6, 5, 7, 8)
            y = +1 / det * q.determinant(0, 2, 3, 1, 5, 6, 2, 7, 8)
            z = -1 / det * q.determinant(0, 1, 3, 1, 4, 6, 2, 5, 8)
            return np.array([x, y, z]), compute_vertex_error(q, x, y, z)

        p3 = (p1 + p2) / 2
        error1 = compute_vertex_error(q, *p1)
        error2 = compute_vertex_error(q, *p2)
        error3 = compute_vertex_error(q, *p3)
        error = min(error1, error2, error3)

        if error1 == error:
            return p1.copy(), error
        if error2 == error:
            return p2.copy(), error
        return p3, error

    def compute_edge_collapse(self, edge_type: EdgeType, q1: SymmetricMatrix,
                              q2: SymmetricMatrix, p1: np.ndarray, p2: np.ndarray,
                              p1_border: Optional[np.ndarray] = None,
                              p2_border: Optional[np.ndarray] = None) -> Tuple[np.ndarray, float]:
        """
        Compute the merge position and error for collapsing edge (p1, p2).

        Args:
            edge_type: Classification of the edge relative to (p1, p2)
            q1, q2: Quadrics of the two endpoints
            p1, p2: Endpoint positions
            p1_border, p2_border: Positions of the border neighbors of p1
                and p2, required for ``BORDER_AB`` edges

        Returns:
            Tuple of (merge_position, non-negative error)
        """
        kind = edge_type.kind

        if kind in FREE_KINDS:
            result, error = self.compute_optimal_position(q1 + q2, p1, p2)
        elif kind in KEEP_A_KINDS:
            result = p1.copy()
            error = compute_vertex_error(q1 + q2, *p1)
        elif kind in KEEP_B_KINDS:
            result = p2.copy()
            error = compute_vertex_error(q1 + q2, *p2)
        elif kind is EdgeKind.BORDER_AB:
            if p1_border is None or p2_border is None:
                raise ValueError("Border edges need the border neighbor positions")
            # TODO: find the analytic position minimizing the border deviation
            error1 = compute_lineic_error(p1, p2, p2_border)
            error2 = compute_lineic_error(p2, p1, p1_border)
            error = min(error1, error2)
            result = p1.copy() if error1 == error else p2.copy()
        elif kind is EdgeKind.SURFACIC_HARD_AB:
            result = (p1 + p2) / 2
            error = self.config.hard_edge_error
        else:
            # A-shapes and unknown topology
            result = (p1 + p2) / 2
            error = self.config.no_collapse_error

        if not (math.isfinite(error) and np.all(np.isfinite(result))):
            result = (p1 + p2) / 2
            error = self.config.no_collapse_error

        return result, abs(error)

    def compute_error(self, q: SymmetricMatrix, v: np.ndarray) -> float:
        """Quadric error of a position, clamped to non-negative."""
        return max(0.0, compute_vertex_error(q, *v))
