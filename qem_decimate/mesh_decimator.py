"""
Mesh Decimator
==============

Main mesh simplification class that performs iterative edge collapse
on a connected mesh using Quadric Error Metrics.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Union

import numpy as np
import trimesh

from .candidates import CandidateStore, EdgeCollapse
from .config import DecimatorConfig
from .connected_mesh import NOT_FOUND, ConnectedMesh
from .edge_types import EdgeKind
from .exceptions import DecimationError
from .qem import QuadricErrorMetrics, SymmetricMatrix
from .shared_mesh import SharedMesh

logger = logging.getLogger("qem_decimate.mesh_decimator")

ProgressCallback = Callable[[int], None]
CancelCallback = Callable[[], bool]


class DecimatorState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    ITERATING = "iterating"
    DONE = "done"


@dataclass
class CollapseRecord:
    """One accepted edge collapse."""
    pos_a: int
    pos_b: int
    error: float
    result: np.ndarray
    edge_kind: EdgeKind
    face_count: int


def _normalized(v: np.ndarray) -> np.ndarray:
    length = np.linalg.norm(v)
    if length < 1e-300:
        return v
    return v / length


def _divide_safe(numerator: float, denominator: float) -> float:
    return 0.0 if denominator == 0 else numerator / denominator


class MeshDecimator:
    """
    Mesh simplification using Quadric Error Metrics (QEM).

    Implements greedy edge collapse on a ``ConnectedMesh`` with:
    - Per-position quadrics built from face planes
    - Edge classification preserving borders and attribute seams
    - A best-candidates window refilled on demand
    - Rejection of collapses that would flip a face

    A decimator instance is single threaded and mutates the given mesh in
    place. It can be reused; every ``decimate_*`` call starts over.
    """

    def __init__(self, config: Optional[DecimatorConfig] = None, **overrides):
        """
        Initialize the mesh decimator.

        Args:
            config: Base configuration (defaults to ``DecimatorConfig()``)
            **overrides: Individual ``DecimatorConfig`` fields to replace
        """
        self.config = (config or DecimatorConfig()).with_overrides(**overrides)
        self.qem = QuadricErrorMetrics(self.config)
        self.state = DecimatorState.UNINITIALIZED

        # State variables (initialized per decimation)
        self._mesh: Optional[ConnectedMesh] = None
        self._quadrics: Optional[List[Optional[SymmetricMatrix]]] = None
        self._candidates = CandidateStore(self.config.window_fraction,
                                          self.config.window_base)
        self._initial_face_count = 0
        self._last_progress = -1
        self._collapse_history: List[CollapseRecord] = []

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def decimate(self, mesh: Union[SharedMesh, trimesh.Trimesh],
                 target_faces: Optional[int] = None,
                 target_ratio: Optional[float] = None,
                 max_error: Optional[float] = None,
                 merge_tolerance: Optional[float] = None,
                 progress_callback: Optional[ProgressCallback] = None,
                 cancel_callback: Optional[CancelCallback] = None
                 ) -> Union[SharedMesh, trimesh.Trimesh]:
        """
        Decimate a mesh to a target face count, ratio or error.

        Args:
            mesh: Input mesh, either a SharedMesh or a trimesh object
            target_faces: Target number of faces
            target_ratio: Target ratio of faces to keep (0.0 to 1.0)
            max_error: Stop once the best collapse costs more than this
            merge_tolerance: Weld positions closer than this before decimating
            progress_callback: Receives integer percent-complete updates
            cancel_callback: Polled once per collapse, True stops the loop

        Returns:
            Simplified mesh of the same kind as the input
        """
        if target_faces is None and target_ratio is None and max_error is None:
            raise DecimationError("Must specify target_faces, target_ratio or max_error")
        if target_faces is not None and target_ratio is not None:
            raise DecimationError("target_faces and target_ratio are mutually exclusive")

        as_trimesh = isinstance(mesh, trimesh.Trimesh)
        shared = SharedMesh.from_trimesh(mesh) if as_trimesh else mesh

        connected = ConnectedMesh.build(shared)
        if merge_tolerance:
            connected.merge_positions(merge_tolerance)

        if target_ratio is not None:
            self.decimate_to_ratio(connected, target_ratio, max_error=max_error,
                                   progress_callback=progress_callback,
                                   cancel_callback=cancel_callback)
        elif target_faces is not None:
            self.decimate_to_polycount(connected, target_faces, max_error=max_error,
                                       progress_callback=progress_callback,
                                       cancel_callback=cancel_callback)
        else:
            self.decimate_to_error(connected, max_error, cancel_callback=cancel_callback)

        connected.compact()
        output = connected.to_shared_mesh()

        return output.to_trimesh() if as_trimesh else output

    def decimate_to_ratio(self, mesh: ConnectedMesh, ratio: float, **kwargs) -> ConnectedMesh:
        """Decimate until ``round(ratio * face_count)`` faces remain."""
        ratio = min(max(float(ratio), 0.0), 1.0)
        return self.decimate_to_polycount(mesh, int(round(ratio * mesh.face_count)), **kwargs)

    def decimate_polycount(self, mesh: ConnectedMesh, count: int, **kwargs) -> ConnectedMesh:
        """Remove ``count`` faces."""
        return self.decimate_to_polycount(mesh, mesh.face_count - int(count), **kwargs)

    def decimate_to_polycount(self, mesh: ConnectedMesh, target: int,
                              max_error: Optional[float] = None,
                              progress_callback: Optional[ProgressCallback] = None,
                              cancel_callback: Optional[CancelCallback] = None) -> ConnectedMesh:
        """
        Collapse edges until at most ``target`` faces remain.

        Args:
            mesh: Connected mesh, modified in place
            target: Target number of faces
            max_error: Optional error threshold stopping the loop early
            progress_callback: Receives integer percent-complete updates
            cancel_callback: Polled once per collapse, True stops the loop

        Returns:
            The decimated mesh
        """
        target = max(0, int(target))
        self.initialize(mesh)

        logger.info(f"Starting decimation: {self._initial_face_count} -> {target} faces")

        self.state = DecimatorState.ITERATING
        while mesh.face_count > target:
            if cancel_callback is not None and cancel_callback():
                logger.info("Decimation cancelled")
                break

            pair = self.get_pair_with_minimum_error()
            if pair is None:
                logger.warning("No more valid edges to collapse")
                break

            if max_error is not None and pair.error > max_error:
                logger.info(f"Reached max error threshold: {pair.error:.6g} > {max_error}")
                break

            self.apply_collapse(pair)
            self._report_progress(target, progress_callback)

        self.state = DecimatorState.DONE
        logger.info(f"Decimation complete: {mesh.face_count} faces, "
                    f"{self._initial_face_count - mesh.face_count} faces removed")

        return mesh

    def decimate_to_error(self, mesh: ConnectedMesh, max_error: float,
                          cancel_callback: Optional[CancelCallback] = None) -> ConnectedMesh:
        """Collapse edges while the best candidate error stays within ``max_error``."""
        self.initialize(mesh)

        self.state = DecimatorState.ITERATING
        while True:
            if cancel_callback is not None and cancel_callback():
                logger.info("Decimation cancelled")
                break

            pair = self.get_pair_with_minimum_error()
            if pair is None or pair.error > max_error:
                break

            self.apply_collapse(pair)

        self.state = DecimatorState.DONE
        logger.info(f"Decimation to error {max_error} complete: {mesh.face_count} faces")

        return mesh

    # ------------------------------------------------------------------
    # Loop steps
    # ------------------------------------------------------------------

    def initialize(self, mesh: ConnectedMesh):
        """Build quadrics and every edge collapse candidate for ``mesh``."""
        self._mesh = mesh
        self._initial_face_count = mesh.face_count
        self._last_progress = -1
        self._collapse_history = []
        self._candidates.clear()

        self._initialize_pairs()
        self._quadrics = self.qem.compute_vertex_quadrics(mesh)
        for pair in self._candidates:
            self._calculate_error(pair)

        self.state = DecimatorState.INITIALIZED
        logger.debug(f"Initialized {len(self._candidates)} candidates "
                     f"for {mesh.face_count} faces")

    def iterate(self) -> bool:
        """
        Perform a single collapse of the best valid candidate.

        Returns:
            False if no candidate could be collapsed
        """
        if self.state is DecimatorState.UNINITIALIZED:
            raise DecimationError("Decimator must be initialized before iterating")

        pair = self.get_pair_with_minimum_error()
        if pair is None:
            return False

        self.state = DecimatorState.ITERATING
        self.apply_collapse(pair)
        return True

    def get_pair_with_minimum_error(self) -> Optional[EdgeCollapse]:
        """Best candidate whose collapse does not flip any face."""
        return self._candidates.first_valid(
            self._mesh.face_count,
            lambda pair: not self.collapse_will_invert(pair)
        )

    def apply_collapse(self, pair: EdgeCollapse):
        """Remove ``pair`` from the candidates and collapse it."""
        assert self._candidates.check()
        assert self._check_pair(pair)

        if pair.error >= self.config.no_collapse_error:
            logger.warning(f"Collapsing {pair}, borders will be damaged")

        self._candidates.remove(pair.pos_a, pair.pos_b)
        self._collapse_edge(pair)

        if self.config.record_history:
            self._collapse_history.append(CollapseRecord(
                pos_a=pair.pos_a,
                pos_b=pair.pos_b,
                error=pair.error,
                result=np.array(pair.result),
                edge_kind=pair.edge_type.kind,
                face_count=self._mesh.face_count
            ))

        if self.config.debug_checks:
            if not self._mesh.check():
                raise DecimationError(f"Mesh invariants broken after collapsing {pair}")
            if not self._candidates.check():
                raise DecimationError(f"Candidate window out of sync after collapsing {pair}")

    def collapse_will_invert(self, pair: EdgeCollapse) -> bool:
        """
        Check whether moving both endpoints to ``pair.result`` flips a face.

        Faces touching both endpoints are ignored since the collapse
        removes them.
        """
        mesh = self._mesh
        threshold = -self.config.inversion_epsilon

        for pos_self, pos_other in ((pair.pos_a, pair.pos_b), (pair.pos_b, pair.pos_a)):
            node_index = mesh.position_to_node[pos_self]
            position = mesh.positions[pos_self]

            for sibling in mesh.iter_siblings(node_index):
                _, pos_c, pos_d = mesh.get_face_positions(sibling)
                if pos_c == pos_other or pos_d == pos_other:
                    continue

                point_c = mesh.positions[pos_c]
                point_d = mesh.positions[pos_d]
                before = _normalized(np.cross(point_c - position, point_d - position))
                after = _normalized(np.cross(point_c - pair.result, point_d - pair.result))

                if np.dot(before, after) < threshold:
                    return True

        return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _initialize_pairs(self):
        mesh = self._mesh
        for face in mesh.iter_faces():
            a, b, c = mesh.get_face_positions(face)
            for pos_a, pos_b in ((a, b), (b, c), (c, a)):
                self._candidates.add(EdgeCollapse(pos_a, pos_b))

    def _calculate_error(self, pair: EdgeCollapse):
        """Classify ``pair`` and compute its merge position and error."""
        assert self._check_pair(pair)

        mesh = self._mesh
        node_a = mesh.position_to_node[pair.pos_a]
        node_b = mesh.position_to_node[pair.pos_b]

        edge_type = mesh.get_edge_type(node_a, node_b)

        p1_border = p2_border = None
        if edge_type.is_border:
            p1_border = mesh.positions[mesh.nodes[edge_type.border_node_a].position]
            p2_border = mesh.positions[mesh.nodes[edge_type.border_node_b].position]

        result, error = self.qem.compute_edge_collapse(
            edge_type,
            self._quadrics[pair.pos_a],
            self._quadrics[pair.pos_b],
            mesh.positions[pair.pos_a].copy(),
            mesh.positions[pair.pos_b].copy(),
            p1_border,
            p2_border
        )

        pair.edge_type = edge_type
        pair.result = result
        pair.error = error

    def _interpolate_attributes(self, pair: EdgeCollapse):
        """
        Blend the attributes on both sides of the collapsed edge.

        Each side is weighted by its distance to the merge position, A by
        ``dA / (dA + dB)`` (0 when both distances are 0). Both attribute
        instances receive the blended value.
        """
        mesh = self._mesh
        node_a = mesh.position_to_node[pair.pos_a]

        distance_a = float(np.linalg.norm(mesh.positions[pair.pos_a] - pair.result))
        distance_b = float(np.linalg.norm(mesh.positions[pair.pos_b] - pair.result))
        ratio = _divide_safe(distance_a, distance_a + distance_b)

        for sibling, relative in mesh.iter_neighbors(node_a):
            if mesh.nodes[relative].position != pair.pos_b:
                continue

            attr_a = mesh.nodes[sibling].attribute
            attr_b = mesh.nodes[relative].attribute

            normal = _normalized(ratio * mesh.normals[attr_a] + (1 - ratio) * mesh.normals[attr_b])
            uv = ratio * mesh.uvs[attr_a] + (1 - ratio) * mesh.uvs[attr_b]

            mesh.normals[attr_a] = normal
            mesh.normals[attr_b] = normal
            mesh.uvs[attr_a] = uv
            mesh.uvs[attr_b] = uv

    def _merge_attributes(self, node_index: int):
        """Share one attribute id among corners of a position with equal attributes."""
        mesh = self._mesh
        tolerance = self.config.attribute_tolerance
        representatives: List[int] = []

        for sibling in mesh.iter_siblings(node_index):
            attribute = mesh.nodes[sibling].attribute
            for representative in representatives:
                if representative == attribute or (
                        np.all(np.abs(mesh.normals[representative] - mesh.normals[attribute]) <= tolerance)
                        and np.all(np.abs(mesh.uvs[representative] - mesh.uvs[attribute]) <= tolerance)):
                    mesh.nodes[sibling].attribute = representative
                    break
            else:
                representatives.append(attribute)

    def _collapse_edge(self, pair: EdgeCollapse):
        mesh = self._mesh
        pos_a, pos_b = pair.pos_a, pair.pos_b
        node_a = mesh.position_to_node[pos_a]
        node_b = mesh.position_to_node[pos_b]

        # Drop every candidate around A and B
        for node_index, position in ((node_a, pos_a), (node_b, pos_b)):
            for _, relative in mesh.iter_neighbors(node_index):
                self._candidates.remove(position, mesh.nodes[relative].position)

        self._interpolate_attributes(pair)

        valid_node = mesh.collapse_edge(node_a, node_b)

        # A disconnected triangle was collapsed, nothing left to register
        if valid_node == NOT_FOUND:
            return

        mesh.positions[pos_a] = pair.result
        self._quadrics[pos_a] = self.qem.compute_position_quadric(mesh, pos_a)
        self._quadrics[pos_b] = None

        self._merge_attributes(valid_node)

        for _, relative in mesh.iter_neighbors(valid_node):
            pos_c = mesh.nodes[relative].position
            if (pos_a, pos_c) in self._candidates:
                continue

            self._quadrics[pos_c] = self.qem.compute_position_quadric(mesh, pos_c)

            candidate = EdgeCollapse(pos_a, pos_c)
            self._calculate_error(candidate)
            self._candidates.add(candidate)
            self._candidates.insert_in_window(candidate)

    def _check_pair(self, pair: EdgeCollapse) -> bool:
        position_to_node = self._mesh.position_to_node
        if pair.pos_a == pair.pos_b:
            return False
        for position in (pair.pos_a, pair.pos_b):
            node_index = position_to_node[position]
            if node_index == NOT_FOUND or self._mesh.nodes[node_index].is_removed:
                return False
        return True

    def _report_progress(self, target: int, progress_callback: Optional[ProgressCallback]):
        total = self._initial_face_count - target
        if total <= 0:
            return
        progress = int(round(100 * (self._initial_face_count - self._mesh.face_count) / total))
        if progress <= self._last_progress:
            return
        if progress // 10 > self._last_progress // 10:
            logger.debug(f"Progress: {progress}%")
        self._last_progress = progress
        if progress_callback is not None:
            progress_callback(min(progress, 100))

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def mesh(self) -> Optional[ConnectedMesh]:
        return self._mesh

    @property
    def candidates(self) -> CandidateStore:
        return self._candidates

    @property
    def initial_face_count(self) -> int:
        return self._initial_face_count

    def get_collapse_history(self) -> List[CollapseRecord]:
        """Get the history of edge collapses performed (needs ``record_history``)."""
        return list(self._collapse_history)

    def get_position_errors(self) -> np.ndarray:
        """
        Compute the quadric error at each position of the current mesh.

        Positions without live corners get NaN. Useful for error
        visualization after decimation.
        """
        if self._mesh is None:
            raise DecimationError("Decimator has not been run")
        if len(self._quadrics) != len(self._mesh.positions):
            raise DecimationError("Mesh was compacted or welded since the last run")

        errors = np.full(len(self._mesh.positions), np.nan)
        for position, quadric in enumerate(self._quadrics):
            if quadric is not None and self._mesh.position_to_node[position] != NOT_FOUND:
                errors[position] = self.qem.compute_error(quadric, self._mesh.positions[position])
        return errors
