"""
Connected Mesh
==============

Corner based triangle mesh topology used by the decimator.

Every triangle corner is a ``Node`` holding a position id, an attribute
id and two links:

- ``relative``: the next corner of the same face (a 3-cycle per face)
- ``sibling``: the next corner sharing the same position (a ring)

Removed corners are tombstoned by setting their position to ``REMOVED``
and stay in the node arena until ``compact()`` is called.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from .edge_types import EdgeKind, EdgeType
from .exceptions import MeshBuildError
from .shared_mesh import SharedMesh

logger = logging.getLogger("qem_decimate.connected_mesh")

REMOVED = -10
NOT_FOUND = -1


@dataclass
class Node:
    """One triangle corner."""
    position: int
    attribute: int
    relative: int = NOT_FOUND
    sibling: int = NOT_FOUND

    def mark_removed(self):
        self.position = REMOVED

    @property
    def is_removed(self) -> bool:
        return self.position == REMOVED


class ConnectedMesh:
    """
    Triangle mesh stored as an arena of linked corners.

    Positions and attributes live in dense numpy arrays. Corners sharing a
    position may point to different attributes, which is how normal and
    uv seams are represented.
    """

    def __init__(self, positions: np.ndarray, normals: np.ndarray,
                 uvs: np.ndarray, nodes: List[Node], face_count: int,
                 has_normals: bool = False, has_uvs: bool = False):
        self.positions = positions
        self.normals = normals
        self.uvs = uvs
        self.nodes = nodes
        self.has_normals = has_normals
        self.has_uvs = has_uvs
        self._face_count = face_count
        self._position_to_node: Optional[List[int]] = None
        self._attribute_to_node: Optional[List[int]] = None

    # ------------------------------------------------------------------
    # Construction and export
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, mesh: SharedMesh) -> "ConnectedMesh":
        """
        Build the connected representation of an indexed triangle mesh.

        Each input vertex becomes both a position and an attribute, so
        seams only appear once coincident positions are welded with
        ``merge_positions``.

        Args:
            mesh: Input shared mesh

        Returns:
            New connected mesh

        Raises:
            MeshBuildError: If the triangle list or attribute arrays are
                inconsistent with the vertex array.
        """
        vertices = np.asarray(mesh.vertices, dtype=np.float64)
        triangles = np.asarray(mesh.triangles, dtype=np.int64).ravel()
        n_vertices = len(vertices)

        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise MeshBuildError(f"Vertices must be Nx3, got shape {vertices.shape}")
        if len(triangles) % 3 != 0:
            raise MeshBuildError(
                f"Triangle index count must be a multiple of 3, got {len(triangles)}")
        if not mesh.check_lengths():
            raise MeshBuildError("Attribute arrays must have one entry per vertex")
        if len(triangles):
            lowest, highest = int(triangles.min()), int(triangles.max())
            if lowest < 0 or highest >= n_vertices:
                bad = lowest if lowest < 0 else highest
                raise MeshBuildError(
                    f"Triangle index {bad} out of range for {n_vertices} vertices")

        normals = np.zeros((n_vertices, 3))
        uvs = np.zeros((n_vertices, 2))
        if mesh.normals is not None:
            normals[:] = mesh.normals
        if mesh.uvs is not None:
            uvs[:] = mesh.uvs

        nodes: List[Node] = []
        position_nodes: Dict[int, List[int]] = {}
        face_count = 0
        skipped = 0

        for a, b, c in triangles.reshape(-1, 3).tolist():
            if a == b or b == c or a == c:
                skipped += 1
                continue

            first = len(nodes)
            nodes.append(Node(position=a, attribute=a, relative=first + 1))
            nodes.append(Node(position=b, attribute=b, relative=first + 2))
            nodes.append(Node(position=c, attribute=c, relative=first))

            for offset, position in enumerate((a, b, c)):
                position_nodes.setdefault(position, []).append(first + offset)

            face_count += 1

        if skipped:
            logger.warning(f"Skipped {skipped} degenerate triangle(s) while building mesh")

        for ring in position_nodes.values():
            # Each corner links to the previous one, the first closes the ring
            for previous, current in zip(ring, ring[1:]):
                nodes[current].sibling = previous
            nodes[ring[0]].sibling = ring[-1]

        connected = cls(
            positions=vertices.copy(),
            normals=normals,
            uvs=uvs,
            nodes=nodes,
            face_count=face_count,
            has_normals=mesh.normals is not None,
            has_uvs=mesh.uvs is not None
        )

        assert connected.check(), "Built mesh is inconsistent"
        logger.debug(f"Built connected mesh: {n_vertices} positions, {face_count} faces")

        return connected

    def to_shared_mesh(self) -> SharedMesh:
        """
        Flatten live faces into an indexed mesh.

        One output vertex is emitted per distinct (position, attribute)
        pair in use.
        """
        vertex_data: Dict[Tuple[int, int], int] = {}
        triangles: List[int] = []

        for face in self.iter_faces():
            for corner in self.iter_relatives(face):
                node = self.nodes[corner]
                key = (node.position, node.attribute)
                index = vertex_data.setdefault(key, len(vertex_data))
                triangles.append(index)

        keys = list(vertex_data)
        position_ids = np.array([k[0] for k in keys], dtype=np.int64)
        attribute_ids = np.array([k[1] for k in keys], dtype=np.int64)

        normals = self.normals[attribute_ids] if self.has_normals else None
        uvs = self.uvs[attribute_ids] if self.has_uvs else None

        return SharedMesh(
            vertices=self.positions[position_ids],
            triangles=np.array(triangles, dtype=np.int64),
            normals=normals,
            uvs=uvs
        )

    # ------------------------------------------------------------------
    # Counts and lookups
    # ------------------------------------------------------------------

    @property
    def face_count(self) -> int:
        return self._face_count

    @property
    def position_to_node(self) -> List[int]:
        """Position id -> one live corner at that position, or ``NOT_FOUND``."""
        if self._position_to_node is None:
            self._position_to_node = self._build_position_to_node()
        return self._position_to_node

    @property
    def attribute_to_node(self) -> List[int]:
        """Attribute id -> one live corner using that attribute, or ``NOT_FOUND``."""
        if self._attribute_to_node is None:
            self._attribute_to_node = self._build_attribute_to_node()
        return self._attribute_to_node

    def _build_position_to_node(self) -> List[int]:
        mapping = [NOT_FOUND] * len(self.positions)
        for i, node in enumerate(self.nodes):
            if not node.is_removed:
                mapping[node.position] = i
        return mapping

    def _build_attribute_to_node(self) -> List[int]:
        mapping = [NOT_FOUND] * len(self.normals)
        for i, node in enumerate(self.nodes):
            if not node.is_removed:
                mapping[node.attribute] = i
        return mapping

    def invalidate_mappings(self):
        self._position_to_node = None
        self._attribute_to_node = None

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def iter_siblings(self, node_index: int) -> Iterator[int]:
        """Iterate the corners sharing a position, starting at ``node_index``."""
        sibling = node_index
        while True:
            yield sibling
            sibling = self.nodes[sibling].sibling
            if sibling == node_index:
                return

    def iter_relatives(self, node_index: int) -> Iterator[int]:
        """Iterate the corners of a face, starting at ``node_index``."""
        relative = node_index
        while True:
            yield relative
            relative = self.nodes[relative].relative
            if relative == node_index:
                return

    def iter_faces(self) -> Iterator[int]:
        """Iterate one corner per live face."""
        browsed = set()
        for i, node in enumerate(self.nodes):
            if node.is_removed or i in browsed:
                continue
            browsed.update(self.iter_relatives(i))
            yield i

    def iter_neighbors(self, node_index: int) -> Iterator[Tuple[int, int]]:
        """
        Iterate the other corners of every face around a position.

        Yields:
            (sibling, relative) pairs where ``sibling`` is a corner of the
            position and ``relative`` another corner of the same face.
        """
        for sibling in self.iter_siblings(node_index):
            relative = self.nodes[sibling].relative
            while relative != sibling:
                yield sibling, relative
                relative = self.nodes[relative].relative

    def are_nodes_siblings(self, node_a: int, node_b: int) -> bool:
        return self.nodes[node_a].position == self.nodes[node_b].position

    def get_relatives_count(self, node_index: int) -> int:
        return sum(1 for _ in self.iter_relatives(node_index)) - 1

    def get_siblings_count(self, node_index: int) -> int:
        return sum(1 for _ in self.iter_siblings(node_index)) - 1

    def get_edge_count(self, node_index: int) -> int:
        return self.get_relatives_count(node_index) + 1

    def get_face_positions(self, node_index: int) -> Tuple[int, int, int]:
        second = self.nodes[node_index].relative
        third = self.nodes[second].relative
        return (self.nodes[node_index].position,
                self.nodes[second].position,
                self.nodes[third].position)

    def get_face_normal(self, node_index: int) -> np.ndarray:
        """Unnormalized normal of the face owning ``node_index``."""
        a, b, c = self.get_face_positions(node_index)
        return np.cross(self.positions[b] - self.positions[a],
                        self.positions[c] - self.positions[a])

    def get_face_area(self, node_index: int) -> float:
        return 0.5 * float(np.linalg.norm(self.get_face_normal(node_index)))

    # ------------------------------------------------------------------
    # Edge classification
    # ------------------------------------------------------------------

    def is_edge_in_surface(self, node_a: int, node_b: int) -> bool:
        """True when exactly two live faces share the edge."""
        pos_b = self.nodes[node_b].position
        faces_attached = 0
        for _, relative in self.iter_neighbors(node_a):
            if self.nodes[relative].position == pos_b:
                faces_attached += 1
        return faces_attached == 2

    def is_edge_hard(self, node_a: int, node_b: int) -> bool:
        """True when the attribute changes across the edge at both ends."""
        pos_b = self.nodes[node_b].position
        attr_at_a = attr_at_b = NOT_FOUND
        hard_at_a = hard_at_b = False

        for sibling, relative in self.iter_neighbors(node_a):
            if self.nodes[relative].position != pos_b:
                continue
            if attr_at_b != NOT_FOUND and attr_at_b != self.nodes[relative].attribute:
                hard_at_b = True
            attr_at_b = self.nodes[relative].attribute
            if attr_at_a != NOT_FOUND and attr_at_a != self.nodes[sibling].attribute:
                hard_at_a = True
            attr_at_a = self.nodes[sibling].attribute

        return hard_at_a and hard_at_b

    def _endpoint_state(self, node_index: int, other_position: int) -> Tuple[int, bool]:
        """
        Find the border neighbor and hardness of one edge endpoint.

        Returns:
            (border_node, is_hard); ``border_node`` is ``NOT_FOUND`` when
            the endpoint is not on a border. Hardness is only meaningful
            for non-border endpoints.
        """
        hard = False
        attribute = NOT_FOUND
        for sibling in self.iter_siblings(node_index):
            relative = self.nodes[sibling].relative
            while relative != sibling:
                if (self.nodes[relative].position != other_position
                        and not self.is_edge_in_surface(sibling, relative)):
                    return relative, hard
                relative = self.nodes[relative].relative
            if attribute != NOT_FOUND and self.nodes[sibling].attribute != attribute:
                hard = True
            attribute = self.nodes[sibling].attribute
        return NOT_FOUND, hard

    def get_edge_type(self, node_a: int, node_b: int) -> EdgeType:
        """
        Classify the edge between the positions of two corners.

        Args:
            node_a: Corner at the first endpoint
            node_b: Corner at the second endpoint

        Returns:
            Edge classification relative to (A, B)
        """
        pos_a = self.nodes[node_a].position
        pos_b = self.nodes[node_b].position

        border_a, hard_a = self._endpoint_state(node_a, pos_b)
        border_b, hard_b = self._endpoint_state(node_b, pos_a)

        if not self.is_edge_in_surface(node_a, node_b):
            if border_a == NOT_FOUND or border_b == NOT_FOUND:
                return EdgeType(EdgeKind.UNKNOWN)
            return EdgeType(EdgeKind.BORDER_AB, border_a, border_b)

        if border_a != NOT_FOUND and border_b != NOT_FOUND:
            return EdgeType(EdgeKind.SURFACIC_BORDER_AB)
        if border_a != NOT_FOUND:
            return EdgeType(EdgeKind.SURFACIC_BORDER_A_HARD_B if hard_b
                            else EdgeKind.SURFACIC_BORDER_A)
        if border_b != NOT_FOUND:
            return EdgeType(EdgeKind.SURFACIC_BORDER_B_HARD_A if hard_a
                            else EdgeKind.SURFACIC_BORDER_B)
        if hard_a and hard_b:
            if self.is_edge_hard(node_a, node_b):
                return EdgeType(EdgeKind.SURFACIC_HARD_EDGE)
            return EdgeType(EdgeKind.SURFACIC_HARD_AB)
        if hard_a:
            return EdgeType(EdgeKind.SURFACIC_HARD_A)
        if hard_b:
            return EdgeType(EdgeKind.SURFACIC_HARD_B)
        return EdgeType(EdgeKind.SURFACIC)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def reconnect_siblings(self, node_index: int, *others: int,
                           position: Optional[int] = None) -> int:
        """
        Relink the rings starting at the given corners, skipping removed ones.

        Several rings are merged into a single one. Every live corner is
        relabeled to ``position`` (default: the first live corner's
        position).

        Returns:
            First live corner of the resulting ring, or ``NOT_FOUND`` if
            every corner was removed.
        """
        corners: List[int] = []
        for start in (node_index,) + others:
            corners.extend(s for s in self.iter_siblings(start)
                           if not self.nodes[s].is_removed)

        if not corners:
            return NOT_FOUND

        if position is None:
            position = self.nodes[corners[0]].position

        for current, following in zip(corners, corners[1:] + corners[:1]):
            self.nodes[current].sibling = following
            self.nodes[current].position = position

        return corners[0]

    def collapse_edge(self, node_a: int, node_b: int) -> int:
        """
        Merge the position of ``node_b`` into the position of ``node_a``.

        Faces using both positions are removed and the rings at their third
        corner are relinked. The rings of A and B are merged and relabeled
        to A. Positions themselves are not moved.

        Returns:
            A live corner at A, or ``NOT_FOUND`` when nothing survives.
        """
        pos_a = self.nodes[node_a].position
        pos_b = self.nodes[node_b].position

        assert pos_a != pos_b, "A and B must have different positions"
        assert not self.nodes[node_a].is_removed
        assert not self.nodes[node_b].is_removed
        assert self.check_relatives(node_a) and self.check_relatives(node_b)
        assert self.check_siblings(node_a) and self.check_siblings(node_b)

        for sibling in list(self.iter_siblings(node_a)):
            touched = False
            node_c = NOT_FOUND
            for relative in self.iter_relatives(sibling):
                pos_c = self.nodes[relative].position
                if pos_c == pos_b:
                    touched = True
                elif pos_c != pos_a:
                    node_c = relative

            if not touched:
                continue

            pos_c = self.nodes[node_c].position
            for relative in list(self.iter_relatives(sibling)):
                self.nodes[relative].mark_removed()

            valid_at_c = self.reconnect_siblings(node_c)
            if self._position_to_node is not None:
                self._position_to_node[pos_c] = valid_at_c

            self._face_count -= 1

        valid_at_a = self.reconnect_siblings(node_a, node_b, position=pos_a)

        if self._position_to_node is not None:
            self._position_to_node[pos_a] = valid_at_a
            self._position_to_node[pos_b] = NOT_FOUND
        self._attribute_to_node = None

        return valid_at_a

    def remove_face(self, node_index: int):
        """Tombstone the face owning ``node_index`` and relink the rings."""
        for relative in list(self.iter_relatives(node_index)):
            self.nodes[relative].mark_removed()
            self.reconnect_siblings(relative)
        self._face_count -= 1
        self.invalidate_mappings()

    def compact(self):
        """
        Drop removed corners and unused positions/attributes.

        Renumbers corners, positions and attributes contiguously and
        remaps every cross reference in a single pass.
        """
        position_to_node = self.position_to_node
        attribute_to_node = self.attribute_to_node

        node_map: Dict[int, int] = {}
        for i, node in enumerate(self.nodes):
            if not node.is_removed:
                node_map[i] = len(node_map)

        kept_positions = [p for p, n in enumerate(position_to_node) if n != NOT_FOUND]
        kept_attributes = [a for a, n in enumerate(attribute_to_node) if n != NOT_FOUND]
        position_map = {old: new for new, old in enumerate(kept_positions)}
        attribute_map = {old: new for new, old in enumerate(kept_attributes)}

        nodes = []
        for i, node in enumerate(self.nodes):
            if node.is_removed:
                continue
            nodes.append(Node(
                position=position_map[node.position],
                attribute=attribute_map[node.attribute],
                relative=node_map[node.relative],
                sibling=node_map[node.sibling]
            ))

        self.nodes = nodes
        self.positions = self.positions[np.array(kept_positions, dtype=np.int64)]
        attribute_ids = np.array(kept_attributes, dtype=np.int64)
        self.normals = self.normals[attribute_ids]
        self.uvs = self.uvs[attribute_ids]

        self.invalidate_mappings()
        logger.debug(f"Compacted mesh: {len(nodes)} nodes, {len(kept_positions)} positions, "
                     f"{len(kept_attributes)} attributes")

    def merge_positions(self, tolerance: float = 0.01):
        """
        Weld positions closer than ``tolerance``.

        Clusters are formed from all position pairs within the tolerance;
        each cluster keeps the coordinates of its lowest position id. Rings
        are rebuilt and faces that collapse to fewer than three distinct
        positions are removed. Attributes are left untouched, so welded
        vertices with different normals or uvs become seams.

        Args:
            tolerance: Maximum distance between welded positions
        """
        n_positions = len(self.positions)
        parent = list(range(n_positions))

        def find(i):
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        if n_positions > 1 and tolerance > 0:
            tree = cKDTree(self.positions)
            for i, j in tree.query_pairs(r=tolerance, output_type='ndarray').tolist():
                root_i, root_j = find(i), find(j)
                if root_i != root_j:
                    parent[max(root_i, root_j)] = min(root_i, root_j)

        roots = [find(i) for i in range(n_positions)]
        unique_roots = sorted(set(roots))
        root_index = {root: new for new, root in enumerate(unique_roots)}

        self.positions = self.positions[np.array(unique_roots, dtype=np.int64)] \
            if unique_roots else np.zeros((0, 3))

        rings: Dict[int, List[int]] = {}
        for i, node in enumerate(self.nodes):
            if node.is_removed:
                continue
            node.position = root_index[roots[node.position]]
            rings.setdefault(node.position, []).append(i)

        for ring in rings.values():
            for current, following in zip(ring, ring[1:] + ring[:1]):
                self.nodes[current].sibling = following

        self.invalidate_mappings()

        removed = 0
        for i, node in enumerate(self.nodes):
            if node.is_removed:
                continue
            if len(set(self.get_face_positions(i))) < 3:
                self.remove_face(i)
                removed += 1

        logger.info(f"Merged {n_positions} positions into {len(unique_roots)}, "
                    f"removed {removed} degenerate face(s)")

    def scale(self, factor: float):
        self.positions = self.positions * factor

    # ------------------------------------------------------------------
    # Invariant checks
    # ------------------------------------------------------------------

    def check_relatives(self, node_index: int) -> bool:
        """Check that the face of ``node_index`` is a live 3-cycle."""
        relative = node_index
        for _ in range(3):
            if self.nodes[relative].is_removed:
                return False
            relative = self.nodes[relative].relative
        return relative == node_index

    def check_siblings(self, node_index: int) -> bool:
        """Check that the ring of ``node_index`` closes over live corners of one position."""
        position = self.nodes[node_index].position
        sibling = node_index
        for _ in range(len(self.nodes)):
            node = self.nodes[sibling]
            if node.is_removed or node.position != position:
                return False
            sibling = node.sibling
            if sibling == node_index:
                return True
        return False

    def check(self) -> bool:
        """Check every topology invariant of the mesh."""
        live_nodes = 0
        for i, node in enumerate(self.nodes):
            if node.is_removed:
                continue
            if not (0 <= node.position < len(self.positions)):
                return False
            if not (0 <= node.attribute < len(self.normals)):
                return False
            if not self.check_relatives(i) or not self.check_siblings(i):
                return False
            live_nodes += 1

        if live_nodes != 3 * self._face_count:
            return False

        if self._position_to_node is not None:
            for position, node_index in enumerate(self._position_to_node):
                if node_index == NOT_FOUND:
                    continue
                if self.nodes[node_index].position != position:
                    return False

        return True

    def __repr__(self) -> str:
        return (f"ConnectedMesh(positions={len(self.positions)}, "
                f"nodes={len(self.nodes)}, faces={self._face_count})")
