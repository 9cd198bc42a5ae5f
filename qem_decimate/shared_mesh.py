"""
Shared Mesh
===========

Flat, index-based triangle mesh used to exchange data with importers,
exporters and primitive generators.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
import trimesh


@dataclass
class SharedMesh:
    """
    Indexed triangle mesh.

    Attributes:
        vertices: (N, 3) array of vertex positions
        triangles: Flat array of vertex indices, three per triangle
        normals: Optional (N, 3) array of per-vertex normals
        uvs: Optional (N, 2) array of per-vertex texture coordinates
    """
    vertices: np.ndarray
    triangles: np.ndarray
    normals: Optional[np.ndarray] = None
    uvs: Optional[np.ndarray] = None

    def __post_init__(self):
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        self.triangles = np.asarray(self.triangles, dtype=np.int64).ravel()
        if self.normals is not None:
            self.normals = np.asarray(self.normals, dtype=np.float64).reshape(-1, 3)
        if self.uvs is not None:
            self.uvs = np.asarray(self.uvs, dtype=np.float64).reshape(-1, 2)

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def face_count(self) -> int:
        return len(self.triangles) // 3

    @property
    def faces(self) -> np.ndarray:
        """Triangles as an (M, 3) array."""
        return self.triangles.reshape(-1, 3)

    def check_lengths(self) -> bool:
        """Check that attribute arrays match the vertex count."""
        if self.normals is not None and len(self.normals) != len(self.vertices):
            return False
        if self.uvs is not None and len(self.uvs) != len(self.vertices):
            return False
        return True

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh,
                     with_normals: bool = True) -> "SharedMesh":
        """
        Convert a trimesh object.

        Vertex normals are taken from trimesh (computed from faces when the
        file had none). Texture coordinates are kept when the mesh carries
        texture visuals.
        """
        normals = np.array(mesh.vertex_normals) if with_normals and len(mesh.faces) else None

        uvs = None
        visual = getattr(mesh, 'visual', None)
        uv = getattr(visual, 'uv', None) if visual is not None else None
        if uv is not None and len(uv) == len(mesh.vertices):
            uvs = np.array(uv)

        return cls(
            vertices=np.array(mesh.vertices),
            triangles=np.array(mesh.faces),
            normals=normals,
            uvs=uvs
        )

    def to_trimesh(self) -> trimesh.Trimesh:
        """Convert to a trimesh object without merging or reordering vertices."""
        kwargs = {}
        if self.normals is not None:
            kwargs['vertex_normals'] = self.normals
        if self.uvs is not None:
            kwargs['visual'] = trimesh.visual.TextureVisuals(uv=self.uvs)

        faces = self.faces if len(self.triangles) else np.zeros((0, 3), dtype=np.int64)
        return trimesh.Trimesh(vertices=self.vertices, faces=faces,
                               process=False, **kwargs)
