"""
Utility Functions
=================

Mesh loading/saving and sample mesh creation utilities.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import trimesh

from .shared_mesh import SharedMesh

logger = logging.getLogger("qem_decimate.utils")


def load_mesh(path: Union[str, Path]) -> trimesh.Trimesh:
    """
    Load a mesh from file.

    Supports: OBJ, PLY, STL, OFF, GLB and other formats supported by trimesh.

    Args:
        path: Path to mesh file

    Returns:
        Loaded trimesh object
    """
    mesh = trimesh.load(str(path), force='mesh')

    if isinstance(mesh, trimesh.Scene):
        # Convert scene to single mesh
        meshes = [g for g in mesh.geometry.values() if isinstance(g, trimesh.Trimesh)]
        if not meshes:
            raise ValueError(f"No valid meshes found in {path}")
        mesh = trimesh.util.concatenate(meshes)

    logger.info(f"Loaded {path}: {len(mesh.vertices)} vertices, {len(mesh.faces)} faces")
    return mesh


def save_mesh(mesh: Union[trimesh.Trimesh, SharedMesh], path: Union[str, Path]):
    """
    Save a mesh to file.

    Args:
        mesh: Mesh to save
        path: Output path, the format follows the extension
    """
    if isinstance(mesh, SharedMesh):
        mesh = mesh.to_trimesh()
    mesh.export(str(path))
    logger.info(f"Saved mesh to: {path}")


def create_icosphere(subdivisions: int = 3, radius: float = 1.0) -> SharedMesh:
    """
    Create an icosphere with ``20 * 4 ** subdivisions`` faces.

    Normals point outward from the center.
    """
    sphere = trimesh.creation.icosphere(subdivisions=subdivisions, radius=radius)
    vertices = np.array(sphere.vertices)
    normals = vertices / np.linalg.norm(vertices, axis=1, keepdims=True)
    return SharedMesh(vertices=vertices, triangles=np.array(sphere.faces), normals=normals)


def create_plane(rows: int = 10, cols: int = 10, size: float = 1.0,
                 noise: float = 0.0, seed: Optional[int] = None) -> SharedMesh:
    """
    Create a flat grid in the XY plane, an open surface with a border.

    Args:
        rows: Number of vertex rows
        cols: Number of vertex columns
        size: Edge length of the square
        noise: Standard deviation of random Z displacement
        seed: Seed for the displacement

    Returns:
        Grid mesh with ``2 * (rows - 1) * (cols - 1)`` faces and uvs
    """
    if rows < 2 or cols < 2:
        raise ValueError("A plane needs at least 2 rows and 2 columns")

    x = np.linspace(0, size, cols)
    y = np.linspace(0, size, rows)
    X, Y = np.meshgrid(x, y)
    Z = np.zeros_like(X)

    if noise > 0:
        rng = np.random.default_rng(seed)
        Z = rng.normal(scale=noise, size=X.shape)

    vertices = np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])
    uvs = np.column_stack([X.ravel() / size, Y.ravel() / size])
    normals = np.tile([0.0, 0.0, 1.0], (len(vertices), 1))

    faces = []
    for i in range(rows - 1):
        for j in range(cols - 1):
            idx = i * cols + j
            faces.append([idx, idx + 1, idx + cols])
            faces.append([idx + 1, idx + cols + 1, idx + cols])

    return SharedMesh(vertices=vertices, triangles=np.array(faces), normals=normals, uvs=uvs)


def create_seamed_cube(divisions: int = 4, size: float = 1.0) -> SharedMesh:
    """
    Create a cube whose six sides are separate grids with flat normals.

    Vertices along the cube edges are duplicated, one copy per side.
    Welding positions (``ConnectedMesh.merge_positions``) turns those
    duplicates into hard edges.

    Args:
        divisions: Number of quads along each side
        size: Edge length of the cube
    """
    if divisions < 1:
        raise ValueError("divisions must be at least 1")

    half = size / 2
    steps = np.linspace(-half, half, divisions + 1)
    U, V = np.meshgrid(steps, steps)
    u, v = U.ravel(), V.ravel()
    n = divisions + 1

    vertices, normals, faces = [], [], []
    # (normal axis, sign); the two remaining axes are spanned so faces wind outward
    for axis in range(3):
        for sign in (1.0, -1.0):
            a1, a2 = (axis + 1) % 3, (axis + 2) % 3
            side = np.zeros((len(u), 3))
            side[:, axis] = sign * half
            side[:, a1] = u
            side[:, a2] = v if sign > 0 else -v

            normal = np.zeros(3)
            normal[axis] = sign

            offset = sum(len(s) for s in vertices)
            for i in range(divisions):
                for j in range(divisions):
                    idx = offset + i * n + j
                    faces.append([idx, idx + 1, idx + n])
                    faces.append([idx + 1, idx + n + 1, idx + n])

            vertices.append(side)
            normals.append(np.tile(normal, (len(side), 1)))

    return SharedMesh(
        vertices=np.vstack(vertices),
        triangles=np.array(faces),
        normals=np.vstack(normals)
    )


def create_sample_mesh(mesh_type: str = "sphere") -> SharedMesh:
    """
    Create a sample mesh for testing.

    Args:
        mesh_type: Type of mesh to create:
            - "sphere": Icosphere (5120 faces)
            - "plane": Noisy open grid
            - "cube": Cube with hard edges
            - "torus": Torus

    Returns:
        Generated shared mesh
    """
    if mesh_type == "plane":
        mesh = create_plane(rows=40, cols=40, noise=0.01, seed=0)
    elif mesh_type == "cube":
        mesh = create_seamed_cube(divisions=16)
    elif mesh_type == "torus":
        torus = trimesh.creation.torus(major_radius=1.0, minor_radius=0.3,
                                       major_sections=64, minor_sections=32)
        mesh = SharedMesh.from_trimesh(torus)
    else:
        mesh = create_icosphere(subdivisions=4)

    logger.info(f"Created {mesh_type} mesh: {mesh.vertex_count} vertices, "
                f"{mesh.face_count} faces")
    return mesh


def get_mesh_info(mesh: trimesh.Trimesh) -> dict:
    """
    Get information about a mesh.

    Args:
        mesh: Input mesh

    Returns:
        Dictionary of mesh properties
    """
    counts = np.zeros(0, dtype=int)
    if len(mesh.faces):
        _, counts = np.unique(np.sort(mesh.edges, axis=1), axis=0, return_counts=True)

    return {
        'vertices': len(mesh.vertices),
        'faces': len(mesh.faces),
        'edges': len(counts),
        'boundary_edges': int(np.sum(counts == 1)),
        'is_watertight': mesh.is_watertight,
        'euler_number': mesh.euler_number,
        'area': float(mesh.area),
        'volume': float(mesh.volume) if mesh.is_watertight else None,
    }
