"""
Mesh Evaluation Module
======================

Quantitative evaluation of a simplification result:
- Hausdorff distance
- Chamfer distance
- Vertex/Face count statistics
- Boundary preservation
"""

from typing import Dict, Tuple, Union

import numpy as np
import trimesh
from scipy.spatial import cKDTree

from .shared_mesh import SharedMesh

MeshLike = Union[trimesh.Trimesh, SharedMesh]


def _as_trimesh(mesh: MeshLike) -> trimesh.Trimesh:
    return mesh.to_trimesh() if isinstance(mesh, SharedMesh) else mesh


class MeshEvaluator:
    """
    Evaluation tools for assessing mesh simplification quality.

    Surface distances are estimated from points sampled on both meshes.
    """

    def __init__(self, sample_points: int = 10000, seed: int = 0):
        """
        Initialize evaluator.

        Args:
            sample_points: Number of points to sample for distance metrics
            seed: Seed of the surface sampler, for repeatable reports
        """
        self.sample_points = sample_points
        self.seed = seed

    def _sample(self, mesh: trimesh.Trimesh) -> np.ndarray:
        if len(mesh.faces) == 0:
            return np.array(mesh.vertices)
        points, _ = trimesh.sample.sample_surface(mesh, self.sample_points, seed=self.seed)
        return points

    def compute_all_metrics(self, original: MeshLike,
                            simplified: MeshLike) -> Dict[str, float]:
        """
        Compute all available metrics.

        Args:
            original: Original high-resolution mesh
            simplified: Simplified mesh

        Returns:
            Dictionary of metric names to values
        """
        original = _as_trimesh(original)
        simplified = _as_trimesh(simplified)

        metrics = {
            'original_faces': len(original.faces),
            'simplified_faces': len(simplified.faces),
            'original_vertices': len(original.vertices),
            'simplified_vertices': len(simplified.vertices),
            'face_reduction_ratio': len(simplified.faces) / max(len(original.faces), 1),
        }

        hausdorff, forward, backward = self.hausdorff_distance(original, simplified)
        metrics['hausdorff_distance'] = hausdorff
        metrics['hausdorff_forward'] = forward
        metrics['hausdorff_backward'] = backward
        metrics['chamfer_distance'] = self.chamfer_distance(original, simplified)

        metrics['original_area'] = float(original.area)
        metrics['simplified_area'] = float(simplified.area)
        metrics['area_error'] = abs(metrics['simplified_area'] - metrics['original_area']) / \
            max(metrics['original_area'], 1e-10)

        metrics['original_boundary_edges'] = self.count_boundary_edges(original)
        metrics['simplified_boundary_edges'] = self.count_boundary_edges(simplified)

        return metrics

    def hausdorff_distance(self, mesh1: trimesh.Trimesh,
                           mesh2: trimesh.Trimesh) -> Tuple[float, float, float]:
        """
        Compute symmetric Hausdorff distance between two meshes.

        Returns:
            Tuple of (symmetric_hausdorff, forward, backward) distances
        """
        points1 = self._sample(mesh1)
        points2 = self._sample(mesh2)

        distances_forward, _ = cKDTree(points2).query(points1)
        distances_backward, _ = cKDTree(points1).query(points2)

        forward = float(np.max(distances_forward))
        backward = float(np.max(distances_backward))

        return max(forward, backward), forward, backward

    def chamfer_distance(self, mesh1: trimesh.Trimesh,
                         mesh2: trimesh.Trimesh) -> float:
        """Symmetric Chamfer distance (sum of mean squared nearest distances)."""
        points1 = self._sample(mesh1)
        points2 = self._sample(mesh2)

        distances_forward, _ = cKDTree(points2).query(points1)
        distances_backward, _ = cKDTree(points1).query(points2)

        return float(np.mean(distances_forward ** 2) + np.mean(distances_backward ** 2))

    @staticmethod
    def count_boundary_edges(mesh: trimesh.Trimesh) -> int:
        if len(mesh.faces) == 0:
            return 0
        _, counts = np.unique(np.sort(mesh.edges, axis=1), axis=0, return_counts=True)
        return int(np.sum(counts == 1))

    def generate_report(self, metrics: Dict[str, float],
                        method_name: str = "QEM") -> str:
        """
        Generate a human-readable evaluation report.

        Args:
            metrics: Dictionary of metric values
            method_name: Name of the simplification run

        Returns:
            Formatted report string
        """
        lines = [
            "=" * 60,
            f"Mesh Simplification Report - {method_name}",
            "=" * 60,
            "",
            "MESH STATISTICS",
            "-" * 40,
            f"  Original:    {metrics.get('original_faces', 'N/A'):>8} faces, "
            f"{metrics.get('original_vertices', 'N/A'):>8} vertices",
            f"  Simplified:  {metrics.get('simplified_faces', 'N/A'):>8} faces, "
            f"{metrics.get('simplified_vertices', 'N/A'):>8} vertices",
            f"  Reduction:   {metrics.get('face_reduction_ratio', 0)*100:>7.2f}% of original faces",
            "",
            "GEOMETRIC ACCURACY",
            "-" * 40,
            f"  Hausdorff Distance:    {metrics.get('hausdorff_distance', np.nan):>12.6f}",
            f"    Forward:             {metrics.get('hausdorff_forward', np.nan):>12.6f}",
            f"    Backward:            {metrics.get('hausdorff_backward', np.nan):>12.6f}",
            f"  Chamfer Distance:      {metrics.get('chamfer_distance', np.nan):>12.6f}",
            f"  Area Error:            {metrics.get('area_error', 0)*100:>11.4f}%",
            "",
            "BOUNDARY PRESERVATION",
            "-" * 40,
            f"  Original Boundaries:   {metrics.get('original_boundary_edges', 0):>8} edges",
            f"  Simplified Boundaries: {metrics.get('simplified_boundary_edges', 0):>8} edges",
        ]

        if 'runtime' in metrics:
            lines.append(f"  Runtime:               {metrics['runtime']:>11.4f} seconds")

        lines.append("=" * 60)
        return "\n".join(lines)
