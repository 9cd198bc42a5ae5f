"""
QEM Mesh Decimation - Command Line
==================================

Simplifies a mesh using Quadric Error Metrics edge collapse.

The ``qem-decimate`` command:
1. Loads a mesh file or generates a sample mesh
2. Optionally welds nearby positions
3. Decimates to a face count, ratio or error threshold
4. Exports the result and prints quality metrics
"""

import argparse
import logging
import time
from pathlib import Path
from typing import List, Optional

from qem_decimate.config import DecimatorConfig
from qem_decimate.connected_mesh import ConnectedMesh
from qem_decimate.evaluation import MeshEvaluator
from qem_decimate.exceptions import QemDecimateError
from qem_decimate.mesh_decimator import MeshDecimator
from qem_decimate.shared_mesh import SharedMesh
from qem_decimate.utils import create_sample_mesh, load_mesh, save_mesh

logger = logging.getLogger("qem_decimate.cli")


def run_decimation(shared: SharedMesh, args) -> tuple:
    """
    Run one decimation and return the simplified mesh with its runtime.
    """
    config = DecimatorConfig(debug_checks=args.debug_checks)
    decimator = MeshDecimator(config)

    start_time = time.time()

    connected = ConnectedMesh.build(shared)
    if args.merge_tolerance:
        connected.merge_positions(args.merge_tolerance)

    if args.faces is not None:
        decimator.decimate_to_polycount(connected, args.faces, max_error=args.max_error)
    elif args.ratio is not None:
        decimator.decimate_to_ratio(connected, args.ratio, max_error=args.max_error)
    else:
        decimator.decimate_to_error(connected, args.max_error)

    connected.compact()
    simplified = connected.to_shared_mesh()

    return simplified, time.time() - start_time


def main(argv: Optional[List[str]] = None):
    """Command line entry point. Reads ``sys.argv`` when ``argv`` is None."""
    parser = argparse.ArgumentParser(
        description="Mesh decimation using Quadric Error Metrics"
    )
    parser.add_argument(
        "--mesh", "-m", type=str, default=None,
        help="Path to input mesh file. If not provided, uses a sample mesh."
    )
    parser.add_argument(
        "--sample", "-s", type=str, default="sphere",
        choices=["sphere", "plane", "cube", "torus"],
        help="Sample mesh to generate when no mesh is given (default: sphere)"
    )
    parser.add_argument(
        "--output", "-o", type=str, default="output",
        help="Output directory for results"
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        "--ratio", "-r", type=float, default=None,
        help="Target ratio of faces to keep (default: 0.25)"
    )
    target.add_argument(
        "--faces", "-f", type=int, default=None,
        help="Target face count"
    )
    parser.add_argument(
        "--max-error", "-e", type=float, default=None,
        help="Stop once the best collapse error exceeds this value"
    )
    parser.add_argument(
        "--merge-tolerance", "-t", type=float, default=None,
        help="Weld positions closer than this distance before decimating"
    )
    parser.add_argument(
        "--debug-checks", action="store_true",
        help="Verify mesh invariants after every collapse (slow)"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    if args.ratio is None and args.faces is None and args.max_error is None:
        args.ratio = 0.25

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    print("=" * 60)
    print("QEM MESH DECIMATION")
    print("=" * 60)

    if args.mesh:
        original = load_mesh(args.mesh)
        shared = SharedMesh.from_trimesh(original)
        mesh_name = Path(args.mesh).stem
    else:
        shared = create_sample_mesh(args.sample)
        original = shared.to_trimesh()
        mesh_name = f"sample_{args.sample}"

    print(f"\nMesh loaded: {mesh_name}")
    print(f"  Vertices: {shared.vertex_count}")
    print(f"  Faces: {shared.face_count}")

    try:
        simplified, runtime = run_decimation(shared, args)
    except QemDecimateError as e:
        logger.error(f"Decimation failed: {e}")
        raise SystemExit(1)

    output_path = output_dir / f"{mesh_name}_simplified.ply"
    save_mesh(simplified, output_path)

    evaluator = MeshEvaluator()
    metrics = evaluator.compute_all_metrics(original, simplified)
    metrics['runtime'] = runtime
    print("\n" + evaluator.generate_report(metrics, mesh_name))
    print(f"Saved: {output_path}")

