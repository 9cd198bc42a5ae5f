"""
Mesh Decimation using Quadric Error Metrics (QEM)
=================================================

Edge collapse simplification on a corner based connected mesh, after
"Surface Simplification Using Quadric Error Metrics"
by Michael Garland and Paul S. Heckbert (SIGGRAPH 1997).
"""

from .candidates import CandidateStore, EdgeCollapse
from .config import DecimatorConfig
from .connected_mesh import ConnectedMesh, Node
from .edge_types import EdgeKind, EdgeType
from .evaluation import MeshEvaluator
from .exceptions import DecimationError, MeshBuildError, QemDecimateError
from .mesh_decimator import MeshDecimator
from .qem import QuadricErrorMetrics, SymmetricMatrix
from .shared_mesh import SharedMesh

__version__ = "1.0.0"
__all__ = [
    "CandidateStore", "ConnectedMesh", "DecimationError", "DecimatorConfig",
    "EdgeCollapse", "EdgeKind", "EdgeType", "MeshBuildError", "MeshDecimator",
    "MeshEvaluator", "Node", "QemDecimateError", "QuadricErrorMetrics",
    "SharedMesh", "SymmetricMatrix",
]
