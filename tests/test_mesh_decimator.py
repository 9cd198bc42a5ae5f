"""
Decimation driver tests.
"""

import numpy as np
import pytest
import trimesh

from qem_decimate.candidates import EdgeCollapse
from qem_decimate.config import DecimatorConfig
from qem_decimate.connected_mesh import NOT_FOUND, ConnectedMesh
from qem_decimate.edge_types import EdgeKind
from qem_decimate.exceptions import DecimationError
from qem_decimate.mesh_decimator import DecimatorState, MeshDecimator
from qem_decimate.shared_mesh import SharedMesh
from qem_decimate.utils import create_icosphere, create_plane, create_seamed_cube


def unit_face_normal(mesh, face):
    normal = mesh.get_face_normal(face)
    length = np.linalg.norm(normal)
    return normal / length if length > 1e-300 else normal


@pytest.fixture
def sphere():
    # 320 faces
    return ConnectedMesh.build(create_icosphere(subdivisions=2))


class TestTargets:
    """Face count, ratio and error targets."""

    def test_polycount(self, sphere):
        decimator = MeshDecimator(debug_checks=True)
        decimator.decimate_to_polycount(sphere, 100)

        assert 90 <= sphere.face_count <= 100
        assert sphere.check()
        assert decimator.state is DecimatorState.DONE

    def test_ratio(self, sphere):
        MeshDecimator().decimate_to_ratio(sphere, 0.25)
        assert sphere.face_count <= 80
        assert sphere.check()

    def test_remove_count(self, sphere):
        MeshDecimator().decimate_polycount(sphere, 100)
        assert sphere.face_count <= 220

    def test_target_above_face_count_is_noop(self, sphere):
        MeshDecimator().decimate_to_polycount(sphere, 1000)
        assert sphere.face_count == 320

    def test_max_error_stops_early(self):
        mesh = ConnectedMesh.build(create_icosphere(subdivisions=2))
        MeshDecimator().decimate_to_polycount(mesh, 0, max_error=1e-12)
        # Every collapse on a sphere costs something
        assert mesh.face_count == 320

    def test_decimate_to_error(self):
        mesh = ConnectedMesh.build(create_plane(rows=6, cols=6))
        MeshDecimator(debug_checks=True).decimate_to_error(mesh, 1e-9)

        assert mesh.face_count < 50
        assert mesh.check()

    def test_face_count_never_increases(self, sphere):
        decimator = MeshDecimator()
        decimator.initialize(sphere)

        counts = [sphere.face_count]
        for _ in range(20):
            assert decimator.iterate()
            counts.append(sphere.face_count)

        assert all(b < a for a, b in zip(counts, counts[1:]))


class TestQuality:
    """Geometric properties of the result."""

    def test_sphere_stays_round(self):
        shared = create_icosphere(subdivisions=3)
        decimator = MeshDecimator()
        output = decimator.decimate(shared, target_ratio=0.25)

        radii = np.linalg.norm(output.vertices, axis=1)
        assert output.face_count <= 320
        assert np.all(np.abs(radii - 1.0) < 0.1)

    def test_plane_border_is_preserved(self):
        shared = create_plane(rows=6, cols=6)
        output = MeshDecimator().decimate(shared, target_ratio=0.5)

        assert output.face_count <= 25
        assert np.allclose(output.vertices.min(axis=0), [0, 0, 0])
        assert np.allclose(output.vertices.max(axis=0), [1, 1, 0])

    def test_a_shapes_are_avoided(self):
        mesh = ConnectedMesh.build(create_plane(rows=6, cols=6))
        decimator = MeshDecimator(record_history=True)
        decimator.decimate_to_ratio(mesh, 0.5)

        history = decimator.get_collapse_history()
        assert history
        assert all(r.edge_kind is not EdgeKind.SURFACIC_BORDER_AB for r in history)
        assert all(r.error < decimator.config.no_collapse_error for r in history)

    def test_errors_are_non_negative(self, sphere):
        decimator = MeshDecimator()
        decimator.initialize(sphere)
        assert all(pair.error >= 0 for pair in decimator.candidates)

        decimator.decimate_to_polycount(sphere, 200)
        errors = decimator.get_position_errors()
        live = errors[~np.isnan(errors)]
        assert len(live) > 0
        assert np.all(live >= 0)

    def test_no_face_flips(self):
        mesh = ConnectedMesh.build(create_icosphere(subdivisions=3))
        MeshDecimator().decimate_to_ratio(mesh, 0.5)

        for face in mesh.iter_faces():
            a, b, c = mesh.get_face_positions(face)
            centroid = (mesh.positions[a] + mesh.positions[b] + mesh.positions[c]) / 3
            assert np.dot(mesh.get_face_normal(face), centroid) > 0

    def test_seamed_cube(self):
        mesh = ConnectedMesh.build(create_seamed_cube(divisions=4))
        mesh.merge_positions(1e-6)

        MeshDecimator(debug_checks=True).decimate_to_ratio(mesh, 0.5)
        mesh.compact()
        output = mesh.to_shared_mesh()

        assert output.face_count <= 96
        # Corners of the cube survive
        assert np.allclose(np.abs(output.vertices).max(axis=0), [0.5, 0.5, 0.5])
        # Each side keeps flat normals
        assert np.allclose(np.abs(output.normals).max(axis=1), 1.0)


class TestInversionGuard:
    """Collapses flipping a neighboring face are rejected."""

    def setup_method(self):
        self.mesh = ConnectedMesh.build(create_plane(rows=3, cols=3))
        self.decimator = MeshDecimator()
        self.decimator.initialize(self.mesh)

    def test_flip_detected(self):
        # Moving the center past the top border flips face (4, 7, 6)
        pair = EdgeCollapse(4, 1, result=np.array([0.5, 1.5, 0.0]))
        assert self.decimator.collapse_will_invert(pair)

    def test_midpoint_is_safe(self):
        pair = EdgeCollapse(4, 1, result=np.array([0.5, 0.25, 0.0]))
        assert not self.decimator.collapse_will_invert(pair)

    @pytest.mark.parametrize("shared, collapses", [
        (create_plane(rows=8, cols=8, noise=0.02, seed=1), 40),
        (SharedMesh.from_trimesh(trimesh.creation.torus(
            major_radius=1.0, minor_radius=0.3, major_sections=24, minor_sections=12)), 150),
    ])
    def test_no_surviving_face_flips(self, shared, collapses):
        mesh = ConnectedMesh.build(shared)
        decimator = MeshDecimator()
        decimator.initialize(mesh)
        threshold = -decimator.config.inversion_epsilon

        for _ in range(collapses):
            before = {face: unit_face_normal(mesh, face) for face in mesh.iter_faces()}
            if not decimator.iterate():
                break
            for face in mesh.iter_faces():
                assert np.dot(before[face], unit_face_normal(mesh, face)) >= threshold


def two_triangles(normal_a, normal_b, uv_a, uv_b, point_b=(1.0, 0.0, 0.0)):
    """Triangles (0, 1, 2) and (1, 0, 3) sharing edge 0-1."""
    vertices = [[0, 0, 0], point_b, [0.5, 1, 0], [0.5, -1, 0]]
    normals = [normal_a, normal_b, [0, 0, 1], [0, 0, 1]]
    uvs = [uv_a, uv_b, [0.5, 1], [0.5, 0]]
    return ConnectedMesh.build(SharedMesh(vertices=vertices, triangles=[0, 1, 2, 1, 0, 3],
                                          normals=normals, uvs=uvs))


class TestAttributes:
    """Normals and uvs follow the collapse."""

    def test_blend_weights_follow_distances(self):
        mesh = two_triangles([1, 0, 0], [0, 1, 0], [0, 0], [1, 0])
        decimator = MeshDecimator()
        decimator.initialize(mesh)

        # A quarter of the way from A to B: A weighs 1/4, B weighs 3/4
        decimator.apply_collapse(EdgeCollapse(0, 1, result=np.array([0.25, 0.0, 0.0])))

        expected = np.array([1.0, 3.0, 0.0]) / np.sqrt(10.0)
        assert np.allclose(mesh.normals[0], expected)
        assert np.allclose(mesh.normals[1], expected)
        assert np.allclose(mesh.uvs[0], [0.75, 0])
        assert np.allclose(mesh.uvs[1], [0.75, 0])

    def test_coincident_endpoints_take_b(self):
        mesh = two_triangles([1, 0, 0], [0, 1, 0], [0, 0], [1, 0], point_b=(0.0, 0.0, 0.0))
        decimator = MeshDecimator()
        decimator.initialize(mesh)

        decimator.apply_collapse(EdgeCollapse(0, 1, result=np.zeros(3)))

        assert np.allclose(mesh.normals[0], [0, 1, 0])
        assert np.allclose(mesh.uvs[0], [1, 0])

    def test_uv_seams_are_not_merged(self):
        # Two triangles welded along edge 1-2 with a different uv on each side
        shared = SharedMesh(
            vertices=[[0, 0, 0], [1, 0, 0], [0, 1, 0],
                      [1, 0, 0], [1, 1, 0], [0, 1, 0]],
            triangles=[0, 1, 2, 3, 4, 5],
            normals=np.tile([0.0, 0.0, 1.0], (6, 1)),
            uvs=[[0, 0], [0.5, 0], [0, 0.5], [0.6, 0], [1, 1], [0, 0.6]]
        )
        mesh = ConnectedMesh.build(shared)
        mesh.merge_positions(1e-6)
        decimator = MeshDecimator()
        decimator.initialize(mesh)

        node = mesh.position_to_node[1]
        decimator._merge_attributes(node)
        assert len({mesh.nodes[s].attribute for s in mesh.iter_siblings(node)}) == 2

        mesh.uvs[3] = mesh.uvs[1]
        decimator._merge_attributes(node)
        assert len({mesh.nodes[s].attribute for s in mesh.iter_siblings(node)}) == 1

    def test_uvs_stay_in_range(self):
        output = MeshDecimator().decimate(create_plane(rows=6, cols=6), target_ratio=0.5)
        assert np.all(output.uvs >= -1e-9)
        assert np.all(output.uvs <= 1 + 1e-9)

    def test_normals_stay_unit(self):
        output = MeshDecimator().decimate(create_icosphere(subdivisions=2), target_faces=100)
        assert np.allclose(np.linalg.norm(output.normals, axis=1), 1.0)


class TestDriver:
    """Entry points, callbacks and configuration."""

    def test_trimesh_round_trip(self):
        sphere = trimesh.creation.icosphere(subdivisions=2)
        output = MeshDecimator().decimate(sphere, target_faces=100)

        assert isinstance(output, trimesh.Trimesh)
        assert 0 < len(output.faces) <= 100
        assert len(output.vertices) < len(sphere.vertices)

    def test_shared_mesh_in_shared_mesh_out(self):
        output = MeshDecimator().decimate(create_icosphere(subdivisions=1), target_ratio=0.5)
        assert isinstance(output, SharedMesh)
        assert output.face_count <= 40

    def test_requires_target(self):
        with pytest.raises(DecimationError):
            MeshDecimator().decimate(create_icosphere(subdivisions=1))

    def test_targets_are_exclusive(self):
        with pytest.raises(DecimationError):
            MeshDecimator().decimate(create_icosphere(subdivisions=1),
                                     target_faces=10, target_ratio=0.5)

    def test_iterate_before_initialize(self):
        with pytest.raises(DecimationError):
            MeshDecimator().iterate()

    def test_position_errors_before_run(self):
        with pytest.raises(DecimationError):
            MeshDecimator().get_position_errors()

    def test_cancel(self, sphere):
        calls = []

        def cancel():
            calls.append(1)
            return len(calls) > 3

        MeshDecimator().decimate_to_polycount(sphere, 0, cancel_callback=cancel)
        # Three manifold collapses, two faces each
        assert sphere.face_count == 314

    def test_progress(self, sphere):
        progress = []
        MeshDecimator().decimate_to_polycount(sphere, 100, progress_callback=progress.append)

        assert progress
        assert progress == sorted(progress)
        assert progress[-1] == 100
        assert all(0 <= p <= 100 for p in progress)

    def test_history(self, sphere):
        decimator = MeshDecimator(record_history=True)
        decimator.decimate_to_polycount(sphere, 300)

        history = decimator.get_collapse_history()
        assert history
        assert history[-1].face_count == sphere.face_count <= 300
        assert all(b.face_count < a.face_count for a, b in zip(history, history[1:]))
        assert all(r.pos_a != r.pos_b for r in history)
        assert all(sphere.position_to_node[r.pos_b] == NOT_FOUND for r in history)

    def test_history_disabled_by_default(self, sphere):
        decimator = MeshDecimator()
        decimator.decimate_to_polycount(sphere, 300)
        assert decimator.get_collapse_history() == []

    def test_reuse(self):
        decimator = MeshDecimator()
        first = decimator.decimate(create_icosphere(subdivisions=1), target_faces=40)
        second = decimator.decimate(create_icosphere(subdivisions=1), target_faces=40)
        assert first.face_count == second.face_count
        assert np.allclose(first.vertices, second.vertices)

    def test_config_overrides(self):
        decimator = MeshDecimator(DecimatorConfig(window_base=10), inversion_epsilon=0.5)
        assert decimator.config.window_base == 10
        assert decimator.config.inversion_epsilon == 0.5
        assert decimator.candidates.window_base == 10

    def test_unknown_override(self):
        with pytest.raises(TypeError):
            MeshDecimator(not_an_option=1)

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            DecimatorConfig(hard_edge_error=1e300, no_collapse_error=1e150)
        with pytest.raises(ValueError):
            DecimatorConfig(window_base=-1)
