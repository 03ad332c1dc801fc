import math
import unittest

import numpy as np

from dance_fixtures import IDENTITY_BASIS, axis_angle_quat, basis_at, build_model, single_triangle_model, vertex
from ktdance.evaluators.pose import (
    compute_world_matrices, evaluate_pose, quat_to_mat4, rotate_vector, skin_mesh,
)
from ktdance.formats.anim_format import AnimationSample, BoneState
from ktdance.formats.model_format import DanceModel
from ktdance.formats.quat_codec import IDENTITY_QUAT

QUARTER_TURN_Z = axis_angle_quat((0, 0, 1), math.pi / 2)
ZERO = (0.0, 0.0, 0.0)


def sample_of(*states):
    return AnimationSample(max_frame=0, frame=0, bones=tuple(BoneState(t, q) for t, q in states))


def two_bone_model(child_bases_equal=True):
    """Root at the origin and one child; vertex 0 follows the root, vertex 1 the child"""
    child = IDENTITY_BASIS if child_bases_equal else basis_at(0, 1, 0)
    verts = [
        vertex((2.0, 0.0, 0.0), bones=(0, 0, 0, 0), normal=(1.0, 0.0, 0.0)),
        vertex((0.0, 0.0, 1.0), bones=(1, 0, 0, 0), weights=(0.0, 0.0, 0.0)),
    ]
    # section bone set {0, 1} is complete
    return DanceModel.read_from_bytes(build_model([IDENTITY_BASIS, child], [-1, 0], [(verts, [])], [[0, 1]]))


class TestMatrices(unittest.TestCase):
    def test_identity_quat(self):
        np.testing.assert_allclose(quat_to_mat4(IDENTITY_QUAT), np.eye(4))

    def test_quarter_turn(self):
        m = quat_to_mat4(QUARTER_TURN_Z)
        np.testing.assert_allclose(m[:3, :3] @ (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), atol=1e-12)

    def test_rotate_vector(self):
        np.testing.assert_allclose(rotate_vector((1.0, 0.0, 0.0), QUARTER_TURN_Z), (0.0, 1.0, 0.0), atol=1e-12)
        np.testing.assert_allclose(rotate_vector((0.0, 0.0, 2.0), QUARTER_TURN_Z), (0.0, 0.0, 2.0), atol=1e-12)


class TestEvaluatePose(unittest.TestCase):
    def test_identity_sample_keeps_bind_pose(self):
        model = two_bone_model()
        result = evaluate_pose(model.skeleton, AnimationSample.identity(2), model.mesh)
        np.testing.assert_allclose(result.mesh.positions, model.mesh.positions, atol=1e-9)
        np.testing.assert_allclose(result.mesh.normals, model.mesh.normals, atol=1e-9)
        np.testing.assert_allclose(result.skeleton.positions, model.skeleton.positions, atol=1e-9)
        np.testing.assert_allclose(result.world_matrices, np.stack([np.eye(4)] * 2), atol=1e-9)

    def test_identity_sample_with_offset_child_basis(self):
        # child basis T(0, 1, 0) under an identity root: the parent correction
        # inverse(inverse(M_p) @ M_i) leaves the child at W = T(0, -1, 0)
        model = two_bone_model(child_bases_equal=False)
        world = compute_world_matrices(model.skeleton, AnimationSample.identity(2))
        np.testing.assert_allclose(world[0], np.eye(4), atol=1e-9)
        np.testing.assert_allclose(world[1][:3, 3], (0.0, -1.0, 0.0), atol=1e-9)

        result = evaluate_pose(model.skeleton, AnimationSample.identity(2), model.mesh)
        np.testing.assert_allclose(result.mesh.positions[0], model.mesh.positions[0], atol=1e-9)
        np.testing.assert_allclose(result.mesh.positions[1], (0.0, -1.0, 1.0), atol=1e-9)

    def test_root_translation_moves_points_not_normals(self):
        model = two_bone_model()
        result = evaluate_pose(model.skeleton, sample_of(((1.0, 2.0, 3.0), IDENTITY_QUAT), (ZERO, IDENTITY_QUAT)),
                               model.mesh)
        np.testing.assert_allclose(result.mesh.positions[0], (3.0, 2.0, 3.0))
        np.testing.assert_allclose(result.mesh.normals[0], (1.0, 0.0, 0.0))
        # the child inherits the root's motion
        np.testing.assert_allclose(result.mesh.positions[1], (1.0, 2.0, 4.0))

    def test_rotation_about_bind_pivot(self):
        pivot = basis_at(1, 0, 0)
        verts = [vertex((2.0, 0.0, 0.0), normal=(1.0, 0.0, 0.0))]
        model = DanceModel.read_from_bytes(build_model([pivot], [-1], [(verts, [])], [[0]]))
        result = evaluate_pose(model.skeleton, sample_of((ZERO, QUARTER_TURN_Z)), model.mesh)

        np.testing.assert_allclose(result.mesh.positions[0], (1.0, 1.0, 0.0), atol=1e-9)
        np.testing.assert_allclose(result.mesh.normals[0], (0.0, 1.0, 0.0), atol=1e-9)
        np.testing.assert_allclose(result.skeleton.positions[0], (1.0, 0.0, 0.0), atol=1e-9)

    def test_parent_rotation_propagates(self):
        model = two_bone_model()
        sample = sample_of((ZERO, QUARTER_TURN_Z), ((1.0, 0.0, 0.0), IDENTITY_QUAT))
        world = compute_world_matrices(model.skeleton, sample)
        # W1 = W0 @ T(1, 0, 0)
        np.testing.assert_allclose(world[1] @ (0.0, 0.0, 0.0, 1.0), (0.0, 1.0, 0.0, 1.0), atol=1e-9)

    def test_child_listed_before_parent(self):
        # bone 0 is the child of bone 1
        verts = [vertex((0.0, 0.0, 0.0), bones=(0, 1, 0, 0), weights=(1.0, 0.0, 0.0))]
        data = build_model([IDENTITY_BASIS, IDENTITY_BASIS], [1, -1], [(verts, [])], [[0, 1]])
        model = DanceModel.read_from_bytes(data)
        self.assertEqual(model.skeleton.evaluation_order, (1, 0))

        sample = sample_of(((0.0, 0.0, 1.0), IDENTITY_QUAT), ((5.0, 0.0, 0.0), IDENTITY_QUAT))
        result = evaluate_pose(model.skeleton, sample, model.mesh)
        # all weight on bone 1 (w0 = 1 - 1.0 = 0)
        np.testing.assert_allclose(result.mesh.positions[0], (5.0, 0.0, 0.0), atol=1e-6)
        np.testing.assert_allclose(result.world_matrices[0][:3, 3], (5.0, 0.0, 1.0), atol=1e-9)

    def test_blend_weights(self):
        verts = [vertex((0.0, 0.0, 0.0), bones=(0, 1, 0, 0), weights=(0.5, 0.0, 0.0))]
        data = build_model([IDENTITY_BASIS, IDENTITY_BASIS], [-1, -1], [(verts, [])], [[0, 1]])
        model = DanceModel.read_from_bytes(data)
        sample = sample_of(((2.0, 0.0, 0.0), IDENTITY_QUAT), (ZERO, IDENTITY_QUAT))
        result = evaluate_pose(model.skeleton, sample, model.mesh)
        np.testing.assert_allclose(result.mesh.positions[0], (1.0, 0.0, 0.0), atol=1e-6)

    def test_input_mesh_is_not_modified(self):
        model = DanceModel.read_from_bytes(single_triangle_model())
        before = model.mesh.positions.copy()
        evaluate_pose(model.skeleton, sample_of(((1.0, 1.0, 1.0), IDENTITY_QUAT)), model.mesh)
        np.testing.assert_array_equal(model.mesh.positions, before)

    def test_short_sample(self):
        model = two_bone_model()
        with self.assertRaises(IndexError):
            compute_world_matrices(model.skeleton, AnimationSample.identity(1))

    def test_bone_outside_skeleton(self):
        model = two_bone_model()
        with self.assertRaises(IndexError):
            skin_mesh(model.mesh, np.stack([np.eye(4)]))


if __name__ == '__main__':
    unittest.main()
