"""
Pose evaluation: bind basis + animation sample -> world bone matrices,
then linear blend skinning of mesh positions and normals.

For each bone i with bind basis M_i and sampled (t_i, q_i):

    L_i = T(t_i) @ R(q_i)
    L_i = inverse(inverse(M_p) @ M_i) @ L_i      if bone has parent p
    W_i = M_i @ L_i @ inverse(M_i)
    W_i = W_p @ W_i                              if bone has parent p

Bones are visited in the skeleton's evaluation order so W_p is always ready.
Matrices use the column-vector convention (p' = W @ p).
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ..formats.anim_format import AnimationSample
from ..formats.model_format import Mesh, Skeleton


@dataclass(frozen=True, eq=False)
class Pose:
    """Result of one evaluation"""
    world_matrices: np.ndarray  # (N, 4, 4)
    skeleton: Skeleton
    mesh: Mesh


def quat_to_mat4(q: Sequence[float]) -> np.ndarray:
    """Rotation matrix of a unit quaternion given as (x, y, z, w)"""
    x, y, z, w = q
    xx, yy, zz = x * x, y * y, z * z
    xy, xz, yz = x * y, x * z, y * z
    wx, wy, wz = w * x, w * y, w * z
    return np.array([
        [1.0 - 2.0 * (yy + zz), 2.0 * (xy - wz),       2.0 * (xz + wy),       0.0],
        [2.0 * (xy + wz),       1.0 - 2.0 * (xx + zz), 2.0 * (yz - wx),       0.0],
        [2.0 * (xz - wy),       2.0 * (yz + wx),       1.0 - 2.0 * (xx + yy), 0.0],
        [0.0,                   0.0,                   0.0,                   1.0],
    ], dtype=np.float64)


def mat4_translate(t: Sequence[float]) -> np.ndarray:
    m = np.eye(4, dtype=np.float64)
    m[:3, 3] = t
    return m


def rotate_vector(direction: Sequence[float], rotation: Sequence[float]) -> np.ndarray:
    """Rotate a direction (w = 0) by a quaternion (x, y, z, w)"""
    d = np.array([direction[0], direction[1], direction[2], 0.0], dtype=np.float64)
    return (quat_to_mat4(rotation) @ d)[:3]


def compute_world_matrices(skeleton: Skeleton, sample: AnimationSample) -> np.ndarray:
    """World matrix of every bone for one animation sample"""
    if len(sample) < len(skeleton):
        raise IndexError(f"Animation sample has {len(sample)} bones, skeleton has {len(skeleton)}")

    bases = [bone.basis_matrix() for bone in skeleton.bones]
    world = np.zeros((len(skeleton), 4, 4), dtype=np.float64)
    for i in skeleton.evaluation_order:
        bone = skeleton.bones[i]
        state = sample.bones[i]
        m = bases[i]

        local = mat4_translate(state.translation) @ quat_to_mat4(state.rotation)
        if bone.parent is not None:
            correction = np.linalg.inv(np.linalg.inv(bases[bone.parent]) @ m)
            local = correction @ local

        world[i] = m @ local @ np.linalg.inv(m)
        if bone.parent is not None:
            world[i] = world[bone.parent] @ world[i]
    return world


def skin_mesh(mesh: Mesh, world_matrices: np.ndarray) -> Mesh:
    """Linear blend skinning of positions (w = 1) and normals (w = 0)"""
    if mesh.vertex_count == 0:
        return mesh
    bone_count = len(world_matrices)
    if mesh.bone_indices.min() < 0 or mesh.bone_indices.max() >= bone_count:
        bad = np.unique(mesh.bone_indices[(mesh.bone_indices < 0) | (mesh.bone_indices >= bone_count)])
        raise IndexError(f"Mesh references bones {bad.tolist()}, skeleton has {bone_count}")

    # blend[v] = sum_k W[bone_indices[v, k]] * bone_weights[v, k]
    blend = np.einsum('vk,vkij->vij', mesh.bone_weights, world_matrices[mesh.bone_indices])

    positions = np.einsum('vij,vj->vi', blend[:, :3, :3], mesh.positions) + blend[:, :3, 3]
    normals = np.einsum('vij,vj->vi', blend[:, :3, :3], mesh.normals)
    return mesh.with_geometry(positions=positions, normals=normals)


def evaluate_pose(skeleton: Skeleton, sample: AnimationSample, mesh: Mesh) -> Pose:
    """Pose the skeleton and skin the mesh for one animation sample"""
    world = compute_world_matrices(skeleton, sample)

    points = skeleton.positions
    posed_points = np.einsum('bij,bj->bi', world[:, :3, :3], points) + world[:, :3, 3]
    posed_skeleton = skeleton.with_positions(posed_points)

    return Pose(world_matrices=world, skeleton=posed_skeleton, mesh=skin_mesh(mesh, world))
