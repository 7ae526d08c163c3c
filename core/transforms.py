#!/usr/bin/env python3
"""
Transform Math Module
Compose and decompose node transforms (glTF conventions: column vectors,
column-major matrix storage, quaternions as [x, y, z, w])
"""

import numpy as np


IDENTITY_TRANSLATION = (0.0, 0.0, 0.0)
IDENTITY_ROTATION = (0.0, 0.0, 0.0, 1.0)
IDENTITY_SCALE = (1.0, 1.0, 1.0)


def quaternion_to_matrix(q):
    """Convert a unit quaternion [x, y, z, w] to a 3x3 rotation matrix"""
    x, y, z, w = (float(v) for v in q)
    norm = np.sqrt(x * x + y * y + z * z + w * w)
    if norm == 0.0:
        return np.identity(3)
    x, y, z, w = x / norm, y / norm, z / norm, w / norm

    xx, yy, zz = x * x, y * y, z * z
    xy, xz, yz = x * y, x * z, y * z
    wx, wy, wz = w * x, w * y, w * z

    return np.array([
        [1.0 - 2.0 * (yy + zz), 2.0 * (xy - wz), 2.0 * (xz + wy)],
        [2.0 * (xy + wz), 1.0 - 2.0 * (xx + zz), 2.0 * (yz - wx)],
        [2.0 * (xz - wy), 2.0 * (yz + wx), 1.0 - 2.0 * (xx + yy)],
    ])


def matrix_to_quaternion(r):
    """Convert a 3x3 rotation matrix to a quaternion [x, y, z, w]

    Uses the branch on the largest diagonal term for numerical stability.
    """
    m = np.asarray(r, dtype=float)
    trace = m[0][0] + m[1][1] + m[2][2]

    if trace > 0.0:
        s = np.sqrt(trace + 1.0) * 2.0
        w = 0.25 * s
        x = (m[2][1] - m[1][2]) / s
        y = (m[0][2] - m[2][0]) / s
        z = (m[1][0] - m[0][1]) / s
    elif m[0][0] > m[1][1] and m[0][0] > m[2][2]:
        s = np.sqrt(1.0 + m[0][0] - m[1][1] - m[2][2]) * 2.0
        w = (m[2][1] - m[1][2]) / s
        x = 0.25 * s
        y = (m[0][1] + m[1][0]) / s
        z = (m[0][2] + m[2][0]) / s
    elif m[1][1] > m[2][2]:
        s = np.sqrt(1.0 + m[1][1] - m[0][0] - m[2][2]) * 2.0
        w = (m[0][2] - m[2][0]) / s
        x = (m[0][1] + m[1][0]) / s
        y = 0.25 * s
        z = (m[1][2] + m[2][1]) / s
    else:
        s = np.sqrt(1.0 + m[2][2] - m[0][0] - m[1][1]) * 2.0
        w = (m[1][0] - m[0][1]) / s
        x = (m[0][2] + m[2][0]) / s
        y = (m[1][2] + m[2][1]) / s
        z = 0.25 * s

    q = np.array([x, y, z, w])
    q /= np.linalg.norm(q)
    # Keep w non-negative so equal rotations compare equal
    if q[3] < 0.0:
        q = -q
    return [float(v) for v in q]


def compose_matrix(translation=None, rotation=None, scale=None):
    """Build a 4x4 local matrix from translation, rotation and scale

    Args:
        translation: [x, y, z] or None for identity
        rotation: [x, y, z, w] quaternion or None for identity
        scale: [sx, sy, sz] or None for identity

    Returns:
        np.ndarray: 4x4 matrix (T * R * S)
    """
    t = translation if translation is not None else IDENTITY_TRANSLATION
    r = rotation if rotation is not None else IDENTITY_ROTATION
    s = scale if scale is not None else IDENTITY_SCALE

    m = np.identity(4)
    m[:3, :3] = quaternion_to_matrix(r) * np.asarray(s, dtype=float)
    m[:3, 3] = np.asarray(t, dtype=float)
    return m


def decompose_matrix(matrix):
    """Decompose a 4x4 matrix into translation, rotation and scale

    Scale comes from the basis column lengths; a negative determinant flips
    the X scale. Shear (non-uniform scale under rotation) is not
    representable and is discarded.

    Args:
        matrix: 4x4 matrix (column-vector convention)

    Returns:
        tuple: (translation [x, y, z], rotation [x, y, z, w], scale [sx, sy, sz])
    """
    m = np.asarray(matrix, dtype=float)

    translation = [float(v) for v in m[:3, 3]]

    basis = m[:3, :3]
    sx = np.linalg.norm(basis[:, 0])
    sy = np.linalg.norm(basis[:, 1])
    sz = np.linalg.norm(basis[:, 2])
    if np.linalg.det(basis) < 0.0:
        sx = -sx
    scale = [float(sx), float(sy), float(sz)]

    safe = [v if v != 0.0 else 1.0 for v in scale]
    rotation_matrix = basis / np.asarray(safe)
    rotation = matrix_to_quaternion(rotation_matrix)

    return translation, rotation, scale


def matrix_from_gltf(values):
    """Convert a glTF column-major 16-float list to a 4x4 matrix"""
    return np.asarray(values, dtype=float).reshape(4, 4).T


def matrix_to_gltf(matrix):
    """Convert a 4x4 matrix to a glTF column-major 16-float list"""
    return [float(v) for v in np.asarray(matrix, dtype=float).T.reshape(16)]


def relative_matrix(world_matrix, parent_world_matrix):
    """Local matrix that yields world_matrix under the given parent"""
    return np.linalg.inv(parent_world_matrix) @ world_matrix
