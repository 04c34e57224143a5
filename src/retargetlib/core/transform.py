"""
Transform Math

Quaternion, vector and TRS (translation, rotation, scale) primitives.

Quaternions are stored in (x, y, z, w) order, the same layout as
pyrr.Quaternion. Single-value helpers return pyrr types; the ``*_batch``
helpers work on numpy arrays of shape (..., 4) / (..., 3) and are what the
retargeter uses per keyframe.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

import numpy as np
from pyrr import Matrix44, Quaternion, Vector3
from scipy.spatial.transform import Rotation

from ..config.settings import DEGENERATE_EPSILON, QUAT_RENORMALIZE_TOLERANCE
from ..errors import DegenerateError


def _as_quat(q) -> np.ndarray:
    data = np.asarray(q, dtype=np.float64)
    if data.shape != (4,):
        raise ValueError(f"Expected quaternion with 4 components, got shape {data.shape}")
    return data


def _as_vec(v) -> np.ndarray:
    data = np.asarray(v, dtype=np.float64)
    if data.shape != (3,):
        raise ValueError(f"Expected vector with 3 components, got shape {data.shape}")
    return data


def _renormalize(q: np.ndarray) -> np.ndarray:
    """Renormalize a quaternion only if it drifted past the tolerance."""
    norm = float(np.sqrt(np.dot(q, q)))
    if abs(norm - 1.0) <= QUAT_RENORMALIZE_TOLERANCE:
        return q
    if norm < DEGENERATE_EPSILON:
        raise DegenerateError("Cannot renormalize a zero-length quaternion")
    return q / norm


# ============================================================================
# Quaternions
# ============================================================================

def quat_identity() -> Quaternion:
    """Identity rotation."""
    return Quaternion([0.0, 0.0, 0.0, 1.0])


def quat_mul(a, b) -> Quaternion:
    """
    Hamilton product a * b (apply b first, then a).

    Args:
        a: Left quaternion (x, y, z, w)
        b: Right quaternion (x, y, z, w)

    Returns:
        Product quaternion, renormalized if it drifted from unit length
    """
    x1, y1, z1, w1 = _as_quat(a)
    x2, y2, z2, w2 = _as_quat(b)
    result = np.array([
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
    ])
    return Quaternion(_renormalize(result))


def quat_conjugate(q) -> Quaternion:
    x, y, z, w = _as_quat(q)
    return Quaternion([-x, -y, -z, w])


def quat_inverse(q) -> Quaternion:
    """
    Inverse rotation. For unit quaternions this is the conjugate.

    Raises:
        DegenerateError: If q has zero length
    """
    data = _as_quat(q)
    norm_sq = float(np.dot(data, data))
    if norm_sq < DEGENERATE_EPSILON:
        raise DegenerateError("Cannot invert a zero-length quaternion")
    conj = np.array([-data[0], -data[1], -data[2], data[3]])
    if abs(norm_sq - 1.0) <= QUAT_RENORMALIZE_TOLERANCE:
        return Quaternion(conj)
    return Quaternion(conj / norm_sq)


def quat_normalize(q) -> Quaternion:
    """
    Scale q to unit length.

    Raises:
        DegenerateError: If q has zero length
    """
    data = _as_quat(q)
    norm = float(np.sqrt(np.dot(data, data)))
    if norm < DEGENERATE_EPSILON:
        raise DegenerateError("Cannot normalize a zero-length quaternion")
    return Quaternion(data / norm)


def quat_slerp(a, b, t: float) -> Quaternion:
    """
    Spherical linear interpolation along the shortest arc.

    Args:
        a: Start quaternion
        b: End quaternion
        t: Interpolation factor in [0, 1]
    """
    q0 = _as_quat(a)
    q1 = _as_quat(b)
    dot = float(np.dot(q0, q1))

    # Take the short way around the double cover
    if dot < 0.0:
        q1 = -q1
        dot = -dot

    if dot > 0.9995:
        # Nearly parallel, fall back to normalized lerp
        result = q0 + (q1 - q0) * t
        return quat_normalize(result)

    theta_0 = np.arccos(min(dot, 1.0))
    theta = theta_0 * t
    sin_theta_0 = np.sin(theta_0)
    s0 = np.cos(theta) - dot * np.sin(theta) / sin_theta_0
    s1 = np.sin(theta) / sin_theta_0
    return quat_normalize(q0 * s0 + q1 * s1)


def quat_rotate_vector(q, v) -> Vector3:
    """Rotate vector v by quaternion q (q * v * q^-1)."""
    x, y, z, w = _as_quat(q)
    vec = _as_vec(v)
    axis = np.array([x, y, z])
    t = 2.0 * np.cross(axis, vec)
    return Vector3(vec + w * t + np.cross(axis, t))


def quat_from_axis_angle(axis, angle: float) -> Quaternion:
    """
    Rotation of ``angle`` radians about ``axis``.

    Raises:
        DegenerateError: If the axis has zero length
    """
    unit_axis = np.asarray(vec_normalize(axis))
    half = angle * 0.5
    return Quaternion(np.append(unit_axis * np.sin(half), np.cos(half)))


def quat_from_matrix3(matrix) -> Quaternion:
    """
    Quaternion from a 3x3 rotation matrix in column-vector convention (v' = M v).

    The matrix is orthogonalized by scipy before conversion.
    """
    m33 = np.asarray(matrix, dtype=np.float64)[:3, :3]
    return Quaternion(Rotation.from_matrix(m33).as_quat())


def quat_to_matrix3(q) -> np.ndarray:
    """3x3 rotation matrix in column-vector convention (v' = M v)."""
    return Rotation.from_quat(np.asarray(quat_normalize(q))).as_matrix()


def quat_equivalent(a, b, tolerance: float = 1e-5) -> bool:
    """True if a and b encode the same rotation (q and -q are equivalent)."""
    q0 = _as_quat(a)
    q1 = _as_quat(b)
    return bool(min(np.max(np.abs(q0 - q1)), np.max(np.abs(q0 + q1))) <= tolerance)


# Batch quaternion operations for keyframe arrays

def quat_mul_batch(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Hamilton product on arrays of quaternions.

    Args:
        a: Array of shape (..., 4) in (x, y, z, w) order
        b: Array of shape (..., 4) in (x, y, z, w) order, broadcast against a

    Returns:
        Array of products a * b
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    x1, y1, z1, w1 = a[..., 0], a[..., 1], a[..., 2], a[..., 3]
    x2, y2, z2, w2 = b[..., 0], b[..., 1], b[..., 2], b[..., 3]
    return np.stack([
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
    ], axis=-1)


def quat_norm_batch(q: np.ndarray) -> np.ndarray:
    return np.linalg.norm(np.asarray(q, dtype=np.float64), axis=-1)


def quat_normalize_batch(q: np.ndarray) -> np.ndarray:
    """
    Normalize an array of quaternions.

    Raises:
        DegenerateError: If any quaternion has zero length
    """
    q = np.asarray(q, dtype=np.float64)
    norms = quat_norm_batch(q)
    if np.any(norms < DEGENERATE_EPSILON):
        raise DegenerateError("Cannot normalize a zero-length quaternion")
    return q / norms[..., np.newaxis]


def quat_rotate_vector_batch(q: np.ndarray, v: np.ndarray) -> np.ndarray:
    """Rotate arrays of vectors (..., 3) by quaternions (..., 4)."""
    q = np.asarray(q, dtype=np.float64)
    v = np.asarray(v, dtype=np.float64)
    axis = q[..., :3]
    t = 2.0 * np.cross(axis, v)
    return v + q[..., 3:4] * t + np.cross(axis, t)


# ============================================================================
# Vectors
# ============================================================================

def vec_add(a, b) -> Vector3:
    return Vector3(_as_vec(a) + _as_vec(b))


def vec_sub(a, b) -> Vector3:
    return Vector3(_as_vec(a) - _as_vec(b))


def vec_scale(v, factor: float) -> Vector3:
    return Vector3(_as_vec(v) * float(factor))


def vec_component_mul(a, b) -> Vector3:
    """Component-wise product, used for non-uniform scale."""
    return Vector3(_as_vec(a) * _as_vec(b))


def vec_length(v) -> float:
    return float(np.linalg.norm(_as_vec(v)))


def vec_normalize(v) -> Vector3:
    """
    Unit vector in the direction of v.

    Raises:
        DegenerateError: If v has zero length
    """
    data = _as_vec(v)
    length = float(np.linalg.norm(data))
    if length < DEGENERATE_EPSILON:
        raise DegenerateError("Cannot normalize a zero-length vector")
    return Vector3(data / length)


# ============================================================================
# TRS Transforms
# ============================================================================

@dataclass(eq=False)
class Transform:
    """
    Translation, rotation, scale triple representing v -> p + q * (s . v) * q^-1.
    """

    translation: Vector3 = field(default_factory=lambda: Vector3([0.0, 0.0, 0.0]))
    rotation: Quaternion = field(default_factory=quat_identity)
    scale: Vector3 = field(default_factory=lambda: Vector3([1.0, 1.0, 1.0]))

    def __post_init__(self):
        # Always own a float64 copy so shared inputs are never mutated
        self.translation = Vector3(np.array(self.translation, dtype=np.float64).reshape(3))
        self.rotation = Quaternion(np.array(self.rotation, dtype=np.float64).reshape(4))
        self.scale = Vector3(np.array(self.scale, dtype=np.float64).reshape(3))

    @classmethod
    def identity(cls) -> "Transform":
        return cls()

    @classmethod
    def from_values(cls, translation: Iterable[float] = None, rotation: Iterable[float] = None,
                    scale: Iterable[float] = None) -> "Transform":
        """Build a transform from plain sequences, defaulting missing parts."""
        return cls(
            translation=translation if translation is not None else [0.0, 0.0, 0.0],
            rotation=rotation if rotation is not None else [0.0, 0.0, 0.0, 1.0],
            scale=scale if scale is not None else [1.0, 1.0, 1.0],
        )

    def copy(self) -> "Transform":
        return Transform(self.translation, self.rotation, self.scale)

    def is_finite(self) -> bool:
        return bool(
            np.all(np.isfinite(np.asarray(self.translation)))
            and np.all(np.isfinite(np.asarray(self.rotation)))
            and np.all(np.isfinite(np.asarray(self.scale)))
        )

    def has_degenerate_scale(self) -> bool:
        return bool(np.any(np.abs(np.asarray(self.scale)) < DEGENERATE_EPSILON))

    def determinant(self) -> float:
        """Determinant of the linear part (rotation is proper, so only scale signs matter)."""
        return float(np.prod(np.asarray(self.scale)))

    def apply_point(self, point) -> Vector3:
        return vec_add(self.translation, self.apply_vector(point))

    def apply_vector(self, vector) -> Vector3:
        """Apply scale and rotation, ignoring translation."""
        return quat_rotate_vector(self.rotation, vec_component_mul(self.scale, vector))

    def compose(self, other: "Transform") -> "Transform":
        return trs_compose(self, other)

    def inverse(self) -> "Transform":
        return trs_inverse(self)

    def to_matrix4(self) -> Matrix44:
        return trs_to_matrix4(self)

    def __repr__(self):
        t = np.round(np.asarray(self.translation), 4).tolist()
        r = np.round(np.asarray(self.rotation), 4).tolist()
        s = np.round(np.asarray(self.scale), 4).tolist()
        return f"Transform(t={t}, r={r}, s={s})"


def trs_compose(a: Transform, b: Transform) -> Transform:
    """
    Composition a o b (apply b first, then a).

    Exact for uniform scale; non-uniform scale is propagated component-wise.
    """
    return Transform(
        translation=a.apply_point(b.translation),
        rotation=quat_mul(a.rotation, b.rotation),
        scale=vec_component_mul(a.scale, b.scale),
    )


def trs_inverse(t: Transform) -> Transform:
    """
    Inverse transform.

    Raises:
        DegenerateError: If any scale component is zero
    """
    if t.has_degenerate_scale():
        raise DegenerateError("Cannot invert a transform with zero scale")
    inv_scale = 1.0 / np.asarray(t.scale)
    inv_rotation = quat_inverse(t.rotation)
    rotated = np.asarray(quat_rotate_vector(inv_rotation, t.translation))
    return Transform(
        translation=-(inv_scale * rotated),
        rotation=inv_rotation,
        scale=inv_scale,
    )


def trs_to_matrix4(t: Transform) -> Matrix44:
    """
    4x4 matrix for a transform, in pyrr's row-major layout.

    Row vectors are transformed as ``v @ M``: scale first, then rotation,
    then translation (stored in row 3).
    """
    scale = np.asarray(Matrix44.from_scale(Vector3(t.scale)))
    rotation = np.asarray(Matrix44.from_quaternion(Quaternion(t.rotation)))
    translation = np.asarray(Matrix44.from_translation(Vector3(t.translation)))
    return Matrix44(scale @ rotation @ translation)
