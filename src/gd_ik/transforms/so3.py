"""SO(3) rotation operations in JAX.

Rotations are 3x3 matrices; tangent vectors are axis-angle 3-vectors. All
functions are pure, JIT-able and broadcast over leading batch dimensions.
"""

import jax
import jax.numpy as jnp

Array = jax.Array


def exp(log_r: Array) -> Array:
    """
    SO(3) exponential map: convert axis-angle vector to rotation matrix.

    Implements Rodrigues' formula. Used to apply revolute joint motion.

    Args:
        log_r: (..., 3) array of axis-angle vectors

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    angle_sq = jnp.sum(log_r * log_r, axis=-1, keepdims=True)
    small_angle = angle_sq < 1e-16

    # Keep sqrt away from zero so gradients stay finite at the identity
    angle = jnp.sqrt(jnp.where(small_angle, 1.0, angle_sq))

    # A = sin(θ)/θ, B = (1 - cos(θ))/θ², Taylor expansions near zero
    A = jnp.where(small_angle, 1.0 - angle_sq / 6.0, jnp.sin(angle) / angle)
    B = jnp.where(small_angle, 0.5 - angle_sq / 24.0, (1.0 - jnp.cos(angle)) / (angle * angle))

    # Rodrigues formula on the unnormalized axis: R = I + A * K + B * K²
    K = skew_symmetric(log_r)
    I = jnp.eye(3, dtype=log_r.dtype)
    I = jnp.broadcast_to(I, log_r.shape[:-1] + (3, 3))

    return I + A[..., None] * K + B[..., None] * jnp.matmul(K, K)


def vee(R: Array) -> Array:
    """
    Axis part of a rotation matrix: vee(R - R^T).

    Equals 2 * sin(θ) * axis for a rotation of θ about a unit axis.

    Args:
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 3) vector
    """
    return jnp.stack([
        R[..., 2, 1] - R[..., 1, 2],
        R[..., 0, 2] - R[..., 2, 0],
        R[..., 1, 0] - R[..., 0, 1],
    ], axis=-1)


def angle(R: Array) -> Array:
    """
    Rotation angle of R in [0, π].

    Uses atan2 on the sine and cosine parts, so identity maps to exactly 0
    and angles near π stay well conditioned.

    Args:
        R: (..., 3, 3) rotation matrix

    Returns:
        (...,) rotation angles
    """
    trace = jnp.trace(R, axis1=-2, axis2=-1)
    sin_part = jnp.linalg.norm(vee(R), axis=-1) / 2.0
    cos_part = (trace - 1.0) / 2.0
    return jnp.arctan2(sin_part, cos_part)


def twist_angle(R: Array, axis: Array) -> Array:
    """
    Twist component of R about a unit axis, in [0, π].

    From the swing-twist decomposition: with quaternion (w, v) of R, w >= 0,
    the twist angle is 2 * atan2(|v . axis|, w). A half turn (w = 0) about an
    axis with a component along `axis` has twist π.

    Args:
        R: (..., 3, 3) rotation matrix
        axis: (3,) unit axis expressed in the frame R acts in

    Returns:
        (...,) twist angles
    """
    q = to_quaternion(R)
    along = jnp.abs(jnp.sum(q[..., 1:] * axis, axis=-1))
    return 2.0 * jnp.arctan2(along, q[..., 0])


def skew_symmetric(v: Array) -> Array:
    """
    Convert 3D vector to skew-symmetric matrix.

    Args:
        v: (..., 3) vector

    Returns:
        (..., 3, 3) skew-symmetric matrix
    """
    zeros = jnp.zeros(v.shape[:-1], dtype=v.dtype)

    return jnp.stack([
        jnp.stack([zeros, -v[..., 2], v[..., 1]], axis=-1),
        jnp.stack([v[..., 2], zeros, -v[..., 0]], axis=-1),
        jnp.stack([-v[..., 1], v[..., 0], zeros], axis=-1)
    ], axis=-2)


def from_rpy(rpy: Array) -> Array:
    """
    Convert roll-pitch-yaw angles to a rotation matrix, R = Rz @ Ry @ Rx.

    Args:
        rpy: (3,) array of [roll, pitch, yaw] in radians

    Returns:
        (3, 3) rotation matrix
    """
    roll, pitch, yaw = rpy[0], rpy[1], rpy[2]
    cr, sr = jnp.cos(roll), jnp.sin(roll)
    cp, sp = jnp.cos(pitch), jnp.sin(pitch)
    cy, sy = jnp.cos(yaw), jnp.sin(yaw)

    return jnp.stack([
        jnp.stack([cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr]),
        jnp.stack([sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr]),
        jnp.stack([-sp, cp * sr, cp * cr]),
    ])


def from_quaternion(quaternions: Array) -> Array:
    """
    Convert quaternions to rotation matrices.

    Args:
        quaternions: (..., 4) array of quaternions in (w, x, y, z) format

    Returns:
        (..., 3, 3) array of rotation matrices
    """
    quaternions = quaternions / jnp.linalg.norm(quaternions, axis=-1, keepdims=True)

    w, x, y, z = jnp.moveaxis(quaternions, -1, 0)

    xx, yy, zz = x*x, y*y, z*z
    wx, wy, wz = w*x, w*y, w*z
    xy, xz, yz = x*y, x*z, y*z

    return jnp.stack([
        jnp.stack([1 - 2*(yy + zz), 2*(xy - wz), 2*(xz + wy)], axis=-1),
        jnp.stack([2*(xy + wz), 1 - 2*(xx + zz), 2*(yz - wx)], axis=-1),
        jnp.stack([2*(xz - wy), 2*(yz + wx), 1 - 2*(xx + yy)], axis=-1)
    ], axis=-2)


def to_quaternion(matrix: Array) -> Array:
    """
    Convert rotation matrices to quaternions (w, x, y, z) with w >= 0.

    Args:
        matrix: (..., 3, 3) array of rotation matrices

    Returns:
        (..., 4) array of quaternions in (w, x, y, z) format
    """
    m00 = matrix[..., 0, 0]
    m01 = matrix[..., 0, 1]
    m02 = matrix[..., 0, 2]
    m10 = matrix[..., 1, 0]
    m11 = matrix[..., 1, 1]
    m12 = matrix[..., 1, 2]
    m20 = matrix[..., 2, 0]
    m21 = matrix[..., 2, 1]
    m22 = matrix[..., 2, 2]

    trace = m00 + m11 + m22
    eps = jnp.finfo(matrix.dtype).eps

    # Four candidate quaternions, picked by the largest diagonal term
    q0 = jnp.stack([trace + 1.0, m21 - m12, m02 - m20, m10 - m01], axis=-1) * 0.5
    q1 = jnp.stack([m21 - m12, m00 - m11 - m22 + 1.0, m01 + m10, m02 + m20], axis=-1) * 0.5
    q2 = jnp.stack([m02 - m20, m01 + m10, m11 - m00 - m22 + 1.0, m12 + m21], axis=-1) * 0.5
    q3 = jnp.stack([m10 - m01, m02 + m20, m12 + m21, m22 - m00 - m11 + 1.0], axis=-1) * 0.5

    q0 = q0 / jnp.sqrt(jnp.maximum(1.0 + trace, eps))[..., None]
    q1 = q1 / jnp.sqrt(jnp.maximum(1.0 + m00 - m11 - m22, eps))[..., None]
    q2 = q2 / jnp.sqrt(jnp.maximum(1.0 + m11 - m00 - m22, eps))[..., None]
    q3 = q3 / jnp.sqrt(jnp.maximum(1.0 + m22 - m00 - m11, eps))[..., None]

    mask0 = (trace > 0)
    mask1 = (~mask0) & (m00 > m11) & (m00 > m22)
    mask2 = (~mask0) & (~mask1) & (m11 > m22)
    mask3 = (~mask0) & (~mask1) & (~mask2)

    quaternion = (
        jnp.where(mask0[..., None], q0, 0) +
        jnp.where(mask1[..., None], q1, 0) +
        jnp.where(mask2[..., None], q2, 0) +
        jnp.where(mask3[..., None], q3, 0)
    )

    quaternion = jnp.where(quaternion[..., 0:1] < 0, -quaternion, quaternion)
    return quaternion / jnp.linalg.norm(quaternion, axis=-1, keepdims=True)
