"""SE(3) rigid-body transform operations in JAX.

Transforms are 4x4 homogeneous matrices; twists are 6-vectors [v, w] with the
linear part first. All functions are pure and JIT-able, and stay
differentiable at zero rotation, where joint motion is evaluated most often.
"""


import jax
import jax.numpy as jnp

from . import so3

Array = jax.Array


def from_position_and_rotation(p: Array, R: Array) -> Array:
    """
    Construct SE(3) transform from position and rotation.

    Args:
        p: (..., 3) position vector
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 4, 4) homogeneous transformation matrix
    """
    batch_shape = jnp.broadcast_shapes(p.shape[:-1], R.shape[:-2])
    p = jnp.broadcast_to(p, batch_shape + (3,))
    R = jnp.broadcast_to(R, batch_shape + (3, 3))

    T = jnp.zeros(batch_shape + (4, 4), dtype=jnp.result_type(p.dtype, R.dtype))
    T = T.at[..., :3, :3].set(R)
    T = T.at[..., :3, 3].set(p)
    T = T.at[..., 3, 3].set(1.0)

    return T


def exp(twist: Array) -> Array:
    """
    SE(3) exponential map: convert twist to transformation matrix.

    Args:
        twist: (..., 6) array of twists [vx, vy, vz, wx, wy, wz].

    Returns:
        (..., 4, 4) array of transformation matrices.
    """
    v, w = twist[..., :3], twist[..., 3:]
    angle_sq = jnp.sum(w * w, axis=-1, keepdims=True)
    is_small_angle = angle_sq < 1e-12

    R = so3.exp(w)

    # Safe angle for the large-angle branch; prismatic joints have w == 0
    angle = jnp.sqrt(jnp.where(is_small_angle, 1.0, angle_sq))
    safe_sq = angle * angle

    # A = (1 - cos(theta)) / theta^2  ~ 1/2 - theta^2/24
    A = jnp.where(is_small_angle, 0.5 - angle_sq / 24.0, (1.0 - jnp.cos(angle)) / safe_sq)

    # B = (theta - sin(theta)) / theta^3  ~ 1/6 - theta^2/120
    B = jnp.where(is_small_angle, 1.0 / 6.0 - angle_sq / 120.0, (angle - jnp.sin(angle)) / (safe_sq * angle))

    K = so3.skew_symmetric(w)
    K_sq = jnp.matmul(K, K)

    I = jnp.eye(3, dtype=twist.dtype)
    I = jnp.broadcast_to(I, K.shape)

    # V = I + A*K + B*K^2
    V = I + A[..., None] * K + B[..., None] * K_sq

    t = jnp.einsum("...ij,...j->...i", V, v)

    return from_position_and_rotation(t, R)


def multiply(T1: Array, T2: Array) -> Array:
    """
    Multiply two SE(3) transformation matrices.

    Args:
        T1: (..., 4, 4) first transformation matrix
        T2: (..., 4, 4) second transformation matrix

    Returns:
        (..., 4, 4) result of T1 @ T2
    """
    return jnp.matmul(T1, T2)


def inverse(T: Array) -> Array:
    """
    Compute inverse of SE(3) transformation matrix.

    T^-1 = [[R^T, -R^T @ t], [0, 1]]

    Args:
        T: (..., 4, 4) transformation matrix

    Returns:
        (..., 4, 4) inverse transformation matrix
    """
    R = T[..., :3, :3]
    t = T[..., :3, 3]

    R_inv = jnp.swapaxes(R, -1, -2)
    t_inv = -jnp.einsum("...ij,...j->...i", R_inv, t)

    return from_position_and_rotation(t_inv, R_inv)


def apply(T: Array, points: Array) -> Array:
    """
    Apply SE(3) transformation to points.

    Args:
        T: (4, 4) transformation matrix
        points: (3,) or (N, 3) points to transform

    Returns:
        (3,) or (N, 3) transformed points
    """
    ones = jnp.ones_like(points[..., 0:1])
    points_h = jnp.concatenate([points, ones], axis=-1)

    transformed_h = jnp.einsum("ij,...j->...i", T, points_h)

    return transformed_h[..., :3]


def get_position(T: Array) -> Array:
    """Extract the (..., 3) position from a (..., 4, 4) transform."""
    return T[..., :3, 3]


def get_rotation(T: Array) -> Array:
    """Extract the (..., 3, 3) rotation from a (..., 4, 4) transform."""
    return T[..., :3, :3]


def adjoint(T: Array) -> Array:
    """
    Compute the adjoint matrix of SE(3) transformation.

    Maps twists [v, w] expressed in the frame of T into its parent frame.

    Args:
        T: (..., 4, 4) transformation matrix

    Returns:
        (..., 6, 6) adjoint matrix [[R, [t]_x R], [0, R]]
    """
    R = T[..., :3, :3]
    t = T[..., :3, 3]

    t_skew = so3.skew_symmetric(t)
    zeros = jnp.zeros_like(R)

    top = jnp.concatenate([R, jnp.matmul(t_skew, R)], axis=-1)
    bottom = jnp.concatenate([zeros, R], axis=-1)

    return jnp.concatenate([top, bottom], axis=-2)
