"""Immutable rigid-body pose value type."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import jax
import jax.numpy as jnp
from jax.tree_util import register_pytree_node_class

from . import se3, so3

Array = jax.Array


@register_pytree_node_class  # lets Frame pass through jit / grad / vmap
@dataclass(frozen=True)
class Frame:
    """A pose: translation plus rotation, stored as a 4x4 homogeneous matrix."""
    matrix: Array  # shape (4, 4)

    # Constructors
    @classmethod
    def from_matrix(cls, matrix) -> "Frame":
        matrix = jnp.asarray(matrix, dtype=jnp.float64)
        if matrix.shape != (4, 4):
            raise ValueError(f"matrix must have shape (4, 4), got {matrix.shape}")
        return cls(matrix)

    @classmethod
    def from_position_quaternion(cls, position: Sequence[float], quaternion: Sequence[float] = (1.0, 0.0, 0.0, 0.0)) -> "Frame":
        """Build from a position and a (w, x, y, z) quaternion."""
        p = jnp.asarray(position, dtype=jnp.float64)
        R = so3.from_quaternion(jnp.asarray(quaternion, dtype=jnp.float64))
        return cls(se3.from_position_and_rotation(p, R))

    @classmethod
    def from_position_rpy(cls, position: Sequence[float], rpy: Sequence[float] = (0.0, 0.0, 0.0)) -> "Frame":
        p = jnp.asarray(position, dtype=jnp.float64)
        R = so3.from_rpy(jnp.asarray(rpy, dtype=jnp.float64))
        return cls(se3.from_position_and_rotation(p, R))

    @classmethod
    def from_translation(cls, x: float, y: float = 0.0, z: float = 0.0) -> "Frame":
        return cls.from_position_quaternion((x, y, z))

    @classmethod
    def identity(cls) -> "Frame":
        return cls(jnp.eye(4, dtype=jnp.float64))

    # PyTree boiler-plate
    def tree_flatten(self):
        return (self.matrix,), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        (matrix,) = children
        return cls(matrix)

    # Basic operations
    def compose(self, other: "Frame") -> "Frame":
        """Self ∘ other (apply *other* first, then self)."""
        return Frame(se3.multiply(self.matrix, other.matrix))

    def inverse(self) -> "Frame":
        return Frame(se3.inverse(self.matrix))

    def transform_point(self, point: Array) -> Array:
        """Apply the frame to a (3,) point or an (N, 3) array of points."""
        return se3.apply(self.matrix, jnp.asarray(point, dtype=self.matrix.dtype))

    # Convenience helpers
    @property
    def position(self) -> Array:
        return se3.get_position(self.matrix)

    @property
    def rotation(self) -> Array:
        return se3.get_rotation(self.matrix)

    @property
    def quaternion(self) -> Array:
        """Orientation as a (w, x, y, z) quaternion with w >= 0."""
        return so3.to_quaternion(self.rotation)
