"""Pose tolerance tests.

A FrameTest compares a candidate tip frame against a goal frame and reports
three independent errors:

* position: Euclidean distance between the translations,
* rotation: shortest-path angle between the orientations, in [0, π],
* twist: the part of the rotation about the tool approach axis (the goal's
  +z axis), from the swing-twist decomposition.

A test passes when every error is at or below its threshold. Tests are hard
gates; they are never folded into the goal cost.
"""

from typing import List, Sequence, Union

import jax
import jax.numpy as jnp
from flax import struct

from .transforms import Frame, so3

Array = jax.Array

APPROACH_AXIS = (0.0, 0.0, 1.0)

# Squared-norm floor keeping penalty gradients finite at zero error
_SAFE_EPS = 1e-18


@struct.dataclass
class FrameTestResult:
    position_error: Array
    rotation_error: Array
    twist_error: Array
    position_ok: Array
    rotation_ok: Array
    twist_ok: Array
    passed: Array
    violation: Array  # summed excess of each error over its threshold


@struct.dataclass
class FrameTest:
    """Tolerance test of one tip frame against its goal frame."""
    goal: Array  # (4, 4)
    position_threshold: float
    rotation_threshold: float
    twist_threshold: float

    def __call__(self, frame: Union[Frame, Array]) -> FrameTestResult:
        matrix = frame.matrix if isinstance(frame, Frame) else frame
        position_error, rotation_error, twist_error = frame_errors(self.goal, matrix)

        position_ok = position_error <= self.position_threshold
        rotation_ok = rotation_error <= self.rotation_threshold
        twist_ok = twist_error <= self.twist_threshold
        violation = (
            jnp.maximum(position_error - self.position_threshold, 0.0)
            + jnp.maximum(rotation_error - self.rotation_threshold, 0.0)
            + jnp.maximum(twist_error - self.twist_threshold, 0.0)
        )
        return FrameTestResult(
            position_error=position_error,
            rotation_error=rotation_error,
            twist_error=twist_error,
            position_ok=position_ok,
            rotation_ok=rotation_ok,
            twist_ok=twist_ok,
            passed=position_ok & rotation_ok & twist_ok,
            violation=violation,
        )

    def penalty(self, matrix: Array, margin: float, rotation_scale: float) -> Array:
        """Smooth penalty driving the frame inside its tolerances.

        Each error above `margin` times its threshold contributes the square
        of the excess; rotation and twist terms are scaled by `rotation_scale`.
        Differentiable everywhere, including at zero error.
        """
        dp = matrix[:3, 3] - self.goal[:3, 3]
        position_error = jnp.sqrt(jnp.sum(dp * dp) + _SAFE_EPS)

        R = jnp.matmul(jnp.swapaxes(self.goal[:3, :3], -1, -2), matrix[:3, :3])
        axis_part = so3.vee(R)
        trace = jnp.trace(R)
        sin_part = jnp.sqrt(jnp.sum(axis_part * axis_part) + _SAFE_EPS) / 2.0
        rotation_error = jnp.arctan2(sin_part, (trace - 1.0) / 2.0)

        q = so3.to_quaternion(R)
        along = jnp.sqrt(jnp.sum(q[1:] * jnp.asarray(APPROACH_AXIS)) ** 2 + _SAFE_EPS)
        twist_error = 2.0 * jnp.arctan2(along, q[0])

        def hinge(error, threshold):
            return jnp.maximum(error - margin * threshold, 0.0) ** 2

        return (
            hinge(position_error, self.position_threshold)
            + rotation_scale * hinge(rotation_error, self.rotation_threshold)
            + rotation_scale * hinge(twist_error, self.twist_threshold)
        )


def frame_errors(goal: Array, matrix: Array):
    """Position, rotation and twist errors of `matrix` against `goal`.

    Rotation errors are measured in the goal frame. Exactly zero for zero
    translation or identity rotation.
    """
    position_error = jnp.linalg.norm(matrix[:3, 3] - goal[:3, 3])
    R = jnp.matmul(jnp.swapaxes(goal[:3, :3], -1, -2), matrix[:3, :3])
    rotation_error = so3.angle(R)
    twist_error = so3.twist_angle(R, jnp.asarray(APPROACH_AXIS, dtype=R.dtype))
    return position_error, rotation_error, twist_error


def make_frame_tests(
    goal_frames: Sequence[Union[Frame, Array]],
    position_threshold: float,
    rotation_threshold: float,
    twist_threshold: float,
) -> List[FrameTest]:
    """Build one FrameTest per goal frame with shared thresholds."""
    tests = []
    for goal in goal_frames:
        matrix = goal.matrix if isinstance(goal, Frame) else jnp.asarray(goal, dtype=jnp.float64)
        tests.append(FrameTest(
            goal=matrix,
            position_threshold=float(position_threshold),
            rotation_threshold=float(rotation_threshold),
            twist_threshold=float(twist_threshold),
        ))
    return tests
