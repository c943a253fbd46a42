"""Forward kinematics over a RobotModel.

Forward kinematics is a pure function of the variable vector: each link frame
is its parent's frame composed with the link's fixed joint transform and the
joint motion exp(axis * q). Links are stored parent-before-child, so a single
scan computes every frame.
"""

from typing import Dict, List, Sequence

import jax
import jax.numpy as jnp
from jax import Array

from .core import RobotModel
from .exceptions import InvalidRequestError
from .transforms import Frame, se3


def forward_kinematics(robot: RobotModel, q: Array) -> Dict[str, Frame]:
    """Compute forward kinematics for all links in the robot.

    Args:
        robot: RobotModel containing the robot's kinematic structure
        q: Variable vector of shape (num_variables,)

    Returns:
        Dictionary mapping link names to their world-relative Frames
    """
    world_transforms = forward_kinematics_world(robot, q)
    return {name: Frame(world_transforms[i]) for i, name in enumerate(robot.link_names)}


def forward_kinematics_world(robot: RobotModel, q: Array) -> Array:
    """Internal FK function returning array of world transforms.

    Used inside the jitted search kernels and differentiated by them.

    Args:
        robot: RobotModel containing the robot's kinematic structure
        q: Variable vector of shape (num_variables,)

    Returns:
        Array of shape (num_links, 4, 4) with world poses for all links
    """
    num_links = robot.num_links

    # Scatter variables onto the links they drive; rigid links get zero motion
    if robot.num_variables:
        q = jnp.asarray(q, dtype=robot.joint_axes.dtype)
        gathered = q[jnp.maximum(robot.variable_indexes, 0)]
        q_full = jnp.where(robot.variable_indexes >= 0, gathered, 0.0)
    else:
        q_full = jnp.zeros(num_links, dtype=robot.joint_axes.dtype)

    world_transforms = jnp.broadcast_to(
        jnp.identity(4, dtype=robot.joint_transforms.dtype), (num_links, 4, 4)
    )

    def scan_body(carry, i):
        """Processes link `i` using its parent's world pose from `carry`."""
        T_world_to_parent = carry[robot.parent_indices[i]]

        T_joint_motion = se3.exp(robot.joint_axes[i] * q_full[i])
        T_parent_to_child = robot.joint_transforms[i] @ T_joint_motion

        # Roots parent themselves and read the identity still stored at their slot
        carry = carry.at[i].set(T_world_to_parent @ T_parent_to_child)
        return carry, None

    final_transforms, _ = jax.lax.scan(scan_body, world_transforms, jnp.arange(num_links))

    return final_transforms


def get_position_fk(robot: RobotModel, link_names: Sequence[str], q: Array) -> List[Frame]:
    """Frames of selected links for one variable vector.

    Raises:
        InvalidRequestError: If a link is unknown or q has the wrong length.
    """
    q = jnp.asarray(q, dtype=jnp.float64)
    if q.shape != (robot.num_variables,):
        raise InvalidRequestError(
            f"Expected a variable vector of length {robot.num_variables}, got shape {q.shape}"
        )
    indexes = []
    for name in link_names:
        try:
            indexes.append(robot.link_index(name))
        except KeyError as e:
            raise InvalidRequestError(str(e.args[0])) from None

    world_transforms = forward_kinematics_world(robot, q)
    return [Frame(world_transforms[i]) for i in indexes]
