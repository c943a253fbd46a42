"""RobotModel PyTree data structure and its builder.

This module defines the immutable kinematic model shared by every solve call,
and the single topological pass that turns a structural description of
joints and links into it. The builder is the only place a model can fail
fatally; once built, a RobotModel is valid for every later computation.
"""

import enum
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np
from flax import struct
from jax import Array

from ..exceptions import InvalidModelError, ModelBuildError
from ..transforms import Frame, se3

logger = logging.getLogger(__name__)


class JointType(enum.Enum):
    REVOLUTE = "revolute"
    CONTINUOUS = "continuous"
    PRISMATIC = "prismatic"
    FIXED = "fixed"
    OTHER = "other"

    @property
    def has_variable(self) -> bool:
        return self in (JointType.REVOLUTE, JointType.CONTINUOUS, JointType.PRISMATIC)


@dataclass(frozen=True)
class LinkDescription:
    """A link and the fixed offset from its parent joint frame to the link frame."""
    name: str
    offset: Frame = field(default_factory=Frame.identity)


@dataclass(frozen=True)
class JointDescription:
    """One joint of the structural description.

    Attributes:
        name: Joint name, unique within the model.
        type: Joint type. Only revolute, continuous and prismatic joints own a
              variable; fixed and other joints are rigid.
        parent: Name of the parent link.
        child: Name of the child link.
        origin: Transform from the parent link frame to the joint frame.
        axis: Joint axis in the joint frame.
        lower: Lower position limit, or None when unbounded.
        upper: Upper position limit, or None when unbounded.
    """
    name: str
    type: JointType
    parent: str
    child: str
    origin: Frame = field(default_factory=Frame.identity)
    axis: Tuple[float, float, float] = (0.0, 0.0, 1.0)
    lower: Optional[float] = None
    upper: Optional[float] = None


@struct.dataclass
class RobotModel:
    """Immutable PyTree representation of a robot's kinematic structure.

    Links are stored in topological order, so every parent index is smaller
    than its child's. Root links parent themselves; a model may contain
    several disconnected chains.

    Attributes:
        link_names: Tuple of all link names. Index corresponds to link ID.
        joint_names: Names of the variable-owning joints, in variable order.
        link_joint_names: Name of the joint whose child is each link, None for roots.
        parent_indices: Array of shape (num_links,), parent link index per link.
        joint_transforms: Array of shape (num_links, 4, 4), fixed transform from
                          the parent link frame to each link at zero motion.
        joint_axes: Array of shape (num_links, 6), se(3) twist [v, w] of each
                    joint expressed in the link frame. Zero for rigid joints.
        variable_indexes: Array of shape (num_links,), variable driving each
                          link or -1.
        lower_limits: Array of shape (num_variables,), -inf when unbounded.
        upper_limits: Array of shape (num_variables,), +inf when unbounded.
    """
    link_names: Tuple[str, ...] = struct.field(pytree_node=False)
    joint_names: Tuple[str, ...] = struct.field(pytree_node=False)
    link_joint_names: Tuple[Optional[str], ...] = struct.field(pytree_node=False)
    parent_indices: Array
    joint_transforms: Array
    joint_axes: Array
    variable_indexes: Array
    lower_limits: Array
    upper_limits: Array

    @property
    def num_links(self) -> int:
        return len(self.link_names)

    @property
    def num_variables(self) -> int:
        return len(self.joint_names)

    def link_index(self, link_name: str) -> int:
        try:
            return self.link_names.index(link_name)
        except ValueError:
            raise KeyError(f"Link '{link_name}' not found in robot model") from None


def build_robot_model(
    joints: Sequence[JointDescription],
    links: Sequence[LinkDescription] = (),
) -> RobotModel:
    """Build a RobotModel from a structural description.

    Args:
        joints: Joint descriptions. Variable order follows the order of the
                variable-owning joints in this sequence.
        links: Optional link descriptions. When given, every link referenced by
               a joint must be listed; links absent from any joint become roots.

    Returns:
        RobotModel ready for forward kinematics.

    Raises:
        InvalidModelError: If a link has two parent joints or the joints form a cycle.
        ModelBuildError: For any other malformed description.
    """
    if not joints and not links:
        raise ModelBuildError("Cannot build a robot model from an empty description")

    link_by_name: Dict[str, LinkDescription] = {}
    for link in links:
        if link.name in link_by_name:
            raise ModelBuildError(f"Duplicate link name '{link.name}'")
        link_by_name[link.name] = link

    # First pass: topology
    joint_by_child: Dict[str, JointDescription] = {}
    children: Dict[str, List[JointDescription]] = {}
    all_links: List[str] = list(link_by_name)
    seen_joints = set()

    for joint in joints:
        if joint.name in seen_joints:
            raise ModelBuildError(f"Duplicate joint name '{joint.name}'")
        seen_joints.add(joint.name)

        if joint.parent == joint.child:
            raise InvalidModelError(f"joint '{joint.name}' connects link '{joint.parent}' to itself")
        if joint.child in joint_by_child:
            raise InvalidModelError(
                f"link '{joint.child}' has two parent joints "
                f"('{joint_by_child[joint.child].name}' and '{joint.name}')"
            )
        if link_by_name:
            for link_name in (joint.parent, joint.child):
                if link_name not in link_by_name:
                    raise ModelBuildError(f"Joint '{joint.name}' refers to unknown link '{link_name}'")

        joint_by_child[joint.child] = joint
        children.setdefault(joint.parent, []).append(joint)
        for link_name in (joint.parent, joint.child):
            if link_name not in all_links:
                all_links.append(link_name)

    roots = [name for name in all_links if name not in joint_by_child]
    if not roots:
        raise InvalidModelError("no root link, the joints form a cycle")

    # Breadth-first traversal from every root gives parent-before-child order
    ordered_links: List[str] = []
    visited = set()
    queue = deque(roots)
    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        ordered_links.append(current)
        for joint in children.get(current, []):
            queue.append(joint.child)

    unreachable = [name for name in all_links if name not in visited]
    if unreachable:
        raise InvalidModelError(f"links {unreachable} lie on a cycle")

    link_map = {name: i for i, name in enumerate(ordered_links)}

    # Variables follow declaration order of the variable-owning joints
    variable_joints = [j for j in joints if j.type.has_variable]
    variable_map = {j.name: i for i, j in enumerate(variable_joints)}
    for joint in joints:
        if joint.type is JointType.OTHER:
            logger.warning("Joint '%s' has an unsupported type and is treated as fixed", joint.name)

    lower_limits = []
    upper_limits = []
    for joint in variable_joints:
        lower = -np.inf if joint.lower is None or joint.type is JointType.CONTINUOUS else float(joint.lower)
        upper = np.inf if joint.upper is None or joint.type is JointType.CONTINUOUS else float(joint.upper)
        if lower > upper:
            raise ModelBuildError(f"Joint '{joint.name}' has lower limit {lower} above upper limit {upper}")
        lower_limits.append(lower)
        upper_limits.append(upper)

    # Second pass: per-link arrays
    parent_indices_list = []
    joint_transforms_list = []
    joint_axes_list = []
    variable_indexes_list = []
    link_joint_names = []

    for i, link_name in enumerate(ordered_links):
        offset = link_by_name[link_name].offset.matrix if link_name in link_by_name else jnp.eye(4)
        joint = joint_by_child.get(link_name)

        if joint is None:
            parent_indices_list.append(i)
            joint_transforms_list.append(offset)
            joint_axes_list.append(jnp.zeros(6))
            variable_indexes_list.append(-1)
            link_joint_names.append(None)
            continue

        parent_indices_list.append(link_map[joint.parent])
        link_joint_names.append(joint.name)
        axis = _joint_twist(joint)

        # exp(axis q) @ offset == offset @ exp(Ad(offset^-1) axis q)
        joint_transforms_list.append(se3.multiply(joint.origin.matrix, offset))
        joint_axes_list.append(se3.adjoint(se3.inverse(offset)) @ axis)
        variable_indexes_list.append(variable_map.get(joint.name, -1))

    robot = RobotModel(
        link_names=tuple(ordered_links),
        joint_names=tuple(j.name for j in variable_joints),
        link_joint_names=tuple(link_joint_names),
        parent_indices=jnp.array(parent_indices_list, dtype=jnp.int32),
        joint_transforms=jnp.stack(joint_transforms_list).astype(jnp.float64),
        joint_axes=jnp.stack(joint_axes_list).astype(jnp.float64),
        variable_indexes=jnp.array(variable_indexes_list, dtype=jnp.int32),
        lower_limits=jnp.array(lower_limits, dtype=jnp.float64),
        upper_limits=jnp.array(upper_limits, dtype=jnp.float64),
    )
    logger.debug(
        "Built robot model with %d links, %d variables and %d root(s)",
        robot.num_links, robot.num_variables, len(roots),
    )
    return robot


def _joint_twist(joint: JointDescription) -> Array:
    """Unit twist [v, w] of a joint in its own frame."""
    if not joint.type.has_variable:
        return jnp.zeros(6)

    axis = np.asarray(joint.axis, dtype=np.float64)
    norm = np.linalg.norm(axis)
    if axis.shape != (3,) or norm < 1e-12:
        raise ModelBuildError(f"Joint '{joint.name}' has an invalid axis {joint.axis}")
    axis = jnp.asarray(axis / norm)

    if joint.type is JointType.PRISMATIC:
        return jnp.concatenate([axis, jnp.zeros(3)])
    return jnp.concatenate([jnp.zeros(3), axis])
