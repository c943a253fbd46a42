"""Selection of the variables a solve call optimizes over.

Both results are pure functions of the model topology, the joint group and
the tip links, and are computed once when a solver is built.
"""

from typing import Dict, Sequence, Tuple

import numpy as np

from .core import JointGroup, RobotModel
from .exceptions import BindingError


def get_link_indexes(robot: RobotModel, link_names: Sequence[str]) -> Tuple[int, ...]:
    indexes = []
    for name in link_names:
        try:
            indexes.append(robot.link_index(name))
        except KeyError:
            raise BindingError(f"Tip link '{name}' not found in robot model", robot.link_names) from None
    return tuple(indexes)


def get_group_variable_indexes(robot: RobotModel, group: JointGroup) -> Tuple[int, ...]:
    """Variables owned by the joints of `group`, in model order."""
    known_joints = set(name for name in robot.link_joint_names if name is not None)
    for name in group.joint_names:
        if name not in known_joints:
            raise BindingError(
                f"Joint '{name}' of group '{group.name}' not found in robot model",
                sorted(known_joints),
            )
    members = set(group.joint_names)
    return tuple(i for i, name in enumerate(robot.joint_names) if name in members)


def _ancestor_variables(robot: RobotModel, link_index: int) -> Tuple[int, ...]:
    """Variables of the joints between `link_index` and its root."""
    parents = np.asarray(robot.parent_indices)
    variable_indexes = np.asarray(robot.variable_indexes)
    found = []
    i = link_index
    while True:
        if variable_indexes[i] >= 0:
            found.append(int(variable_indexes[i]))
        parent = int(parents[i])
        if parent == i:
            return tuple(found)
        i = parent


def get_active_variable_indexes(
    robot: RobotModel,
    group: JointGroup,
    tip_link_indexes: Sequence[int],
) -> Tuple[int, ...]:
    """Group variables that move at least one tip link, in model order.

    Raises:
        BindingError: If no group variable influences any tip.
    """
    group_variables = set(get_group_variable_indexes(robot, group))
    active = set()
    for tip in tip_link_indexes:
        active.update(v for v in _ancestor_variables(robot, tip) if v in group_variables)
    if not active:
        tips = [robot.link_names[i] for i in tip_link_indexes]
        raise BindingError(f"No variable of group '{group.name}' moves tip links {tips}")
    return tuple(sorted(active))


def get_minimal_displacement_factors(
    robot: RobotModel,
    active_variable_indexes: Sequence[int],
    tip_link_indexes: Sequence[int],
) -> np.ndarray:
    """Per active variable, the share of requested tips its motion moves."""
    fan_out: Dict[int, int] = {v: 0 for v in active_variable_indexes}
    for tip in tip_link_indexes:
        for v in set(_ancestor_variables(robot, tip)):
            if v in fan_out:
                fan_out[v] += 1
    num_tips = max(len(tip_link_indexes), 1)
    return np.array([fan_out[v] / num_tips for v in active_variable_indexes], dtype=np.float64)


def select(values, indexes: Sequence[int]):
    """Entries of `values` at `indexes`."""
    return np.asarray(values, dtype=np.float64)[np.asarray(indexes, dtype=np.int64)]
