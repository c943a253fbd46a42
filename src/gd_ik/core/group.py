"""Named joint groups bound to a solver."""

from dataclasses import dataclass
from typing import Tuple

from .robot_model import RobotModel


@dataclass(frozen=True)
class JointGroup:
    """A named subset of a robot's joints.

    Fixed joints may be listed; they simply contribute no variables.
    """
    name: str
    joint_names: Tuple[str, ...]

    def __post_init__(self):
        object.__setattr__(self, "joint_names", tuple(self.joint_names))

    @classmethod
    def all_joints(cls, robot: RobotModel, name: str = "all") -> "JointGroup":
        """Group holding every joint of the model."""
        return cls(name, tuple(j for j in robot.link_joint_names if j is not None))
