"""Core robot model data structures for gd_ik.

This module provides the immutable kinematic model, its builder and the
joint groups solvers are bound to.
"""

from .group import JointGroup
from .robot_model import (
    JointDescription,
    JointType,
    LinkDescription,
    RobotModel,
    build_robot_model,
)

__all__ = [
    "JointDescription",
    "JointGroup",
    "JointType",
    "LinkDescription",
    "RobotModel",
    "build_robot_model",
]
