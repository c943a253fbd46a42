"""
gd_ik: gradient-descent inverse kinematics in JAX.

Build a RobotModel, bind a Solver to a joint group and its tip links with
`build`, then call `Solver.solve` with target poses, a seed and a timeout.
"""

import logging

import jax
jax.config.update("jax_enable_x64", True)

from . import transforms
from . import core
from . import io
from .chain import forward_kinematics, get_position_fk
from .config import SolverConfig
from .core import JointDescription, JointGroup, JointType, LinkDescription, RobotModel, build_robot_model
from .exceptions import (
    BindingError,
    GDIKError,
    InvalidModelError,
    InvalidRequestError,
    ModelBuildError,
    NoSolutionFound,
)
from .frame_tests import FrameTest, make_frame_tests
from .solver import ErrorCode, IKResult, QueryOptions, Solver, build
from .transforms import Frame

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
__all__ = [
    "transforms",
    "core",
    "io",
    "BindingError",
    "ErrorCode",
    "Frame",
    "FrameTest",
    "GDIKError",
    "IKResult",
    "InvalidModelError",
    "InvalidRequestError",
    "JointDescription",
    "JointGroup",
    "JointType",
    "LinkDescription",
    "ModelBuildError",
    "NoSolutionFound",
    "QueryOptions",
    "RobotModel",
    "Solver",
    "SolverConfig",
    "build",
    "build_robot_model",
    "forward_kinematics",
    "get_position_fk",
    "make_frame_tests",
]
