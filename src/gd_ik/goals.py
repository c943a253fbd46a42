"""Goal and cost-function framework.

A goal pairs a cost function with a weight. Cost functions map the active
variable values of a candidate to a non-negative scalar, zero meaning fully
satisfied. The built-in costs are flat Flax pytrees and trace under jit; the
user hook calls back into arbitrary host code and is evaluated outside of it.

The aggregate cost of a candidate is the sum of weight * cost over the
instantiated goals. Goals whose weight is not positive are never built, and
`aggregate_cost` never evaluates them.
"""

from dataclasses import dataclass
from typing import Callable, ClassVar, List, Optional, Protocol, Sequence

import jax
import jax.numpy as jnp
import numpy as np
from flax import struct

from .config import SolverConfig
from .core import RobotModel
from .frame_tests import FrameTest
from .transforms import Frame

Array = jax.Array

# Closest a normalized position may get to a limit in the barrier term
_LIMIT_EPS = 1e-6

UserCostFunction = Callable[[Frame, np.ndarray], float]


class CostFn(Protocol):
    traceable: ClassVar[bool]

    def __call__(self, active_values) -> Array:
        ...


def _range_terms(robot: RobotModel, active_variable_indexes: Sequence[int]):
    """Midpoints, half spans and boundedness of the active variables."""
    indexes = jnp.asarray(active_variable_indexes, dtype=jnp.int32)
    lower = robot.lower_limits[indexes]
    upper = robot.upper_limits[indexes]
    bounded = jnp.isfinite(lower) & jnp.isfinite(upper)
    mids = jnp.where(bounded, (lower + upper) / 2.0, 0.0)
    half_spans = jnp.where(bounded, jnp.maximum((upper - lower) / 2.0, 1e-12), 1.0)
    return mids, half_spans, bounded


@struct.dataclass
class CenterJointsCost:
    """Squared normalized distance of each bounded variable from its range midpoint."""
    mids: Array
    half_spans: Array
    bounded: Array
    factors: Array

    traceable: ClassVar[bool] = True

    def __call__(self, active_values) -> Array:
        u = (active_values - self.mids) / self.half_spans
        return jnp.sum(jnp.where(self.bounded, (self.factors * u) ** 2, 0.0))


@struct.dataclass
class AvoidJointLimitsCost:
    """Barrier rising smoothly as a bounded variable nears either limit.

    With u the position normalized to [-1, 1] over the joint range, each
    variable contributes factor * (1 / (1 - u²) - 1): zero at the midpoint,
    growing without a hard cutoff, and finite at the limit itself.
    """
    mids: Array
    half_spans: Array
    bounded: Array
    factors: Array

    traceable: ClassVar[bool] = True

    def __call__(self, active_values) -> Array:
        u = (active_values - self.mids) / self.half_spans
        distance = jnp.maximum(1.0 - u * u, _LIMIT_EPS)
        return jnp.sum(jnp.where(self.bounded, self.factors * (1.0 / distance - 1.0), 0.0))


@struct.dataclass
class MinimalDisplacementCost:
    """Weighted squared displacement from the seed configuration."""
    initial_guess: Array
    factors: Array

    traceable: ClassVar[bool] = True

    def __call__(self, active_values) -> Array:
        return jnp.sum((self.factors * (active_values - self.initial_guess)) ** 2)


@dataclass(frozen=True)
class IkCost:
    """Caller-supplied cost evaluated for one requested pose.

    The callback receives the goal frame and the full variable vector of the
    candidate, built from the seed with the active values substituted.
    """
    pose: Frame
    cost_function: UserCostFunction
    initial_guess: np.ndarray
    active_variable_indexes: tuple

    traceable: ClassVar[bool] = False

    def __call__(self, active_values) -> float:
        variables = np.array(self.initial_guess, dtype=np.float64)
        variables[list(self.active_variable_indexes)] = np.asarray(active_values, dtype=np.float64)
        return float(self.cost_function(self.pose, variables))


@struct.dataclass
class Goal:
    cost_fn: CostFn
    weight: float = struct.field(pytree_node=False)

    @property
    def traceable(self) -> bool:
        return getattr(self.cost_fn, "traceable", False)


def make_center_joints_cost_fn(robot: RobotModel, active_variable_indexes, minimal_displacement_factors) -> CenterJointsCost:
    mids, half_spans, bounded = _range_terms(robot, active_variable_indexes)
    return CenterJointsCost(mids, half_spans, bounded, jnp.asarray(minimal_displacement_factors, dtype=jnp.float64))


def make_avoid_joint_limits_cost_fn(robot: RobotModel, active_variable_indexes, minimal_displacement_factors) -> AvoidJointLimitsCost:
    mids, half_spans, bounded = _range_terms(robot, active_variable_indexes)
    return AvoidJointLimitsCost(mids, half_spans, bounded, jnp.asarray(minimal_displacement_factors, dtype=jnp.float64))


def make_minimal_displacement_cost_fn(active_initial_guess, minimal_displacement_factors) -> MinimalDisplacementCost:
    return MinimalDisplacementCost(
        jnp.asarray(active_initial_guess, dtype=jnp.float64),
        jnp.asarray(minimal_displacement_factors, dtype=jnp.float64),
    )


def make_ik_cost_fn(pose: Frame, cost_function: UserCostFunction, initial_guess, active_variable_indexes) -> IkCost:
    return IkCost(
        pose=pose,
        cost_function=cost_function,
        initial_guess=np.asarray(initial_guess, dtype=np.float64),
        active_variable_indexes=tuple(int(i) for i in active_variable_indexes),
    )


def make_goals(
    config: SolverConfig,
    robot: RobotModel,
    active_variable_indexes: Sequence[int],
    minimal_displacement_factors,
    active_initial_guess,
    poses: Sequence[Frame] = (),
    cost_function: Optional[UserCostFunction] = None,
    initial_guess=None,
) -> List[Goal]:
    """Instantiate the goals enabled by `config` for one solve call.

    Goals with a weight <= 0 are skipped entirely. When `cost_function` is
    given, one user goal with weight 1.0 is added per requested pose.
    """
    goals = []
    if config.center_joints_weight > 0.0:
        goals.append(Goal(
            make_center_joints_cost_fn(robot, active_variable_indexes, minimal_displacement_factors),
            config.center_joints_weight,
        ))
    if config.avoid_joint_limits_weight > 0.0:
        goals.append(Goal(
            make_avoid_joint_limits_cost_fn(robot, active_variable_indexes, minimal_displacement_factors),
            config.avoid_joint_limits_weight,
        ))
    if config.minimal_displacement_weight > 0.0:
        goals.append(Goal(
            make_minimal_displacement_cost_fn(active_initial_guess, minimal_displacement_factors),
            config.minimal_displacement_weight,
        ))
    if cost_function is not None:
        for pose in poses:
            goals.append(Goal(make_ik_cost_fn(pose, cost_function, initial_guess, active_variable_indexes), 1.0))
    return goals


def aggregate_cost(goals: Sequence[Goal], active_values):
    """Sum of weight * cost over goals with a positive weight."""
    total = 0.0
    for goal in goals:
        if goal.weight <= 0.0:
            continue
        total = total + goal.weight * goal.cost_fn(active_values)
    return total


def make_is_solution_test_fn(frame_tests: Sequence[FrameTest], goals: Sequence[Goal], cost_threshold: float):
    """Acceptance test: every frame test passes and aggregate cost <= threshold.

    The returned function takes the tip frames (one per frame test, as Frames
    or 4x4 arrays) and the active variable values of a candidate.
    """
    def is_solution(tip_frames, active_values) -> bool:
        for test, frame in zip(frame_tests, tip_frames):
            if not bool(test(frame).passed):
                return False
        return float(aggregate_cost(goals, active_values)) <= cost_threshold

    return is_solution
