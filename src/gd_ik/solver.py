"""Inverse-kinematics solver bound to one joint group and its tip links.

`build` resolves the group and tips against the model once; every later
`Solver.solve` call only creates per-call state (frame tests, goals and the
search problem) and leaves the solver itself untouched.
"""

import enum
import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

import jax
import jax.numpy as jnp
import numpy as np

from .chain import forward_kinematics_world, get_position_fk
from .config import SolverConfig
from .core import JointGroup, RobotModel
from .exceptions import BindingError, InvalidRequestError, NoSolutionFound
from .frame_tests import make_frame_tests
from .goals import UserCostFunction, make_goals, make_is_solution_test_fn
from .search import SearchProblem, search, warm_up
from .transforms import Frame
from .variables import (
    get_active_variable_indexes,
    get_group_variable_indexes,
    get_link_indexes,
    get_minimal_displacement_factors,
    select,
)

logger = logging.getLogger(__name__)

SolutionCallback = Callable[[np.ndarray], bool]


class ErrorCode(enum.Enum):
    SUCCESS = "success"
    NO_IK_SOLUTION = "no_ik_solution"
    INVALID_REQUEST = "invalid_request"


@dataclass(frozen=True)
class QueryOptions:
    """Per-call options.

    Attributes:
        return_approximate_solution: On timeout, return the best candidate
            found in `IKResult.solution`. The error code is unchanged.
        lock_redundant_joints: Not supported; requests setting it are rejected.
    """
    return_approximate_solution: bool = False
    lock_redundant_joints: bool = False


@dataclass(frozen=True)
class IKResult:
    error_code: ErrorCode
    solution: Optional[np.ndarray] = None  # full variable vector
    message: str = ""
    iterations: int = 0
    elapsed: float = 0.0
    timeout: float = 0.0

    @property
    def success(self) -> bool:
        return self.error_code is ErrorCode.SUCCESS

    def raise_for_error(self) -> None:
        if self.error_code is ErrorCode.INVALID_REQUEST:
            raise InvalidRequestError(self.message)
        if self.error_code is ErrorCode.NO_IK_SOLUTION:
            raise NoSolutionFound(self.timeout, self.iterations)


class Solver:
    """Gradient-descent IK solver for one joint group.

    Build instances with `build`. A solver holds no per-call state, so a
    single instance may serve any number of sequential or concurrent calls.
    """

    def __init__(
        self,
        robot: RobotModel,
        group: JointGroup,
        tip_link_names: Sequence[str],
        search_discretization: float,
        config: SolverConfig,
    ):
        self.robot = robot
        self.group = group
        self.config = config
        self.search_discretization = float(search_discretization)

        self._tip_link_names = tuple(tip_link_names)
        self._tip_link_indexes = get_link_indexes(robot, self._tip_link_names)
        self._group_variable_indexes = get_group_variable_indexes(robot, group)
        self._active_variable_indexes = get_active_variable_indexes(robot, group, self._tip_link_indexes)
        self._minimal_displacement_factors = get_minimal_displacement_factors(
            robot, self._active_variable_indexes, self._tip_link_indexes
        )

        self._active = np.asarray(self._active_variable_indexes, dtype=np.int64)
        self._active_array = jnp.asarray(self._active_variable_indexes, dtype=jnp.int32)
        self._tip_array = jnp.asarray(self._tip_link_indexes, dtype=jnp.int32)
        self._lower = select(robot.lower_limits, self._active_variable_indexes)
        self._upper = select(robot.upper_limits, self._active_variable_indexes)

    @property
    def joint_names(self) -> Tuple[str, ...]:
        """Variable names of the bound group, in model order."""
        return tuple(self.robot.joint_names[i] for i in self._group_variable_indexes)

    @property
    def link_names(self) -> Tuple[str, ...]:
        """Tip link names, in the order target poses are matched to them."""
        return self._tip_link_names

    @property
    def active_variable_indexes(self) -> Tuple[int, ...]:
        return self._active_variable_indexes

    @property
    def minimal_displacement_factors(self) -> np.ndarray:
        return self._minimal_displacement_factors.copy()

    def get_position_fk(self, link_names: Sequence[str], variables) -> List[Frame]:
        return get_position_fk(self.robot, link_names, variables)

    def solve(
        self,
        target_poses: Union[Frame, Sequence[Frame]],
        seed,
        timeout: float,
        *,
        consistency_limits=None,
        cost_function: Optional[UserCostFunction] = None,
        solution_callback: Optional[SolutionCallback] = None,
        options: Optional[QueryOptions] = None,
    ) -> IKResult:
        """Search for a variable vector placing every tip at its target pose.

        Args:
            target_poses: One pose per tip link, in `link_names` order. A
                single Frame is accepted for single-tip solvers.
            seed: Full variable vector the search starts from. Variables
                outside the active set keep their seed value.
            timeout: Wall-clock budget in seconds.
            consistency_limits: Optional per-active-variable bound on the
                distance of a solution from the seed.
            cost_function: Optional user cost called with each target pose and
                the candidate's full variable vector; added with weight 1.
            solution_callback: Optional veto called with an accepted
                candidate's full variable vector; returning False continues
                the search.
            options: Optional QueryOptions.

        Returns:
            IKResult. Malformed requests yield INVALID_REQUEST before any
            search iteration runs.
        """
        start = time.monotonic()
        options = options or QueryOptions()
        try:
            poses, seed, lower, upper = self._validate(target_poses, seed, timeout, consistency_limits, options)
        except InvalidRequestError as e:
            logger.warning("Rejected IK request for group '%s': %s", self.group.name, e)
            return IKResult(ErrorCode.INVALID_REQUEST, message=str(e))
        deadline = start + timeout
        config = self.config

        frame_tests = make_frame_tests(
            poses, config.position_threshold, config.rotation_threshold, config.twist_threshold
        )
        active_seed = select(seed, self._active_variable_indexes)
        goals = make_goals(
            config,
            self.robot,
            self._active_variable_indexes,
            self._minimal_displacement_factors,
            active_seed,
            poses,
            cost_function,
            seed,
        )
        is_solution = make_is_solution_test_fn(frame_tests, goals, config.cost_threshold)
        problem = self._problem(seed, frame_tests, [g for g in goals if g.traceable], lower, upper)

        accept = None
        if solution_callback is not None:
            def accept(values):
                return bool(solution_callback(self._full_solution(seed, values)))

        outcome = search(
            problem,
            active_seed,
            deadline=deadline,
            is_solution=is_solution,
            key=self._key(),
            config=config,
            perturbation_scale=self.search_discretization,
            host_goals=[g for g in goals if not g.traceable],
            accept=accept,
        )
        elapsed = time.monotonic() - start

        if outcome.success:
            return IKResult(
                ErrorCode.SUCCESS,
                solution=self._full_solution(seed, outcome.best.values),
                iterations=outcome.iterations,
                elapsed=elapsed,
                timeout=timeout,
            )

        message = (
            f"No solution within {timeout:.4f}s after {outcome.iterations} iterations "
            f"(best frame error {outcome.best.frame_error:.6g}, cost {outcome.best.cost:.6g})"
        )
        logger.warning("IK for group '%s' failed: %s", self.group.name, message)
        solution = None
        if options.return_approximate_solution:
            solution = self._full_solution(seed, outcome.best.values)
        return IKResult(
            ErrorCode.NO_IK_SOLUTION,
            solution=solution,
            message=message,
            iterations=outcome.iterations,
            elapsed=elapsed,
            timeout=timeout,
        )

    def warm_up(self) -> None:
        """Compile the search kernels for this binding."""
        seed = np.clip(
            np.zeros(self.robot.num_variables),
            np.asarray(self.robot.lower_limits),
            np.asarray(self.robot.upper_limits),
        )
        world = forward_kinematics_world(self.robot, seed)
        poses = [Frame(world[i]) for i in self._tip_link_indexes]
        config = self.config
        frame_tests = make_frame_tests(
            poses, config.position_threshold, config.rotation_threshold, config.twist_threshold
        )
        goals = make_goals(
            config,
            self.robot,
            self._active_variable_indexes,
            self._minimal_displacement_factors,
            select(seed, self._active_variable_indexes),
        )
        problem = self._problem(seed, frame_tests, goals, self._lower, self._upper)
        warm_up(problem, jax.random.PRNGKey(0))

    def _validate(self, target_poses, seed, timeout, consistency_limits, options: QueryOptions):
        if options.lock_redundant_joints:
            raise InvalidRequestError("Unsupported query option: lock_redundant_joints")

        if isinstance(target_poses, Frame) or getattr(target_poses, "ndim", None) == 2:
            target_poses = [target_poses]
        poses = []
        for pose in target_poses:
            if not isinstance(pose, Frame):
                try:
                    pose = Frame.from_matrix(pose)
                except (TypeError, ValueError) as e:
                    raise InvalidRequestError(f"Invalid target pose: {e}") from None
            if not bool(jnp.all(jnp.isfinite(pose.matrix))):
                raise InvalidRequestError("Target pose contains non-finite values")
            poses.append(pose)
        if len(poses) != len(self._tip_link_indexes):
            raise InvalidRequestError(
                f"Expected {len(self._tip_link_indexes)} target pose(s) for tip links "
                f"{list(self._tip_link_names)}, got {len(poses)}"
            )

        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            raise InvalidRequestError(f"Invalid timeout {timeout!r}") from None
        if not np.isfinite(timeout) or timeout <= 0:
            raise InvalidRequestError(f"Timeout must be a positive number of seconds, got {timeout}")

        try:
            seed = np.array(seed, dtype=np.float64)
        except (TypeError, ValueError):
            raise InvalidRequestError("Seed is not a numeric vector") from None
        if seed.shape != (self.robot.num_variables,):
            raise InvalidRequestError(
                f"Seed must have length {self.robot.num_variables}, got shape {seed.shape}"
            )
        if not np.all(np.isfinite(seed)):
            raise InvalidRequestError("Seed contains non-finite values")

        lower, upper = self._lower, self._upper
        if consistency_limits is not None:
            limits = np.asarray(consistency_limits, dtype=np.float64)
            if limits.shape != self._active.shape:
                raise InvalidRequestError(
                    f"Expected {self._active.shape[0]} consistency limits, got shape {limits.shape}"
                )
            if np.any(limits < 0) or not np.all(np.isfinite(limits)):
                raise InvalidRequestError("Consistency limits must be finite and non-negative")
            active_seed = select(seed, self._active_variable_indexes)
            lower = np.maximum(lower, active_seed - limits)
            upper = np.minimum(upper, active_seed + limits)
            if np.any(lower > upper):
                raise InvalidRequestError("Consistency limits exclude every position within the joint limits")
        return poses, seed, lower, upper

    def _problem(self, seed, frame_tests, goals, lower, upper) -> SearchProblem:
        return SearchProblem(
            robot=self.robot,
            initial_guess=jnp.asarray(seed, dtype=jnp.float64),
            active_variable_indexes=self._active_array,
            tip_link_indexes=self._tip_array,
            frame_tests=tuple(frame_tests),
            goals=tuple(goals),
            lower=jnp.asarray(lower, dtype=jnp.float64),
            upper=jnp.asarray(upper, dtype=jnp.float64),
            rotation_scale=float(self.config.rotation_scale),
            threshold_margin=float(self.config.threshold_margin),
        )

    def _full_solution(self, seed: np.ndarray, active_values) -> np.ndarray:
        solution = np.array(seed, dtype=np.float64)
        solution[self._active] = np.asarray(active_values, dtype=np.float64)
        return solution

    def _key(self):
        random_seed = self.config.random_seed
        if random_seed is None:
            random_seed = random.getrandbits(31)
        return jax.random.PRNGKey(random_seed)


def build(
    robot: RobotModel,
    group: JointGroup,
    tip_links: Union[str, Sequence[str]],
    search_discretization: float = 0.1,
    config: Optional[SolverConfig] = None,
) -> Solver:
    """Bind a solver to `group` and `tip_links` of `robot`.

    Args:
        robot: Kinematic model.
        group: Joint group whose variables may move.
        tip_links: Tip link name or names; target poses match this order.
        search_discretization: Spread of the first random escape step, in
            variable units.
        config: Solver configuration; defaults to SolverConfig().

    Raises:
        BindingError: If a tip or group joint is unknown, no tips are given,
            or no group variable moves any tip.
    """
    config = config or SolverConfig()
    if isinstance(tip_links, str):
        tip_links = [tip_links]
    tip_links = list(tip_links)
    if not tip_links:
        raise BindingError("At least one tip link is required")
    if not search_discretization > 0:
        raise BindingError(f"search_discretization must be > 0, got {search_discretization}")

    solver = Solver(robot, group, tip_links, search_discretization, config)
    solver.warm_up()
    logger.info(
        "Bound solver to group '%s' with tips %s (%d active variables)",
        group.name, tip_links, len(solver.active_variable_indexes),
    )
    return solver
