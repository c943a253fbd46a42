"""Time-budgeted gradient-descent search over the active variables.

The search keeps a current candidate and the best candidate seen so far.
Each iteration steps the current candidate along a normalized negative
gradient, adapting the step length to whether the step improved. While the
current candidate fails its frame tests only the frame penalty is descended;
once it passes, the goal cost joins the objective and steps must keep the
frame tests passing. When progress stalls, the best candidate is randomly
perturbed to escape the local minimum, with a spread that grows on
consecutive escapes.

Candidates are ranked with pose accuracy first: a lower frame-test
violation always wins, and cost only breaks ties.

Evaluation, gradients and perturbation run as jitted kernels over a
SearchProblem pytree, so they compile once per solver binding and the
per-call data (seed, goal frames, bounds) only flows in as arrays.
"""

import logging
import time
from typing import Callable, NamedTuple, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np
from flax import struct

from .chain import forward_kinematics_world
from .config import SolverConfig
from .core import RobotModel
from .frame_tests import FrameTest
from .goals import Goal, aggregate_cost

logger = logging.getLogger(__name__)

Array = jax.Array

_MIN_GRADIENT_NORM = 1e-12


@struct.dataclass
class SearchProblem:
    """Everything the jitted kernels need to score a candidate.

    Attributes:
        robot: Kinematic model.
        initial_guess: Full variable vector; active values are written into it.
        active_variable_indexes: Variables being optimized.
        tip_link_indexes: Links checked by `frame_tests`, in the same order.
        frame_tests: One tolerance test per tip.
        goals: Goals whose cost functions trace under jit.
        lower: Lower bound per active variable.
        upper: Upper bound per active variable.
        rotation_scale: Weight of rotation against position in the penalty.
        threshold_margin: Fraction of each threshold the penalty aims for.
    """
    robot: RobotModel
    initial_guess: Array
    active_variable_indexes: Array
    tip_link_indexes: Array
    frame_tests: Tuple[FrameTest, ...]
    goals: Tuple[Goal, ...]
    lower: Array
    upper: Array
    rotation_scale: float
    threshold_margin: float

    def variables(self, active_values: Array) -> Array:
        return self.initial_guess.at[self.active_variable_indexes].set(active_values)

    def tip_frames(self, active_values: Array) -> Array:
        world = forward_kinematics_world(self.robot, self.variables(active_values))
        return world[self.tip_link_indexes]

    def penalty(self, tip_frames: Array) -> Array:
        total = 0.0
        for i, test in enumerate(self.frame_tests):
            total = total + test.penalty(tip_frames[i], self.threshold_margin, self.rotation_scale)
        return total


@jax.jit
def _evaluate(problem: SearchProblem, active_values: Array):
    tips = problem.tip_frames(active_values)
    results = [test(tips[i]) for i, test in enumerate(problem.frame_tests)]
    passed = jnp.all(jnp.stack([r.passed for r in results]))
    frame_error = sum(r.violation for r in results)
    cost = jnp.asarray(aggregate_cost(problem.goals, active_values))
    return tips, problem.penalty(tips), frame_error, cost, passed


@jax.jit
def _penalty_gradient(problem: SearchProblem, active_values: Array) -> Array:
    return jax.grad(lambda x: problem.penalty(problem.tip_frames(x)))(active_values)


@jax.jit
def _objective_gradient(problem: SearchProblem, active_values: Array) -> Array:
    def objective(x):
        return problem.penalty(problem.tip_frames(x)) + aggregate_cost(problem.goals, x)

    return jax.grad(objective)(active_values)


@jax.jit
def _perturb(key: Array, values: Array, scale, lower: Array, upper: Array):
    key, subkey = jax.random.split(key)
    noise = jax.random.normal(subkey, values.shape, dtype=values.dtype) * scale
    return key, jnp.clip(values + noise, lower, upper)


class Candidate(NamedTuple):
    values: np.ndarray  # active variable values
    tip_frames: Array
    penalty: float
    frame_error: float
    cost: float
    passed: bool

    @property
    def objective(self) -> float:
        return self.penalty + self.cost

    def better_than(self, other: "Candidate") -> bool:
        if self.frame_error != other.frame_error:
            return self.frame_error < other.frame_error
        return self.cost < other.cost

    def improves_on(self, current: "Candidate") -> bool:
        """Whether a descent step from `current` to self is kept."""
        if current.passed:
            return self.passed and self.objective < current.objective
        return self.passed or self.penalty < current.penalty


class SearchOutcome(NamedTuple):
    success: bool
    best: Candidate
    iterations: int


def evaluate(problem: SearchProblem, values: np.ndarray, host_goals: Sequence[Goal] = ()) -> Candidate:
    """Score one candidate: jitted kernels plus host-evaluated goals."""
    tips, penalty, frame_error, cost, passed = _evaluate(problem, values)
    host_cost = float(aggregate_cost(host_goals, values)) if host_goals else 0.0
    return Candidate(
        values=np.asarray(values, dtype=np.float64),
        tip_frames=tips,
        penalty=float(penalty),
        frame_error=float(frame_error),
        cost=float(cost) + host_cost,
        passed=bool(passed),
    )


def _finite_difference_gradient(goals: Sequence[Goal], values: np.ndarray, h: float) -> np.ndarray:
    base = float(aggregate_cost(goals, values))
    gradient = np.zeros_like(values)
    for i in range(values.shape[0]):
        shifted = values.copy()
        shifted[i] += h
        gradient[i] = (float(aggregate_cost(goals, shifted)) - base) / h
    return gradient


def warm_up(problem: SearchProblem, key: Array) -> None:
    """Compile the search kernels for the structure of `problem`."""
    lower = np.asarray(problem.lower, dtype=np.float64)
    upper = np.asarray(problem.upper, dtype=np.float64)
    values = np.asarray(problem.initial_guess[problem.active_variable_indexes], dtype=np.float64)
    values = np.clip(values, lower, upper)
    start = time.monotonic()
    jax.block_until_ready(_evaluate(problem, values))
    jax.block_until_ready(_penalty_gradient(problem, values))
    jax.block_until_ready(_objective_gradient(problem, values))
    jax.block_until_ready(_perturb(key, values, 1.0, lower, upper))
    logger.debug("Compiled search kernels in %.3fs", time.monotonic() - start)


def search(
    problem: SearchProblem,
    initial_values: np.ndarray,
    *,
    deadline: float,
    is_solution: Callable[[Array, np.ndarray], bool],
    key: Array,
    config: SolverConfig,
    perturbation_scale: float,
    host_goals: Sequence[Goal] = (),
    accept: Optional[Callable[[np.ndarray], bool]] = None,
) -> SearchOutcome:
    """Search for active values satisfying `is_solution` before `deadline`.

    Args:
        problem: Jitted-kernel view of the request.
        initial_values: Starting active values; clipped to the problem bounds.
        deadline: time.monotonic() value after which no iteration starts.
        is_solution: Acceptance test taking tip frames and active values.
        key: jax.random key for the escape perturbations.
        config: Step size and stall tuning.
        perturbation_scale: Spread of the first escape perturbation.
        host_goals: Goals evaluated outside jit; differentiated numerically.
        accept: Optional veto on an otherwise accepted candidate.

    Returns:
        SearchOutcome with the accepted candidate on success, otherwise the
        best candidate found.
    """
    lower = np.asarray(problem.lower, dtype=np.float64)
    upper = np.asarray(problem.upper, dtype=np.float64)

    def solved(candidate: Candidate) -> bool:
        # Frame tests already ran in the kernel; only confirm candidates that pass them
        if not candidate.passed:
            return False
        if not is_solution(candidate.tip_frames, candidate.values):
            return False
        return accept is None or accept(candidate.values)

    def gradient_at(candidate: Candidate) -> np.ndarray:
        if not candidate.passed:
            return np.asarray(_penalty_gradient(problem, candidate.values), dtype=np.float64)
        gradient = np.asarray(_objective_gradient(problem, candidate.values), dtype=np.float64)
        if host_goals:
            gradient = gradient + _finite_difference_gradient(
                host_goals, candidate.values, config.finite_difference_step
            )
        return gradient

    current = evaluate(problem, np.clip(np.asarray(initial_values, dtype=np.float64), lower, upper), host_goals)
    best = current
    iterations = 0
    if solved(current):
        return SearchOutcome(True, current, iterations)

    step = config.step_size
    stall = 0
    escapes = 0
    while time.monotonic() < deadline:
        iterations += 1

        gradient = gradient_at(current)
        # Components pushing into a bound cannot move the candidate
        blocked = ((current.values <= lower) & (gradient > 0)) | ((current.values >= upper) & (gradient < 0))
        gradient = np.where(blocked, 0.0, gradient)
        norm = float(np.linalg.norm(gradient))

        stagnated = (
            not np.isfinite(norm)
            or norm < _MIN_GRADIENT_NORM
            or step < config.min_step_size
            or stall >= config.max_stall_iterations
        )
        if stagnated:
            escapes += 1
            key, values = _perturb(key, best.values, perturbation_scale * escapes, lower, upper)
            current = evaluate(problem, np.asarray(values), host_goals)
            moved = True
            step = config.step_size
            stall = 0
            logger.debug("Escape %d at iteration %d (frame error %.6g)", escapes, iterations, best.frame_error)
        else:
            candidate = evaluate(problem, np.clip(current.values - step * gradient / norm, lower, upper), host_goals)
            moved = candidate.improves_on(current)
            if moved:
                current = candidate
                step *= config.step_growth
                stall = 0
            else:
                step *= config.step_shrink
                stall += 1

        if current.better_than(best):
            best = current
            escapes = 0
        # An unchanged candidate was already rejected
        if moved and solved(current):
            logger.debug("Accepted candidate after %d iterations", iterations)
            return SearchOutcome(True, current, iterations)

    logger.debug("Deadline reached after %d iterations (frame error %.6g, cost %.6g)",
                 iterations, best.frame_error, best.cost)
    return SearchOutcome(False, best, iterations)
