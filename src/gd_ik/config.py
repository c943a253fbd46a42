"""Solver configuration."""

import dataclasses
from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class SolverConfig:
    """Thresholds, goal weights and search tuning of a solver.

    A goal weight <= 0 disables that goal for every solve call.
    """

    position_threshold: float = 0.001  # meters
    rotation_threshold: float = 0.001  # radians
    twist_threshold: float = 0.001  # radians, about the tool approach axis
    cost_threshold: float = 0.001
    center_joints_weight: float = 0.0
    avoid_joint_limits_weight: float = 0.0
    minimal_displacement_weight: float = 0.0
    rotation_scale: float = 0.5  # weight of rotation against position in the descent penalty
    step_size: float = 0.1  # initial step length in variable units
    min_step_size: float = 1e-6
    step_growth: float = 1.5
    step_shrink: float = 0.5
    max_stall_iterations: int = 20
    threshold_margin: float = 0.5  # fraction of each threshold the descent aims for
    finite_difference_step: float = 1e-6
    random_seed: Optional[int] = None

    def __post_init__(self):
        for name in ("position_threshold", "rotation_threshold", "twist_threshold", "cost_threshold"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.rotation_scale < 0:
            raise ValueError("rotation_scale must be >= 0")
        if self.step_size <= 0:
            raise ValueError("step_size must be > 0")
        if not 0 < self.min_step_size <= self.step_size:
            raise ValueError("min_step_size must be in (0, step_size]")
        if self.step_growth < 1.0:
            raise ValueError("step_growth must be >= 1")
        if not 0 < self.step_shrink < 1.0:
            raise ValueError("step_shrink must be in (0, 1)")
        if self.max_stall_iterations < 1:
            raise ValueError("max_stall_iterations must be >= 1")
        if not 0 <= self.threshold_margin <= 1.0:
            raise ValueError("threshold_margin must be in [0, 1]")
        if self.finite_difference_step <= 0:
            raise ValueError("finite_difference_step must be > 0")

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> "SolverConfig":
        """Build from already-parsed parameters, rejecting unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ValueError(f"Unknown solver parameters: {unknown}")
        return cls(**params)
