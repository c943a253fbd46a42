"""
Rigid-body transform utilities.

This module provides JIT-compilable implementations of:
- SO(3) rotations (so3 module)
- SE(3) rigid body transforms (se3 module)
- the immutable Frame pose type used at the solver boundary

All functions are pure and stateless.
"""

from . import so3
from . import se3
from .frame import Frame

__all__ = [
    "so3",
    "se3",
    "Frame",
]
