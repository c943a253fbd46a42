"""Shared fixtures: small planar arms with known closed-form kinematics."""

import os
from pathlib import Path

import hypothesis
import numpy as np
import pytest

from gd_ik import Frame, JointDescription, JointType, build_robot_model

hypothesis.settings.register_profile("ci", max_examples=10, deadline=None)
hypothesis.settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))

FIXTURES = Path(__file__).parent / "fixtures"


def revolute(name, parent, child, x=0.0, lower=-np.pi, upper=np.pi):
    """Revolute joint about z, offset by x along the parent's x axis."""
    return JointDescription(
        name=name,
        type=JointType.REVOLUTE,
        parent=parent,
        child=child,
        origin=Frame.from_translation(x),
        axis=(0.0, 0.0, 1.0),
        lower=lower,
        upper=upper,
    )


def fixed(name, parent, child, x=0.0):
    return JointDescription(name, JointType.FIXED, parent, child, origin=Frame.from_translation(x))


def planar_2r_joints():
    """Two unit links rotating about z; the tip sits at the end of link2."""
    return [
        revolute("j1", "base", "link1"),
        revolute("j2", "link1", "link2", x=1.0),
        fixed("tip_joint", "link2", "tip", x=1.0),
    ]


def planar_2r_tip(q):
    q1, q2 = q
    return np.array([np.cos(q1) + np.cos(q1 + q2), np.sin(q1) + np.sin(q1 + q2), 0.0])


@pytest.fixture(scope="session")
def planar_arm():
    return build_robot_model(planar_2r_joints())


@pytest.fixture(scope="session")
def planar_3r_arm():
    return build_robot_model([
        revolute("j1", "base", "link1"),
        revolute("j2", "link1", "link2", x=1.0),
        revolute("j3", "link2", "link3", x=1.0),
        fixed("tip_joint", "link3", "tip", x=1.0),
    ])


@pytest.fixture(scope="session")
def two_chain_model():
    """The planar 2R arm plus a disconnected single-joint chain.

    The disconnected joint is declared first, so it owns variable 0.
    """
    return build_robot_model([
        revolute("k1", "other_base", "other_link"),
        *planar_2r_joints(),
    ])
