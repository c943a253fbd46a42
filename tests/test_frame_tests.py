"""Tests for pose tolerance tests."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from gd_ik import Frame
from gd_ik.frame_tests import FrameTest, frame_errors, make_frame_tests

coords = st.floats(min_value=-2.0, max_value=2.0, allow_nan=False)
rotations = st.tuples(*[st.floats(min_value=-np.pi, max_value=np.pi, allow_nan=False)] * 3)
thresholds = st.floats(min_value=0.0, max_value=np.pi, allow_nan=False)


def test_identical_frames_have_zero_error():
    frame = Frame.from_translation(0.3, -0.2, 1.0)
    result = make_frame_tests([frame], 0.0, 0.0, 0.0)[0](frame)
    assert float(result.position_error) == 0.0
    assert float(result.rotation_error) == 0.0
    assert float(result.twist_error) == 0.0
    assert bool(result.passed)
    assert float(result.violation) == 0.0


def test_identical_rotated_frames_pass():
    frame = Frame.from_position_rpy((0.3, -0.2, 1.0), (0.4, 0.1, -0.7))
    result = make_frame_tests([frame], 1e-9, 1e-9, 1e-9)[0](frame)
    assert bool(result.passed)


def test_position_error():
    test = make_frame_tests([Frame.identity()], 0.1, 0.1, 0.1)[0]
    result = test(Frame.from_translation(0.3, 0.4))
    np.testing.assert_allclose(result.position_error, 0.5, atol=1e-12)
    assert not bool(result.position_ok)
    assert bool(result.rotation_ok) and bool(result.twist_ok)
    np.testing.assert_allclose(result.violation, 0.4, atol=1e-12)


def test_twist_about_approach_axis():
    goal = Frame.from_position_rpy((0.0, 0.0, 0.0), (0.0, 0.0, 0.0))
    test = FrameTest(goal.matrix, 1.0, 1.0, 0.2)

    yawed = test(Frame.from_position_rpy((0.0, 0.0, 0.0), (0.0, 0.0, 0.5)))
    np.testing.assert_allclose(yawed.rotation_error, 0.5, atol=1e-9)
    np.testing.assert_allclose(yawed.twist_error, 0.5, atol=1e-9)
    assert bool(yawed.rotation_ok)
    assert not bool(yawed.twist_ok)

    tilted = test(Frame.from_position_rpy((0.0, 0.0, 0.0), (0.5, 0.0, 0.0)))
    np.testing.assert_allclose(tilted.rotation_error, 0.5, atol=1e-9)
    np.testing.assert_allclose(tilted.twist_error, 0.0, atol=1e-9)
    assert bool(tilted.passed)


def test_half_turn_about_approach_axis_fails_twist():
    test = FrameTest(Frame.identity().matrix, 1.0, np.pi, 0.01)
    flipped = Frame.from_position_quaternion((0.0, 0.0, 0.0), (0.0, 0.0, 0.0, 1.0))
    result = test(flipped)
    np.testing.assert_allclose(result.rotation_error, np.pi, atol=1e-9)
    np.testing.assert_allclose(result.twist_error, np.pi, atol=1e-9)
    assert bool(result.rotation_ok)
    assert not bool(result.twist_ok)
    assert not bool(result.passed)
    assert float(test.penalty(flipped.matrix, 0.5, 0.5)) > 1.0


def test_errors_measured_in_goal_frame():
    """The approach axis follows the goal orientation, not the world z axis."""
    goal = Frame.from_position_rpy((0.0, 0.0, 0.0), (np.pi / 2, 0.0, 0.0))
    # Rotating about world y is rotating about the goal's z axis
    candidate = Frame.from_matrix(
        jnp.eye(4).at[:3, :3].set(
            Frame.from_position_rpy((0, 0, 0), (0.0, 0.3, 0.0)).rotation @ goal.rotation
        )
    )
    _, rotation_error, twist_error = frame_errors(goal.matrix, candidate.matrix)
    np.testing.assert_allclose(rotation_error, 0.3, atol=1e-9)
    np.testing.assert_allclose(twist_error, 0.3, atol=1e-9)


def test_half_turn_does_not_raise():
    goal = Frame.identity()
    flipped = Frame.from_position_rpy((0.0, 0.0, 0.0), (np.pi, 0.0, 0.0))
    result = FrameTest(goal.matrix, 0.01, 0.01, 0.01)(flipped)
    assert np.isfinite(float(result.rotation_error))
    np.testing.assert_allclose(result.rotation_error, np.pi, atol=1e-6)
    assert not bool(result.passed)


@given(
    position=st.tuples(coords, coords, coords),
    rpy=rotations,
    low=st.tuples(thresholds, thresholds, thresholds),
    extra=st.tuples(thresholds, thresholds, thresholds),
)
@settings(deadline=None)
def test_loosening_thresholds_never_fails_a_passing_frame(position, rpy, low, extra):
    goal = Frame.identity()
    candidate = Frame.from_position_rpy(position, rpy)
    high = tuple(a + b for a, b in zip(low, extra))

    tight = FrameTest(goal.matrix, *low)(candidate)
    loose = FrameTest(goal.matrix, *high)(candidate)

    if bool(tight.passed):
        assert bool(loose.passed)
    assert float(loose.violation) <= float(tight.violation) + 1e-12


def test_penalty_zero_inside_margin():
    test = FrameTest(Frame.identity().matrix, 0.1, 0.1, 0.1)
    inside = Frame.from_translation(0.04).matrix
    outside = Frame.from_translation(0.2).matrix
    assert float(test.penalty(inside, 0.5, 0.5)) == 0.0
    np.testing.assert_allclose(test.penalty(outside, 0.5, 0.5), (0.2 - 0.05) ** 2, atol=1e-9)


def test_penalty_gradient_finite_at_goal():
    goal = Frame.from_position_rpy((1.0, 0.0, 0.0), (0.0, 0.0, 0.3))
    test = FrameTest(goal.matrix, 0.0, 0.0, 0.0)
    grad = jax.grad(lambda m: test.penalty(m, 0.5, 0.5))(goal.matrix)
    assert bool(jnp.all(jnp.isfinite(grad)))


@pytest.mark.parametrize("n", [1, 3])
def test_make_frame_tests_one_per_goal(n):
    goals = [Frame.from_translation(float(i)) for i in range(n)]
    tests = make_frame_tests(goals, 0.01, 0.02, 0.03)
    assert len(tests) == n
    assert all(t.twist_threshold == 0.03 for t in tests)
    np.testing.assert_allclose(tests[-1].goal[:3, 3], [n - 1, 0.0, 0.0])
