"""Tests for forward kinematics."""

import itertools

import jax
import jax.numpy as jnp
import jax.random as jrandom
import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from gd_ik import Frame, InvalidRequestError, JointDescription, JointType, build_robot_model
from gd_ik.chain import forward_kinematics, forward_kinematics_world, get_position_fk

from conftest import planar_2r_tip

angles = st.floats(min_value=-np.pi, max_value=np.pi, allow_nan=False)


def test_fk_zero_configuration(planar_arm):
    poses = forward_kinematics(planar_arm, jnp.zeros(2))
    assert set(poses) == set(planar_arm.link_names)
    np.testing.assert_allclose(poses["base"].matrix, jnp.eye(4), atol=1e-12)
    np.testing.assert_allclose(poses["link2"].position, [1.0, 0.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(poses["tip"].position, [2.0, 0.0, 0.0], atol=1e-12)


def test_fk_known_configuration(planar_arm):
    poses = forward_kinematics(planar_arm, jnp.array([np.pi / 2, -np.pi / 2]))
    np.testing.assert_allclose(poses["tip"].position, [1.0, 1.0, 0.0], atol=1e-12)
    # Orientation returns to the base orientation
    np.testing.assert_allclose(poses["tip"].rotation, jnp.eye(3), atol=1e-12)


@given(q1=angles, q2=angles)
@settings(deadline=None)
def test_fk_matches_closed_form(planar_arm, q1, q2):
    poses = forward_kinematics(planar_arm, jnp.array([q1, q2]))
    np.testing.assert_allclose(poses["tip"].position, planar_2r_tip((q1, q2)), atol=1e-9)


def test_fk_is_pure(planar_arm):
    """Repeated evaluation of the same vector is bit-identical."""
    q = jnp.array([0.3, -1.2])
    first = np.asarray(forward_kinematics_world(planar_arm, q))
    for _ in range(3):
        np.testing.assert_array_equal(np.asarray(forward_kinematics_world(planar_arm, q)), first)


def test_fk_jit_compatibility(two_chain_model):
    """FK is jit-compilable and produces valid SE(3) matrices."""

    @jax.jit
    def jit_fk(q):
        return forward_kinematics_world(two_chain_model, q)

    world_transforms = jit_fk(jnp.array([0.4, 0.1, -0.2]))
    assert world_transforms.shape == (two_chain_model.num_links, 4, 4)

    for T in world_transforms:
        np.testing.assert_allclose(T[3, :], jnp.array([0, 0, 0, 1]), atol=1e-12)
        R = T[:3, :3]
        np.testing.assert_allclose(R @ R.T, jnp.eye(3), atol=1e-9)


def test_disconnected_chain_is_independent(two_chain_model):
    """Moving the other chain leaves the arm's frames unchanged."""
    a = forward_kinematics(two_chain_model, jnp.array([0.0, 0.3, 0.4]))
    b = forward_kinematics(two_chain_model, jnp.array([1.5, 0.3, 0.4]))
    np.testing.assert_array_equal(np.asarray(a["tip"].matrix), np.asarray(b["tip"].matrix))
    assert not np.allclose(a["other_link"].matrix, b["other_link"].matrix)


def test_prismatic_joint():
    robot = build_robot_model([
        JointDescription("slide", JointType.PRISMATIC, "base", "carriage", axis=(0.0, 1.0, 0.0)),
    ])
    poses = forward_kinematics(robot, jnp.array([0.25]))
    np.testing.assert_allclose(poses["carriage"].position, [0.0, 0.25, 0.0], atol=1e-12)


def test_rigid_model_without_variables():
    robot = build_robot_model([
        JointDescription("weld", JointType.FIXED, "base", "plate", origin=Frame.from_translation(0.0, 0.0, 1.0)),
    ])
    poses = forward_kinematics(robot, jnp.zeros(0))
    np.testing.assert_allclose(poses["plate"].position, [0.0, 0.0, 1.0])


def test_fk_gradient_finite_at_zero(planar_arm):
    """Gradients of tip position exist at the stretched-out configuration."""
    grad = jax.jacobian(lambda q: forward_kinematics_world(planar_arm, q)[3, :3, 3])(jnp.zeros(2))
    np.testing.assert_allclose(grad, [[0.0, 0.0], [2.0, 1.0], [0.0, 0.0]], atol=1e-12)


def test_fk_random_configs(planar_3r_arm):
    """FK is finite and varies across random configurations."""
    q_samples = jrandom.uniform(jrandom.PRNGKey(0), shape=(10, 3), minval=-jnp.pi, maxval=jnp.pi)
    tips = [forward_kinematics(planar_3r_arm, q)["tip"].matrix for q in q_samples]

    for T in tips:
        assert jnp.isfinite(T).all()
    assert any(
        jnp.linalg.norm(a - b) > 1e-6 for a, b in itertools.combinations(tips, 2)
    ), "FK did not change across random configurations"


def test_get_position_fk(planar_arm):
    frames = get_position_fk(planar_arm, ["tip", "link2"], [np.pi / 2, 0.0])
    assert all(isinstance(f, Frame) for f in frames)
    np.testing.assert_allclose(frames[0].position, [0.0, 2.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(frames[1].position, [0.0, 1.0, 0.0], atol=1e-12)


def test_get_position_fk_invalid_requests(planar_arm):
    with pytest.raises(InvalidRequestError, match="Link 'nonexistent_link' not found"):
        get_position_fk(planar_arm, ["nonexistent_link"], [0.0, 0.0])
    with pytest.raises(InvalidRequestError, match="length 2"):
        get_position_fk(planar_arm, ["tip"], [0.0, 0.0, 0.0])
