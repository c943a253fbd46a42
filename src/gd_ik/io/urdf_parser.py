"""URDF parser producing the structural description of a RobotModel.

Only the kinematic part of URDF is read: links, joints, their origins, axes
and position limits. Visual, collision and inertial elements are ignored.
"""

import logging
from typing import List, Tuple

from lxml import etree

from ..core import JointDescription, JointType, LinkDescription, RobotModel, build_robot_model
from ..exceptions import ModelBuildError
from ..transforms import Frame

logger = logging.getLogger(__name__)

_JOINT_TYPES = {
    "revolute": JointType.REVOLUTE,
    "continuous": JointType.CONTINUOUS,
    "prismatic": JointType.PRISMATIC,
    "fixed": JointType.FIXED,
}


def load_urdf(urdf_path: str) -> RobotModel:
    """Load a URDF file and build its RobotModel.

    Args:
        urdf_path: Path to the URDF file to load.

    Returns:
        RobotModel: The kinematic model of the robot.

    Raises:
        ModelBuildError: If the file cannot be parsed or describes an invalid model.
    """
    try:
        tree = etree.parse(urdf_path)
    except (OSError, etree.XMLSyntaxError) as e:
        raise ModelBuildError(f"Cannot read URDF '{urdf_path}': {e}") from e
    return _build(tree.getroot())


def load_urdf_string(urdf: str) -> RobotModel:
    """Build a RobotModel from URDF text."""
    try:
        root = etree.fromstring(urdf.strip().encode("utf-8") if isinstance(urdf, str) else urdf)
    except etree.XMLSyntaxError as e:
        raise ModelBuildError(f"Cannot parse URDF: {e}") from e
    return _build(root)


def _build(root) -> RobotModel:
    joints, links = parse_urdf(root)
    robot = build_robot_model(joints, links)
    logger.debug("Loaded URDF robot '%s'", root.get("name", ""))
    return robot


def parse_urdf(root) -> Tuple[List[JointDescription], List[LinkDescription]]:
    """Structural description of a parsed URDF <robot> element."""
    if root.tag != "robot":
        raise ModelBuildError(f"Expected a <robot> root element, found <{root.tag}>")

    links = []
    for link in root.findall("link"):
        name = link.get("name")
        if not name:
            raise ModelBuildError("URDF link without a name")
        links.append(LinkDescription(name))

    joints = []
    for joint in root.findall("joint"):
        name = joint.get("name")
        if not name:
            raise ModelBuildError("URDF joint without a name")

        parent_elem = joint.find("parent")
        child_elem = joint.find("child")
        if parent_elem is None or child_elem is None:
            raise ModelBuildError(f"Joint '{name}' must name a parent and a child link")

        joint_type = _JOINT_TYPES.get(joint.get("type"), JointType.OTHER)

        origin_elem = joint.find("origin")
        if origin_elem is not None:
            xyz = _floats(origin_elem.get("xyz", "0 0 0"), name, "origin xyz")
            rpy = _floats(origin_elem.get("rpy", "0 0 0"), name, "origin rpy")
            origin = Frame.from_position_rpy(xyz, rpy)
        else:
            origin = Frame.identity()

        axis_elem = joint.find("axis")
        axis = (1.0, 0.0, 0.0)  # URDF default axis
        if axis_elem is not None:
            axis = _floats(axis_elem.get("xyz", "1 0 0"), name, "axis")

        lower = upper = None
        limit_elem = joint.find("limit")
        if limit_elem is not None and joint_type in (JointType.REVOLUTE, JointType.PRISMATIC):
            lower = _float(limit_elem.get("lower", "0"), name, "lower limit")
            upper = _float(limit_elem.get("upper", "0"), name, "upper limit")

        joints.append(JointDescription(
            name=name,
            type=joint_type,
            parent=parent_elem.get("link"),
            child=child_elem.get("link"),
            origin=origin,
            axis=axis,
            lower=lower,
            upper=upper,
        ))

    return joints, links


def _floats(text: str, joint_name: str, what: str) -> Tuple[float, float, float]:
    try:
        values = tuple(float(x) for x in text.split())
    except ValueError:
        raise ModelBuildError(f"Joint '{joint_name}' has a malformed {what}: '{text}'") from None
    if len(values) != 3:
        raise ModelBuildError(f"Joint '{joint_name}' {what} needs 3 values, got '{text}'")
    return values


def _float(text: str, joint_name: str, what: str) -> float:
    try:
        return float(text)
    except ValueError:
        raise ModelBuildError(f"Joint '{joint_name}' has a malformed {what}: '{text}'") from None
