"""Loaders turning robot description files into RobotModels."""

from .urdf_parser import load_urdf, load_urdf_string, parse_urdf

__all__ = ["load_urdf", "load_urdf_string", "parse_urdf"]
