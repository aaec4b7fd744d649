"""Synthetic sensor source for demos and tests."""

from .source import SyntheticSensor

__all__ = ["SyntheticSensor"]
