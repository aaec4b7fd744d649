"""Pose stream: per-frame camera and gripper poses."""

from .accumulator import IDENTITY_POSE, FrameRecord, PoseAccumulator, pose_from_transform

__all__ = ["FrameRecord", "IDENTITY_POSE", "PoseAccumulator", "pose_from_transform"]
