"""BSON document holding the per-frame pose arrays of a session."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import aiofiles
import bson
import numpy as np

from rgbd_logger.core.logging_utils import get_module_logger
from rgbd_logger.modules.Pose.accumulator import GRIPPER_COUNT, POSE_ARITY, PoseAccumulator

from .artifacts import ArtifactInfo

logger = get_module_logger(__name__)

FRAME_DATA_FIELDS = ("arkitPose", "gripperPoses", "gripperWidth", "timestamps")

_SHAPES = {
    "arkitPose": (-1, POSE_ARITY),
    "gripperPoses": (-1, GRIPPER_COUNT, POSE_ARITY),
    "gripperWidth": (-1,),
    "timestamps": (-1,),
}


def encode_frame_data(accumulator: PoseAccumulator) -> bytes:
    """Encode the accumulator; every number goes on the wire as a BSON double."""
    return bson.encode(accumulator.to_document())


async def write_frame_data_async(path: Path, accumulator: PoseAccumulator) -> ArtifactInfo:
    payload = encode_frame_data(accumulator)
    async with aiofiles.open(path, "wb") as handle:
        await handle.write(payload)
    logger.info("Wrote %s (%d records, %d bytes)", Path(path).name, len(accumulator), len(payload))
    return ArtifactInfo.from_path(path)


def decode_frame_data(payload: bytes) -> dict[str, np.ndarray]:
    document: Mapping[str, Any] = bson.decode(payload)
    arrays: dict[str, np.ndarray] = {}
    for key in FRAME_DATA_FIELDS:
        if key not in document:
            raise ValueError(f"frame data document lacks '{key}'")
        values = np.asarray(document[key], dtype=np.float64)
        arrays[key] = values.reshape(_SHAPES[key]) if values.size else np.zeros(
            tuple(0 if d == -1 else d for d in _SHAPES[key]), dtype=np.float64
        )
    return arrays


def read_frame_data(path: Path) -> dict[str, np.ndarray]:
    with open(path, "rb") as handle:
        return decode_frame_data(handle.read())


__all__ = [
    "FRAME_DATA_FIELDS",
    "decode_frame_data",
    "encode_frame_data",
    "read_frame_data",
    "write_frame_data_async",
]
