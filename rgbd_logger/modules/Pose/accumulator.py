"""Per-frame pose records accumulated over one session."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterator, Optional, Sequence

import numpy as np

from rgbd_logger.core.errors import SessionStateError

POSE_ARITY = 7
GRIPPER_COUNT = 2
IDENTITY_POSE: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0)


def _default_gripper_poses() -> tuple[tuple[float, ...], ...]:
    return (IDENTITY_POSE,) * GRIPPER_COUNT


def _as_pose(values: Sequence[float], what: str) -> tuple[float, ...]:
    pose = tuple(float(v) for v in values)
    if len(pose) != POSE_ARITY:
        raise ValueError(f"{what} needs {POSE_ARITY} values (tx, ty, tz, qx, qy, qz, qw), got {len(pose)}")
    return pose


@dataclass(frozen=True, slots=True)
class FrameRecord:
    """One pose sample, correlated 1:1 with a captured video frame."""

    pose: tuple[float, ...]
    timestamp: float
    gripper_poses: tuple[tuple[float, ...], ...] = field(default_factory=_default_gripper_poses)
    gripper_width: float = 0.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "pose", _as_pose(self.pose, "pose"))
        grippers = tuple(_as_pose(p, "gripper pose") for p in self.gripper_poses)
        if len(grippers) != GRIPPER_COUNT:
            raise ValueError(f"Expected {GRIPPER_COUNT} gripper poses, got {len(grippers)}")
        object.__setattr__(self, "gripper_poses", grippers)
        object.__setattr__(self, "gripper_width", float(self.gripper_width))
        object.__setattr__(self, "timestamp", float(self.timestamp))

    @classmethod
    def from_sample(
        cls,
        pose: Sequence[float],
        timestamp: float,
        gripper_poses: Optional[Sequence[Sequence[float]]] = None,
        gripper_width: Optional[float] = None,
    ) -> "FrameRecord":
        """Build a record, filling identity gripper poses and zero width when absent."""
        return cls(
            pose=tuple(pose),
            timestamp=timestamp,
            gripper_poses=tuple(tuple(p) for p in gripper_poses) if gripper_poses is not None
            else _default_gripper_poses(),
            gripper_width=0.0 if gripper_width is None else gripper_width,
        )


def pose_from_transform(transform: np.ndarray) -> tuple[float, ...]:
    """Convert a 4x4 rigid transform into ``(tx, ty, tz, qx, qy, qz, qw)``.

    Uses the Shepperd method on the rotation block; the returned quaternion
    has a non-negative ``w``.
    """
    m = np.asarray(transform, dtype=np.float64)
    if m.shape != (4, 4):
        raise ValueError(f"Transform must be 4x4, got {m.shape}")
    r = m[:3, :3]
    trace = r[0, 0] + r[1, 1] + r[2, 2]
    if trace > 0.0:
        s = np.sqrt(trace + 1.0) * 2.0
        qw = 0.25 * s
        qx = (r[2, 1] - r[1, 2]) / s
        qy = (r[0, 2] - r[2, 0]) / s
        qz = (r[1, 0] - r[0, 1]) / s
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        s = np.sqrt(1.0 + r[0, 0] - r[1, 1] - r[2, 2]) * 2.0
        qw = (r[2, 1] - r[1, 2]) / s
        qx = 0.25 * s
        qy = (r[0, 1] + r[1, 0]) / s
        qz = (r[0, 2] + r[2, 0]) / s
    elif r[1, 1] > r[2, 2]:
        s = np.sqrt(1.0 + r[1, 1] - r[0, 0] - r[2, 2]) * 2.0
        qw = (r[0, 2] - r[2, 0]) / s
        qx = (r[0, 1] + r[1, 0]) / s
        qy = 0.25 * s
        qz = (r[1, 2] + r[2, 1]) / s
    else:
        s = np.sqrt(1.0 + r[2, 2] - r[0, 0] - r[1, 1]) * 2.0
        qw = (r[1, 0] - r[0, 1]) / s
        qx = (r[0, 2] + r[2, 0]) / s
        qy = (r[1, 2] + r[2, 1]) / s
        qz = 0.25 * s
    quat = np.array([qx, qy, qz, qw])
    quat /= np.linalg.norm(quat)
    if quat[3] < 0:
        quat = -quat
    return (float(m[0, 3]), float(m[1, 3]), float(m[2, 3]), *(float(q) for q in quat))


class PoseAccumulator:
    """Append-only, capture-ordered sequence of FrameRecords for one session.

    Values are held as float32 (the sensor's precision); ``to_document``
    widens them to float64 for serialization.
    """

    def __init__(self) -> None:
        self._records: list[FrameRecord] = []
        self._closed = False
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[FrameRecord]:
        return iter(list(self._records))

    @property
    def closed(self) -> bool:
        return self._closed

    def append(self, record: FrameRecord) -> None:
        with self._lock:
            if self._closed:
                raise SessionStateError("Pose accumulator is closed")
            self._records.append(record)

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def to_arrays(self) -> dict[str, np.ndarray]:
        """In-memory arrays: float32 poses/grippers/widths, float64 timestamps."""
        records = list(self._records)
        n = len(records)
        poses = np.empty((n, POSE_ARITY), dtype=np.float32)
        grippers = np.empty((n, GRIPPER_COUNT, POSE_ARITY), dtype=np.float32)
        widths = np.empty((n,), dtype=np.float32)
        timestamps = np.empty((n,), dtype=np.float64)
        for i, rec in enumerate(records):
            poses[i] = rec.pose
            grippers[i] = rec.gripper_poses
            widths[i] = rec.gripper_width
            timestamps[i] = rec.timestamp
        return {
            "arkitPose": poses,
            "gripperPoses": grippers,
            "gripperWidth": widths,
            "timestamps": timestamps,
        }

    def to_document(self) -> dict[str, list]:
        """Nested float64 lists ready for the binary document encoder."""
        arrays = self.to_arrays()
        return {key: arr.astype(np.float64).tolist() for key, arr in arrays.items()}


__all__ = [
    "FrameRecord",
    "IDENTITY_POSE",
    "PoseAccumulator",
    "pose_from_transform",
]
