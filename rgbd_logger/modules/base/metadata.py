"""
Shared metadata structures for the recorder.

A ``SensorSample`` is what the capture surface hands over for every frame:
one color image, one depth buffer and one pose, all sharing a timestamp.
``DeviceDescriptor`` describes the capture device in the session manifest.
"""

import platform
import socket
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

import numpy as np


@dataclass
class DeviceDescriptor:
    """Capture device identity written into every manifest."""
    name: str
    model: str = "unknown"
    system: str = field(default_factory=lambda: f"{platform.system()} {platform.release()}".strip())
    host: str = field(default_factory=socket.gethostname)
    color_resolution: Optional[tuple[int, int]] = None
    depth_resolution: Optional[tuple[int, int]] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to a plain dictionary (for manifest serialization)"""
        data: dict[str, Any] = {
            'name': self.name,
            'model': self.model,
            'system': self.system,
            'host': self.host,
        }
        if self.color_resolution:
            data['color_resolution'] = f"{self.color_resolution[0]}x{self.color_resolution[1]}"
        if self.depth_resolution:
            data['depth_resolution'] = f"{self.depth_resolution[0]}x{self.depth_resolution[1]}"
        if self.extras:
            data['extras'] = dict(self.extras)
        return data


@dataclass
class SensorSample:
    """
    One capture tick from the sensor surface.

    Any of ``color``, ``depth`` and ``pose`` may be missing; the session fans
    out whatever is present. ``gripper_poses``/``gripper_width`` are filled
    with defaults when the capture surface has no gripper tracking.
    """
    timestamp: float                          # Monotonic sensor time (seconds)
    color: Optional[np.ndarray] = None        # HxWx3 BGR uint8
    depth: Any = None                         # DepthFrame
    pose: Optional[Sequence[float]] = None    # tx, ty, tz, qx, qy, qz, qw
    gripper_poses: Optional[Sequence[Sequence[float]]] = None
    gripper_width: Optional[float] = None
