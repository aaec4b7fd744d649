"""Typed recorder configuration with type coercion helpers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping


# ---------------------------------------------------------------------------
# Type coercion helpers for from_config() implementations
# ---------------------------------------------------------------------------


def get_cfg_str(config: Mapping[str, Any], key: str, default: str) -> str:
    val = config.get(key)
    return str(val) if val is not None else default


def get_cfg_int(config: Mapping[str, Any], key: str, default: int) -> int:
    val = config.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


def get_cfg_float(config: Mapping[str, Any], key: str, default: float) -> float:
    val = config.get(key)
    if val is None:
        return default
    try:
        return float(val)
    except (ValueError, TypeError):
        return default


def get_cfg_bool(config: Mapping[str, Any], key: str, default: bool) -> bool:
    val = config.get(key)
    if val is None:
        return default
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in {"true", "1", "yes", "on"}


def get_cfg_path(config: Mapping[str, Any], key: str, default: Path) -> Path:
    val = config.get(key)
    if val is None:
        return default
    text = str(val).strip()
    return Path(text).expanduser() if text else default


@dataclass(slots=True)
class RecorderConfig:
    """Typed configuration for a recording session."""

    # Output settings
    data_dir: Path = field(default_factory=lambda: Path("recordings"))
    session_prefix: str = "session"
    log_level: str = "info"
    device_name: str = "rgbd-logger"

    # Depth
    max_frames_per_chunk: int = 250
    depth_queue_size: int = 240

    # Video
    video_fps: float = 30.0
    video_width: int = 640
    video_height: int = 480
    use_pyav: bool = True

    # Storage
    disk_threshold_gb: float = 1.0
    disk_budget_duration_s: float = 60.0
    session_log: bool = True

    # Upload
    upload_enabled: bool = False
    upload_url: str = ""
    upload_timeout_s: float = 300.0
    verify_tls: bool = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any], args: Any = None) -> "RecorderConfig":
        """Build config from parsed ``key = value`` pairs with optional CLI overrides."""
        defaults = cls()

        result = cls(
            data_dir=get_cfg_path(config, "data_dir", defaults.data_dir),
            session_prefix=get_cfg_str(config, "session_prefix", defaults.session_prefix),
            log_level=get_cfg_str(config, "log_level", defaults.log_level),
            device_name=get_cfg_str(config, "device_name", defaults.device_name),
            max_frames_per_chunk=get_cfg_int(config, "max_frames_per_chunk", defaults.max_frames_per_chunk),
            depth_queue_size=get_cfg_int(config, "depth_queue_size", defaults.depth_queue_size),
            video_fps=get_cfg_float(config, "video_fps", defaults.video_fps),
            video_width=get_cfg_int(config, "video_width", defaults.video_width),
            video_height=get_cfg_int(config, "video_height", defaults.video_height),
            use_pyav=get_cfg_bool(config, "use_pyav", defaults.use_pyav),
            disk_threshold_gb=get_cfg_float(config, "disk_threshold_gb", defaults.disk_threshold_gb),
            disk_budget_duration_s=get_cfg_float(config, "disk_budget_duration_s", defaults.disk_budget_duration_s),
            session_log=get_cfg_bool(config, "session_log", defaults.session_log),
            upload_enabled=get_cfg_bool(config, "upload_enabled", defaults.upload_enabled),
            upload_url=get_cfg_str(config, "upload_url", defaults.upload_url),
            upload_timeout_s=get_cfg_float(config, "upload_timeout_s", defaults.upload_timeout_s),
            verify_tls=get_cfg_bool(config, "verify_tls", defaults.verify_tls),
        )

        if args is not None:
            result = result._apply_args_override(args)

        if result.max_frames_per_chunk <= 0:
            result.max_frames_per_chunk = defaults.max_frames_per_chunk
        if result.depth_queue_size <= 0:
            result.depth_queue_size = defaults.depth_queue_size
        return result

    def _apply_args_override(self, args: Any) -> "RecorderConfig":
        """Apply CLI argument overrides to config values."""
        values = asdict(self)

        arg_mappings = {
            "data_dir": "data_dir",
            "session_prefix": "session_prefix",
            "log_level": "log_level",
            "max_frames_per_chunk": "max_frames_per_chunk",
            "video_fps": "video_fps",
            "upload_url": "upload_url",
            "upload": "upload_enabled",
        }

        for arg_name, config_key in arg_mappings.items():
            if hasattr(args, arg_name):
                val = getattr(args, arg_name)
                if val is not None:
                    values[config_key] = val

        values["data_dir"] = Path(values["data_dir"])
        return RecorderConfig(**values)

    @property
    def video_resolution(self) -> tuple[int, int]:
        return (self.video_width, self.video_height)

    def to_dict(self) -> dict[str, Any]:
        """Export config values as dictionary."""
        data = asdict(self)
        data["data_dir"] = str(self.data_dir)
        return data


__all__ = [
    "RecorderConfig",
    "get_cfg_bool",
    "get_cfg_float",
    "get_cfg_int",
    "get_cfg_path",
    "get_cfg_str",
]
