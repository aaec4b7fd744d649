"""Color video stream."""

from .encoder import VideoEncoder, VideoInfo

__all__ = ["VideoEncoder", "VideoInfo"]
