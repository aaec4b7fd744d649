"""Per-source recorder modules (Depth, Video, Pose) and their shared base."""
