import argparse
import asyncio
import math
import sys
from pathlib import Path
from typing import Optional

from rgbd_logger.cli.common import (
    add_common_cli_arguments,
    install_stop_signal_handlers,
    positive_float,
    positive_int,
)
from rgbd_logger.core.config_manager import get_config_manager
from rgbd_logger.core.errors import SessionStateError, StorageUnavailableError
from rgbd_logger.core.logging_config import configure_logging
from rgbd_logger.core.logging_utils import get_module_logger
from rgbd_logger.core.paths import CONFIG_PATH, MASTER_LOG_FILE, USER_CONFIG_PATH, ensure_directories
from rgbd_logger.core.session_manager import SessionManager
from rgbd_logger.modules.base.typed_config import RecorderConfig
from rgbd_logger.modules.Depth.errors import ChunkFormatError
from rgbd_logger.modules.SensorStub.source import SyntheticSensor
from rgbd_logger.network.uploader import ArchiveUploader, UploadError
from rgbd_logger.tools.unpack import unpack_session


logger = get_module_logger(__name__)


def load_config_values(extra: Optional[Path] = None) -> dict[str, str]:
    """Shipped defaults, then the user's config, then ``--config``."""
    return get_config_manager().read_layered([CONFIG_PATH, USER_CONFIG_PATH, extra])


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments with config file defaults."""
    config_manager = get_config_manager()
    config = load_config_values()
    default_log_level = config_manager.get_str(config, 'log_level', default='info')

    parser = argparse.ArgumentParser(
        prog="rgbd-logger",
        description="RGB-D Logger - record video, depth and pose into a session archive",
    )
    add_common_cli_arguments(parser, default_log_level=default_log_level)

    commands = parser.add_subparsers(dest="command", required=True)

    record = commands.add_parser("record", help="Record one session from the synthetic sensor")
    record.add_argument("--data-dir", type=Path, default=None,
                        help="Root directory for session data (default: data_dir from config)")
    record.add_argument("--session-prefix", type=str, default=None,
                        help="Prefix for session directories")
    record.add_argument("--duration", type=positive_float, default=None,
                        help="Stop after this many seconds")
    record.add_argument("--frames", type=positive_int, default=None,
                        help="Stop after this many frames")
    record.add_argument("--video-fps", type=positive_float, default=None,
                        help="Capture and encode rate")
    record.add_argument("--max-frames-per-chunk", type=positive_int, default=None,
                        help="Depth frames per chunk file")
    record.add_argument("--row-padding", type=int, default=0,
                        help="Extra bytes per synthetic depth row (exercises strided buffers)")
    record.add_argument("--upload-url", type=str, default=None,
                        help="Collection server base URL")
    upload_group = record.add_mutually_exclusive_group()
    upload_group.add_argument("--upload", dest="upload", action="store_true", default=None,
                              help="Upload the archive when the session completes")
    upload_group.add_argument("--no-upload", dest="upload", action="store_false",
                              help="Keep the archive local only")

    upload = commands.add_parser("upload", help="Upload an existing archive")
    upload.add_argument("archive", type=Path, help="Path to a .tar.gz session archive")
    upload.add_argument("--upload-url", type=str, default=None, help="Collection server base URL")
    upload.add_argument("--skip-check", action="store_true", default=False,
                        help="Do not test the connection before uploading")

    unpack = commands.add_parser("unpack", help="Decode depth chunks into .npy frames")
    unpack.add_argument("session_dir", type=Path, help="Session directory holding depth_map_*.depth")
    unpack.add_argument("--output", type=Path, default=None,
                        help="Destination directory (default: <session_dir>/depth_frames)")

    args = parser.parse_args(argv)
    return args


def _build_uploader(config: RecorderConfig) -> Optional[ArchiveUploader]:
    if not config.upload_url:
        return None
    return ArchiveUploader(
        config.upload_url,
        verify_tls=config.verify_tls,
        timeout=config.upload_timeout_s,
    )


async def run_record(args: argparse.Namespace, config: RecorderConfig) -> int:
    sensor = SyntheticSensor(
        color_resolution=config.video_resolution,
        fps=config.video_fps,
        row_padding=max(0, args.row_padding),
    )
    manager = SessionManager(
        config,
        device=sensor.describe(config.device_name),
        uploader=_build_uploader(config),
    )

    expected_frames = args.frames
    if expected_frames is None and args.duration is not None:
        expected_frames = math.ceil(args.duration * config.video_fps)
    try:
        session = await manager.start_session(depth_geometry=sensor.depth_geometry,
                                              expected_frames=expected_frames)
    except (StorageUnavailableError, SessionStateError) as exc:
        logger.error("Cannot start recording: %s", exc)
        return 1

    stop_event = asyncio.Event()
    install_stop_signal_handlers(stop_event)
    if args.duration is None and args.frames is None:
        logger.info("Recording %s until interrupted (Ctrl+C)", session.session_id)

    async for sample in sensor.stream(max_frames=args.frames, duration_s=args.duration, stop_event=stop_event):
        manager.handle_sample(sample)

    result = await manager.stop_session(upload=args.upload)
    print(result.summary())
    return 0 if result.ok and not result.upload_error else 2


async def run_upload(args: argparse.Namespace, config: RecorderConfig) -> int:
    uploader = _build_uploader(config)
    if uploader is None:
        logger.error("No upload URL configured (set upload_url or pass --upload-url)")
        return 1
    try:
        result = await uploader.upload_archive(args.archive, check_connection=not args.skip_check)
    except UploadError as exc:
        logger.error("%s", exc)
        return 1
    print(f"Uploaded {args.archive.name} ({result.status})")
    return 0


async def run_unpack(args: argparse.Namespace) -> int:
    output = args.output or (args.session_dir / "depth_frames")
    try:
        count = await asyncio.to_thread(unpack_session, args.session_dir, output)
    except (OSError, ValueError, ChunkFormatError) as exc:
        logger.error("Unpack failed: %s", exc)
        return 1
    print(f"Wrote {count} depth frame(s) to {output}")
    return 0


async def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the RGB-D Logger CLI."""
    args = parse_args(argv)

    ensure_directories()

    configure_logging(
        args.log_level,
        console=args.console_output,
        log_file=args.log_file or MASTER_LOG_FILE,
    )

    config = RecorderConfig.from_config(load_config_values(args.config), args)
    logger.info("RGB-D Logger starting: %s (data dir %s)", args.command, config.data_dir)

    if args.command == "record":
        return await run_record(args, config)
    if args.command == "upload":
        return await run_upload(args, config)
    return await run_unpack(args)


def run(argv: Optional[list[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as exc:  # pragma: no cover - fatal guard
        print(f"Fatal error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(run())
