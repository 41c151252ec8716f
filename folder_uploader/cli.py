"""Command-line entry point: run one upload pass or serve the status API."""

import argparse
import logging
import sys

from folder_uploader.config import get_package_version, get_settings
from folder_uploader.errors import ConfigurationError
from folder_uploader.services.upload_manager import get_upload_manager
from folder_uploader.services.upload_state import RunState, get_upload_state
from folder_uploader.services.utils import format_elapsed, truncate_path

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5000
PROGRESS_INTERVAL_SECONDS = 2.0


def format_progress_line(state: RunState) -> str:
    """One-line progress snapshot for the console."""
    if state.is_enumerating:
        return f"[scanning] {state.enumeration_status}"
    line = (
        f"[{format_elapsed(state.elapsed_seconds)}] "
        f"{state.processed}/{state.total_discovered} ({state.progress_percent:.1f}%) "
        f"ok={state.succeeded} skipped={state.skipped} failed={state.failed}"
    )
    if state.current_file:
        line += f" {truncate_path(state.current_file, 50)}"
    return line


def run_command(args: argparse.Namespace) -> int:
    """Run one upload pass; Ctrl+C cancels cleanly."""
    settings = get_settings()
    try:
        settings.validate()
    except ConfigurationError as e:
        for problem in e.problems:
            logger.error("Configuration error: %s", problem)
        return 2

    manager = get_upload_manager()
    manager.start_run()

    state = get_upload_state()
    try:
        while manager.is_running():
            manager.wait(PROGRESS_INTERVAL_SECONDS)
            if not args.no_progress and manager.is_running():
                print(format_progress_line(state.current_state()), flush=True)
    except KeyboardInterrupt:
        logger.warning("Interrupted, cancelling upload run...")
        manager.cancel_run()
        manager.wait()

    if manager.last_error:
        logger.error("Upload run failed: %s", manager.last_error)
        return 1

    summary = manager.last_summary
    if summary is not None and not args.no_progress:
        print(
            f"Done: {summary.discovered} discovered, {summary.succeeded} uploaded, "
            f"{summary.skipped} skipped, {summary.failed} failed"
            + (" (cancelled)" if summary.cancelled else ""),
            flush=True,
        )
    return 0


def serve_command(args: argparse.Namespace) -> int:
    """Start the Flask development server."""
    from folder_uploader import create_app

    app = create_app()
    app.run(host=args.host, port=args.port, threaded=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="folder-uploader",
        description="Resumable uploads of local folders to an S3 bucket",
    )
    parser.add_argument("--version", action="version", version=get_package_version())
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Upload all configured source folders once")
    run_parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Do not print periodic progress lines",
    )
    run_parser.set_defaults(func=run_command)

    serve_parser = subparsers.add_parser("serve", help="Serve the status and control API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    serve_parser.set_defaults(func=serve_command)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
