"""Command-line interface for the upload coordinator.

Subcommands:
    serve    Run the coordinator HTTP service
    upload   Upload a file through a running coordinator
"""

import argparse
import logging
import sys
from typing import Optional

from rich.logging import RichHandler

from upload_coordinator.client import DEFAULT_SERVER, UploadClient
from upload_coordinator.config import ConfigError, load_config
from upload_coordinator.reporters import ConsoleReporter, JsonReporter, Reporter

logger = logging.getLogger(__name__)


class CompositeReporter(Reporter):
    """Reporter that delegates to multiple reporters.

    Allows using both ConsoleReporter and JsonReporter simultaneously.
    """

    def __init__(self, reporters: list[Reporter]):
        self._reporters = reporters

    def on_upload_start(self, file_name: str, file_size: int, strategy: str) -> None:
        for reporter in self._reporters:
            reporter.on_upload_start(file_name, file_size, strategy)

    def on_session_created(self, upload_id: str, chunk_size: int, total_chunks: int) -> None:
        for reporter in self._reporters:
            reporter.on_session_created(upload_id, chunk_size, total_chunks)

    def on_part_complete(self, index: int, size: int, skipped: bool) -> None:
        for reporter in self._reporters:
            reporter.on_part_complete(index, size, skipped)

    def on_upload_complete(self, result) -> None:
        for reporter in self._reporters:
            reporter.on_upload_complete(result)


def configure_logging(verbose: bool = False) -> None:
    """Route log records through Rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="upload-coordinator",
        description="Resumable multipart upload coordinator",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the coordinator HTTP service")
    serve.add_argument(
        "-c", "--config",
        default="config.json",
        help="Path to configuration file (default: config.json)",
    )
    serve.add_argument("--host", help="Bind address (overrides config)")
    serve.add_argument("--port", type=int, help="Bind port (overrides config)")
    serve.add_argument(
        "--no-ensure-bucket",
        action="store_true",
        help="Skip creating the upload bucket at startup",
    )

    upload = subparsers.add_parser("upload", help="Upload a file through a coordinator")
    upload.add_argument("file", help="Path of the file to upload")
    upload.add_argument(
        "-s", "--server",
        default=DEFAULT_SERVER,
        help=f"Coordinator base URL (default: {DEFAULT_SERVER})",
    )
    upload.add_argument(
        "-m", "--mode",
        choices=["presigned", "proxy"],
        default="presigned",
        help="How part bytes travel to storage (default: presigned)",
    )
    upload.add_argument(
        "--chunk-size",
        type=int,
        metavar="BYTES",
        help="Desired chunk size in bytes (clamped by the server)",
    )
    upload.add_argument(
        "--mime-type",
        default="application/octet-stream",
        help="Content type of the uploaded object",
    )
    upload.add_argument(
        "-r", "--resume",
        metavar="UPLOAD_ID",
        help="Resume an existing session instead of creating one",
    )
    upload.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress per-part output, show only summary",
    )
    upload.add_argument(
        "-j", "--json-output",
        metavar="PATH",
        help="Write JSON result to file",
    )

    return parser.parse_args(argv)


def create_reporters(args: argparse.Namespace) -> list[Reporter]:
    """Create reporters based on command-line arguments."""
    reporters: list[Reporter] = [ConsoleReporter(quiet=args.quiet)]

    if args.json_output:
        reporters.append(JsonReporter(output_path=args.json_output))

    return reporters


def run_serve(args: argparse.Namespace) -> int:
    """Start the HTTP service. Returns an exit code."""
    # Imported here so the upload subcommand does not need the server stack
    import uvicorn

    from upload_coordinator.api import create_app
    from upload_coordinator.services import build_services

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port

    services = build_services(config)
    if not args.no_ensure_bucket:
        services.object_store.ensure_bucket()

    logger.info("Upload coordinator listening on http://%s:%d", config.host, config.port)
    uvicorn.run(create_app(services), host=config.host, port=config.port, log_config=None)
    return 0


def run_upload(args: argparse.Namespace) -> int:
    """Upload a file. Returns 0 on success, 1 on failure, 2 on bad input."""
    if args.chunk_size is not None and args.chunk_size <= 0:
        print("--chunk-size must be positive", file=sys.stderr)
        return 2

    reporters = create_reporters(args)
    reporter = reporters[0] if len(reporters) == 1 else CompositeReporter(reporters)

    try:
        with UploadClient(args.server, reporter=reporter) as client:
            result = client.upload_file(
                args.file,
                strategy=args.mode,
                chunk_size=args.chunk_size,
                mime_type=args.mime_type,
                resume_upload_id=args.resume,
            )
    except OSError as e:
        print(f"Cannot read {args.file}: {e}", file=sys.stderr)
        return 2

    return 0 if result.success else 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code: 0 for success, 1 for a failed upload, 2 for errors
    """
    args = parse_args(argv)
    configure_logging(args.verbose)

    if args.command == "serve":
        return run_serve(args)
    return run_upload(args)


if __name__ == "__main__":
    sys.exit(main())
