"""
Entry point for running cronocam as a module.

Usage:
    python -m cronocam setup
    python -m cronocam upload ~/Pictures
    python -m cronocam upload --file-list files.txt --force
    python -m cronocam import ~/Pictures/already-backed-up
    python -m cronocam status
    python -m cronocam --config /path/to/config.yaml status
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

import requests
from google.auth.exceptions import GoogleAuthError

from cronocam import __version__
from cronocam.config import Settings
from cronocam.database import open_ledger
from cronocam.errors import StorageError
from cronocam.google_photos import MediaUploader, authorized_session, ensure_album, get_creds
from cronocam.pipeline import import_files, iter_media_files, read_file_list, upload_files
from cronocam.status import render_status
from cronocam.utils import RateLimiter, RetryConfig

logger = logging.getLogger(__name__)

EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cronocam",
        description="Back up photos and videos to Google Photos without duplicates",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=None,
        help="Path to configuration file (default: ./config.yaml or ~/.config/cronocam/config.yaml)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("setup", help="Run the OAuth flow and save the token")

    upload = sub.add_parser("upload", help="Upload photos from a directory or file list")
    upload.add_argument("directory", nargs="?", type=Path, help="Directory to upload")
    upload.add_argument(
        "--recursive",
        "-r",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Search subdirectories (default: on)",
    )
    upload.add_argument(
        "--max-files",
        "-m",
        type=int,
        default=0,
        help="Maximum number of files to upload (0 for unlimited)",
    )
    upload.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Upload even if the file was previously uploaded",
    )
    upload.add_argument(
        "--file-list",
        "-l",
        type=Path,
        default=None,
        help="Text file with one path per line to upload instead of a directory",
    )

    imp = sub.add_parser("import", help="Record photos as uploaded without uploading them")
    imp.add_argument("directory", type=Path, help="Directory to import")
    imp.add_argument(
        "--recursive",
        "-r",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Search subdirectories (default: on)",
    )

    sub.add_parser("status", help="Show upload statistics, pending files and recent errors")
    return parser


def _install_cancel_handlers(cancel: threading.Event) -> None:
    def _handler(signum, frame):
        logger.warning(f"Received signal {signum}, stopping after the current step")
        cancel.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handler)


def _print_paths(settings: Settings) -> None:
    print(f"Credentials path: {settings.credentials_path.resolve()}")
    print(f"Database path: {settings.database_path.resolve()}\n")


def _require_directory(path: Path) -> Path | None:
    path = path.resolve()
    if not path.is_dir():
        print(f"Error: {path} is not a directory", file=sys.stderr)
        return None
    return path


def _require_credentials(settings: Settings) -> bool:
    if not settings.credentials_path.is_file():
        print(
            f"Error: credentials file not found at {settings.credentials_path.resolve()} "
            "- please create it first",
            file=sys.stderr,
        )
        return False
    return True


def _load_creds(settings: Settings):
    try:
        return get_creds(settings.token_path, settings.credentials_path)
    except (GoogleAuthError, ValueError, OSError) as e:
        print(f"Error: authorization failed: {e}", file=sys.stderr)
        return None


def cmd_setup(settings: Settings) -> int:
    settings.ensure_directories()
    if not _require_credentials(settings):
        return 1
    if _load_creds(settings) is None:
        return 1
    print("Setup completed successfully!")
    return 0


def cmd_upload(settings: Settings, args: argparse.Namespace) -> int:
    if args.file_list is not None:
        try:
            files = read_file_list(args.file_list)
        except FileNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    elif args.directory is not None:
        root = _require_directory(args.directory)
        if root is None:
            return 1
        files = iter_media_files(root, recursive=args.recursive)
    else:
        print("Error: directory path required when not using --file-list", file=sys.stderr)
        return 1

    if not _require_credentials(settings):
        return 1
    _print_paths(settings)
    settings.ensure_directories()

    creds = _load_creds(settings)
    if creds is None:
        return 1
    session = authorized_session(creds)

    album_id = None
    if settings.album_name:
        try:
            album_id = ensure_album(session, settings.album_name, timeout=settings.request_timeout)
        except requests.RequestException as e:
            logger.warning(f"Album creation failed - continuing without album: {e}")

    cancel = threading.Event()
    _install_cancel_handlers(cancel)

    with open_ledger(settings.database_path) as ledger, RateLimiter(
        settings.rate_limit.requests_per_second, settings.rate_limit.max_burst
    ) as limiter:
        uploader = MediaUploader(
            session,
            limiter,
            chunk_size=settings.chunk_size,
            retry_config=RetryConfig(settings.max_retries, settings.backoff_unit),
            supported_formats=settings.supported_formats(),
            album_id=album_id,
            timeout=settings.request_timeout,
        )
        result = upload_files(
            files,
            uploader,
            ledger,
            force=args.force,
            max_files=args.max_files,
            cancel=cancel,
        )

    if result.cancelled:
        return EXIT_CANCELLED
    return 0 if result.success else 1


def cmd_import(settings: Settings, args: argparse.Namespace) -> int:
    root = _require_directory(args.directory)
    if root is None:
        return 1
    _print_paths(settings)

    with open_ledger(settings.database_path) as ledger:
        result = import_files(
            iter_media_files(root, recursive=args.recursive),
            ledger,
            settings.supported_formats(),
        )
    return 0 if result.success else 1


def cmd_status(settings: Settings) -> int:
    _print_paths(settings)
    with open_ledger(settings.database_path) as ledger:
        report = render_status(ledger.stats(), ledger.list_unsynced(), ledger.recent_failures())
    print(report)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.load(args.config)
    except FileNotFoundError:
        print(f"Error: Configuration file not found: {args.config}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        if args.command == "setup":
            return cmd_setup(settings)
        if args.command == "upload":
            return cmd_upload(settings, args)
        if args.command == "import":
            return cmd_import(settings, args)
        return cmd_status(settings)
    except StorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
