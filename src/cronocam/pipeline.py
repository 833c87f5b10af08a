# upload pipeline
import logging
import os
import threading
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from cronocam.database import UploadLedger
from cronocam.errors import (
    CancellationError,
    DuplicateError,
    StorageError,
    UploadError,
)
from cronocam.google_photos.api import MediaUploader, is_supported_file, sha256_of_file

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    """Result of an upload run."""

    candidates: int = 0
    uploaded: int = 0
    skipped: int = 0
    duplicates: int = 0
    failed: int = 0
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.cancelled


@dataclass
class ImportResult:
    """Result of an import-only run."""

    candidates: int = 0
    imported: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def success(self) -> bool:
        return self.failed == 0


def iter_media_files(root: str | Path, recursive: bool = True) -> Iterator[Path]:
    """Yield regular files under root in a stable (sorted) order."""
    root = Path(root)
    if not recursive:
        yield from sorted(p for p in root.iterdir() if p.is_file())
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            yield Path(dirpath) / name


def read_file_list(list_path: str | Path) -> list[Path]:
    """
    Read a text file with one path per line.

    Blank lines are ignored. Every listed file must exist before the run
    starts, so a typo doesn't surface halfway through an upload.

    Raises:
        FileNotFoundError: The list itself or one of its entries is missing
    """
    lines = Path(list_path).read_text().splitlines()
    files = [Path(line.strip()) for line in lines if line.strip()]
    for f in files:
        if not f.exists():
            raise FileNotFoundError(f"File not found: {f}")
    return files


def _record_failure(ledger: UploadLedger, path: Path, message: str) -> None:
    try:
        ledger.record_failure(str(path), message)
    except StorageError as e:
        logger.error(f"Could not record failure for {path.name}: {e}")


def upload_files(
    paths: Iterable[str | Path],
    uploader: MediaUploader,
    ledger: UploadLedger,
    force: bool = False,
    max_files: int = 0,
    cancel: threading.Event | None = None,
) -> UploadResult:
    """
    Upload every supported file in ``paths`` that the ledger doesn't know yet.

    Files are processed one at a time. A failure is logged and written to the
    ledger's failure log, then the run moves on; only cancellation stops it.

    Args:
        paths: Candidate files, in the order they should be processed
        uploader: MediaUploader used for the network protocol
        ledger: Ledger consulted for admission and updated on success
        force: Upload even if the fingerprint is already recorded
        max_files: Stop after this many successful uploads (0 = unlimited)
        cancel: Event that stops the run when set

    Returns:
        UploadResult with counters for the run
    """
    result = UploadResult()

    for raw_path in paths:
        path = Path(raw_path)
        if max_files > 0 and result.uploaded >= max_files:
            logger.info(f"Reached upload limit of {max_files} files")
            break
        if cancel is not None and cancel.is_set():
            result.cancelled = True
            break
        if not uploader.is_supported_file(path):
            continue

        result.candidates += 1

        try:
            fingerprint = uploader.calculate_file_hash(path)
        except OSError as e:
            logger.error(f"Failed to calculate hash for {path}: {e}")
            _record_failure(ledger, path, f"hash failed: {e}")
            result.failed += 1
            continue

        if not force:
            try:
                known = ledger.is_known(fingerprint)
            except StorageError as e:
                logger.error(f"Failed to check upload status for {path}: {e}")
                result.failed += 1
                continue
            if known:
                logger.info(f"Skipping {path} (already uploaded)")
                result.skipped += 1
                continue

        logger.info(f"Uploading {path}...")
        try:
            remote_id = uploader.upload_file(path, cancel)
        except CancellationError:
            logger.warning(f"Upload of {path} cancelled")
            result.cancelled = True
            break
        except (UploadError, OSError) as e:
            logger.error(f"Failed to upload {path}: {e}")
            _record_failure(ledger, path, str(e))
            result.failed += 1
            continue

        try:
            ledger.record(str(path), fingerprint, remote_id)
        except DuplicateError:
            logger.info(f"{path} uploaded again as {remote_id}; fingerprint was already recorded")
            result.duplicates += 1
            continue
        except StorageError as e:
            logger.error(f"Failed to save upload record for {path}: {e}")
            result.failed += 1
            continue

        logger.info(f"Successfully uploaded {path} -> MediaItem {remote_id}")
        result.uploaded += 1

    logger.info(
        f"Upload run complete: {result.candidates} candidates, {result.uploaded} uploaded, "
        f"{result.skipped} skipped, {result.duplicates} duplicates, {result.failed} failed"
        + (" (cancelled)" if result.cancelled else "")
    )
    return result


def import_files(
    paths: Iterable[str | Path],
    ledger: UploadLedger,
    supported: frozenset[str] | set[str],
) -> ImportResult:
    """
    Record supported files in the ledger without uploading them.

    Imported files get no remote id, so they show up in list_unsynced() and
    are skipped by later upload runs unless forced.
    """
    result = ImportResult()

    for raw_path in paths:
        path = Path(raw_path)
        if not is_supported_file(path, supported):
            continue
        result.candidates += 1

        try:
            fingerprint = sha256_of_file(path)
        except OSError as e:
            logger.error(f"Failed to calculate hash for {path}: {e}")
            result.failed += 1
            continue

        try:
            ledger.record(str(path), fingerprint, None)
        except DuplicateError:
            logger.info(f"Skipping {path} (already imported)")
            result.skipped += 1
            continue
        except StorageError as e:
            logger.error(f"Failed to save import record for {path}: {e}")
            result.failed += 1
            continue

        logger.info(f"Successfully imported {path}")
        result.imported += 1

    logger.info(
        f"Import complete: {result.imported} imported, {result.skipped} skipped, "
        f"{result.failed} failed"
    )
    return result
