"""Tests for the upload and import pipeline."""

import hashlib
import threading
from pathlib import Path
from unittest.mock import Mock

import pytest
from photos_fakes import SESSION_URL, make_response

from cronocam.database import UploadLedger
from cronocam.errors import (
    CancellationError,
    ChunkTransferError,
    DuplicateError,
    FinalizeFatalError,
    StorageError,
)
from cronocam.google_photos.api import MediaUploader
from cronocam.pipeline import (
    ImportResult,
    UploadResult,
    import_files,
    iter_media_files,
    read_file_list,
    upload_files,
)
from cronocam.utils.retry import RetryConfig

MB = 1024 * 1024
SUPPORTED = frozenset({".jpg", ".png", ".mp4"})


@pytest.fixture
def uploader(photos_session, fake_limiter) -> MediaUploader:
    return MediaUploader(
        photos_session,
        fake_limiter,
        chunk_size=5 * MB,
        retry_config=RetryConfig(max_retries=2, backoff_unit=0.0),
        supported_formats=SUPPORTED,
    )


def write_file(directory: Path, name: str, content: bytes) -> Path:
    path = directory / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


class TestResults:
    def test_upload_result_success(self):
        assert UploadResult(uploaded=2, skipped=1).success is True
        assert UploadResult(failed=1).success is False
        assert UploadResult(cancelled=True).success is False

    def test_import_result_success(self):
        assert ImportResult(imported=1).success is True
        assert ImportResult(failed=1).success is False


class TestIterMediaFiles:
    """Test directory walking."""

    def test_recursive_sorted(self, temp_dir: Path):
        write_file(temp_dir, "b.jpg", b"b")
        write_file(temp_dir, "a.jpg", b"a")
        write_file(temp_dir, "sub/c.jpg", b"c")

        files = list(iter_media_files(temp_dir))

        assert files == [temp_dir / "a.jpg", temp_dir / "b.jpg", temp_dir / "sub" / "c.jpg"]

    def test_non_recursive(self, temp_dir: Path):
        write_file(temp_dir, "a.jpg", b"a")
        write_file(temp_dir, "sub/c.jpg", b"c")

        assert list(iter_media_files(temp_dir, recursive=False)) == [temp_dir / "a.jpg"]


class TestReadFileList:
    """Test --file-list parsing."""

    def test_reads_paths_and_skips_blank_lines(self, temp_dir: Path):
        a = write_file(temp_dir, "a.jpg", b"a")
        b = write_file(temp_dir, "b.png", b"b")
        list_file = temp_dir / "list.txt"
        list_file.write_text(f"{a}\n\n  {b}  \n")

        assert read_file_list(list_file) == [a, b]

    def test_missing_entry(self, temp_dir: Path):
        a = write_file(temp_dir, "a.jpg", b"a")
        list_file = temp_dir / "list.txt"
        list_file.write_text(f"{a}\n{temp_dir / 'missing.jpg'}\n")

        with pytest.raises(FileNotFoundError, match="missing.jpg"):
            read_file_list(list_file)

    def test_missing_list(self, temp_dir: Path):
        with pytest.raises(FileNotFoundError):
            read_file_list(temp_dir / "nope.txt")


class TestUploadFiles:
    """Test the upload loop end to end against the fake protocol."""

    def test_uploads_and_records(self, temp_dir: Path, uploader, ledger: UploadLedger):
        content = b"\x01" * (12 * MB)
        video = write_file(temp_dir, "video.mp4", content)

        result = upload_files([video], uploader, ledger)

        assert result.uploaded == 1
        assert result.success is True
        transfers = [
            c for c in uploader.session.post.call_args_list if c.args[0] == SESSION_URL
        ]
        assert len(transfers) == 3
        record = ledger.get_record(hashlib.sha256(content).hexdigest())
        assert record.file_path == str(video)
        assert record.remote_id == "media_item_1"

    def test_second_run_makes_no_network_calls(
        self, temp_dir: Path, uploader, ledger: UploadLedger
    ):
        """Running again without force skips everything already recorded."""
        files = [write_file(temp_dir, f"{i}.jpg", bytes([i]) * 100) for i in range(3)]
        upload_files(files, uploader, ledger)
        uploader.session.post.reset_mock()
        before = ledger.stats().total_records

        result = upload_files(files, uploader, ledger)

        uploader.session.post.assert_not_called()
        assert result.skipped == 3
        assert result.uploaded == 0
        assert ledger.stats().total_records == before == 3

    def test_same_content_different_path_skipped(
        self, temp_dir: Path, uploader, ledger: UploadLedger
    ):
        original = write_file(temp_dir, "a.jpg", b"same bytes")
        copy = write_file(temp_dir, "backup/a_copy.jpg", b"same bytes")

        result = upload_files([original, copy], uploader, ledger)

        assert result.uploaded == 1
        assert result.skipped == 1

    def test_unsupported_files_ignored(self, temp_dir: Path, uploader, ledger: UploadLedger):
        notes = write_file(temp_dir, "notes.txt", b"text")

        result = upload_files([notes], uploader, ledger)

        assert result.candidates == 0
        uploader.session.post.assert_not_called()

    def test_force_reupload_counts_duplicate(
        self, temp_dir: Path, uploader, ledger: UploadLedger
    ):
        """A forced upload of recorded content keeps the original record."""
        photo = write_file(temp_dir, "a.jpg", b"photo")
        upload_files([photo], uploader, ledger)
        first = ledger.get_record(hashlib.sha256(b"photo").hexdigest())

        result = upload_files([photo], uploader, ledger, force=True)

        assert result.duplicates == 1
        assert result.uploaded == 0
        assert result.failed == 0
        assert ledger.get_record(first.fingerprint).id == first.id
        assert ledger.stats().total_records == 1

    def test_failure_is_recorded_and_run_continues(
        self, temp_dir: Path, fake_limiter, ledger: UploadLedger
    ):
        bad = write_file(temp_dir, "a_bad.jpg", b"bad")
        good = write_file(temp_dir, "b_good.jpg", b"good")
        uploader = Mock(spec=MediaUploader)
        uploader.is_supported_file.return_value = True
        uploader.calculate_file_hash.side_effect = lambda p: f"hash_{Path(p).name}"
        uploader.upload_file.side_effect = [
            FinalizeFatalError("Failed to create media item, status: 400", status_code=400),
            "media_good",
        ]

        result = upload_files([bad, good], uploader, ledger)

        assert result.failed == 1
        assert result.uploaded == 1
        assert result.success is False
        assert ledger.is_known("hash_a_bad.jpg") is False
        failures = ledger.recent_failures()
        assert len(failures) == 1
        assert failures[0].file_path == str(bad)
        assert "400" in failures[0].message

    def test_malformed_finalize_body_fails_only_that_file(
        self, temp_dir: Path, photos_session, fake_limiter, ledger: UploadLedger
    ):
        """A decodable but oddly shaped batchCreate body is a per-file failure."""
        first = write_file(temp_dir, "a.jpg", b"first")
        second = write_file(temp_dir, "b.jpg", b"second")
        photos_session.batch_create_responses = [
            make_response(200, json_body={"newMediaItemResults": [{"status": "oops"}]}),
            make_response(200, json_body={"newMediaItemResults": {"a": 1}}),
        ]
        uploader = MediaUploader(
            photos_session,
            fake_limiter,
            retry_config=RetryConfig(max_retries=1, backoff_unit=0.0),
            supported_formats=SUPPORTED,
        )

        result = upload_files([first, second], uploader, ledger)

        assert result.failed == 1
        assert result.uploaded == 1
        assert ledger.is_known(hashlib.sha256(b"first").hexdigest()) is False
        assert ledger.get_record(hashlib.sha256(b"second").hexdigest()).file_path == str(second)
        assert ledger.recent_failures()[0].file_path == str(first)

    def test_chunk_failure_leaves_no_record(self, temp_dir: Path, fake_limiter, ledger):
        photo = write_file(temp_dir, "a.jpg", b"abc")
        session = Mock()
        session.post.side_effect = [
            make_response(200, headers={"X-Goog-Upload-URL": SESSION_URL}),
            make_response(500, text="boom"),
        ]
        uploader = MediaUploader(session, fake_limiter, supported_formats=SUPPORTED)

        result = upload_files([photo], uploader, ledger)

        assert result.failed == 1
        assert ledger.stats().total_records == 0
        assert session.post.call_count == 2
        fake_limiter.acquire.assert_not_called()

    def test_hash_failure(self, temp_dir: Path, uploader, ledger: UploadLedger):
        missing = temp_dir / "vanished.jpg"

        result = upload_files([missing], uploader, ledger)

        assert result.failed == 1
        assert "hash failed" in ledger.recent_failures()[0].message

    def test_ledger_read_failure_counts_as_failed(self, temp_dir: Path, uploader):
        photo = write_file(temp_dir, "a.jpg", b"abc")
        ledger = Mock(spec=UploadLedger)
        ledger.is_known.side_effect = StorageError("database is locked")

        result = upload_files([photo], uploader, ledger)

        assert result.failed == 1
        uploader.session.post.assert_not_called()

    def test_failure_logging_error_does_not_stop_run(self, temp_dir: Path, fake_limiter):
        photo = write_file(temp_dir, "a.jpg", b"abc")
        ledger = Mock(spec=UploadLedger)
        ledger.is_known.return_value = False
        ledger.record_failure.side_effect = StorageError("disk full")
        uploader = Mock(spec=MediaUploader)
        uploader.is_supported_file.return_value = True
        uploader.calculate_file_hash.return_value = "h"
        uploader.upload_file.side_effect = ChunkTransferError("reset")

        result = upload_files([photo, photo], uploader, ledger)

        assert result.failed == 2

    def test_max_files(self, temp_dir: Path, uploader, ledger: UploadLedger):
        files = [write_file(temp_dir, f"{i}.jpg", bytes([i]) * 10) for i in range(5)]

        result = upload_files(files, uploader, ledger, max_files=2)

        assert result.uploaded == 2
        assert ledger.stats().total_records == 2

    def test_cancel_before_start(self, temp_dir: Path, uploader, ledger: UploadLedger):
        photo = write_file(temp_dir, "a.jpg", b"abc")
        cancel = threading.Event()
        cancel.set()

        result = upload_files([photo], uploader, ledger, cancel=cancel)

        assert result.cancelled is True
        assert result.candidates == 0
        uploader.session.post.assert_not_called()

    def test_cancel_during_upload_stops_run(self, temp_dir: Path, ledger: UploadLedger):
        files = [write_file(temp_dir, f"{i}.jpg", bytes([i])) for i in range(3)]
        uploader = Mock(spec=MediaUploader)
        uploader.is_supported_file.return_value = True
        uploader.calculate_file_hash.side_effect = lambda p: Path(p).name
        uploader.upload_file.side_effect = ["m0", CancellationError("Upload cancelled")]

        result = upload_files(files, uploader, ledger)

        assert result.uploaded == 1
        assert result.cancelled is True
        assert uploader.upload_file.call_count == 2
        assert ledger.stats().total_records == 1
        assert ledger.recent_failures() == []


class TestConcurrentAdmission:
    def test_two_runs_same_content(self, temp_dir: Path, ledger: UploadLedger):
        """Two concurrent runs with one file: one record, one duplicate."""
        photo = write_file(temp_dir, "a.jpg", b"shared content")
        barrier = threading.Barrier(2)
        results = []
        lock = threading.Lock()

        def make_uploader(remote_id: str) -> Mock:
            uploader = Mock(spec=MediaUploader)
            uploader.is_supported_file.return_value = True
            uploader.calculate_file_hash.return_value = "shared_hash"

            def upload_file(path, cancel=None):
                # Both runs pass the is_known check before either records
                barrier.wait()
                return remote_id

            uploader.upload_file.side_effect = upload_file
            return uploader

        def run(remote_id: str):
            r = upload_files([photo], make_uploader(remote_id), ledger)
            with lock:
                results.append(r)

        threads = [threading.Thread(target=run, args=(f"m{i}",)) for i in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(r.uploaded for r in results) == [0, 1]
        assert sorted(r.duplicates for r in results) == [0, 1]
        assert ledger.stats().total_records == 1
        with pytest.raises(DuplicateError):
            ledger.record(str(photo), "shared_hash", "m9")


class TestImportFiles:
    """Test import-only runs."""

    def test_import_records_without_remote_id(self, temp_dir: Path, ledger: UploadLedger):
        a = write_file(temp_dir, "a.jpg", b"a")
        b = write_file(temp_dir, "b.png", b"b")
        write_file(temp_dir, "c.txt", b"c")

        result = import_files(iter_media_files(temp_dir), ledger, SUPPORTED)

        assert result.imported == 2
        assert result.candidates == 2
        assert ledger.list_unsynced() == [str(a), str(b)]

    def test_import_twice_skips(self, temp_dir: Path, ledger: UploadLedger):
        a = write_file(temp_dir, "a.jpg", b"a")
        import_files([a], ledger, SUPPORTED)

        result = import_files([a], ledger, SUPPORTED)

        assert result.skipped == 1
        assert result.imported == 0

    def test_imported_files_skipped_by_upload(
        self, temp_dir: Path, uploader, ledger: UploadLedger
    ):
        a = write_file(temp_dir, "a.jpg", b"a")
        import_files([a], ledger, SUPPORTED)

        result = upload_files([a], uploader, ledger)

        assert result.skipped == 1
        uploader.session.post.assert_not_called()

    def test_import_unreadable_file(self, temp_dir: Path, ledger: UploadLedger):
        result = import_files([temp_dir / "gone.jpg"], ledger, SUPPORTED)
        assert result.failed == 1
        assert result.success is False
