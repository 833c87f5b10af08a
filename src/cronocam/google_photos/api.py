# photos API logic
import hashlib
import logging
import mimetypes
import pathlib
import threading
from dataclasses import dataclass
from typing import BinaryIO

import requests
from google.auth.transport.requests import AuthorizedSession, Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from cronocam.errors import (
    CancellationError,
    ChunkTransferError,
    FinalizeFatalError,
    FinalizeRetryableError,
    SessionStartError,
)
from cronocam.utils.ratelimit import RateLimiter
from cronocam.utils.retry import RetryConfig, run_with_retry

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/photoslibrary.appendonly",
]

PHOTOS_UPLOAD_URL = "https://photoslibrary.googleapis.com/v1/uploads"
PHOTOS_BATCH_CREATE_URL = "https://photoslibrary.googleapis.com/v1/mediaItems:batchCreate"
PHOTOS_ALBUMS_URL = "https://photoslibrary.googleapis.com/v1/albums"

DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024
DEFAULT_CONTENT_TYPE = "image/jpeg"
_HASH_BLOCK_SIZE = 1024 * 1024
_SUCCESS_MESSAGES = ("Success", "OK")


def get_creds(
    token_path: str | pathlib.Path = "token.json",
    client_secret_path: str | pathlib.Path = "client_secret.json",
) -> Credentials:
    creds: Credentials | None = None
    if pathlib.Path(token_path).exists():
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            creds.refresh(Request())
        else:
            flow = InstalledAppFlow.from_client_secrets_file(str(client_secret_path), SCOPES)
            creds = flow.run_local_server(port=0)
        try:
            with open(token_path, "w") as f:
                f.write(creds.to_json())
        except OSError as e:
            logger.warning(f"Could not write token file {token_path}: {e}")
    return creds


def authorized_session(creds: Credentials) -> AuthorizedSession:
    """Wrap credentials in a requests.Session that signs and refreshes on its own."""
    return AuthorizedSession(creds)


def ensure_album(
    session: requests.Session, album_name: str | None, timeout: float = 30
) -> str | None:
    """Create a new Google Photos album and return its ID.

    NOTE: photoslibrary.appendonly cannot list existing albums, so this only
    creates. Callers should cache the returned ID.
    """
    if not album_name:
        return None
    r = session.post(
        PHOTOS_ALBUMS_URL,
        json={"album": {"title": album_name}},
        timeout=timeout,
    )
    r.raise_for_status()
    result = r.json().get("id")
    return result if isinstance(result, str) else None


def sha256_of_file(p: str | pathlib.Path) -> str:
    h = hashlib.sha256()
    with open(p, "rb") as f:
        for chunk in iter(lambda: f.read(_HASH_BLOCK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def is_supported_file(p: str | pathlib.Path, supported: frozenset[str] | set[str]) -> bool:
    return pathlib.Path(p).suffix.lower() in supported


def guess_content_type(p: str | pathlib.Path) -> str:
    content_type, _ = mimetypes.guess_type(str(p))
    return content_type or DEFAULT_CONTENT_TYPE


def _check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise CancellationError("Upload cancelled")


def _item_succeeded(status: dict) -> bool:
    try:
        code = int(status.get("code", 0))
    except (TypeError, ValueError):
        return False
    message = status.get("message")
    return code == 0 and (message is None or message in _SUCCESS_MESSAGES)


@dataclass
class TransferSession:
    """State of one resumable upload. Never reused across files or attempts."""

    session_url: str
    total_size: int
    bytes_sent: int = 0
    upload_token: str | None = None

    @property
    def complete(self) -> bool:
        return self.upload_token is not None

    def advance(self, n: int) -> None:
        if self.bytes_sent + n > self.total_size:
            raise ChunkTransferError(
                f"Chunk would overrun declared size ({self.bytes_sent} + {n} > {self.total_size})"
            )
        self.bytes_sent += n


class MediaUploader:
    """
    Uploads local files to Google Photos using the resumable upload protocol.

    Each upload runs three phases in order: open a session, send the file in
    chunks, then create the media item. Only the last phase is rate limited
    and retried.

    Args:
        session: requests.Session that attaches authorization (AuthorizedSession)
        rate_limiter: Shared limiter for media item creation
        chunk_size: Bytes per chunk request
        retry_config: Retry policy for media item creation
        supported_formats: Lowercase extensions accepted by is_supported_file
        album_id: Optional album the new items are added to
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        session: requests.Session,
        rate_limiter: RateLimiter,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry_config: RetryConfig | None = None,
        supported_formats: frozenset[str] | set[str] | None = None,
        album_id: str | None = None,
        timeout: float = 60,
    ):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.session = session
        self.rate_limiter = rate_limiter
        self.chunk_size = chunk_size
        self.retry_config = retry_config or RetryConfig()
        self.supported_formats = frozenset(supported_formats or ())
        self.album_id = album_id
        self.timeout = timeout

    def is_supported_file(self, path: str | pathlib.Path) -> bool:
        return is_supported_file(path, self.supported_formats)

    def calculate_file_hash(self, path: str | pathlib.Path) -> str:
        return sha256_of_file(path)

    def upload_file(self, path: str | pathlib.Path, cancel: threading.Event | None = None) -> str:
        """
        Upload one file and return the new media item ID.

        Raises:
            OSError: The file could not be opened or read
            SessionStartError, ChunkTransferError, FinalizeError: Protocol failure
            CancellationError: cancel was set
        """
        path = pathlib.Path(path)
        with path.open("rb") as fh:
            total_size = path.stat().st_size
            transfer = self.start_resumable_upload(path, total_size, cancel)
            upload_token = self.upload_chunks(fh, transfer, cancel)
        return self.create_media_item(upload_token, path.name, cancel)

    def start_resumable_upload(
        self, path: pathlib.Path, total_size: int, cancel: threading.Event | None = None
    ) -> TransferSession:
        _check_cancelled(cancel)
        headers = {
            "Content-Length": "0",
            "X-Goog-Upload-Protocol": "resumable",
            "X-Goog-Upload-Command": "start",
            "X-Goog-Upload-Content-Type": guess_content_type(path),
            "X-Goog-Upload-Raw-Size": str(total_size),
        }
        try:
            r = self.session.post(PHOTOS_UPLOAD_URL, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise SessionStartError(f"Could not start upload for {path.name}: {e}") from e

        if r.status_code != 200:
            raise SessionStartError(
                f"Failed to start upload, status: {r.status_code}, body: {r.text}"
            )
        session_url = r.headers.get("X-Goog-Upload-URL")
        if not session_url:
            raise SessionStartError("No upload URL in response")

        logger.debug(f"Opened upload session for {path.name} ({total_size} bytes)")
        return TransferSession(session_url=session_url, total_size=total_size)

    def upload_chunks(
        self,
        fh: BinaryIO,
        transfer: TransferSession,
        cancel: threading.Event | None = None,
    ) -> str:
        """Send the file in chunk_size pieces; return the upload token from the last one."""
        while not transfer.complete:
            _check_cancelled(cancel)

            remaining = transfer.total_size - transfer.bytes_sent
            chunk = fh.read(min(self.chunk_size, remaining))
            if not chunk:
                # Empty files and files that shrank after start both end here
                raise ChunkTransferError(
                    f"No upload token received ({transfer.bytes_sent}/{transfer.total_size} "
                    "bytes sent)"
                )

            is_last = transfer.bytes_sent + len(chunk) >= transfer.total_size
            headers = {
                "Content-Length": str(len(chunk)),
                "X-Goog-Upload-Command": "upload, finalize" if is_last else "upload",
                "X-Goog-Upload-Offset": str(transfer.bytes_sent),
            }
            try:
                r = self.session.post(
                    transfer.session_url, data=chunk, headers=headers, timeout=self.timeout
                )
            except requests.RequestException as e:
                raise ChunkTransferError(
                    f"Chunk upload failed at offset {transfer.bytes_sent}: {e}"
                ) from e

            if r.status_code != 200:
                raise ChunkTransferError(
                    f"Chunk upload failed, status: {r.status_code}, body: {r.text}"
                )

            transfer.advance(len(chunk))
            if is_last:
                if not r.text:
                    raise ChunkTransferError("No upload token received")
                transfer.upload_token = r.text

        return transfer.upload_token

    def create_media_item(
        self, upload_token: str, filename: str, cancel: threading.Event | None = None
    ) -> str:
        """Exchange an upload token for a media item ID, with rate limiting and retries."""
        new_item: dict[str, str | dict[str, str]] = {
            "description": filename,
            "simpleMediaItem": {"uploadToken": upload_token, "fileName": filename},
        }
        body: dict[str, str | list[dict[str, str | dict[str, str]]]] = {
            "newMediaItems": [new_item]
        }
        if self.album_id:
            body["albumId"] = self.album_id

        return run_with_retry(
            lambda: self._create_media_item_once(body, cancel),
            self.retry_config,
            self.rate_limiter,
            cancel=cancel,
            description=f"create_media_item({filename})",
        )

    def _create_media_item_once(self, body: dict, cancel: threading.Event | None) -> str:
        _check_cancelled(cancel)
        r = self.session.post(PHOTOS_BATCH_CREATE_URL, json=body, timeout=self.timeout)

        if r.status_code == 429:
            raise FinalizeRetryableError(
                f"Rate limit exceeded (429), body: {r.text}", status_code=429
            )
        if not 200 <= r.status_code < 300:
            message = f"Failed to create media item, status: {r.status_code}, body: {r.text}"
            if 400 <= r.status_code < 500:
                raise FinalizeFatalError(message, status_code=r.status_code)
            raise FinalizeRetryableError(message, status_code=r.status_code)

        try:
            resp = r.json()
        except ValueError as e:
            raise FinalizeRetryableError(f"Failed to decode response: {e}") from e

        results = resp.get("newMediaItemResults") if isinstance(resp, dict) else None
        if not results:
            raise FinalizeRetryableError("No media items created")
        if not isinstance(results, list):
            raise FinalizeRetryableError(f"Unexpected newMediaItemResults: {results!r}")

        result = results[0]
        if not isinstance(result, dict):
            raise FinalizeRetryableError(f"Unexpected media item result: {result!r}")
        status = result.get("status") or {}
        if not isinstance(status, dict) or not _item_succeeded(status):
            raise FinalizeRetryableError(f"Google Photos error: {status}")

        media_item = result.get("mediaItem") or {}
        if not isinstance(media_item, dict):
            raise FinalizeRetryableError(f"Unexpected mediaItem: {media_item!r}")
        media_id = media_item.get("id")
        if not media_id:
            raise FinalizeRetryableError("Media item created without an id")
        return str(media_id)
