"""
Google Photos API integration.

Provides OAuth authentication and resumable media upload.
"""

from cronocam.google_photos.api import (
    SCOPES,
    MediaUploader,
    TransferSession,
    authorized_session,
    ensure_album,
    get_creds,
    is_supported_file,
    sha256_of_file,
)

__all__ = [
    "get_creds",
    "authorized_session",
    "ensure_album",
    "MediaUploader",
    "TransferSession",
    "is_supported_file",
    "sha256_of_file",
    "SCOPES",
]
