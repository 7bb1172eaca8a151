"""Storage path building utilities.

This module is the single point of logic for building storage paths. All
path construction must go through build_storage_path() so the test prefix
is applied consistently.

Path Invariant:
    - Production: {user_id}/{conversation_id}/{category}/{safe_filename}
    - Test: test_runs/{run_id}/{user_id}/{conversation_id}/{category}/{safe_filename}

Rules:
    - No leading slash
    - Filenames are sanitized and timestamp-prefixed (generate_safe_filename)
    - Prefix applied exactly once in build_storage_path()
"""

import os
import re
import time
from enum import Enum
from uuid import UUID

# Environment variable for test run prefix
TEST_PREFIX_ENV_VAR = "STORAGE_TEST_PREFIX"

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")
_UNSAFE_EXT_CHARS = re.compile(r"[^a-z0-9]")
MAX_NAME_LENGTH = 100


class StorageCategory(str, Enum):
    """Third path segment; groups blobs by what produced them."""

    images = "images"
    thumbnails = "thumbnails"
    documents = "documents"
    scraped = "scraped"
    websearch = "websearch"


def _get_test_prefix() -> str:
    """Empty string in production, "test_runs/{run_id}/" in test."""
    prefix = os.environ.get(TEST_PREFIX_ENV_VAR, "")
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return prefix


def generate_safe_filename(original_name: str, now_ms: int | None = None) -> str:
    """Sanitize a client filename and make it unique.

    Characters outside [a-zA-Z0-9.-] become "_", runs of "_" collapse, the
    result is lowercased and prefixed with a millisecond timestamp. The
    output never contains "/" so it cannot escape its directory.

    Example:
        >>> generate_safe_filename("My Report (final).PDF", now_ms=1700000000000)
        '1700000000000_my_report_final_.pdf'
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000

    name = original_name.strip().replace("\\", "/").rsplit("/", 1)[-1]
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        stem, ext = name, ""

    safe_stem = _REPEATED_UNDERSCORES.sub("_", _UNSAFE_CHARS.sub("_", stem)).lower()
    safe_stem = safe_stem[:MAX_NAME_LENGTH].strip(".") or "file"
    safe_ext = _UNSAFE_EXT_CHARS.sub("", ext.lower())[:10]

    if safe_ext:
        return f"{now_ms}_{safe_stem}.{safe_ext}"
    return f"{now_ms}_{safe_stem}"


def build_storage_path(
    user_id: UUID | str,
    conversation_id: UUID | str,
    category: StorageCategory,
    safe_filename: str,
) -> str:
    """Build the full storage path for a conversation blob.

    This is the ONLY function that should construct storage paths.

    Raises:
        ValueError: If safe_filename contains a path separator.
    """
    if "/" in safe_filename or "\\" in safe_filename or safe_filename in ("", ".", ".."):
        raise ValueError(f"Unsafe storage filename: {safe_filename!r}")
    prefix = _get_test_prefix()
    return f"{prefix}{user_id}/{conversation_id}/{StorageCategory(category).value}/{safe_filename}"


def thumbnail_filename(safe_filename: str) -> str:
    """Thumbnails are always JPEG and named after the image they preview."""
    stem = safe_filename.rsplit(".", 1)[0]
    return f"thumb_{stem}.jpg"
