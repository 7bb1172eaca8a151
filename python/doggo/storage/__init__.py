"""Storage module for Supabase Storage operations.

Provides:
- StorageClient for interacting with Supabase Storage
- FakeStorageClient for tests and local development
- Path building utilities for consistent storage paths
- Test isolation support via configurable prefixes
"""

from doggo.storage.client import (
    FakeStorageClient,
    StorageClient,
    StorageClientBase,
    StorageError,
    build_storage_client,
)
from doggo.storage.paths import (
    StorageCategory,
    build_storage_path,
    generate_safe_filename,
    thumbnail_filename,
)

__all__ = [
    "StorageClientBase",
    "StorageClient",
    "FakeStorageClient",
    "StorageError",
    "build_storage_client",
    "StorageCategory",
    "build_storage_path",
    "generate_safe_filename",
    "thumbnail_filename",
]
