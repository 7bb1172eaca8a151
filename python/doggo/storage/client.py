"""Supabase Storage client abstraction.

Attachment blobs live in one private bucket. The pipeline needs four
operations:
- put_object: write a blob (never overwrites; paths are unique)
- get_object: read a blob back for context building / lazy extraction
- delete_object: remove a blob when its attachment is deleted
- sign_download: time-limited URL handed to the browser

All methods are async and receive the full storage_path directly (see
doggo.storage.paths); the client never rewrites paths.
"""

from abc import ABC, abstractmethod
from uuid import uuid4

import httpx

from doggo.logging import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    """Storage operation error.

    ``code`` is one of E_STORAGE_ERROR, E_STORAGE_MISSING, E_SIGN_DOWNLOAD_FAILED.
    """

    def __init__(self, message: str, code: str = "E_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class StorageClientBase(ABC):
    """Abstract base class for storage client implementations."""

    @abstractmethod
    async def put_object(self, path: str, data: bytes, *, content_type: str) -> None:
        """Write a blob.

        Raises:
            StorageError: If the write fails or the path already exists.
        """

    @abstractmethod
    async def get_object(self, path: str) -> bytes:
        """Read a blob.

        Raises:
            StorageError: code E_STORAGE_MISSING if absent, E_STORAGE_ERROR otherwise.
        """

    @abstractmethod
    async def delete_object(self, path: str) -> None:
        """Delete a blob. Deleting a missing blob is not an error.

        Raises:
            StorageError: If the store reports a failure.
        """

    @abstractmethod
    async def sign_download(self, path: str, *, expires_in: int = 3600) -> str:
        """Create a signed download URL valid for ``expires_in`` seconds.

        Raises:
            StorageError: code E_SIGN_DOWNLOAD_FAILED if signing fails.
        """


class StorageClient(StorageClientBase):
    """Production Supabase Storage client over a shared httpx.AsyncClient."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        supabase_url: str,
        service_key: str,
        bucket: str = "conversation-attachments",
        timeout_s: float = 10.0,
    ):
        """
        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            supabase_url: Supabase project URL (e.g., https://xxx.supabase.co).
            service_key: Supabase service role key.
            bucket: Storage bucket name.
            timeout_s: Per-operation timeout.
        """
        self._client = client
        self._base_url = supabase_url.rstrip("/")
        self._bucket = bucket
        self._timeout = httpx.Timeout(timeout_s)
        self._storage_url = f"{self._base_url}/storage/v1"
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    def _object_url(self, path: str) -> str:
        return f"{self._storage_url}/object/{self._bucket}/{path}"

    async def put_object(self, path: str, data: bytes, *, content_type: str) -> None:
        try:
            response = await self._client.post(
                self._object_url(path),
                headers={**self._headers, "Content-Type": content_type, "x-upsert": "false"},
                content=data,
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Upload failed: {type(e).__name__}") from e

        if response.status_code not in (200, 201):
            raise StorageError(f"Upload failed: {response.status_code}")

    async def get_object(self, path: str) -> bytes:
        try:
            response = await self._client.get(
                self._object_url(path), headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Download failed: {type(e).__name__}") from e

        # Supabase answers 400 with a "not_found" body for missing objects
        if response.status_code == 404 or (
            response.status_code == 400 and "not_found" in response.text.lower()
        ):
            raise StorageError(f"Object not found: {path}", code="E_STORAGE_MISSING")
        if response.status_code != 200:
            raise StorageError(f"Download failed: {response.status_code}")
        return response.content

    async def delete_object(self, path: str) -> None:
        try:
            response = await self._client.delete(
                self._object_url(path), headers=self._headers, timeout=self._timeout
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Delete failed: {type(e).__name__}") from e

        if response.status_code not in (200, 204, 404):
            raise StorageError(f"Delete failed: {response.status_code}")

    async def sign_download(self, path: str, *, expires_in: int = 3600) -> str:
        try:
            response = await self._client.post(
                f"{self._storage_url}/object/sign/{self._bucket}/{path}",
                headers=self._headers,
                json={"expiresIn": expires_in},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise StorageError(
                f"Failed to sign download: {type(e).__name__}", code="E_SIGN_DOWNLOAD_FAILED"
            ) from e

        if response.status_code != 200:
            raise StorageError(
                f"Failed to sign download: {response.status_code}",
                code="E_SIGN_DOWNLOAD_FAILED",
            )

        data = response.json()
        signed_path = data.get("signedURL") or data.get("signedUrl") or ""
        if not signed_path:
            raise StorageError(
                "Failed to sign download: missing signed URL",
                code="E_SIGN_DOWNLOAD_FAILED",
            )

        # Supabase may return relative paths (with or without /storage/v1).
        if signed_path.startswith(("http://", "https://")):
            return signed_path
        signed_path = "/" + signed_path.lstrip("/")
        if signed_path.startswith("/storage/"):
            return f"{self._base_url}{signed_path}"
        return f"{self._storage_url}{signed_path}"


class FakeStorageClient(StorageClientBase):
    """In-memory storage for tests and local development without Supabase.

    ``fail_paths`` makes selected operations fail, for partial-failure tests.
    """

    def __init__(self):
        self._objects: dict[str, tuple[bytes, str]] = {}  # path -> (content, content_type)
        self.fail_paths: dict[str, set[str]] = {"put": set(), "get": set(), "delete": set()}

    async def put_object(self, path: str, data: bytes, *, content_type: str) -> None:
        if path in self.fail_paths["put"]:
            raise StorageError(f"Upload failed: {path}")
        if path in self._objects:
            raise StorageError(f"Object already exists: {path}")
        self._objects[path] = (bytes(data), content_type)

    async def get_object(self, path: str) -> bytes:
        if path in self.fail_paths["get"]:
            raise StorageError(f"Download failed: {path}")
        if path not in self._objects:
            raise StorageError(f"Object not found: {path}", code="E_STORAGE_MISSING")
        return self._objects[path][0]

    async def delete_object(self, path: str) -> None:
        if path in self.fail_paths["delete"]:
            raise StorageError(f"Delete failed: {path}")
        self._objects.pop(path, None)

    async def sign_download(self, path: str, *, expires_in: int = 3600) -> str:
        return f"https://fake-storage.test/download/{path}?token=fake-{uuid4()}&expires={expires_in}"

    # Test helper methods

    def seed(self, path: str, content: bytes, content_type: str = "application/pdf") -> None:
        """Store an object directly, bypassing failure injection."""
        self._objects[path] = (content, content_type)

    def contains(self, path: str) -> bool:
        return path in self._objects

    def content_type_of(self, path: str) -> str | None:
        entry = self._objects.get(path)
        return entry[1] if entry else None

    @property
    def paths(self) -> list[str]:
        return sorted(self._objects)

    def clear(self) -> None:
        self._objects.clear()
        for paths in self.fail_paths.values():
            paths.clear()


def build_storage_client(client: httpx.AsyncClient, settings) -> StorageClientBase:
    """Get the configured storage client.

    Returns:
        StorageClient if SUPABASE_URL and SUPABASE_SERVICE_KEY are set,
        FakeStorageClient otherwise (local dev / tests).
    """
    if settings.supabase_url and settings.supabase_service_key:
        return StorageClient(
            client,
            supabase_url=settings.supabase_url,
            service_key=settings.supabase_service_key,
            bucket=settings.storage_bucket,
            timeout_s=settings.storage_timeout_s,
        )

    logger.warning("storage.fake_client_in_use")
    return FakeStorageClient()
