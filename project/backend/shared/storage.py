"""
Artifact storage.

Supabase Storage operations for pipeline artifacts (keyframes, clips, final
videos). Every object carries a string-to-string custom metadata map.
"""

import asyncio
import mimetypes
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel
from supabase import Client, create_client

from shared.config import Settings
from shared.errors import ConfigError, StorageFailure, UploadFailed
from shared.logging import get_logger
from shared.retry import retry_with_backoff

logger = get_logger("storage")


class StoredObject(BaseModel):
    """Entry returned by a storage listing."""

    key: str
    name: str
    created_at: Optional[datetime] = None
    size: Optional[int] = None


def _is_not_found(error: Exception) -> bool:
    """Supabase reports missing objects with a 404 status or a not_found code."""
    for attr in ("status", "status_code", "statusCode", "code"):
        value = getattr(error, attr, None)
        if value is not None and str(value) in ("404", "not_found", "NoSuchKey"):
            return True
    message = str(error).lower()
    return "not found" in message or "not_found" in message or "'404'" in message


class ArtifactStore:
    """Supabase Storage client scoped to one bucket."""

    def __init__(self, settings: Settings, client: Optional[Client] = None):
        """
        Initialize artifact store.

        Args:
            settings: Pipeline settings (Supabase URL, key and bucket)
            client: Optional pre-built Supabase client
        """
        self.bucket_name = settings.storage_bucket
        try:
            self.client = client or create_client(
                settings.supabase_url,
                settings.supabase_service_key
            )
            self.storage = self.client.storage
        except Exception as e:
            raise ConfigError(f"Failed to initialize storage client: {str(e)}") from e

    @property
    def bucket(self):
        return self.storage.from_(self.bucket_name)

    async def _execute_sync(self, func: Callable[[], Any]) -> Any:
        """Run a blocking Supabase call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)

    def _detect_content_type(self, path: str, default: Optional[str] = None) -> str:
        content_type, _ = mimetypes.guess_type(path)
        if content_type:
            return content_type
        return default or "application/octet-stream"

    async def upload(
        self,
        local_path: Path,
        destination_key: str,
        metadata: Dict[str, str],
        content_type: Optional[str] = None
    ) -> str:
        """
        Upload a local file under a new key.

        The key must not exist yet; callers mint a unique key per attempt.
        Not retried here so that each retry can use a fresh key.

        Args:
            local_path: File to upload
            destination_key: Object key inside the bucket
            metadata: Custom metadata attached to the object
            content_type: Content type (auto-detected if not provided)

        Returns:
            Public URL of the uploaded object

        Raises:
            UploadFailed: If the upload fails (retryable)
        """
        content_type = content_type or self._detect_content_type(destination_key)
        string_metadata = {str(k): str(v) for k, v in metadata.items()}

        try:
            file_data = await self._execute_sync(Path(local_path).read_bytes)

            def _upload():
                return self.bucket.upload(
                    path=destination_key,
                    file=file_data,
                    file_options={
                        "content-type": content_type,
                        "upsert": "false",
                        "metadata": string_metadata,
                    }
                )

            await self._execute_sync(_upload)
            url = await self._execute_sync(lambda: self.bucket.get_public_url(destination_key))
        except Exception as e:
            logger.error(
                f"Failed to upload {destination_key}: {str(e)}",
                extra={"bucket": self.bucket_name, "path": destination_key, "error": str(e)}
            )
            raise UploadFailed(f"Failed to upload {destination_key}: {str(e)}") from e

        logger.info(
            f"Uploaded file to {self.bucket_name}/{destination_key}",
            extra={"bucket": self.bucket_name, "path": destination_key, "size": len(file_data)}
        )
        return url

    @retry_with_backoff(max_attempts=3, base_delay=2)
    async def delete(self, destination_key: str) -> bool:
        """
        Delete an object. Deleting a missing key is not an error.

        Returns:
            True if an object was removed, False if it was already absent

        Raises:
            StorageFailure: If deletion fails after retries
        """
        try:
            removed = await self._execute_sync(lambda: self.bucket.remove([destination_key]))
        except Exception as e:
            if _is_not_found(e):
                return False
            logger.error(
                f"Failed to delete {destination_key}: {str(e)}",
                extra={"bucket": self.bucket_name, "path": destination_key, "error": str(e)}
            )
            raise StorageFailure(f"Failed to delete {destination_key}: {str(e)}") from e

        deleted = bool(removed)
        logger.info(
            f"Deleted file from {self.bucket_name}/{destination_key}",
            extra={"bucket": self.bucket_name, "path": destination_key, "deleted": deleted}
        )
        return deleted

    @retry_with_backoff(max_attempts=3, base_delay=2)
    async def get_metadata(self, destination_key: str) -> Dict[str, str]:
        """
        Read the custom metadata of an object.

        Returns:
            Metadata map; empty if the object does not exist

        Raises:
            StorageFailure: If the lookup fails after retries
        """
        try:
            info = await self._execute_sync(lambda: self.bucket.info(destination_key))
        except Exception as e:
            if _is_not_found(e):
                return {}
            raise StorageFailure(f"Failed to read metadata for {destination_key}: {str(e)}") from e

        if not isinstance(info, dict):
            info = getattr(info, "__dict__", {}) or {}
        metadata = info.get("metadata") or info.get("user_metadata") or {}
        return {str(k): str(v) for k, v in metadata.items()}

    @retry_with_backoff(max_attempts=3, base_delay=2)
    async def list(self, prefix: str) -> List[StoredObject]:
        """
        List objects directly under `prefix`, newest first.

        Raises:
            StorageFailure: If the listing fails after retries
        """
        prefix = prefix.rstrip("/")
        try:
            entries = await self._execute_sync(
                lambda: self.bucket.list(
                    prefix,
                    {"limit": 1000, "sortBy": {"column": "created_at", "order": "desc"}}
                )
            )
        except Exception as e:
            if _is_not_found(e):
                return []
            raise StorageFailure(f"Failed to list {prefix}: {str(e)}") from e

        objects = []
        for entry in entries or []:
            name = entry.get("name")
            if not name:
                continue
            size = (entry.get("metadata") or {}).get("size")
            objects.append(StoredObject(
                key=f"{prefix}/{name}",
                name=name,
                created_at=entry.get("created_at"),
                size=size,
            ))
        return objects

    def public_url(self, destination_key: str) -> str:
        return self.bucket.get_public_url(destination_key)
