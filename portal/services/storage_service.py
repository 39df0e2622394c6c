"""Storage service for allocation evidence in Supabase storage."""

import asyncio
from typing import Any, Iterable, List, Optional

import httpx

from portal.core.config import settings
from portal.core.exceptions import StorageError
from portal.utils.logging import get_logger

LOGGER = get_logger(__name__)


def evidence_folder(request_id: Any) -> str:
    return f"allocation-requests/{request_id}"


def evidence_path(request_id: Any, filename: str) -> str:
    """Object path for one evidence file, e.g. ``allocation-requests/<id>/evidence_slip.pdf``."""
    safe_name = (filename or "file").replace("/", "_").replace("\\", "_")
    return f"{evidence_folder(request_id)}/evidence_{safe_name}"


class StorageService:
    """Service for managing evidence files in Supabase storage."""

    def __init__(
        self,
        url: Optional[str] = None,
        service_role_key: Optional[str] = None,
        bucket: Optional[str] = None,
    ):
        self.url = (url if url is not None else settings.supabase_url).rstrip("/")
        self.service_role_key = service_role_key if service_role_key is not None else settings.supabase_service_role_key
        self.bucket = bucket or settings.storage.evidence_bucket
        self.base_api_url = f"{self.url}/storage/v1"
        self.headers = {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
        }

    def public_url(self, path: str) -> str:
        return f"{self.base_api_url}/object/public/{self.bucket}/{path}"

    async def upload_file(
        self,
        file: Any,
        path: str,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Upload a file and return its public URL.

        Args:
            file: UploadFile, file-like object or raw bytes
            path: Target path within the evidence bucket
            content_type: Fallback content type when the file carries none

        Returns:
            Public URL of the stored object

        Raises:
            StorageError: If the upload fails
        """
        upload_url = f"{self.base_api_url}/object/{self.bucket}/{path}"

        try:
            if hasattr(file, "read"):
                content = file.read()
                if asyncio.iscoroutine(content):
                    content = await content
            else:
                content = file

            final_content_type = getattr(file, "content_type", None) or content_type

            async with httpx.AsyncClient() as client:
                response = await client.post(
                    upload_url,
                    headers={**self.headers, "Content-Type": final_content_type, "x-upsert": "true"},
                    content=content,
                    timeout=settings.http_timeout,
                )

            if response.status_code != 200:
                LOGGER.error(
                    f"Failed to upload evidence to Supabase: {response.text}",
                    extra={"bucket": self.bucket, "path": path, "status_code": response.status_code},
                )
                raise StorageError(f"Evidence upload failed with status {response.status_code}")

            LOGGER.info(f"Uploaded evidence to {self.bucket}/{path}")
            return self.public_url(path)

        except StorageError:
            raise
        except Exception as e:
            LOGGER.error(f"Error uploading evidence to Supabase: {str(e)}", exc_info=True)
            raise StorageError("Evidence upload failed", original_error=e) from e

    async def delete_files(self, paths: Iterable[str]) -> bool:
        """Delete objects from the evidence bucket.

        Used to roll back a partially uploaded evidence set, so failures are
        logged and reported through the return value rather than raised.
        """
        prefixes: List[str] = list(paths)
        if not prefixes:
            return True

        try:
            async with httpx.AsyncClient() as client:
                response = await client.request(
                    "DELETE",
                    f"{self.base_api_url}/object/{self.bucket}",
                    headers=self.headers,
                    json={"prefixes": prefixes},
                    timeout=settings.http_timeout,
                )
            if response.status_code != 200:
                LOGGER.error(
                    f"Failed to delete evidence from Supabase: {response.text}",
                    extra={"bucket": self.bucket, "paths": prefixes, "status_code": response.status_code},
                )
                return False
            return True
        except httpx.HTTPError as e:
            LOGGER.error(f"Error deleting evidence from Supabase: {str(e)}", exc_info=True)
            return False
