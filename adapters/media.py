# adapters/media.py — Supabase Storage uploads for post media

import logging

from core.errors import UploadError
from core.metrics import increment_counter
from vendors.supabase_client import get_client

logger = logging.getLogger(__name__)


class SupabaseMediaStorage:
    """Uploads bytes to a Supabase Storage bucket and returns their public URL."""

    def __init__(self, bucket: str = "collection-media", sb=None):
        self.bucket = bucket
        self.sb = sb or get_client()

    def upload(self, data: bytes, path: str, content_type: str = "application/octet-stream") -> str:
        """
        Store ``data`` at ``path`` in the bucket.

        Raises:
            UploadError: If storage rejects the upload or is unreachable
        """
        storage = self.sb.storage.from_(self.bucket)
        try:
            storage.upload(path, data, {"content-type": content_type, "upsert": "true"})
            url = storage.get_public_url(path)
        except Exception as e:
            increment_counter("media.upload.failed")
            logger.error(f"Upload to {self.bucket}/{path} failed: {e}", exc_info=True)
            raise UploadError(
                f"Upload of {path} failed",
                {"bucket": self.bucket, "path": path, "reason": str(e)},
            ) from e

        increment_counter("media.upload.ok")
        logger.debug(f"Uploaded {len(data)} bytes to {self.bucket}/{path}")
        return url

    def delete(self, path: str) -> None:
        """
        Remove ``path`` from the bucket.

        Raises:
            UploadError: If storage is unreachable
        """
        try:
            self.sb.storage.from_(self.bucket).remove([path])
        except Exception as e:
            increment_counter("media.delete.failed")
            logger.error(f"Delete of {self.bucket}/{path} failed: {e}", exc_info=True)
            raise UploadError(
                f"Delete of {path} failed",
                {"bucket": self.bucket, "path": path, "reason": str(e)},
            ) from e

        logger.debug(f"Removed {self.bucket}/{path}")
