import io
import logging

from google.api_core.exceptions import GoogleAPIError
from google.cloud import storage

from eng_portal import config
from eng_portal.core.errors import StorageUnavailable

logger = logging.getLogger("engportal.storage")


class GCSBlobStore:
    """Blob store over a Google Cloud Storage bucket. A ref is the object path inside the bucket."""

    def __init__(self, bucket_name: str = None, client=None):
        self.bucket_name = bucket_name or config.BUCKET_NAME
        self._client = client

    def _bucket(self):
        if not self.bucket_name:
            raise StorageUnavailable("GCP_STORAGE_BUCKET environment variable not set")
        # In Cloud Run, this uses the default service account automatically.
        # Locally, it looks for GOOGLE_APPLICATION_CREDENTIALS.
        if self._client is None:
            self._client = storage.Client()
        return self._client.bucket(self.bucket_name)

    def upload(self, path: str, data: bytes, content_type: str = None) -> str:
        try:
            blob = self._bucket().blob(path)
            blob.upload_from_file(io.BytesIO(data), content_type=content_type)
        except GoogleAPIError as e:
            logger.error(f"Upload of {path} failed: {e}")
            raise StorageUnavailable("File upload failed.", cause=e) from e

        # Attempt to make public (if bucket policy allows per-object ACLs)
        try:
            blob.make_public()
        except GoogleAPIError:
            # Uniform Bucket Level Access: the bucket itself must be public.
            logger.debug(f"Per-object ACL not applied to {path}")
        return path

    def get_public_url(self, ref: str) -> str:
        return f"https://storage.googleapis.com/{self.bucket_name}/{ref}"

    def delete(self, ref: str):
        try:
            self._bucket().blob(ref).delete()
        except GoogleAPIError as e:
            logger.error(f"Delete of {ref} failed: {e}")
            raise StorageUnavailable("File delete failed.", cause=e) from e
