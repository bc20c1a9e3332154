import os
import posixpath
from typing import List, Optional
from urllib.parse import urlparse

from mltrack.entities import FileInfo
from mltrack.exceptions import ArtifactRepositoryError, ErrorCode
from mltrack.store.artifact.artifact_repo import ArtifactRepository
from mltrack.utils.validation import validate_artifact_path


class GCSArtifactRepository(ArtifactRepository):
    """Stores artifacts in Google Cloud Storage, ``gs://bucket/prefix``."""

    def __init__(self, artifact_uri: str, client=None):
        super().__init__(artifact_uri)
        self.bucket_name, self.prefix = self.parse_gcs_uri(artifact_uri)
        self._client = client

    @staticmethod
    def parse_gcs_uri(uri: str):
        parsed = urlparse(uri)
        if parsed.scheme != "gs":
            raise ArtifactRepositoryError(f"Not a GCS URI: {uri}", ErrorCode.INVALID_PARAMETER_VALUE)
        return parsed.netloc, parsed.path.strip("/")

    @property
    def bucket(self):
        if self._client is None:
            from google.cloud import storage

            # credentials from GOOGLE_APPLICATION_CREDENTIALS
            self._client = storage.Client()
        return self._client.bucket(self.bucket_name)

    def _blob_name(self, artifact_path: Optional[str], *names: str) -> str:
        validate_artifact_path(artifact_path)
        return self._join(self.prefix, artifact_path, *names)

    def log_artifact(self, local_file: str, artifact_path: Optional[str] = None) -> None:
        blob = self.bucket.blob(self._blob_name(artifact_path, os.path.basename(local_file)))
        blob.upload_from_filename(local_file)

    def log_artifacts(self, local_dir: str, artifact_path: Optional[str] = None) -> None:
        bucket = self.bucket
        local_dir = os.path.abspath(local_dir)
        for root, _, filenames in os.walk(local_dir):
            rel_dir = os.path.relpath(root, local_dir)
            rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
            for filename in filenames:
                blob = bucket.blob(self._blob_name(artifact_path, rel_dir, filename))
                blob.upload_from_filename(os.path.join(root, filename))

    def list_artifacts(self, path: Optional[str] = None) -> List[FileInfo]:
        path = (path or "").strip("/")
        dest = self._blob_name(path)
        prefix = dest + "/" if dest else ""
        bucket = self.bucket
        blobs = bucket.client.list_blobs(bucket, prefix=prefix, delimiter="/")
        infos = []
        for blob in blobs:
            if blob.name == prefix:
                continue
            infos.append(FileInfo(self._join(path, posixpath.basename(blob.name)), False, int(blob.size)))
        # prefixes are only populated once the iterator is consumed
        for dir_prefix in blobs.prefixes:
            name = posixpath.basename(dir_prefix.rstrip("/"))
            infos.append(FileInfo(self._join(path, name), True, None))
        return sorted(infos, key=lambda f: f.path)

    def _download_file(self, remote_file_path: str, local_path: str) -> None:
        self.bucket.blob(self._blob_name(remote_file_path)).download_to_filename(local_path)
