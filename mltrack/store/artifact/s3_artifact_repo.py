import logging
import os
import posixpath
from typing import List, Optional
from urllib.parse import urlparse

from mltrack.common.common import EnvVars
from mltrack.entities import FileInfo
from mltrack.exceptions import ArtifactRepositoryError, ErrorCode
from mltrack.store.artifact.artifact_repo import ArtifactRepository
from mltrack.utils.validation import validate_artifact_path

logger = logging.getLogger(__name__)


class S3ArtifactRepository(ArtifactRepository):
    """
    Stores artifacts in Amazon S3 or an S3 compatible service.

    ``s3://bucket/prefix``. Credentials come from the standard AWS
    environment variables or config files; ``MLTRACK_S3_ENDPOINT_URL``
    points the client at a different endpoint (MinIO, localstack ...).
    """

    def __init__(self, artifact_uri: str, client=None):
        super().__init__(artifact_uri)
        self.bucket, self.prefix = self.parse_s3_uri(artifact_uri)
        self._client = client

    @staticmethod
    def parse_s3_uri(uri: str):
        parsed = urlparse(uri)
        if parsed.scheme != "s3":
            raise ArtifactRepositoryError(f"Not an S3 URI: {uri}", ErrorCode.INVALID_PARAMETER_VALUE)
        return parsed.netloc, parsed.path.lstrip("/").rstrip("/")

    @property
    def client(self):
        if self._client is None:
            import boto3

            self._client = boto3.client(
                "s3",
                endpoint_url=os.environ.get(EnvVars.S3_ENDPOINT_URL.value) or None,
            )
        return self._client

    def _key(self, artifact_path: Optional[str], *names: str) -> str:
        validate_artifact_path(artifact_path)
        return self._join(self.prefix, artifact_path, *names)

    def log_artifact(self, local_file: str, artifact_path: Optional[str] = None) -> None:
        key = self._key(artifact_path, os.path.basename(local_file))
        self.client.upload_file(Filename=local_file, Bucket=self.bucket, Key=key)

    def log_artifacts(self, local_dir: str, artifact_path: Optional[str] = None) -> None:
        local_dir = os.path.abspath(local_dir)
        for root, _, filenames in os.walk(local_dir):
            rel_dir = os.path.relpath(root, local_dir)
            rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
            for filename in filenames:
                key = self._key(artifact_path, rel_dir, filename)
                self.client.upload_file(Filename=os.path.join(root, filename), Bucket=self.bucket, Key=key)

    def list_artifacts(self, path: Optional[str] = None) -> List[FileInfo]:
        path = (path or "").strip("/")
        dest = self._key(path)
        prefix = dest + "/" if dest else ""
        infos = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix, Delimiter="/"):
            for common in page.get("CommonPrefixes", []):
                name = posixpath.basename(common["Prefix"].rstrip("/"))
                infos.append(FileInfo(self._join(path, name), True, None))
            for obj in page.get("Contents", []):
                name = posixpath.basename(obj["Key"])
                if obj["Key"] == prefix or not name:
                    continue
                infos.append(FileInfo(self._join(path, name), False, int(obj["Size"])))
        return sorted(infos, key=lambda f: f.path)

    def _download_file(self, remote_file_path: str, local_path: str) -> None:
        self.client.download_file(Bucket=self.bucket, Key=self._key(remote_file_path), Filename=local_path)
