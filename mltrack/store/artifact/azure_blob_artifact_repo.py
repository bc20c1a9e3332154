import os
import posixpath
import re
from typing import List, Optional

from mltrack.common.common import EnvVars
from mltrack.entities import FileInfo
from mltrack.exceptions import ArtifactRepositoryError, ErrorCode
from mltrack.store.artifact.artifact_repo import ArtifactRepository
from mltrack.utils.validation import validate_artifact_path

_WASBS_REGEX = re.compile(r"^wasbs://([^@/]+)@([^./]+)\.(blob\.core\.windows\.net[^/]*)/?(.*)$")


class AzureBlobArtifactRepository(ArtifactRepository):
    """
    Stores artifacts in Azure Blob Storage.

    ``wasbs://<container>@<account>.blob.core.windows.net/<prefix>``, with
    credentials from ``AZURE_STORAGE_CONNECTION_STRING`` or
    ``AZURE_STORAGE_ACCESS_KEY``.
    """

    def __init__(self, artifact_uri: str, client=None):
        super().__init__(artifact_uri)
        self.container, self.account, self.api_uri_suffix, self.prefix = self.parse_wasbs_uri(artifact_uri)
        if client is None:
            client = self._build_client()
        self.client = client

    @staticmethod
    def parse_wasbs_uri(uri: str):
        match = _WASBS_REGEX.match(uri)
        if match is None:
            raise ArtifactRepositoryError(
                f"Not a WASBS URI: {uri}. Expected wasbs://<container>@<account>.blob.core.windows.net/<path>",
                ErrorCode.INVALID_PARAMETER_VALUE)
        container, account, suffix, path = match.groups()
        return container, account, suffix, path.strip("/")

    def _build_client(self):
        from azure.storage.blob import BlobServiceClient

        connection_string = os.environ.get(EnvVars.AZURE_STORAGE_CONNECTION_STRING.value)
        if connection_string:
            return BlobServiceClient.from_connection_string(connection_string)
        access_key = os.environ.get(EnvVars.AZURE_STORAGE_ACCESS_KEY.value)
        if not access_key:
            raise ArtifactRepositoryError(
                f"Either {EnvVars.AZURE_STORAGE_CONNECTION_STRING.value} or "
                f"{EnvVars.AZURE_STORAGE_ACCESS_KEY.value} must be set to use Azure Blob Storage",
                ErrorCode.INVALID_PARAMETER_VALUE)
        return BlobServiceClient(account_url=f"https://{self.account}.{self.api_uri_suffix}",
                                 credential=access_key)

    @property
    def container_client(self):
        return self.client.get_container_client(self.container)

    def _blob_name(self, artifact_path: Optional[str], *names: str) -> str:
        validate_artifact_path(artifact_path)
        return self._join(self.prefix, artifact_path, *names)

    def log_artifact(self, local_file: str, artifact_path: Optional[str] = None) -> None:
        blob_name = self._blob_name(artifact_path, os.path.basename(local_file))
        with open(local_file, "rb") as f:
            self.container_client.upload_blob(blob_name, f, overwrite=True)

    def log_artifacts(self, local_dir: str, artifact_path: Optional[str] = None) -> None:
        local_dir = os.path.abspath(local_dir)
        for root, _, filenames in os.walk(local_dir):
            rel_dir = os.path.relpath(root, local_dir)
            rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/")
            for filename in filenames:
                blob_name = self._blob_name(artifact_path, rel_dir, filename)
                with open(os.path.join(root, filename), "rb") as f:
                    self.container_client.upload_blob(blob_name, f, overwrite=True)

    def list_artifacts(self, path: Optional[str] = None) -> List[FileInfo]:
        path = (path or "").strip("/")
        dest = self._blob_name(path)
        prefix = dest + "/" if dest else ""
        infos = []
        for item in self.container_client.walk_blobs(name_starts_with=prefix, delimiter="/"):
            name = posixpath.basename(item.name.rstrip("/"))
            if item.name.endswith("/"):
                infos.append(FileInfo(self._join(path, name), True, None))
            elif item.name != prefix:
                infos.append(FileInfo(self._join(path, name), False, int(item.size)))
        return sorted(infos, key=lambda f: f.path)

    def _download_file(self, remote_file_path: str, local_path: str) -> None:
        downloader = self.container_client.download_blob(self._blob_name(remote_file_path))
        with open(local_path, "wb") as f:
            downloader.readinto(f)
