import os
import shutil
from typing import List, Optional

from mltrack.entities import FileInfo
from mltrack.exceptions import ArtifactRepositoryError, ErrorCode
from mltrack.store.artifact.artifact_repo import ArtifactRepository
from mltrack.utils.uri import local_path_from_uri
from mltrack.utils.validation import validate_artifact_path


class LocalArtifactRepository(ArtifactRepository):
    """Stores artifacts as files in a local directory (plain path or ``file://`` URI)."""

    def __init__(self, artifact_uri: str):
        super().__init__(artifact_uri)
        self.artifact_dir = local_path_from_uri(artifact_uri)

    def _local_path(self, artifact_path: Optional[str]) -> str:
        validate_artifact_path(artifact_path)
        if not artifact_path:
            return self.artifact_dir
        return os.path.join(self.artifact_dir, *artifact_path.strip("/").split("/"))

    def log_artifact(self, local_file: str, artifact_path: Optional[str] = None) -> None:
        artifact_dir = self._local_path(artifact_path)
        os.makedirs(artifact_dir, exist_ok=True)
        shutil.copyfile(local_file, os.path.join(artifact_dir, os.path.basename(local_file)))

    def log_artifacts(self, local_dir: str, artifact_path: Optional[str] = None) -> None:
        artifact_dir = self._local_path(artifact_path)
        os.makedirs(artifact_dir, exist_ok=True)
        shutil.copytree(local_dir, artifact_dir, dirs_exist_ok=True)

    def list_artifacts(self, path: Optional[str] = None) -> List[FileInfo]:
        path = (path or "").strip("/")
        list_dir = self._local_path(path)
        if not os.path.isdir(list_dir):
            return []
        infos = []
        for name in sorted(os.listdir(list_dir)):
            full_path = os.path.join(list_dir, name)
            rel_path = self._join(path, name)
            if os.path.isdir(full_path):
                infos.append(FileInfo(rel_path, True, None))
            else:
                infos.append(FileInfo(rel_path, False, os.path.getsize(full_path)))
        return infos

    def _download_file(self, remote_file_path: str, local_path: str) -> None:
        source = self._local_path(remote_file_path)
        if not os.path.isfile(source):
            raise ArtifactRepositoryError(f"No artifact at '{remote_file_path}' under {self.artifact_uri}",
                                          ErrorCode.RESOURCE_DOES_NOT_EXIST)
        shutil.copyfile(source, local_path)
