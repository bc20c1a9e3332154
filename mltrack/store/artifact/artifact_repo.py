import logging
import os
import posixpath
import tempfile
from abc import ABC, abstractmethod
from typing import List, Optional

from tqdm import tqdm

from mltrack.entities import FileInfo
from mltrack.utils.validation import validate_artifact_path

logger = logging.getLogger(__name__)


class ArtifactRepository(ABC):
    """
    Abstract artifact repository.

    An artifact repository stores the files of a single run under
    ``artifact_uri``. Paths passed to and returned by a repository are
    relative to that root and always use forward slashes.
    """

    def __init__(self, artifact_uri: str):
        self.artifact_uri = artifact_uri

    @abstractmethod
    def log_artifact(self, local_file: str, artifact_path: Optional[str] = None) -> None:
        """
        Upload a local file as an artifact.

        Args:
            local_file: Path of the file to upload
            artifact_path: Directory, relative to the root, to place the file in
        """
        pass

    @abstractmethod
    def log_artifacts(self, local_dir: str, artifact_path: Optional[str] = None) -> None:
        """
        Upload the contents of a local directory, recursively.

        Args:
            local_dir: Directory whose contents are uploaded
            artifact_path: Directory, relative to the root, to place the contents in
        """
        pass

    @abstractmethod
    def list_artifacts(self, path: Optional[str] = None) -> List[FileInfo]:
        """
        List the direct children of ``path``.

        Returns:
            List[FileInfo]: entries with paths relative to the artifact root
        """
        pass

    @abstractmethod
    def _download_file(self, remote_file_path: str, local_path: str) -> None:
        """Download a single artifact file to ``local_path``."""
        pass

    def _is_directory(self, artifact_path: str) -> bool:
        # listing a file yields nothing
        return len(self.list_artifacts(artifact_path)) > 0

    def _list_files_recursive(self, artifact_path: str) -> List[FileInfo]:
        files = []
        for file_info in self.list_artifacts(artifact_path):
            if file_info.is_dir:
                files.extend(self._list_files_recursive(file_info.path))
            else:
                files.append(file_info)
        return files

    def download_artifacts(self, artifact_path: str, dst_path: Optional[str] = None) -> str:
        """
        Download a file or a directory of artifacts to a local path.

        Args:
            artifact_path: Relative path of the artifact, ``""`` for the whole root
            dst_path: Local destination directory, a temporary directory when None

        Returns:
            str: local path of the downloaded file or directory
        """
        artifact_path = (artifact_path or "").strip("/")
        validate_artifact_path(artifact_path)
        if dst_path is None:
            dst_path = tempfile.mkdtemp()
        dst_path = os.path.abspath(dst_path)
        if not os.path.isdir(dst_path):
            raise FileNotFoundError(f"The destination path for downloaded artifacts does not exist: {dst_path}")

        if artifact_path == "" or self._is_directory(artifact_path):
            files = self._list_files_recursive(artifact_path)
            for file_info in tqdm(files, desc="Downloading artifacts", unit="file",
                                  disable=len(files) < 2):
                self._download_to(file_info.path, dst_path)
            local_dir = os.path.join(dst_path, *artifact_path.split("/")) if artifact_path else dst_path
            os.makedirs(local_dir, exist_ok=True)
            logger.debug(f"Downloaded {len(files)} artifacts from {self.artifact_uri} to {local_dir}")
            return local_dir
        return self._download_to(artifact_path, dst_path)

    def _download_to(self, remote_file_path: str, dst_path: str) -> str:
        local_path = os.path.join(dst_path, *remote_file_path.split("/"))
        os.makedirs(os.path.dirname(local_path), exist_ok=True)
        self._download_file(remote_file_path, local_path)
        return local_path

    @staticmethod
    def _join(*parts: Optional[str]) -> str:
        """Join relative artifact path parts with forward slashes, skipping empty ones."""
        parts = [p.strip("/") for p in parts if p and p.strip("/")]
        return posixpath.join(*parts) if parts else ""
