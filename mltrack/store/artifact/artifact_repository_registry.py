from mltrack.common.scheme_registry import SchemeRegistry
from mltrack.store.artifact.artifact_repo import ArtifactRepository
from mltrack.store.artifact.azure_blob_artifact_repo import AzureBlobArtifactRepository
from mltrack.store.artifact.gcs_artifact_repo import GCSArtifactRepository
from mltrack.store.artifact.local_artifact_repo import LocalArtifactRepository
from mltrack.store.artifact.s3_artifact_repo import S3ArtifactRepository
from mltrack.store.artifact.sftp_artifact_repo import SFTPArtifactRepository

_artifact_repository_registry: SchemeRegistry[ArtifactRepository] = SchemeRegistry("artifact repository")
_artifact_repository_registry.register("", LocalArtifactRepository)
_artifact_repository_registry.register("file", LocalArtifactRepository)
_artifact_repository_registry.register("s3", S3ArtifactRepository)
_artifact_repository_registry.register("wasbs", AzureBlobArtifactRepository)
_artifact_repository_registry.register("gs", GCSArtifactRepository)
_artifact_repository_registry.register("sftp", SFTPArtifactRepository)


def register_artifact_repository(scheme: str, repository_class) -> None:
    _artifact_repository_registry.register(scheme, repository_class)


def get_artifact_repository(artifact_uri: str) -> ArtifactRepository:
    """Build the artifact repository for ``artifact_uri`` from its scheme."""
    return _artifact_repository_registry.get(artifact_uri)(artifact_uri)
