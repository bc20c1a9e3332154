"""
Artifact repositories, selected by the scheme of a run's artifact URI.
"""

from .artifact_repo import ArtifactRepository
from .artifact_repository_registry import get_artifact_repository, register_artifact_repository
from .local_artifact_repo import LocalArtifactRepository

__all__ = [
    'ArtifactRepository',
    'LocalArtifactRepository',
    'get_artifact_repository',
    'register_artifact_repository',
]
