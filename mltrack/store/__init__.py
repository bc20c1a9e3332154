"""
Tracking stores keeping experiment and run metadata.
"""

from .abstract_store import AbstractStore
from .db_store import DatabaseStore
from .file_store import FileStore
from .rest_store import HostCreds, RestStore

__all__ = [
    'AbstractStore',
    'DatabaseStore',
    'FileStore',
    'HostCreds',
    'RestStore',
]
