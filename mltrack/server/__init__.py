"""
Tracking server exposing a store over HTTP.
"""

from .app import create_app, create_app_from_env

__all__ = [
    'create_app',
    'create_app_from_env',
]
