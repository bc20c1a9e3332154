"""Helpers for tracking and artifact URIs.

A URI may be a plain local path (``./mlruns``, ``/data/runs``, ``C:\\runs``)
or carry a scheme (``file://``, ``s3://``, ``http://`` ...).
"""
import os
import posixpath
from pathlib import Path
from urllib.parse import urlparse, unquote


def get_uri_scheme(uri: str) -> str:
    """Scheme of a URI, ``""`` for plain local paths."""
    parsed = urlparse(str(uri))
    # windows drive letters parse as one-letter schemes
    if len(parsed.scheme) == 1:
        return ""
    return parsed.scheme.lower()


def is_local_uri(uri: str) -> bool:
    return get_uri_scheme(uri) in ("", "file")


def local_path_from_uri(uri: str) -> str:
    """Convert a local path or ``file://`` URI to an absolute filesystem path."""
    if get_uri_scheme(uri) == "file":
        parsed = urlparse(uri)
        path = unquote(parsed.path)
        if parsed.netloc and parsed.netloc != "localhost":
            path = f"//{parsed.netloc}{path}"
        return os.path.abspath(path)
    return os.path.abspath(os.path.expanduser(str(uri)))


def path_to_local_file_uri(path: str) -> str:
    return Path(os.path.abspath(path)).as_uri()


def append_to_uri_path(uri: str, *paths: str) -> str:
    """Join relative path components onto a URI or local path."""
    paths = [p.strip("/") for p in paths if p]
    if not paths:
        return uri
    if get_uri_scheme(uri) == "":
        return os.path.join(uri, *paths)
    parsed = urlparse(uri)
    new_path = posixpath.join(parsed.path or "/", *paths)
    return parsed._replace(path=new_path).geturl()
