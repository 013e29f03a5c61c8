"""Utility functions for lock fsck"""

from urllib.parse import urlparse

from .errors import ConfigError

BUCKET_SCHEME = 's3'


def parse_bucket_uri(uri: str) -> str:
    """Return the bucket name of an ``s3://bucket`` argument"""
    parsed = urlparse(uri)
    if parsed.scheme != BUCKET_SCHEME:
        raise ConfigError(f"bucket parameter should have '{BUCKET_SCHEME}://' scheme: {uri}")
    if not parsed.netloc:
        raise ConfigError(f"bucket parameter has no bucket name: {uri}")
    if parsed.path.strip('/'):
        raise ConfigError(f"bucket parameter should not contain an object path: {uri}")
    return parsed.netloc


def object_name(path: str, bucket: str) -> str:
    """Map ``s3://bucket/a/b``, ``/a/b`` or ``a/b`` to the object name ``a/b``"""
    parsed = urlparse(path)
    if parsed.scheme:
        if parsed.netloc != bucket:
            raise ValueError(f"path {path} is outside of bucket {bucket}")
        path = parsed.path
    return path.strip('/')


def operation_id_from_record(path: str) -> str:
    """Extract the operation id from ``<...>_<kind>_<operationId>.lock``"""
    last_field = path.split('_')[-1]
    return last_field.split('.')[0]


def literal_prefix(pattern: str) -> str:
    """Longest leading part of a glob pattern without wildcards"""
    for i, ch in enumerate(pattern):
        if ch in '*?[':
            return pattern[:i]
    return pattern


def record_pattern(lock_directory: str, operation_id: str) -> str:
    """Glob matching every lock record of an operation"""
    return f"{lock_directory.strip('/')}/*{operation_id}*.lock"
